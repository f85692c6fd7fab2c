# src/model.py
"""
Call boundary for kinship models.

`kin()` picks one ModelVariant from its arguments (sex mode x time mode x stage
mode, plus an optional two-sex approximation), prepares rates once, and drives
the single recursion core in kinship.py. Output selection:

time-invariant  every Focal age 0..omega.
time-varying    output_year  -> every Focal age alive in those calendar years;
                output_cohort -> the lifetime of Focal born in those years;
                neither      -> every Focal age in every projected year.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace

import numpy as np

from errors import KinConfigError, RateShapeError
from fertility import birth_female_from_srb
from helpers import _coerce_int_list
from kinship import iter_time_varying, plan_kin, solve_time_invariant
from projections import SEX_LABELS, StateGrid, build_period_operators, parent_distribution
from rates import EDGE_POLICIES, check_same_grid, prepare_rates
from summary import reduce_snapshots, take_snapshots
from twosex import APPROXIMATIONS, androgynous_rates, apply_gkp_factors, prepare_cause_hazards

logger = logging.getLogger(__name__)

SEX_MODES = ("one-sex", "two-sex")
TWO_SEX_BIRTH_FEMALE = birth_female_from_srb(1.04)


@dataclass(frozen=True)
class ModelVariant:
    sex_mode: str          # "one-sex" | "two-sex"
    time_mode: str         # "time-invariant" | "time-varying"
    stage_mode: str        # "age" | "age-stage"
    approximation: str | None = None

    @property
    def two_sex(self) -> bool:
        return self.sex_mode == "two-sex"

    @property
    def time_varying(self) -> bool:
        return self.time_mode == "time-varying"


def select_variant(*, sex: str, time_invariant: bool, staged: bool,
                   approximation: str | None) -> ModelVariant:
    if sex not in SEX_MODES:
        raise KinConfigError(f"sex must be one of {SEX_MODES}, got {sex!r}.")
    if approximation is not None:
        if approximation not in APPROXIMATIONS:
            raise KinConfigError(
                f"approximation must be one of {APPROXIMATIONS} or None, got {approximation!r}."
            )
        if sex != "two-sex":
            raise KinConfigError(f"The {approximation!r} approximation applies to two-sex models only.")
    return ModelVariant(
        sex_mode=sex,
        time_mode="time-invariant" if time_invariant else "time-varying",
        stage_mode="age-stage" if staged else "age",
        approximation=approximation,
    )


# ---------------------------------------------------------------------------
# Output selection (time-varying)
# ---------------------------------------------------------------------------

def _output_selection(span, n_ages: int, output_year, output_cohort, edge_policy: str):
    """
    Return (years to project, year -> Focal-age columns to keep).

    Raises KinConfigError for years/cohorts outside the supplied span and
    RateShapeError when a cohort outlives the span under edge_policy="error".
    """
    y0, y1 = span[0], span[-1]
    omega = n_ages - 1
    years_out = _coerce_int_list(output_year)
    cohorts = _coerce_int_list(output_cohort)
    if years_out and cohorts:
        raise KinConfigError("Pass output_year or output_cohort, not both.")

    if years_out:
        bad = [y for y in years_out if not y0 <= y <= y1]
        if bad:
            raise KinConfigError(f"output_year {bad} outside the supplied years {y0}-{y1}.")
        wanted = set(years_out)
        last = max(wanted)

        def columns(year):
            return np.arange(n_ages) if year in wanted else np.array([], dtype=int)

        return list(range(y0, last + 1)), columns

    if cohorts:
        bad = [c for c in cohorts if not y0 - omega <= c <= y1]
        if bad:
            raise KinConfigError(
                f"output_cohort {bad} outside the cohorts {y0 - omega}-{y1} observable in {y0}-{y1}."
            )
        last = max(cohorts) + omega
        if last > y1:
            if edge_policy == "error":
                raise RateShapeError(
                    f"Cohort {max(cohorts)} lives until {last} but rates stop at {y1}; "
                    f"use edge_policy='hold' or 'truncate'."
                )
            if edge_policy == "truncate":
                logger.info("Cohort output truncated at %d, the last supplied year.", y1)
                last = y1
            else:
                logger.info("Holding %d rates constant through %d.", y1, last)

        def columns(year):
            ages = [year - c for c in cohorts if 0 <= year - c <= omega]
            return np.array(sorted(ages), dtype=int)

        return list(range(y0, last + 1)), columns

    return list(span), lambda year: np.arange(n_ages)


def _per_year(value, years):
    """Split an optional {year: value} mapping; anything else applies to every year."""
    if isinstance(value, Mapping) and value and all(isinstance(k, (int, np.integer)) for k in value):
        by_year = {int(k): v for k, v in value.items()}
        missing = [y for y in years if y not in by_year]
        if missing:
            raise RateShapeError(f"Parent distribution missing for years {missing[:5]}.")
        last = max(by_year)
        return lambda year: by_year[year] if year in by_year else by_year[last]
    return lambda year: value


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def kin(
    p,
    f,
    *,
    pm=None,
    fm=None,
    transitions=None,
    transitions_m=None,
    birth_stage=None,
    birth_stage_m=None,
    sex: str = "one-sex",
    time_invariant: bool = True,
    sex_focal: str = "f",
    birth_female: float | None = None,
    pi=None,
    approximation: str | None = None,
    cause_hazards=None,
    cause_hazards_m=None,
    output_kin=None,
    output_cohort=None,
    output_year=None,
    summary_only: bool = False,
    edge_policy: str = "hold",
    years=None,
    stages=None,
    progress: bool = False,
):
    """
    Expected kin of Focal by Focal's age, kin age (stage, sex) and year.

    Parameters
    ----------
    p, f : female (one-sex: population) survival probabilities and fertility.
        Arrays, Series/DataFrames or {year: rates} mappings (see rates.py).
    pm, fm : male survival and fertility (two-sex).
    transitions, transitions_m : (ages, stages, stages) stage moves; giving them
        switches to the age-stage model. Male defaults to female.
    birth_stage, birth_stage_m : newborn stage distribution by mother's stage.
    sex : "one-sex" or "two-sex".
    time_invariant : False projects year by year over period-indexed rates.
    sex_focal : "f" or "m" (two-sex only).
    birth_female : share of births that are female. Defaults to 1 for one-sex
        models (fertility read as daughters) and 1/2.04 for two-sex models.
    pi : parents' age (x stage) distribution at childbearing; None for the stable
        distribution. An age, an array, {"f": ..., "m": ...} for two-sex, or
        {year: any of those} for time-varying models.
    approximation : "androgynous" or "gkp" (two-sex only).
    cause_hazards, cause_hazards_m : (causes, ages) hazards splitting deaths by cause.
    output_kin : kin codes to return; None for all 14 kin types.
    output_cohort, output_year : time-varying output selection.
    summary_only : skip the full table.
    edge_policy : "hold", "truncate" or "error" for cohorts outliving the rates.
    years : calendar years to project (time-varying); defaults to the rates' years.
    stages : stage labels.
    progress : show a tqdm bar over projected years.

    Returns
    -------
    summary.KinResult
    """
    variant = select_variant(
        sex=sex, time_invariant=time_invariant,
        staged=transitions is not None, approximation=approximation,
    )
    if edge_policy not in EDGE_POLICIES:
        raise KinConfigError(f"edge_policy must be one of {EDGE_POLICIES}, got {edge_policy!r}.")
    if sex_focal not in ("f", "m"):
        raise KinConfigError(f"sex_focal must be 'f' or 'm', got {sex_focal!r}.")
    if not variant.two_sex and sex_focal != "f":
        raise KinConfigError("One-sex models follow a female Focal; use sex='two-sex' for sex_focal='m'.")
    if not variant.time_varying and (output_year is not None or output_cohort is not None):
        raise KinConfigError("output_year/output_cohort apply to time-varying models only.")

    if variant.approximation == "gkp":
        if sex_focal != "f":
            raise KinConfigError(
                "GKP factors scale a female Focal's kin; use the androgynous approximation "
                "or male rates for sex_focal='m'."
            )
        logger.info("[gkp] one-sex run on female rates, scaled by lineage multipliers.")
        one_sex = kin(
            p, f,
            transitions=transitions, birth_stage=birth_stage,
            sex="one-sex", time_invariant=time_invariant,
            birth_female=TWO_SEX_BIRTH_FEMALE if birth_female is None else birth_female,
            pi=pi if not isinstance(pi, Mapping) or "f" not in pi else pi["f"],
            cause_hazards=cause_hazards, output_kin=output_kin,
            output_cohort=output_cohort, output_year=output_year,
            summary_only=summary_only, edge_policy=edge_policy,
            years=years, stages=stages, progress=progress,
        )
        return apply_gkp_factors(_with_variant(one_sex, variant))

    if variant.approximation == "androgynous":
        p, f, pm, fm = androgynous_rates(p, f, pm, fm)

    if birth_female is None:
        birth_female = TWO_SEX_BIRTH_FEMALE if variant.two_sex else 1.0

    plan = plan_kin(output_kin, focal_sex=sex_focal, two_sex=variant.two_sex)

    # Rates, validated up front for both sexes
    female = prepare_rates(
        p, f, transitions, birth_stage,
        time_varying=variant.time_varying, years=years, stages=stages,
    )
    male = None
    if variant.two_sex:
        if pm is None or fm is None:
            raise KinConfigError(
                "Two-sex models need pm and fm; pass approximation='androgynous' or 'gkp' without them."
            )
        male = prepare_rates(
            pm, fm,
            transitions if transitions_m is None else transitions_m,
            birth_stage if birth_stage_m is None else birth_stage_m,
            time_varying=variant.time_varying,
            years=female.years if variant.time_varying else None,
            stages=female.stages,
        )
        check_same_grid(female, male)

    if cause_hazards is None and cause_hazards_m is not None:
        raise KinConfigError("cause_hazards_m was given without female cause_hazards.")
    hz_f = prepare_cause_hazards(cause_hazards, female.n_ages, years=female.years)
    hz_m = None
    if variant.two_sex and hz_f is not None:
        hz_m = prepare_cause_hazards(
            cause_hazards if cause_hazards_m is None else cause_hazards_m,
            female.n_ages, years=female.years,
        )
        if hz_m.names != hz_f.names:
            raise KinConfigError(f"Cause names differ by sex: {hz_f.names} vs {hz_m.names}.")
    causes = hz_f.names if hz_f is not None else None

    def ops_for_year(year):
        fem = female.period_for(year, edge_policy)
        mal = male.period_for(year, edge_policy) if male is not None else None
        return build_period_operators(
            fem, mal,
            birth_female=birth_female,
            hazards_f=hz_f.for_year(year) if hz_f is not None else None,
            hazards_m=hz_m.for_year(year) if hz_m is not None else None,
        )

    stage_labels = female.stages if variant.stage_mode == "age-stage" else None
    logger.info("Running %s %s %s model for %d kin type(s).",
                variant.sex_mode, variant.time_mode, variant.stage_mode, len(plan.requested))

    if not variant.time_varying:
        ops = ops_for_year(None)
        states = solve_time_invariant(ops, parent_distribution(ops, pi), plan)
        snapshots = take_snapshots(states, plan.requested, np.arange(female.n_ages))
        return reduce_snapshots(
            snapshots, ops.grid, ages=female.ages, stages=stage_labels,
            causes=causes, summary_only=summary_only, variant=variant,
        )

    run_years, columns = _output_selection(
        female.years, female.n_ages, output_year, output_cohort, edge_policy,
    )
    pi_for_year = _per_year(pi, female.years)
    snapshots = []
    for year, states in iter_time_varying(
        ops_for_year,
        lambda ops: parent_distribution(ops, pi_for_year(ops.year)),
        plan, run_years, progress=progress,
    ):
        snapshots.extend(take_snapshots(states, plan.requested, columns(year), year=year))
    grid = StateGrid(female.n_ages, female.n_stages,
                     SEX_LABELS if variant.two_sex else SEX_LABELS[:1])
    return reduce_snapshots(
        snapshots, grid, ages=female.ages, stages=stage_labels,
        causes=causes, summary_only=summary_only, variant=variant,
    )


def _with_variant(result, variant: ModelVariant):
    return replace(result, variant=variant)
