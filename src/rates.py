# src/rates.py
"""
Rate preprocessing: validate raw survival / fertility / stage-transition inputs
and reshape them into an ordered sequence of per-period rate bundles on a
single age (x stage) grid.

Accepted inputs
---------------
survival, fertility
    - 1-D array or Series over ages                      -> one period, age-only
    - 2-D array or DataFrame (ages x years), age-only     -> one period per column
    - 2-D array or DataFrame (ages x stages), age-stage   -> one period
    - Mapping {year: any of the above single-period forms}
transitions (age-stage only)
    - (ages, stages, stages) array, column j = destination shares of stage j survivors
    - Mapping {year: array}
birth_stage (age-stage only)
    - None -> every newborn enters the first stage
    - (stages,) vector -> newborn stage distribution, whatever the mother's stage
    - (stages, stages) array, column j = newborn stage shares for mothers in stage j
    - Mapping {year: array}

Inputs given for one period are replicated across every modelled year.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np
import pandas as pd

from errors import KinConfigError, RateShapeError, RateValueError
from fertility import validate_fertility
from helpers import _age_index, _labels_outside, _ridx
from mortality import validate_survival

logger = logging.getLogger(__name__)

EDGE_POLICIES = ("hold", "truncate", "error")
_STOCHASTIC_TOL = 1e-6


@dataclass(frozen=True)
class PeriodRates:
    """Vital rates of one calendar-time cross-section, on the shared grid."""
    year: int | None
    survival: np.ndarray      # (ages, stages)
    fertility: np.ndarray     # (ages, stages)
    transitions: np.ndarray   # (ages, stages, stages)
    birth_stage: np.ndarray   # (stages, stages)

    @property
    def n_ages(self) -> int:
        return self.survival.shape[0]

    @property
    def n_stages(self) -> int:
        return self.survival.shape[1]


@dataclass(frozen=True)
class RateSchedule:
    """Ordered periods sharing one grid. `years` is None for time-invariant rates."""
    ages: np.ndarray
    stages: tuple
    years: tuple | None
    periods: tuple

    @property
    def n_ages(self) -> int:
        return int(self.ages.size)

    @property
    def n_stages(self) -> int:
        return len(self.stages)

    @property
    def omega(self) -> int:
        return int(self.ages[-1])

    @property
    def time_varying(self) -> bool:
        return self.years is not None

    def period_for(self, year: int | None, edge_policy: str = "hold") -> PeriodRates:
        """
        Rates applying in calendar `year`.

        Years after the last supplied period follow `edge_policy`: "hold" keeps
        the last period's rates, anything else raises RateShapeError.
        """
        if self.years is None:
            return self.periods[0]
        year = int(year)
        if year in self.years:
            return self.periods[self.years.index(year)]
        if year > self.years[-1] and edge_policy == "hold":
            return self.periods[-1]
        raise RateShapeError(
            f"No rates for year {year}; supplied periods cover {self.years[0]}-{self.years[-1]}."
        )


# ---------------------------------------------------------------------------
# Input normalisation
# ---------------------------------------------------------------------------

def _split_periods(x, *, by_columns: bool, years=None) -> dict | None:
    """
    Return {year: single-period value} for period-indexed inputs, or None when
    `x` describes a single period.
    """
    if x is None:
        return None
    if isinstance(x, Mapping):
        try:
            return {int(k): v for k, v in x.items()}
        except (TypeError, ValueError) as e:
            raise KinConfigError(f"Period keys must be calendar years: {e}") from None
    if not by_columns:
        return None
    if isinstance(x, pd.DataFrame):
        try:
            cols = [int(float(c)) for c in x.columns]
        except (TypeError, ValueError):
            raise KinConfigError(
                f"DataFrame columns must be calendar years, got {list(x.columns)[:5]}"
            ) from None
        if len(cols) == 1 and years is None:
            return None
        return {y: x.iloc[:, j] for j, y in enumerate(cols)}
    arr = np.asarray(x)
    if arr.ndim == 2:
        if years is None:
            raise KinConfigError(
                "A (ages x years) array needs `years` to label its columns; "
                "pass a DataFrame with year columns or a {year: rates} mapping."
            )
        years = [int(y) for y in years]
        if arr.shape[1] != len(years):
            raise RateShapeError(
                f"Rate matrix has {arr.shape[1]} period columns but {len(years)} years were given."
            )
        return {y: arr[:, j] for j, y in enumerate(years)}
    return None


def _grid_from_survival(p) -> np.ndarray:
    if isinstance(p, (pd.Series, pd.DataFrame)):
        try:
            ages = _age_index(p.index)
        except ValueError:
            ages = np.arange(len(p.index), dtype=int)
    else:
        arr = np.asarray(p)
        if arr.ndim == 0 or arr.shape[0] == 0:
            raise RateShapeError("Survival input is empty.")
        ages = np.arange(arr.shape[0], dtype=int)
    if ages.size == 0:
        raise RateShapeError("Survival input is empty.")
    if ages[0] != 0 or np.any(np.diff(ages) != 1):
        raise RateShapeError(
            f"Survival ages must be single years 0..omega, got {ages[:3].tolist()}...{ages[-1]}"
        )
    return ages


def _as_age_stage(x, ages: np.ndarray, n_stages: int, *, what: str, year,
                  pad: bool) -> np.ndarray:
    """Coerce one period of `x` to an (ages, stages) float array on the grid."""
    A = ages.size
    if isinstance(x, pd.Series):
        if pad:
            outside = _labels_outside(x, ages)
            if outside:
                raise RateShapeError(
                    f"{what} ages {outside[:5]} (period {year}) fall outside the grid 0..{ages[-1]}."
                )
            arr = _ridx(x, ages).to_numpy()
        else:
            arr = x.to_numpy(dtype=float)
    elif isinstance(x, pd.DataFrame):
        if pad:
            outside = _labels_outside(pd.Series(0.0, index=x.index), ages)
            if outside:
                raise RateShapeError(
                    f"{what} ages {outside[:5]} (period {year}) fall outside the grid 0..{ages[-1]}."
                )
            df = x.copy()
            df.index = _age_index(df.index)
            arr = df.groupby(level=0).sum().reindex(ages, fill_value=0.0).to_numpy(dtype=float)
        else:
            arr = x.to_numpy(dtype=float)
    else:
        arr = np.asarray(x, dtype=float)
    if arr.ndim == 1:
        arr = arr[:, None]
    if arr.shape != (A, n_stages):
        raise RateShapeError(
            f"{what} for period {year} has shape {arr.shape}; expected ({A}, {n_stages})."
        )
    return arr


def _stochastic(arr: np.ndarray, *, what: str, year) -> None:
    if not np.all(np.isfinite(arr)) or np.any(arr < 0):
        raise RateValueError(f"{what} for period {year} has negative or non-finite entries.")
    sums = arr.sum(axis=-2)
    bad = np.abs(sums - 1.0) > _STOCHASTIC_TOL
    if bad.any():
        idx = tuple(int(i) for i in np.argwhere(bad)[0])
        raise RateValueError(
            f"{what} for period {year}: column {idx} sums to {float(sums[idx]):.6g}, not 1."
        )


def _as_transitions(x, A: int, S: int, *, year) -> np.ndarray:
    if x is None:
        if S > 1:
            raise RateShapeError(f"Stage transitions missing for period {year}.")
        return np.ones((A, 1, 1))
    arr = np.asarray(x, dtype=float)
    if arr.shape != (A, S, S):
        raise RateShapeError(
            f"Stage transitions for period {year} have shape {arr.shape}; expected ({A}, {S}, {S})."
        )
    _stochastic(arr, what="Stage transitions", year=year)
    return arr


def _as_birth_stage(x, S: int, *, year) -> np.ndarray:
    if x is None:
        H = np.zeros((S, S))
        H[0, :] = 1.0
        return H
    arr = np.asarray(x, dtype=float)
    if arr.ndim == 1:
        if arr.shape != (S,):
            raise RateShapeError(f"Birth-stage vector for period {year} must have {S} entries.")
        arr = np.repeat(arr[:, None], S, axis=1)
    if arr.shape != (S, S):
        raise RateShapeError(
            f"Birth-stage matrix for period {year} has shape {arr.shape}; expected ({S}, {S})."
        )
    _stochastic(arr, what="Birth-stage distribution", year=year)
    return arr


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, dtype=float, copy=True)
    arr.flags.writeable = False
    return arr


def prepare_rates(
    survival,
    fertility,
    transitions=None,
    birth_stage=None,
    *,
    time_varying: bool = False,
    years=None,
    stages=None,
) -> RateSchedule:
    """
    Validate and reshape rate inputs into a RateSchedule.

    Parameters
    ----------
    survival, fertility, transitions, birth_stage : see module docstring.
    time_varying : if False, exactly one period is allowed.
    years : requested calendar years (time-varying). Defaults to the years of the
            period-indexed inputs; every period-indexed input must cover them all.
    stages : stage labels (age-stage models). Defaults to 1..S.

    Raises
    ------
    RateShapeError, RateValueError, KinConfigError
    """
    stage_mode = transitions is not None
    by_col = not stage_mode

    p_by = _split_periods(survival, by_columns=by_col, years=years)
    f_by = _split_periods(fertility, by_columns=by_col, years=years)
    t_by = _split_periods(transitions, by_columns=False)
    h_by = _split_periods(birth_stage, by_columns=False)
    period_inputs = {k: v for k, v in
                     (("survival", p_by), ("fertility", f_by),
                      ("transitions", t_by), ("birth_stage", h_by)) if v is not None}

    # Requested span
    if time_varying:
        if years is not None:
            span = sorted(int(y) for y in years)
        elif period_inputs:
            span = sorted(set().union(*[set(v) for v in period_inputs.values()]))
        else:
            raise KinConfigError("A time-varying model needs period-indexed rates or `years`.")
        if not span:
            raise KinConfigError("A time-varying model needs at least one year.")
        if np.any(np.diff(span) != 1):
            raise RateShapeError(f"Years must be consecutive, got {span[:5]}...")
        for name, by in period_inputs.items():
            missing = [y for y in span if y not in by]
            if missing:
                raise RateShapeError(
                    f"{name} periods do not cover the requested span: missing {missing[:5]}"
                    f"{'...' if len(missing) > 5 else ''} ({len(by)} periods for {len(span)} years)."
                )
        keys = span
    else:
        for name, by in period_inputs.items():
            if len(by) != 1:
                raise KinConfigError(
                    f"Time-invariant model was given {len(by)} {name} periods; pass one."
                )
        keys = [None]

    def _get(single, by, year):
        if by is None:
            return single
        return by[year] if year is not None else next(iter(by.values()))

    first = _get(survival, p_by, keys[0])
    ages = _grid_from_survival(first)
    A = ages.size
    if stage_mode:
        S = np.asarray(first).shape[1] if np.asarray(first).ndim == 2 else 0
        if S == 0:
            raise RateShapeError("Age-stage models need survival as an (ages x stages) matrix.")
    else:
        S = 1
    if stages is None:
        stage_labels = tuple(range(1, S + 1))
    else:
        stage_labels = tuple(stages)
        if len(stage_labels) != S:
            raise RateShapeError(f"Got {len(stage_labels)} stage labels for {S} stages.")

    periods = []
    for year in keys:
        px = _as_age_stage(_get(survival, p_by, year), ages, S, what="Survival", year=year, pad=False)
        fx = _as_age_stage(_get(fertility, f_by, year), ages, S, what="Fertility", year=year, pad=True)
        validate_survival(px, period=year, stages=stage_labels)
        validate_fertility(fx, period=year, stages=stage_labels)
        tx = _as_transitions(_get(transitions, t_by, year), A, S, year=year)
        hx = _as_birth_stage(_get(birth_stage, h_by, year), S, year=year)
        periods.append(PeriodRates(
            year=year,
            survival=_frozen(px),
            fertility=_frozen(fx),
            transitions=_frozen(tx),
            birth_stage=_frozen(hx),
        ))

    schedule = RateSchedule(
        ages=ages,
        stages=stage_labels,
        years=tuple(keys) if time_varying else None,
        periods=tuple(periods),
    )
    logger.debug(
        "Prepared %d period(s) on ages 0..%d with %d stage(s).",
        len(periods), schedule.omega, S,
    )
    return schedule


def check_same_grid(female: RateSchedule, male: RateSchedule) -> None:
    """Both sexes must share ages, stages and years."""
    if female.n_ages != male.n_ages:
        raise RateShapeError(
            f"Female rates cover ages 0..{female.omega}, male rates 0..{male.omega}."
        )
    if female.n_stages != male.n_stages:
        raise RateShapeError(
            f"Female rates have {female.n_stages} stages, male rates {male.n_stages}."
        )
    if female.years != male.years:
        raise RateShapeError("Female and male rates cover different years.")
