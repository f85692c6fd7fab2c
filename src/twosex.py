# src/twosex.py
"""
Two-sex coupling helpers.

- Approximations when one sex's rates are unavailable:
    * androgynous : the available sex's rates stand in for the missing sex.
    * gkp         : one-sex (female-line) counts scaled by the Goodman-Keyfitz-Pullum
                    multipliers below; no lineage detail, no male rates needed.
- Cause-of-death split: per-age cause hazards turned into shares of each
  state's death probability, so cause-specific deaths always add up to the
  total.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace

import numpy as np
import pandas as pd

from errors import KinConfigError, RateShapeError, RateValueError

logger = logging.getLogger(__name__)

APPROXIMATIONS = ("androgynous", "gkp")

# Number of lineages a one-sex (female-line) kin type stands for once fathers,
# sons and the paternal side are counted too.
GKP_FACTORS = {
    "d": 2, "gd": 4, "ggd": 8,
    "m": 2, "gm": 4, "ggm": 8,
    "os": 2, "ys": 2, "s": 2,
    "nos": 4, "nys": 4, "n": 4,
    "oa": 4, "ya": 4, "a": 4,
    "coa": 8, "cya": 8, "c": 8,
}


# ---------------------------------------------------------------------------
# Androgynous approximation
# ---------------------------------------------------------------------------

def androgynous_rates(p, f, pm, fm):
    """
    Fill in the missing sex's survival/fertility with the other sex's.

    Returns
    -------
    (p, f, pm, fm) with no None left.

    Raises
    ------
    KinConfigError if a rate is missing for both sexes.
    """
    if p is None and pm is None:
        raise KinConfigError("Survival is missing for both sexes.")
    if f is None and fm is None:
        raise KinConfigError("Fertility is missing for both sexes.")
    filled = []
    if pm is None:
        filled.append("male survival")
    if fm is None:
        filled.append("male fertility")
    if p is None:
        filled.append("female survival")
    if f is None:
        filled.append("female fertility")
    if filled:
        logger.info("[androgynous] substituting %s with the other sex's rates.", ", ".join(filled))
    return (
        pm if p is None else p,
        fm if f is None else f,
        p if pm is None else pm,
        f if fm is None else fm,
    )


# ---------------------------------------------------------------------------
# GKP factors
# ---------------------------------------------------------------------------

def apply_gkp_factors(result):
    """
    Scale a one-sex KinResult by GKP_FACTORS.

    Count columns (living, dead, cumulative dead and their per-cause splits) are
    multiplied; mean and sd ages are unchanged.
    """
    def _scale(df: pd.DataFrame | None, prefixes) -> pd.DataFrame | None:
        if df is None:
            return None
        out = df.copy()
        factor = out["kin"].map(GKP_FACTORS).astype(float)
        for col in out.columns:
            if any(col == p or col.startswith(p + "_") for p in prefixes):
                out[col] = out[col] * factor
        return out

    return replace(
        result,
        kin_full=_scale(result.kin_full, ("living", "dead", "cum_dead")),
        kin_summary=_scale(result.kin_summary, ("count_living", "count_dead", "count_cum_dead")),
    )


# ---------------------------------------------------------------------------
# Cause-of-death split
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CauseHazards:
    """Cause-specific hazards for one sex: names plus one (causes, ages) array per period."""
    names: tuple
    years: tuple | None
    arrays: tuple

    def for_year(self, year) -> np.ndarray:
        if self.years is None or year is None:
            return self.arrays[0]
        if year in self.years:
            return self.arrays[self.years.index(year)]
        if year > self.years[-1]:
            return self.arrays[-1]
        raise RateShapeError(f"No cause-specific hazards for year {year}.")


def _hazard_array(h, n_ages: int):
    if isinstance(h, pd.DataFrame):
        names = tuple(str(i) for i in h.index)
        arr = h.to_numpy(dtype=float)
    elif isinstance(h, Mapping):
        names = tuple(str(k) for k in h)
        arr = np.vstack([np.asarray(v, dtype=float) for v in h.values()])
    else:
        arr = np.asarray(h, dtype=float)
        if arr.ndim == 1:
            arr = arr[None, :]
        names = tuple(f"cause{i + 1}" for i in range(arr.shape[0]))
    if arr.ndim != 2 or arr.shape[1] != n_ages:
        raise RateShapeError(
            f"Cause-specific hazards have shape {arr.shape}; expected (causes, {n_ages})."
        )
    if not np.all(np.isfinite(arr)) or np.any(arr < 0):
        raise RateValueError("Cause-specific hazards must be finite and non-negative.")
    return names, arr


def prepare_cause_hazards(hazards, n_ages: int, *, years=None) -> CauseHazards | None:
    """
    Normalise cause-specific hazards for one sex.

    `hazards` is a (causes x ages) DataFrame (index = cause names), array or
    {cause: vector} mapping; or, for time-varying models, {year: one of those}.
    Period-indexed hazards must cover `years`; later years reuse the last period.
    """
    if hazards is None:
        return None
    by_year = None
    if isinstance(hazards, Mapping) and hazards and all(
        isinstance(k, (int, np.integer)) for k in hazards
    ):
        by_year = {int(k): v for k, v in hazards.items()}
    if by_year is None:
        names, arr = _hazard_array(hazards, n_ages)
        return CauseHazards(names=names, years=None, arrays=(arr,))
    ys = sorted(by_year)
    if years is not None:
        missing = [y for y in years if y not in by_year]
        if missing:
            raise RateShapeError(f"Cause-specific hazards missing for years {missing[:5]}.")
    parsed = [_hazard_array(by_year[y], n_ages) for y in ys]
    names = parsed[0][0]
    if any(p[0] != names for p in parsed):
        raise RateShapeError("Cause names differ between periods.")
    return CauseHazards(names=names, years=tuple(ys), arrays=tuple(p[1] for p in parsed))


def death_shares(hazards: np.ndarray, q: np.ndarray, n_stages: int, *, period=None, sex="f") -> np.ndarray:
    """
    Shares of each state's death probability by cause.

    Parameters
    ----------
    hazards : (causes, ages) cause-specific hazards (relative risks suffice).
    q : (ages * stages,) death probabilities of one sex.
    n_stages : stages per age; hazards apply to every stage of an age.

    Returns
    -------
    (causes, ages * stages) array whose columns sum to 1.

    Raises
    ------
    RateValueError where a state can die but every cause has zero hazard.
    """
    hz = np.repeat(np.asarray(hazards, dtype=float), n_stages, axis=1)
    total = hz.sum(axis=0)
    dying = q > 0
    bad = dying & (total <= 0)
    if bad.any():
        age = int(np.flatnonzero(bad)[0]) // n_stages
        raise RateValueError(
            f"Period {period}, sex {sex!r}: deaths occur at age {age} but every cause hazard is zero."
        )
    k = hz.shape[0]
    return np.divide(hz, total, out=np.full_like(hz, 1.0 / k), where=total > 0)
