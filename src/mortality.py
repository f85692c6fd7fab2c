# src/mortality.py
import numpy as np

from errors import RateValueError


# ---------------------------------------------------------------------
# Conversions to one-year survival probabilities p_x
# ---------------------------------------------------------------------
def survival_from_lx(lx) -> np.ndarray:
    """
    One-year survival p_x = l_{x+1} / l_x from a survivorship column.

    The closing age has no l_{x+1} and gets p_ω = 0 (nobody survives the open
    interval) unless the caller overrides it afterwards.
    Ages with l_x = 0 get p_x = 0.
    """
    lx = np.asarray(lx, dtype=float)
    if lx.ndim != 1 or lx.size == 0:
        raise ValueError("lx must be a non-empty 1-D array.")
    px = np.zeros_like(lx)
    num = lx[1:]
    den = lx[:-1]
    px[:-1] = np.divide(num, den, out=np.zeros_like(num), where=den > 0)
    return np.clip(px, 0.0, 1.0)


def survival_from_qx(qx) -> np.ndarray:
    """p_x = 1 - q_x, clipped to [0, 1]."""
    qx = np.asarray(qx, dtype=float)
    return np.clip(1.0 - qx, 0.0, 1.0)


def survival_from_mx(mx, n: float = 1.0) -> np.ndarray:
    """
    p_x from a central death rate under a constant force of mortality:
        p_x = exp(-n * m_x)
    """
    mx = np.asarray(mx, dtype=float)
    return np.exp(-float(n) * np.maximum(mx, 0.0))


# ---------------------------------------------------------------------
# Validation (hard errors)
# ---------------------------------------------------------------------
def validate_survival(px: np.ndarray, *, period=None, stages=None) -> None:
    """
    Check survival probabilities for a single period.

    Parameters
    ----------
    px : (ages, stages) array of survival probabilities.
    period : label used in error messages (calendar year or None).
    stages : stage labels used in error messages.

    Raises
    ------
    RateValueError
        At the first age/stage that is non-finite, negative or above 1.
    """
    px = np.asarray(px, dtype=float)
    if px.ndim == 1:
        px = px[:, None]
    bad = ~np.isfinite(px) | (px < 0.0) | (px > 1.0)
    if bad.any():
        a, s = np.argwhere(bad)[0]
        where = _where(period, a, s, stages)
        raise RateValueError(
            f"Survival probability {px[a, s]!r} {where} is outside [0, 1] or not finite."
        )


def _where(period, age, stage, stages) -> str:
    parts = []
    if period is not None:
        parts.append(f"period {period}")
    parts.append(f"age {int(age)}")
    if stages is not None and len(stages) > 1:
        parts.append(f"stage {stages[int(stage)]}")
    return "at " + ", ".join(parts)


def life_expectancy(px) -> float:
    """
    Period life expectancy at birth implied by one-year survival probabilities,
    with deaths at mid-interval and the closing age as an open interval.
    Used for diagnostics only.
    """
    px = np.asarray(px, dtype=float)
    lx = np.concatenate([[1.0], np.cumprod(px[:-1])])
    Lx = 0.5 * (lx + lx * px)
    p_last = float(px[-1])
    if p_last < 1.0:
        Lx[-1] = lx[-1] / max(-np.log(max(p_last, 1e-12)), 1e-12)
    else:
        return float("inf")
    return float(np.sum(Lx))
