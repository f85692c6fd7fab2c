# src/fertility.py
import logging
import numpy as np

from errors import RateValueError

logger = logging.getLogger(__name__)


def birth_female_from_srb(srb: float) -> float:
    """
    Proportion of births that are female, from a sex ratio at birth (males per female).
    Falls back to 1/2.04 (SRB 1.04) when the ratio is not a positive finite number.
    """
    try:
        srb = float(srb)
    except (TypeError, ValueError):
        return 1.0 / 2.04
    if not np.isfinite(srb) or srb <= 0:
        return 1.0 / 2.04
    return 1.0 / (1.0 + srb)


def validate_fertility(fx: np.ndarray, *, period=None, stages=None) -> None:
    """
    Hard checks on a (ages, stages) fertility array for one period.

    Raises
    ------
    RateValueError
        At the first negative or non-finite entry.
    """
    fx = np.asarray(fx, dtype=float)
    if fx.ndim == 1:
        fx = fx[:, None]
    bad = ~np.isfinite(fx) | (fx < 0.0)
    if bad.any():
        a, s = np.argwhere(bad)[0]
        where = [f"age {int(a)}"]
        if period is not None:
            where.insert(0, f"period {period}")
        if stages is not None and len(stages) > 1:
            where.append(f"stage {stages[int(s)]}")
        raise RateValueError(
            f"Fertility rate {fx[a, s]!r} at {', '.join(where)} is negative or not finite."
        )


def fertility_plausibility(fx, ages, *, period=None) -> list:
    """
    Soft plausibility checks on age-specific fertility (summed over stages).

    Parameters
    ----------
    fx : (ages,) or (ages, stages) array of fertility rates.
    ages : integer ages aligned with `fx`.
    period : label for messages.

    Returns
    -------
    List of warning strings (also logged). Results are never altered.

    Checks
    ------
    1. Reproductive age range (10-55 years)
    2. Maximum single-age rate (~0.40 births per woman per year)
    3. Total fertility (0.3 - 10.0)
    """
    fx = np.asarray(fx, dtype=float)
    if fx.ndim == 2:
        fx = fx.sum(axis=1)
    ages = np.asarray(ages, dtype=int)
    tag = f"period {period}: " if period is not None else ""
    warnings_list = []

    outside = (ages < 10) | (ages > 55)
    if np.any(fx[outside] > 0.001):
        a = int(ages[outside][np.argmax(fx[outside])])
        warnings_list.append(
            f"{tag}fertility {fx[ages == a][0]:.4f} at age {a} is outside reproductive ages (10-55)."
        )

    max_fx = float(fx.max()) if fx.size else 0.0
    if max_fx > 0.40:
        warnings_list.append(
            f"{tag}maximum fertility rate {max_fx:.4f} exceeds the biological maximum (~0.40)."
        )

    tfr = float(fx.sum())
    if tfr > 10.0:
        warnings_list.append(f"{tag}TFR {tfr:.2f} exceeds the historical maximum (~9-10).")
    if 0 < tfr < 0.30:
        warnings_list.append(f"{tag}TFR {tfr:.2f} is implausibly low.")

    for w in warnings_list:
        logger.warning("[fertility] %s", w)
    return warnings_list
