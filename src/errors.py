# src/errors.py
"""
Error taxonomy for kinship computations.

All errors derive from ValueError so callers catching the builtin keep working.

- RateShapeError : input-shape problems (mismatched age/stage grids, period
                   sequences too short for the requested years, ragged stages).
- RateValueError : input-value problems (negative or non-finite rates,
                   survival outside [0, 1], non-stochastic stage columns).
- KinConfigError : configuration problems (unknown kin code, output year or
                   cohort outside the supplied span, contradictory options).
"""


class KinshipError(ValueError):
    """Base class for every error raised by the kinship core."""


class RateShapeError(KinshipError):
    pass


class RateValueError(KinshipError):
    pass


class KinConfigError(KinshipError):
    pass
