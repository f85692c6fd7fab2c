# src/helpers.py
"""
General-purpose helpers shared across the kinship pipeline.

This module centralizes reusable utilities that are agnostic to kinship specifics:
- Age-label parsing and alignment of labelled rate vectors to an age grid.
- Liberal CSV header detection.
- List/string coercions for config values.

All functions are pure and side-effect free, facilitating reuse and unit testing.

IMPORTANT: This module does not import project-specific modules to avoid circular
dependencies. Callers must supply any configuration defaults they need.
"""
from __future__ import annotations

import re
import numpy as np
import pandas as pd

# ---------------------------------------------------------------------------
# Age scaffolding
# ---------------------------------------------------------------------------

_AGE_PAT = re.compile(r"(\d+)")


def _lower_age(label) -> int:
    """
    Lower bound of an age label.

    Conventions
    -----------
    - 'lo-hi' → lo
    - 'X+'    → X
    - 'k'     → k

    Raises
    ------
    ValueError
        If the label has no digits.
    """
    if isinstance(label, (int, np.integer)):
        return int(label)
    if isinstance(label, (float, np.floating)) and float(label).is_integer():
        return int(label)
    m = _AGE_PAT.search(str(label))
    if not m:
        raise ValueError(f"Cannot parse age label: {label!r}")
    return int(m.group(1))


def _age_index(labels) -> np.ndarray:
    """Vectorized `_lower_age` over an iterable of labels."""
    return np.array([_lower_age(x) for x in labels], dtype=int)


def _ridx(s_like, ages) -> pd.Series:
    """
    Normalize age labels and reindex a Series-like object onto an integer age grid.

    Steps
    -----
    - Parse labels to integer lower ages.
    - Aggregate duplicate ages by summation.
    - Reindex to `ages` with zeros for missing.

    Parameters
    ----------
    s_like : Mapping or pd.Series
        Age-labelled values.
    ages : Iterable[int]
        Target age grid.

    Returns
    -------
    pd.Series
        Values aligned to `ages` (float dtype).
    """
    s = pd.Series(s_like, copy=False)
    s.index = pd.Index(_age_index(s.index))
    if s.index.has_duplicates:
        s = s.groupby(level=0, sort=False).sum()
    return s.reindex(pd.Index(ages, dtype=int), fill_value=0.0).astype(float)


def _labels_outside(s_like, ages) -> list[int]:
    """Ages present in a labelled Series but absent from the grid."""
    s = pd.Series(s_like, copy=False)
    grid = set(int(a) for a in ages)
    return sorted(set(_age_index(s.index)) - grid)


# ---------------------------------------------------------------------------
# CSV helpers
# ---------------------------------------------------------------------------

def _find_col(df: pd.DataFrame, must_include: list[str]) -> str | None:
    """
    Return the first column name in `df` whose lowercase name contains *all*
    substrings in `must_include`. Used for robust header detection.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame with candidate columns.
    must_include : list[str]
        Substrings that must all appear in the lowercase column name.

    Returns
    -------
    str | None
        Original column name or None if not found.
    """
    low = {str(c).lower(): c for c in df.columns}
    for lc, orig in low.items():
        if all(s in lc for s in must_include):
            return orig
    return None


# ---------------------------------------------------------------------------
# List / string coercions for config-like values
# ---------------------------------------------------------------------------

def _coerce_list(x):
    """
    Coerce input to a flat list of strings.

    Rules
    -----
    - If `x` is a list or tuple, flatten one level; split any string items on ';' or ','.
    - If `x` is a string, split on ';' or ',' and strip.
    - Otherwise return None (caller should fall back to project defaults).

    Parameters
    ----------
    x : Any

    Returns
    -------
    list[str] | None
    """
    if isinstance(x, (list, tuple)):
        flat: list[str] = []
        for it in x:
            if isinstance(it, (list, tuple)):
                flat.extend(str(v) for v in it)
            elif isinstance(it, str) and (";" in it or "," in it):
                flat.extend(
                    [s.strip() for s in it.replace(",", ";").split(";") if s.strip()]
                )
            else:
                flat.append(str(it))
        return flat
    if isinstance(x, str):
        if ";" in x or "," in x:
            return [s.strip() for s in x.replace(",", ";").split(";") if s.strip()]
        return [x.strip()]
    return None


def _coerce_int_list(x) -> list[int] | None:
    """Like `_coerce_list`, but each item parsed as an int (years, cohorts)."""
    if isinstance(x, (int, np.integer)):
        return [int(x)]
    items = _coerce_list(x)
    if items is None:
        return None
    return [int(float(v)) for v in items]
