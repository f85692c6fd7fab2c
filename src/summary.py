# src/summary.py
"""
Reduce kin state matrices to the two result tables.

full     one row per (kin, Focal age, kin age, [kin stage], [kin sex], [year]):
         living, deaths in the step ending at that Focal age, cumulative deaths
         since Focal's birth (plus per-cause columns when causes are split).
summary  one row per (kin, Focal age, [kin sex], [year]): totals over kin age
         and stage, mean/sd age of living kin, mean age at death of kin lost so far.
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from kinship import AGGREGATE_KIN
from projections import StateGrid


@dataclass(frozen=True)
class KinSnapshot:
    """Selected Focal-age columns of one kin type (one calendar year when time-varying)."""
    kin: str
    age_focal: np.ndarray          # (m,)
    living: np.ndarray             # (states, m)
    dead: np.ndarray               # (causes, states, m)
    cum_dead: np.ndarray           # (causes, states, m)
    year: int | None = None


@dataclass(frozen=True)
class KinResult:
    kin_full: pd.DataFrame | None
    kin_summary: pd.DataFrame
    variant: object = None


def take_snapshots(states: dict, codes, columns, *, year=None) -> list:
    """
    Slice Focal-age `columns` out of solved `states` for each requested code.
    Aggregate codes (s, a, c, n) add up their components.
    """
    cols = np.asarray(columns, dtype=int)
    if cols.size == 0:
        return []
    out = []
    for code in codes:
        parts = AGGREGATE_KIN.get(code, (code,))
        living = sum(states[p].living[:, cols] for p in parts)
        dead = sum(states[p].dead[:, :, cols] for p in parts)
        cum = sum(states[p].cum_dead[:, :, cols] for p in parts)
        out.append(KinSnapshot(code, cols, living, dead, cum, year))
    return out


def _cause_columns(causes) -> bool:
    return causes is not None and len(causes) > 0


def full_table(snapshots, grid: StateGrid, *, ages, stages=None, causes=None) -> pd.DataFrame:
    """Long table at kin-age (x stage x sex) granularity."""
    ages = np.asarray(ages, dtype=int)
    age_kin = ages[grid.age_of_state()]
    stage_kin = np.asarray(stages, dtype=object)[grid.stage_of_state()] if stages is not None else None
    sex_kin = grid.sex_of_state() if len(grid.sexes) > 1 else None
    time_varying = any(s.year is not None for s in snapshots)

    frames = []
    for snap in snapshots:
        n, m = snap.living.shape
        cols = {
            "kin": np.full(n * m, snap.kin, dtype=object),
            "age_focal": np.repeat(snap.age_focal, n),
            "age_kin": np.tile(age_kin, m),
        }
        if stage_kin is not None:
            cols["stage_kin"] = np.tile(stage_kin, m)
        if sex_kin is not None:
            cols["sex_kin"] = np.tile(sex_kin, m)
        if time_varying:
            cols["year"] = np.full(n * m, snap.year, dtype=int)
            cols["cohort"] = cols["year"] - cols["age_focal"]
        cols["living"] = snap.living.T.ravel()
        cols["dead"] = snap.dead.sum(axis=0).T.ravel()
        cols["cum_dead"] = snap.cum_dead.sum(axis=0).T.ravel()
        if _cause_columns(causes):
            for i, cause in enumerate(causes):
                cols[f"dead_{cause}"] = snap.dead[i].T.ravel()
                cols[f"cum_dead_{cause}"] = snap.cum_dead[i].T.ravel()
        frames.append(pd.DataFrame(cols))
    if not frames:
        return pd.DataFrame()
    return pd.concat(frames, ignore_index=True)


def summary_table(snapshots, grid: StateGrid, *, ages, causes=None) -> pd.DataFrame:
    """
    Marginal table summed over kin age and stage, per kin sex.

    mean_age_lost is the death-weighted mean kin age at death, read off the
    cumulative deaths-by-age accumulator carried through the recursion.
    """
    ages = np.asarray(ages, dtype=float)
    age_kin = ages[grid.age_of_state()]
    two_sex = len(grid.sexes) > 1
    time_varying = any(s.year is not None for s in snapshots)

    frames = []
    for snap in snapshots:
        m = snap.age_focal.size
        dead_all = snap.dead.sum(axis=0)
        cum_all = snap.cum_dead.sum(axis=0)
        for sex in grid.sexes:
            sl = grid.sex_slice(sex)
            a = age_kin[sl][:, None]
            L = snap.living[sl]
            C = cum_all[sl]
            count_living = L.sum(axis=0)
            count_cum = C.sum(axis=0)
            with np.errstate(invalid="ignore", divide="ignore"):
                mean_age = np.where(count_living > 0, (L * a).sum(axis=0) / count_living, np.nan)
                var = np.where(count_living > 0, (L * a ** 2).sum(axis=0) / count_living - mean_age ** 2, np.nan)
                mean_lost = np.where(count_cum > 0, (C * a).sum(axis=0) / count_cum, np.nan)
            cols = {"kin": np.full(m, snap.kin, dtype=object), "age_focal": snap.age_focal}
            if two_sex:
                cols["sex_kin"] = np.full(m, sex, dtype=object)
            if time_varying:
                cols["year"] = np.full(m, snap.year, dtype=int)
                cols["cohort"] = cols["year"] - snap.age_focal
            cols["count_living"] = count_living
            cols["mean_age"] = mean_age
            cols["sd_age"] = np.sqrt(np.clip(var, 0.0, None))
            cols["count_dead"] = dead_all[sl].sum(axis=0)
            cols["count_cum_dead"] = count_cum
            cols["mean_age_lost"] = mean_lost
            if _cause_columns(causes):
                for i, cause in enumerate(causes):
                    cols[f"count_dead_{cause}"] = snap.dead[i][sl].sum(axis=0)
                    cols[f"count_cum_dead_{cause}"] = snap.cum_dead[i][sl].sum(axis=0)
            frames.append(pd.DataFrame(cols))
    if not frames:
        return pd.DataFrame()
    out = pd.concat(frames, ignore_index=True)
    keys = ["kin"] + (["sex_kin"] if two_sex else []) + (["cohort"] if time_varying else []) + ["age_focal"]
    return out.sort_values(keys, kind="mergesort").reset_index(drop=True)


def reduce_snapshots(snapshots, grid: StateGrid, *, ages, stages=None, causes=None,
                     summary_only: bool = False, variant=None) -> KinResult:
    """Build both tables (or only the summary) from snapshots."""
    summary = summary_table(snapshots, grid, ages=ages, causes=causes)
    full = None if summary_only else full_table(snapshots, grid, ages=ages, stages=stages, causes=causes)
    return KinResult(kin_full=full, kin_summary=summary, variant=variant)
