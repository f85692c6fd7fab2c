# src/kinship.py
"""
Kinship recursion engine.

Every kin type is a matrix over (kin state) x (age of Focal). Each kin type is
produced by one rule:

    seed    kin at Focal's birth, as another kin type of Focal's parent weighted
            by the parent's age at that birth (e.g. grandmothers are the mothers
            of Focal's mother);
    births  kin type (or Focal) whose fertility adds new members at each step
            (e.g. younger sisters are born to Focal's mother).

One step of Focal's age projects every kin type with U, adds the births, and
moves the deaths of the step into the per-cause death accumulators:

    living(x+1) = U living(x) + F source(x)
    deaths(x+1) = shares * q * living(x)
    cum(x+1)    = cum(x) + deaths(x+1)

The same step drives the time-invariant model (Focal ages in sequence, one
period) and the time-varying model (every Focal age at once, one calendar year
to the next).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from graphlib import TopologicalSorter

import numpy as np
from tqdm import tqdm

from errors import KinConfigError
from projections import PeriodOperators

logger = logging.getLogger(__name__)

FOCAL = "focal"
PARENTS = "parents"

KIN_CODES = ("d", "gd", "ggd", "m", "gm", "ggm", "os", "ys",
             "nos", "nys", "oa", "ya", "coa", "cya")

# Codes summing older and younger kin of the same generation.
AGGREGATE_KIN = {
    "s": ("os", "ys"),
    "a": ("oa", "ya"),
    "c": ("coa", "cya"),
    "n": ("nos", "nys"),
}

ALL_KIN = KIN_CODES + tuple(AGGREGATE_KIN)

# Descendants of a female ego: seeds for Focal's older siblings and their children.
_FOCAL_F = "_focal_f"
_D_F = "_d_f"
_GD_F = "_gd_f"


@dataclass(frozen=True)
class KinRule:
    code: str
    seed: str | None = None
    seed_from: str = "parents"   # "mother" or "parents"
    births: str | None = None
    lineage: str = "all"         # "all" -> F, "maternal" -> F_maternal


KIN_RULES = {
    "d": KinRule("d", births=FOCAL),
    "gd": KinRule("gd", births="d"),
    "ggd": KinRule("ggd", births="gd"),
    "m": KinRule("m", seed=PARENTS),
    "gm": KinRule("gm", seed="m"),
    "ggm": KinRule("ggm", seed="gm"),
    "os": KinRule("os", seed=_D_F, seed_from="mother"),
    "ys": KinRule("ys", births="m", lineage="maternal"),
    "nos": KinRule("nos", seed=_GD_F, seed_from="mother", births="os"),
    "nys": KinRule("nys", births="ys"),
    "oa": KinRule("oa", seed="os"),
    "ya": KinRule("ya", seed="ys", births="gm", lineage="maternal"),
    "coa": KinRule("coa", seed="nos", births="oa"),
    "cya": KinRule("cya", seed="nys", births="ya"),
    _D_F: KinRule(_D_F, births=_FOCAL_F),
    _GD_F: KinRule(_GD_F, births=_D_F),
}


@dataclass(frozen=True)
class KinPlan:
    """Evaluation order of the kin types needed for one request."""
    order: tuple
    rules: dict
    focal_sex: dict     # focal pseudo-kin -> sex of that ego
    requested: tuple


@dataclass
class KinState:
    living: np.ndarray               # (states, focal ages)
    dead: np.ndarray | None = None   # (causes, states, focal ages), deaths in the step ending at each age
    cum_dead: np.ndarray | None = None


def check_kin_codes(codes) -> tuple:
    """Validate requested kin codes; None means every code."""
    if codes is None:
        return KIN_CODES
    codes = tuple(str(c).strip() for c in codes)
    unknown = [c for c in codes if c not in ALL_KIN]
    if unknown:
        raise KinConfigError(
            f"Unknown kin code(s) {unknown}; valid codes are {', '.join(ALL_KIN)}."
        )
    return codes


def plan_kin(output_kin=None, *, focal_sex: str = "f", two_sex: bool = False) -> KinPlan:
    """
    Resolve the kin types (and hidden helper lineages) needed for `output_kin`
    and order them so every rule's seed and births come first.
    """
    requested = check_kin_codes(output_kin)

    # A female Focal's own descendants double as her mother's.
    if two_sex and focal_sex == "m":
        aliases = {}
        focal_sex_map = {FOCAL: "m", _FOCAL_F: "f"}
    else:
        aliases = {_FOCAL_F: FOCAL, _D_F: "d", _GD_F: "gd"}
        focal_sex_map = {FOCAL: focal_sex}

    def _alias(code):
        return aliases.get(code, code)

    rules = {}
    for code, rule in KIN_RULES.items():
        if code in aliases:
            continue
        rules[code] = replace(
            rule,
            seed=_alias(rule.seed) if rule.seed else None,
            births=_alias(rule.births) if rule.births else None,
        )

    stack = []
    for code in requested:
        stack.extend(AGGREGATE_KIN.get(code, (code,)))
    graph = {}
    while stack:
        code = stack.pop()
        if code in graph:
            continue
        deps = set()
        if code in rules:
            rule = rules[code]
            if rule.seed and rule.seed != PARENTS:
                deps.add(rule.seed)
            if rule.births:
                deps.add(rule.births)
        graph[code] = deps
        stack.extend(deps)

    order = tuple(TopologicalSorter(graph).static_order())
    logger.debug("Kin evaluation order: %s", order)
    return KinPlan(
        order=order,
        rules=rules,
        focal_sex={k: v for k, v in focal_sex_map.items() if k in graph},
        requested=requested,
    )


# ---------------------------------------------------------------------------
# One projection step
# ---------------------------------------------------------------------------

def _advance(ops: PeriodOperators, rule: KinRule, living: np.ndarray, source: np.ndarray | None):
    """Project kin columns one step; return (living next, deaths during the step)."""
    nxt = ops.U @ living
    if source is not None:
        fert = ops.F_maternal if rule.lineage == "maternal" else ops.F
        nxt = nxt + fert @ source
    deaths = ops.shares[:, :, None] * (ops.q[:, None] * living)[None, :, :]
    return np.asarray(nxt), deaths


def _advance_focal(ops: PeriodOperators, living: np.ndarray) -> np.ndarray:
    """Carry Focal's state distribution forward, conditional on Focal surviving."""
    nxt = np.asarray(ops.U @ living)
    total = nxt.sum(axis=0)
    aged = np.asarray(ops.aging @ living)
    safe = np.where(total > 0, total, 1.0)
    return np.where(total > 0, nxt / safe, aged)


def _parent_weights(ops: PeriodOperators, pi: np.ndarray) -> dict:
    """Age-marginal weights of mothers, and of mothers plus fathers."""
    grid = ops.grid
    by_sex = {
        sex: pi[grid.sex_slice(sex)].reshape(grid.n_ages, grid.n_stages).sum(axis=1)
        for sex in grid.sexes
    }
    return {"mother": by_sex["f"], "parents": sum(by_sex.values())}


def _focal_at_birth(ops: PeriodOperators, pi: np.ndarray, sex: str) -> np.ndarray:
    """Focal is born at age 0, in stages drawn by H from the mother's stage."""
    grid = ops.grid
    mother_stage = pi[grid.sex_slice("f")].reshape(grid.n_ages, grid.n_stages).sum(axis=0)
    stage = ops.H @ mother_stage
    stage = stage / stage.sum()
    out = np.zeros(grid.size)
    sl = grid.sex_slice(sex)
    out[sl.start:sl.start + grid.n_stages] = stage
    return out


def _seed(rule: KinRule, states: dict, weights: dict, pi: np.ndarray) -> np.ndarray:
    if rule.seed == PARENTS:
        return pi.copy()
    return states[rule.seed].living @ weights[rule.seed_from]


# ---------------------------------------------------------------------------
# Solvers
# ---------------------------------------------------------------------------

def solve_time_invariant(ops: PeriodOperators, pi: np.ndarray, plan: KinPlan) -> dict:
    """
    Kin of Focal at every age 0..omega under constant rates.

    Returns
    -------
    dict code -> KinState, including Focal and any helper lineages.
    """
    grid = ops.grid
    n, X = grid.size, grid.n_ages
    k = ops.shares.shape[0]
    weights = _parent_weights(ops, pi)
    states = {}
    for code in plan.order:
        if code in plan.focal_sex:
            living = np.zeros((n, X))
            living[:, 0] = _focal_at_birth(ops, pi, plan.focal_sex[code])
            for x in range(X - 1):
                living[:, x + 1:x + 2] = _advance_focal(ops, living[:, x:x + 1])
            states[code] = KinState(living)
            continue

        rule = plan.rules[code]
        living = np.zeros((n, X))
        dead = np.zeros((k, n, X))
        cum = np.zeros((k, n, X))
        if rule.seed:
            living[:, 0] = _seed(rule, states, weights, pi)
        source = states[rule.births].living if rule.births else None
        for x in range(X - 1):
            nxt, deaths = _advance(
                ops, rule, living[:, x:x + 1],
                None if source is None else source[:, x:x + 1],
            )
            living[:, x + 1:x + 2] = nxt
            dead[:, :, x + 1:x + 2] = deaths
            cum[:, :, x + 1] = cum[:, :, x] + deaths[:, :, 0]
        states[code] = KinState(living, dead, cum)
    return states


def advance_year(prev: dict, ops_prev: PeriodOperators, ops_now: PeriodOperators,
                 pi_now: np.ndarray, plan: KinPlan) -> dict:
    """
    Kin of every Focal age in year t+1 from year t.

    Focal aged x in year t becomes x+1 under the rates of year t (`ops_prev`);
    Focal born in year t+1 is seeded from year t+1's kin and parent
    distribution (`ops_now`, `pi_now`).
    """
    grid = ops_now.grid
    n, X = grid.size, grid.n_ages
    k = ops_prev.shares.shape[0]
    weights = _parent_weights(ops_now, pi_now)
    states = {}
    for code in plan.order:
        old = prev[code]
        if code in plan.focal_sex:
            living = np.empty((n, X))
            living[:, 0] = _focal_at_birth(ops_now, pi_now, plan.focal_sex[code])
            living[:, 1:] = _advance_focal(ops_prev, old.living[:, :-1])
            states[code] = KinState(living)
            continue

        rule = plan.rules[code]
        source = prev[rule.births].living[:, :-1] if rule.births else None
        nxt, deaths = _advance(ops_prev, rule, old.living[:, :-1], source)
        living = np.zeros((n, X))
        dead = np.zeros((k, n, X))
        cum = np.zeros((k, n, X))
        living[:, 1:] = nxt
        dead[:, :, 1:] = deaths
        cum[:, :, 1:] = old.cum_dead[:, :, :-1] + deaths
        if rule.seed:
            living[:, 0] = _seed(rule, states, weights, pi_now)
        states[code] = KinState(living, dead, cum)
    return states


def iter_time_varying(ops_for_year, pi_for_ops, plan: KinPlan, years, *, progress: bool = False):
    """
    Yield (year, states) for consecutive `years`.

    The first year starts from the time-invariant solution of its own rates.
    Only the previous year's state and operators are kept.

    Parameters
    ----------
    ops_for_year : callable year -> PeriodOperators.
    pi_for_ops : callable PeriodOperators -> parent distribution.
    """
    years = list(years)
    ops = ops_for_year(years[0])
    states = solve_time_invariant(ops, pi_for_ops(ops), plan)
    yield years[0], states
    for year in tqdm(years[1:], desc="kinship", unit="yr", disable=not progress):
        ops_next = ops_for_year(year)
        states = advance_year(states, ops, ops_next, pi_for_ops(ops_next), plan)
        yield year, states
        ops = ops_next
