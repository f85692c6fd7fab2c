# src/projections.py
"""
Per-period projection operators for kinship models.

For each period the builder assembles, on the (sex x age x stage) state grid:
  U           survival and ageing, with stage moves among survivors
  F           births from every parent, placed at age 0 (descendant lineages)
  F_maternal  births counted through mothers only (ancestor lineages)
  aging       U with survival set to 1, used to carry Focal forward
  q           probability of dying during the step, per state
  shares      split of q among causes of death, per state

States inside one sex are ordered age-major (index = age * S + stage); in
two-sex models the female block precedes the male block.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np
from scipy import sparse

from errors import KinConfigError, RateValueError
from rates import PeriodRates
from twosex import death_shares

logger = logging.getLogger(__name__)

SEX_LABELS = ("f", "m")


@dataclass(frozen=True)
class StateGrid:
    n_ages: int
    n_stages: int
    sexes: tuple

    @property
    def block(self) -> int:
        return self.n_ages * self.n_stages

    @property
    def size(self) -> int:
        return self.block * len(self.sexes)

    def sex_slice(self, sex: str) -> slice:
        i = self.sexes.index(sex)
        return slice(i * self.block, (i + 1) * self.block)

    def age_of_state(self) -> np.ndarray:
        return np.tile(np.repeat(np.arange(self.n_ages), self.n_stages), len(self.sexes))

    def stage_of_state(self) -> np.ndarray:
        return np.tile(np.arange(self.n_stages), self.n_ages * len(self.sexes))

    def sex_of_state(self) -> np.ndarray:
        return np.repeat(np.array(self.sexes), self.block)


@dataclass(frozen=True)
class PeriodOperators:
    year: int | None
    grid: StateGrid
    U: sparse.csr_matrix
    F: sparse.csr_matrix
    F_maternal: sparse.csr_matrix
    aging: sparse.csr_matrix
    H: np.ndarray
    q: np.ndarray
    shares: np.ndarray
    birth_female: float


# ---------------------------------------------------------------------------
# Single-sex blocks
# ---------------------------------------------------------------------------

def survival_matrix(px: np.ndarray, tx: np.ndarray) -> sparse.csr_matrix:
    """
    Ageing operator for one sex: U[(a+1, s'), (a, s)] = p[a, s] * T_a[s', s].

    The closing age is an open interval: survivors stay at age omega.
    """
    A, S = px.shape
    rows, cols, vals = [], [], []
    for a in range(A):
        dest = min(a + 1, A - 1)
        blk = tx[a] * px[a][None, :]
        r, c = np.nonzero(blk)
        rows.append(dest * S + r)
        cols.append(a * S + c)
        vals.append(blk[r, c])
    return sparse.csr_matrix(
        (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
        shape=(A * S, A * S),
    )


def fertility_matrix(fx: np.ndarray, H: np.ndarray) -> sparse.csr_matrix:
    """
    Birth operator for one sex of parent: F[(0, s'), (a, s)] = f[a, s] * H[s', s].
    """
    A, S = fx.shape
    rows, cols, vals = [], [], []
    for a in range(A):
        blk = H * fx[a][None, :]
        r, c = np.nonzero(blk)
        rows.append(r)
        cols.append(a * S + c)
        vals.append(blk[r, c])
    return sparse.csr_matrix(
        (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
        shape=(A * S, A * S),
    )


# ---------------------------------------------------------------------------
# Period operators
# ---------------------------------------------------------------------------

def build_period_operators(
    female: PeriodRates,
    male: PeriodRates | None = None,
    *,
    birth_female: float = 1.0,
    hazards_f: np.ndarray | None = None,
    hazards_m: np.ndarray | None = None,
) -> PeriodOperators:
    """
    Assemble U, F, F_maternal and the death split for one period.

    Parameters
    ----------
    female : female (or one-sex) rates.
    male : male rates; None for a one-sex model.
    birth_female : share of births that are female.
    hazards_f, hazards_m : optional (causes, ages) cause-specific hazards per sex.

    Notes
    -----
    One-sex:  F = alpha * F_f.
    Two-sex:  U = diag(U_f, U_m);
              F = [[alpha F_f, alpha F_m], [(1-alpha) F_f, (1-alpha) F_m]];
              F_maternal keeps the female-parent columns only.
    """
    alpha = float(birth_female)
    if not np.isfinite(alpha) or not 0.0 <= alpha <= 1.0:
        raise KinConfigError(f"birth_female must lie in [0, 1], got {birth_female!r}.")

    A, S = female.n_ages, female.n_stages
    U_f = survival_matrix(female.survival, female.transitions)
    A_f = survival_matrix(np.ones_like(female.survival), female.transitions)
    F_f = fertility_matrix(female.fertility, female.birth_stage)

    if male is None:
        grid = StateGrid(A, S, SEX_LABELS[:1])
        U = U_f
        aging = A_f
        F = (alpha * F_f).tocsr()
        F_maternal = F
    else:
        grid = StateGrid(A, S, SEX_LABELS)
        U_m = survival_matrix(male.survival, male.transitions)
        A_m = survival_matrix(np.ones_like(male.survival), male.transitions)
        F_m = fertility_matrix(male.fertility, male.birth_stage)
        zero = sparse.csr_matrix((A * S, A * S))
        U = sparse.block_diag((U_f, U_m), format="csr")
        aging = sparse.block_diag((A_f, A_m), format="csr")
        F = sparse.bmat(
            [[alpha * F_f, alpha * F_m], [(1.0 - alpha) * F_f, (1.0 - alpha) * F_m]],
            format="csr",
        )
        F_maternal = sparse.bmat(
            [[alpha * F_f, zero], [(1.0 - alpha) * F_f, zero]],
            format="csr",
        )

    q = np.clip(1.0 - np.asarray(U.sum(axis=0)).ravel(), 0.0, 1.0)

    if hazards_f is None and hazards_m is None:
        shares = np.ones((1, grid.size))
    else:
        blocks = []
        for sex, hz in zip(grid.sexes, (hazards_f, hazards_m)):
            if hz is None:
                raise KinConfigError(f"Cause-specific hazards missing for sex {sex!r}.")
            blocks.append(death_shares(hz, q[grid.sex_slice(sex)], S, period=female.year, sex=sex))
        n_causes = {b.shape[0] for b in blocks}
        if len(n_causes) != 1:
            raise KinConfigError("Both sexes must use the same causes of death.")
        shares = np.concatenate(blocks, axis=1)

    return PeriodOperators(
        year=female.year,
        grid=grid,
        U=U,
        F=F,
        F_maternal=F_maternal,
        aging=aging,
        H=np.asarray(female.birth_stage),
        q=q,
        shares=shares,
        birth_female=alpha,
    )


# ---------------------------------------------------------------------------
# Parents' age (x stage) distribution at childbearing
# ---------------------------------------------------------------------------

def _normalised(v: np.ndarray, what: str) -> np.ndarray:
    v = np.clip(np.asarray(v, dtype=float), 0.0, None)
    s = float(v.sum())
    if not np.isfinite(s) or s <= 0.0:
        raise RateValueError(f"{what} has no positive mass; check fertility and survival inputs.")
    return v / s


def stable_parent_distribution(ops: PeriodOperators) -> np.ndarray:
    """
    Distribution of mothers' (and fathers') states at the birth of a child in the
    stable population implied by the period's rates.

    pi_f ∝ births_f ⊙ w_f with w_f the dominant eigenvector of the female
    projection U_ff + F_ff. Fathers: (λI - U_mm) w_m = F_mf w_f, pi_m ∝ births_m ⊙ w_m.
    Only ages up to the last fertile age enter the eigenproblem.
    """
    grid = ops.grid
    A, S, B = grid.n_ages, grid.n_stages, grid.block
    births = np.asarray(ops.F.sum(axis=0)).ravel()
    fertile = births.reshape(len(grid.sexes), A, S).sum(axis=(0, 2)) > 0
    if not fertile.any():
        raise RateValueError(f"Period {ops.year}: fertility is zero at every age.")
    keep = (int(np.flatnonzero(fertile)[-1]) + 1) * S

    proj = (ops.U[:keep, :keep] + ops.F[:keep, :keep]).toarray()
    vals, vecs = np.linalg.eig(proj)
    k = int(np.argmax(vals.real))
    lam = float(vals[k].real)
    w = np.real(vecs[:, k])
    if w.sum() < 0:
        w = -w
    pi = np.zeros(grid.size)
    pi[:keep] = _normalised(births[:keep] * np.clip(w, 0.0, None), "Mothers' age distribution")

    if len(grid.sexes) == 2:
        if lam <= 0.0:
            raise RateValueError(f"Period {ops.year}: growth rate is not positive.")
        U_mm = ops.U[B:B + keep, B:B + keep].toarray()
        F_mf = ops.F[B:B + keep, :keep].toarray()
        w_m = np.linalg.solve(lam * np.eye(keep) - U_mm, F_mf @ np.clip(w, 0.0, None))
        pi[B:B + keep] = _normalised(births[B:B + keep] * np.clip(w_m, 0.0, None),
                                     "Fathers' age distribution")
    logger.debug("Period %s: stable growth rate %.6f", ops.year, lam)
    return pi


def _one_parent(value, grid: StateGrid, sex: str) -> np.ndarray:
    A, S = grid.n_ages, grid.n_stages
    if isinstance(value, (int, np.integer)):
        if not 0 <= int(value) < A:
            raise KinConfigError(f"Parent age {value} outside 0..{A - 1}.")
        v = np.zeros(A * S)
        v[int(value) * S] = 1.0
        return v
    arr = np.asarray(value, dtype=float)
    if arr.shape == (A, S):
        arr = arr.ravel()
    if arr.shape != (A * S,):
        raise KinConfigError(
            f"Parent distribution for sex {sex!r} has shape {arr.shape}; expected ({A * S},)."
        )
    if not np.all(np.isfinite(arr)) or np.any(arr < 0):
        raise RateValueError(f"Parent distribution for sex {sex!r} has negative or non-finite entries.")
    return arr


def parent_distribution(ops: PeriodOperators, pi=None) -> np.ndarray:
    """
    Full-state parents' distribution, each sex block summing to 1.

    `pi` may be None (stable population), an age (one-hot, first stage), an
    array over the states of one sex, or for two-sex models a mapping
    {"f": ..., "m": ...}.
    """
    if pi is None:
        return stable_parent_distribution(ops)
    grid = ops.grid
    out = np.zeros(grid.size)
    if isinstance(pi, Mapping):
        missing = [s for s in grid.sexes if s not in pi]
        if missing:
            raise KinConfigError(f"Parent distribution missing for sex {missing}.")
        parts = {s: pi[s] for s in grid.sexes}
    else:
        if len(grid.sexes) == 2:
            raise KinConfigError("Two-sex models need pi as a mapping {'f': ..., 'm': ...}.")
        parts = {"f": pi}
    for sex, value in parts.items():
        out[grid.sex_slice(sex)] = _normalised(_one_parent(value, grid, sex),
                                               f"Parent distribution ({sex})")
    return out
