# tests/test_projections.py
"""
Test suite for projections.py module.

Tests cover:
- State grid indexing (sex x age x stage)
- Survival / ageing operator U, open closing age
- Fertility operator F and the two-sex block layout
- Death probabilities and cause shares
- Stable and explicit parents' age distributions
"""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from errors import KinConfigError, RateValueError
from projections import (
    StateGrid,
    survival_matrix,
    fertility_matrix,
    build_period_operators,
    stable_parent_distribution,
    parent_distribution,
)
from rates import prepare_rates


def _rates(px=None, fx=None):
    px = np.array([0.95, 0.95, 0.9, 0.9, 0.6, 0.0]) if px is None else px
    fx = np.array([0.0, 0.0, 0.5, 0.5, 0.0, 0.0]) if fx is None else fx
    return prepare_rates(px, fx).periods[0]


# ============================================================================
# State grid
# ============================================================================

class TestStateGrid:
    """Test state indexing"""

    def test_sizes(self):
        """Test block and total state counts"""
        g = StateGrid(4, 3, ("f", "m"))
        assert g.block == 12
        assert g.size == 24

    def test_female_block_first(self):
        """Test that the female block comes first"""
        g = StateGrid(4, 3, ("f", "m"))
        assert g.sex_slice("f") == slice(0, 12)
        assert g.sex_slice("m") == slice(12, 24)

    def test_age_major_order(self):
        """Test age-major ordering inside a sex block"""
        g = StateGrid(3, 2, ("f",))
        assert g.age_of_state().tolist() == [0, 0, 1, 1, 2, 2]
        assert g.stage_of_state().tolist() == [0, 1, 0, 1, 0, 1]
        assert g.sex_of_state().tolist() == ["f"] * 6


# ============================================================================
# Single-sex blocks
# ============================================================================

class TestSurvivalMatrix:
    """Test U for one sex"""

    def test_subdiagonal(self):
        """Test survival on the subdiagonal"""
        px = np.array([[0.9], [0.8], [0.5]])
        U = survival_matrix(px, np.ones((3, 1, 1))).toarray()
        assert U[1, 0] == pytest.approx(0.9)
        assert U[2, 1] == pytest.approx(0.8)
        assert U[0].sum() == 0.0

    def test_open_closing_age(self):
        """Test that the closing age stays in place"""
        px = np.array([[0.9], [0.8], [0.5]])
        U = survival_matrix(px, np.ones((3, 1, 1))).toarray()
        # survivors of the last age stay there
        assert U[2, 2] == pytest.approx(0.5)

    def test_stage_moves_among_survivors(self):
        """Test stage moves applied to survivors"""
        px = np.full((2, 2), 0.9)
        T = np.zeros((2, 2, 2))
        T[:, 0, 0], T[:, 1, 0], T[:, 1, 1] = 0.75, 0.25, 1.0
        U = survival_matrix(px, T).toarray()
        # from (age 0, stage 0) to (age 1, stage 1)
        assert U[3, 0] == pytest.approx(0.9 * 0.25)
        np.testing.assert_allclose(U.sum(axis=0), 0.9)


class TestFertilityMatrix:
    """Test F for one sex of parent"""

    def test_births_at_age_zero(self):
        """Test that births land at age zero"""
        fx = np.array([[0.0], [0.4], [0.1]])
        F = fertility_matrix(fx, np.ones((1, 1))).toarray()
        np.testing.assert_allclose(F[0], [0.0, 0.4, 0.1])
        assert F[1:].sum() == 0.0

    def test_newborn_stage(self):
        """Test newborn stage by mother's stage"""
        fx = np.array([[0.0, 0.0], [0.4, 0.2]])
        H = np.array([[1.0, 0.5], [0.0, 0.5]])
        F = fertility_matrix(fx, H).toarray()
        # mothers at (age 1, stage 1) send half their births to stage 0
        assert F[0, 3] == pytest.approx(0.1)
        assert F[1, 3] == pytest.approx(0.1)


# ============================================================================
# Period operators
# ============================================================================

class TestBuildPeriodOperators:
    """Test one- and two-sex assembly"""

    def test_one_sex_scaling(self):
        """Test scaling births by the female share"""
        ops = build_period_operators(_rates(), birth_female=0.5)
        assert ops.grid.sexes == ("f",)
        assert ops.F.toarray()[0, 2] == pytest.approx(0.25)
        assert ops.F_maternal is ops.F

    def test_one_sex_default_counts_daughters(self):
        """Test that one-sex fertility counts daughters by default"""
        ops = build_period_operators(_rates())
        assert ops.F.toarray()[0, 2] == pytest.approx(0.5)

    def test_two_sex_blocks(self):
        """Test female and male birth blocks"""
        fm = np.array([0.0, 0.0, 0.0, 0.4, 0.4, 0.0])
        ops = build_period_operators(_rates(), _rates(fx=fm), birth_female=0.4)
        F = ops.F.toarray()
        assert ops.grid.size == 12
        assert F[0, 2] == pytest.approx(0.4 * 0.5)      # daughters of mothers
        assert F[6, 2] == pytest.approx(0.6 * 0.5)      # sons of mothers
        assert F[0, 6 + 3] == pytest.approx(0.4 * 0.4)  # daughters of fathers
        assert F[6, 6 + 3] == pytest.approx(0.6 * 0.4)  # sons of fathers

    def test_maternal_lineage_drops_fathers(self):
        """Test that the maternal operator drops fathers' births"""
        ops = build_period_operators(_rates(), _rates(), birth_female=0.5)
        Fm = ops.F_maternal.toarray()
        assert Fm[:, 6:].sum() == 0.0
        np.testing.assert_allclose(Fm[:, :6], ops.F.toarray()[:, :6])

    def test_block_diagonal_survival(self):
        """Test that survival is block diagonal by sex"""
        ops = build_period_operators(_rates(), _rates(), birth_female=0.5)
        U = ops.U.toarray()
        assert U[:6, 6:].sum() == 0.0 and U[6:, :6].sum() == 0.0

    def test_death_probabilities(self):
        """Test death probabilities as one minus survival"""
        ops = build_period_operators(_rates())
        np.testing.assert_allclose(ops.q, [0.05, 0.05, 0.1, 0.1, 0.4, 1.0])
        np.testing.assert_allclose(ops.shares, np.ones((1, 6)))

    def test_cause_shares_sum_to_one(self):
        """Test that cause shares sum to one per state"""
        hz = np.array([[0.01] * 6, [0.03] * 6])
        ops = build_period_operators(_rates(), hazards_f=hz)
        assert ops.shares.shape == (2, 6)
        np.testing.assert_allclose(ops.shares.sum(axis=0), 1.0)
        assert ops.shares[1, 0] == pytest.approx(0.75)

    def test_cause_hazards_needed_for_both_sexes(self):
        """Test that cause hazards must be given for both sexes"""
        hz = np.ones((2, 6))
        with pytest.raises(KinConfigError):
            build_period_operators(_rates(), _rates(), hazards_f=hz)

    @pytest.mark.parametrize("alpha", [-0.1, 1.5, np.nan])
    def test_birth_female_range(self, alpha):
        """Test that the female share must lie in [0, 1]"""
        with pytest.raises(KinConfigError):
            build_period_operators(_rates(), birth_female=alpha)


# ============================================================================
# Parents' age distribution
# ============================================================================

class TestParentDistribution:
    """Test stable and explicit distributions"""

    def test_stable_sums_to_one_on_fertile_ages(self):
        """Test that the stable distribution sums to one on fertile ages"""
        ops = build_period_operators(_rates())
        pi = stable_parent_distribution(ops)
        assert pi.sum() == pytest.approx(1.0)
        assert pi[[0, 1, 4, 5]].sum() == 0.0
        assert np.all(pi >= 0)

    def test_stable_single_fertile_age(self):
        """Test the stable distribution with one fertile age"""
        px = np.ones(6)
        fx = np.array([0.0, 0.0, 0.0, 1.0, 0.0, 0.0])
        pi = stable_parent_distribution(build_period_operators(_rates(px, fx)))
        np.testing.assert_allclose(pi, [0, 0, 0, 1, 0, 0], atol=1e-10)

    def test_stable_two_sex(self):
        """Test stable distributions for mothers and fathers"""
        ops = build_period_operators(_rates(), _rates(), birth_female=0.5)
        pi = stable_parent_distribution(ops)
        assert pi[:6].sum() == pytest.approx(1.0)
        assert pi[6:].sum() == pytest.approx(1.0)
        # identical rates give identical mothers and fathers
        np.testing.assert_allclose(pi[:6], pi[6:], atol=1e-10)

    def test_no_fertility(self):
        """Test that a schedule without births is rejected"""
        ops = build_period_operators(_rates(fx=np.zeros(6)))
        with pytest.raises(RateValueError):
            stable_parent_distribution(ops)

    def test_explicit_age(self):
        """Test a single parent age"""
        ops = build_period_operators(_rates())
        np.testing.assert_array_equal(parent_distribution(ops, 3), [0, 0, 0, 1, 0, 0])

    def test_explicit_array_normalised(self):
        """Test normalising an explicit distribution"""
        ops = build_period_operators(_rates())
        pi = parent_distribution(ops, [0, 0, 1, 3, 0, 0])
        np.testing.assert_allclose(pi, [0, 0, 0.25, 0.75, 0, 0])

    def test_two_sex_mapping(self):
        """Test separate mother and father ages"""
        ops = build_period_operators(_rates(), _rates(), birth_female=0.5)
        pi = parent_distribution(ops, {"f": 2, "m": 3})
        assert pi[2] == 1.0 and pi[6 + 3] == 1.0

    def test_two_sex_needs_mapping(self):
        """Test that two-sex models need a distribution per sex"""
        ops = build_period_operators(_rates(), _rates(), birth_female=0.5)
        with pytest.raises(KinConfigError):
            parent_distribution(ops, 2)

    def test_age_out_of_range(self):
        """Test that ages beyond the grid are rejected"""
        ops = build_period_operators(_rates())
        with pytest.raises(KinConfigError):
            parent_distribution(ops, 9)

    def test_negative_entries(self):
        """Test that negative weights are rejected"""
        ops = build_period_operators(_rates())
        with pytest.raises(RateValueError):
            parent_distribution(ops, [0, 0, -1, 2, 0, 0])
