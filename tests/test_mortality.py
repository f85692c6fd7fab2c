# tests/test_mortality.py
"""
Test suite for mortality.py

Tests cover:
- Conversions from lx, qx and mx to one-year survival
- Hard validation of survival probabilities
- Life expectancy diagnostic
"""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from errors import KinshipError, RateValueError
from mortality import (
    survival_from_lx,
    survival_from_qx,
    survival_from_mx,
    validate_survival,
    life_expectancy,
)


class TestSurvivalFromLx:
    """Test p_x = l_{x+1} / l_x"""

    def test_basic_ratio(self):
        """Test survival as the ratio of successive lx"""
        px = survival_from_lx([100000, 99000, 98010, 0])
        assert px[0] == pytest.approx(0.99)
        assert px[1] == pytest.approx(0.99)
        assert px[2] == 0.0

    def test_closing_age_is_zero(self):
        """Test that the closing age survives with probability zero"""
        px = survival_from_lx([1.0, 0.5, 0.25])
        assert px[-1] == 0.0

    def test_zero_lx_gives_zero(self):
        """Test that ages with zero survivors get zero survival"""
        px = survival_from_lx([1.0, 0.0, 0.0])
        assert np.all(px[1:] == 0.0)

    def test_rejects_empty(self):
        """Test that an empty lx vector is rejected"""
        with pytest.raises(ValueError):
            survival_from_lx([])


class TestSurvivalFromQxMx:
    """Test qx and mx conversions"""

    def test_qx_complement(self):
        """Test survival as the complement of qx"""
        np.testing.assert_allclose(survival_from_qx([0.1, 0.5, 1.0]), [0.9, 0.5, 0.0])

    def test_qx_clipped(self):
        """Test clipping of qx outside [0, 1]"""
        px = survival_from_qx([-0.1, 1.2])
        assert px.min() >= 0.0 and px.max() <= 1.0

    def test_mx_constant_force(self):
        """Test survival from a constant force of mortality"""
        assert survival_from_mx([0.1])[0] == pytest.approx(np.exp(-0.1))

    def test_mx_interval_width(self):
        """Test that interval width scales the mx exponent"""
        assert survival_from_mx([0.1], n=5)[0] == pytest.approx(np.exp(-0.5))

    def test_mx_negative_treated_as_zero(self):
        """Test that negative mx is treated as zero"""
        assert survival_from_mx([-1.0])[0] == 1.0


class TestValidateSurvival:
    """Test hard errors on survival inputs"""

    def test_valid_passes(self):
        """Test that valid survival passes silently"""
        validate_survival(np.array([0.99, 0.98, 0.0]))

    def test_above_one(self):
        """Test that survival above one is rejected"""
        with pytest.raises(RateValueError, match="age 1"):
            validate_survival(np.array([0.9, 1.2, 0.0]))

    def test_negative(self):
        """Test that negative survival is rejected"""
        with pytest.raises(RateValueError):
            validate_survival(np.array([-0.1, 0.5]))

    def test_nan_names_period_and_stage(self):
        """Test that NaN errors name the period and stage"""
        px = np.full((3, 2), 0.9)
        px[2, 1] = np.nan
        with pytest.raises(RateValueError, match="period 2001.*stage b"):
            validate_survival(px, period=2001, stages=('a', 'b'))

    def test_is_value_error(self):
        """Test that survival errors are ValueErrors"""
        with pytest.raises(ValueError):
            validate_survival(np.array([np.inf]))
        assert issubclass(RateValueError, KinshipError)


class TestLifeExpectancy:
    """Test e0 diagnostic"""

    def test_immediate_death(self):
        """Test life expectancy when everyone dies at once"""
        # everyone dies in the first (open) interval
        assert 0.0 < life_expectancy([0.0]) < 0.1

    def test_longer_survival_raises_e0(self):
        """Test that higher survival raises life expectancy"""
        low = life_expectancy(np.full(50, 0.9))
        high = life_expectancy(np.full(50, 0.99))
        assert high > low > 0

    def test_immortal_closing_age(self):
        """Test life expectancy with an open closing age that never dies"""
        assert np.isinf(life_expectancy([1.0, 1.0]))
