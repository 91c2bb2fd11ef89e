"""Tests for the seasonal admission-cycle calendar."""

import pytest

from ujuz_admission.config import DEFAULT_CALIBRATION, CalibrationProfile
from ujuz_admission.scoring.seasonal import (
    effective_horizon,
    monthly_multiplier,
    months_ahead,
    seasonal_factor,
)


class TestMonthlyMultiplier:
    def test_march_peak(self):
        assert monthly_multiplier(3) == 1.50

    def test_known_months(self):
        assert monthly_multiplier(1) == 1.10
        assert monthly_multiplier(2) == 1.30
        assert monthly_multiplier(6) == 0.95
        assert monthly_multiplier(12) == 1.15

    def test_july_is_global_minimum(self):
        assert monthly_multiplier(7) == DEFAULT_CALIBRATION.min_seasonal_multiplier == 0.90

    def test_all_months_positive(self):
        assert all(monthly_multiplier(m) > 0 for m in range(1, 13))

    @pytest.mark.parametrize("month", [0, 13, -1])
    def test_out_of_range_raises(self, month):
        with pytest.raises(ValueError):
            monthly_multiplier(month)


class TestMonthsAhead:
    def test_wraps_december(self):
        assert months_ahead(4, 11) == [11, 12, 1, 2]

    def test_zero_horizon(self):
        assert months_ahead(0, 5) == []


class TestEffectiveHorizon:
    def test_six_months_from_january(self):
        expected = 1.10 + 1.30 + 1.50 + 1.05 + 1.00 + 0.95
        assert effective_horizon(6, 1) == pytest.approx(expected)

    def test_wrapping_six_months_from_november(self):
        expected = 1.05 + 1.15 + 1.10 + 1.30 + 1.50 + 1.05
        assert effective_horizon(6, 11) == pytest.approx(expected)

    def test_single_month(self):
        assert effective_horizon(1, 3) == 1.50

    def test_wraps_year_end(self):
        assert effective_horizon(3, 11) == pytest.approx(1.05 + 1.15 + 1.10)

    @pytest.mark.parametrize("horizon", [0, -3])
    def test_non_positive_horizon_is_zero(self, horizon):
        assert effective_horizon(horizon, 5) == 0

    def test_bounded_by_min_and_max_multiplier(self):
        lo = min(DEFAULT_CALIBRATION.seasonal_multipliers.values())
        hi = max(DEFAULT_CALIBRATION.seasonal_multipliers.values())
        for start in range(1, 13):
            for horizon in range(1, 25):
                value = effective_horizon(horizon, start)
                assert horizon * lo - 1e-9 <= value <= horizon * hi + 1e-9

    def test_uses_calibration_override(self):
        flat = CalibrationProfile(seasonal_multipliers={m: 1.0 for m in range(1, 13)})
        assert effective_horizon(6, 7, flat) == pytest.approx(6.0)


class TestSeasonalFactor:
    def test_full_year_average(self):
        total = sum(DEFAULT_CALIBRATION.seasonal_multipliers.values())
        assert seasonal_factor(12, 4) == pytest.approx(total / 12)

    def test_spring_window_above_summer_window(self):
        assert seasonal_factor(3, 1) > seasonal_factor(3, 6)

    def test_zero_horizon_is_neutral(self):
        assert seasonal_factor(0, 3) == 1.0
