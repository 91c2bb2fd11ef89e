"""Tests for the admission score calculator."""

import math
import random

import pytest

from ujuz_admission.scoring.admission_score import (
    admission_score_from_probability,
    clamp,
    effective_waiting_position,
    monthly_opportunity_rate,
    position_decay,
    probability_to_grade,
    score,
    sigmoid,
    wait_months_for_quantile,
)


def _score(**overrides):
    params = {
        "turnover_rate": 0.01,
        "regional_base_rate": 0.5,
        "priority_bonus": 0.0,
        "position_decay": 0.0,
        "seasonal_factor": 1.0,
        "evidence_confidence": 0.5,
    }
    params.update(overrides)
    return score(**params)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestClamp:
    def test_inside(self):
        assert clamp(0.5, 0.0, 1.0) == 0.5

    def test_below(self):
        assert clamp(-2, 1, 99) == 1

    def test_above(self):
        assert clamp(120, 1, 99) == 99

    def test_degenerate_range(self):
        for v in (-5, 0, 3, 1000):
            assert clamp(v, 7, 7) == 7


class TestSigmoid:
    def test_zero_is_half(self):
        assert sigmoid(0) == 0.5

    def test_saturates(self):
        assert sigmoid(10) > 0.999
        assert sigmoid(-10) < 0.001

    def test_strictly_increasing(self):
        xs = [-20, -5, -1, -0.1, 0, 0.1, 1, 5, 20]
        values = [sigmoid(x) for x in xs]
        assert values == sorted(values)
        assert len(set(values)) == len(values)

    @pytest.mark.parametrize("x", [-1000.0, 1000.0, -745.0, 710.0])
    def test_large_inputs_do_not_overflow(self, x):
        value = sigmoid(x)
        assert math.isfinite(value)
        assert 0.0 <= value <= 1.0


class TestProbabilityToGrade:
    @pytest.mark.parametrize(
        ("p", "grade"),
        [
            (0.8, "A"),
            (0.95, "A"),
            (0.79, "B"),
            (0.6, "B"),
            (0.59, "C"),
            (0.4, "C"),
            (0.39, "D"),
            (0.2, "D"),
            (0.19, "F"),
            (0.0, "F"),
        ],
    )
    def test_bands_lower_edge_inclusive(self, p, grade):
        assert probability_to_grade(p) == grade


class TestAdmissionScoreFromProbability:
    def test_never_zero(self):
        assert admission_score_from_probability(0.0) == 1

    def test_never_hundred(self):
        assert admission_score_from_probability(1.0) == 99

    def test_rounds(self):
        assert admission_score_from_probability(0.65) == 65
        assert admission_score_from_probability(0.29) == 29

    def test_random_probabilities_stay_in_range_and_match_grade(self):
        rng = random.Random(20251015)
        for _ in range(500):
            p = round(rng.random(), 2)
            s = admission_score_from_probability(p)
            assert 1 <= s <= 99
            assert s == clamp(round(p * 100), 1, 99)
            grade = probability_to_grade(p)
            if s >= 80:
                assert grade == "A"
            elif s >= 60:
                assert grade == "B"
            elif s >= 40:
                assert grade == "C"
            elif s >= 20:
                assert grade == "D"
            else:
                assert grade == "F"


class TestPositionHelpers:
    def test_effective_position_applies_competition_and_priority(self):
        # 10 * 1.4 = 14, minus 4 skipped positions
        assert effective_waiting_position(10, 1.4, 4) == 10

    def test_effective_position_rounds_up(self):
        assert effective_waiting_position(3, 1.15, 0) == 4

    def test_effective_position_floored_at_zero(self):
        assert effective_waiting_position(2, 1.0, 8) == 0

    def test_decay_zero_when_first_in_line(self):
        assert position_decay(0) == 0.0

    def test_decay_increases_and_saturates(self):
        values = [position_decay(n) for n in (1, 5, 15, 50, 500)]
        assert values == sorted(values)
        assert values[-1] < 1.0
        assert position_decay(15) == pytest.approx(1 - math.exp(-1))

    def test_opportunity_rate_shared_by_queue(self):
        assert monthly_opportunity_rate(0.02, 10, 0) == pytest.approx(0.2)
        assert monthly_opportunity_rate(0.02, 10, 3) == pytest.approx(0.05)

    def test_opportunity_rate_zero_inputs(self):
        assert monthly_opportunity_rate(0.0, 10, 3) == 0.0
        assert monthly_opportunity_rate(0.02, 0, 3) == 0.0


class TestWaitMonthsForQuantile:
    def test_fast_rate_reaches_median_in_first_month(self):
        # May (1.00): 0.7 >= ln 2
        assert wait_months_for_quantile(0.5, 0.7, 5) == 1

    def test_upper_quantile_follows_calendar(self):
        # 0.7 + 0.665 + 0.63 crosses -ln(0.2) in the third month (July)
        assert wait_months_for_quantile(0.8, 0.7, 5) == 3

    def test_zero_rate_hits_cap(self):
        assert wait_months_for_quantile(0.5, 0.0, 1) == 36

    def test_non_finite_rate_hits_cap(self):
        assert wait_months_for_quantile(0.5, float("nan"), 1, max_months=24) == 24

    def test_slow_rate_hits_cap(self):
        assert wait_months_for_quantile(0.8, 1e-6, 3, max_months=12) == 12


# ---------------------------------------------------------------------------
# score()
# ---------------------------------------------------------------------------


class TestScore:
    def test_reference_case(self):
        # z = -1 + 1.1 * ln 2 + 2.0 * 0.5 = 0.7625 -> sigmoid 0.682
        result = _score()
        assert result.probability == 0.68
        assert result.admission_score == 68
        assert result.grade == "B"
        assert result.logit == pytest.approx(0.7625, abs=1e-4)
        assert result.used_prior_fallback is False

    def test_contributions_sum_to_logit(self):
        result = _score(priority_bonus=5, position_decay=0.4, seasonal_factor=1.2)
        assert sum(result.contributions.values()) == pytest.approx(result.logit, abs=1e-3)
        assert result.contributions["position"] < 0
        assert result.contributions["seasonal"] > 0

    def test_confidence_is_evidence_confidence(self):
        low = _score(evidence_confidence=0.12)
        high = _score(evidence_confidence=0.87)
        assert low.confidence == 0.12
        assert high.confidence == 0.87
        assert low.probability == high.probability

    def test_monotone_in_turnover(self):
        rates = [0.001, 0.005, 0.01, 0.05, 0.2]
        probs = [_score(turnover_rate=r).probability for r in rates]
        assert probs == sorted(probs)

    def test_monotone_in_position_decay(self):
        decays = [0.0, 0.2, 0.5, 0.8, 1.0]
        probs = [_score(position_decay=d).probability for d in decays]
        assert probs == sorted(probs, reverse=True)

    def test_priority_helps(self):
        assert _score(priority_bonus=8).probability > _score(priority_bonus=0).probability

    def test_peak_season_helps(self):
        assert _score(seasonal_factor=1.3).probability > _score(seasonal_factor=0.93).probability

    @pytest.mark.parametrize("rate", [0.0, -0.5, float("nan"), float("inf")])
    def test_unusable_turnover_falls_back_to_prior(self, rate):
        result = _score(turnover_rate=rate, evidence_confidence=0.9)
        assert result.used_prior_fallback is True
        assert result.confidence <= 0.2
        assert math.isfinite(result.probability)
        assert 1 <= result.admission_score <= 99
        assert result.estimated_months_median <= result.estimated_months_80th

    def test_wait_uses_opportunity_rate(self):
        result = _score(opportunity_rate=0.7, current_month=5)
        assert result.estimated_months_median == 1
        assert result.estimated_months_80th == 3

    def test_wait_capped_by_max_wait(self):
        result = _score(turnover_rate=1e-5, max_wait_months=18)
        assert result.estimated_months_median == 18
        assert result.estimated_months_80th == 18

    def test_score_and_grade_follow_published_probability(self):
        rng = random.Random(7)
        for _ in range(300):
            result = _score(
                turnover_rate=rng.uniform(0.0005, 0.3),
                regional_base_rate=rng.random(),
                priority_bonus=rng.choice([0, 3, 4, 5, 6, 7, 8]),
                position_decay=rng.random(),
                seasonal_factor=rng.uniform(0.9, 1.5),
            )
            assert result.admission_score == clamp(round(result.probability * 100), 1, 99)
            assert result.grade == probability_to_grade(result.probability)

    def test_median_never_exceeds_80th(self):
        rng = random.Random(1234)
        for _ in range(1000):
            result = _score(
                turnover_rate=rng.uniform(0.0001, 0.5),
                opportunity_rate=rng.choice([None, rng.uniform(0.0, 2.0)]),
                current_month=rng.randint(1, 12),
                max_wait_months=rng.randint(1, 48),
            )
            assert 1 <= result.estimated_months_median <= result.estimated_months_80th
