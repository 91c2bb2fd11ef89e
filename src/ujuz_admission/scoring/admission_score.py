"""Admission Score – calibrated probability of admission within the horizon.

Scoring rule
------------
Five signals are combined into a single logit::

    z = bias
        + w_turnover · ln(1 + ρ / ρ_ref)
        + w_base     · regional_base_rate
        + w_priority · priority_bonus
        + w_season   · (seasonal_factor − 1)
        − w_position · position_decay

    probability = round(sigmoid(z), 2)

The weights belong to the versioned ``CalibrationProfile``.  Each term is
reported in ``contributions`` so that every grade can be explained
("B because turnover +0.76, season +0.28, position −1.34").

Grade bands (lower edge inclusive):
    >=0.8 A    >=0.6 B    >=0.4 C    >=0.2 D    <0.2 F

Admission score:
    ``clamp(round(probability * 100), 1, 99)`` – never 0 or 100.

Wait time
---------
Admission opportunities are modelled as exponential arrivals whose rate is
stretched or compressed by the seasonal calendar.  The q-th percentile wait
is the smallest horizon H with ``effective_horizon(H) · rate ≥ −ln(1 − q)``.

**IMPORTANT:** This is a heuristic estimate built from community and
snapshot evidence.  No admission outcome is guaranteed.
"""

from __future__ import annotations

import logging
import math

from pydantic import BaseModel, ConfigDict

from ujuz_admission.config import DEFAULT_CALIBRATION, CalibrationProfile
from ujuz_admission.models.admission import Grade
from ujuz_admission.scoring.seasonal import monthly_multiplier, months_ahead

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Grade thresholds (checked top-down, first match wins)
# ---------------------------------------------------------------------------
GRADE_THRESHOLDS: list[tuple[float, Grade]] = [
    (0.8, "A"),
    (0.6, "B"),
    (0.4, "C"),
    (0.2, "D"),
]

MEDIAN_QUANTILE = 0.5
UPPER_QUANTILE = 0.8
DEFAULT_MAX_WAIT_MONTHS = 36


class ScoreComputation(BaseModel):
    """Partial result produced by ``score`` (no facility metadata)."""

    model_config = ConfigDict(frozen=True)

    probability: float
    admission_score: int
    grade: Grade
    confidence: float
    estimated_months_median: int
    estimated_months_80th: int
    logit: float
    contributions: dict[str, float]
    used_prior_fallback: bool = False


# ===================================================================
# Pure helpers
# ===================================================================


def clamp(value: float, lo: float, hi: float) -> float:
    """Return *value* limited to ``[lo, hi]``."""
    return max(lo, min(hi, value))


def sigmoid(x: float) -> float:
    """Logistic function, stable for large ``|x|``."""
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    e = math.exp(x)
    return e / (1.0 + e)


def probability_to_grade(probability: float) -> Grade:
    for threshold, grade in GRADE_THRESHOLDS:
        if probability >= threshold:
            return grade
    return "F"


def admission_score_from_probability(probability: float) -> int:
    return int(clamp(round(probability * 100), 1, 99))


def effective_waiting_position(
    waiting_position: int,
    competition: float,
    priority_positions: float,
) -> int:
    """Applicants effectively ahead after regional inflation and priority."""
    return max(0, math.ceil(waiting_position * competition - priority_positions))


def position_decay(
    effective_position: int,
    calibration: CalibrationProfile = DEFAULT_CALIBRATION,
) -> float:
    """Map applicants ahead onto 0-1 (0 = first in line)."""
    if effective_position <= 0:
        return 0.0
    return 1.0 - math.exp(-effective_position / calibration.position_scale)


def monthly_opportunity_rate(turnover_rate: float, seats: float, queue_ahead: int) -> float:
    """Admission opportunities per month for one applicant.

    Vacancies arrive at ``turnover_rate · seats`` per month and are shared
    by everyone up to and including this applicant.
    """
    if turnover_rate <= 0 or seats <= 0:
        return 0.0
    return turnover_rate * seats / (max(queue_ahead, 0) + 1)


def _positive_finite(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and value > 0


def wait_months_for_quantile(
    quantile: float,
    rate: float,
    start_month: int,
    max_months: int = DEFAULT_MAX_WAIT_MONTHS,
    calibration: CalibrationProfile = DEFAULT_CALIBRATION,
) -> int:
    """Smallest horizon (months) reaching *quantile* under exponential arrivals.

    Returns *max_months* when the rate never accumulates enough opportunity
    inside the search window (including a zero rate).
    """
    if not _positive_finite(rate):
        return max_months
    threshold = -math.log(1.0 - quantile)
    accumulated = 0.0
    for horizon, month in enumerate(months_ahead(max_months, start_month), start=1):
        accumulated += monthly_multiplier(month, calibration) * rate
        if accumulated >= threshold:
            return horizon
    return max_months


# ===================================================================
# Main function
# ===================================================================


def score(
    turnover_rate: float,
    regional_base_rate: float,
    priority_bonus: float,
    position_decay: float,
    seasonal_factor: float,
    evidence_confidence: float,
    *,
    opportunity_rate: float | None = None,
    current_month: int = 1,
    max_wait_months: int = DEFAULT_MAX_WAIT_MONTHS,
    calibration: CalibrationProfile = DEFAULT_CALIBRATION,
) -> ScoreComputation:
    """Compute probability, grade, score and wait-time percentiles.

    Parameters
    ----------
    turnover_rate:
        Vacancy events per seat-month.  Zero or non-finite values fall back
        to the calibration prior and cap the reported confidence.
    regional_base_rate:
        Baseline admission likelihood of the facility's region (0-1).
    priority_bonus:
        Waiting positions skipped thanks to the applicant's priority type.
    position_decay:
        0-1 penalty for the applicants ahead (see ``position_decay``).
    seasonal_factor:
        Average seasonal multiplier over the horizon.
    evidence_confidence:
        0-1 evidence volume/diversity signal, reported as ``confidence``.
    opportunity_rate:
        Per-applicant admission opportunities per month used for the wait
        estimate.  Defaults to *turnover_rate*.

    Never raises for sparse or degenerate evidence.
    """
    fallback = not _positive_finite(turnover_rate)
    if fallback:
        logger.warning(
            "Turnover rate %r unusable, falling back to prior %.4f",
            turnover_rate,
            calibration.default_prior_turnover,
        )
        turnover_rate = calibration.default_prior_turnover
        evidence_confidence = min(evidence_confidence, calibration.fallback_confidence_cap)

    w = calibration.weights
    contributions = {
        "bias": w.bias,
        "turnover": w.turnover * math.log1p(turnover_rate / calibration.turnover_reference),
        "regional_base": w.regional_base * clamp(regional_base_rate, 0.0, 1.0),
        "priority": w.priority * priority_bonus,
        "seasonal": w.seasonal * (seasonal_factor - 1.0),
        "position": -w.position * clamp(position_decay, 0.0, 1.0),
    }
    z = sum(contributions.values())

    # score and grade are derived from the published (rounded) probability
    probability = round(sigmoid(z), 2)

    rate = opportunity_rate if _positive_finite(opportunity_rate) else turnover_rate
    median = wait_months_for_quantile(
        MEDIAN_QUANTILE, rate, current_month, max_wait_months, calibration
    )
    upper = wait_months_for_quantile(
        UPPER_QUANTILE, rate, current_month, max_wait_months, calibration
    )

    return ScoreComputation(
        probability=probability,
        admission_score=admission_score_from_probability(probability),
        grade=probability_to_grade(probability),
        confidence=round(clamp(evidence_confidence, 0.0, 1.0), 2),
        estimated_months_median=max(1, median),
        estimated_months_80th=max(1, median, upper),
        logit=round(z, 4),
        contributions={k: round(v, 4) for k, v in contributions.items()},
        used_prior_fallback=fallback,
    )
