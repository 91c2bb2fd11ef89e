"""Admission engine – wires evidence, calendar, calculator and cache.

Pipeline for one query::

    cache lookup
      └─ miss → EvidenceAggregator.aggregate()
                 → seasonal factor over the horizon
                 → effective waiting position and decay
                 → ScoreCalculator.score()
                 → score breakdown attached to the turnover evidence
                 → AdmissionScoreResult (stored with a TTL)

``AdmissionEngine.score`` is the single entry point for API and chat
callers; ``bot_text`` renders the same (cached) result as Korean text.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from ujuz_admission.config import (
    DEFAULT_CALIBRATION,
    SERVICE_TIMEZONE,
    CalibrationProfile,
    EngineSettings,
    load_calibration,
)
from ujuz_admission.models.admission import AdmissionQuery, AdmissionScoreResult, EvidenceItem
from ujuz_admission.scoring.admission_score import (
    ScoreComputation,
    effective_waiting_position,
    monthly_opportunity_rate,
    position_decay,
    score,
)
from ujuz_admission.scoring.seasonal import (
    effective_horizon,
    monthly_multiplier,
    months_ahead,
    seasonal_factor,
)
from ujuz_admission.services.evidence_aggregator import AggregatedEvidence, EvidenceAggregator
from ujuz_admission.services.evidence_store import EvidenceSource, SqliteEvidenceStore
from ujuz_admission.services.formatter import format_bot_text, format_structured
from ujuz_admission.services.result_cache import CacheStore, ResultCache, SqliteCacheStore

logger = logging.getLogger(__name__)

# Waiting position assumed per seat when neither the caller nor a snapshot
# provides one.
_DEFAULT_QUEUE_PER_SEAT = 2.0


def resolve_waiting_position(query: AdmissionQuery, agg: AggregatedEvidence) -> int:
    """Caller-supplied position, else the latest snapshot, else a capacity guess."""
    if query.waiting_position is not None:
        return query.waiting_position
    if agg.latest_waitlist_position is not None:
        return agg.latest_waitlist_position
    return max(1, round(agg.capacity_eff * _DEFAULT_QUEUE_PER_SEAT))


def score_breakdown(
    computation: ScoreComputation,
    agg: AggregatedEvidence,
    *,
    position: int,
    ahead: int,
    priority_bonus: float,
    competition: float,
    horizon: int,
    start_month: int,
    calibration: CalibrationProfile = DEFAULT_CALIBRATION,
) -> dict[str, float]:
    """Numbers behind a score, keyed for ``EvidenceItem.data_points``.

    Covers the logit term of every factor, the seasonal window (months,
    multipliers, effective horizon and expected vacancies over it) and the
    waitlist adjustment (raw position, competition, priority bonus and the
    effective position ``w_eff``).
    """
    points = {f"logit_{name}": value for name, value in computation.contributions.items()}
    points["logit"] = computation.logit
    points["prior_fallback"] = 1.0 if computation.used_prior_fallback else 0.0

    h_eff = effective_horizon(horizon, start_month, calibration)
    points["seasonal_factor"] = seasonal_factor(horizon, start_month, calibration)
    points["H"] = float(horizon)
    points["H_eff"] = h_eff
    points["E_H"] = agg.turnover_rate * agg.capacity_eff * h_eff
    for i, month in enumerate(months_ahead(horizon, start_month), start=1):
        points[f"season_month_{i}"] = float(month)
        points[f"season_multiplier_{i}"] = monthly_multiplier(month, calibration)

    points["waiting_position"] = float(position)
    points["competition"] = competition
    points["priority_bonus"] = priority_bonus
    points["w_eff"] = float(ahead)
    points["distinct_sources"] = float(len(agg.sources))
    return points


def _with_breakdown(evidence: list[EvidenceItem], points: dict[str, float]) -> list[EvidenceItem]:
    """Attach *points* to the turnover evidence item."""
    return [
        e.model_copy(update={"data_points": {**e.data_points, **points}})
        if e.kind == "to_snapshot"
        else e
        for e in evidence
    ]


class AdmissionEngine:
    """Computes and caches admission results for validated queries."""

    def __init__(
        self,
        source: EvidenceSource,
        cache_store: CacheStore,
        settings: EngineSettings | None = None,
        calibration: CalibrationProfile = DEFAULT_CALIBRATION,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._cal = calibration
        self._aggregator = EvidenceAggregator(
            source,
            window_days=self._settings.evidence_window_days,
            calibration=calibration,
        )
        self._cache = ResultCache(
            cache_store,
            self.compute,
            ttl_seconds=self._settings.cache_ttl_seconds,
            engine_version=calibration.engine_version,
        )

    @property
    def calibration(self) -> CalibrationProfile:
        return self._cal

    def score(self, query: AdmissionQuery, now: datetime | None = None) -> AdmissionScoreResult:
        """Cached admission result for *query*."""
        return self._cache.get_or_compute(query, now)

    def bot_text(self, query: AdmissionQuery, now: datetime | None = None) -> str:
        return format_bot_text(self.score(query, now))

    def invalidate_facility(self, facility_id: str) -> int:
        return self._cache.invalidate_facility(facility_id)

    def compute(self, query: AdmissionQuery, now: datetime | None = None) -> AdmissionScoreResult:
        """Run the full pipeline without consulting the cache."""
        now = now or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        cal = self._cal
        horizon = self._settings.horizon_months
        month = now.astimezone(SERVICE_TIMEZONE).month

        agg = self._aggregator.aggregate(query.facility_id, query.child_age_band, now=now)

        position = resolve_waiting_position(query, agg)
        priority_positions = cal.priority_bonus.get(str(query.priority_type), 0.0)
        competition = cal.competition(agg.region_key)
        ahead = effective_waiting_position(position, competition, priority_positions)
        computation = score(
            turnover_rate=agg.turnover_rate,
            regional_base_rate=cal.base_rate(agg.region_key),
            priority_bonus=priority_positions,
            position_decay=position_decay(ahead, cal),
            seasonal_factor=seasonal_factor(horizon, month, cal),
            evidence_confidence=agg.evidence_confidence,
            opportunity_rate=monthly_opportunity_rate(agg.turnover_rate, agg.capacity_eff, ahead),
            current_month=month,
            max_wait_months=self._settings.max_wait_months,
            calibration=cal,
        )
        logger.info(
            "Scored %s band=%d pos=%d ahead=%d: p=%.2f grade=%s (rho=%.4f, z=%.3f)",
            query.facility_id,
            query.child_age_band,
            position,
            ahead,
            computation.probability,
            computation.grade,
            agg.turnover_rate,
            computation.logit,
        )
        breakdown = score_breakdown(
            computation,
            agg,
            position=position,
            ahead=ahead,
            priority_bonus=priority_positions,
            competition=competition,
            horizon=horizon,
            start_month=month,
            calibration=cal,
        )

        result = AdmissionScoreResult(
            facility_id=query.facility_id,
            facility_name=agg.facility_name,
            probability=computation.probability,
            admission_score=computation.admission_score,
            grade=computation.grade,
            confidence=computation.confidence,
            estimated_months_median=computation.estimated_months_median,
            estimated_months_80th=computation.estimated_months_80th,
            evidence=_with_breakdown(agg.evidence, breakdown),
            region_key=agg.region_key,
            engine_version=cal.engine_version,
            calculated_at=now.isoformat(),
        )
        return format_structured(result)


def build_default_engine(settings: EngineSettings | None = None) -> AdmissionEngine:
    """Engine backed by the SQLite stores under ``settings.data_dir``."""
    settings = settings or EngineSettings()
    calibration = load_calibration(settings.calibration_file)
    return AdmissionEngine(
        SqliteEvidenceStore(settings.evidence_db_path),
        SqliteCacheStore(settings.cache_db_path),
        settings,
        calibration,
    )
