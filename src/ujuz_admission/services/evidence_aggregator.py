"""Evidence aggregation – turnover rate and confidence from raw observations.

Reduces a facility's recent observations into:

* a **turnover rate** ρ (vacancy events per seat-month), shrunk towards a
  regional Gamma prior so that sparsely observed facilities still get a
  sensible estimate;
* one **evidence item** per observation cluster, with a human-readable
  summary (numbers, periods and counts only – never quoted source text);
* an **evidence confidence** that grows with evidence volume and source
  diversity and saturates below 1.

Snapshot vacancy events
-----------------------
A confirmed vacancy (``to_detected=True`` with a negative enrolment delta)
opens an event.  Consecutive declines are merged into the same event until
the decline stops or the event has been open for
``vacancy_event_timeout_hours``.  Exposure accrues as
``capacity_eff · Δdays / 30`` seat-months between consecutive snapshots.

Gamma–Poisson shrinkage::

    α = μ_prior · E0 + N (+ 0.3 · community slots)
    β = E0 + E        (+ 0.5 · community mentions)
    ρ = α / β
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import assert_never

from ujuz_admission.config import DEFAULT_CALIBRATION, CalibrationProfile
from ujuz_admission.errors import FacilityNotFoundError
from ujuz_admission.models.admission import EvidenceItem
from ujuz_admission.models.observations import (
    AdmissionRecord,
    CommunityMention,
    FacilityRecord,
    VacancyObservation,
    WaitlistSnapshot,
)
from ujuz_admission.regions import extract_region
from ujuz_admission.services.evidence_store import EvidenceSource

logger = logging.getLogger(__name__)

_DAYS_PER_MONTH = 30.0

# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AggregatedEvidence:
    turnover_rate: float
    evidence: list[EvidenceItem]
    evidence_confidence: float
    facility_name: str
    region_key: str
    capacity_eff: float
    latest_waitlist_position: int | None = None
    observed_events: float = 0.0
    exposure_seat_months: float = 0.0
    sources: list[str] = field(default_factory=list)


@dataclass
class _Partition:
    snapshots: list[WaitlistSnapshot] = field(default_factory=list)
    mentions: list[CommunityMention] = field(default_factory=list)
    admissions: list[AdmissionRecord] = field(default_factory=list)


@dataclass(frozen=True)
class _SnapshotStats:
    events: int
    exposure: float


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def _partition(observations: list[VacancyObservation]) -> _Partition:
    part = _Partition()
    for obs in observations:
        if isinstance(obs, WaitlistSnapshot):
            part.snapshots.append(obs)
        elif isinstance(obs, CommunityMention):
            part.mentions.append(obs)
        elif isinstance(obs, AdmissionRecord):
            part.admissions.append(obs)
        else:
            assert_never(obs)
    part.snapshots.sort(key=lambda s: _aware(s.snapshot_date))
    return part


def effective_capacity(
    facility: FacilityRecord,
    age_band: int,
    calibration: CalibrationProfile = DEFAULT_CALIBRATION,
) -> float:
    """Seats available to *age_band*, floored at one seat."""
    by_class = facility.capacity_by_class.get(str(age_band))
    if by_class:
        return float(max(by_class, 1))
    ratio = calibration.age_band_capacity_ratio.get(age_band, 0.0)
    return max(facility.capacity_total * ratio, 1.0)


def count_vacancy_events(
    snapshots: list[WaitlistSnapshot],
    capacity_eff: float,
    timeout_hours: float,
) -> _SnapshotStats:
    """Count vacancy events and observed seat-months over ordered snapshots."""
    events = 0
    exposure = 0.0
    pending = 0
    event_start: datetime | None = None

    for prev, curr in zip(snapshots, snapshots[1:], strict=False):
        prev_ts = _aware(prev.snapshot_date)
        curr_ts = _aware(curr.snapshot_date)
        delta = curr.enrolled_delta

        if curr.to_detected is True and delta < 0:
            if pending == 0:
                event_start = curr_ts
            pending += -delta
            open_hours = (curr_ts - event_start).total_seconds() / 3600 if event_start else 0.0
            if open_hours >= timeout_hours:
                events += pending
                pending = 0
                event_start = None
        elif delta >= 0 and pending > 0:
            events += pending
            pending = 0
            event_start = None

        days = max((curr_ts - prev_ts).total_seconds(), 0.0) / 86400
        exposure += capacity_eff * days / _DAYS_PER_MONTH

    events += pending
    return _SnapshotStats(events=events, exposure=exposure)


def evidence_confidence(
    volume: int,
    distinct_sources: int,
    calibration: CalibrationProfile = DEFAULT_CALIBRATION,
) -> float:
    """Confidence from evidence volume and source diversity.

    Strictly increasing in both inputs, ``floor`` with no evidence and
    never above ``confidence_ceiling``.
    """
    x = max(volume, 0) + calibration.confidence_diversity_weight * max(distinct_sources, 0)
    saturation = x / (x + calibration.confidence_half_volume)
    value = calibration.confidence_floor + calibration.confidence_span * saturation
    return min(value, calibration.confidence_ceiling)


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class EvidenceAggregator:
    """Reads evidence for a facility and reduces it for the score calculator."""

    def __init__(
        self,
        source: EvidenceSource,
        *,
        window_days: int = 365,
        calibration: CalibrationProfile = DEFAULT_CALIBRATION,
    ) -> None:
        self._source = source
        self._window = timedelta(days=window_days)
        self._cal = calibration

    def aggregate(
        self,
        facility_id: str,
        child_age_band: int,
        *,
        now: datetime | None = None,
    ) -> AggregatedEvidence:
        """Aggregate the rolling evidence window for one facility and age band.

        Raises ``FacilityNotFoundError`` when the facility has no record.
        Store connectivity errors propagate unchanged.
        """
        now = _aware(now or datetime.now(UTC))
        facility = self._source.get_facility(facility_id)
        if facility is None:
            raise FacilityNotFoundError(facility_id)

        region_key = (
            extract_region(facility.address, facility.lat, facility.lng) or "default"
        )
        capacity_eff = effective_capacity(facility, child_age_band, self._cal)
        part = _partition(self._source.get_observations(facility_id, now - self._window))

        cal = self._cal
        mu_prior = cal.prior_turnover(region_key, child_age_band)
        e0 = cal.prior_strength_seat_months
        stats = count_vacancy_events(
            part.snapshots, capacity_eff, cal.vacancy_event_timeout_hours
        )
        alpha = mu_prior * e0 + stats.events
        beta = e0 + stats.exposure

        evidence: list[EvidenceItem] = [
            self._snapshot_item(part.snapshots, stats, mu_prior, capacity_eff)
        ]

        mentions = [
            m for m in part.mentions if m.age_class is None or m.age_class == child_age_band
        ]
        mention_sources = {m.source_id for m in mentions}
        if mentions and len(mention_sources) >= cal.community_min_sources:
            slots = sum(m.estimated_slots for m in mentions)
            alpha += cal.community_pseudo_event_weight * slots
            beta += cal.community_exposure_weight * len(mentions)
            evidence.append(self._community_item(mentions, mention_sources, slots))
        elif mentions:
            logger.debug(
                "Ignoring %d community mention(s) for %s: only %d source(s)",
                len(mentions),
                facility_id,
                len(mention_sources),
            )

        admissions = [a for a in part.admissions if a.age_band == child_age_band]
        if admissions:
            evidence.append(self._admission_item(admissions))

        turnover_rate = alpha / beta if beta > 0 else mu_prior

        sources = sorted(
            {f"snapshot:{s.source}" for s in part.snapshots}
            | {f"community:{src}" for src in mention_sources}
            | ({"admission_records"} if admissions else set())
        )
        volume = len(part.snapshots) + len(mentions) + len(admissions)
        confidence = evidence_confidence(volume, len(sources), cal)

        if volume == 0:
            logger.warning(
                "No evidence for facility %s (band %d), using %s prior %.4f",
                facility_id,
                child_age_band,
                region_key,
                mu_prior,
            )

        evidence.sort(key=lambda e: e.confidence, reverse=True)
        return AggregatedEvidence(
            turnover_rate=turnover_rate,
            evidence=evidence,
            evidence_confidence=confidence,
            facility_name=facility.name,
            region_key=region_key,
            capacity_eff=capacity_eff,
            latest_waitlist_position=self._latest_position(part.snapshots, child_age_band),
            observed_events=float(stats.events),
            exposure_seat_months=stats.exposure,
            sources=sources,
        )

    # -- evidence items ------------------------------------------------------

    def _snapshot_item(
        self,
        snapshots: list[WaitlistSnapshot],
        stats: _SnapshotStats,
        mu_prior: float,
        capacity_eff: float,
    ) -> EvidenceItem:
        if len(snapshots) < 2:
            return EvidenceItem(
                kind="to_snapshot",
                summary=(
                    f"스냅샷 부족 ({len(snapshots)}건). 지역 평균 기반 추정 "
                    f"(ρ_prior={mu_prior:.4f}, E0={self._cal.prior_strength_seat_months:g})"
                ),
                source_count=len(snapshots),
                confidence=0.3,
                data_points={
                    "N": 0.0,
                    "E_seat_months": 0.0,
                    "rho_prior": mu_prior,
                },
            )

        rho_observed = stats.events / stats.exposure if stats.exposure > 0 else 0.0
        return EvidenceItem(
            kind="to_snapshot",
            summary=(
                f"관측 {stats.exposure:.1f} seat-months, TO {stats.events}건 발생 "
                f"(ρ={rho_observed:.4f}/seat-month, 정원 {round(capacity_eff)} 기준 "
                f"월 {rho_observed * capacity_eff:.1f}명)"
            ),
            source_count=len(snapshots),
            confidence=0.85 if len(snapshots) >= 6 else 0.55,
            data_points={
                "N": float(stats.events),
                "E_seat_months": stats.exposure,
                "rho_observed": rho_observed,
                "capacity_eff": capacity_eff,
            },
        )

    def _community_item(
        self,
        mentions: list[CommunityMention],
        sources: set[str],
        slots: int,
    ) -> EvidenceItem:
        avg_conf = sum(m.confidence for m in mentions) / len(mentions)
        return EvidenceItem(
            kind="community_report",
            summary=f"커뮤니티 TO 언급 {len(mentions)}건 (출처 {len(sources)}곳, 추정 {slots}자리)",
            source_count=len(mentions),
            confidence=min(0.8, 0.5 + 0.05 * len(sources)),
            data_points={
                "mentions": float(len(mentions)),
                "distinct_sources": float(len(sources)),
                "estimated_slots": float(slots),
                "avg_confidence": avg_conf,
            },
        )

    def _admission_item(self, admissions: list[AdmissionRecord]) -> EvidenceItem:
        waits = sorted(a.waited_months for a in admissions)
        avg_wait = sum(waits) / len(waits)
        return EvidenceItem(
            kind="historical_admission",
            summary=f"과거 입소 {len(admissions)}건 (평균 대기 {avg_wait:.1f}개월)",
            source_count=len(admissions),
            confidence=0.75 if len(admissions) >= 3 else 0.4,
            data_points={
                "sample_size": float(len(admissions)),
                "avg_wait_months": avg_wait,
                "min_wait_months": waits[0],
                "max_wait_months": waits[-1],
            },
        )

    @staticmethod
    def _latest_position(snapshots: list[WaitlistSnapshot], age_band: int) -> int | None:
        if not snapshots:
            return None
        position = snapshots[-1].waitlist_by_class.get(str(age_band), 0)
        return position or None
