"""Shared test fixtures for ujuz-admission tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from ujuz_admission.config import EngineSettings
from ujuz_admission.models.observations import FacilityRecord, WaitlistSnapshot
from ujuz_admission.services.engine import AdmissionEngine
from ujuz_admission.services.evidence_store import SqliteEvidenceStore
from ujuz_admission.services.result_cache import InMemoryCacheStore

NOW = datetime(2025, 10, 15, 9, 0, tzinfo=UTC)

GANGNAM = FacilityRecord(
    facility_id="gangnam-1",
    name="역삼 햇살어린이집",
    address="서울특별시 강남구 역삼동 123-4",
    capacity_total=50,
    capacity_by_class={"2": 10},
)

WIRYE = FacilityRecord(
    facility_id="wirye-1",
    name="위례 숲어린이집",
    address="경기도 성남시 수정구 위례광장로 10",
    capacity_total=40,
)

UNKNOWN_REGION = FacilityRecord(
    facility_id="jeju-1",
    name="제주 바다어린이집",
    address="제주특별자치도 제주시 연동 1",
    capacity_total=0,
)


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def evidence_store():
    """In-memory evidence store seeded with three facilities."""
    store = SqliteEvidenceStore(":memory:")
    for facility in (GANGNAM, WIRYE, UNKNOWN_REGION):
        store.upsert_facility(facility)
    yield store
    store.close()


@pytest.fixture()
def add_snapshots(evidence_store) -> Callable[..., None]:
    """Record snapshots every *step_days*, ending at ``NOW``.

    ``changes`` maps a snapshot index to ``(enrolled_delta, to_detected)``.
    """

    def _add(
        facility_id: str = "gangnam-1",
        count: int = 7,
        step_days: int = 5,
        changes: dict[int, tuple[int, bool | None]] | None = None,
        waitlist: dict[str, int] | None = None,
    ) -> None:
        changes = changes or {}
        start = NOW - timedelta(days=step_days * (count - 1))
        for i in range(count):
            delta, detected = changes.get(i, (0, None))
            evidence_store.record_snapshot(
                WaitlistSnapshot(
                    facility_id=facility_id,
                    snapshot_date=start + timedelta(days=step_days * i),
                    current_enrolled=40,
                    waitlist_by_class=waitlist or {},
                    enrolled_delta=delta,
                    to_detected=detected,
                )
            )

    return _add


@pytest.fixture()
def settings(tmp_path) -> EngineSettings:
    return EngineSettings(data_dir=tmp_path)


@pytest.fixture()
def cache_store() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture()
def engine(evidence_store, cache_store, settings) -> AdmissionEngine:
    return AdmissionEngine(evidence_store, cache_store, settings)
