"""Tests for the SQLite evidence store."""

from datetime import timedelta

import pytest

from ujuz_admission.errors import EvidenceStoreUnavailableError
from ujuz_admission.models.observations import (
    AdmissionRecord,
    CommunityMention,
    FacilityRecord,
    WaitlistSnapshot,
    observation_adapter,
)
from ujuz_admission.services.evidence_store import SqliteEvidenceStore

from conftest import NOW


class TestFacilities:
    def test_round_trip(self, evidence_store):
        facility = evidence_store.get_facility("gangnam-1")
        assert facility is not None
        assert facility.name == "역삼 햇살어린이집"
        assert facility.capacity_by_class == {"2": 10}

    def test_missing_returns_none(self, evidence_store):
        assert evidence_store.get_facility("nope") is None

    def test_upsert_replaces(self, evidence_store):
        evidence_store.upsert_facility(
            FacilityRecord(facility_id="gangnam-1", name="새 이름", capacity_total=60)
        )
        facility = evidence_store.get_facility("gangnam-1")
        assert facility.name == "새 이름"
        assert facility.capacity_total == 60


class TestObservations:
    def test_snapshot_round_trip(self, evidence_store):
        evidence_store.record_snapshot(
            WaitlistSnapshot(
                facility_id="gangnam-1",
                snapshot_date=NOW - timedelta(days=1),
                current_enrolled=38,
                waitlist_by_class={"2": 9},
                enrolled_delta=-1,
                to_detected=True,
                source="public_api",
            )
        )
        (snap,) = evidence_store.get_observations("gangnam-1", NOW - timedelta(days=30))
        assert isinstance(snap, WaitlistSnapshot)
        assert snap.snapshot_date == NOW - timedelta(days=1)
        assert snap.waitlist_by_class == {"2": 9}
        assert snap.to_detected is True
        assert snap.source == "public_api"

    def test_unset_flag_stays_none(self, evidence_store):
        evidence_store.record_snapshot(
            WaitlistSnapshot(facility_id="gangnam-1", snapshot_date=NOW)
        )
        (snap,) = evidence_store.get_observations("gangnam-1", NOW - timedelta(days=1))
        assert snap.to_detected is None

    def test_kinds_and_order(self, evidence_store):
        evidence_store.record_admission(
            AdmissionRecord(
                facility_id="gangnam-1",
                admitted_at=NOW - timedelta(days=5),
                age_band=2,
                waited_months=4,
            )
        )
        evidence_store.record_mention(
            CommunityMention(
                facility_id="gangnam-1",
                reported_at=NOW - timedelta(days=4),
                source_id="cafe-a",
                age_class=2,
            )
        )
        for days in (3, 9):
            evidence_store.record_snapshot(
                WaitlistSnapshot(facility_id="gangnam-1", snapshot_date=NOW - timedelta(days=days))
            )

        observations = evidence_store.get_observations("gangnam-1", NOW - timedelta(days=30))
        assert [o.kind for o in observations] == [
            "waitlist_snapshot",
            "waitlist_snapshot",
            "community_mention",
            "admission_record",
        ]
        assert observations[0].snapshot_date < observations[1].snapshot_date

    def test_since_filter_and_facility_scope(self, evidence_store):
        evidence_store.record_snapshot(
            WaitlistSnapshot(facility_id="gangnam-1", snapshot_date=NOW - timedelta(days=400))
        )
        evidence_store.record_snapshot(
            WaitlistSnapshot(facility_id="wirye-1", snapshot_date=NOW - timedelta(days=1))
        )
        assert evidence_store.get_observations("gangnam-1", NOW - timedelta(days=365)) == []

    def test_observation_adapter_dispatches_on_kind(self):
        obs = observation_adapter.validate_python(
            {
                "kind": "community_mention",
                "facility_id": "f",
                "reported_at": NOW.isoformat(),
                "source_id": "cafe-z",
            }
        )
        assert isinstance(obs, CommunityMention)


class TestPurge:
    def test_purges_only_old_rows(self, evidence_store):
        evidence_store.record_snapshot(
            WaitlistSnapshot(facility_id="gangnam-1", snapshot_date=NOW - timedelta(days=500))
        )
        evidence_store.record_mention(
            CommunityMention(
                facility_id="gangnam-1",
                reported_at=NOW - timedelta(days=400),
                source_id="cafe-a",
            )
        )
        evidence_store.record_snapshot(
            WaitlistSnapshot(facility_id="gangnam-1", snapshot_date=NOW - timedelta(days=10))
        )
        assert evidence_store.purge_older_than(keep_days=365, now=NOW) == 2
        remaining = evidence_store.get_observations("gangnam-1", NOW - timedelta(days=1000))
        assert len(remaining) == 1


class TestFileStore:
    def test_creates_database_under_data_dir(self, tmp_path):
        path = tmp_path / "nested" / "evidence.db"
        store = SqliteEvidenceStore(path)
        store.upsert_facility(FacilityRecord(facility_id="f1"))
        assert path.exists()
        assert store.get_facility("f1").name == "어린이집"
        store.close()

    def test_unusable_path_raises_unavailable(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = SqliteEvidenceStore(blocker / "evidence.db")
        with pytest.raises(EvidenceStoreUnavailableError) as exc_info:
            store.get_facility("f1")
        assert exc_info.value.status_code == 503
