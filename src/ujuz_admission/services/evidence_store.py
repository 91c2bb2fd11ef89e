"""Evidence storage – facilities and raw vacancy observations.

Reference implementation of the persistence contract the engine relies on:
"read recent evidence for facility X".  Data lives in a SQLite database at
``$UJUZ_DATA_DIR/evidence.db`` (default: ``~/.ujuz/evidence.db``), created
automatically on first use.

Evidence is written by the ingestion side (snapshot worker, partner
vacancy-mention extractor); the engine only ever reads it.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from ujuz_admission.errors import EvidenceStoreUnavailableError
from ujuz_admission.models.observations import (
    AdmissionRecord,
    CommunityMention,
    FacilityRecord,
    VacancyObservation,
    WaitlistSnapshot,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Read contract
# ---------------------------------------------------------------------------


class EvidenceSource(Protocol):
    """What the aggregator needs from storage."""

    def get_facility(self, facility_id: str) -> FacilityRecord | None: ...

    def get_observations(self, facility_id: str, since: datetime) -> list[VacancyObservation]: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS facilities (
    facility_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    address TEXT NOT NULL DEFAULT '',
    lat REAL,
    lng REAL,
    capacity_total INTEGER NOT NULL DEFAULT 0,
    capacity_by_class TEXT NOT NULL DEFAULT '{}'
);
CREATE TABLE IF NOT EXISTS waitlist_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    facility_id TEXT NOT NULL,
    snapshot_date TEXT NOT NULL,
    current_enrolled INTEGER NOT NULL DEFAULT 0,
    waitlist_by_class TEXT NOT NULL DEFAULT '{}',
    enrolled_delta INTEGER NOT NULL DEFAULT 0,
    to_detected INTEGER,
    source TEXT NOT NULL DEFAULT 'places_sync',
    confidence REAL NOT NULL DEFAULT 0.7
);
CREATE INDEX IF NOT EXISTS idx_snapshots_facility_ts
    ON waitlist_snapshots (facility_id, snapshot_date);
CREATE TABLE IF NOT EXISTS community_mentions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    facility_id TEXT NOT NULL,
    reported_at TEXT NOT NULL,
    source_id TEXT NOT NULL,
    estimated_slots INTEGER NOT NULL DEFAULT 1,
    age_class INTEGER,
    confidence REAL NOT NULL DEFAULT 0.5
);
CREATE INDEX IF NOT EXISTS idx_mentions_facility_ts
    ON community_mentions (facility_id, reported_at);
CREATE TABLE IF NOT EXISTS admission_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    facility_id TEXT NOT NULL,
    admitted_at TEXT NOT NULL,
    age_band INTEGER NOT NULL,
    waited_months REAL NOT NULL,
    priority_type TEXT NOT NULL DEFAULT 'general'
);
CREATE INDEX IF NOT EXISTS idx_admissions_facility_ts
    ON admission_records (facility_id, admitted_at);
"""


def _iso(ts: datetime) -> str:
    """Normalise to an aware UTC ISO-8601 string (lexically sortable)."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).isoformat()


def _bool_to_db(value: bool | None) -> int | None:
    return None if value is None else int(value)


# ---------------------------------------------------------------------------
# SQLite store
# ---------------------------------------------------------------------------


class SqliteEvidenceStore:
    """Facility and observation store backed by SQLite.

    Connections are thread-local (SQLite objects must not cross threads).
    Pass ``":memory:"`` for a throw-away store in tests; an in-memory store
    keeps a single shared connection instead.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = str(path)
        self._local = threading.local()
        self._shared: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        if self._path == ":memory:":
            self._shared = self._connect()

    # -- connection -------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self._path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            if self._path != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
            conn.commit()
        except (OSError, sqlite3.Error) as exc:
            raise EvidenceStoreUnavailableError(
                f"Evidence store unavailable at {self._path}: {exc}"
            ) from exc
        logger.info("Opened evidence store %s", self._path)
        return conn

    def _conn(self) -> sqlite3.Connection:
        if self._shared is not None:
            return self._shared
        conn: sqlite3.Connection | None = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
        return conn

    def close(self) -> None:
        conn: sqlite3.Connection | None = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
        if self._shared is not None:
            self._shared.close()
            self._shared = None

    def _fetch(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn().execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise EvidenceStoreUnavailableError(f"Evidence store query failed: {exc}") from exc

    def _write(self, sql: str, params: tuple) -> None:
        try:
            with self._lock:
                conn = self._conn()
                conn.execute(sql, params)
                conn.commit()
        except sqlite3.Error as exc:
            raise EvidenceStoreUnavailableError(f"Evidence store write failed: {exc}") from exc

    # -- write API (ingestion side) ----------------------------------------

    def upsert_facility(self, facility: FacilityRecord) -> None:
        self._write(
            """
            INSERT OR REPLACE INTO facilities
                (facility_id, name, address, lat, lng, capacity_total, capacity_by_class)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                facility.facility_id,
                facility.name,
                facility.address,
                facility.lat,
                facility.lng,
                facility.capacity_total,
                json.dumps(facility.capacity_by_class),
            ),
        )

    def record_snapshot(self, snapshot: WaitlistSnapshot) -> None:
        self._write(
            """
            INSERT INTO waitlist_snapshots
                (facility_id, snapshot_date, current_enrolled, waitlist_by_class,
                 enrolled_delta, to_detected, source, confidence)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                snapshot.facility_id,
                _iso(snapshot.snapshot_date),
                snapshot.current_enrolled,
                json.dumps(snapshot.waitlist_by_class),
                snapshot.enrolled_delta,
                _bool_to_db(snapshot.to_detected),
                snapshot.source,
                snapshot.confidence,
            ),
        )

    def record_mention(self, mention: CommunityMention) -> None:
        self._write(
            """
            INSERT INTO community_mentions
                (facility_id, reported_at, source_id, estimated_slots, age_class, confidence)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                mention.facility_id,
                _iso(mention.reported_at),
                mention.source_id,
                mention.estimated_slots,
                mention.age_class,
                mention.confidence,
            ),
        )

    def record_admission(self, record: AdmissionRecord) -> None:
        self._write(
            """
            INSERT INTO admission_records
                (facility_id, admitted_at, age_band, waited_months, priority_type)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                record.facility_id,
                _iso(record.admitted_at),
                record.age_band,
                record.waited_months,
                record.priority_type,
            ),
        )

    # -- read API (engine side) --------------------------------------------

    def get_facility(self, facility_id: str) -> FacilityRecord | None:
        rows = self._fetch("SELECT * FROM facilities WHERE facility_id = ?", (facility_id,))
        if not rows:
            return None
        row = rows[0]
        return FacilityRecord(
            facility_id=row["facility_id"],
            name=row["name"],
            address=row["address"],
            lat=row["lat"],
            lng=row["lng"],
            capacity_total=row["capacity_total"],
            capacity_by_class=json.loads(row["capacity_by_class"] or "{}"),
        )

    def get_observations(self, facility_id: str, since: datetime) -> list[VacancyObservation]:
        """Return every observation for *facility_id* newer than *since*.

        Snapshots come first (oldest first), then mentions, then admission
        records.
        """
        cutoff = _iso(since)
        observations: list[VacancyObservation] = []

        for r in self._fetch(
            """
            SELECT * FROM waitlist_snapshots
            WHERE facility_id = ? AND snapshot_date >= ?
            ORDER BY snapshot_date ASC
            """,
            (facility_id, cutoff),
        ):
            observations.append(
                WaitlistSnapshot(
                    facility_id=r["facility_id"],
                    snapshot_date=r["snapshot_date"],
                    current_enrolled=r["current_enrolled"],
                    waitlist_by_class=json.loads(r["waitlist_by_class"] or "{}"),
                    enrolled_delta=r["enrolled_delta"],
                    to_detected=bool(r["to_detected"]) if r["to_detected"] is not None else None,
                    source=r["source"],
                    confidence=r["confidence"],
                )
            )

        for r in self._fetch(
            """
            SELECT * FROM community_mentions
            WHERE facility_id = ? AND reported_at >= ?
            ORDER BY reported_at ASC
            """,
            (facility_id, cutoff),
        ):
            observations.append(
                CommunityMention(
                    facility_id=r["facility_id"],
                    reported_at=r["reported_at"],
                    source_id=r["source_id"],
                    estimated_slots=r["estimated_slots"],
                    age_class=r["age_class"],
                    confidence=r["confidence"],
                )
            )

        for r in self._fetch(
            """
            SELECT * FROM admission_records
            WHERE facility_id = ? AND admitted_at >= ?
            ORDER BY admitted_at ASC
            """,
            (facility_id, cutoff),
        ):
            observations.append(
                AdmissionRecord(
                    facility_id=r["facility_id"],
                    admitted_at=r["admitted_at"],
                    age_band=r["age_band"],
                    waited_months=r["waited_months"],
                    priority_type=r["priority_type"],
                )
            )

        return observations

    # -- maintenance --------------------------------------------------------

    def purge_older_than(self, *, keep_days: int, now: datetime | None = None) -> int:
        """Delete observations older than *keep_days* days.  Returns count deleted."""
        cutoff = _iso((now or datetime.now(UTC)) - timedelta(days=keep_days))
        deleted = 0
        try:
            with self._lock:
                conn = self._conn()
                for table, column in (
                    ("waitlist_snapshots", "snapshot_date"),
                    ("community_mentions", "reported_at"),
                    ("admission_records", "admitted_at"),
                ):
                    cursor = conn.execute(f"DELETE FROM {table} WHERE {column} < ?", (cutoff,))
                    deleted += cursor.rowcount
                conn.commit()
        except sqlite3.Error as exc:
            raise EvidenceStoreUnavailableError(f"Evidence store purge failed: {exc}") from exc
        return deleted
