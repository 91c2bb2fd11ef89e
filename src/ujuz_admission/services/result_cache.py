"""Result cache – TTL-bounded reuse of computed admission results.

Keys are derived from the query, the Korean calendar month and the engine
version, so a result never survives a month rollover or a calibration
change.  Entries are never patched: a miss or an expired entry triggers a
fresh computation that replaces the stored entry (last writer wins).

Two reference stores are provided:

* ``InMemoryCacheStore`` – process-local dict guarded by a lock.
* ``SqliteCacheStore`` – persistent store at
  ``$UJUZ_DATA_DIR/admission_cache.db``.
"""

from __future__ import annotations

import hashlib
import logging
import sqlite3
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from ujuz_admission.config import ENGINE_VERSION, SERVICE_TIMEZONE
from ujuz_admission.errors import EvidenceStoreUnavailableError
from ujuz_admission.models.admission import AdmissionQuery, AdmissionScoreResult

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300

# ---------------------------------------------------------------------------
# Entries and store contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CacheEntry:
    cache_key: str
    facility_id: str
    result: AdmissionScoreResult
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return self.expires_at > now


class CacheStore(Protocol):
    def get(self, cache_key: str, now: datetime | None = None) -> CacheEntry | None: ...

    def put(self, entry: CacheEntry) -> None: ...

    def delete_facility(self, facility_id: str) -> int: ...

    def purge_expired(self, now: datetime | None = None) -> int: ...


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def cache_key(
    query: AdmissionQuery,
    now: datetime,
    engine_version: str = ENGINE_VERSION,
) -> str:
    """Deterministic key for *query* in the Korean calendar month of *now*."""
    position = "" if query.waiting_position is None else str(query.waiting_position)
    parts = (
        query.facility_id,
        str(query.child_age_band),
        position,
        str(query.priority_type),
        _aware(now).astimezone(SERVICE_TIMEZONE).strftime("%Y-%m"),
        engine_version,
    )
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemoryCacheStore:
    """Process-local store.

    An entry read after its expiry is dropped; entries that are never read
    again (older months, older engine versions) go with ``purge_expired``.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, cache_key: str, now: datetime | None = None) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(cache_key)
            if entry is not None and now is not None and not entry.is_fresh(_aware(now)):
                del self._entries[cache_key]
                return None
            return entry

    def put(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[entry.cache_key] = entry

    def delete_facility(self, facility_id: str) -> int:
        with self._lock:
            stale = [k for k, e in self._entries.items() if e.facility_id == facility_id]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete entries whose TTL has elapsed.  Returns count deleted."""
        cutoff = _aware(now or datetime.now(UTC))
        with self._lock:
            expired = [k for k, e in self._entries.items() if not e.is_fresh(cutoff)]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ---------------------------------------------------------------------------
# SQLite store
# ---------------------------------------------------------------------------

_CACHE_SCHEMA = """
CREATE TABLE IF NOT EXISTS admission_cache (
    cache_key TEXT PRIMARY KEY,
    facility_id TEXT NOT NULL,
    result TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cache_facility ON admission_cache (facility_id);
CREATE INDEX IF NOT EXISTS idx_cache_expires ON admission_cache (expires_at);
"""


class SqliteCacheStore:
    """Persistent cache store with thread-local connections."""

    def __init__(self, path: Path | str) -> None:
        self._path = str(path)
        self._local = threading.local()
        self._shared: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        if self._path == ":memory:":
            self._shared = self._connect()

    def _connect(self) -> sqlite3.Connection:
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self._path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            if self._path != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_CACHE_SCHEMA)
            conn.commit()
        except (OSError, sqlite3.Error) as exc:
            raise EvidenceStoreUnavailableError(
                f"Cache store unavailable at {self._path}: {exc}"
            ) from exc
        logger.info("Opened admission cache %s", self._path)
        return conn

    def _conn(self) -> sqlite3.Connection:
        if self._shared is not None:
            return self._shared
        conn: sqlite3.Connection | None = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
        return conn

    def get(self, cache_key: str, now: datetime | None = None) -> CacheEntry | None:
        with self._lock:
            conn = self._conn()
            row = conn.execute(
                "SELECT * FROM admission_cache WHERE cache_key = ?", (cache_key,)
            ).fetchone()
            if row is None:
                return None
            expires_at = datetime.fromisoformat(row["expires_at"])
            if now is not None and expires_at <= _aware(now):
                conn.execute("DELETE FROM admission_cache WHERE cache_key = ?", (cache_key,))
                conn.commit()
                return None
        return CacheEntry(
            cache_key=row["cache_key"],
            facility_id=row["facility_id"],
            result=AdmissionScoreResult.model_validate_json(row["result"]),
            expires_at=expires_at,
        )

    def put(self, entry: CacheEntry) -> None:
        with self._lock:
            conn = self._conn()
            conn.execute(
                """
                INSERT OR REPLACE INTO admission_cache
                    (cache_key, facility_id, result, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    entry.cache_key,
                    entry.facility_id,
                    entry.result.model_dump_json(),
                    _aware(entry.expires_at).astimezone(UTC).isoformat(),
                ),
            )
            conn.commit()

    def delete_facility(self, facility_id: str) -> int:
        with self._lock:
            conn = self._conn()
            cursor = conn.execute(
                "DELETE FROM admission_cache WHERE facility_id = ?", (facility_id,)
            )
            conn.commit()
        return cursor.rowcount

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete entries whose TTL has elapsed.  Returns count deleted."""
        cutoff = _aware(now or datetime.now(UTC)).astimezone(UTC).isoformat()
        with self._lock:
            conn = self._conn()
            cursor = conn.execute("DELETE FROM admission_cache WHERE expires_at <= ?", (cutoff,))
            conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        conn: sqlite3.Connection | None = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
        if self._shared is not None:
            self._shared.close()
            self._shared = None


# ---------------------------------------------------------------------------
# Cache front
# ---------------------------------------------------------------------------


class ResultCache:
    """Get-or-compute wrapper around a ``CacheStore``.

    Concurrent misses for the same key each compute; whichever ``put``
    lands last is kept.
    """

    def __init__(
        self,
        store: CacheStore,
        compute: Callable[[AdmissionQuery, datetime], AdmissionScoreResult],
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        engine_version: str = ENGINE_VERSION,
    ) -> None:
        self._store = store
        self._compute = compute
        self._ttl = timedelta(seconds=ttl_seconds)
        self._engine_version = engine_version

    def cache_key(self, query: AdmissionQuery, now: datetime) -> str:
        return cache_key(query, now, self._engine_version)

    def get_or_compute(
        self, query: AdmissionQuery, now: datetime | None = None
    ) -> AdmissionScoreResult:
        now = _aware(now or datetime.now(UTC))
        key = self.cache_key(query, now)

        entry = self._store.get(key, now)
        if entry is not None and entry.is_fresh(now):
            logger.debug("Admission cache hit for %s (%s)", query.facility_id, key[:12])
            return entry.result

        logger.info("Admission cache miss for %s, recomputing", query.facility_id)
        purged = self._store.purge_expired(now)
        if purged:
            logger.debug("Purged %d expired cache entr(ies)", purged)
        result = self._compute(query, now)
        self._store.put(
            CacheEntry(
                cache_key=key,
                facility_id=query.facility_id,
                result=result,
                expires_at=now + self._ttl,
            )
        )
        return result

    def invalidate_facility(self, facility_id: str) -> int:
        """Drop every cached result for *facility_id*."""
        removed = self._store.delete_facility(facility_id)
        if removed:
            logger.info("Invalidated %d cached result(s) for %s", removed, facility_id)
        return removed
