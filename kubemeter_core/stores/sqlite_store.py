from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from kubemeter_core.errors import PersistenceError, ValidationError
from kubemeter_core.metering.types import EntityIdentity, UsageSample


def _to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def _from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _units_key(used: dict[int, int]) -> str:
    return ",".join(f"{enum_id}:{used[enum_id]}" for enum_id in sorted(used))


@dataclass(frozen=True)
class SqliteMonitorStore:
    """Usage samples and raw traffic counters in one SQLite file.

    A sample is unique per (tenant, kind, name, timestamp) and its exact
    billed amounts, so replaying a batch is a no-op while a sample with
    different amounts is kept alongside the first.
    """

    path: str

    def __post_init__(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=30)

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS usage_samples (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    category TEXT NOT NULL,
                    entity_type TEXT NOT NULL,
                    entity_name TEXT NOT NULL,
                    used TEXT NOT NULL,
                    units_key TEXT NOT NULL,
                    observed_at INTEGER NOT NULL,
                    UNIQUE (category, entity_type, entity_name, observed_at, units_key)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_usage_samples_window
                ON usage_samples (category, observed_at)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS traffic_counters (
                    tenant TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    name TEXT NOT NULL,
                    sent_bytes INTEGER NOT NULL,
                    recorded_at INTEGER NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_traffic_counters_lookup
                ON traffic_counters (tenant, kind, name, recorded_at)
                """
            )

    def insert_samples(self, *samples: UsageSample) -> int:
        if not samples:
            return 0
        rows = []
        for sample in samples:
            used = dict(sample.used)
            if not used or sample.is_empty():
                raise ValidationError(
                    f"Refusing empty usage sample for {sample.category}/"
                    f"{sample.entity_type}/{sample.entity_name}"
                )
            if any(value < 0 for value in used.values()):
                raise ValidationError(
                    f"Negative usage for {sample.category}/{sample.entity_name}"
                )
            rows.append(
                (
                    sample.category,
                    sample.entity_type,
                    sample.entity_name,
                    json.dumps({str(k): v for k, v in sorted(used.items())}),
                    _units_key(used),
                    _to_ms(sample.observed_at),
                )
            )
        try:
            with self._connect() as conn:
                before = conn.total_changes
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO usage_samples (
                        category, entity_type, entity_name, used, units_key,
                        observed_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                return conn.total_changes - before
        except sqlite3.Error as exc:
            raise PersistenceError(f"SQLite insert failed: {exc}") from exc

    def get_distinct_identities(
        self,
        start: datetime,
        end: datetime,
        tenant: str,
    ) -> list[EntityIdentity]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT DISTINCT entity_type, entity_name FROM usage_samples
                    WHERE category = ? AND observed_at >= ? AND observed_at < ?
                    ORDER BY entity_type, entity_name
                    """,
                    (tenant, _to_ms(start), _to_ms(end)),
                ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"SQLite query failed: {exc}") from exc
        return [EntityIdentity(kind=row[0], name=row[1]) for row in rows]

    def list_samples(
        self,
        tenant: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[UsageSample]:
        query = (
            "SELECT category, entity_type, entity_name, used, observed_at "
            "FROM usage_samples"
        )
        conditions: list[str] = []
        params: list[object] = []
        if tenant is not None:
            conditions.append("category = ?")
            params.append(tenant)
        if start is not None:
            conditions.append("observed_at >= ?")
            params.append(_to_ms(start))
        if end is not None:
            conditions.append("observed_at < ?")
            params.append(_to_ms(end))
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY observed_at, entity_type, entity_name"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            UsageSample(
                category=row[0],
                entity_type=row[1],
                entity_name=row[2],
                used={int(k): int(v) for k, v in json.loads(row[3]).items()},
                observed_at=_from_ms(row[4]),
            )
            for row in rows
        ]

    def delete_samples_older_than(
        self,
        days: int,
        *,
        now: datetime | None = None,
    ) -> int:
        if days <= 0:
            raise ValidationError("Retention days must be positive")
        reference = now or datetime.now(timezone.utc)
        cutoff = _to_ms(reference - timedelta(days=days))
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM usage_samples WHERE observed_at < ?",
                    (cutoff,),
                )
                return cursor.rowcount
        except sqlite3.Error as exc:
            raise PersistenceError(f"SQLite delete failed: {exc}") from exc

    def record_traffic(
        self,
        tenant: str,
        kind: str,
        name: str,
        sent_bytes: int,
        recorded_at: datetime,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO traffic_counters (
                    tenant, kind, name, sent_bytes, recorded_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (tenant, kind, name, int(sent_bytes), _to_ms(recorded_at)),
            )

    def get_traffic_sent_bytes(
        self,
        start: datetime,
        end: datetime,
        tenant: str,
        kind: str,
        name: str,
    ) -> int:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT COALESCE(SUM(sent_bytes), 0) FROM traffic_counters
                    WHERE tenant = ? AND kind = ? AND name = ?
                      AND recorded_at >= ? AND recorded_at < ?
                    """,
                    (tenant, kind, name, _to_ms(start), _to_ms(end)),
                ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"SQLite traffic query failed: {exc}") from exc
        return int(row[0] or 0)
