"""Health-data sinks that receive the samples produced by a sync.

``SQLiteHealthSink`` is the durable local store used by the service.
``InMemoryHealthSink`` keeps samples in a list and is used by tests.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Protocol

from syncmyfit.fitbit.base import HealthSample, Metric

logger = logging.getLogger("syncmyfit.services.health_sink")


class HealthSink(Protocol):
    """Typed sample storage with windowed queries."""

    async def authorize(self, metrics: Iterable[Metric]) -> bool:
        """Request write access for the given sample types."""
        ...

    async def query(self, metric: Metric, start: datetime, end: datetime) -> list[HealthSample]:
        """Return samples of *metric* whose range overlaps ``[start, end)``."""
        ...

    async def delete(self, samples: list[HealthSample]) -> None:
        ...

    async def save(self, sample: HealthSample) -> None:
        ...


class InMemoryHealthSink:
    """List-backed sink.  Every sample type is authorized."""

    def __init__(self) -> None:
        self.samples: list[HealthSample] = []
        self.authorized: set[Metric] = set()

    async def authorize(self, metrics: Iterable[Metric]) -> bool:
        self.authorized.update(metrics)
        return True

    async def query(self, metric: Metric, start: datetime, end: datetime) -> list[HealthSample]:
        return [s for s in self.samples if s.metric == metric and s.overlaps(start, end)]

    async def delete(self, samples: list[HealthSample]) -> None:
        doomed = {s.sample_id for s in samples}
        self.samples = [s for s in self.samples if s.sample_id not in doomed]

    async def save(self, sample: HealthSample) -> None:
        if sample.sample_id is None:
            sample.sample_id = uuid.uuid4().hex
        self.samples.append(sample)


class SQLiteHealthSink:
    """Samples persisted in a local SQLite table.

    Timestamps are stored as ISO-8601 text in UTC so that lexical comparison
    matches chronological order.  Blocking calls run in a worker thread.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS health_samples (
                    sample_id TEXT PRIMARY KEY,
                    metric TEXT NOT NULL,
                    value REAL NOT NULL,
                    unit TEXT NOT NULL,
                    start_at TEXT NOT NULL,
                    end_at TEXT NOT NULL,
                    metadata TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS ix_health_samples_metric_start "
                "ON health_samples (metric, start_at)"
            )

    @staticmethod
    def _utc(moment: datetime) -> str:
        # Naive values are taken as local time.
        return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")

    # ------------------------------------------------------------------
    # HealthSink interface
    # ------------------------------------------------------------------

    async def authorize(self, metrics: Iterable[Metric]) -> bool:
        # Local store: nothing to grant.
        return True

    async def query(self, metric: Metric, start: datetime, end: datetime) -> list[HealthSample]:
        return await asyncio.to_thread(self._query, metric, start, end)

    async def delete(self, samples: list[HealthSample]) -> None:
        ids = [s.sample_id for s in samples if s.sample_id is not None]
        if ids:
            await asyncio.to_thread(self._delete, ids)

    async def save(self, sample: HealthSample) -> None:
        await asyncio.to_thread(self._save, sample)

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def _query(self, metric: Metric, start: datetime, end: datetime) -> list[HealthSample]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM health_samples
                WHERE metric = ? AND start_at < ? AND end_at >= ?
                ORDER BY start_at
                """,
                (metric.value, self._utc(end), self._utc(start)),
            ).fetchall()
        return [
            HealthSample(
                metric=Metric(row["metric"]),
                value=row["value"],
                unit=row["unit"],
                start=datetime.fromisoformat(row["start_at"]),
                end=datetime.fromisoformat(row["end_at"]),
                metadata=json.loads(row["metadata"]),
                sample_id=row["sample_id"],
            )
            for row in rows
        ]

    def _delete(self, ids: list[str]) -> None:
        with self._connect() as conn:
            conn.executemany(
                "DELETE FROM health_samples WHERE sample_id = ?",
                [(sample_id,) for sample_id in ids],
            )
        logger.debug("Deleted %d health samples", len(ids))

    def _save(self, sample: HealthSample) -> None:
        if sample.sample_id is None:
            sample.sample_id = uuid.uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO health_samples
                    (sample_id, metric, value, unit, start_at, end_at, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    sample.sample_id,
                    sample.metric.value,
                    float(sample.value),
                    sample.unit,
                    self._utc(sample.start),
                    self._utc(sample.end),
                    json.dumps(sample.metadata, sort_keys=True),
                ),
            )
