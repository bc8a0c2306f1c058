"""Idempotent per-day writes of synced metrics into the health sink.

For each metric present in a sync:
    1. Query the sink for samples of that type overlapping today's local day.
    2. Delete the ones carrying this app's origin tag.
    3. Insert the freshly built samples with the same tag.

Re-running a sync for the same day therefore replaces this app's samples and
never touches samples written by anyone else.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from syncmyfit.fitbit.base import HealthSample, Metric, SyncedMetrics, day_bounds
from syncmyfit.fitbit.config_loader import WriterConfig
from syncmyfit.services.health_sink import HealthSink

logger = logging.getLogger("syncmyfit.fitbit.sync.writer")

WRITABLE_METRICS = (Metric.STEPS, Metric.HEART_RATE, Metric.SLEEP, Metric.CALORIES)

UNITS: dict[Metric, str] = {
    Metric.STEPS: "count",
    Metric.HEART_RATE: "count/min",
    Metric.SLEEP: "hr",
    Metric.CALORIES: "kcal",
}


class RecordWriter:
    """Writes ``SyncedMetrics`` into a ``HealthSink``.

    Metrics are written independently: a failure for one is logged and does
    not stop, roll back, or retry the others.
    """

    def __init__(self, sink: HealthSink, config: WriterConfig) -> None:
        self._sink = sink
        self._config = config
        self._authorized = False

    async def write(self, metrics: SyncedMetrics) -> dict[Metric, bool]:
        """Write every present metric.

        Returns:
            Per-metric success flag for the metrics that were present.
        """
        present = metrics.present()
        if not present:
            return {}

        if not self._authorized:
            self._authorized = await self._sink.authorize(WRITABLE_METRICS)
            if not self._authorized:
                logger.error("Health sink denied write access; nothing written")
                return {metric: False for metric in present}

        results: dict[Metric, bool] = {}
        for metric in present:
            try:
                await self._replace(metric, self.build_samples(metric, metrics), metrics)
                results[metric] = True
            except Exception as exc:
                logger.error("Writing %s failed: %s", metric.value, exc)
                results[metric] = False
        return results

    def build_samples(self, metric: Metric, metrics: SyncedMetrics) -> list[HealthSample]:
        """Turn one metric of *metrics* into tagged samples.

        Steps and calories span the start of the day to the sync time; sleep
        ends at the sync time; each heart-rate reading is an instant.
        """
        day_start, _ = day_bounds(metrics.as_of)
        now = metrics.as_of
        unit = UNITS[metric]

        def _sample(value: float, start: datetime, end: datetime) -> HealthSample:
            return HealthSample(
                metric=metric,
                value=float(value),
                unit=unit,
                start=start,
                end=end,
                metadata=dict(self._config.origin_metadata),
            )

        if metric is Metric.STEPS:
            return [_sample(metrics.steps, day_start, now)]
        if metric is Metric.CALORIES:
            return [_sample(metrics.calories, day_start, now)]
        if metric is Metric.SLEEP:
            return [_sample(metrics.sleep_hours, now - timedelta(hours=metrics.sleep_hours), now)]
        if metric is Metric.HEART_RATE:
            return [_sample(r.bpm, r.recorded_at, r.recorded_at) for r in metrics.heart_rate or []]
        raise ValueError(f"{metric.value} is not a writable metric")

    async def _replace(
        self, metric: Metric, samples: list[HealthSample], metrics: SyncedMetrics
    ) -> None:
        start, end = day_bounds(metrics.as_of)
        existing = await self._sink.query(metric, start, end)
        ours = [
            s for s in existing
            if s.metadata.get(self._config.origin_key) == self._config.origin_tag
        ]
        if ours:
            await self._sink.delete(ours)
        for sample in samples:
            await self._sink.save(sample)
        logger.info(
            "Wrote %s: replaced %d sample(s) with %d", metric.value, len(ours), len(samples)
        )
