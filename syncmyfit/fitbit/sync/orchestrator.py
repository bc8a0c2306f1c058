"""Sync orchestrator: fetch today's Fitbit metrics and write them to the sink.

One sync run:
1. Fan out five concurrent fetches (profile, steps, heart rate, sleep, calories)
2. Join on all of them; each fetch fills its own FetchOutcome slot
3. Fail the run if the required metric (steps) did not resolve
4. Hand the resolved subset to the record writer
5. Stamp the sync status

Optional metrics that fail are logged and omitted; they never fail a run.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, TypeVar

from syncmyfit.errors import (
    MalformedPayloadError,
    RequiredMetricMissingError,
    SyncDeadlineExceededError,
    SyncError,
    SyncFetchError,
    SyncInProgressError,
)
from syncmyfit.fitbit.base import (
    FetchOutcome,
    HeartRateReading,
    Metric,
    SyncedMetrics,
    SyncReport,
    local_now,
)
from syncmyfit.fitbit.client import FitbitClient
from syncmyfit.fitbit.config_loader import SyncSection
from syncmyfit.fitbit.sync.status import SyncStatusTracker
from syncmyfit.fitbit.sync.writer import RecordWriter

logger = logging.getLogger("syncmyfit.fitbit.sync.orchestrator")

T = TypeVar("T")


@dataclass
class FetchOutcomes:
    """One slot per data source of a single sync run."""

    profile: FetchOutcome[str] = field(default_factory=FetchOutcome)
    steps: FetchOutcome[int] = field(default_factory=FetchOutcome)
    heart_rate: FetchOutcome[list[HeartRateReading]] = field(default_factory=FetchOutcome)
    sleep: FetchOutcome[float] = field(default_factory=FetchOutcome)
    calories: FetchOutcome[int] = field(default_factory=FetchOutcome)

    def slot(self, metric: Metric) -> FetchOutcome:
        return getattr(self, metric.value)

    def failures(self, priority: list[Metric]) -> list[tuple[Metric, BaseException]]:
        """Failed slots ordered by *priority*."""
        failed = []
        for metric in priority:
            outcome = self.slot(metric)
            if outcome.error is not None:
                failed.append((metric, outcome.error))
        return failed


class SyncOrchestrator:
    """Runs ``sync_all()`` one at a time.

    Usage::

        orchestrator = SyncOrchestrator(client, writer, status, config.sync)
        report = await orchestrator.sync_all()
    """

    def __init__(
        self,
        client: FitbitClient,
        writer: RecordWriter,
        status: SyncStatusTracker,
        policy: SyncSection,
        *,
        deadline_seconds: float = 120.0,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            client:           Fitbit data fetches.
            writer:           Writes resolved metrics into the health sink.
            status:           Receives the outcome of every run.
            policy:           Required metric and failure priority.
            deadline_seconds: Upper bound for the fetch phase. Writes to the sink
                              always run to completion.
            clock:            Returns the aware "now" a run is anchored to.
        """
        self._client = client
        self._writer = writer
        self._status = status
        self._policy = policy
        self._deadline = deadline_seconds
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def sync_all(self) -> SyncReport:
        """Fetch, aggregate and write today's metrics.

        Raises:
            SyncInProgressError:        Another run is in progress.
            RequiredMetricMissingError: The step payload had no step count.
            SyncFetchError:             The step fetch failed; wraps the
                                        highest-priority failure.
            SyncDeadlineExceededError:  The fetches did not finish within
                                        ``deadline_seconds``; nothing is written.
        """
        if self._lock.locked():
            raise SyncInProgressError()

        async with self._lock:
            try:
                report = await self._run()
            except SyncError as exc:
                self._status.record_result(False)
                logger.warning("Sync failed: %s", exc)
                raise

            self._status.record_result(True, at=report.synced_at)
            return report

    # ------------------------------------------------------------------
    # One run
    # ------------------------------------------------------------------

    async def _run(self) -> SyncReport:
        as_of = self._clock()
        logger.info("Sync started for %s", as_of.date().isoformat())

        try:
            profile, steps, heart_rate, sleep, calories = await asyncio.wait_for(
                asyncio.gather(
                    self._fetch(Metric.PROFILE, self._client.fetch_profile_name()),
                    self._fetch(Metric.STEPS, self._client.fetch_steps(as_of)),
                    self._fetch(Metric.HEART_RATE, self._client.fetch_heart_rate(as_of)),
                    self._fetch(Metric.SLEEP, self._client.fetch_sleep_hours(as_of)),
                    self._fetch(Metric.CALORIES, self._client.fetch_calories(as_of)),
                ),
                timeout=self._deadline,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Sync fetches exceeded their %.0fs deadline", self._deadline)
            raise SyncDeadlineExceededError(
                f"Fetches did not finish within {self._deadline:.0f}s"
            ) from exc

        outcomes = FetchOutcomes(
            profile=profile,
            steps=steps,
            heart_rate=heart_rate,
            sleep=sleep,
            calories=calories,
        )

        self._raise_if_required_missing(outcomes)

        metrics = SyncedMetrics(
            as_of=as_of,
            steps=outcomes.steps.value,
            heart_rate=outcomes.heart_rate.value or None,
            sleep_hours=outcomes.sleep.value,
            calories=outcomes.calories.value,
        )
        skipped = {
            metric: str(error) for metric, error in outcomes.failures(self._policy.failure_priority)
        }

        written = await self._writer.write(metrics)

        report = SyncReport(
            synced_at=self._clock(),
            profile_name=outcomes.profile.value,
            metrics=metrics,
            written=written,
            skipped=skipped,
        )
        logger.info(
            "Sync complete: wrote %s, skipped %s",
            ", ".join(m.value for m, ok in written.items() if ok) or "nothing",
            ", ".join(m.value for m in skipped) or "nothing",
        )
        return report

    async def _fetch(self, metric: Metric, fetch: Awaitable[T]) -> FetchOutcome[T]:
        try:
            return FetchOutcome.ok(await fetch)
        except Exception as exc:
            logger.warning("%s fetch failed: %s", metric.value, exc)
            return FetchOutcome.err(exc)

    def _raise_if_required_missing(self, outcomes: FetchOutcomes) -> None:
        required = self._policy.required_metric
        outcome = outcomes.slot(required)
        if outcome.succeeded and outcome.value is not None:
            return
        if isinstance(outcome.error, MalformedPayloadError) or outcome.succeeded:
            raise RequiredMetricMissingError(required.value) from outcome.error

        metric, error = outcomes.failures(self._policy.failure_priority)[0]
        raise SyncFetchError(metric.value, error) from error
