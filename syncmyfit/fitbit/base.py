"""Canonical data models shared by the auth, request and sync layers.

These types are the only currency passed between components: the token store
hands out ``TokenRecord``, the sync orchestrator produces ``FetchOutcome`` slots
and ``SyncedMetrics``, and the record writer turns metrics into
``HealthSample`` objects for the health sink.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    """Current time as an aware datetime in the machine's local zone."""
    return datetime.now().astimezone()


def day_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` of the local calendar day containing *moment*."""
    start = datetime.combine(moment.date(), time.min, tzinfo=moment.tzinfo)
    return start, start + timedelta(days=1)


# ---------------------------------------------------------------------------
# OAuth tokens
# ---------------------------------------------------------------------------


@dataclass
class TokenRecord:
    """The locally cached Fitbit credential set.

    Attributes:
        access_token:  Bearer token for API calls.
        refresh_token: Token used to obtain a new access_token.  Fitbit does not
                       always rotate it, so it may lag behind the access token.
        expires_at:    UTC datetime when the access_token expires.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class AuthorizationAttempt:
    """State of one interactive login.  Never persisted."""

    code_verifier: str
    expected_state: str


class AuthState(str, Enum):
    IDLE = "idle"
    AWAITING_USER_AUTHORIZATION = "awaiting_user_authorization"
    EXCHANGING_CODE = "exchanging_code"
    AUTHENTICATED = "authenticated"
    REFRESHING_TOKEN = "refreshing_token"


# ---------------------------------------------------------------------------
# Fetch outcomes
# ---------------------------------------------------------------------------


class Metric(str, Enum):
    """Data sources fetched during a sync, and the sample types written."""

    PROFILE = "profile"
    STEPS = "steps"
    HEART_RATE = "heart_rate"
    SLEEP = "sleep"
    CALORIES = "calories"


@dataclass(frozen=True)
class FetchOutcome(Generic[T]):
    """Result of one fan-out fetch: either ``value`` or ``error`` is set."""

    value: T | None = None
    error: BaseException | None = None

    @classmethod
    def ok(cls, value: T | None) -> "FetchOutcome[T]":
        return cls(value=value)

    @classmethod
    def err(cls, error: BaseException) -> "FetchOutcome[T]":
        return cls(error=error)

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class HeartRateReading:
    """One minute-level heart-rate value from the intraday dataset."""

    bpm: int
    recorded_at: datetime


@dataclass
class SyncedMetrics:
    """The subset of metrics that resolved during one sync run.

    ``None`` means the metric was not fetched successfully (or Fitbit had no
    data) and the writer must leave it alone.

    Attributes:
        as_of:       Aware moment of the fetch; its local calendar day is the
                     day the metrics belong to.
        steps:       Step count for the day.
        heart_rate:  Minute-level heart-rate readings.
        sleep_hours: Main sleep duration in hours.
        calories:    Calories burned (``caloriesOut``).
    """

    as_of: datetime
    steps: int | None = None
    heart_rate: list[HeartRateReading] | None = None
    sleep_hours: float | None = None
    calories: int | None = None

    def present(self) -> list[Metric]:
        metrics = []
        if self.steps is not None:
            metrics.append(Metric.STEPS)
        if self.heart_rate:
            metrics.append(Metric.HEART_RATE)
        if self.sleep_hours is not None:
            metrics.append(Metric.SLEEP)
        if self.calories is not None:
            metrics.append(Metric.CALORIES)
        return metrics


# ---------------------------------------------------------------------------
# Health samples
# ---------------------------------------------------------------------------


@dataclass
class HealthSample:
    """A typed sample written to the health sink.

    Attributes:
        metric:   Sample type.
        value:    Quantity (count, bpm, kcal) or, for sleep, hours asleep.
        unit:     Unit label ('count', 'count/min', 'kcal', 'hr').
        start:    Aware start of the sample's time range.
        end:      Aware end of the sample's time range.
        metadata: Free-form metadata; carries the origin tag.
        sample_id: Sink-assigned identifier, ``None`` until saved.
    """

    metric: Metric
    value: float
    unit: str
    start: datetime
    end: datetime
    metadata: dict[str, str] = field(default_factory=dict)
    sample_id: str | None = None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """True if the sample's range touches ``[start, end)``."""
        return self.start < end and self.end >= start


# ---------------------------------------------------------------------------
# Sync status
# ---------------------------------------------------------------------------


class SyncResult(str, Enum):
    NONE = "none"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class SyncStatus:
    last_synced_at: datetime | None = None
    last_result: SyncResult = SyncResult.NONE


@dataclass
class SyncReport:
    """Summary returned by a successful ``sync_all()``.

    Attributes:
        synced_at:      When the sync completed.
        profile_name:   Fitbit display name, if the profile fetch succeeded.
        metrics:        The metrics handed to the record writer.
        written:        Per-metric write result from the record writer.
        skipped:        Metrics whose fetch failed, with the error message.
    """

    synced_at: datetime
    profile_name: str | None
    metrics: SyncedMetrics
    written: dict[Metric, bool] = field(default_factory=dict)
    skipped: dict[Metric, str] = field(default_factory=dict)
