"""Pydantic response models for the auth and sync routes."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from syncmyfit.fitbit.base import AuthState, Metric, SyncReport, SyncResult, SyncStatus
from syncmyfit.models.base import SyncMyFitBase


# ---------- Auth ----------

class LoginStarted(SyncMyFitBase):
    authorization_url: str


class AuthStatusRead(SyncMyFitBase):
    state: AuthState
    token_valid: bool
    expires_at: datetime | None = None


class LoginCompleted(SyncMyFitBase):
    state: AuthState
    expires_at: datetime | None = None


class CancelResult(SyncMyFitBase):
    cancelled: bool


# ---------- Sync ----------

class SyncStatusRead(SyncMyFitBase):
    last_synced_at: datetime | None = None
    last_result: SyncResult = SyncResult.NONE
    running: bool = False

    @classmethod
    def from_status(cls, status: SyncStatus, running: bool) -> "SyncStatusRead":
        return cls(
            last_synced_at=status.last_synced_at,
            last_result=status.last_result,
            running=running,
        )


class SyncReportRead(SyncMyFitBase):
    synced_at: datetime
    profile_name: str | None = None
    steps: int | None = None
    heart_rate_samples: int = 0
    sleep_hours: float | None = None
    calories: int | None = None
    written: dict[Metric, bool] = Field(default_factory=dict)
    skipped: dict[Metric, str] = Field(default_factory=dict)

    @classmethod
    def from_report(cls, report: SyncReport) -> "SyncReportRead":
        metrics = report.metrics
        return cls(
            synced_at=report.synced_at,
            profile_name=report.profile_name,
            steps=metrics.steps,
            heart_rate_samples=len(metrics.heart_rate or []),
            sleep_hours=metrics.sleep_hours,
            calories=metrics.calories,
            written=report.written,
            skipped=report.skipped,
        )
