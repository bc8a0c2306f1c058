"""Fitbit Web API data fetches.

Every fetch goes through the authenticated request pipeline and turns the JSON
payload into a plain value.  A 2xx payload that lacks the expected field raises
``MalformedPayloadError``; request failures propagate unchanged.

Endpoints used:
    /1/user/-/profile.json                               user.displayName
    /1/user/-/activities/date/{date}.json                summary.steps, summary.caloriesOut
    /1/user/-/activities/heart/date/{date}/1d/1min.json  activities-heart-intraday.dataset
    /1.2/user/-/sleep/date/{date}.json                   sleep[0].duration (ms)
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, time
from typing import Any

from syncmyfit.errors import MalformedPayloadError
from syncmyfit.fitbit.base import HeartRateReading
from syncmyfit.fitbit.config_loader import ApiConfig
from syncmyfit.fitbit.pipeline import AuthenticatedRequestPipeline

logger = logging.getLogger("syncmyfit.fitbit.client")

_MS_PER_HOUR = 3_600_000


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class FitbitClient:
    """Typed accessors for the Fitbit endpoints used by a sync.

    Date-scoped fetches take the aware moment of the sync; its local calendar
    date selects the Fitbit day.
    """

    def __init__(self, pipeline: AuthenticatedRequestPipeline, api: ApiConfig) -> None:
        self._pipeline = pipeline
        self._api = api

    async def _get_json(self, endpoint: str, **params: str) -> dict[str, Any]:
        body = await self._pipeline.get(self._api.endpoint_url(endpoint, **params))
        try:
            data = json.loads(body)
        except ValueError as exc:
            raise MalformedPayloadError(endpoint, "<json>") from exc
        if not isinstance(data, dict):
            raise MalformedPayloadError(endpoint, "<object>")
        return data

    # ------------------------------------------------------------------
    # Fetches
    # ------------------------------------------------------------------

    async def fetch_profile_name(self) -> str:
        data = await self._get_json("profile")
        name = (data.get("user") or {}).get("displayName")
        if not isinstance(name, str):
            raise MalformedPayloadError("profile", "user.displayName")
        return name

    async def fetch_steps(self, as_of: datetime) -> int:
        summary = await self._activity_summary(as_of)
        steps = summary.get("steps")
        if not _is_number(steps):
            raise MalformedPayloadError("activity_summary", "summary.steps")
        return int(steps)

    async def fetch_calories(self, as_of: datetime) -> int:
        summary = await self._activity_summary(as_of)
        calories = summary.get("caloriesOut")
        if not _is_number(calories):
            raise MalformedPayloadError("activity_summary", "summary.caloriesOut")
        return int(calories)

    async def fetch_heart_rate(self, as_of: datetime) -> list[HeartRateReading]:
        """Return the day's minute-level heart-rate readings.

        Each dataset entry ``{"time": "HH:MM:SS", "value": bpm}`` is stamped on
        the sync's local date.  Entries without a numeric value are skipped;
        an unparseable time falls back to *as_of*.
        """
        data = await self._get_json("heart_rate_intraday", date=as_of.date().isoformat())
        intraday = data.get("activities-heart-intraday")
        if not isinstance(intraday, dict) or not isinstance(intraday.get("dataset"), list):
            raise MalformedPayloadError(
                "heart_rate_intraday", "activities-heart-intraday.dataset"
            )

        readings: list[HeartRateReading] = []
        for entry in intraday["dataset"]:
            if not isinstance(entry, dict) or not _is_number(entry.get("value")):
                continue
            readings.append(
                HeartRateReading(
                    bpm=int(entry["value"]),
                    recorded_at=self._stamp(entry.get("time"), as_of),
                )
            )
        skipped = len(intraday["dataset"]) - len(readings)
        if skipped:
            logger.debug("Skipped %d heart-rate entries without a value", skipped)
        return readings

    async def fetch_sleep_hours(self, as_of: datetime) -> float | None:
        """Return the main sleep's duration in hours, or None if no sleep was logged."""
        data = await self._get_json("sleep", date=as_of.date().isoformat())
        sessions = data.get("sleep")
        if not isinstance(sessions, list):
            raise MalformedPayloadError("sleep", "sleep")
        if not sessions:
            return None
        first = sessions[0]
        duration = first.get("duration") if isinstance(first, dict) else None
        if not _is_number(duration):
            raise MalformedPayloadError("sleep", "sleep[0].duration")
        return duration / _MS_PER_HOUR

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _activity_summary(self, as_of: datetime) -> dict[str, Any]:
        data = await self._get_json("activity_summary", date=as_of.date().isoformat())
        summary = data.get("summary")
        if not isinstance(summary, dict):
            raise MalformedPayloadError("activity_summary", "summary")
        return summary

    @staticmethod
    def _stamp(value: Any, as_of: datetime) -> datetime:
        if isinstance(value, str):
            try:
                return datetime.combine(as_of.date(), time.fromisoformat(value), tzinfo=as_of.tzinfo)
            except ValueError:
                pass
        return as_of
