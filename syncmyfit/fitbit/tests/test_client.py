"""Tests for the Fitbit client — parsing of realistic API responses."""

from __future__ import annotations

from datetime import datetime

import httpx
import pytest
import respx

from syncmyfit.errors import MalformedPayloadError, UnexpectedResponseError
from syncmyfit.fitbit.auth import AuthSessionManager
from syncmyfit.fitbit.client import FitbitClient
from syncmyfit.fitbit.config_loader import SyncConfig
from syncmyfit.fitbit.pipeline import AuthenticatedRequestPipeline
from syncmyfit.fitbit.tests.conftest import (
    ACTIVITY_PAYLOAD,
    ACTIVITY_URL,
    HEART_PAYLOAD,
    HEART_URL,
    PROFILE_PAYLOAD,
    PROFILE_URL,
    SLEEP_PAYLOAD,
    SLEEP_URL,
    TEST_NOW,
    TEST_TZ,
    store_tokens,
)
from syncmyfit.fitbit.token_store import TokenStore


@pytest.fixture
def fitbit_client(
    auth_manager: AuthSessionManager, token_store: TokenStore, sync_config: SyncConfig
) -> FitbitClient:
    """Fitbit client with a stored, valid token."""
    store_tokens(token_store)
    pipeline = AuthenticatedRequestPipeline(auth_manager, httpx.AsyncClient())
    return FitbitClient(pipeline, sync_config.api)


# ---------------------------------------------------------------------------
# Profile and activity summary
# ---------------------------------------------------------------------------


class TestProfileAndActivity:
    @pytest.mark.asyncio
    @respx.mock
    async def test_profile_display_name(self, fitbit_client: FitbitClient) -> None:
        respx.get(PROFILE_URL).mock(return_value=httpx.Response(200, json=PROFILE_PAYLOAD))
        assert await fitbit_client.fetch_profile_name() == "Sam R."

    @pytest.mark.asyncio
    @respx.mock
    async def test_steps_and_calories(self, fitbit_client: FitbitClient) -> None:
        respx.get(ACTIVITY_URL).mock(return_value=httpx.Response(200, json=ACTIVITY_PAYLOAD))
        assert await fitbit_client.fetch_steps(TEST_NOW) == 5555
        assert await fitbit_client.fetch_calories(TEST_NOW) == 2140

    @pytest.mark.asyncio
    @respx.mock
    async def test_zero_steps_is_a_value(self, fitbit_client: FitbitClient) -> None:
        respx.get(ACTIVITY_URL).mock(
            return_value=httpx.Response(200, json={"summary": {"steps": 0, "caloriesOut": 1600}})
        )
        assert await fitbit_client.fetch_steps(TEST_NOW) == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_summary_without_steps_is_malformed(self, fitbit_client: FitbitClient) -> None:
        respx.get(ACTIVITY_URL).mock(
            return_value=httpx.Response(200, json={"summary": {"caloriesOut": 1600}})
        )
        with pytest.raises(MalformedPayloadError) as excinfo:
            await fitbit_client.fetch_steps(TEST_NOW)
        assert excinfo.value.field == "summary.steps"

    @pytest.mark.asyncio
    @respx.mock
    async def test_date_comes_from_local_day(self, fitbit_client: FitbitClient) -> None:
        # 11 pm in UTC-5 is already the next day in UTC; the local date wins.
        late = datetime(2026, 2, 23, 23, 0, tzinfo=TEST_TZ)
        route = respx.get(ACTIVITY_URL).mock(return_value=httpx.Response(200, json=ACTIVITY_PAYLOAD))
        await fitbit_client.fetch_steps(late)
        assert route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_json_body_is_malformed(self, fitbit_client: FitbitClient) -> None:
        respx.get(PROFILE_URL).mock(return_value=httpx.Response(200, text="<html/>"))
        with pytest.raises(MalformedPayloadError):
            await fitbit_client.fetch_profile_name()

    @pytest.mark.asyncio
    @respx.mock
    async def test_request_errors_propagate(self, fitbit_client: FitbitClient) -> None:
        respx.get(PROFILE_URL).mock(return_value=httpx.Response(503, text="down"))
        with pytest.raises(UnexpectedResponseError):
            await fitbit_client.fetch_profile_name()


# ---------------------------------------------------------------------------
# Heart rate
# ---------------------------------------------------------------------------


class TestHeartRate:
    @pytest.mark.asyncio
    @respx.mock
    async def test_intraday_readings(self, fitbit_client: FitbitClient) -> None:
        respx.get(HEART_URL).mock(return_value=httpx.Response(200, json=HEART_PAYLOAD))

        readings = await fitbit_client.fetch_heart_rate(TEST_NOW)

        assert [r.bpm for r in readings] == [64, 66, 71]
        assert readings[0].recorded_at == datetime(2026, 2, 23, 8, 0, tzinfo=TEST_TZ)
        assert readings[2].recorded_at == datetime(2026, 2, 23, 8, 2, tzinfo=TEST_TZ)

    @pytest.mark.asyncio
    @respx.mock
    async def test_bad_entries_skipped_or_defaulted(self, fitbit_client: FitbitClient) -> None:
        payload = {
            "activities-heart-intraday": {
                "dataset": [
                    {"time": "09:00:00"},
                    {"time": "not-a-time", "value": 80},
                    "junk",
                ]
            }
        }
        respx.get(HEART_URL).mock(return_value=httpx.Response(200, json=payload))

        readings = await fitbit_client.fetch_heart_rate(TEST_NOW)

        assert len(readings) == 1
        assert readings[0].bpm == 80
        assert readings[0].recorded_at == TEST_NOW

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_intraday_block_is_malformed(self, fitbit_client: FitbitClient) -> None:
        respx.get(HEART_URL).mock(
            return_value=httpx.Response(200, json={"activities-heart": []})
        )
        with pytest.raises(MalformedPayloadError):
            await fitbit_client.fetch_heart_rate(TEST_NOW)


# ---------------------------------------------------------------------------
# Sleep
# ---------------------------------------------------------------------------


class TestSleep:
    @pytest.mark.asyncio
    @respx.mock
    async def test_duration_ms_to_hours(self, fitbit_client: FitbitClient) -> None:
        respx.get(SLEEP_URL).mock(return_value=httpx.Response(200, json=SLEEP_PAYLOAD))
        assert await fitbit_client.fetch_sleep_hours(TEST_NOW) == 8.0

    @pytest.mark.asyncio
    @respx.mock
    async def test_uses_first_sleep_entry(self, fitbit_client: FitbitClient) -> None:
        payload = {"sleep": [{"duration": 5_400_000}, {"duration": 28_800_000}]}
        respx.get(SLEEP_URL).mock(return_value=httpx.Response(200, json=payload))
        assert await fitbit_client.fetch_sleep_hours(TEST_NOW) == 1.5

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_sleep_logged(self, fitbit_client: FitbitClient) -> None:
        respx.get(SLEEP_URL).mock(
            return_value=httpx.Response(200, json={"sleep": [], "summary": {}})
        )
        assert await fitbit_client.fetch_sleep_hours(TEST_NOW) is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_entry_without_duration_is_malformed(self, fitbit_client: FitbitClient) -> None:
        respx.get(SLEEP_URL).mock(
            return_value=httpx.Response(200, json={"sleep": [{"dateOfSleep": "2026-02-23"}]})
        )
        with pytest.raises(MalformedPayloadError):
            await fitbit_client.fetch_sleep_hours(TEST_NOW)
