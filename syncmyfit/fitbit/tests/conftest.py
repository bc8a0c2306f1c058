"""Shared fixtures and canned Fitbit responses for the auth and sync tests."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

# Settings are read from the environment when syncmyfit.main is imported.
os.environ.setdefault("FITBIT_CLIENT_ID", "TESTCLIENT")
os.environ.setdefault("TOKEN_ENCRYPTION_SECRET", "test-encryption-secret")

from syncmyfit.config import Settings  # noqa: E402
from syncmyfit.fitbit.auth import AuthSessionManager  # noqa: E402
from syncmyfit.fitbit.base import TokenRecord  # noqa: E402
from syncmyfit.fitbit.config_loader import SyncConfig, load_sync_config  # noqa: E402
from syncmyfit.fitbit.token_store import TokenStore  # noqa: E402
from syncmyfit.services.secure_store import InMemorySecureStore  # noqa: E402

TOKEN_URL = "https://api.fitbit.com/oauth2/token"
API_BASE = "https://api.fitbit.com"
REDIRECT_URI = "syncmyfit://auth"

# Fixed sync moment: 2:30 pm on 2026-02-23 in UTC-5
TEST_TZ = timezone(timedelta(hours=-5))
TEST_NOW = datetime(2026, 2, 23, 14, 30, tzinfo=TEST_TZ)
TEST_DATE = "2026-02-23"

PROFILE_URL = f"{API_BASE}/1/user/-/profile.json"
ACTIVITY_URL = f"{API_BASE}/1/user/-/activities/date/{TEST_DATE}.json"
HEART_URL = f"{API_BASE}/1/user/-/activities/heart/date/{TEST_DATE}/1d/1min.json"
SLEEP_URL = f"{API_BASE}/1.2/user/-/sleep/date/{TEST_DATE}.json"


# ---------------------------------------------------------------------------
# Canned payloads
# ---------------------------------------------------------------------------


def token_payload(access: str = "ACCESS-1", refresh: str | None = "REFRESH-1", expires_in: int = 28800) -> dict:
    body: dict = {"access_token": access, "expires_in": expires_in, "token_type": "Bearer"}
    if refresh is not None:
        body["refresh_token"] = refresh
    return body


PROFILE_PAYLOAD = {"user": {"displayName": "Sam R.", "timezone": "America/New_York"}}
ACTIVITY_PAYLOAD = {"summary": {"steps": 5555, "caloriesOut": 2140, "floors": 7}}
HEART_PAYLOAD = {
    "activities-heart": [{"dateTime": TEST_DATE, "value": {"restingHeartRate": 58}}],
    "activities-heart-intraday": {
        "dataset": [
            {"time": "08:00:00", "value": 64},
            {"time": "08:01:00", "value": 66},
            {"time": "08:02:00", "value": 71},
        ],
        "datasetInterval": 1,
        "datasetType": "minute",
    },
}
SLEEP_PAYLOAD = {
    "sleep": [{"dateOfSleep": TEST_DATE, "duration": 28_800_000, "isMainSleep": True}],
    "summary": {"totalMinutesAsleep": 451},
}


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeUserAgent:
    """Completes the authorization step without a browser.

    By default answers with ``code`` and echoes the request's ``state``;
    ``callback`` overrides the redirect, ``error`` makes authorize() raise.
    """

    def __init__(self, code: str = "AUTHCODE", callback: str | None = None, error: Exception | None = None) -> None:
        self.code = code
        self.callback = callback
        self.error = error
        self.requests: list[tuple[str, str]] = []

    async def authorize(self, url: str, callback_scheme: str) -> str:
        self.requests.append((url, callback_scheme))
        if self.error is not None:
            raise self.error
        if self.callback is not None:
            return self.callback
        state = parse_qs(urlsplit(url).query)["state"][0]
        return f"{REDIRECT_URI}?code={self.code}&state={state}"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real sync config for tests."""
    return load_sync_config()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        fitbit_client_id="TESTCLIENT",
        fitbit_redirect_uri=REDIRECT_URI,
        token_encryption_secret="test-encryption-secret",
        secure_store_path=str(tmp_path / "secure.db"),
        health_store_path=str(tmp_path / "health.db"),
        open_browser=False,
        login_timeout_seconds=2.0,
        request_timeout_seconds=5.0,
        sync_deadline_seconds=5.0,
    )


@pytest.fixture
def secure_store() -> InMemorySecureStore:
    return InMemorySecureStore()


@pytest.fixture
def token_store(secure_store: InMemorySecureStore, sync_config: SyncConfig) -> TokenStore:
    return TokenStore(secure_store, sync_config.keychain)


@pytest.fixture
def user_agent() -> FakeUserAgent:
    return FakeUserAgent()


@pytest.fixture
def auth_manager(
    settings: Settings,
    sync_config: SyncConfig,
    token_store: TokenStore,
    user_agent: FakeUserAgent,
) -> AuthSessionManager:
    return AuthSessionManager(
        settings=settings,
        api=sync_config.api,
        tokens=token_store,
        user_agent=user_agent,
        http_client=httpx.AsyncClient(),
    )


def store_tokens(
    token_store: TokenStore,
    access: str = "ACCESS-0",
    refresh: str | None = "REFRESH-0",
    expires_in: float = 3600,
) -> TokenRecord:
    """Persist a token record expiring *expires_in* seconds from now."""
    record = TokenRecord(
        access_token=access,
        refresh_token=refresh,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    )
    token_store.set(record)
    return record
