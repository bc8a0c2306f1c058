"""Tests for the authenticated request pipeline and its 401 refresh-retry."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from syncmyfit.errors import (
    AuthRefreshFailedError,
    RequestTimeoutError,
    RequestTransportError,
    UnauthenticatedError,
    UnexpectedResponseError,
)
from syncmyfit.fitbit.auth import AuthSessionManager
from syncmyfit.fitbit.pipeline import AuthenticatedRequestPipeline
from syncmyfit.fitbit.tests.conftest import PROFILE_URL, TOKEN_URL, store_tokens, token_payload
from syncmyfit.fitbit.token_store import TokenStore


@pytest.fixture
def pipeline(auth_manager: AuthSessionManager) -> AuthenticatedRequestPipeline:
    return AuthenticatedRequestPipeline(auth_manager, httpx.AsyncClient(), timeout_seconds=5.0)


class TestPerform:
    @pytest.mark.asyncio
    async def test_requires_stored_token(self, pipeline: AuthenticatedRequestPipeline) -> None:
        with pytest.raises(UnauthenticatedError):
            await pipeline.get(PROFILE_URL)

    @pytest.mark.asyncio
    @respx.mock
    async def test_attaches_bearer_token(
        self, pipeline: AuthenticatedRequestPipeline, token_store: TokenStore
    ) -> None:
        store_tokens(token_store, access="ACCESS-0")
        route = respx.get(PROFILE_URL).mock(return_value=httpx.Response(200, json={"user": {}}))

        body = await pipeline.get(PROFILE_URL)

        assert json.loads(body) == {"user": {}}
        assert route.calls.last.request.headers["Authorization"] == "Bearer ACCESS-0"

    @pytest.mark.asyncio
    @respx.mock
    async def test_401_refreshes_once_then_succeeds(
        self, pipeline: AuthenticatedRequestPipeline, token_store: TokenStore
    ) -> None:
        store_tokens(token_store, access="OLD")
        refresh = respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(200, json=token_payload("NEW"))
        )
        api = respx.get(PROFILE_URL)
        api.side_effect = [
            httpx.Response(401, json={"errors": [{"errorType": "expired_token"}]}),
            httpx.Response(200, json={"user": {"displayName": "Sam"}}),
        ]

        body = await pipeline.get(PROFILE_URL)

        assert b"Sam" in body
        assert refresh.call_count == 1
        assert api.call_count == 2
        assert api.calls[0].request.headers["Authorization"] == "Bearer OLD"
        assert api.calls[1].request.headers["Authorization"] == "Bearer NEW"

    @pytest.mark.asyncio
    @respx.mock
    async def test_401_twice_stops_after_one_retry(
        self, pipeline: AuthenticatedRequestPipeline, token_store: TokenStore
    ) -> None:
        store_tokens(token_store)
        refresh = respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(200, json=token_payload("NEW"))
        )
        api = respx.get(PROFILE_URL).mock(return_value=httpx.Response(401, json={}))

        with pytest.raises((AuthRefreshFailedError, UnexpectedResponseError)) as excinfo:
            await pipeline.get(PROFILE_URL)

        assert api.call_count == 2
        assert refresh.call_count == 1
        assert excinfo.value.status_code == 401

    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_failure_surfaces(
        self, pipeline: AuthenticatedRequestPipeline, token_store: TokenStore
    ) -> None:
        store_tokens(token_store)
        respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(400, json={"errors": [{"errorType": "invalid_grant"}]})
        )
        api = respx.get(PROFILE_URL).mock(return_value=httpx.Response(401, json={}))

        with pytest.raises(AuthRefreshFailedError):
            await pipeline.get(PROFILE_URL)
        assert api.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_rotated_token_is_reused_without_refresh(
        self, pipeline: AuthenticatedRequestPipeline, token_store: TokenStore
    ) -> None:
        store_tokens(token_store, access="OLD")
        refresh = respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(200, json=token_payload("UNUSED"))
        )

        def _respond(request: httpx.Request) -> httpx.Response:
            if request.headers["Authorization"] == "Bearer OLD":
                # Another caller rotates the token while this request is in flight.
                store_tokens(token_store, access="ROTATED")
                return httpx.Response(401, json={})
            return httpx.Response(200, json={"ok": True})

        api = respx.get(PROFILE_URL).mock(side_effect=_respond)

        await pipeline.get(PROFILE_URL)

        assert refresh.call_count == 0
        assert api.calls.last.request.headers["Authorization"] == "Bearer ROTATED"

    @pytest.mark.asyncio
    @respx.mock
    @pytest.mark.parametrize("status", [403, 404, 429, 500])
    async def test_other_statuses_are_unexpected(
        self, pipeline: AuthenticatedRequestPipeline, token_store: TokenStore, status: int
    ) -> None:
        store_tokens(token_store)
        refresh = respx.post(TOKEN_URL)
        respx.get(PROFILE_URL).mock(return_value=httpx.Response(status, text="nope"))

        with pytest.raises(UnexpectedResponseError) as excinfo:
            await pipeline.get(PROFILE_URL)
        assert excinfo.value.status_code == status
        assert not refresh.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_body_is_unexpected(
        self, pipeline: AuthenticatedRequestPipeline, token_store: TokenStore
    ) -> None:
        store_tokens(token_store)
        respx.get(PROFILE_URL).mock(return_value=httpx.Response(204))
        with pytest.raises(UnexpectedResponseError):
            await pipeline.get(PROFILE_URL)

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_maps_to_request_timeout(
        self, pipeline: AuthenticatedRequestPipeline, token_store: TokenStore
    ) -> None:
        store_tokens(token_store)
        respx.get(PROFILE_URL).mock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(RequestTimeoutError):
            await pipeline.get(PROFILE_URL)

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_error_maps_to_transport_error(
        self, pipeline: AuthenticatedRequestPipeline, token_store: TokenStore
    ) -> None:
        store_tokens(token_store)
        respx.get(PROFILE_URL).mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(RequestTransportError) as excinfo:
            await pipeline.get(PROFILE_URL)
        assert not isinstance(excinfo.value, RequestTimeoutError)
