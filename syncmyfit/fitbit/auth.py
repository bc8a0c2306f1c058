"""Fitbit OAuth 2.0 session: PKCE login, code exchange and token refresh.

State machine published on ``AuthSessionManager.state``::

    IDLE → AWAITING_USER_AUTHORIZATION → EXCHANGING_CODE → AUTHENTICATED
    AUTHENTICATED → REFRESHING_TOKEN → AUTHENTICATED
    any state → IDLE   (logout, failed login, failed refresh)

Token endpoint (POST, form encoded):
    grant_type=authorization_code  client_id, redirect_uri, code, code_verifier
    grant_type=refresh_token       refresh_token, client_id
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import parse_qs, urlsplit

import httpx

from syncmyfit.config import Settings
from syncmyfit.errors import (
    MalformedTokenResponseError,
    MissingCodeError,
    NoAuthorizationAttemptError,
    NoRefreshTokenError,
    StateMismatchError,
    SyncMyFitError,
    TokenApiError,
    TokenTransportError,
    UserCancelledError,
)
from syncmyfit.fitbit.base import AuthorizationAttempt, AuthState, TokenRecord, utc_now
from syncmyfit.fitbit.config_loader import ApiConfig
from syncmyfit.fitbit.observable import Observable
from syncmyfit.fitbit.pkce import generate_challenge, generate_state
from syncmyfit.fitbit.token_store import TokenStore
from syncmyfit.fitbit.user_agent import UserAgent

logger = logging.getLogger("syncmyfit.fitbit.auth")


class AuthSessionManager:
    """Owns the token store and every exchange with the Fitbit token endpoint."""

    def __init__(
        self,
        *,
        settings: Settings,
        api: ApiConfig,
        tokens: TokenStore,
        user_agent: UserAgent,
        http_client: httpx.AsyncClient,
    ) -> None:
        """Initialize the session manager.

        Args:
            settings:    Client id, redirect URI and timeouts.
            api:         Authorize/token URLs and scopes.
            tokens:      Durable token record storage.
            user_agent:  Presents the authorization page and captures the redirect.
            http_client: Shared httpx client used for token requests.
        """
        self._settings = settings
        self._api = api
        self.tokens = tokens
        self._user_agent = user_agent
        self._http = http_client
        self.state: Observable[AuthState] = Observable(AuthState.IDLE)
        self._attempt: AuthorizationAttempt | None = None
        self._pending_refresh: asyncio.Task[TokenRecord] | None = None

    # ------------------------------------------------------------------
    # Interactive login
    # ------------------------------------------------------------------

    def authorization_url(self, challenge: str, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self._settings.fitbit_client_id,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "redirect_uri": self._settings.fitbit_redirect_uri,
            "scope": " ".join(self._api.scopes),
            "expires_in": str(self._settings.authorization_expires_in),
            "state": state,
        }
        return str(httpx.URL(self._api.authorize_url, params=params))

    async def start_login(self) -> str:
        """Run the user-agent step of a login and return the authorization code.

        The PKCE verifier of this attempt is kept for the following
        ``exchange_code()`` call.

        Raises:
            UserCancelledError:          The user dismissed the login page.
            AuthorizationTransportError: The page could not be shown or completed.
            MissingCodeError:            The redirect carried no ``code``.
            StateMismatchError:          The redirect's ``state`` is not ours.
        """
        pair = generate_challenge()
        attempt = AuthorizationAttempt(code_verifier=pair.verifier, expected_state=generate_state())
        self._attempt = attempt
        self.state.set(AuthState.AWAITING_USER_AUTHORIZATION)

        url = self.authorization_url(pair.challenge, attempt.expected_state)
        scheme = urlsplit(self._settings.fitbit_redirect_uri).scheme
        logger.info("Starting Fitbit login")
        try:
            callback_url = await self._user_agent.authorize(url, scheme)
            return self._code_from_callback(callback_url, attempt)
        except BaseException:
            if self._attempt is attempt:
                self._attempt = None
                self.state.set(AuthState.IDLE)
            raise

    @staticmethod
    def _code_from_callback(callback_url: str, attempt: AuthorizationAttempt) -> str:
        query = parse_qs(urlsplit(callback_url).query)
        if query.get("error") == ["access_denied"]:
            raise UserCancelledError("User denied access on the Fitbit consent page")
        returned_state = (query.get("state") or [None])[0]
        if returned_state != attempt.expected_state:
            raise StateMismatchError()
        code = (query.get("code") or [""])[0]
        if not code:
            raise MissingCodeError()
        return code

    async def exchange_code(self, code: str) -> TokenRecord:
        """Exchange an authorization code for tokens and persist them.

        Raises:
            NoAuthorizationAttemptError: No login attempt is pending.
            TokenApiError:               Fitbit answered with an ``errors`` array.
            MalformedTokenResponseError: Any other unusable response.
            TokenTransportError:         The token endpoint was unreachable.
            TokenPersistenceError:       The secure store rejected the record.
        """
        attempt = self._attempt
        if attempt is None:
            raise NoAuthorizationAttemptError()

        self.state.set(AuthState.EXCHANGING_CODE)
        try:
            record = await self._request_tokens(
                {
                    "client_id": self._settings.fitbit_client_id,
                    "grant_type": "authorization_code",
                    "redirect_uri": self._settings.fitbit_redirect_uri,
                    "code": code,
                    "code_verifier": attempt.code_verifier,
                }
            )
            self.tokens.set(record)
        except BaseException:
            self.state.set(AuthState.IDLE)
            raise
        finally:
            if self._attempt is attempt:
                self._attempt = None

        self.state.set(AuthState.AUTHENTICATED)
        logger.info("Fitbit login complete (expires_at=%s)", record.expires_at)
        return record

    async def login(self) -> TokenRecord:
        code = await self.start_login()
        return await self.exchange_code(code)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_token(self) -> TokenRecord:
        """Obtain a new access token using the stored refresh token.

        Concurrent callers share one in-flight refresh.

        Raises:
            NoRefreshTokenError: No refresh token is stored.
            TokenExchangeError:  The refresh request failed (see exchange_code).
        """
        if self._pending_refresh is None:
            task = asyncio.ensure_future(self._refresh())
            task.add_done_callback(self._refresh_finished)
            self._pending_refresh = task
        return await asyncio.shield(self._pending_refresh)

    def _refresh_finished(self, task: asyncio.Task[TokenRecord]) -> None:
        if self._pending_refresh is task:
            self._pending_refresh = None
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Token refresh failed: %s", task.exception())

    async def _refresh(self) -> TokenRecord:
        refresh = self.tokens.refresh_token()
        if not refresh:
            self.state.set(AuthState.IDLE)
            raise NoRefreshTokenError()

        self.state.set(AuthState.REFRESHING_TOKEN)
        try:
            record = await self._request_tokens(
                {
                    "grant_type": "refresh_token",
                    "refresh_token": refresh,
                    "client_id": self._settings.fitbit_client_id,
                }
            )
            self.tokens.set(record)
        except BaseException:
            self.state.set(AuthState.IDLE)
            raise

        self.state.set(AuthState.AUTHENTICATED)
        logger.info("Fitbit token refreshed (expires_at=%s)", record.expires_at)
        return record

    # ------------------------------------------------------------------
    # Session queries
    # ------------------------------------------------------------------

    def is_token_valid(self) -> bool:
        record = self.tokens.get()
        if record is None or record.expires_at is None:
            return False
        expires_at = record.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return utc_now() < expires_at

    def logout(self) -> None:
        self.tokens.clear()
        self._attempt = None
        self.state.set(AuthState.IDLE)
        logger.info("Logged out of Fitbit")

    async def restore_session(self) -> AuthState:
        """Bring the state machine in line with the stored tokens at start-up."""
        if self.tokens.get() is None:
            self.state.set(AuthState.IDLE)
        elif self.is_token_valid():
            self.state.set(AuthState.AUTHENTICATED)
        else:
            try:
                await self.refresh_token()
            except SyncMyFitError as exc:
                logger.info("Stored Fitbit session could not be renewed: %s", exc)
                self.logout()
        return self.state.value

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _request_tokens(self, form: dict[str, str]) -> TokenRecord:
        try:
            response = await self._http.post(
                self._api.token_url,
                data=form,
                timeout=self._settings.request_timeout_seconds,
            )
        except httpx.TransportError as exc:
            raise TokenTransportError(f"Token endpoint unreachable: {exc}") from exc

        try:
            body: Any = response.json()
        except ValueError as exc:
            raise MalformedTokenResponseError(
                f"Token endpoint returned non-JSON body (status={response.status_code})"
            ) from exc
        if not isinstance(body, dict):
            raise MalformedTokenResponseError("Token endpoint returned a non-object body")

        access_token = body.get("access_token")
        if isinstance(access_token, str) and access_token:
            return TokenRecord(
                access_token=access_token,
                refresh_token=body.get("refresh_token") or None,
                expires_at=self._expiry(body.get("expires_in")),
            )

        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            raise TokenApiError([e for e in errors if isinstance(e, dict)])
        raise MalformedTokenResponseError(
            f"Token response lacks access_token (status={response.status_code})"
        )

    @staticmethod
    def _expiry(expires_in: Any) -> datetime | None:
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
            return None
        return utc_now() + timedelta(seconds=expires_in)
