"""Exception hierarchy for SyncMyFit.

Every failure the core can surface is a ``SyncMyFitError`` subclass carrying a
short ``user_message`` suitable for display.  The hierarchy mirrors the four
stages of a sync:

    AuthorizationError  — interactive login (user agent + redirect)
    TokenExchangeError  — code→token and refresh→token exchanges
    RequestError        — authenticated data requests
    SyncError           — fan-out / fan-in of a full sync run
"""

from __future__ import annotations

from typing import Any


class SyncMyFitError(Exception):
    """Base class for all SyncMyFit errors."""

    user_message: str = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)


# ---------------------------------------------------------------------------
# Interactive authorization
# ---------------------------------------------------------------------------


class AuthorizationError(SyncMyFitError):
    user_message = "Login failed."


class UserCancelledError(AuthorizationError):
    user_message = "Login was cancelled."


class AuthorizationTransportError(AuthorizationError):
    user_message = "Could not reach Fitbit to log in."


class MissingCodeError(AuthorizationError):
    user_message = "Fitbit did not return an authorization code."


class StateMismatchError(AuthorizationError):
    user_message = "Login response did not match the login request."


class NoAuthorizationAttemptError(AuthorizationError):
    user_message = "No login is in progress."


# ---------------------------------------------------------------------------
# Token exchange
# ---------------------------------------------------------------------------


class TokenExchangeError(SyncMyFitError):
    user_message = "Could not obtain a Fitbit access token."


class TokenApiError(TokenExchangeError):
    """The token endpoint answered with an ``errors`` array."""

    user_message = "Fitbit rejected the login."

    def __init__(self, errors: list[dict[str, Any]]) -> None:
        self.errors = errors
        types = ", ".join(str(e.get("errorType", "unknown")) for e in errors) or "unknown"
        super().__init__(f"Token endpoint returned errors: {types}")


class MalformedTokenResponseError(TokenExchangeError):
    user_message = "Fitbit sent an unexpected login response."


class NoRefreshTokenError(TokenExchangeError):
    user_message = "Your Fitbit session has expired. Please log in again."


class TokenTransportError(TokenExchangeError):
    user_message = "Could not reach Fitbit to renew the session."


class TokenPersistenceError(TokenExchangeError):
    user_message = "Could not save the Fitbit session on this device."


# ---------------------------------------------------------------------------
# Authenticated requests
# ---------------------------------------------------------------------------


class RequestError(SyncMyFitError):
    user_message = "Fitbit request failed."


class UnauthenticatedError(RequestError):
    user_message = "You are not logged in to Fitbit."


class RequestTransportError(RequestError):
    user_message = "Could not reach Fitbit."


class RequestTimeoutError(RequestTransportError):
    user_message = "Fitbit took too long to respond."


class AuthRefreshFailedError(RequestError):
    user_message = "Your Fitbit session has expired. Please log in again."


class UnexpectedResponseError(RequestError):
    """Non-success status (other than a retried 401) or an empty body."""

    user_message = "Fitbit sent an unexpected response."

    def __init__(self, status_code: int | None, detail: str = "") -> None:
        self.status_code = status_code
        message = f"Unexpected response (status={status_code})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class MalformedPayloadError(SyncMyFitError):
    """A data endpoint answered 2xx but the JSON lacks the expected field."""

    user_message = "Fitbit sent data in an unexpected format."

    def __init__(self, resource: str, field: str) -> None:
        self.resource = resource
        self.field = field
        super().__init__(f"{resource}: missing or invalid '{field}'")


# ---------------------------------------------------------------------------
# Sync orchestration
# ---------------------------------------------------------------------------


class SyncError(SyncMyFitError):
    user_message = "Sync failed."


class RequiredMetricMissingError(SyncError):
    user_message = "Fitbit did not return today's step count."

    def __init__(self, metric: str) -> None:
        self.metric = metric
        super().__init__(f"Required metric '{metric}' is missing")


class SyncFetchError(SyncError):
    """Wraps the error of the highest-priority failed fetch."""

    def __init__(self, metric: str, error: BaseException) -> None:
        self.metric = metric
        self.error = error
        super().__init__(f"{metric} fetch failed: {error}")

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return getattr(self.error, "user_message", SyncError.user_message)


class SyncInProgressError(SyncError):
    user_message = "A sync is already running."


class SyncDeadlineExceededError(SyncError):
    user_message = "Sync took too long and was stopped."
