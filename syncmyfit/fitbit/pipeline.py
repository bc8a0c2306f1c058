"""Bearer-authenticated request execution with one refresh-and-retry on 401."""

from __future__ import annotations

import logging

import httpx

from syncmyfit.errors import (
    AuthRefreshFailedError,
    RequestTimeoutError,
    RequestTransportError,
    SyncMyFitError,
    UnauthenticatedError,
    UnexpectedResponseError,
)
from syncmyfit.fitbit.auth import AuthSessionManager

logger = logging.getLogger("syncmyfit.fitbit.pipeline")

# Leading bytes of an error body kept in UnexpectedResponseError
_DETAIL_LIMIT = 200


class AuthenticatedRequestPipeline:
    """Executes requests with the stored access token.

    A 401 triggers exactly one ``refresh_token()`` followed by one retry.  When
    another caller has already rotated the token since this request went out,
    the retry uses the new token without refreshing again.
    """

    def __init__(
        self,
        auth: AuthSessionManager,
        http_client: httpx.AsyncClient,
        *,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._auth = auth
        self._http = http_client
        self._timeout = timeout_seconds

    def build_get(self, url: str) -> httpx.Request:
        return self._http.build_request("GET", url, timeout=self._timeout)

    async def get(self, url: str) -> bytes:
        return await self.perform(self.build_get(url))

    async def perform(self, request: httpx.Request, allow_retry: bool = True) -> bytes:
        """Send *request* with a bearer token and return the response body.

        Raises:
            UnauthenticatedError:    No access token is stored.
            RequestTimeoutError:     The request timed out.
            RequestTransportError:   Any other transport failure.
            AuthRefreshFailedError:  The 401-triggered refresh failed.
            UnexpectedResponseError: Non-2xx status (other than the retried 401)
                                     or an empty body.
        """
        token = self._auth.tokens.access_token()
        if not token:
            raise UnauthenticatedError()

        response = await self._send(request, token)

        if response.status_code == 401 and allow_retry:
            current = self._auth.tokens.access_token()
            if current is None or current == token:
                logger.info("401 from %s; refreshing token", request.url.path)
                try:
                    await self._auth.refresh_token()
                except SyncMyFitError as exc:
                    raise AuthRefreshFailedError(f"Token refresh failed: {exc}") from exc
            else:
                logger.debug("Token rotated by another caller; retrying %s", request.url.path)
            return await self.perform(request, allow_retry=False)

        if not response.is_success:
            raise UnexpectedResponseError(
                response.status_code, response.text[:_DETAIL_LIMIT]
            )
        if not response.content:
            raise UnexpectedResponseError(response.status_code, "empty body")
        return response.content

    async def _send(self, request: httpx.Request, token: str) -> httpx.Response:
        headers = httpx.Headers(request.headers)
        headers["Authorization"] = f"Bearer {token}"
        outgoing = self._http.build_request(
            request.method,
            request.url,
            headers=headers,
            content=request.content,
            extensions=request.extensions,
        )
        try:
            return await self._http.send(outgoing)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(f"{request.method} {request.url.path} timed out") from exc
        except httpx.TransportError as exc:
            raise RequestTransportError(f"{request.method} {request.url.path}: {exc}") from exc
