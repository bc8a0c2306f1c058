"""User agents that carry the interactive authorization step.

A user agent opens the authorization URL for the user and resolves with the
redirect URL once Fitbit sends the browser back to the registered redirect
URI.  ``BrowserUserAgent`` opens the system browser (when enabled) and waits
for the redirect to be handed over by the ``/auth/callback`` route.
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from typing import Protocol
from urllib.parse import urlsplit

from syncmyfit.errors import AuthorizationTransportError, UserCancelledError

logger = logging.getLogger("syncmyfit.fitbit.user_agent")


class UserAgent(Protocol):
    async def authorize(self, url: str, callback_scheme: str) -> str:
        """Present *url* to the user and return the redirect URL.

        Raises:
            UserCancelledError:          The user dismissed the login.
            AuthorizationTransportError: The login could not be presented or
                                         never completed.
        """
        ...


class BrowserUserAgent:
    """Waits for a redirect delivered out-of-band (e.g. by an HTTP route).

    Only one session is pending at a time; starting a new one cancels the
    previous session.
    """

    def __init__(self, *, open_browser: bool = True, timeout_seconds: float = 300.0) -> None:
        self._open_browser = open_browser
        self._timeout = timeout_seconds
        self._pending: asyncio.Future[str] | None = None
        self._callback_scheme: str | None = None
        self._url_ready = asyncio.Event()
        self.pending_url: str | None = None

    @property
    def in_progress(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def authorize(self, url: str, callback_scheme: str) -> str:
        if self.in_progress:
            self.cancel()

        loop = asyncio.get_running_loop()
        pending: asyncio.Future[str] = loop.create_future()
        self._pending = pending
        self._callback_scheme = callback_scheme.lower()
        self.pending_url = url
        self._url_ready.set()

        if self._open_browser:
            opened = await asyncio.to_thread(webbrowser.open, url)
            if not opened:
                logger.warning("Could not open a browser; visit the login URL manually")

        try:
            return await asyncio.wait_for(pending, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise AuthorizationTransportError(
                f"No login redirect received within {self._timeout:.0f}s"
            ) from exc
        finally:
            if self._pending is pending:
                self._pending = None
                self.pending_url = None
                self._url_ready.clear()

    async def wait_for_url(self, timeout: float = 5.0) -> str:
        """Return the authorization URL of the pending session once it exists."""
        await asyncio.wait_for(self._url_ready.wait(), timeout=timeout)
        if self.pending_url is None:
            raise AuthorizationTransportError("Login session ended before it started")
        return self.pending_url

    def deliver(self, callback_url: str) -> bool:
        """Resolve the pending session with *callback_url*.

        Returns False when no session is pending or the URL's scheme does not
        match the one the session was started for.
        """
        if not self.in_progress:
            logger.warning("Dropping login redirect: no login in progress")
            return False
        scheme = urlsplit(callback_url).scheme.lower()
        if scheme != self._callback_scheme:
            logger.warning("Dropping login redirect with unexpected scheme %r", scheme)
            return False
        self._pending.set_result(callback_url)
        return True

    def cancel(self) -> bool:
        """Abort the pending session.  Returns False when nothing was pending."""
        if not self.in_progress:
            return False
        self._pending.set_exception(UserCancelledError())
        self.pending_url = None
        self._url_ready.clear()
        return True
