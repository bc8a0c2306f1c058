"""Fitbit login endpoints: start, redirect callback, cancel, logout, status."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from syncmyfit.dependencies import AppServices, Services
from syncmyfit.errors import SyncMyFitError
from syncmyfit.models.api import AuthStatusRead, CancelResult, LoginCompleted, LoginStarted

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("syncmyfit.auth")


def _log_login_outcome(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.info("Login attempt ended: %s", exc)


def _cancel_pending_login(services: AppServices) -> bool:
    cancelled = services.user_agent.cancel()
    task = services.login_task
    if task is not None and not task.done() and not cancelled:
        task.cancel()
        cancelled = True
    services.login_task = None
    return cancelled


@router.post("/login", response_model=LoginStarted)
async def start_login(services: Services) -> Any:
    """Begin a login and return the Fitbit authorization URL.

    The login completes when Fitbit redirects the browser to ``/auth/callback``.
    """
    _cancel_pending_login(services)
    task = asyncio.create_task(services.auth.login())
    task.add_done_callback(_log_login_outcome)
    services.login_task = task

    url_waiter = asyncio.ensure_future(services.user_agent.wait_for_url())
    await asyncio.wait({task, url_waiter}, return_when=asyncio.FIRST_COMPLETED)
    if url_waiter.done() and url_waiter.exception() is None:
        return LoginStarted(authorization_url=url_waiter.result())

    # The login ended (or stalled) before presenting a URL.
    url_waiter.cancel()
    exc = task.exception() if task.done() and not task.cancelled() else None
    detail = exc.user_message if isinstance(exc, SyncMyFitError) else "Login failed."
    raise HTTPException(status_code=502, detail=detail)


@router.get("/callback", response_model=LoginCompleted)
async def login_callback(request: Request, services: Services) -> Any:
    """Redirect target registered with Fitbit; completes the pending login."""
    task = services.login_task
    # Matched against the registered redirect URI, which may use a custom scheme.
    redirect = f"{services.settings.fitbit_redirect_uri}?{request.url.query}"
    if task is None or not services.user_agent.deliver(redirect):
        raise HTTPException(status_code=409, detail="No login is in progress.")

    try:
        record = await task
    except SyncMyFitError as exc:
        raise HTTPException(status_code=400, detail=exc.user_message) from exc
    finally:
        if services.login_task is task:
            services.login_task = None
    return LoginCompleted(state=services.auth.state.value, expires_at=record.expires_at)


@router.post("/cancel", response_model=CancelResult)
async def cancel_login(services: Services) -> Any:
    return CancelResult(cancelled=_cancel_pending_login(services))


@router.post("/logout", response_model=AuthStatusRead)
async def logout(services: Services) -> Any:
    _cancel_pending_login(services)
    services.auth.logout()
    return AuthStatusRead(state=services.auth.state.value, token_valid=False)


@router.get("/status", response_model=AuthStatusRead)
async def auth_status(services: Services) -> Any:
    record = services.auth.tokens.get()
    return AuthStatusRead(
        state=services.auth.state.value,
        token_valid=services.auth.is_token_valid(),
        expires_at=record.expires_at if record else None,
    )
