"""Service wiring and shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Annotated

import httpx
from fastapi import Depends, Request

from syncmyfit.config import Settings
from syncmyfit.fitbit.auth import AuthSessionManager
from syncmyfit.fitbit.client import FitbitClient
from syncmyfit.fitbit.config_loader import SyncConfig, get_sync_config
from syncmyfit.fitbit.pipeline import AuthenticatedRequestPipeline
from syncmyfit.fitbit.sync.orchestrator import SyncOrchestrator
from syncmyfit.fitbit.sync.status import SyncStatusTracker
from syncmyfit.fitbit.sync.writer import RecordWriter
from syncmyfit.fitbit.token_store import TokenStore
from syncmyfit.fitbit.user_agent import BrowserUserAgent
from syncmyfit.services.health_sink import HealthSink, SQLiteHealthSink
from syncmyfit.services.secure_store import SecureKeyValueStore, SQLiteSecureStore, TokenCipher

logger = logging.getLogger("syncmyfit.dependencies")


@dataclass
class AppServices:
    """Every long-lived component, built once at start-up."""

    settings: Settings
    config: SyncConfig
    http_client: httpx.AsyncClient
    secure_store: SecureKeyValueStore
    health_sink: HealthSink
    user_agent: BrowserUserAgent
    auth: AuthSessionManager
    pipeline: AuthenticatedRequestPipeline
    client: FitbitClient
    writer: RecordWriter
    status: SyncStatusTracker
    orchestrator: SyncOrchestrator
    login_task: asyncio.Task | None = None

    async def aclose(self) -> None:
        self.user_agent.cancel()
        self.status.close()
        await self.http_client.aclose()


def build_services(
    settings: Settings,
    config: SyncConfig | None = None,
    *,
    secure_store: SecureKeyValueStore | None = None,
    health_sink: HealthSink | None = None,
    http_client: httpx.AsyncClient | None = None,
    user_agent: BrowserUserAgent | None = None,
) -> AppServices:
    """Construct the component graph.

    Args:
        settings:     Deployment settings.
        config:       Protocol config; the bundled sync_config.yaml by default.
        secure_store: Override for the encrypted SQLite store (for testing).
        health_sink:  Override for the SQLite health sink (for testing).
        http_client:  Optional pre-configured httpx client (for testing).
        user_agent:   Override for the browser user agent (for testing).
    """
    config = config or get_sync_config()
    if secure_store is None:
        secure_store = SQLiteSecureStore(
            settings.secure_store_path,
            cipher=TokenCipher(secret=settings.token_encryption_secret),
        )
    if health_sink is None:
        health_sink = SQLiteHealthSink(settings.health_store_path)
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.request_timeout_seconds)
    if user_agent is None:
        user_agent = BrowserUserAgent(
            open_browser=settings.open_browser,
            timeout_seconds=settings.login_timeout_seconds,
        )

    auth = AuthSessionManager(
        settings=settings,
        api=config.api,
        tokens=TokenStore(secure_store, config.keychain),
        user_agent=user_agent,
        http_client=http_client,
    )
    pipeline = AuthenticatedRequestPipeline(
        auth, http_client, timeout_seconds=settings.request_timeout_seconds
    )
    client = FitbitClient(pipeline, config.api)
    writer = RecordWriter(health_sink, config.writer)
    status = SyncStatusTracker(secure_store, config.sync)
    orchestrator = SyncOrchestrator(
        client,
        writer,
        status,
        config.sync,
        deadline_seconds=settings.sync_deadline_seconds,
    )
    logger.debug("Services built (secure_store=%s)", type(secure_store).__name__)
    return AppServices(
        settings=settings,
        config=config,
        http_client=http_client,
        secure_store=secure_store,
        health_sink=health_sink,
        user_agent=user_agent,
        auth=auth,
        pipeline=pipeline,
        client=client,
        writer=writer,
        status=status,
        orchestrator=orchestrator,
    )


async def get_services(request: Request) -> AppServices:
    """Return the services the lifespan hook attached to ``app.state``."""
    return request.app.state.services


# Annotated shortcut for route signatures
Services = Annotated[AppServices, Depends(get_services)]
