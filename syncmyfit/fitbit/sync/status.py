"""Sync status: persisted last-success time plus a short-lived result flag."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from syncmyfit.fitbit.base import SyncResult, SyncStatus, utc_now
from syncmyfit.fitbit.config_loader import SyncSection
from syncmyfit.fitbit.observable import Observable
from syncmyfit.services.secure_store import SecureKeyValueStore

logger = logging.getLogger("syncmyfit.fitbit.sync.status")


class SyncStatusTracker:
    """Publishes ``SyncStatus`` and persists ``last_synced_at``.

    ``last_result`` shows SUCCESS or FAILURE for ``status_reset_seconds`` and
    then reverts to NONE.  A newer result cancels the pending revert.
    """

    def __init__(self, store: SecureKeyValueStore, sync: SyncSection) -> None:
        self._store = store
        self._sync = sync
        self._reset_handle: asyncio.TimerHandle | None = None
        self.status: Observable[SyncStatus] = Observable(
            SyncStatus(last_synced_at=self._load_last_synced())
        )

    @property
    def current(self) -> SyncStatus:
        return self.status.value

    def record_result(self, success: bool, at: datetime | None = None) -> SyncStatus:
        """Record the outcome of a sync run.  Must be called on the event loop."""
        last_synced_at = self.current.last_synced_at
        if success:
            last_synced_at = at or utc_now()
            self._persist(last_synced_at)

        new_status = SyncStatus(
            last_synced_at=last_synced_at,
            last_result=SyncResult.SUCCESS if success else SyncResult.FAILURE,
        )
        self.status.set(new_status)
        self._schedule_reset()
        return new_status

    def close(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _schedule_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
        loop = asyncio.get_running_loop()
        self._reset_handle = loop.call_later(self._sync.status_reset_seconds, self._reset)

    def _reset(self) -> None:
        self._reset_handle = None
        current = self.current
        self.status.set(SyncStatus(last_synced_at=current.last_synced_at))

    def _load_last_synced(self) -> datetime | None:
        raw = self._store.read(self._sync.status_service, self._sync.last_synced_account)
        if raw is None:
            return None
        try:
            return datetime.fromisoformat(raw.decode("utf-8"))
        except ValueError:
            logger.warning("Ignoring unparseable last sync time %r", raw)
            return None

    def _persist(self, moment: datetime) -> None:
        saved = self._store.save(
            self._sync.status_service,
            self._sync.last_synced_account,
            moment.isoformat().encode("utf-8"),
        )
        if not saved:
            logger.warning("Could not persist last sync time %s", moment.isoformat())
