"""Durable storage of the Fitbit token record in the secure key-value store."""

from __future__ import annotations

import logging
from datetime import datetime

from syncmyfit.errors import TokenPersistenceError
from syncmyfit.fitbit.base import TokenRecord
from syncmyfit.fitbit.config_loader import KeychainConfig
from syncmyfit.services.secure_store import SecureKeyValueStore

logger = logging.getLogger("syncmyfit.fitbit.token_store")


class TokenStore:
    """Reads and writes the three token entries under one keychain service.

    Accounts (from ``sync_config.yaml``)::

        fitbit_access_token      UTF-8 access token
        fitbit_refresh_token     UTF-8 refresh token
        fitbit_token_expires_at  ISO-8601 UTC timestamp

    Entries are read from the store once and then served from memory.
    """

    def __init__(self, store: SecureKeyValueStore, keychain: KeychainConfig) -> None:
        self._store = store
        self._keychain = keychain
        self._cache: dict[str, str | None] = {}

    def get(self) -> TokenRecord | None:
        """Return the stored record, or None when no access token is stored."""
        access = self._read(self._keychain.access_token_account)
        if access is None:
            return None
        return TokenRecord(
            access_token=access,
            refresh_token=self._read(self._keychain.refresh_token_account),
            expires_at=self._read_expiry(),
        )

    def access_token(self) -> str | None:
        return self._read(self._keychain.access_token_account)

    def refresh_token(self) -> str | None:
        return self._read(self._keychain.refresh_token_account)

    def set(self, record: TokenRecord) -> None:
        """Persist *record*.

        A ``None`` refresh token leaves the stored one in place, and a ``None``
        expiry removes the stored expiry.

        Raises:
            TokenPersistenceError: If the secure store rejects a write.
        """
        self._write(self._keychain.access_token_account, record.access_token)
        if record.refresh_token is not None:
            self._write(self._keychain.refresh_token_account, record.refresh_token)
        if record.expires_at is not None:
            self._write(self._keychain.expires_at_account, record.expires_at.isoformat())
        else:
            self._delete(self._keychain.expires_at_account)
        logger.debug("Token record stored (expires_at=%s)", record.expires_at)

    def clear(self) -> None:
        for account in (
            self._keychain.access_token_account,
            self._keychain.refresh_token_account,
            self._keychain.expires_at_account,
        ):
            self._delete(account)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read(self, account: str) -> str | None:
        if account not in self._cache:
            raw = self._store.read(self._keychain.service, account)
            self._cache[account] = None if raw is None else raw.decode("utf-8")
        return self._cache[account]

    def _write(self, account: str, value: str) -> None:
        if not self._store.save(self._keychain.service, account, value.encode("utf-8")):
            self._cache.pop(account, None)
            raise TokenPersistenceError(f"Secure store rejected write of '{account}'")
        self._cache[account] = value

    def _delete(self, account: str) -> None:
        self._store.delete(self._keychain.service, account)
        self._cache[account] = None

    def _read_expiry(self) -> datetime | None:
        raw = self._read(self._keychain.expires_at_account)
        if raw is None:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring unparseable token expiry %r", raw)
            return None
