"""Secure key-value storage for credentials and small persisted values.

Entries are addressed by ``(service, account)`` and hold opaque bytes, the
same shape as a platform keychain.  ``SQLiteSecureStore`` encrypts every value
at rest with a Fernet key derived from ``token_encryption_secret``.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Protocol

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger("syncmyfit.services.secure_store")


class SecureKeyValueStore(Protocol):
    """Durable, device-scoped secret storage."""

    def save(self, service: str, account: str, value: bytes) -> bool:
        """Insert or overwrite an entry.  Returns False if it could not be stored."""
        ...

    def read(self, service: str, account: str) -> bytes | None:
        ...

    def delete(self, service: str, account: str) -> None:
        """Remove an entry.  Deleting a missing entry is not an error."""
        ...


class TokenCipher:
    """Encrypt and decrypt stored values using a derived Fernet key."""

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt(self, plaintext: bytes) -> bytes:
        return self._fernet.encrypt(plaintext)

    def decrypt(self, ciphertext: bytes) -> bytes:
        try:
            return self._fernet.decrypt(ciphertext)
        except InvalidToken as exc:
            raise ValueError(
                "Failed to decrypt stored value; wrong secret or corrupted data."
            ) from exc


class InMemorySecureStore:
    """Dict-backed store for tests and ephemeral runs."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], bytes] = {}

    def save(self, service: str, account: str, value: bytes) -> bool:
        self._entries[(service, account)] = bytes(value)
        return True

    def read(self, service: str, account: str) -> bytes | None:
        return self._entries.get((service, account))

    def delete(self, service: str, account: str) -> None:
        self._entries.pop((service, account), None)


class SQLiteSecureStore:
    """Encrypted entries in a SQLite table keyed by (service, account)."""

    def __init__(self, db_path: str, *, cipher: TokenCipher) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._cipher = cipher
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS secure_entries (
                    service TEXT NOT NULL,
                    account TEXT NOT NULL,
                    data BLOB NOT NULL,
                    PRIMARY KEY (service, account)
                )
                """
            )

    def save(self, service: str, account: str, value: bytes) -> bool:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO secure_entries (service, account, data)
                    VALUES (?, ?, ?)
                    ON CONFLICT(service, account) DO UPDATE SET data = excluded.data
                    """,
                    (service, account, self._cipher.encrypt(value)),
                )
        except sqlite3.Error as exc:
            logger.error("Secure store write failed for %s/%s: %s", service, account, exc)
            return False
        return True

    def read(self, service: str, account: str) -> bytes | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM secure_entries WHERE service = ? AND account = ?",
                (service, account),
            ).fetchone()
        if not row:
            return None
        try:
            return self._cipher.decrypt(row[0])
        except ValueError:
            # Unreadable under the current secret; treat as absent.
            logger.warning("Discarding undecryptable entry %s/%s", service, account)
            return None

    def delete(self, service: str, account: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM secure_entries WHERE service = ? AND account = ?",
                (service, account),
            )
