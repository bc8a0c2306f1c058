"""PKCE (RFC 7636) verifier and S256 challenge generation."""

from __future__ import annotations

import base64
import hashlib
import secrets
import string
from dataclasses import dataclass

# Unreserved characters allowed in a code verifier (RFC 7636 §4.1)
VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"
VERIFIER_LENGTH = 128


@dataclass(frozen=True)
class PKCEPair:
    verifier: str
    challenge: str


def generate_verifier(length: int = VERIFIER_LENGTH) -> str:
    """Return a random code verifier drawn uniformly from the unreserved set."""
    if not 43 <= length <= 128:
        raise ValueError(f"PKCE verifier length must be 43..128, got {length}")
    return "".join(secrets.choice(VERIFIER_ALPHABET) for _ in range(length))


def code_challenge(verifier: str) -> str:
    """Return base64url(SHA-256(verifier)) with the ``=`` padding stripped."""
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_challenge() -> PKCEPair:
    verifier = generate_verifier()
    return PKCEPair(verifier=verifier, challenge=code_challenge(verifier))


def generate_state() -> str:
    """Opaque anti-forgery value echoed back on the redirect."""
    return secrets.token_urlsafe(32)
