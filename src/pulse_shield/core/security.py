"""Key material helpers for API key minting and lookup."""
from __future__ import annotations

import hashlib
import hmac
import secrets

API_KEY_RANDOM_BYTES = 32
KEY_PREFIX_DISPLAY_LENGTH = 12


def generate_api_key(prefix: str) -> str:
    """Return a fresh plaintext key of the form ``<prefix>_<64 hex chars>``."""
    return f"{prefix}_{secrets.token_hex(API_KEY_RANDOM_BYTES)}"


def hash_key(plaintext_key: str) -> str:
    """Return the SHA-256 hex digest used as the storage lookup key."""
    return hashlib.sha256(plaintext_key.encode("utf-8")).hexdigest()


def display_prefix(plaintext_key: str) -> str:
    """Return the non-secret leading characters shown in key listings."""
    return plaintext_key[:KEY_PREFIX_DISPLAY_LENGTH]


def digests_match(left: str, right: str) -> bool:
    """Compare two hex digests in constant time."""
    return hmac.compare_digest(left.encode("ascii"), right.encode("ascii"))
