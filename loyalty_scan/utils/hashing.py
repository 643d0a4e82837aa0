"""Offer hash derivation shared by the issuing and scanning deployments."""

from __future__ import annotations

import hashlib
import hmac
from typing import Iterable, Optional

DEFAULT_OFFER_HASH_SALT = "loyalty-platform"
OFFER_HASH_LENGTH = 8


def md5_hex(value: str) -> str:
    """Return MD5 hex digest for the provided string value."""
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def offer_hash(offer_id: str, business_id: str, salt: str = DEFAULT_OFFER_HASH_SALT) -> str:
    """Return the 8-character offer hash embedded in scan payloads.

    MD5 is kept for bit-compatibility with passes already in customers'
    wallets; the value is a check digest, not a signature.
    """
    digest = md5_hex(f"{offer_id}:{business_id}:{salt}")[:OFFER_HASH_LENGTH]
    if not is_ascii_safe(digest):
        raise ValueError("offer hash produced non-ASCII output")
    return digest


def verify_offer_hash(
    offer_id: str,
    business_id: str,
    provided_hash: Optional[str],
    salt: str = DEFAULT_OFFER_HASH_SALT,
) -> bool:
    """Return True when ``provided_hash`` exactly equals the expected hash."""
    if not provided_hash or len(provided_hash) != OFFER_HASH_LENGTH:
        return False
    expected = offer_hash(offer_id, business_id, salt)
    return hmac.compare_digest(expected.encode("ascii"), provided_hash.encode("utf-8"))


def find_offer_by_hash(
    offer_ids: Iterable[str],
    business_id: str,
    provided_hash: Optional[str],
    salt: str = DEFAULT_OFFER_HASH_SALT,
) -> Optional[str]:
    """Return the first offer id of a business whose hash matches, else None."""
    for offer_id in offer_ids:
        if verify_offer_hash(offer_id, business_id, provided_hash, salt):
            return offer_id
    return None


def is_ascii_safe(value: object) -> bool:
    """Return True when ``value`` is a string of 7-bit ASCII characters only."""
    return isinstance(value, str) and value.isascii()


def mask_id(value: Optional[str], keep: int = 8) -> str:
    """Shorten identifiers before they reach log records."""
    if not value:
        return "<none>"
    if len(value) <= keep:
        return value
    return f"{value[:keep]}..."
