"""Utility helpers for hashing and time operations."""

from .hashing import find_offer_by_hash, is_ascii_safe, mask_id, md5_hex, offer_hash, verify_offer_hash
from .time import now_ms, utc_now

__all__ = [
    "md5_hex",
    "offer_hash",
    "verify_offer_hash",
    "find_offer_by_hash",
    "is_ascii_safe",
    "mask_id",
    "now_ms",
    "utc_now",
]
