"""Runtime configuration for scan processing."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .utils.hashing import DEFAULT_OFFER_HASH_SALT

DEFAULT_AUTO_CONFIRM_NOTES = "Auto-confirmed at scan"
DEFAULT_DUPLICATE_WINDOW_MS = 2_000

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


@dataclass(frozen=True)
class ScanConfig:
    """Scan processing options.

    ``offer_hash_salt`` is shared with the deployment that issues passes and
    must be identical on both sides or no offer hash will ever match.
    """

    offer_hash_salt: str = DEFAULT_OFFER_HASH_SALT
    auto_confirm_prize: bool = True
    auto_confirm_notes: str = DEFAULT_AUTO_CONFIRM_NOTES
    max_token_age_ms: Optional[int] = None
    duplicate_window_ms: int = DEFAULT_DUPLICATE_WINDOW_MS
    accept_unpadded_tokens: bool = True

    def __post_init__(self) -> None:
        if not self.offer_hash_salt:
            raise ValueError("offer_hash_salt must not be empty")
        if self.max_token_age_ms is not None and self.max_token_age_ms <= 0:
            raise ValueError("max_token_age_ms must be positive when set")
        if self.duplicate_window_ms < 0:
            raise ValueError("duplicate_window_ms must not be negative")

    @classmethod
    def from_env(cls) -> "ScanConfig":
        """Build configuration from ``LOYALTY_SCAN_*`` environment variables."""
        return cls(
            offer_hash_salt=os.getenv("LOYALTY_SCAN_OFFER_SALT") or DEFAULT_OFFER_HASH_SALT,
            auto_confirm_prize=_env_bool("LOYALTY_SCAN_AUTO_CONFIRM", True),
            auto_confirm_notes=os.getenv("LOYALTY_SCAN_AUTO_CONFIRM_NOTES") or DEFAULT_AUTO_CONFIRM_NOTES,
            max_token_age_ms=_env_int("LOYALTY_SCAN_MAX_TOKEN_AGE_MS", None),
            duplicate_window_ms=_env_int("LOYALTY_SCAN_DUPLICATE_WINDOW_MS", DEFAULT_DUPLICATE_WINDOW_MS) or 0,
            accept_unpadded_tokens=_env_bool("LOYALTY_SCAN_ACCEPT_UNPADDED_TOKENS", True),
        )
