"""Scan token datatypes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

TOKEN_DELIMITER = ":"


@dataclass(frozen=True)
class ScanToken:
    """Customer, business and issue time bound together by a scan token."""

    customer_id: str
    business_id: str
    issued_at_ms: int

    def encode(self) -> str:
        from .encoder import encode_customer_token

        return encode_customer_token(self.customer_id, self.business_id, self.issued_at_ms)

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.issued_at_ms

    def is_expired(self, max_age_ms: Optional[int], now_ms: int) -> bool:
        """Tokens carry no expiry of their own; callers pick the window."""
        if max_age_ms is None:
            return False
        return self.age_ms(now_ms) > max_age_ms
