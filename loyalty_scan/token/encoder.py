"""Customer scan token encoder."""

from __future__ import annotations

import base64
from typing import Optional

from ..utils.hashing import is_ascii_safe
from ..utils.time import Clock, now_ms
from .types import TOKEN_DELIMITER, ScanToken


def _check_id(name: str, value: str) -> None:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string")
    if TOKEN_DELIMITER in value:
        raise ValueError(f"{name} must not contain {TOKEN_DELIMITER!r}")


def issue_scan_token(
    customer_id: str,
    business_id: str,
    timestamp_ms: Optional[int] = None,
    *,
    clock: Optional[Clock] = None,
) -> ScanToken:
    """Validate inputs and stamp them with the issue time."""
    _check_id("customer_id", customer_id)
    _check_id("business_id", business_id)
    if timestamp_ms is None:
        timestamp_ms = (clock or now_ms)()
    if isinstance(timestamp_ms, bool) or not isinstance(timestamp_ms, int) or timestamp_ms < 0:
        raise ValueError("timestamp_ms must be a non-negative integer")
    return ScanToken(customer_id=customer_id, business_id=business_id, issued_at_ms=timestamp_ms)


def encode_customer_token(
    customer_id: str,
    business_id: str,
    timestamp_ms: Optional[int] = None,
    *,
    clock: Optional[Clock] = None,
) -> str:
    """Encode ``customer:business:millis`` as URL-safe base64.

    The payload length is never a multiple of three, so every token ends in
    ``=`` padding. A leading zero on the timestamp field is used to get
    there; it does not change the decoded value. The full encoded string
    must be embedded as-is: any truncation makes the token undecodable.
    """
    token = issue_scan_token(customer_id, business_id, timestamp_ms, clock=clock)
    timestamp = str(token.issued_at_ms)
    raw = TOKEN_DELIMITER.join((token.customer_id, token.business_id, timestamp)).encode("utf-8")
    if len(raw) % 3 == 0:
        raw = TOKEN_DELIMITER.join((token.customer_id, token.business_id, "0" + timestamp)).encode("utf-8")
    encoded = base64.urlsafe_b64encode(raw).decode("ascii")
    if not is_ascii_safe(encoded):
        raise ValueError("customer token encoding produced non-ASCII output")
    return encoded
