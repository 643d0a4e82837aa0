"""Customer scan token decoder."""

from __future__ import annotations

import base64
import binascii
import re
from typing import Optional

from ..errors import DecodeError, FormatError
from .types import TOKEN_DELIMITER, ScanToken

_TIMESTAMP_RE = re.compile(r"[0-9]+")
_URLSAFE_TO_STANDARD = str.maketrans("-_", "+/")


def decode_customer_token(token: str, *, require_padding: bool = True) -> ScanToken:
    """Recover the customer, business and issue time from a scan token.

    Both base64 alphabets are accepted. Tokens from this encoder always end
    in ``=``; with ``require_padding`` a token that lost its tail (for
    example by truncation) is rejected even when the remaining characters
    still form valid base64. Pass ``require_padding=False`` only for passes
    issued before padding was guaranteed.
    """
    if not isinstance(token, str) or not token:
        raise DecodeError("customer token is empty")
    if require_padding and not token.endswith("="):
        raise DecodeError("customer token is truncated or unpadded")
    try:
        raw = base64.b64decode(token.translate(_URLSAFE_TO_STANDARD).encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
        raise DecodeError(f"customer token is not valid base64: {exc}") from exc
    try:
        decoded = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError("customer token is not valid UTF-8") from exc

    parts = decoded.split(TOKEN_DELIMITER)
    if len(parts) != 3:
        raise FormatError(f"customer token has {len(parts)} fields, expected 3")
    customer_id, business_id, timestamp = parts
    if not customer_id or not business_id:
        raise FormatError("customer token has an empty identifier field")
    if not _TIMESTAMP_RE.fullmatch(timestamp):
        raise FormatError("customer token timestamp is not numeric")
    return ScanToken(customer_id=customer_id, business_id=business_id, issued_at_ms=int(timestamp))


def try_decode_customer_token(token: str, *, require_padding: bool = True) -> Optional[ScanToken]:
    """Return the decoded token, or None when it cannot be decoded."""
    try:
        return decode_customer_token(token, require_padding=require_padding)
    except (DecodeError, FormatError):
        return None
