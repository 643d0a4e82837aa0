"""QR payload classification for staff scanner input."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Tuple
from urllib.parse import unquote, urlsplit

from ..errors import FormatError, UnsupportedFormatError
from ..token.encoder import encode_customer_token
from ..utils.hashing import DEFAULT_OFFER_HASH_SALT, mask_id, offer_hash
from ..utils.time import Clock

logger = logging.getLogger(__name__)

SCAN_PATH_SEGMENT = "scan"
WALLET_CUSTOMER_PREFIX = "CUST-"

_COMBINED_RE = re.compile(r"[A-Za-z0-9+/_-]+={0,2}:[0-9a-f]{8}")
_DIGITS_RE = re.compile(r"[0-9]+")


class PayloadFormat(str, Enum):
    """Supported QR payload shapes, in classification priority order."""

    URL = "url"
    WALLET_JSON = "wallet_json"
    COMBINED = "combined"
    CUSTOMER_ID = "customer_id"


@dataclass(frozen=True)
class ClassifiedPayload:
    """Scan token and offer hash extracted from one QR payload."""

    format: PayloadFormat
    token: str
    offer_hash: Optional[str]
    offer_id: Optional[str] = None
    customer_id: Optional[str] = None
    business_id: Optional[str] = None

    @property
    def requires_offer_selection(self) -> bool:
        """Customer-id payloads carry no offer; the caller must pick one."""
        return self.offer_hash is None


@dataclass(frozen=True)
class _Context:
    default_business_id: Optional[str]
    clock: Optional[Clock]
    salt: str


Matcher = Callable[[str, _Context], Optional[ClassifiedPayload]]


def _match_url(raw: str, ctx: _Context) -> Optional[ClassifiedPayload]:
    try:
        parts = urlsplit(raw)
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        return None
    segments = [unquote(segment) for segment in parts.path.split("/") if segment]
    if len(segments) < 3 or segments[-3] != SCAN_PATH_SEGMENT:
        return None
    return ClassifiedPayload(format=PayloadFormat.URL, token=segments[-2], offer_hash=segments[-1])


def _json_id(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _match_wallet_json(raw: str, ctx: _Context) -> Optional[ClassifiedPayload]:
    if not raw.startswith("{"):
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    customer_id = _json_id(data.get("customerId"))
    offer_id = _json_id(data.get("offerId"))
    if not customer_id or not offer_id:
        return None
    if customer_id.startswith(WALLET_CUSTOMER_PREFIX):
        customer_id = customer_id[len(WALLET_CUSTOMER_PREFIX):]

    business_id = _json_id(data.get("businessId")) or ctx.default_business_id
    if not business_id:
        raise FormatError("wallet payload has no businessId and no default business was supplied")

    # The only path where a token is minted at scan time.
    try:
        token = encode_customer_token(customer_id, business_id, clock=ctx.clock)
    except ValueError as exc:
        raise FormatError(f"wallet payload identifiers cannot be encoded: {exc}") from exc
    return ClassifiedPayload(
        format=PayloadFormat.WALLET_JSON,
        token=token,
        offer_hash=offer_hash(offer_id, business_id, ctx.salt),
        offer_id=offer_id,
        customer_id=customer_id,
        business_id=business_id,
    )


def _match_combined(raw: str, ctx: _Context) -> Optional[ClassifiedPayload]:
    if not _COMBINED_RE.fullmatch(raw):
        return None
    token, _, hash_value = raw.rpartition(":")
    return ClassifiedPayload(format=PayloadFormat.COMBINED, token=token, offer_hash=hash_value)


def _match_customer_id(raw: str, ctx: _Context) -> Optional[ClassifiedPayload]:
    if not _DIGITS_RE.fullmatch(raw):
        return None
    return ClassifiedPayload(format=PayloadFormat.CUSTOMER_ID, token=raw, offer_hash=None, customer_id=raw)


MATCHERS: Tuple[Tuple[PayloadFormat, Matcher], ...] = (
    (PayloadFormat.URL, _match_url),
    (PayloadFormat.WALLET_JSON, _match_wallet_json),
    (PayloadFormat.COMBINED, _match_combined),
    (PayloadFormat.CUSTOMER_ID, _match_customer_id),
)


def classify_payload(
    raw: str,
    *,
    default_business_id: Optional[str] = None,
    clock: Optional[Clock] = None,
    salt: str = DEFAULT_OFFER_HASH_SALT,
) -> ClassifiedPayload:
    """Identify the QR payload format and extract ``(token, offer_hash)``.

    Formats are tried in :data:`MATCHERS` order and the first match wins.
    Raises :class:`UnsupportedFormatError` when nothing matches and
    :class:`FormatError` when a wallet JSON payload lacks a business.
    """
    text = raw.strip() if isinstance(raw, str) else ""
    ctx = _Context(default_business_id=default_business_id, clock=clock, salt=salt)
    for payload_format, matcher in MATCHERS:
        classified = matcher(text, ctx)
        if classified is not None:
            logger.debug(
                "Classified QR payload as %s (token=%s, offer_hash=%s)",
                payload_format.value,
                mask_id(classified.token, 20),
                classified.offer_hash,
            )
            return classified
    raise UnsupportedFormatError(text)
