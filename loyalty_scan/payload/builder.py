"""Builders for the QR payloads embedded in wallet passes."""

from __future__ import annotations

import json
from typing import Optional
from urllib.parse import quote

from ..token.encoder import encode_customer_token
from ..utils.hashing import DEFAULT_OFFER_HASH_SALT, offer_hash
from ..utils.time import Clock
from .classifier import SCAN_PATH_SEGMENT


def build_scan_url(base_url: str, token: str, offer_hash_value: str) -> str:
    """Return ``{base_url}/scan/{token}/{hash}``."""
    return f"{base_url.rstrip('/')}/{SCAN_PATH_SEGMENT}/{quote(token, safe='=')}/{offer_hash_value}"


def build_combined_payload(token: str, offer_hash_value: str) -> str:
    return f"{token}:{offer_hash_value}"


def build_wallet_payload(customer_id: str, offer_id: str, business_id: Optional[str] = None) -> str:
    payload = {"customerId": customer_id, "offerId": offer_id}
    if business_id:
        payload["businessId"] = business_id
    return json.dumps(payload, separators=(",", ":"))


def build_pass_payload(
    customer_id: str,
    business_id: str,
    offer_id: str,
    *,
    base_url: Optional[str] = None,
    timestamp_ms: Optional[int] = None,
    clock: Optional[Clock] = None,
    salt: str = DEFAULT_OFFER_HASH_SALT,
) -> str:
    """Return the progress QR payload for a customer's wallet pass.

    URL form when ``base_url`` is given, combined ``token:hash`` otherwise.
    """
    token = encode_customer_token(customer_id, business_id, timestamp_ms, clock=clock)
    digest = offer_hash(offer_id, business_id, salt)
    if base_url:
        return build_scan_url(base_url, token, digest)
    return build_combined_payload(token, digest)
