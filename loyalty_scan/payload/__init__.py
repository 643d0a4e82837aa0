"""QR payload classification and construction."""

from .builder import build_combined_payload, build_pass_payload, build_scan_url, build_wallet_payload
from .classifier import MATCHERS, ClassifiedPayload, PayloadFormat, classify_payload

__all__ = [
    "PayloadFormat",
    "ClassifiedPayload",
    "MATCHERS",
    "classify_payload",
    "build_scan_url",
    "build_combined_payload",
    "build_wallet_payload",
    "build_pass_payload",
]
