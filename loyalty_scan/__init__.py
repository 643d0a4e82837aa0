"""Loyalty scan package.

This package implements the QR scan-token protocol of the loyalty platform:
encoding and decoding customer scan tokens, offer hash verification, QR
payload classification and the verify, award, auto-confirm scan flow.
"""

from .config import ScanConfig
from .errors import ExternalServiceError, ScanError
from .payload import ClassifiedPayload, PayloadFormat, build_pass_payload, classify_payload
from .progress import InMemoryProgressService, Progress, ProgressService, create_progress_service_from_env
from .scan import DuplicateScanGuard, ScanOutcome, ScanProcessor, ScanResult, ScanState
from .token import ScanToken, decode_customer_token, encode_customer_token
from .utils.hashing import offer_hash, verify_offer_hash

__all__ = [
    "ScanConfig",
    "ScanError",
    "ExternalServiceError",
    "ScanToken",
    "encode_customer_token",
    "decode_customer_token",
    "offer_hash",
    "verify_offer_hash",
    "PayloadFormat",
    "ClassifiedPayload",
    "classify_payload",
    "build_pass_payload",
    "Progress",
    "ProgressService",
    "InMemoryProgressService",
    "create_progress_service_from_env",
    "ScanProcessor",
    "ScanOutcome",
    "ScanResult",
    "ScanState",
    "DuplicateScanGuard",
]
