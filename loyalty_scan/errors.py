"""Error taxonomy for scan token handling and scan processing.

Every error is scoped to one scan attempt. ``kind`` carries the
:class:`~loyalty_scan.scan.types.ScanResult` value the processor reports.
"""

from __future__ import annotations

from typing import Optional


class ScanError(Exception):
    """Base class for a rejected or failed scan attempt."""

    kind = "service-error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class DecodeError(ScanError):
    """The token is not valid base64 or not valid UTF-8 once decoded."""

    kind = "decode-failure"


class FormatError(ScanError):
    """The decoded token or payload does not have the expected fields."""

    kind = "invalid-format"


class UnsupportedFormatError(ScanError):
    """Scanned text matches none of the supported QR payload formats."""

    kind = "unsupported-format"

    def __init__(self, raw: str) -> None:
        self.raw_preview = raw[:50]
        super().__init__(f"Unsupported QR format: {self.raw_preview}")


class HashMismatchError(ScanError):
    """No offer of the business produces the scanned offer hash."""

    kind = "hash-mismatch"

    def __init__(self, message: str, *, offer_hash: Optional[str] = None) -> None:
        super().__init__(message)
        self.offer_hash = offer_hash


class BusinessMismatchError(ScanError):
    """The token was issued for a different business than the scanner's."""

    kind = "business-mismatch"


class OfferSelectionError(ScanError):
    """A customer-id payload cannot be tied to one offer automatically."""

    kind = "offer-selection-required"


class ExpiredTokenError(ScanError):
    """The token is older than the configured maximum age."""

    kind = "expired-token"


class DuplicateScanError(ScanError):
    """The same payload was scanned again inside the debounce window."""

    kind = "duplicate-scan"


class ExternalServiceError(ScanError):
    """A progress-service call failed or answered with a non-success response."""

    kind = "service-error"

    def __init__(self, operation: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.status_code = status_code


__all__ = [
    "ScanError",
    "DecodeError",
    "FormatError",
    "UnsupportedFormatError",
    "HashMismatchError",
    "BusinessMismatchError",
    "OfferSelectionError",
    "ExpiredTokenError",
    "DuplicateScanError",
    "ExternalServiceError",
]
