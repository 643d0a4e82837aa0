"""Customer scan token encoding and decoding."""

from .decoder import decode_customer_token, try_decode_customer_token
from .encoder import encode_customer_token, issue_scan_token
from .types import TOKEN_DELIMITER, ScanToken

__all__ = [
    "ScanToken",
    "TOKEN_DELIMITER",
    "encode_customer_token",
    "issue_scan_token",
    "decode_customer_token",
    "try_decode_customer_token",
]
