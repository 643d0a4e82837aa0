"""Scan event orchestration."""

from .guard import DuplicateScanGuard
from .machine import ScanProcessor, ScanTarget, create_scan_processor_from_env
from .types import WALLET_UPDATE_DELAYED_WARNING, ScanOutcome, ScanResult, ScanState

__all__ = [
    "ScanProcessor",
    "ScanTarget",
    "ScanOutcome",
    "ScanResult",
    "ScanState",
    "DuplicateScanGuard",
    "WALLET_UPDATE_DELAYED_WARNING",
    "create_scan_processor_from_env",
]
