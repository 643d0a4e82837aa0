"""Scan state machine datatypes and enums."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..errors import ScanError
from ..payload.classifier import PayloadFormat
from ..progress.types import Progress
from ..tiers import TierStatus

WALLET_UPDATE_DELAYED_WARNING = "Reward recorded; wallet update may be delayed"


class ScanState(str, Enum):
    """Steps of one scan event."""

    IDLE = "IDLE"
    DECODING = "DECODING"
    VERIFYING = "VERIFYING"
    AWARDING = "AWARDING"
    AUTO_CONFIRMING = "AUTO_CONFIRMING"
    DONE = "DONE"
    ERROR = "ERROR"


class ScanResult(str, Enum):
    """Outcome kind reported for one scan attempt."""

    VERIFIED_CAN_SCAN = "verified-can-scan"
    VERIFIED_ALREADY_COMPLETED = "verified-already-completed"
    INVALID_FORMAT = "invalid-format"
    UNSUPPORTED_FORMAT = "unsupported-format"
    HASH_MISMATCH = "hash-mismatch"
    DECODE_FAILURE = "decode-failure"
    BUSINESS_MISMATCH = "business-mismatch"
    OFFER_SELECTION_REQUIRED = "offer-selection-required"
    EXPIRED_TOKEN = "expired-token"
    DUPLICATE_SCAN = "duplicate-scan"
    SERVICE_ERROR = "service-error"


@dataclass(frozen=True)
class ScanOutcome:
    """Terminal state of one scan, handed to the wallet and notification layer."""

    success: bool
    state: ScanState
    result: ScanResult
    payload_format: Optional[PayloadFormat] = None
    customer_id: Optional[str] = None
    business_id: Optional[str] = None
    offer_id: Optional[str] = None
    progress: Optional[Progress] = None
    reward_earned: bool = False
    prize_confirmed: bool = False
    tier: Optional[TierStatus] = None
    tier_upgrade: bool = False
    total_completions: Optional[int] = None
    warnings: Tuple[str, ...] = ()
    error: Optional[ScanError] = None
    transitions: Tuple[ScanState, ...] = ()

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "state": self.state.value,
            "result": self.result.value,
            "payloadFormat": self.payload_format.value if self.payload_format else None,
            "customerId": self.customer_id,
            "businessId": self.business_id,
            "offerId": self.offer_id,
            "progress": self.progress.to_dict() if self.progress else None,
            "rewardEarned": self.reward_earned,
            "prizeConfirmed": self.prize_confirmed,
            "tier": self.tier.to_dict() if self.tier else None,
            "tierUpgrade": self.tier_upgrade,
            "totalCompletions": self.total_completions,
            "warnings": list(self.warnings),
            "error": self.error_message,
        }
