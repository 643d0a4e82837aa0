"""Progress-tracking service interface and the in-memory backend."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..config import ScanConfig
from ..errors import DecodeError, ExternalServiceError, FormatError
from ..tiers import DEFAULT_TIERS, Tier, calculate_tier, tier_upgraded
from ..token.decoder import decode_customer_token
from ..utils.hashing import DEFAULT_OFFER_HASH_SALT, find_offer_by_hash, mask_id
from .types import AwardResult, PrizeConfirmation, Progress

logger = logging.getLogger(__name__)


class ProgressService(ABC):
    """External capabilities the scan processor calls, in call order."""

    @abstractmethod
    async def list_offers(self, business_id: str) -> list[str]:
        """Return the offer ids of a business, used to resolve offer hashes."""

    @abstractmethod
    async def lookup_progress(self, customer_id: str, business_id: str, offer_id: str) -> Progress:
        """Return current progress; a customer with no record has zero stamps."""

    @abstractmethod
    async def increment_progress(self, token: str, offer_hash: str) -> AwardResult:
        """Record one stamp for the customer and offer bound by token and hash."""

    @abstractmethod
    async def confirm_prize(self, customer_id: str, offer_id: str, notes: str = "") -> PrizeConfirmation:
        """Close a completed cycle and issue its reward."""

    async def close(self) -> None:
        """Release backend resources if needed."""


@dataclass
class _ProgressRecord:
    business_id: str
    max_stamps: int
    current_stamps: int = 0
    is_completed: bool = False
    rewards_claimed: int = 0
    total_scans: int = 0
    prize_notes: list[str] = field(default_factory=list)

    def snapshot(self) -> Progress:
        return Progress(
            current_stamps=self.current_stamps,
            max_stamps=self.max_stamps,
            is_completed=self.is_completed,
            rewards_claimed=self.rewards_claimed,
        )


class InMemoryProgressService(ProgressService):
    """In-memory progress store, for tests and local simulation.

    It decodes tokens and resolves offer hashes with the same functions the
    scanner uses, so it stands in for the issuing deployment's side of the
    hash contract. A completed card refuses further stamps until its prize
    is confirmed.
    """

    def __init__(
        self,
        *,
        salt: str = DEFAULT_OFFER_HASH_SALT,
        require_token_padding: bool = True,
        tiers: Sequence[Tier] = DEFAULT_TIERS,
    ) -> None:
        self.salt = salt
        self.require_token_padding = require_token_padding
        self.tiers = tuple(tiers)
        self.offers: dict[str, dict[str, int]] = {}
        self.records: dict[tuple[str, str], _ProgressRecord] = {}

    def add_offer(self, business_id: str, offer_id: str, stamps_required: int = 10) -> None:
        if stamps_required <= 0:
            raise ValueError("stamps_required must be positive")
        self.offers.setdefault(business_id, {})[offer_id] = stamps_required

    async def list_offers(self, business_id: str) -> list[str]:
        return list(self.offers.get(business_id, {}))

    async def lookup_progress(self, customer_id: str, business_id: str, offer_id: str) -> Progress:
        required = self.offers.get(business_id, {}).get(offer_id)
        if required is None:
            raise ExternalServiceError("lookup_progress", "offer not found", status_code=404)
        record = self.records.get((customer_id, offer_id))
        if record is None:
            return Progress(current_stamps=0, max_stamps=required, is_completed=False)
        return record.snapshot()

    async def increment_progress(self, token: str, offer_hash: str) -> AwardResult:
        try:
            decoded = decode_customer_token(token, require_padding=self.require_token_padding)
        except (DecodeError, FormatError) as exc:
            raise ExternalServiceError("increment_progress", f"invalid customer token: {exc.message}", status_code=400) from exc

        offers = self.offers.get(decoded.business_id, {})
        offer_id = find_offer_by_hash(offers, decoded.business_id, offer_hash, self.salt)
        if offer_id is None:
            raise ExternalServiceError("increment_progress", "offer not found or hash invalid", status_code=404)

        key = (decoded.customer_id, offer_id)
        record = self.records.get(key)
        if record is None:
            record = _ProgressRecord(business_id=decoded.business_id, max_stamps=offers[offer_id])
            self.records[key] = record
        if record.is_completed:
            raise ExternalServiceError(
                "increment_progress",
                "progress already completed; confirm the prize first",
                status_code=409,
            )

        record.current_stamps = min(record.current_stamps + 1, record.max_stamps)
        record.total_scans += 1
        if record.current_stamps >= record.max_stamps:
            record.is_completed = True
        logger.info(
            "Stamp recorded for customer %s on offer %s (%d/%d)",
            mask_id(decoded.customer_id),
            mask_id(offer_id),
            record.current_stamps,
            record.max_stamps,
        )
        return AwardResult(progress=record.snapshot(), reward_earned=record.is_completed)

    async def confirm_prize(self, customer_id: str, offer_id: str, notes: str = "") -> PrizeConfirmation:
        record = self.records.get((customer_id, offer_id))
        if record is None:
            raise ExternalServiceError("confirm_prize", "customer progress not found", status_code=404)
        if not record.is_completed:
            raise ExternalServiceError("confirm_prize", "reward cannot be claimed before completion", status_code=400)

        tier_before = calculate_tier(record.rewards_claimed, self.tiers)
        record.rewards_claimed += 1
        record.current_stamps = 0
        record.is_completed = False
        record.prize_notes.append(notes)
        tier_after = calculate_tier(record.rewards_claimed, self.tiers)
        return PrizeConfirmation(
            progress=record.snapshot(),
            tier=tier_after,
            tier_upgrade=tier_upgraded(tier_before, tier_after),
            total_completions=record.rewards_claimed,
        )


def create_progress_service_from_env(config: Optional[ScanConfig] = None) -> ProgressService:
    """Create the HTTP or Postgres backend if env configured, otherwise in-memory."""
    config = config or ScanConfig.from_env()
    api_url = os.getenv("LOYALTY_SCAN_API_URL")
    if api_url:
        from .http import HttpProgressService

        return HttpProgressService(
            api_url,
            api_token=os.getenv("LOYALTY_SCAN_API_TOKEN"),
            business_id=os.getenv("LOYALTY_SCAN_BUSINESS_ID"),
            salt=config.offer_hash_salt,
        )

    dsn = os.getenv("LOYALTY_SCAN_PG_DSN") or os.getenv("DATABASE_URL")
    if dsn:
        from .postgres import PostgresProgressService

        return PostgresProgressService(dsn=dsn, salt=config.offer_hash_salt)
    return InMemoryProgressService(salt=config.offer_hash_salt)
