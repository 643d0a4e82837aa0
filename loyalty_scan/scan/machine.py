"""Scan state machine: verify, award, then auto-confirm the prize."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import ScanConfig
from ..errors import (
    BusinessMismatchError,
    DecodeError,
    DuplicateScanError,
    ExpiredTokenError,
    ExternalServiceError,
    FormatError,
    HashMismatchError,
    OfferSelectionError,
    ScanError,
)
from ..payload.classifier import ClassifiedPayload, PayloadFormat, classify_payload
from ..progress.service import ProgressService, create_progress_service_from_env
from ..progress.types import PrizeConfirmation, Progress
from ..token.decoder import decode_customer_token
from ..token.encoder import encode_customer_token
from ..token.types import ScanToken
from ..utils.hashing import find_offer_by_hash, mask_id, offer_hash
from ..utils.time import Clock, now_ms
from .guard import DuplicateScanGuard
from .types import WALLET_UPDATE_DELAYED_WARNING, ScanOutcome, ScanResult, ScanState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanTarget:
    """Customer, offer and the token/hash pair the award call is made with."""

    customer_id: str
    business_id: str
    offer_id: str
    token: str
    offer_hash: str


@dataclass
class _Attempt:
    business_id: str
    state: ScanState = ScanState.IDLE
    transitions: List[ScanState] = field(default_factory=lambda: [ScanState.IDLE])
    payload_format: Optional[PayloadFormat] = None
    target: Optional[ScanTarget] = None
    progress: Optional[Progress] = None
    guard_key: Optional[str] = None

    def enter(self, state: ScanState) -> None:
        logger.debug("Scan transition %s -> %s", self.state.value, state.value)
        self.state = state
        self.transitions.append(state)


class ScanProcessor:
    """Run one scan event end to end against a :class:`ProgressService`.

    The three service calls are strictly ordered. Once ``increment_progress``
    returns, the stamp is recorded and is never retried or rolled back; a
    failed prize confirmation afterwards only adds a warning.
    """

    def __init__(
        self,
        service: ProgressService,
        *,
        config: Optional[ScanConfig] = None,
        clock: Optional[Clock] = None,
        guard: Optional[DuplicateScanGuard] = None,
    ) -> None:
        self.service = service
        self.config = config or ScanConfig()
        self._clock = clock or now_ms
        self.guard = guard

    async def process(
        self,
        raw: str,
        *,
        business_id: str,
        offer_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ScanOutcome:
        """Process raw scanned text for the scanning staff member's business.

        ``offer_id`` is the offer selected by staff; it is required for bare
        customer-id payloads when the business has more than one offer.
        Rejections and service failures come back as an ``ERROR`` outcome.
        """
        attempt = _Attempt(business_id=business_id)
        try:
            attempt.enter(ScanState.DECODING)
            target = await self._resolve(raw, attempt, offer_id)
            attempt.target = target

            attempt.enter(ScanState.VERIFYING)
            current = await self.service.lookup_progress(target.customer_id, business_id, target.offer_id)
            attempt.progress = current
            if current.is_completed:
                logger.info(
                    "Card of customer %s on offer %s is already completed; no stamp awarded",
                    mask_id(target.customer_id),
                    mask_id(target.offer_id),
                )
                attempt.enter(ScanState.DONE)
                return self._outcome(attempt, ScanResult.VERIFIED_ALREADY_COMPLETED)

            attempt.enter(ScanState.AWARDING)
            award = await self.service.increment_progress(target.token, target.offer_hash)
        except ScanError as exc:
            return self._failure(attempt, exc)

        attempt.progress = award.progress
        reward_earned = award.reward_earned or award.progress.is_completed
        confirmation: Optional[PrizeConfirmation] = None
        warnings: List[str] = []

        if reward_earned and self.config.auto_confirm_prize:
            attempt.enter(ScanState.AUTO_CONFIRMING)
            try:
                confirmation = await self.service.confirm_prize(
                    target.customer_id,
                    target.offer_id,
                    self.config.auto_confirm_notes if notes is None else notes,
                )
            except ExternalServiceError as exc:
                logger.warning(
                    "Auto-confirmation failed for customer %s on offer %s after the stamp was recorded: %s",
                    mask_id(target.customer_id),
                    mask_id(target.offer_id),
                    exc.message,
                )
                warnings.append(WALLET_UPDATE_DELAYED_WARNING)
            else:
                if confirmation.progress is not None:
                    attempt.progress = confirmation.progress
                logger.info(
                    "Prize confirmed for customer %s on offer %s (completions=%d)",
                    mask_id(target.customer_id),
                    mask_id(target.offer_id),
                    confirmation.total_completions,
                )

        attempt.enter(ScanState.DONE)
        return self._outcome(
            attempt,
            ScanResult.VERIFIED_CAN_SCAN,
            reward_earned=reward_earned,
            confirmation=confirmation,
            warnings=warnings,
        )

    async def confirm_prize(self, customer_id: str, offer_id: str, notes: str = "") -> PrizeConfirmation:
        """Manually confirm a completed card, e.g. after a delayed auto-confirmation."""
        confirmation = await self.service.confirm_prize(customer_id, offer_id, notes)
        logger.info(
            "Prize confirmed for customer %s on offer %s (completions=%d)",
            mask_id(customer_id),
            mask_id(offer_id),
            confirmation.total_completions,
        )
        return confirmation

    async def close(self) -> None:
        await self.service.close()

    async def _resolve(self, raw: str, attempt: _Attempt, offer_id: Optional[str]) -> ScanTarget:
        business_id = attempt.business_id
        if not isinstance(business_id, str) or not business_id or ":" in business_id:
            raise FormatError("Business id must be a non-empty string without ':'")
        text = raw.strip() if isinstance(raw, str) else ""
        if self.guard is not None:
            key = f"{business_id}|{text}"
            if self.guard.seen(key):
                raise DuplicateScanError("The same code was scanned moments ago; ignoring repeated read")
            attempt.guard_key = key

        classified = classify_payload(
            text,
            default_business_id=business_id,
            clock=self._clock,
            salt=self.config.offer_hash_salt,
        )
        attempt.payload_format = classified.format
        if classified.requires_offer_selection:
            return await self._resolve_customer_id(classified, business_id, offer_id)

        decoded = self._decode(classified.token)
        if decoded.business_id != business_id:
            raise BusinessMismatchError("This code was issued for a different business")
        if decoded.is_expired(self.config.max_token_age_ms, self._clock()):
            raise ExpiredTokenError(f"Scan token is older than {self.config.max_token_age_ms} ms")

        offers = await self.service.list_offers(business_id)
        resolved = find_offer_by_hash(offers, business_id, classified.offer_hash or "", self.config.offer_hash_salt)
        if resolved is None:
            raise HashMismatchError("Offer hash does not match any offer of this business", offer_hash=classified.offer_hash)
        if offer_id is not None and offer_id != resolved:
            raise HashMismatchError("Scanned offer does not match the selected offer", offer_hash=classified.offer_hash)

        return ScanTarget(
            customer_id=decoded.customer_id,
            business_id=business_id,
            offer_id=resolved,
            token=decoded.encode(),
            offer_hash=classified.offer_hash or "",
        )

    def _decode(self, token: str) -> ScanToken:
        try:
            return decode_customer_token(token)
        except DecodeError as exc:
            # Passes issued before the padding rule carry no trailing "=".
            if not self.config.accept_unpadded_tokens or token.endswith("="):
                raise
            try:
                decoded = decode_customer_token(token, require_padding=False)
            except ScanError:
                raise exc from None
        logger.debug("Accepted legacy unpadded token for customer %s", mask_id(decoded.customer_id))
        return decoded

    async def _resolve_customer_id(
        self,
        classified: ClassifiedPayload,
        business_id: str,
        offer_id: Optional[str],
    ) -> ScanTarget:
        customer_id = classified.customer_id or classified.token
        offers = await self.service.list_offers(business_id)
        if offer_id is None:
            if len(offers) != 1:
                raise OfferSelectionError(f"Customer id scanned; select one of {len(offers)} offers to apply")
            offer_id = offers[0]
        elif offer_id not in offers:
            raise OfferSelectionError("Selected offer does not belong to this business")

        return ScanTarget(
            customer_id=customer_id,
            business_id=business_id,
            offer_id=offer_id,
            token=encode_customer_token(customer_id, business_id, clock=self._clock),
            offer_hash=offer_hash(offer_id, business_id, self.config.offer_hash_salt),
        )

    def _outcome(
        self,
        attempt: _Attempt,
        result: ScanResult,
        *,
        reward_earned: bool = False,
        confirmation: Optional[PrizeConfirmation] = None,
        warnings: Optional[List[str]] = None,
    ) -> ScanOutcome:
        target = attempt.target
        return ScanOutcome(
            success=True,
            state=attempt.state,
            result=result,
            payload_format=attempt.payload_format,
            customer_id=target.customer_id if target else None,
            business_id=attempt.business_id,
            offer_id=target.offer_id if target else None,
            progress=attempt.progress,
            reward_earned=reward_earned,
            prize_confirmed=confirmation is not None,
            tier=confirmation.tier if confirmation else None,
            tier_upgrade=confirmation.tier_upgrade if confirmation else False,
            total_completions=confirmation.total_completions if confirmation else None,
            warnings=tuple(warnings or ()),
            transitions=tuple(attempt.transitions),
        )

    def _failure(self, attempt: _Attempt, exc: ScanError) -> ScanOutcome:
        failed_in = attempt.state
        attempt.enter(ScanState.ERROR)
        if self.guard is not None and attempt.guard_key is not None:
            # A failed scan must not block the staff member's re-scan.
            self.guard.forget(attempt.guard_key)
        logger.warning("Scan rejected during %s (%s): %s", failed_in.value, exc.kind, exc.message)
        target = attempt.target
        return ScanOutcome(
            success=False,
            state=ScanState.ERROR,
            result=ScanResult(exc.kind),
            payload_format=attempt.payload_format,
            customer_id=target.customer_id if target else None,
            business_id=attempt.business_id,
            offer_id=target.offer_id if target else None,
            progress=attempt.progress,
            error=exc,
            transitions=tuple(attempt.transitions),
        )


def create_scan_processor_from_env(config: Optional[ScanConfig] = None) -> ScanProcessor:
    """Build a processor with the env-selected progress store and duplicate guard."""
    config = config or ScanConfig.from_env()
    guard = DuplicateScanGuard(config.duplicate_window_ms) if config.duplicate_window_ms > 0 else None
    return ScanProcessor(create_progress_service_from_env(config), config=config, guard=guard)
