"""Single normalization boundary for progress-service response bodies.

The progress endpoints answer with either camelCase or snake_case keys, with
or without a ``{"success": ..., "data": ...}`` envelope, and with counters
either flat or nested under ``progress``. Everything past this module works
with :class:`~loyalty_scan.progress.types.Progress` only.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from ..errors import ExternalServiceError
from ..tiers import Tier, TierStatus
from .types import AwardResult, PrizeConfirmation, Progress

CURRENT_STAMPS_KEYS = ("currentStamps", "current_stamps", "newStamps", "new_stamps", "stampsEarned", "stamps_earned")
MAX_STAMPS_KEYS = ("maxStamps", "max_stamps", "stampsRequired", "stamps_required")
COMPLETED_KEYS = ("isCompleted", "is_completed", "completed")
REWARDS_CLAIMED_KEYS = ("rewardsClaimed", "rewards_claimed")
REWARD_EARNED_KEYS = ("rewardEarned", "reward_earned")
TIER_UPGRADE_KEYS = ("tierUpgrade", "tier_upgrade")
TOTAL_COMPLETIONS_KEYS = ("totalCompletions", "total_completions")
OFFER_ID_KEYS = ("id", "public_id", "publicId", "offerId", "offer_id")


def _pick(data: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _as_int(value: Any, field: str, operation: str) -> int:
    if isinstance(value, bool):
        raise ExternalServiceError(operation, f"field {field!r} is not an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ExternalServiceError(operation, f"field {field!r} is not an integer") from exc


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def unwrap_envelope(payload: Any, operation: str) -> Any:
    """Strip the ``success``/``data`` envelope, raising on ``success: false``."""
    if isinstance(payload, dict):
        if payload.get("success") is False:
            message = payload.get("message") or payload.get("error") or "service reported failure"
            raise ExternalServiceError(operation, str(message))
        if "data" in payload and isinstance(payload["data"], (dict, list)):
            return payload["data"]
    return payload


def normalize_progress(payload: Any, operation: str = "progress") -> Progress:
    body = unwrap_envelope(payload, operation)
    if not isinstance(body, dict):
        raise ExternalServiceError(operation, "response body is not an object")
    source: Dict[str, Any] = body["progress"] if isinstance(body.get("progress"), dict) else body

    current = _pick(source, CURRENT_STAMPS_KEYS)
    maximum = _pick(source, MAX_STAMPS_KEYS)
    if current is None or maximum is None:
        raise ExternalServiceError(operation, "response is missing stamp counters")
    current_stamps = _as_int(current, "currentStamps", operation)
    max_stamps = _as_int(maximum, "maxStamps", operation)

    completed = _pick(source, COMPLETED_KEYS)
    is_completed = _as_bool(completed) if completed is not None else current_stamps >= max_stamps > 0
    claimed = _pick(source, REWARDS_CLAIMED_KEYS)
    return Progress(
        current_stamps=current_stamps,
        max_stamps=max_stamps,
        is_completed=is_completed,
        rewards_claimed=_as_int(claimed, "rewardsClaimed", operation) if claimed is not None else 0,
    )


def normalize_award(payload: Any, operation: str = "increment_progress") -> AwardResult:
    body = unwrap_envelope(payload, operation)
    progress = normalize_progress(body, operation)
    earned = _pick(body, REWARD_EARNED_KEYS) if isinstance(body, dict) else None
    return AwardResult(
        progress=progress,
        reward_earned=_as_bool(earned) if earned is not None else progress.is_completed,
    )


def normalize_tier(value: Any, operation: str = "confirm_prize") -> Optional[TierStatus]:
    if not isinstance(value, dict):
        return None
    current = value.get("currentTier") or value.get("current_tier")
    if not isinstance(current, dict) or not current.get("name"):
        return None

    def _optional_int(data: Mapping[str, Any], keys: tuple[str, ...]) -> Optional[int]:
        found = _pick(data, keys)
        return _as_int(found, keys[0], operation) if found is not None else None

    def _tier(data: Mapping[str, Any]) -> Tier:
        return Tier(
            id=str(data.get("id") or data.get("name")),
            name=str(data.get("name")),
            min_rewards=_optional_int(data, ("minRewards", "min_rewards")) or 0,
            max_rewards=_optional_int(data, ("maxRewards", "max_rewards")),
            icon=str(data.get("icon") or ""),
            color=str(data.get("color") or "#000000"),
        )

    next_data = value.get("nextTier") or value.get("next_tier")
    return TierStatus(
        current_tier=_tier(current),
        rewards_claimed=_optional_int(value, REWARDS_CLAIMED_KEYS) or 0,
        rewards_to_next_tier=_optional_int(value, ("rewardsToNextTier", "rewards_to_next_tier")),
        next_tier=_tier(next_data) if isinstance(next_data, dict) and next_data.get("name") else None,
        is_top_tier=_as_bool(_pick(value, ("isTopTier", "is_top_tier")) or False),
    )


def normalize_prize_confirmation(payload: Any, operation: str = "confirm_prize") -> PrizeConfirmation:
    body = unwrap_envelope(payload, operation)
    if not isinstance(body, dict):
        raise ExternalServiceError(operation, "response body is not an object")
    progress: Optional[Progress] = None
    if isinstance(body.get("progress"), dict):
        progress = normalize_progress(body["progress"], operation)
    completions = _pick(body, TOTAL_COMPLETIONS_KEYS)
    if completions is None and progress is not None:
        completions = progress.rewards_claimed
    return PrizeConfirmation(
        progress=progress,
        tier=normalize_tier(body.get("tier"), operation),
        tier_upgrade=_as_bool(_pick(body, TIER_UPGRADE_KEYS) or False),
        total_completions=_as_int(completions or 0, "totalCompletions", operation),
    )


def normalize_offer_ids(payload: Any, operation: str = "list_offers") -> List[str]:
    body = unwrap_envelope(payload, operation)
    if isinstance(body, dict):
        body = body.get("offers")
    if not isinstance(body, list):
        raise ExternalServiceError(operation, "response does not contain an offer list")
    offer_ids: List[str] = []
    for item in body:
        if isinstance(item, dict):
            item = _pick(item, OFFER_ID_KEYS)
        if item is not None and not isinstance(item, bool):
            offer_ids.append(str(item))
    return offer_ids
