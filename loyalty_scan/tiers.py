"""Loyalty tier calculation from completed reward cycles."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence


@dataclass(frozen=True)
class Tier:
    """One tier band; ``max_rewards`` of None means open-ended."""

    id: str
    name: str
    min_rewards: int
    max_rewards: Optional[int] = None
    icon: str = ""
    color: str = "#000000"

    def contains(self, rewards_claimed: int) -> bool:
        if rewards_claimed < self.min_rewards:
            return False
        return self.max_rewards is None or rewards_claimed <= self.max_rewards


@dataclass(frozen=True)
class TierStatus:
    """Where a customer stands in the tier ladder of one offer."""

    current_tier: Tier
    rewards_claimed: int
    rewards_to_next_tier: Optional[int]
    next_tier: Optional[Tier]
    is_top_tier: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentTier": {
                "id": self.current_tier.id,
                "name": self.current_tier.name,
                "icon": self.current_tier.icon,
                "color": self.current_tier.color,
                "minRewards": self.current_tier.min_rewards,
                "maxRewards": self.current_tier.max_rewards,
            },
            "rewardsClaimed": self.rewards_claimed,
            "rewardsToNextTier": self.rewards_to_next_tier,
            "nextTier": {"name": self.next_tier.name, "icon": self.next_tier.icon} if self.next_tier else None,
            "isTopTier": self.is_top_tier,
        }


DEFAULT_TIERS: tuple[Tier, ...] = (
    Tier(id="bronze", name="Bronze Member", min_rewards=1, max_rewards=2, icon="🥉", color="#CD7F32"),
    Tier(id="silver", name="Silver Member", min_rewards=3, max_rewards=5, icon="🥈", color="#C0C0C0"),
    Tier(id="gold", name="Gold Member", min_rewards=6, max_rewards=None, icon="🥇", color="#FFD700"),
)

NEW_MEMBER_TIER = Tier(id="new", name="New Member", min_rewards=0, max_rewards=0, icon="👋", color="#6B7280")


def calculate_tier(rewards_claimed: int, tiers: Sequence[Tier] = DEFAULT_TIERS) -> TierStatus:
    """Resolve the tier for a number of completed cycles."""
    ladder = list(tiers) or list(DEFAULT_TIERS)
    rewards_claimed = max(0, rewards_claimed)

    if rewards_claimed == 0 and ladder[0].min_rewards > 0:
        first = ladder[0]
        return TierStatus(
            current_tier=NEW_MEMBER_TIER,
            rewards_claimed=0,
            rewards_to_next_tier=first.min_rewards,
            next_tier=first,
            is_top_tier=False,
        )

    index = next((i for i, tier in enumerate(ladder) if tier.contains(rewards_claimed)), len(ladder) - 1)
    if index < len(ladder) - 1:
        next_tier: Optional[Tier] = ladder[index + 1]
        to_next: Optional[int] = next_tier.min_rewards - rewards_claimed
    else:
        next_tier, to_next = None, None
    return TierStatus(
        current_tier=ladder[index],
        rewards_claimed=rewards_claimed,
        rewards_to_next_tier=to_next,
        next_tier=next_tier,
        is_top_tier=next_tier is None,
    )


def tier_upgraded(before: Optional[TierStatus], after: Optional[TierStatus]) -> bool:
    """True when both tiers are known and the tier name changed."""
    if before is None or after is None:
        return False
    return before.current_tier.name != after.current_tier.name
