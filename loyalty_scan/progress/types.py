"""Canonical loyalty progress datatypes exchanged with the progress store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..tiers import TierStatus


@dataclass(frozen=True)
class Progress:
    """Stamp counters of one customer on one offer."""

    current_stamps: int
    max_stamps: int
    is_completed: bool
    rewards_claimed: int = 0

    @property
    def remaining_stamps(self) -> int:
        return max(0, self.max_stamps - self.current_stamps)

    @property
    def percentage(self) -> int:
        if self.max_stamps <= 0:
            return 0
        return round(self.current_stamps / self.max_stamps * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentStamps": self.current_stamps,
            "maxStamps": self.max_stamps,
            "isCompleted": self.is_completed,
            "rewardsClaimed": self.rewards_claimed,
        }


@dataclass(frozen=True)
class AwardResult:
    """Outcome of recording one stamp."""

    progress: Progress
    reward_earned: bool


@dataclass(frozen=True)
class PrizeConfirmation:
    """Outcome of closing a completed cycle and issuing its reward."""

    progress: Optional[Progress]
    tier: Optional[TierStatus]
    tier_upgrade: bool
    total_completions: int
