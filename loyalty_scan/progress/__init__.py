"""Boundary to the external progress-tracking service."""

from .normalize import (
    normalize_award,
    normalize_offer_ids,
    normalize_prize_confirmation,
    normalize_progress,
    normalize_tier,
)
from .service import InMemoryProgressService, ProgressService, create_progress_service_from_env
from .types import AwardResult, PrizeConfirmation, Progress

__all__ = [
    "Progress",
    "AwardResult",
    "PrizeConfirmation",
    "ProgressService",
    "InMemoryProgressService",
    "HttpProgressService",
    "PostgresProgressService",
    "create_progress_service_from_env",
    "normalize_progress",
    "normalize_award",
    "normalize_prize_confirmation",
    "normalize_offer_ids",
    "normalize_tier",
]


def __getattr__(name: str):
    if name == "HttpProgressService":
        from .http import HttpProgressService

        return HttpProgressService
    if name == "PostgresProgressService":
        from .postgres import PostgresProgressService

        return PostgresProgressService
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
