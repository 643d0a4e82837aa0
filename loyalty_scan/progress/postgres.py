"""PostgreSQL progress store using ``asyncpg``."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

import asyncpg

from ..errors import DecodeError, ExternalServiceError, FormatError
from ..tiers import DEFAULT_TIERS, Tier, calculate_tier, tier_upgraded
from ..token.decoder import decode_customer_token
from ..utils.hashing import DEFAULT_OFFER_HASH_SALT, find_offer_by_hash, mask_id
from .service import ProgressService
from .types import AwardResult, PrizeConfirmation, Progress

logger = logging.getLogger(__name__)

# Driver failures, dropped connections and pool timeouts all surface as
# ExternalServiceError.
DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS offers (
    public_id TEXT PRIMARY KEY,
    business_id TEXT NOT NULL,
    stamps_required INTEGER NOT NULL CHECK (stamps_required > 0)
);

CREATE TABLE IF NOT EXISTS customer_progress (
    customer_id TEXT NOT NULL,
    offer_id TEXT NOT NULL REFERENCES offers (public_id),
    business_id TEXT NOT NULL,
    current_stamps INTEGER NOT NULL DEFAULT 0,
    max_stamps INTEGER NOT NULL,
    is_completed BOOLEAN NOT NULL DEFAULT FALSE,
    rewards_claimed INTEGER NOT NULL DEFAULT 0,
    total_scans INTEGER NOT NULL DEFAULT 0,
    last_scan_date TIMESTAMPTZ,
    completed_at TIMESTAMPTZ,
    reward_fulfilled_at TIMESTAMPTZ,
    notes TEXT,
    PRIMARY KEY (customer_id, offer_id)
);
"""

# Only an incomplete card can take a stamp; a concurrent duplicate scan of a
# completed card matches no row.
AWARD_SQL = """
UPDATE customer_progress
SET current_stamps = LEAST(current_stamps + 1, max_stamps),
    total_scans = total_scans + 1,
    last_scan_date = NOW(),
    is_completed = LEAST(current_stamps + 1, max_stamps) >= max_stamps,
    completed_at = CASE WHEN LEAST(current_stamps + 1, max_stamps) >= max_stamps THEN NOW() ELSE completed_at END
WHERE customer_id = $1 AND offer_id = $2 AND NOT is_completed
RETURNING current_stamps, max_stamps, is_completed, rewards_claimed
"""


def _row_progress(row: asyncpg.Record) -> Progress:
    return Progress(
        current_stamps=row["current_stamps"],
        max_stamps=row["max_stamps"],
        is_completed=row["is_completed"],
        rewards_claimed=row["rewards_claimed"],
    )


class PostgresProgressService(ProgressService):
    """Postgres-backed progress store over ``offers`` and ``customer_progress``."""

    def __init__(
        self,
        dsn: Optional[str] = None,
        *,
        pool: Optional[asyncpg.Pool] = None,
        min_size: int = 1,
        max_size: int = 4,
        salt: str = DEFAULT_OFFER_HASH_SALT,
        require_token_padding: bool = True,
        tiers: Sequence[Tier] = DEFAULT_TIERS,
    ) -> None:
        self.dsn = dsn
        self.pool = pool
        self._min_size = min_size
        self._max_size = max_size
        self.salt = salt
        self.require_token_padding = require_token_padding
        self.tiers = tuple(tiers)

    async def connect(self) -> None:
        if self.pool is not None:
            return
        if not self.dsn:
            raise ValueError("Either `dsn` or `pool` must be provided for PostgresProgressService.")
        try:
            self.pool = await asyncpg.create_pool(dsn=self.dsn, min_size=self._min_size, max_size=self._max_size)
        except DB_ERRORS as exc:
            raise ExternalServiceError("connect", str(exc)) from exc

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    async def create_schema(self) -> None:
        await self.connect()
        assert self.pool is not None
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)
        except DB_ERRORS as exc:
            raise ExternalServiceError("create_schema", str(exc)) from exc

    async def add_offer(self, business_id: str, offer_id: str, stamps_required: int = 10) -> None:
        await self.connect()
        assert self.pool is not None
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO offers (public_id, business_id, stamps_required)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (public_id) DO UPDATE SET stamps_required = EXCLUDED.stamps_required
                    """,
                    offer_id,
                    business_id,
                    stamps_required,
                )
        except DB_ERRORS as exc:
            raise ExternalServiceError("add_offer", str(exc)) from exc

    async def list_offers(self, business_id: str) -> list[str]:
        await self.connect()
        assert self.pool is not None
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT public_id FROM offers WHERE business_id=$1 ORDER BY public_id",
                    business_id,
                )
        except DB_ERRORS as exc:
            raise ExternalServiceError("list_offers", str(exc)) from exc
        return [row["public_id"] for row in rows]

    async def lookup_progress(self, customer_id: str, business_id: str, offer_id: str) -> Progress:
        await self.connect()
        assert self.pool is not None
        try:
            async with self.pool.acquire() as conn:
                offer = await conn.fetchrow(
                    "SELECT stamps_required FROM offers WHERE public_id=$1 AND business_id=$2",
                    offer_id,
                    business_id,
                )
                if offer is None:
                    raise ExternalServiceError("lookup_progress", "offer not found", status_code=404)
                row = await conn.fetchrow(
                    """
                    SELECT current_stamps, max_stamps, is_completed, rewards_claimed
                    FROM customer_progress WHERE customer_id=$1 AND offer_id=$2
                    """,
                    customer_id,
                    offer_id,
                )
        except DB_ERRORS as exc:
            raise ExternalServiceError("lookup_progress", str(exc)) from exc
        if row is None:
            return Progress(current_stamps=0, max_stamps=offer["stamps_required"], is_completed=False)
        return _row_progress(row)

    async def increment_progress(self, token: str, offer_hash: str) -> AwardResult:
        try:
            decoded = decode_customer_token(token, require_padding=self.require_token_padding)
        except (DecodeError, FormatError) as exc:
            raise ExternalServiceError("increment_progress", f"invalid customer token: {exc.message}", status_code=400) from exc

        offer_ids = await self.list_offers(decoded.business_id)
        offer_id = find_offer_by_hash(offer_ids, decoded.business_id, offer_hash, self.salt)
        if offer_id is None:
            raise ExternalServiceError("increment_progress", "offer not found or hash invalid", status_code=404)

        assert self.pool is not None
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        """
                        INSERT INTO customer_progress (customer_id, offer_id, business_id, max_stamps)
                        SELECT $1, public_id, business_id, stamps_required FROM offers WHERE public_id=$2
                        ON CONFLICT (customer_id, offer_id) DO NOTHING
                        """,
                        decoded.customer_id,
                        offer_id,
                    )
                    row = await conn.fetchrow(AWARD_SQL, decoded.customer_id, offer_id)
        except DB_ERRORS as exc:
            raise ExternalServiceError("increment_progress", str(exc)) from exc

        if row is None:
            raise ExternalServiceError(
                "increment_progress",
                "progress already completed; confirm the prize first",
                status_code=409,
            )
        progress = _row_progress(row)
        logger.info(
            "Stamp recorded for customer %s on offer %s (%d/%d)",
            mask_id(decoded.customer_id),
            mask_id(offer_id),
            progress.current_stamps,
            progress.max_stamps,
        )
        return AwardResult(progress=progress, reward_earned=progress.is_completed)

    async def confirm_prize(self, customer_id: str, offer_id: str, notes: str = "") -> PrizeConfirmation:
        await self.connect()
        assert self.pool is not None
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        SELECT current_stamps, max_stamps, is_completed, rewards_claimed
                        FROM customer_progress WHERE customer_id=$1 AND offer_id=$2
                        FOR UPDATE
                        """,
                        customer_id,
                        offer_id,
                    )
                    if row is None:
                        raise ExternalServiceError("confirm_prize", "customer progress not found", status_code=404)
                    if not row["is_completed"]:
                        raise ExternalServiceError(
                            "confirm_prize",
                            "reward cannot be claimed before completion",
                            status_code=400,
                        )
                    updated = await conn.fetchrow(
                        """
                        UPDATE customer_progress
                        SET rewards_claimed = rewards_claimed + 1,
                            current_stamps = 0,
                            is_completed = FALSE,
                            completed_at = NULL,
                            reward_fulfilled_at = NOW(),
                            notes = $3
                        WHERE customer_id=$1 AND offer_id=$2
                        RETURNING current_stamps, max_stamps, is_completed, rewards_claimed
                        """,
                        customer_id,
                        offer_id,
                        notes,
                    )
        except DB_ERRORS as exc:
            raise ExternalServiceError("confirm_prize", str(exc)) from exc

        tier_before = calculate_tier(row["rewards_claimed"], self.tiers)
        tier_after = calculate_tier(updated["rewards_claimed"], self.tiers)
        return PrizeConfirmation(
            progress=_row_progress(updated),
            tier=tier_after,
            tier_upgrade=tier_upgraded(tier_before, tier_after),
            total_completions=updated["rewards_claimed"],
        )
