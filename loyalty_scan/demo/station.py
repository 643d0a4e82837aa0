"""Demo scan station: a business with offers, passes and a staff scanner."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from loyalty_scan import InMemoryProgressService, ScanConfig, ScanOutcome, ScanProcessor, build_pass_payload


@dataclass
class ScanLog:
    """Outcomes seen by the demo scanner, in scan order."""

    outcomes: list[ScanOutcome] = field(default_factory=list)


class DemoScanStation:
    """Issues wallet pass payloads and scans them against an in-memory store."""

    def __init__(self, business_id: str = "biz_demo", *, base_url: Optional[str] = None) -> None:
        self.business_id = business_id
        self.base_url = base_url
        self.config = ScanConfig(duplicate_window_ms=0)
        self.service = InMemoryProgressService(salt=self.config.offer_hash_salt)
        self.processor = ScanProcessor(self.service, config=self.config)
        self.log = ScanLog()

    def add_offer(self, offer_id: str, stamps_required: int) -> None:
        self.service.add_offer(self.business_id, offer_id, stamps_required)

    def issue_pass(self, customer_id: str, offer_id: str) -> str:
        """Return the QR payload a customer's wallet pass would carry."""
        return build_pass_payload(
            customer_id,
            self.business_id,
            offer_id,
            base_url=self.base_url,
            salt=self.config.offer_hash_salt,
        )

    async def scan(self, payload: str, *, offer_id: Optional[str] = None) -> ScanOutcome:
        outcome = await self.processor.process(payload, business_id=self.business_id, offer_id=offer_id)
        self.log.outcomes.append(outcome)
        return outcome

    async def close(self) -> None:
        await self.processor.close()
