"""Example staff scanner talking to the platform's REST progress API."""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from loyalty_scan import ScanConfig, ScanProcessor
from loyalty_scan.progress import HttpProgressService


async def main(raw: str) -> None:
    logging.basicConfig(level=logging.INFO)
    business_id = os.getenv("LOYALTY_SCAN_BUSINESS_ID", "biz_123")
    service = HttpProgressService(
        os.getenv("LOYALTY_SCAN_API_URL", "http://localhost:3000/api/business"),
        api_token=os.getenv("LOYALTY_SCAN_API_TOKEN"),
        business_id=business_id,
    )
    processor = ScanProcessor(service, config=ScanConfig.from_env())
    try:
        outcome = await processor.process(raw, business_id=business_id)
        print(outcome.to_dict())
    finally:
        await processor.close()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else ""))
