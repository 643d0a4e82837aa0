"""Run an end-to-end scan simulation: issue a pass and scan until the reward."""

from __future__ import annotations

import asyncio
import logging

from .station import DemoScanStation


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    station = DemoScanStation(base_url="https://loyalty.example.com")
    station.add_offer("off_coffee", stamps_required=3)
    try:
        payload = station.issue_pass("cust_demo_001", "off_coffee")
        print("PASS PAYLOAD:", payload)

        for visit in range(1, 4):
            outcome = await station.scan(payload)
            print(f"SCAN {visit}:", outcome.to_dict())

        tampered = payload[:-8] + "00000000"
        print("TAMPERED:", (await station.scan(tampered)).to_dict())

        wallet = '{"customerId":"CUST-cust_demo_001","offerId":"off_coffee"}'
        print("WALLET JSON:", (await station.scan(wallet)).to_dict())
    finally:
        await station.close()


if __name__ == "__main__":
    asyncio.run(main())
