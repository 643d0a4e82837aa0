import asyncio

import asyncpg
import pytest
import requests

from loyalty_scan.config import ScanConfig
from loyalty_scan.errors import ExternalServiceError
from loyalty_scan.payload import PayloadFormat, build_combined_payload, build_pass_payload
from loyalty_scan.progress import HttpProgressService, InMemoryProgressService, PostgresProgressService
from loyalty_scan.scan import (
    WALLET_UPDATE_DELAYED_WARNING,
    DuplicateScanGuard,
    ScanProcessor,
    ScanResult,
    ScanState,
)
from loyalty_scan.token import encode_customer_token
from loyalty_scan.utils.hashing import offer_hash

BASE_URL = "https://loyalty.example.com"


class RecordingService(InMemoryProgressService):
    """In-memory store that counts calls and can fail on demand."""

    def __init__(self, *, fail_award: bool = False, fail_confirm: bool = False) -> None:
        super().__init__()
        self.fail_award = fail_award
        self.fail_confirm = fail_confirm
        self.increment_calls = 0
        self.confirm_calls = 0

    async def increment_progress(self, token, offer_hash):
        self.increment_calls += 1
        if self.fail_award:
            raise ExternalServiceError("increment_progress", "HTTP 503", status_code=503)
        return await super().increment_progress(token, offer_hash)

    async def confirm_prize(self, customer_id, offer_id, notes=""):
        self.confirm_calls += 1
        if self.fail_confirm:
            raise ExternalServiceError("confirm_prize", "timed out")
        return await super().confirm_prize(customer_id, offer_id, notes)


def _service(stamps: int = 3, **kwargs) -> RecordingService:
    service = RecordingService(**kwargs)
    service.add_offer("biz_123", "off_1", stamps)
    return service


def _pass(customer_id: str = "cust_abc", offer_id: str = "off_1", **kwargs) -> str:
    return build_pass_payload(customer_id, "biz_123", offer_id, base_url=BASE_URL, **kwargs)


def test_scan_records_one_stamp() -> None:
    async def run() -> None:
        service = _service()
        processor = ScanProcessor(service)
        outcome = await processor.process(_pass(), business_id="biz_123")

        assert outcome.success is True
        assert outcome.state is ScanState.DONE
        assert outcome.result is ScanResult.VERIFIED_CAN_SCAN
        assert outcome.payload_format is PayloadFormat.URL
        assert outcome.customer_id == "cust_abc"
        assert outcome.offer_id == "off_1"
        assert outcome.progress.current_stamps == 1
        assert outcome.reward_earned is False
        assert outcome.prize_confirmed is False
        assert outcome.transitions == (
            ScanState.IDLE,
            ScanState.DECODING,
            ScanState.VERIFYING,
            ScanState.AWARDING,
            ScanState.DONE,
        )
        assert service.confirm_calls == 0

    asyncio.run(run())


def test_completion_auto_confirms_with_fresh_counters() -> None:
    async def run() -> None:
        service = _service(stamps=2)
        processor = ScanProcessor(service)
        await processor.process(_pass(), business_id="biz_123")
        outcome = await processor.process(_pass(), business_id="biz_123")

        assert outcome.success is True
        assert outcome.reward_earned is True
        assert outcome.prize_confirmed is True
        assert ScanState.AUTO_CONFIRMING in outcome.transitions
        assert outcome.progress.current_stamps == 0
        assert outcome.progress.rewards_claimed == 1
        assert outcome.total_completions == 1
        assert outcome.tier.current_tier.name == "Bronze Member"
        assert outcome.tier_upgrade is True
        assert service.records[("cust_abc", "off_1")].prize_notes == ["Auto-confirmed at scan"]

    asyncio.run(run())


def test_already_completed_card_is_never_incremented() -> None:
    async def run() -> None:
        service = _service(stamps=1)
        processor = ScanProcessor(service, config=ScanConfig(auto_confirm_prize=False))
        first = await processor.process(_pass(), business_id="biz_123")
        assert first.reward_earned is True
        assert first.prize_confirmed is False
        assert service.increment_calls == 1

        second = await processor.process(_pass(), business_id="biz_123")
        assert second.success is True
        assert second.state is ScanState.DONE
        assert second.result is ScanResult.VERIFIED_ALREADY_COMPLETED
        assert ScanState.AWARDING not in second.transitions
        assert second.progress.is_completed is True
        assert service.increment_calls == 1

    asyncio.run(run())


def test_failed_auto_confirm_keeps_the_stamp() -> None:
    async def run() -> None:
        service = _service(stamps=2, fail_confirm=True)
        processor = ScanProcessor(service)
        await processor.process(_pass(), business_id="biz_123")
        outcome = await processor.process(_pass(), business_id="biz_123")

        assert outcome.success is True
        assert outcome.state is ScanState.DONE
        assert outcome.result is ScanResult.VERIFIED_CAN_SCAN
        assert outcome.reward_earned is True
        assert outcome.prize_confirmed is False
        assert outcome.progress.current_stamps == 2
        assert outcome.warnings == (WALLET_UPDATE_DELAYED_WARNING,)
        assert outcome.error is None
        assert service.increment_calls == 2
        assert service.confirm_calls == 1

        service.fail_confirm = False
        confirmation = await processor.confirm_prize("cust_abc", "off_1", "Given at counter")
        assert confirmation.total_completions == 1
        assert confirmation.progress.current_stamps == 0

    asyncio.run(run())


def test_award_failure_is_a_service_error() -> None:
    async def run() -> None:
        service = _service(fail_award=True)
        outcome = await ScanProcessor(service).process(_pass(), business_id="biz_123")
        assert outcome.success is False
        assert outcome.state is ScanState.ERROR
        assert outcome.result is ScanResult.SERVICE_ERROR
        assert outcome.error.status_code == 503
        assert outcome.transitions[-2:] == (ScanState.AWARDING, ScanState.ERROR)
        assert service.increment_calls == 1

    asyncio.run(run())


def test_rejections_do_not_award() -> None:
    async def run() -> None:
        service = _service()
        processor = ScanProcessor(service)
        token = encode_customer_token("cust_abc", "biz_123", 1700000000000)
        foreign = encode_customer_token("cust_abc", "biz_999", 1700000000000)
        cases = [
            (build_combined_payload(token, "00000000"), ScanResult.HASH_MISMATCH),
            (build_combined_payload(foreign, offer_hash("off_1", "biz_999")), ScanResult.BUSINESS_MISMATCH),
            (build_combined_payload(token[:23], offer_hash("off_1", "biz_123")), ScanResult.DECODE_FAILURE),
            ("YWI6Y2Q=:" + offer_hash("off_1", "biz_123"), ScanResult.INVALID_FORMAT),
            ("hello there", ScanResult.UNSUPPORTED_FORMAT),
        ]
        for raw, expected in cases:
            outcome = await processor.process(raw, business_id="biz_123")
            assert outcome.success is False
            assert outcome.state is ScanState.ERROR
            assert outcome.result is expected
            assert outcome.error.kind == expected.value
            assert ScanState.AWARDING not in outcome.transitions
        assert service.increment_calls == 0

    asyncio.run(run())


def test_selected_offer_must_match_hash() -> None:
    async def run() -> None:
        service = _service()
        service.add_offer("biz_123", "off_2", 5)
        outcome = await ScanProcessor(service).process(_pass(), business_id="biz_123", offer_id="off_2")
        assert outcome.result is ScanResult.HASH_MISMATCH
        assert service.increment_calls == 0

    asyncio.run(run())


def test_customer_id_payload_offer_selection() -> None:
    async def run() -> None:
        service = _service()
        processor = ScanProcessor(service)
        single = await processor.process("12345", business_id="biz_123")
        assert single.result is ScanResult.VERIFIED_CAN_SCAN
        assert single.payload_format is PayloadFormat.CUSTOMER_ID
        assert single.customer_id == "12345"
        assert single.offer_id == "off_1"

        service.add_offer("biz_123", "off_2", 5)
        ambiguous = await processor.process("12345", business_id="biz_123")
        assert ambiguous.result is ScanResult.OFFER_SELECTION_REQUIRED

        unknown = await processor.process("12345", business_id="biz_123", offer_id="off_9")
        assert unknown.result is ScanResult.OFFER_SELECTION_REQUIRED

        chosen = await processor.process("12345", business_id="biz_123", offer_id="off_2")
        assert chosen.result is ScanResult.VERIFIED_CAN_SCAN
        assert chosen.offer_id == "off_2"
        assert chosen.progress.current_stamps == 1

    asyncio.run(run())


def test_wallet_json_payload() -> None:
    async def run() -> None:
        service = _service()
        outcome = await ScanProcessor(service).process(
            '{"customerId":"CUST-cust_abc","offerId":"off_1"}',
            business_id="biz_123",
        )
        assert outcome.result is ScanResult.VERIFIED_CAN_SCAN
        assert outcome.payload_format is PayloadFormat.WALLET_JSON
        assert outcome.customer_id == "cust_abc"

        foreign = await ScanProcessor(service).process(
            '{"customerId":"cust_abc","offerId":"off_1","businessId":"biz_999"}',
            business_id="biz_123",
        )
        assert foreign.result is ScanResult.BUSINESS_MISMATCH

    asyncio.run(run())


def test_duplicate_reads_inside_window_are_ignored() -> None:
    async def run() -> None:
        now = {"t": 10_000}
        service = _service()
        processor = ScanProcessor(service, guard=DuplicateScanGuard(2_000, clock=lambda: now["t"]))
        payload = _pass()

        first = await processor.process(payload, business_id="biz_123")
        second = await processor.process(payload, business_id="biz_123")
        assert first.result is ScanResult.VERIFIED_CAN_SCAN
        assert second.result is ScanResult.DUPLICATE_SCAN
        assert second.transitions == (ScanState.IDLE, ScanState.DECODING, ScanState.ERROR)

        now["t"] += 2_000
        third = await processor.process(payload, business_id="biz_123")
        assert third.result is ScanResult.VERIFIED_CAN_SCAN
        assert third.progress.current_stamps == 2
        assert service.increment_calls == 2

    asyncio.run(run())


def test_expired_token_rejected_when_max_age_set() -> None:
    async def run() -> None:
        service = _service()
        payload = _pass(timestamp_ms=1_000_000)
        lenient = ScanProcessor(service, clock=lambda: 1_120_000)
        strict = ScanProcessor(service, config=ScanConfig(max_token_age_ms=60_000), clock=lambda: 1_120_000)

        rejected = await strict.process(payload, business_id="biz_123")
        assert rejected.result is ScanResult.EXPIRED_TOKEN
        accepted = await lenient.process(payload, business_id="biz_123")
        assert accepted.result is ScanResult.VERIFIED_CAN_SCAN

    asyncio.run(run())


def test_programming_errors_propagate() -> None:
    class BrokenService(RecordingService):
        async def lookup_progress(self, customer_id, business_id, offer_id):
            raise RuntimeError("bug")

    async def run() -> None:
        service = BrokenService()
        service.add_offer("biz_123", "off_1", 3)
        with pytest.raises(RuntimeError):
            await ScanProcessor(service).process(_pass(), business_id="biz_123")

    asyncio.run(run())


def test_outcome_hand_off_payload() -> None:
    async def run() -> None:
        service = _service(stamps=1)
        outcome = await ScanProcessor(service).process(_pass(), business_id="biz_123")
        data = outcome.to_dict()
        assert data["success"] is True
        assert data["result"] == "verified-can-scan"
        assert data["rewardEarned"] is True
        assert data["prizeConfirmed"] is True
        assert data["progress"]["currentStamps"] == 0
        assert data["tier"]["currentTier"]["name"] == "Bronze Member"
        assert data["warnings"] == []
        assert data["error"] is None

        failed = await ScanProcessor(service).process("nope", business_id="biz_123")
        assert failed.to_dict()["error"].startswith("Unsupported QR format")

    asyncio.run(run())


LEGACY_COMBINED = "Y3VzdF9hYmM6Yml6XzEyMzoxNzAwMDAwMDAwMDAw:526b5cce"


def test_legacy_unpadded_token_is_accepted() -> None:
    async def run() -> None:
        service = _service()
        outcome = await ScanProcessor(service).process(LEGACY_COMBINED, business_id="biz_123")
        assert outcome.success is True
        assert outcome.result is ScanResult.VERIFIED_CAN_SCAN
        assert outcome.payload_format is PayloadFormat.COMBINED
        assert outcome.customer_id == "cust_abc"
        assert outcome.offer_id == "off_1"
        assert outcome.progress.current_stamps == 1
        assert service.increment_calls == 1

    asyncio.run(run())


def test_unpadded_tokens_rejected_when_disabled() -> None:
    async def run() -> None:
        service = _service()
        processor = ScanProcessor(service, config=ScanConfig(accept_unpadded_tokens=False))
        token = encode_customer_token("cust_abc", "biz_123", 1700000000000)
        for raw in (LEGACY_COMBINED, build_combined_payload(token[:24], offer_hash("off_1", "biz_123"))):
            outcome = await processor.process(raw, business_id="biz_123")
            assert outcome.result is ScanResult.DECODE_FAILURE
        assert service.increment_calls == 0

    asyncio.run(run())


def test_failed_scan_can_be_rescanned_inside_window() -> None:
    async def run() -> None:
        service = _service(fail_award=True)
        processor = ScanProcessor(service, guard=DuplicateScanGuard(2_000, clock=lambda: 10_000))
        payload = _pass()

        first = await processor.process(payload, business_id="biz_123")
        second = await processor.process(payload, business_id="biz_123")
        assert first.result is ScanResult.SERVICE_ERROR
        assert second.result is ScanResult.SERVICE_ERROR
        assert service.increment_calls == 2

        service.fail_award = False
        third = await processor.process(payload, business_id="biz_123")
        assert third.result is ScanResult.VERIFIED_CAN_SCAN
        assert third.progress.current_stamps == 1

        repeat = await processor.process(payload, business_id="biz_123")
        assert repeat.result is ScanResult.DUPLICATE_SCAN
        assert service.increment_calls == 3

    asyncio.run(run())


def test_invalid_business_id_is_a_format_error() -> None:
    async def run() -> None:
        service = _service()
        processor = ScanProcessor(service, guard=DuplicateScanGuard(2_000, clock=lambda: 10_000))
        for business_id in ("biz:1", ""):
            outcome = await processor.process("12345", business_id=business_id)
            assert outcome.success is False
            assert outcome.result is ScanResult.INVALID_FORMAT
            assert outcome.transitions == (ScanState.IDLE, ScanState.DECODING, ScanState.ERROR)
        assert len(processor.guard) == 0
        assert service.increment_calls == 0

    asyncio.run(run())


class _Response:
    def __init__(self, body) -> None:
        self.status_code = 200
        self.ok = True
        self._body = body

    def json(self):
        return self._body


class _ScriptedSession:
    def __init__(self, bodies) -> None:
        self.bodies = list(bodies)
        self.urls: list = []

    def request(self, method, url, **kwargs):
        self.urls.append(url)
        return _Response(self.bodies.pop(0))

    def close(self) -> None:
        pass


def test_malformed_confirmation_keeps_the_stamp() -> None:
    async def run() -> None:
        session = _ScriptedSession(
            [
                {"success": True, "data": [{"public_id": "off_1"}]},
                {"success": True, "data": {"progress": {"currentStamps": 1, "maxStamps": 2, "isCompleted": False}}},
                {"success": True, "data": {"newStamps": 2, "maxStamps": 2, "rewardEarned": True}},
                {"success": True, "data": {"tier": {"currentTier": {"name": "Bronze Member", "minRewards": "one"}}}},
            ]
        )
        service = HttpProgressService("https://api.example.com/api/business", session=session)
        outcome = await ScanProcessor(service).process(_pass(), business_id="biz_123")

        assert outcome.success is True
        assert outcome.state is ScanState.DONE
        assert outcome.reward_earned is True
        assert outcome.prize_confirmed is False
        assert outcome.progress.current_stamps == 2
        assert outcome.warnings == (WALLET_UPDATE_DELAYED_WARNING,)
        assert len(session.urls) == 4

    asyncio.run(run())


class _ClosedConnection:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    async def __aenter__(self):
        raise self.exc

    async def __aexit__(self, *exc_info):
        return False


class _BrokenPool:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    def acquire(self):
        return _ClosedConnection(self.exc)


def test_dropped_database_connection_is_a_service_error() -> None:
    async def run() -> None:
        for exc in (asyncpg.InterfaceError("connection is closed"), asyncio.TimeoutError()):
            store = PostgresProgressService(pool=_BrokenPool(exc))
            with pytest.raises(ExternalServiceError) as excinfo:
                await store.confirm_prize("cust_abc", "off_1")
            assert excinfo.value.operation == "confirm_prize"
            assert excinfo.value.__cause__ is exc

    asyncio.run(run())


def test_database_failure_during_auto_confirm_keeps_the_stamp() -> None:
    class DroppedConnectionService(RecordingService):
        async def confirm_prize(self, customer_id, offer_id, notes=""):
            self.confirm_calls += 1
            store = PostgresProgressService(pool=_BrokenPool(asyncpg.InterfaceError("connection is closed")))
            return await store.confirm_prize(customer_id, offer_id, notes)

    async def run() -> None:
        service = DroppedConnectionService()
        service.add_offer("biz_123", "off_1", 1)
        outcome = await ScanProcessor(service).process(_pass(), business_id="biz_123")
        assert outcome.success is True
        assert outcome.reward_earned is True
        assert outcome.prize_confirmed is False
        assert outcome.warnings == (WALLET_UPDATE_DELAYED_WARNING,)
        assert service.records[("cust_abc", "off_1")].current_stamps == 1
        assert service.confirm_calls == 1

    asyncio.run(run())


def test_transport_failure_during_auto_confirm_keeps_the_stamp() -> None:
    class FlakySession(_ScriptedSession):
        def request(self, method, url, **kwargs):
            if "confirm-prize" in url:
                raise requests.Timeout("read timed out")
            return super().request(method, url, **kwargs)

    async def run() -> None:
        session = FlakySession(
            [
                {"success": True, "data": [{"public_id": "off_1"}]},
                {"success": True, "data": {"progress": {"currentStamps": 0, "maxStamps": 1}}},
                {"success": True, "data": {"newStamps": 1, "maxStamps": 1, "rewardEarned": True}},
            ]
        )
        service = HttpProgressService("https://api.example.com/api/business", session=session)
        outcome = await ScanProcessor(service).process(_pass(), business_id="biz_123")
        assert outcome.success is True
        assert outcome.warnings == (WALLET_UPDATE_DELAYED_WARNING,)

    asyncio.run(run())
