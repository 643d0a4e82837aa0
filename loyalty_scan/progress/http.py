"""HTTP client for the platform's business REST API (``/api/business``)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from ..errors import ExternalServiceError
from ..token.encoder import encode_customer_token
from ..utils.hashing import DEFAULT_OFFER_HASH_SALT, offer_hash
from ..utils.time import Clock
from .normalize import normalize_award, normalize_offer_ids, normalize_prize_confirmation, normalize_progress
from .service import ProgressService
from .types import AwardResult, PrizeConfirmation, Progress

logger = logging.getLogger(__name__)

SESSION_TOKEN_HEADER = "x-session-token"
BUSINESS_ID_HEADER = "x-business-id"


class HttpProgressService(ProgressService):
    """Progress service backed by the platform's JSON REST API.

    Routes are the business scan endpoints: ``GET /my/offers``,
    ``GET /scan/verify/{token}/{hash}``, ``POST /scan/progress/{token}/{hash}``
    and ``POST /scan/confirm-prize/{customer}/{offer}``. Requests are
    authenticated with the staff session token and the business id headers.

    ``requests`` is blocking, so each call runs in a worker thread. Calls are
    never retried here; a failed award must be re-scanned by staff.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_token: Optional[str] = None,
        business_id: Optional[str] = None,
        salt: str = DEFAULT_OFFER_HASH_SALT,
        clock: Optional[Clock] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.salt = salt
        self.timeout = timeout
        self._clock = clock
        self._session = session or requests.Session()
        self._owns_session = session is None
        self._headers = {"Accept": "application/json", **(headers or {})}
        if api_token:
            self._headers[SESSION_TOKEN_HEADER] = api_token
        if business_id:
            self._headers[BUSINESS_ID_HEADER] = business_id

    def _url(self, *segments: str) -> str:
        return "/".join([self.base_url, *(quote(segment, safe="=") for segment in segments)])

    def _request(
        self,
        operation: str,
        method: str,
        url: str,
        *,
        business_id: Optional[str] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = dict(self._headers)
        if business_id:
            headers[BUSINESS_ID_HEADER] = business_id
        try:
            response = self._session.request(
                method,
                url,
                json=json_body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ExternalServiceError(operation, f"transport error: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.ok:
            message = None
            if isinstance(body, dict):
                message = body.get("message") or body.get("error")
            logger.warning("%s %s answered HTTP %s", method, operation, response.status_code)
            raise ExternalServiceError(operation, str(message or f"HTTP {response.status_code}"), status_code=response.status_code)
        if body is None:
            raise ExternalServiceError(operation, "response is not JSON", status_code=response.status_code)
        return body

    async def _call(self, operation: str, method: str, url: str, **kwargs: Any) -> Any:
        return await asyncio.to_thread(self._request, operation, method, url, **kwargs)

    async def list_offers(self, business_id: str) -> list[str]:
        body = await self._call("list_offers", "GET", self._url("my", "offers"), business_id=business_id)
        return normalize_offer_ids(body)

    async def lookup_progress(self, customer_id: str, business_id: str, offer_id: str) -> Progress:
        # The verify endpoint is keyed by token and hash, so both are derived here.
        token = encode_customer_token(customer_id, business_id, clock=self._clock)
        body = await self._call(
            "lookup_progress",
            "GET",
            self._url("scan", "verify", token, offer_hash(offer_id, business_id, self.salt)),
            business_id=business_id,
        )
        return normalize_progress(body, "lookup_progress")

    async def increment_progress(self, token: str, offer_hash: str) -> AwardResult:
        body = await self._call("increment_progress", "POST", self._url("scan", "progress", token, offer_hash))
        return normalize_award(body)

    async def confirm_prize(self, customer_id: str, offer_id: str, notes: str = "") -> PrizeConfirmation:
        body = await self._call(
            "confirm_prize",
            "POST",
            self._url("scan", "confirm-prize", customer_id, offer_id),
            json_body={"notes": notes},
        )
        return normalize_prize_confirmation(body)

    async def close(self) -> None:
        if self._owns_session:
            self._session.close()
