"""Request ledger client over a JSON gateway.

Example:
    async with HttpRequestLedgerClient("https://gateway.example.org") as gateway:
        request = await gateway.get_request("01abc...")
        observed = await gateway.refresh_observed_balance(request.request_id)
        print(observed.balance)

Gateway endpoints:
    GET  /request/{id}   -> request JSON, with `balance.balance` once paid
    POST /request        -> create a request, returns the stored JSON
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..errors import RequestLedgerError
from ..types import ObservedBalance, PaymentRequest, to_amount

logger = logging.getLogger(__name__)


class HttpRequestLedgerClient:
    """Reads and creates payment requests through an HTTP gateway.

    Safe to share between concurrent settlement runs: all calls go through
    one httpx.AsyncClient.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = http
        self._owns_http = http is None

    async def __aenter__(self):
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
            self._owns_http = True
        return self._http

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client().request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RequestLedgerError(
                f"Gateway responded with {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RequestLedgerError(f"Gateway request to {url} failed: {exc}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise RequestLedgerError(f"Failed to parse JSON from {url}: {response.text}") from exc

    async def get_request(self, request_id: str) -> PaymentRequest:
        """Fetch a payment request record."""
        data = await self._request("GET", f"/request/{request_id}")
        try:
            return PaymentRequest.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise RequestLedgerError(f"Malformed request record for {request_id}: {exc}") from exc

    async def refresh_observed_balance(self, request_id: str) -> ObservedBalance:
        """Re-read the request and return the funds observed so far.

        A request with no recorded payments yet has balance 0.
        """
        data = await self._request("GET", f"/request/{request_id}")
        return ObservedBalance(balance=_balance_of(data, request_id))

    async def create_request(self, request: PaymentRequest) -> PaymentRequest:
        """Store a new payment request and return it as the gateway recorded it."""
        body = request.to_dict()
        if not request.request_id:
            body.pop("requestId")
        data = await self._request("POST", "/request", json=body)
        logger.info("Created request %s", data.get("requestId"))
        try:
            return PaymentRequest.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise RequestLedgerError(f"Malformed request record from gateway: {exc}") from exc


def _balance_of(data: dict, request_id: str) -> int:
    balance: Any = data.get("balance") or {}
    raw = balance.get("balance") if isinstance(balance, dict) else balance
    if raw is None:
        return 0
    try:
        return to_amount(raw, "balance")
    except ValueError as exc:
        raise RequestLedgerError(f"Malformed balance for {request_id}: {raw!r}") from exc
