"""Ledger oracle HTTP client with exponential backoff retry logic on reads"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from debt_gateway.config import settings
from debt_gateway.domain.encoding import compute_debt_order_hash
from debt_gateway.domain.exceptions import InvalidAddressError, LedgerOracleError
from debt_gateway.domain.interchange import to_interchange
from debt_gateway.domain.models import OrderRecord
from debt_gateway.domain.values import EthereumAddress
from debt_gateway.infrastructure.observability.metrics import ledger_failure_counter, ledger_latency_histogram


class LedgerClient:
    """Client for the ledger gateway: block time, order status and submissions"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.ledger_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = settings.ledger_max_retries
        self.backoff_base = settings.ledger_backoff_base
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def _read(self, operation: str, path: str) -> Optional[Dict[str, Any]]:
        """
        GET with retries. Returns None on 404.

        Retry strategy:
        - Exponential backoff: base * 2^(attempt - 1)
        - Retries on 5xx errors and network failures; 4xx fails immediately
        """
        attempt = 0
        async with self._client() as client:
            while True:
                try:
                    with ledger_latency_histogram.labels(operation=operation).time():
                        response = await client.get(path)
                    if response.status_code == 404:
                        return None
                    response.raise_for_status()
                    return response.json()

                except httpx.HTTPStatusError as e:
                    ledger_failure_counter.labels(operation=operation).inc()
                    attempt += 1
                    if e.response.status_code < 500 or attempt >= self.max_retries:
                        raise LedgerOracleError(
                            f"Ledger {operation} failed: {e.response.status_code}"
                        ) from e
                except httpx.RequestError as e:
                    ledger_failure_counter.labels(operation=operation).inc()
                    attempt += 1
                    if attempt >= self.max_retries:
                        raise LedgerOracleError(f"Ledger {operation} unreachable: {e}") from e
                except ValueError as e:
                    ledger_failure_counter.labels(operation=operation).inc()
                    raise LedgerOracleError(f"Invalid {operation} response from ledger: {e}") from e

                backoff = self.backoff_base * (2 ** (attempt - 1))
                await asyncio.sleep(backoff)

    async def _submit(self, operation: str, path: str, payload: Dict[str, Any]) -> str:
        """POST once. Submissions are never retried; the caller re-checks ledger state."""
        async with self._client() as client:
            try:
                with ledger_latency_histogram.labels(operation=operation).time():
                    response = await client.post(path, json=payload)
                response.raise_for_status()
                return str(response.json()["transactionHash"])

            except httpx.TimeoutException as e:
                ledger_failure_counter.labels(operation=operation).inc()
                raise LedgerOracleError(f"Ledger {operation} timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                ledger_failure_counter.labels(operation=operation).inc()
                raise LedgerOracleError(f"Ledger {operation} error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                ledger_failure_counter.labels(operation=operation).inc()
                raise LedgerOracleError(f"Ledger {operation} unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                ledger_failure_counter.labels(operation=operation).inc()
                raise LedgerOracleError(f"Invalid {operation} response from ledger: {e}") from e

    async def _order_state(self, commitment_hash: bytes) -> Dict[str, Any]:
        data = await self._read("order_state", f"/debt-orders/0x{commitment_hash.hex()}")
        return data or {}

    async def get_current_time(self) -> int:
        data = await self._read("current_time", "/blocks/latest")
        try:
            return int(data["timestamp"])
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerOracleError(f"Invalid block from ledger: {data!r}") from e

    async def is_filled(self, commitment_hash: bytes) -> bool:
        return bool((await self._order_state(commitment_hash)).get("filled", False))

    async def is_cancelled(self, commitment_hash: bytes) -> bool:
        return bool((await self._order_state(commitment_hash)).get("cancelled", False))

    def _submission(self, record: OrderRecord, acting_address: EthereumAddress) -> Dict[str, Any]:
        order_hash = compute_debt_order_hash(record.terms, record.debtor, record.underwriter)
        return {
            "debtOrderHash": "0x" + order_hash.hex(),
            "actingAddress": acting_address.value,
            "order": to_interchange(record),
        }

    async def submit_fill(self, record: OrderRecord, acting_address: EthereumAddress) -> str:
        return await self._submit("fill", "/debt-orders/fill", self._submission(record, acting_address))

    async def submit_cancel(self, record: OrderRecord, acting_address: EthereumAddress) -> str:
        return await self._submit("cancel", "/debt-orders/cancel", self._submission(record, acting_address))

    async def resolve_current_user_address(self) -> EthereumAddress:
        data = await self._read("current_user", "/accounts/current")
        if not data or not data.get("address"):
            raise LedgerOracleError("Ledger has no current user account")
        try:
            return EthereumAddress(data["address"])
        except InvalidAddressError as e:
            raise LedgerOracleError(f"Invalid account from ledger: {data['address']!r}") from e
