"""Swap service (1inch-compatible) HTTP client and its rate-limited retrying wrapper.

``SwapServiceClient`` performs single HTTP calls and raises ``NetworkError``.
``RateLimitedSwapClient`` is what the orchestrator talks to: every call goes
through one process-wide ``RateLimiter`` and is retried a bounded number of
times.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

import httpx
from pydantic import ValidationError

from tradeloop.errors import NetworkError, UnknownError
from tradeloop.schemas.swap import (
    AllowanceResponse,
    ApproveTransaction,
    SwapParams,
    SwapQuote,
    SwapResponse,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SwapServiceClient:
    """Thin async wrapper over the swap service REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.1inch.dev",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {api_key}", "accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def _get(self, path: str, params: dict | None = None):
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise NetworkError(f"GET {path} failed: {e}") from e

        if response.status_code >= 400:
            raise NetworkError(
                f"GET {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(
                f"GET {path} returned non-JSON body",
                status_code=response.status_code,
                body=response.text,
            ) from e

    async def generate_approve(
        self, chain_id: int, token_address: str, amount: int | None = None
    ) -> ApproveTransaction:
        """Approval transaction; an omitted amount approves unlimited spending."""
        params = {"tokenAddress": token_address}
        if amount is not None:
            params["amount"] = str(amount)
        data = await self._get(f"/swap/v6.0/{chain_id}/approve/transaction", params)
        return _parse(ApproveTransaction, data)

    async def generate_swap_call_data(self, chain_id: int, params: SwapParams) -> SwapQuote:
        data = await self._get(f"/swap/v6.0/{chain_id}/swap", params.to_query())
        response = _parse(SwapResponse, data)
        return SwapQuote(
            src=params.src,
            dst=params.dst,
            amount=params.amount,
            destination_amount=response.destination_amount,
            transaction=response.tx,
        )

    async def spot_price(self, chain_id: int, addresses: list[str]) -> dict[str, float]:
        """USD price per whole unit, keyed by lower-cased address."""
        joined = ",".join(addresses)
        data = await self._get(f"/price/v1.1/{chain_id}/{joined}", {"currency": "USD"})
        if not isinstance(data, dict):
            raise NetworkError("spot price response is not an object", body=str(data))
        try:
            return {address.lower(): float(price) for address, price in data.items()}
        except (TypeError, ValueError) as e:
            raise NetworkError(f"unparseable spot price: {e}", body=str(data)) from e

    async def get_allowance(self, chain_id: int, wallet_address: str, token_address: str) -> int:
        data = await self._get(
            f"/swap/v6.0/{chain_id}/approve/allowance",
            {"walletAddress": wallet_address, "tokenAddress": token_address},
        )
        return _parse(AllowanceResponse, data).allowance

    async def close(self):
        await self._client.aclose()


def _parse(model, data):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise NetworkError(f"unexpected {model.__name__} payload: {e.error_count()} errors", body=str(data)) from e


class RateLimiter:
    """Process-wide cooldown between swap service calls.

    The lock is held for the whole guarded call, so callers from every trading
    loop are serialized and the gap between two completions is at least
    ``cooldown_ms``.
    """

    def __init__(
        self,
        cooldown_ms: int = 3000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.cooldown_ms = cooldown_ms
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_call: float | None = None

    @property
    def last_call(self) -> float | None:
        return self._last_call

    async def run(self, thunk: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            if self._last_call is not None:
                remaining = self.cooldown_ms / 1000 - (self._clock() - self._last_call)
                if remaining > 0:
                    await self._sleep(remaining)
            try:
                return await thunk()
            finally:
                self._last_call = self._clock()


class RateLimitedSwapClient:
    """Throttled, retrying facade over SwapServiceClient."""

    def __init__(
        self,
        client: SwapServiceClient,
        limiter: RateLimiter,
        retry_delay_ms: int = 1500,
        max_attempts: int = 6,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.limiter = limiter
        self.retry_delay_ms = retry_delay_ms
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def _call(self, label: str, fn: Callable[[], Awaitable[T]]) -> T:
        return await self.limiter.run(lambda: self._with_retry(label, fn))

    async def _with_retry(self, label: str, fn: Callable[[], Awaitable[T]]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except NetworkError as e:
                if e.is_permanent or attempt == self.max_attempts:
                    logger.error(f"Swap API {label} failed after {attempt} attempt(s): {e.to_log_dict()}")
                    raise
                logger.warning(
                    f"Swap API {label} attempt {attempt}/{self.max_attempts} failed "
                    f"(status={e.status_code}): {e.message}"
                )
            except UnknownError:
                raise
            except Exception as e:
                raise UnknownError(f"Swap API {label}: {e}") from e
            await self._sleep(self.retry_delay_ms / 1000)

    async def generate_approve(
        self, chain_id: int, token_address: str, amount: int | None = None
    ) -> ApproveTransaction:
        return await self._call(
            "approve", lambda: self.client.generate_approve(chain_id, token_address, amount)
        )

    async def generate_swap_call_data(self, chain_id: int, params: SwapParams) -> SwapQuote:
        return await self._call("swap", lambda: self.client.generate_swap_call_data(chain_id, params))

    async def spot_price(self, chain_id: int, addresses: list[str]) -> dict[str, float]:
        return await self._call("spot_price", lambda: self.client.spot_price(chain_id, addresses))

    async def get_allowance(self, chain_id: int, wallet_address: str, token_address: str) -> int:
        return await self._call(
            "allowance", lambda: self.client.get_allowance(chain_id, wallet_address, token_address)
        )

    async def close(self):
        await self.client.close()
