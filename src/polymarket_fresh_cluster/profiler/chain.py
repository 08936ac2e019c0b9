"""Polygon blockchain client with rate limiting and failover.

This module provides a Polygon client for the queries the scanner needs:
- Chain head and chain id
- Wallet transaction counts (nonces)
- Range-bounded log queries (`eth_getLogs`)

Every call goes through a token-bucket rate limiter, a bounded request
timeout, retry with exponential backoff, and failover to a secondary RPC URL.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_PRIMARY_RECOVERY_INTERVAL = 60.0

# Failures that are worth retrying against the same or the fallback endpoint
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    Web3Exception,
    aiohttp.ClientError,
    asyncio.TimeoutError,
)


class PolygonClientError(Exception):
    """Base exception for Polygon client errors."""


class RPCError(PolygonClientError):
    """Raised when RPC call fails."""


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> "RateLimiter":
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class PolygonClient:
    """Polygon blockchain client with rate limiting and failover.

    Example:
        ```python
        client = PolygonClient(
            rpc_url="https://polygon-rpc.com",
            fallback_rpc_url="https://polygon-bor.publicnode.com",
        )

        head = await client.get_block_number()
        nonce = await client.get_transaction_count_latest("0x...")
        logs = await client.get_logs({"address": "0x...", "fromBlock": head - 9, "toBlock": head})
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialize the Polygon client.

        Args:
            rpc_url: Primary Polygon RPC endpoint URL.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Maximum attempts per endpoint.
            retry_delay_seconds: Initial delay between retries.
            request_timeout_seconds: Timeout applied to every HTTP request.
        """
        self._rpc_url = rpc_url
        self._fallback_rpc_url = fallback_rpc_url
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._request_timeout = request_timeout_seconds

        self._w3 = self._new_web3_client(rpc_url)
        self._w3_fallback: AsyncWeb3[AsyncHTTPProvider] | None = None
        if fallback_rpc_url:
            self._w3_fallback = self._new_web3_client(fallback_rpc_url)

        self._rate_limiter = RateLimiter.create(max_requests_per_second)

        # Track primary RPC health
        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = DEFAULT_PRIMARY_RECOVERY_INTERVAL

    def _new_web3_client(self, rpc_url: str) -> AsyncWeb3[AsyncHTTPProvider]:
        provider = AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=self._request_timeout)},
        )
        client = AsyncWeb3(provider)
        self._inject_poa_middleware(client, rpc_url=rpc_url)
        return client

    def _inject_poa_middleware(self, client: AsyncWeb3[AsyncHTTPProvider], *, rpc_url: str) -> None:
        # Polygon blocks carry oversized extraData.
        try:
            client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        except Exception as e:
            logger.warning("Failed to inject PoA middleware (rpc=%s): %s", rpc_url, e)

    def _should_try_primary(self) -> bool:
        """Check if we should try the primary RPC."""
        if self._primary_healthy:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    async def _call_with_backoff(
        self,
        w3: AsyncWeb3[AsyncHTTPProvider],
        label: str,
        func_name: str,
        *args: Any,
    ) -> tuple[bool, Any, Exception | None]:
        delay = self._retry_delay
        last_error: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                # Async properties (chain_id) come back as awaitables already.
                attr = getattr(w3.eth, func_name)
                result = attr(*args) if callable(attr) else attr
                if inspect.isawaitable(result):
                    result = await result
                return True, result, None
            except RETRYABLE_ERRORS as e:
                last_error = e
                logger.warning(
                    "%s RPC %s failed (attempt %d/%d): %s",
                    label,
                    func_name,
                    attempt + 1,
                    self._max_retries,
                    e,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                    delay *= 2  # Exponential backoff
        return False, None, last_error

    async def _execute_with_retry(self, func_name: str, *args: Any) -> Any:
        """Execute an RPC call with retry and failover logic.

        Args:
            func_name: Name of the web3.eth method or property to read.
            *args: Positional arguments for the method.

        Returns:
            Result from the RPC call.

        Raises:
            RPCError: If all retries and failover fail.
        """
        await self._rate_limiter.acquire()

        last_error: Exception | None = None

        if self._should_try_primary():
            ok, result, last_error = await self._call_with_backoff(
                self._w3, "Primary", func_name, *args
            )
            if ok:
                self._primary_healthy = True
                return result
            self._primary_healthy = False
            self._last_primary_check = time.monotonic()

        if self._w3_fallback:
            ok, result, fallback_error = await self._call_with_backoff(
                self._w3_fallback, "Fallback", func_name, *args
            )
            if ok:
                logger.info("Fallback RPC succeeded for %s", func_name)
                return result
            last_error = fallback_error

        raise RPCError(f"RPC call {func_name} failed after all retries: {last_error}")

    async def get_block_number(self) -> int:
        """Get the current chain head block number."""
        number = await self._execute_with_retry("get_block_number")
        return int(number)

    async def get_chain_id(self) -> int:
        """Get the chain id of the connected network."""
        chain_id = await self._execute_with_retry("chain_id")
        return int(chain_id)

    async def get_transaction_count_latest(self, address: str) -> int:
        """Get latest wallet transaction count (nonce).

        Args:
            address: Wallet address.

        Returns:
            Transaction count.
        """
        count = await self._execute_with_retry(
            "get_transaction_count",
            AsyncWeb3.to_checksum_address(address),
        )
        return int(count)

    async def get_logs(self, filter_params: dict[str, Any]) -> list[dict[str, Any]]:
        """Fetch logs via `eth_getLogs` with retry/failover semantics.

        The block range is the caller's responsibility; providers reject
        ranges above their own limits.
        """
        logs = await self._execute_with_retry("get_logs", filter_params)
        return [dict(log) for log in logs]

    async def health_check(self) -> bool:
        """Check if the client can connect to the RPC.

        Returns:
            True if healthy, False otherwise.
        """
        try:
            await self.get_block_number()
            return True
        except RPCError:
            return False

    async def aclose(self) -> None:
        """Close async HTTP provider sessions to avoid leaked aiohttp sessions."""
        providers = [self._w3.provider]
        if self._w3_fallback is not None:
            providers.append(self._w3_fallback.provider)

        for provider in providers:
            disconnect = getattr(provider, "disconnect", None)
            if not callable(disconnect):
                continue
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)
