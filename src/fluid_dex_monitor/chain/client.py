"""Ethereum node client with rate limiting, failover and optional caching.

This module provides the read-only node access used by the monitor:
- Contract view calls (reserves, pool tokens, symbols, vault accounting)
- Block number and log queries backing the event stream
- Rate limiting to respect provider limits
- Failover to a secondary RPC URL
- Redis caching for immutable lookups (token pairs, symbols)

Every read is attempted once per endpoint. A failed read raises RPCError
and the caller treats it as "no data" for that cycle.
"""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp
from redis.asyncio import Redis
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.providers import AsyncHTTPProvider

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CACHE_TTL_SECONDS = 24 * 3600  # token pairs and symbols never change
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_REQUEST_TIMEOUT = 30
PRIMARY_RECOVERY_SECONDS = 60.0

# Transport and node failures surfaced as RPCError.
_RPC_ERRORS = (Web3Exception, aiohttp.ClientError, TimeoutError, OSError, ValueError)

Request = Callable[[AsyncWeb3], Awaitable[Any]]


class ChainClientError(Exception):
    """Base exception for chain client errors."""


class RPCError(ChainClientError):
    """Raised when RPC call fails."""


class RateLimiter:
    """Token bucket shared by every read the client makes."""

    def __init__(self, requests_per_second: float) -> None:
        self.rate = requests_per_second
        self.tokens = requests_per_second
        self._stamp = time.monotonic()

    async def acquire(self) -> None:
        while True:
            now = time.monotonic()
            self.tokens = min(self.rate, self.tokens + (now - self._stamp) * self.rate)
            self._stamp = now
            if self.tokens >= 1:
                self.tokens -= 1
                return
            await asyncio.sleep((1 - self.tokens) / self.rate)


class ChainClient:
    """Ethereum client for contract reads and log polling.

    No read is retried. Block and log queries fail over to the fallback
    endpoint when one is configured; after a primary failure the fallback
    is used alone until the primary has rested for a minute. Contract
    calls go to whichever endpoint is active and are never repeated.

    Example:
        ```python
        client = ChainClient(
            "https://eth.llamarpc.com",
            fallback_rpc_url="https://ethereum-rpc.publicnode.com",
        )

        head = await client.get_block_number()
        symbol = await client.call(token, ERC20_ABI, "symbol")
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialize the chain client.

        Args:
            rpc_url: Primary Ethereum RPC endpoint URL.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            redis: Optional Redis client for caching immutable lookups.
            cache_ttl_seconds: Cache TTL in seconds.
            max_requests_per_second: Rate limit for RPC calls.
            request_timeout: Per-call timeout in seconds.
        """
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._request_timeout = request_timeout

        self._w3 = self._new_web3_client(rpc_url)
        self._w3_fallback: AsyncWeb3 | None = None
        if fallback_rpc_url:
            self._w3_fallback = self._new_web3_client(fallback_rpc_url)

        self._rate_limiter = RateLimiter(max_requests_per_second)
        self._primary_down_since: float | None = None

    @staticmethod
    def _new_web3_client(rpc_url: str) -> AsyncWeb3:
        # web3 retries failed HTTP requests by default; reads here are one-shot.
        return AsyncWeb3(AsyncHTTPProvider(rpc_url, exception_retry_configuration=None))

    @property
    def primary_healthy(self) -> bool:
        return self._primary_down_since is None

    def _endpoints(self) -> list[tuple[str, AsyncWeb3]]:
        """Endpoints in the order they should be tried."""
        endpoints: list[tuple[str, AsyncWeb3]] = []
        down_since = self._primary_down_since
        if down_since is None or time.monotonic() - down_since >= PRIMARY_RECOVERY_SECONDS:
            endpoints.append(("primary", self._w3))
        if self._w3_fallback is not None:
            endpoints.append(("fallback", self._w3_fallback))
        return endpoints

    async def _read(self, label: str, request: Request, *, failover: bool) -> Any:
        """Run `request` once on the active endpoint, then once on the fallback.

        Raises:
            RPCError: If every endpoint tried failed.
        """
        await self._rate_limiter.acquire()

        endpoints = self._endpoints()
        if not failover:
            endpoints = endpoints[:1]

        failures: list[str] = []
        for name, w3 in endpoints:
            try:
                result = await asyncio.wait_for(request(w3), timeout=self._request_timeout)
            except _RPC_ERRORS as e:
                failures.append(f"{name}: {e!r}")
                logger.warning("%s RPC %s failed: %s", name.capitalize(), label, e)
                if failover and name == "primary" and self._w3_fallback is not None:
                    self._primary_down_since = time.monotonic()
                continue

            if failover and name == "primary":
                self._primary_down_since = None
            elif failures:
                logger.info("Fallback RPC succeeded for %s", label)
            return result

        raise RPCError(f"{label} failed ({'; '.join(failures)})")

    async def get_block_number(self) -> int:
        """Get the current head block number."""
        return int(await self._read("eth_blockNumber", lambda w3: w3.eth.block_number, failover=True))

    async def get_logs(self, filter_params: dict[str, Any]) -> list[dict[str, Any]]:
        """Fetch logs via `eth_getLogs`, failing over when a fallback is set."""
        logs = await self._read(
            "eth_getLogs", lambda w3: w3.eth.get_logs(filter_params), failover=True
        )
        return [dict(log) for log in logs]

    async def call(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        *args: Any,
        block_identifier: int | str = "latest",
    ) -> Any:
        """Call a view function on a contract.

        Args:
            address: Contract address.
            abi: ABI containing the function.
            function_name: Name of the function to call.
            *args: Function arguments.
            block_identifier: Block to read state at.

        Returns:
            The decoded return value (tuples for multi-value/struct outputs).

        Raises:
            RPCError: If the call reverts or the node cannot be reached.
        """

        def request(w3: AsyncWeb3) -> Awaitable[Any]:
            contract = w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)
            function = getattr(contract.functions, function_name)
            return function(*args).call(block_identifier=block_identifier)

        return await self._read(f"Call {function_name} on {address}", request, failover=False)

    async def cached_call(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        *args: Any,
    ) -> Any:
        """Call a view function whose result never changes, caching it in Redis.

        Cached values round-trip through JSON, so tuples come back as lists.
        """
        key = f"fluiddex:{function_name}:{address.lower()}"
        if args:
            key += ":" + ",".join(str(a).lower() for a in args)

        cached = await self._cache_get(key)
        if cached is not None:
            return json.loads(cached)

        result = await self.call(address, abi, function_name, *args)
        await self._cache_set(key, json.dumps(result))
        return result

    async def _cache_get(self, key: str) -> str | None:
        if self._redis is None:
            return None
        try:
            value = await self._redis.get(key)
        except Exception as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else str(value)

    async def _cache_set(self, key: str, value: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set(key, value, ex=self._cache_ttl)
        except Exception as e:
            logger.warning("Cache write failed for %s: %s", key, e)

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
