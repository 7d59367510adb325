"""Discovery of the pools that trade the tracked asset."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from fluid_dex_monitor.chain.abis import ERC20_ABI, POOL_ABI, RESOLVER_ABI
from fluid_dex_monitor.chain.client import ChainClientError
from fluid_dex_monitor.monitor.models import Pool

if TYPE_CHECKING:
    from fluid_dex_monitor.chain.client import ChainClient

logger = logging.getLogger(__name__)

UNKNOWN_SYMBOL = "Unknown"


class DiscoveryError(Exception):
    """Raised when the pool registry cannot be listed at all."""


def build_pair_label(tracked_symbol: str, other_symbol: str, *, tracked_is_token0: bool) -> str:
    """Pair label with the pool's token order, e.g. sUSDe/USDT or GHO/sUSDe."""
    if tracked_is_token0:
        return f"{tracked_symbol}/{other_symbol}"
    return f"{other_symbol}/{tracked_symbol}"


class PoolDiscovery:
    """Enumerates resolver pools and keeps those holding the tracked asset.

    A pool whose token pair cannot be read is skipped; a symbol that
    cannot be read becomes "Unknown". Only failing to list the pools is
    fatal.
    """

    def __init__(
        self,
        client: ChainClient,
        *,
        resolver_address: str,
        tracked_asset_address: str,
        tracked_asset_symbol: str,
    ) -> None:
        self._client = client
        self._resolver_address = resolver_address
        self._tracked = tracked_asset_address.lower()
        self._tracked_symbol = tracked_asset_symbol

    async def list_pool_addresses(self) -> list[str]:
        try:
            addresses = await self._client.call(
                self._resolver_address, RESOLVER_ABI, "getAllPoolAddresses"
            )
        except ChainClientError as e:
            raise DiscoveryError(f"Could not list pools from resolver: {e}") from e
        return [str(a) for a in addresses]

    async def get_symbol(self, token: str) -> str:
        try:
            symbol = await self._client.cached_call(token, ERC20_ABI, "symbol")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Symbol lookup failed for %s: %s", token, e)
            return UNKNOWN_SYMBOL
        return str(symbol) if symbol else UNKNOWN_SYMBOL

    async def load_pool(self, address: str) -> Pool | None:
        """Build a Pool for `address`, or None if it does not hold the tracked asset."""
        token0, token1 = await self._client.cached_call(
            self._resolver_address, RESOLVER_ABI, "getPoolTokens", address
        )
        token0, token1 = str(token0), str(token1)
        if self._tracked not in (token0.lower(), token1.lower()):
            return None

        tracked_is_token0 = token0.lower() == self._tracked
        symbol0, symbol1 = await asyncio.gather(self.get_symbol(token0), self.get_symbol(token1))
        other_symbol = symbol1 if tracked_is_token0 else symbol0
        return Pool(
            address=address,
            token0=token0,
            token1=token1,
            symbol0=symbol0,
            symbol1=symbol1,
            tracked_is_token0=tracked_is_token0,
            pair=build_pair_label(
                self._tracked_symbol, other_symbol, tracked_is_token0=tracked_is_token0
            ),
        )

    async def discover(self) -> list[Pool]:
        """Return every pool that has the tracked asset on either side.

        Raises:
            DiscoveryError: If the pool list itself cannot be read.
        """
        addresses = await self.list_pool_addresses()
        logger.info("Resolver lists %d pools", len(addresses))

        pools: list[Pool] = []
        for address in addresses:
            try:
                pool = await self.load_pool(address)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Skipping pool %s: %s", address, e)
                continue
            if pool is None:
                continue
            logger.info("Found %s pool: %s (%s)", self._tracked_symbol, pool.pair, pool.address)
            pools.append(pool)
        return pools

    async def verify(self, pools: list[Pool]) -> dict[str, int]:
        """Read `constantsView()` on each pool and log its dex id.

        Failures are logged; the pool stays in the working set.

        Returns:
            Mapping of pool address to dex id for the pools that answered.
        """
        dex_ids: dict[str, int] = {}
        for pool in pools:
            try:
                constants: Any = await self._client.call(pool.address, POOL_ABI, "constantsView")
                dex_id = int(constants["dexId"] if isinstance(constants, dict) else constants[0])
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Contract verification failed for %s: %s", pool.pair, e)
                continue
            dex_ids[pool.address] = dex_id
            logger.info("Contract verified for %s - dex id %d", pool.pair, dex_id)
        return dex_ids
