"""Pool reserve reads and price derivation.

Prices are carried as fixed-point `Decimal` values: the pool price keeps
27 fractional digits and the reference price 18, matching the integer
arithmetic done on the raw reserve quantities.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from fluid_dex_monitor.chain.abis import RESOLVER_ABI, VAULT_ABI
from fluid_dex_monitor.monitor.models import PriceObservation, ReserveSnapshot

if TYPE_CHECKING:
    from fluid_dex_monitor.chain.client import ChainClient
    from fluid_dex_monitor.monitor.models import Pool, TriggerContext

logger = logging.getLogger(__name__)

PRICE_DECIMALS = 27
REFERENCE_PRICE_DECIMALS = 18


def price_from_reserves(snapshot: ReserveSnapshot, *, tracked_is_token0: bool) -> Decimal | None:
    """Price of the tracked asset in units of the opposite token.

    Returns None when either imaginary reserve is zero.
    """
    tracked, other = snapshot.imaginary_for(tracked_is_token0=tracked_is_token0)
    if tracked <= 0 or other <= 0:
        return None
    scaled = other * 10**PRICE_DECIMALS // tracked
    return Decimal(scaled).scaleb(-PRICE_DECIMALS)


class ReserveReader:
    """Reads adjusted reserves from the resolver and turns them into prices.

    Every read failure is reported as None; callers treat that as "no data
    this cycle".
    """

    def __init__(
        self,
        client: ChainClient,
        *,
        resolver_address: str,
        tracked_asset_address: str,
    ) -> None:
        self._client = client
        self._resolver_address = resolver_address
        self._tracked_asset_address = tracked_asset_address

    async def get_reserves(self, pool: Pool) -> ReserveSnapshot:
        result = await self._client.call(
            self._resolver_address,
            RESOLVER_ABI,
            "getDexCollateralReservesAdjusted",
            pool.address,
        )
        return ReserveSnapshot.from_call_result(result)

    async def get_price(self, pool: Pool) -> Decimal | None:
        """Get the current price for a pool, or None if unavailable."""
        try:
            snapshot = await self.get_reserves(pool)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Price read failed for %s (%s): %s", pool.pair, pool.address, e)
            return None

        price = price_from_reserves(snapshot, tracked_is_token0=pool.tracked_is_token0)
        if price is None:
            logger.warning("Zero imaginary reserve for %s (%s)", pool.pair, pool.address)
        return price

    async def observe(self, pool: Pool, context: TriggerContext) -> PriceObservation:
        """Read the pool price, tagged with the context that asked for it."""
        return PriceObservation(
            pool_address=pool.address,
            price=await self.get_price(pool),
            context=context,
        )

    async def get_reference_price(self) -> Decimal | None:
        """Get totalAssets / totalSupply of the tracked asset's vault."""
        try:
            total_assets, total_supply = await asyncio.gather(
                self._client.call(self._tracked_asset_address, VAULT_ABI, "totalAssets"),
                self._client.call(self._tracked_asset_address, VAULT_ABI, "totalSupply"),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Reference price read failed: %s", e)
            return None

        if int(total_supply) <= 0:
            return None
        scaled = int(total_assets) * 10**REFERENCE_PRICE_DECIMALS // int(total_supply)
        return Decimal(scaled).scaleb(-REFERENCE_PRICE_DECIMALS)
