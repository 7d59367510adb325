"""Pytest configuration and fixtures."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from fluid_dex_monitor.config import SUSDE_ADDRESS
from fluid_dex_monitor.monitor.models import Pool, PriceObservation, TriggerContext

USDT_ADDRESS = "0xdAC17F958D2ee523a2206206994597C13D831ec7"
GHO_ADDRESS = "0x40D16FC0246aD3160Ccc09B8D0D3A2cD28aE6C2f"

SUSDE_USDT_POOL = "0x1DD125C32e4B5086c63CC13B3cA02C4A2a61Fa9b"
GHO_SUSDE_POOL = "0x6A5E6d1B5C8E8b8F6d7C2D4e3f2A1b0C9d8E7f6A"


@pytest.fixture
def tracked_address() -> str:
    """Address of the tracked asset."""
    return SUSDE_ADDRESS


@pytest.fixture
def susde_usdt_pool() -> Pool:
    """Pool with the tracked asset as token0."""
    return Pool(
        address=SUSDE_USDT_POOL,
        token0=SUSDE_ADDRESS,
        token1=USDT_ADDRESS,
        symbol0="sUSDe",
        symbol1="USDT",
        tracked_is_token0=True,
        pair="sUSDe/USDT",
    )


@pytest.fixture
def gho_susde_pool() -> Pool:
    """Pool with the tracked asset as token1."""
    return Pool(
        address=GHO_SUSDE_POOL,
        token0=GHO_ADDRESS,
        token1=SUSDE_ADDRESS,
        symbol0="GHO",
        symbol1="sUSDe",
        tracked_is_token0=False,
        pair="GHO/sUSDe",
    )


@pytest.fixture
def mock_reader() -> AsyncMock:
    """ReserveReader stand-in returning no prices until configured."""
    reader = AsyncMock()
    reader.get_price = AsyncMock(return_value=None)
    reader.get_reference_price = AsyncMock(return_value=Decimal("1.15"))

    async def observe(pool: Pool, context: TriggerContext) -> PriceObservation:
        return PriceObservation(pool.address, await reader.get_price(pool), context)

    reader.observe = AsyncMock(side_effect=observe)
    return reader
