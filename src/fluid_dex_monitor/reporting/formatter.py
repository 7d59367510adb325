"""Report line formatter for price monitor output.

This module turns price checks, post-operation price evolutions and
detected on-chain events into single-line, human-readable messages for
the log.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fluid_dex_monitor.monitor.models import (
        OperationEvent,
        PoolEvent,
        PriceCheck,
        PriceEvolution,
    )

UNAVAILABLE = "N/A"
PRICE_PLACES = 6

ETHERSCAN_TX_URL = "https://etherscan.io/tx/{tx_hash}"


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an Ethereum address to 0x1234...5678 format."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[: chars + 2]}...{address[-chars:]}"


def _quantum(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def format_price(price: Decimal | None, places: int = PRICE_PLACES) -> str:
    """Format a price with a fixed number of decimals, or the N/A sentinel."""
    if price is None:
        return UNAVAILABLE
    return str(price.quantize(_quantum(places), rounding=ROUND_HALF_UP))


def format_change_percent(change: Decimal, places: int = PRICE_PLACES) -> str:
    """Format a signed percentage, e.g. +0.001234%."""
    value = change.quantize(_quantum(places), rounding=ROUND_HALF_UP)
    if value == 0:
        value = abs(value)
    sign = "+" if value >= 0 else ""
    return f"{sign}{value}%"


def format_amount(amount: Decimal, places: int = 4) -> str:
    """Format a token amount with thousands separators."""
    value = amount.quantize(_quantum(places), rounding=ROUND_HALF_UP)
    return f"{value:,}"


def format_check(check: PriceCheck) -> str:
    """Format a classified price check.

    Returns one of three shapes: a first observation, a significant
    change (with direction) or a stable line for periodic checks.
    """
    label = f"[{check.context.value}] {check.pool.pair}"
    if check.is_first_observation:
        return f"{label}: {format_price(check.price)} (first observation)"

    change = format_change_percent(check.change_percent)
    if check.is_significant:
        direction = check.direction.value.upper()
        return (
            f"{label}: PRICE CHANGE {direction} "
            f"{format_price(check.previous_price)} -> {format_price(check.price)} ({change})"
        )

    status = "changed" if check.change_percent != 0 else "no material change"
    return f"{label}: {format_price(check.price)} stable, {status} ({change})"


def format_evolution(evolution: PriceEvolution) -> str:
    """Format the same-block vs next-block comparison."""
    return (
        f"{evolution.pool.pair} evolution to block {evolution.block_number}: "
        f"{format_price(evolution.immediate_price)} -> {format_price(evolution.next_block_price)} "
        f"(block diff {format_change_percent(evolution.block_diff_percent)}, "
        f"last change {format_change_percent(evolution.final_change_percent)})"
    )


def format_operation(operation: OperationEvent, pair: str) -> str:
    """Format a detected liquidity-layer operation."""
    return (
        f"Operation on {pair} at block {operation.block_number}: "
        f"supply {format_amount(operation.supply_amount)}, "
        f"borrow {format_amount(operation.borrow_amount)}, "
        f"token {truncate_address(operation.token)} "
        f"tx {ETHERSCAN_TX_URL.format(tx_hash=operation.transaction_hash)}"
    )


def format_pool_event(event: PoolEvent) -> str:
    """Format a pool-level event (swap, deposit, withdraw or other)."""
    name = event.event_name or "unrecognised event"
    return (
        f"{name} at {event.pool.pair} ({truncate_address(event.pool.address)}) "
        f"block {event.block_number} tx {truncate_address(event.transaction_hash, 6)}"
    )


def format_large_liquidity(event: PoolEvent, token0_amount: Decimal, token1_amount: Decimal) -> str:
    """Format a deposit/withdraw whose size crosses the large-liquidity threshold."""
    pool = event.pool
    return (
        f"LARGE {event.kind.value.upper()} at {pool.pair}: "
        f"{format_amount(token0_amount)} {pool.symbol0} / "
        f"{format_amount(token1_amount)} {pool.symbol1} "
        f"tx {ETHERSCAN_TX_URL.format(tx_hash=event.transaction_hash)}"
    )


def format_timeout(pair: str, after_block: int, timeout_seconds: float) -> str:
    return (
        f"{pair}: no block after {after_block} within {timeout_seconds:g}s, "
        f"falling back to [timeout-fallback] check"
    )
