"""Data models for the price monitor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from fluid_dex_monitor.chain.events import DecodedLog


class TriggerContext(str, Enum):
    """Why a price check was performed; selects the significance threshold."""

    PERIODIC = "periodic"
    IMMEDIATE = "immediate"
    NEXT_BLOCK = "next-block"
    POOL_EVENT = "pool-event"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TIMEOUT_FALLBACK = "timeout-fallback"
    INITIAL = "initial"
    MANUAL = "manual"


class RecordTrigger(str, Enum):
    """The `event_type` written with each price history row."""

    STARTUP = "startup"
    PERIODIC = "periodic"
    SWAP_IMMEDIATE = "swap-immediate"
    SWAP_NEXT_BLOCK = "swap-next-block"


class PoolEventKind(str, Enum):
    """Recognised on-chain event variants."""

    SWAP = "Swap"
    DEPOSIT = "Deposit"
    WITHDRAW = "Withdraw"
    OPERATION = "LogOperate"
    OTHER = "Other"

    @classmethod
    def from_event_name(cls, name: str | None) -> PoolEventKind:
        for kind in cls:
            if kind.value == name and kind is not cls.OTHER:
                return kind
        return cls.OTHER


class ChangeDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


@dataclass(frozen=True)
class Pool:
    """A DEX pool holding the tracked asset on one side."""

    address: str
    token0: str
    token1: str
    symbol0: str
    symbol1: str
    tracked_is_token0: bool
    pair: str

    @property
    def tracked_token(self) -> str:
        return self.token0 if self.tracked_is_token0 else self.token1

    @property
    def other_token(self) -> str:
        return self.token1 if self.tracked_is_token0 else self.token0

    @property
    def other_symbol(self) -> str:
        return self.symbol1 if self.tracked_is_token0 else self.symbol0

    def matches(self, address: str) -> bool:
        return self.address.lower() == address.lower()


@dataclass(frozen=True)
class ReserveSnapshot:
    """Real and imaginary (curve-adjusted) reserves of a pool."""

    token0_real: int
    token1_real: int
    token0_imaginary: int
    token1_imaginary: int

    @classmethod
    def from_call_result(cls, result: Any) -> ReserveSnapshot:
        """Create a snapshot from a `getDexCollateralReservesAdjusted` result.

        Accepts the decoded struct as a tuple/list (possibly wrapped in a
        one-element tuple) or as a mapping with the ABI field names.
        """
        if isinstance(result, dict):
            return cls(
                token0_real=int(result["token0RealReserves"]),
                token1_real=int(result["token1RealReserves"]),
                token0_imaginary=int(result["token0ImaginaryReserves"]),
                token1_imaginary=int(result["token1ImaginaryReserves"]),
            )
        values = tuple(result)
        if len(values) == 1:
            values = tuple(values[0])
        if len(values) != 4:
            raise ValueError(f"Expected 4 reserve values, got {len(values)}")
        t0_real, t1_real, t0_imag, t1_imag = (int(v) for v in values)
        return cls(
            token0_real=t0_real,
            token1_real=t1_real,
            token0_imaginary=t0_imag,
            token1_imaginary=t1_imag,
        )

    def imaginary_for(self, *, tracked_is_token0: bool) -> tuple[int, int]:
        """Return (tracked side, opposite side) imaginary reserves."""
        if tracked_is_token0:
            return self.token0_imaginary, self.token1_imaginary
        return self.token1_imaginary, self.token0_imaginary


@dataclass(frozen=True)
class PriceObservation:
    """A single price read for a pool. `price` is None when unavailable."""

    pool_address: str
    price: Decimal | None
    context: TriggerContext
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class PriceCheck:
    """Outcome of classifying a new price against the pool's history.

    Attributes:
        pool: The pool that was checked.
        price: Newly observed price.
        previous_price: Last known price, None on first observation.
        change_percent: (price - previous) / previous * 100, zero when first.
        is_significant: Change exceeds the context's threshold.
        is_first_observation: No prior price existed for the pool.
        context: Trigger context of the check.
        timestamp: When the check was classified.
    """

    pool: Pool
    price: Decimal
    previous_price: Decimal | None
    change_percent: Decimal
    is_significant: bool
    is_first_observation: bool
    context: TriggerContext
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def direction(self) -> ChangeDirection:
        if self.change_percent > 0:
            return ChangeDirection.UP
        if self.change_percent < 0:
            return ChangeDirection.DOWN
        return ChangeDirection.FLAT

    @property
    def is_reported(self) -> bool:
        """Whether the check produces a report line.

        First observations and significant changes always report; periodic
        checks also report a stable line when nothing material changed.
        """
        return (
            self.is_first_observation
            or self.is_significant
            or self.context is TriggerContext.PERIODIC
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "pool": self.pool.address,
            "pair": self.pool.pair,
            "price": str(self.price),
            "previous_price": str(self.previous_price) if self.previous_price is not None else None,
            "change_percent": str(self.change_percent),
            "is_significant": self.is_significant,
            "is_first_observation": self.is_first_observation,
            "context": self.context.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class PriceEvolution:
    """Same-block vs next-block price comparison after an operation."""

    pool: Pool
    immediate_price: Decimal
    next_block_price: Decimal
    block_number: int
    final_change_percent: Decimal

    @property
    def block_diff(self) -> Decimal:
        return self.next_block_price - self.immediate_price

    @property
    def block_diff_percent(self) -> Decimal:
        return self.block_diff / self.immediate_price * 100


@dataclass(frozen=True)
class OperationEvent:
    """A balance-changing operation at the liquidity layer for a tracked pool.

    Amounts are signed and scaled to natural units.
    """

    user: str
    token: str
    supply_amount: Decimal
    borrow_amount: Decimal
    block_number: int
    transaction_hash: str
    withdraw_to: str | None = None
    borrow_to: str | None = None

    @classmethod
    def from_event(cls, event: PoolEvent, *, decimals: int = 18) -> OperationEvent:
        """Create an OperationEvent from a LogOperate pool event."""
        if event.kind is not PoolEventKind.OPERATION:
            raise ValueError(f"Expected a LogOperate event, got {event.kind.value}")
        args = event.args
        return cls(
            user=str(args["user"]),
            token=str(args["token"]),
            supply_amount=Decimal(int(args["supplyAmount"])).scaleb(-decimals),
            borrow_amount=Decimal(int(args["borrowAmount"])).scaleb(-decimals),
            block_number=event.block_number,
            transaction_hash=event.transaction_hash,
            withdraw_to=args.get("withdrawTo"),
            borrow_to=args.get("borrowTo"),
        )

    def is_material(self, floor: Decimal) -> bool:
        return abs(self.supply_amount) > floor or abs(self.borrow_amount) > floor


@dataclass(frozen=True)
class PoolEvent:
    """Tagged event observed at a tracked pool (or for it, via the liquidity layer)."""

    kind: PoolEventKind
    pool: Pool
    args: dict[str, Any]
    block_number: int
    transaction_hash: str
    log_index: int = 0
    event_name: str | None = None

    @classmethod
    def from_log(cls, pool: Pool, log: DecodedLog) -> PoolEvent:
        return cls(
            kind=PoolEventKind.from_event_name(log.event_name),
            pool=pool,
            args=dict(log.args),
            block_number=log.block_number,
            transaction_hash=log.transaction_hash,
            log_index=log.log_index,
            event_name=log.event_name,
        )

    def token_amounts(self, *, decimals: int = 18) -> tuple[Decimal, Decimal]:
        """Return (token0, token1) amounts of a Deposit/Withdraw in natural units."""
        token0 = Decimal(int(self.args.get("token0Amount", 0))).scaleb(-decimals)
        token1 = Decimal(int(self.args.get("token1Amount", 0))).scaleb(-decimals)
        return token0, token1
