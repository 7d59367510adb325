"""Correlation of liquidity-layer operations with same-block and next-block prices.

A material operation on a tracked pool moves through
DETECTED -> IMMEDIATE_CHECKED -> AWAITING_NEXT_BLOCK -> RESOLVED:

1. The pool price is checked right away (`immediate`) and a
   `swap-immediate` row is recorded.
2. A one-shot watch is registered for the first block after the
   current head.
3. When that block arrives the price is checked again (`next-block`), a
   `swap-next-block` row is recorded and the two prices are compared.
   If no block arrives within the timeout, a `timeout-fallback` check is
   made instead and no comparison is reported.

Each correlation owns its watch and background task, so many can be
pending at once for different pools.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from fluid_dex_monitor.monitor.models import (
    PriceEvolution,
    RecordTrigger,
    TriggerContext,
)
from fluid_dex_monitor.reporting.formatter import (
    format_change_percent,
    format_evolution,
    format_operation,
    format_timeout,
)

if TYPE_CHECKING:
    from fluid_dex_monitor.chain.client import ChainClient
    from fluid_dex_monitor.chain.events import ChainEventStream, NextBlockWatch
    from fluid_dex_monitor.monitor.classifier import ChangeClassifier
    from fluid_dex_monitor.monitor.models import OperationEvent, Pool, PriceCheck
    from fluid_dex_monitor.storage.recorder import ObservationRecorder

logger = logging.getLogger(__name__)

DEFAULT_MATERIALITY_FLOOR = Decimal("0.01")
DEFAULT_NEXT_BLOCK_TIMEOUT = 30.0  # seconds


class CorrelationState(str, Enum):
    DETECTED = "detected"
    IMMEDIATE_CHECKED = "immediate_checked"
    AWAITING_NEXT_BLOCK = "awaiting_next_block"
    RESOLVED = "resolved"


@dataclass(eq=False)
class Correlation:
    """Progress of one operation through the correlation state machine."""

    operation: OperationEvent
    pool: Pool
    state: CorrelationState = CorrelationState.DETECTED
    detected_at_block: int | None = None
    immediate: PriceCheck | None = None
    next_block: PriceCheck | None = None
    fallback: PriceCheck | None = None
    evolution: PriceEvolution | None = None
    resolved_block: int | None = None
    timed_out: bool = False
    watch: NextBlockWatch | None = None
    task: asyncio.Task[None] | None = None
    _resolved: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)

    @property
    def is_resolved(self) -> bool:
        return self.state is CorrelationState.RESOLVED

    def mark_resolved(self) -> None:
        self.state = CorrelationState.RESOLVED
        self._resolved.set()

    async def wait_resolved(self) -> None:
        await self._resolved.wait()


@dataclass
class CorrelatorStats:
    detected: int = 0
    skipped: int = 0
    resolved: int = 0
    timed_out: int = 0
    evolutions: int = 0
    errors: int = 0


class EventCorrelator:
    """Re-checks pool prices around material liquidity-layer operations."""

    def __init__(
        self,
        classifier: ChangeClassifier,
        recorder: ObservationRecorder,
        stream: ChainEventStream,
        client: ChainClient,
        *,
        materiality_floor: Decimal = DEFAULT_MATERIALITY_FLOOR,
        next_block_timeout: float = DEFAULT_NEXT_BLOCK_TIMEOUT,
    ) -> None:
        """Initialize the correlator.

        Args:
            classifier: Performs and classifies price checks.
            recorder: Appends history rows.
            stream: Source of next-block watches.
            client: Used to read the head block at detection time.
            materiality_floor: Minimum |supply| or |borrow| to correlate.
            next_block_timeout: Seconds to wait for the next block.
        """
        self._classifier = classifier
        self._recorder = recorder
        self._stream = stream
        self._client = client
        self._floor = materiality_floor
        self._timeout = next_block_timeout

        self._pending: set[Correlation] = set()
        self._stats = CorrelatorStats()

    @property
    def stats(self) -> CorrelatorStats:
        return self._stats

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _current_block(self, operation: OperationEvent) -> int:
        try:
            return max(await self._client.get_block_number(), operation.block_number)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Could not read head block, using operation block %d: %s",
                operation.block_number,
                e,
            )
            return operation.block_number

    async def handle(self, operation: OperationEvent, pool: Pool) -> Correlation | None:
        """Start correlating an operation.

        Runs the immediate check and record inline, then schedules the
        next-block resolution in the background.

        Returns:
            The correlation, or None when the operation is below the
            materiality floor.
        """
        if not operation.is_material(self._floor):
            self._stats.skipped += 1
            logger.debug(
                "Small operation on %s (supply %s, borrow %s) below floor %s",
                pool.pair,
                operation.supply_amount,
                operation.borrow_amount,
                self._floor,
            )
            return None

        self._stats.detected += 1
        logger.info("%s", format_operation(operation, pool.pair))

        correlation = Correlation(operation=operation, pool=pool)
        correlation.immediate = await self._classifier.check(pool, TriggerContext.IMMEDIATE)
        correlation.state = CorrelationState.IMMEDIATE_CHECKED

        note = (
            f"Swap detected: {operation.supply_amount:.2f} supply, "
            f"{operation.borrow_amount:.2f} borrow"
        )
        await self._recorder.record(RecordTrigger.SWAP_IMMEDIATE, pool.pair, note)

        current = await self._current_block(operation)
        correlation.detected_at_block = current
        correlation.watch = self._stream.watch_next_block(current)
        correlation.state = CorrelationState.AWAITING_NEXT_BLOCK
        logger.info("%s: current block %d, waiting for next block", pool.pair, current)

        self._pending.add(correlation)
        correlation.task = asyncio.create_task(self._resolve(correlation))
        return correlation

    async def _resolve(self, correlation: Correlation) -> None:
        watch = correlation.watch
        pool = correlation.pool
        if watch is None:
            raise RuntimeError("Correlation has no next-block watch")

        cancelled = False
        try:
            try:
                block_number = await asyncio.wait_for(watch.wait(), timeout=self._timeout)
            except TimeoutError:
                watch.cancel()
                correlation.timed_out = True
                self._stats.timed_out += 1
                logger.info("%s", format_timeout(pool.pair, watch.after_block, self._timeout))
                correlation.fallback = await self._classifier.check(
                    pool, TriggerContext.TIMEOUT_FALLBACK
                )
                return

            correlation.resolved_block = block_number
            logger.info("%s: next block %d detected, re-checking price", pool.pair, block_number)
            correlation.next_block = await self._classifier.check(pool, TriggerContext.NEXT_BLOCK)
            await self._recorder.record(
                RecordTrigger.SWAP_NEXT_BLOCK,
                pool.pair,
                f"Post-swap price after block {block_number}",
            )
            correlation.evolution = self._evolution(correlation, block_number)
        except asyncio.CancelledError:
            cancelled = True
            raise
        except Exception as e:
            self._stats.errors += 1
            logger.error("Correlation for %s failed: %s", pool.pair, e)
        finally:
            watch.cancel()
            self._pending.discard(correlation)
            if not cancelled:
                self._stats.resolved += 1
            correlation.mark_resolved()

    def _evolution(self, correlation: Correlation, block_number: int) -> PriceEvolution | None:
        immediate, next_block = correlation.immediate, correlation.next_block
        if immediate is None or next_block is None:
            return None

        evolution = PriceEvolution(
            pool=correlation.pool,
            immediate_price=immediate.price,
            next_block_price=next_block.price,
            block_number=block_number,
            final_change_percent=next_block.change_percent,
        )
        self._stats.evolutions += 1
        logger.info("%s", format_evolution(evolution))
        if next_block.is_significant:
            logger.info(
                "%s final price impact %s",
                correlation.pool.pair,
                format_change_percent(next_block.change_percent, 4),
            )
        return evolution

    async def aclose(self) -> None:
        """Cancel pending correlations and their watches."""
        pending = list(self._pending)
        for correlation in pending:
            if correlation.watch is not None:
                correlation.watch.cancel()
            if correlation.task is not None:
                correlation.task.cancel()
        for correlation in pending:
            if correlation.task is not None:
                with contextlib.suppress(asyncio.CancelledError):
                    await correlation.task
            self._pending.discard(correlation)
            if not correlation.is_resolved:
                correlation.mark_resolved()
