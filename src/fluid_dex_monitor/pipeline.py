"""Main monitor orchestrator for the Fluid DEX price monitor.

This module provides the Monitor class that wires together pool
discovery, price reads, change classification, operation correlation and
the price history file, and manages the periodic and event-driven flows.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from fluid_dex_monitor.chain.abis import LOG_OPERATE_EVENT_ABI, POOL_ABI
from fluid_dex_monitor.chain.client import ChainClient, ChainClientError
from fluid_dex_monitor.chain.events import ChainEventStream, DecodedLog
from fluid_dex_monitor.config import Settings, get_settings
from fluid_dex_monitor.monitor.classifier import ChangeClassifier
from fluid_dex_monitor.monitor.correlator import EventCorrelator
from fluid_dex_monitor.monitor.discovery import DiscoveryError, PoolDiscovery
from fluid_dex_monitor.monitor.history import PriceHistoryStore
from fluid_dex_monitor.monitor.models import (
    OperationEvent,
    Pool,
    PoolEvent,
    PoolEventKind,
    RecordTrigger,
    TriggerContext,
)
from fluid_dex_monitor.monitor.reserves import ReserveReader
from fluid_dex_monitor.reporting.formatter import format_large_liquidity, format_pool_event
from fluid_dex_monitor.storage.recorder import ALL_POOLS_LABEL, ObservationRecorder

if TYPE_CHECKING:
    from fluid_dex_monitor.monitor.models import PriceCheck

logger = logging.getLogger(__name__)

STARTUP_NOTE = "Monitor started - initial prices"
PERIODIC_NOTE = "Scheduled periodic check"

# Pool events carry the DEX's own events; anything else at the pool is OTHER.
POOL_EVENT_ABIS = [entry for entry in POOL_ABI if entry.get("type") == "event"]


class MonitorError(Exception):
    """Base exception for monitor orchestration errors."""


class StartupError(MonitorError):
    """Raised when the monitor cannot reach a usable running state."""


class MonitorState(str, Enum):
    """Monitor lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class MonitorStats:
    """Statistics for the monitor."""

    started_at: datetime | None = None
    start_block: int | None = None
    pools_tracked: int = 0
    periodic_cycles: int = 0
    pool_events: int = 0
    operations_detected: int = 0
    operations_correlated: int = 0
    operations_skipped: int = 0
    event_checks: int = 0
    records_written: int = 0
    errors: int = 0
    last_error: str | None = None


class Monitor:
    """Price monitor for the pools that trade the tracked asset.

    Owns every piece of runtime state: the node client, the event stream,
    the price history, the discovered pools and the background tasks.

    Monitor flow:
        Discovery -> Initial checks -> Startup record -> Subscriptions
        Periodic timer -> Checks per pool -> Periodic record
        LogOperate / pool events -> Correlator or delayed checks

    Example:
        ```python
        from fluid_dex_monitor.config import get_settings
        from fluid_dex_monitor.pipeline import Monitor

        monitor = Monitor(get_settings())

        await monitor.start()
        # Monitor runs until stop() is called
        await monitor.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: ChainClient | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            client: Pre-built chain client. When given, the monitor does not
                close it on shutdown.
        """
        self._settings = settings or get_settings()

        self._state = MonitorState.STOPPED
        self._stats = MonitorStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._client: ChainClient | None = client
        self._owns_client = client is None
        self._stream: ChainEventStream | None = None
        self._reader: ReserveReader | None = None
        self._history = PriceHistoryStore()
        self._classifier: ChangeClassifier | None = None
        self._recorder: ObservationRecorder | None = None
        self._correlator: EventCorrelator | None = None
        self._discovery: PoolDiscovery | None = None

        self._pools: list[Pool] = []
        self._pools_by_address: dict[str, Pool] = {}

        self._handlers: dict[PoolEventKind, Callable[[PoolEvent], Awaitable[None]]] = {
            PoolEventKind.SWAP: self._handle_swap,
            PoolEventKind.DEPOSIT: self._handle_liquidity_change,
            PoolEventKind.WITHDRAW: self._handle_liquidity_change,
            PoolEventKind.OPERATION: self._handle_operation,
            PoolEventKind.OTHER: self._handle_other,
        }

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._stream_task: asyncio.Task[None] | None = None
        self._periodic_task: asyncio.Task[None] | None = None
        self._check_tasks: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> MonitorState:
        """Current monitor state."""
        return self._state

    @property
    def stats(self) -> MonitorStats:
        """Current monitor statistics."""
        if self._recorder:
            self._stats.records_written = self._recorder.stats.rows_written
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if monitor is running."""
        return self._state == MonitorState.RUNNING

    @property
    def pools(self) -> list[Pool]:
        return list(self._pools)

    @property
    def history(self) -> PriceHistoryStore:
        return self._history

    @property
    def stream(self) -> ChainEventStream | None:
        return self._stream

    @property
    def correlator(self) -> EventCorrelator | None:
        return self._correlator

    @property
    def recorder(self) -> ObservationRecorder | None:
        return self._recorder

    async def start(self) -> None:
        """Start the monitor.

        Connects to the node, discovers and verifies pools, takes the
        initial prices, writes the startup row, registers subscriptions
        and starts the background tasks.

        Raises:
            RuntimeError: If the monitor is not stopped.
            StartupError: If the node, the pool registry or a component
                cannot be initialized.
        """
        if self._state != MonitorState.STOPPED:
            raise RuntimeError(f"Cannot start monitor in state {self._state}")

        self._state = MonitorState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting monitor...")

        try:
            self._initialize_components()
            await self._connect()
            await self._discover_pools()
            await self._take_initial_prices()
            self._register_subscriptions()
            self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = MonitorState.RUNNING
            logger.info(
                "Monitor running: %d pools (%s), checks every %ss",
                len(self._pools),
                ", ".join(p.pair for p in self._pools),
                self._settings.monitor.price_check_interval_seconds,
            )
        except Exception as e:
            self._state = MonitorState.ERROR
            self._stats.last_error = str(e)
            self._stats.errors += 1
            logger.error("Failed to start monitor: %s", e)
            await self._stop_background_services()
            await self._cleanup()
            if isinstance(e, MonitorError):
                raise
            raise StartupError(str(e)) from e

    async def stop(self) -> None:
        """Stop the monitor gracefully.

        Stops the event stream, cancels periodic, correlation and delayed
        check tasks and closes the node client.
        """
        if self._state in (MonitorState.STOPPED, MonitorState.STOPPING):
            return

        self._state = MonitorState.STOPPING
        logger.info("Stopping monitor...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = MonitorState.STOPPED
        logger.info("Monitor stopped")

    def request_stop(self) -> None:
        """Ask a running `run()` to return; safe to call from signal handlers."""
        if self._stop_event:
            self._stop_event.set()

    def _initialize_components(self) -> None:
        """Initialize all monitor components."""
        settings = self._settings
        monitor = settings.monitor

        if self._client is None:
            if settings.redis.enabled and settings.redis.url:
                logger.debug("Initializing Redis cache...")
                self._redis = Redis.from_url(settings.redis.url)

            logger.debug("Initializing chain client...")
            self._client = ChainClient(
                settings.rpc.url,
                fallback_rpc_url=settings.rpc.fallback_url,
                redis=self._redis,
                max_requests_per_second=settings.rpc.max_requests_per_second,
                request_timeout=settings.rpc.request_timeout_seconds,
            )
            self._owns_client = True

        client = self._client
        self._stream = ChainEventStream(client, poll_interval=monitor.block_poll_interval_seconds)
        self._reader = ReserveReader(
            client,
            resolver_address=monitor.resolver_address,
            tracked_asset_address=monitor.tracked_asset_address,
        )
        self._classifier = ChangeClassifier(
            self._history,
            self._reader,
            periodic_threshold_percent=monitor.periodic_threshold_percent,
            event_threshold_percent=monitor.event_threshold_percent,
        )
        self._recorder = ObservationRecorder(
            monitor.csv_path,
            self._reader,
            price_columns=monitor.price_columns,
            reference_column=monitor.reference_price_column,
        )
        self._correlator = EventCorrelator(
            self._classifier,
            self._recorder,
            self._stream,
            client,
            materiality_floor=monitor.operation_materiality_floor,
            next_block_timeout=monitor.next_block_timeout_seconds,
        )
        self._discovery = PoolDiscovery(
            client,
            resolver_address=monitor.resolver_address,
            tracked_asset_address=monitor.tracked_asset_address,
            tracked_asset_symbol=monitor.tracked_asset_symbol,
        )

    async def _connect(self) -> None:
        if not self._client:
            raise RuntimeError("Chain client must be initialized before connecting")
        logger.info("Connecting to node...")
        try:
            block_number = await self._client.get_block_number()
        except ChainClientError as e:
            raise StartupError(f"Cannot connect to node: {e}") from e
        self._stats.start_block = block_number
        logger.info("Connected to block %d", block_number)

    async def _discover_pools(self) -> None:
        if not self._discovery or not self._recorder:
            raise RuntimeError("Discovery must be initialized before discovering pools")

        try:
            pools = await self._discovery.discover()
        except DiscoveryError as e:
            raise StartupError(str(e)) from e

        self._pools = pools
        self._pools_by_address = {p.address.lower(): p for p in pools}
        self._stats.pools_tracked = len(pools)
        self._recorder.set_pools(pools)

        if not pools:
            logger.warning(
                "No pools hold %s; history rows will contain N/A prices",
                self._settings.monitor.tracked_asset_symbol,
            )
            return

        for index, pool in enumerate(pools, start=1):
            logger.info("  %d. %s - %s", index, pool.pair, pool.address)
        await self._discovery.verify(pools)

    async def _take_initial_prices(self) -> None:
        if not self._classifier or not self._recorder:
            raise RuntimeError("Classifier must be initialized before initial checks")

        logger.info("Getting initial prices for all pools...")
        for pool in self._pools:
            await self._classifier.check(pool, TriggerContext.INITIAL)
        await self._recorder.record(RecordTrigger.STARTUP, ALL_POOLS_LABEL, STARTUP_NOTE)

    def _register_subscriptions(self) -> None:
        """Subscribe to LogOperate and to each pool's own events.

        Each registration is independent; a failure is logged and the rest
        continue.
        """
        if not self._stream:
            raise RuntimeError("Event stream must be initialized before subscribing")

        liquidity_layer = self._settings.monitor.liquidity_layer_address
        try:
            self._stream.subscribe(liquidity_layer, [LOG_OPERATE_EVENT_ABI], self._on_liquidity_log)
            logger.info("LogOperate listener set up at liquidity layer %s", liquidity_layer)
        except Exception as e:
            self._stats.errors += 1
            logger.error("Failed to subscribe to liquidity layer %s: %s", liquidity_layer, e)

        for pool in self._pools:
            try:
                self._stream.subscribe(pool.address, POOL_EVENT_ABIS, self._on_pool_log, catch_all=True)
                logger.info("Pool event listener set up for %s", pool.pair)
            except Exception as e:
                self._stats.errors += 1
                logger.error("Failed to set up listener for %s: %s", pool.pair, e)

    def _start_background_services(self) -> None:
        """Start background services."""
        if self._stream:
            logger.debug("Starting event stream...")
            self._stream_task = asyncio.create_task(self._run_event_stream())

        logger.debug("Starting periodic price check loop...")
        self._periodic_task = asyncio.create_task(self._run_periodic_loop())

    async def _run_event_stream(self) -> None:
        """Run the event stream in a task."""
        if not self._stream:
            return

        try:
            await self._stream.start()
        except asyncio.CancelledError:
            logger.debug("Event stream task cancelled")
        except Exception as e:
            logger.error("Event stream error: %s", e)
            self._stats.last_error = str(e)
            self._stats.errors += 1

    async def _run_periodic_loop(self) -> None:
        if not self._stop_event:
            return

        interval = self._settings.monitor.price_check_interval_seconds
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break
                except TimeoutError:
                    pass

                await self.run_periodic_check()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.warning("Periodic price check error: %s", e)

    async def run_periodic_check(self) -> list[PriceCheck]:
        """Check every pool in turn, then append a periodic row."""
        if not self._classifier or not self._recorder:
            raise RuntimeError("Monitor components are not initialized")

        logger.info("Periodic price check for %d pools...", len(self._pools))
        checks = await self._check_pools(TriggerContext.PERIODIC)
        await self._recorder.record(RecordTrigger.PERIODIC, ALL_POOLS_LABEL, PERIODIC_NOTE)
        self._stats.periodic_cycles += 1
        return checks

    async def check_now(self, context: TriggerContext = TriggerContext.MANUAL) -> list[PriceCheck]:
        """Check every pool on demand. No history row is written."""
        if not self._classifier:
            raise RuntimeError("Monitor components are not initialized")
        return await self._check_pools(context)

    async def _check_pools(self, context: TriggerContext) -> list[PriceCheck]:
        if not self._classifier:
            return []
        checks: list[PriceCheck] = []
        for pool in self._pools:
            check = await self._classifier.check(pool, context)
            if check is not None:
                checks.append(check)
        return checks

    def get_pool(self, address: str) -> Pool | None:
        return self._pools_by_address.get(address.lower())

    async def _on_liquidity_log(self, log: DecodedLog) -> None:
        """Handle a LogOperate log; only operations by tracked pools matter."""
        user = str(log.args.get("user", ""))
        pool = self.get_pool(user)
        if pool is None:
            return
        await self.dispatch(PoolEvent.from_log(pool, log))

    async def _on_pool_log(self, log: DecodedLog) -> None:
        pool = self.get_pool(log.address)
        if pool is None:
            logger.debug("Log from untracked address %s", log.address)
            return
        await self.dispatch(PoolEvent.from_log(pool, log))

    async def dispatch(self, event: PoolEvent) -> None:
        """Route a pool event to its handler by kind."""
        if event.kind is not PoolEventKind.OPERATION:
            self._stats.pool_events += 1
        await self._handlers[event.kind](event)

    async def _handle_operation(self, event: PoolEvent) -> None:
        if not self._correlator:
            return
        operation = OperationEvent.from_event(
            event, decimals=self._settings.monitor.operation_amount_decimals
        )
        self._stats.operations_detected += 1
        correlation = await self._correlator.handle(operation, event.pool)
        if correlation is None:
            self._stats.operations_skipped += 1
        else:
            self._stats.operations_correlated += 1

    async def _handle_swap(self, event: PoolEvent) -> None:
        logger.info("Pool event: %s", format_pool_event(event))
        self._schedule_check(
            event.pool,
            TriggerContext.POOL_EVENT,
            self._settings.monitor.pool_event_check_delay_seconds,
        )

    async def _handle_liquidity_change(self, event: PoolEvent) -> None:
        monitor = self._settings.monitor
        token0, token1 = event.token_amounts(decimals=monitor.operation_amount_decimals)
        threshold = monitor.large_liquidity_threshold

        if token0 > threshold or token1 > threshold:
            logger.info("%s", format_large_liquidity(event, token0, token1))
            context = (
                TriggerContext.DEPOSIT
                if event.kind is PoolEventKind.DEPOSIT
                else TriggerContext.WITHDRAW
            )
            self._schedule_check(event.pool, context, monitor.liquidity_check_delay_seconds)
            return

        logger.info("Pool event: %s", format_pool_event(event))
        self._schedule_check(
            event.pool, TriggerContext.POOL_EVENT, monitor.pool_event_check_delay_seconds
        )

    async def _handle_other(self, event: PoolEvent) -> None:
        logger.info("Pool event: %s (no price check)", format_pool_event(event))

    def _schedule_check(self, pool: Pool, context: TriggerContext, delay: float) -> None:
        task = asyncio.create_task(self._delayed_check(pool, context, delay))
        self._check_tasks.add(task)
        task.add_done_callback(self._check_tasks.discard)

    async def _delayed_check(self, pool: Pool, context: TriggerContext, delay: float) -> None:
        if not self._classifier:
            return
        try:
            await asyncio.sleep(delay)
            await self._classifier.check(pool, context)
            self._stats.event_checks += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.error("Delayed %s check for %s failed: %s", context.value, pool.pair, e)

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._stream:
            logger.debug("Stopping event stream...")
            await self._stream.stop()

        if self._stream_task:
            self._stream_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stream_task
            self._stream_task = None

        if self._periodic_task:
            self._periodic_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._periodic_task
            self._periodic_task = None

        if self._correlator:
            await self._correlator.aclose()

        tasks = list(self._check_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._check_tasks.clear()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start the monitor and run until interrupted.

        This is a convenience method that starts the monitor and
        blocks until `request_stop()` or `stop()` is called.
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Monitor:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
