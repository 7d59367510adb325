"""Block and contract-event stream over a polling JSON-RPC connection.

The node is polled for its head block. Every new block is announced to
block listeners and pending next-block watches, then the logs emitted by
subscribed contracts over the new range are decoded and handed to their
subscription handlers. Observation is forward-only: the first poll only
records the head it starts from.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from eth_abi.abi import decode as abi_decode
from web3 import Web3

if TYPE_CHECKING:
    from fluid_dex_monitor.chain.client import ChainClient

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 4.0  # seconds
DEFAULT_MAX_BLOCK_RANGE = 500


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class StreamStats:
    polls: int = 0
    blocks_seen: int = 0
    logs_dispatched: int = 0
    handler_errors: int = 0
    poll_errors: int = 0
    last_block: int | None = None
    last_poll_time: float | None = None
    last_error: str | None = None


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    text = str(value)
    return bytes.fromhex(text[2:] if text.startswith("0x") else text)


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def _normalize_value(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return Web3.to_checksum_address(value)
    return value


@dataclass(frozen=True)
class EventSpec:
    """A decodable contract event derived from its ABI entry."""

    name: str
    signature: str
    topic0: str
    indexed: tuple[tuple[str, str], ...]
    data: tuple[tuple[str, str], ...]

    @classmethod
    def from_abi(cls, abi: dict[str, Any]) -> EventSpec:
        """Create an EventSpec from an event ABI entry."""
        if abi.get("type") != "event":
            raise ValueError(f"ABI entry {abi.get('name')!r} is not an event")
        inputs = abi.get("inputs", [])
        types = [str(i["type"]) for i in inputs]
        if any(t.startswith("tuple") for t in types):
            raise ValueError(f"Event {abi['name']} has struct inputs, which are not supported")
        signature = f"{abi['name']}({','.join(types)})"
        return cls(
            name=str(abi["name"]),
            signature=signature,
            topic0="0x" + bytes(Web3.keccak(text=signature)).hex(),
            indexed=tuple((str(i["name"]), str(i["type"])) for i in inputs if i.get("indexed")),
            data=tuple((str(i["name"]), str(i["type"])) for i in inputs if not i.get("indexed")),
        )

    def decode(self, topics: Sequence[Any], data: Any) -> dict[str, Any]:
        """Decode indexed topics and the data payload into named arguments."""
        args: dict[str, Any] = {}
        for (name, abi_type), raw in zip(self.indexed, topics[1:], strict=False):
            (value,) = abi_decode([abi_type], _to_bytes(raw))
            args[name] = _normalize_value(abi_type, value)

        payload = _to_bytes(data) if data else b""
        if self.data:
            values = abi_decode([t for _, t in self.data], payload)
            for (name, abi_type), value in zip(self.data, values, strict=True):
                args[name] = _normalize_value(abi_type, value)
        return args


@dataclass(frozen=True)
class DecodedLog:
    """A contract log matched to a subscription.

    `event_name` is None for logs whose topic is not in the subscription's
    event set (delivered to catch-all subscriptions only).
    """

    address: str
    event_name: str | None
    args: dict[str, Any]
    block_number: int
    transaction_hash: str
    log_index: int
    topics: tuple[str, ...] = ()

    @property
    def is_recognized(self) -> bool:
        return self.event_name is not None


LogCallback = Callable[[DecodedLog], Awaitable[None]]
BlockCallback = Callable[[int], None]


@dataclass
class Subscription:
    """Handler registration for the logs of one contract."""

    address: str
    specs: dict[str, EventSpec]
    handler: LogCallback
    catch_all: bool = False
    id: int = field(default_factory=itertools.count().__next__)

    def decode(self, log: dict[str, Any]) -> DecodedLog | None:
        topics = tuple(_to_hex(t).lower() for t in log.get("topics", []))
        spec = self.specs.get(topics[0]) if topics else None
        if spec is None and not self.catch_all:
            return None

        args = spec.decode(topics, log.get("data")) if spec else {}
        return DecodedLog(
            address=Web3.to_checksum_address(log["address"]),
            event_name=spec.name if spec else None,
            args=args,
            block_number=_to_int(log.get("blockNumber", 0)),
            transaction_hash=_to_hex(log.get("transactionHash", b"")),
            log_index=_to_int(log.get("logIndex", 0)),
            topics=topics,
        )


class NextBlockWatch:
    """One-shot wait for the first block strictly after `after_block`.

    The watch deregisters itself before resolving, so it fires at most
    once no matter how many (or how duplicated) block notifications
    arrive. Cancelling is idempotent and also deregisters.
    """

    def __init__(self, after_block: int, *, on_release: Callable[[NextBlockWatch], None]) -> None:
        self.after_block = after_block
        self._on_release = on_release
        self._released = False
        self._future: asyncio.Future[int] = asyncio.get_running_loop().create_future()

    @property
    def fired(self) -> bool:
        return self._future.done() and not self._future.cancelled()

    @property
    def active(self) -> bool:
        return not self._future.done()

    @property
    def block_number(self) -> int | None:
        return self._future.result() if self.fired else None

    def _release(self) -> None:
        if not self._released:
            self._released = True
            self._on_release(self)

    def offer(self, block_number: int) -> bool:
        """Offer a block notification. Returns True only for the firing block."""
        if self._future.done() or block_number <= self.after_block:
            return False
        self._release()
        self._future.set_result(block_number)
        return True

    def cancel(self) -> None:
        self._release()
        if not self._future.done():
            self._future.cancel()

    async def wait(self) -> int:
        return await self._future


class ChainEventStream:
    """Polling block/log stream with per-contract subscriptions."""

    def __init__(
        self,
        client: ChainClient,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_block_range: int = DEFAULT_MAX_BLOCK_RANGE,
        start_block: int | None = None,
    ) -> None:
        self._client = client
        self._poll_interval = poll_interval
        self._max_block_range = max_block_range
        self._last_block = start_block

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats(last_block=start_block)

        self._subscriptions: dict[int, Subscription] = {}
        self._block_listeners: list[BlockCallback] = []
        self._watches: dict[int, NextBlockWatch] = {}
        self._handler_tasks: set[asyncio.Task[None]] = set()

        self._running = False
        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    @property
    def last_block(self) -> int | None:
        return self._last_block

    @property
    def pending_watches(self) -> int:
        return len(self._watches)

    def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("Event stream state: %s -> %s", old.value, new_state.value)

    def subscribe(
        self,
        address: str,
        events: Sequence[dict[str, Any] | EventSpec],
        handler: LogCallback,
        *,
        catch_all: bool = False,
    ) -> Subscription:
        """Register a handler for events emitted by `address`.

        Args:
            address: Contract address.
            events: Event ABI entries (or EventSpecs) to decode.
            handler: Coroutine called once per matching log.
            catch_all: Also deliver logs with unknown topics (undecoded).

        Raises:
            ValueError: If the address or an event ABI is invalid.
        """
        checksum = Web3.to_checksum_address(address)
        specs = [e if isinstance(e, EventSpec) else EventSpec.from_abi(e) for e in events]
        sub = Subscription(
            address=checksum.lower(),
            specs={s.topic0: s for s in specs},
            handler=handler,
            catch_all=catch_all,
        )
        self._subscriptions[sub.id] = sub
        logger.debug(
            "Subscribed to %s events=%s catch_all=%s",
            checksum,
            [s.name for s in specs],
            catch_all,
        )
        return sub

    def add_block_listener(self, listener: BlockCallback) -> None:
        self._block_listeners.append(listener)

    def watch_next_block(self, after_block: int) -> NextBlockWatch:
        """Register a one-shot watch for the first block > `after_block`."""
        watch = NextBlockWatch(after_block, on_release=self._release_watch)
        self._watches[id(watch)] = watch
        return watch

    def _release_watch(self, watch: NextBlockWatch) -> None:
        self._watches.pop(id(watch), None)

    def notify_block(self, block_number: int) -> None:
        """Announce a block to listeners and pending watches."""
        self._stats.blocks_seen += 1
        for listener in list(self._block_listeners):
            try:
                listener(block_number)
            except Exception as e:
                logger.error("Block listener failed for block %d: %s", block_number, e)
        for watch in list(self._watches.values()):
            watch.offer(block_number)

    async def _fetch_logs(self, from_block: int, to_block: int) -> list[dict[str, Any]]:
        addresses = sorted({Web3.to_checksum_address(s.address) for s in self._subscriptions.values()})
        if not addresses:
            return []

        logs: list[dict[str, Any]] = []
        start = from_block
        while start <= to_block:
            end = min(to_block, start + self._max_block_range - 1)
            logs.extend(
                await self._client.get_logs(
                    {"fromBlock": start, "toBlock": end, "address": addresses}
                )
            )
            start = end + 1

        logs.sort(key=lambda log: (_to_int(log.get("blockNumber", 0)), _to_int(log.get("logIndex", 0))))
        return logs

    def _dispatch(self, subscription: Subscription, decoded: DecodedLog) -> None:
        task = asyncio.create_task(self._run_handler(subscription, decoded))
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)
        self._stats.logs_dispatched += 1

    async def _run_handler(self, subscription: Subscription, decoded: DecodedLog) -> None:
        try:
            await subscription.handler(decoded)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.handler_errors += 1
            self._stats.last_error = str(e)
            logger.error(
                "Handler for %s %s (tx %s) failed: %s",
                decoded.address,
                decoded.event_name or "event",
                decoded.transaction_hash,
                e,
            )

    async def poll_once(self) -> int:
        """Run one poll cycle. Returns the number of logs dispatched."""
        head = await self._client.get_block_number()
        self._stats.polls += 1
        self._stats.last_poll_time = time.time()

        if self._last_block is None:
            self._last_block = head
            self._stats.last_block = head
            logger.info("Event stream starting at block %d", head)
            return 0
        if head <= self._last_block:
            return 0

        from_block = self._last_block + 1
        logs = await self._fetch_logs(from_block, head)

        for block_number in range(from_block, head + 1):
            self.notify_block(block_number)

        dispatched = 0
        for log in logs:
            address = str(log.get("address", "")).lower()
            for sub in list(self._subscriptions.values()):
                if sub.address != address:
                    continue
                try:
                    decoded = sub.decode(log)
                except Exception as e:
                    logger.warning("Failed to decode log from %s: %s", address, e)
                    continue
                if decoded is None:
                    logger.debug("Ignoring log with unknown topic from %s", address)
                    continue
                self._dispatch(sub, decoded)
                dispatched += 1

        self._last_block = head
        self._stats.last_block = head
        return dispatched

    async def drain(self) -> None:
        """Wait for in-flight handler tasks to finish."""
        while self._handler_tasks:
            await asyncio.gather(*list(self._handler_tasks), return_exceptions=True)

    async def start(self) -> None:
        if self._running:
            raise RuntimeError("Event stream already running")
        self._running = True
        self._stop_event = asyncio.Event()
        self._set_state(ConnectionState.CONNECTING)

        while self._running and not self._stop_event.is_set():
            try:
                await self.poll_once()
                self._set_state(ConnectionState.CONNECTED)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._stats.poll_errors += 1
                self._stats.last_error = str(e)
                logger.warning("Event stream poll failed: %s", e)
                self._set_state(ConnectionState.RECONNECTING)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except TimeoutError:
                pass

        self._set_state(ConnectionState.DISCONNECTED)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()

        for watch in list(self._watches.values()):
            watch.cancel()

        tasks = list(self._handler_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
