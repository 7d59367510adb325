"""Chain access layer - Node client and event stream."""

from fluid_dex_monitor.chain.client import ChainClient, ChainClientError, RPCError
from fluid_dex_monitor.chain.events import (
    ChainEventStream,
    DecodedLog,
    EventSpec,
    NextBlockWatch,
)

__all__ = [
    "ChainClient",
    "ChainClientError",
    "ChainEventStream",
    "DecodedLog",
    "EventSpec",
    "NextBlockWatch",
    "RPCError",
]
