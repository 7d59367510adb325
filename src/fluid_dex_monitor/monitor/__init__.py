"""Price monitoring core - Discovery, pricing, classification and correlation."""

from fluid_dex_monitor.monitor.classifier import ChangeClassifier
from fluid_dex_monitor.monitor.correlator import Correlation, CorrelationState, EventCorrelator
from fluid_dex_monitor.monitor.discovery import DiscoveryError, PoolDiscovery
from fluid_dex_monitor.monitor.history import PriceHistoryStore
from fluid_dex_monitor.monitor.models import (
    OperationEvent,
    Pool,
    PoolEvent,
    PoolEventKind,
    PriceCheck,
    PriceEvolution,
    PriceObservation,
    RecordTrigger,
    ReserveSnapshot,
    TriggerContext,
)
from fluid_dex_monitor.monitor.reserves import ReserveReader

__all__ = [
    "ChangeClassifier",
    "Correlation",
    "CorrelationState",
    "DiscoveryError",
    "EventCorrelator",
    "OperationEvent",
    "Pool",
    "PoolDiscovery",
    "PoolEvent",
    "PoolEventKind",
    "PriceCheck",
    "PriceEvolution",
    "PriceHistoryStore",
    "PriceObservation",
    "RecordTrigger",
    "ReserveReader",
    "ReserveSnapshot",
    "TriggerContext",
]
