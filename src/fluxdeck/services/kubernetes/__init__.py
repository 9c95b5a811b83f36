"""Kubernetes service module.

Managers for Flux resources, Service correlation, live state, events and
streams.
"""

from fluxdeck.services.kubernetes.event_manager import EventFeed, EventManager
from fluxdeck.services.kubernetes.flux_manager import FluxManager
from fluxdeck.services.kubernetes.flux_operations import (
    FluxKind,
    FluxOperations,
    Operation,
    OperationPhase,
    OperationResult,
    get_kind,
)
from fluxdeck.services.kubernetes.inventory import InventoryResolver, parse_inventory_entry
from fluxdeck.services.kubernetes.live_state import LiveStateDispatcher, LiveStateStore
from fluxdeck.services.kubernetes.service_aggregator import ServiceAggregator
from fluxdeck.services.kubernetes.streaming_manager import (
    LogStreamRegistry,
    PodLogMessage,
    ResourceWatcher,
    StreamingManager,
)

__all__ = [
    "EventFeed",
    "EventManager",
    "FluxKind",
    "FluxManager",
    "FluxOperations",
    "InventoryResolver",
    "LiveStateDispatcher",
    "LiveStateStore",
    "LogStreamRegistry",
    "Operation",
    "OperationPhase",
    "OperationResult",
    "PodLogMessage",
    "ResourceWatcher",
    "ServiceAggregator",
    "StreamingManager",
    "get_kind",
]
