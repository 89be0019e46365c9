"""Delivery coordinator

Queue -> scheduler -> dispatch pipeline with:
- DeliveryQueue keyed by output id (optional capacity + watermarks)
- DependencyResolver (permissive or strict)
- DispatchRegistry of per-target DeliveryHandlers (+ simulated defaults)
- RetryPolicy with optional backoff/jitter
- CoordinationTracker for output groups
- DeliveryEngine orchestration & health
- EventBus lifecycle events
- Environment-based settings
"""

from .types import DeliveryHandler, WatermarkCallback, QueueFullError
from .policy import RetryPolicy, default_retry_classifier
from .queue import DeliveryQueue, OutputHistory
from .dependencies import DependencyResolver, DependencyMode
from .handlers import SimulatedHandler, default_handlers
from .registry import DispatchRegistry
from .scheduler import DeliveryScheduler
from .groups import CoordinationTracker
from .events import DeliveryEvent, DeliveryEventKind, EventBus, event_bus
from .settings import EngineSettings, get_settings
from .engine import DeliveryEngine, EngineHealth

__all__ = [
    # types
    "DeliveryHandler",
    "WatermarkCallback",
    "QueueFullError",
    "DependencyMode",
    "EngineHealth",
    # policies
    "RetryPolicy",
    "default_retry_classifier",
    "DependencyResolver",
    # runtime
    "DeliveryQueue",
    "OutputHistory",
    "DispatchRegistry",
    "SimulatedHandler",
    "default_handlers",
    "DeliveryScheduler",
    "CoordinationTracker",
    "DeliveryEngine",
    "EngineSettings",
    "get_settings",
    # events
    "DeliveryEvent",
    "DeliveryEventKind",
    "EventBus",
    "event_bus",
]
