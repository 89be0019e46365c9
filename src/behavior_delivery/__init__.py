"""
Behavior Delivery Engine

Formats behavioral output requests, queues them for delivery to actuator,
interface, system and external targets, retries failed dispatches a bounded
number of times and tracks coordination groups of outputs.

Usage:
    from behavior_delivery import DeliveryEngine

    async with DeliveryEngine() as engine:
        result = await engine.submit({
            "output_type": "action",
            "delivery_method": "queued",
            "target": {"type": "actuator", "identifier": "arm-1", "protocol": "can"},
            "behavior_data": {"command": "grip"},
        })
        report = await engine.status([result.output_id])
"""

from .errors import (
    DeliveryEngineError,
    ValidationError,
    DispatchError,
    RetryExhausted,
    CoordinationIncomplete,
)
from .models import (
    OutputRequest,
    FormattedOutput,
    CoordinationGroup,
    Template,
    OutputType,
    DeliveryMethod,
    TargetType,
    DeliveryStatus,
    Priority,
    GroupStatus,
    SyncMode,
)
from .formatter import OutputFormatter
from .templates import TemplateRegistry
from .coordinator import (
    DeliveryEngine,
    DeliveryHandler,
    DispatchRegistry,
    RetryPolicy,
    EngineSettings,
)

__version__ = "1.0.0"
__all__ = [
    "DeliveryEngine",
    "DeliveryHandler",
    "DispatchRegistry",
    "RetryPolicy",
    "EngineSettings",
    "OutputFormatter",
    "TemplateRegistry",
    "OutputRequest",
    "FormattedOutput",
    "CoordinationGroup",
    "Template",
    "OutputType",
    "DeliveryMethod",
    "TargetType",
    "DeliveryStatus",
    "Priority",
    "GroupStatus",
    "SyncMode",
    "DeliveryEngineError",
    "ValidationError",
    "DispatchError",
    "RetryExhausted",
    "CoordinationIncomplete",
]
