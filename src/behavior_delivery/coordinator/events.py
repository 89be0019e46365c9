"""
Delivery lifecycle events.

Provides in-process pub/sub so callers can be notified of state changes
(queued, delivered, retrying, failed, cancelled, group completion, queue
watermarks) instead of polling the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from loguru import logger


class DeliveryEventKind(str, Enum):
    QUEUED = "queued"
    DELIVERED = "delivered"
    RETRYING = "retrying"
    FAILED = "failed"
    CANCELLED = "cancelled"
    GROUP_COMPLETE = "group_complete"
    BACKPRESSURE_HIGH = "backpressure_high"
    BACKPRESSURE_LOW = "backpressure_low"


@dataclass(frozen=True)
class DeliveryEvent:
    """Immutable lifecycle event.

    Attributes:
        engine_id: Identifies the emitting engine
        kind: What happened
        output_id: Output concerned (None for group/queue events)
        group_id: Coordination group concerned, if any
        retry_count: Failed attempts so far
        reason: Optional context (last error, cancellation, ...)
        queue_size: Active queue depth when the event was emitted
    """

    engine_id: str
    kind: DeliveryEventKind
    output_id: str | None = None
    group_id: str | None = None
    retry_count: int = 0
    reason: str | None = None
    queue_size: int = 0

    @property
    def terminal(self) -> bool:
        return self.kind in (
            DeliveryEventKind.DELIVERED,
            DeliveryEventKind.FAILED,
            DeliveryEventKind.CANCELLED,
        )


class EventSubscriber(Protocol):
    """Async callable accepting DeliveryEvent. Exceptions are logged and ignored."""

    async def __call__(self, event: DeliveryEvent) -> None: ...


class EventBus:
    """In-process pub/sub bus for delivery events.

    One subscriber's failure does not affect others. Best-effort delivery,
    asyncio only (no threads).
    """

    def __init__(self) -> None:
        self._subs: list[EventSubscriber] = []

    def subscribe(self, callback: EventSubscriber) -> None:
        if callback not in self._subs:
            self._subs.append(callback)
            logger.debug(f"Event subscriber added (total: {len(self._subs)})")

    def unsubscribe(self, callback: EventSubscriber) -> None:
        """Remove a subscriber; no-op if it was never added."""
        try:
            self._subs.remove(callback)
            logger.debug(f"Event subscriber removed (total: {len(self._subs)})")
        except ValueError:
            pass

    async def publish(self, event: DeliveryEvent) -> None:
        if not self._subs:
            return

        logger.debug(
            f"Publishing event: engine={event.engine_id} kind={event.kind.value} "
            f"output={event.output_id} group={event.group_id}"
        )

        # copy so subscribers may unsubscribe while being called
        for callback in list(self._subs):
            try:
                await callback(event)
            except Exception as exc:
                logger.debug(f"Event subscriber error (ignored): {type(exc).__name__}: {exc}")

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)


# --- Singleton accessor for in-process use ---

_bus: Optional[EventBus] = None


def event_bus() -> EventBus:
    """Process-wide EventBus used by engines that are not given their own."""
    global _bus
    if _bus is None:
        _bus = EventBus()
        logger.debug("EventBus singleton initialized")
    return _bus
