"""
Unit tests for EventBus and delivery events.
"""

import pytest

from behavior_delivery.coordinator import DeliveryEvent, DeliveryEventKind, EventBus, event_bus


@pytest.fixture
def bus():
    """Fresh EventBus for each test."""
    return EventBus()


@pytest.fixture
def event():
    return DeliveryEvent(
        engine_id="test-engine",
        kind=DeliveryEventKind.RETRYING,
        output_id="output-1",
        retry_count=2,
        reason="handler reported failure",
        queue_size=4,
    )


def test_event_immutable(event):
    """DeliveryEvent is frozen."""
    with pytest.raises(Exception):
        event.retry_count = 3  # type: ignore


@pytest.mark.parametrize(
    "kind,terminal",
    [
        (DeliveryEventKind.QUEUED, False),
        (DeliveryEventKind.RETRYING, False),
        (DeliveryEventKind.DELIVERED, True),
        (DeliveryEventKind.FAILED, True),
        (DeliveryEventKind.CANCELLED, True),
        (DeliveryEventKind.GROUP_COMPLETE, False),
    ],
)
def test_terminal_kinds(kind, terminal):
    assert DeliveryEvent(engine_id="e", kind=kind).terminal is terminal


@pytest.mark.asyncio
async def test_subscribe_and_publish(bus, event):
    received = []

    async def subscriber(evt: DeliveryEvent):
        received.append(evt)

    bus.subscribe(subscriber)
    await bus.publish(event)

    assert received == [event]


@pytest.mark.asyncio
async def test_duplicate_subscribe_is_ignored(bus, event):
    received = []

    async def subscriber(evt):
        received.append(evt)

    bus.subscribe(subscriber)
    bus.subscribe(subscriber)
    assert bus.subscriber_count == 1

    await bus.publish(event)
    assert len(received) == 1


@pytest.mark.asyncio
async def test_unsubscribe(bus, event):
    received = []

    async def subscriber(evt):
        received.append(evt)

    bus.subscribe(subscriber)
    bus.unsubscribe(subscriber)
    bus.unsubscribe(subscriber)  # no-op
    await bus.publish(event)

    assert received == []
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_subscriber_error_isolated(bus, event):
    """A raising subscriber does not stop delivery to the others."""
    received = []

    async def broken(evt):
        raise RuntimeError("subscriber blew up")

    async def healthy(evt):
        received.append(evt)

    bus.subscribe(broken)
    bus.subscribe(healthy)
    await bus.publish(event)

    assert received == [event]


@pytest.mark.asyncio
async def test_publish_without_subscribers(bus, event):
    await bus.publish(event)


def test_singleton():
    assert event_bus() is event_bus()
