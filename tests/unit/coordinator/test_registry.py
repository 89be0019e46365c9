"""
Unit tests for DispatchRegistry and simulated handlers.
"""

import random

import pytest

from behavior_delivery import OutputFormatter
from behavior_delivery.coordinator import DispatchRegistry, SimulatedHandler, default_handlers
from behavior_delivery.errors import DispatchError
from behavior_delivery.models import TargetType


@pytest.fixture
def formatter(clock):
    return OutputFormatter(clock=clock)


@pytest.mark.asyncio
async def test_routes_by_target_kind(formatter, make_request, scripted_handler):
    arm = scripted_handler(default=True)
    screen = scripted_handler(default=False)
    registry = DispatchRegistry({"actuator": arm, TargetType.INTERFACE: screen})

    assert await registry.dispatch(formatter.format(make_request(target_type="actuator")))
    assert not await registry.dispatch(formatter.format(make_request(target_type="interface")))
    assert len(arm.calls) == 1
    assert len(screen.calls) == 1


@pytest.mark.asyncio
async def test_missing_handler_is_retryable_error(formatter, make_request):
    registry = DispatchRegistry()
    out = formatter.format(make_request(target_type="external"))

    with pytest.raises(DispatchError) as ei:
        await registry.dispatch(out)
    assert ei.value.retryable
    assert ei.value.target == "external"
    assert ei.value.output_id == out.id


@pytest.mark.asyncio
async def test_handler_exception_wrapped(formatter, make_request, scripted_handler):
    registry = DispatchRegistry({"actuator": scripted_handler([ConnectionError("bus offline")])})

    with pytest.raises(DispatchError, match="ConnectionError: bus offline"):
        await registry.dispatch(formatter.format(make_request()))


@pytest.mark.asyncio
async def test_handler_dispatch_error_passes_through(formatter, make_request, scripted_handler):
    err = DispatchError("unknown actuator", retryable=False)
    registry = DispatchRegistry({"actuator": scripted_handler([err])})

    with pytest.raises(DispatchError) as ei:
        await registry.dispatch(formatter.format(make_request()))
    assert ei.value is err


@pytest.mark.asyncio
async def test_duration_enforced_as_timeout(formatter, make_request, scripted_handler):
    registry = DispatchRegistry({"actuator": scripted_handler(delay=0.5)})
    out = formatter.format(make_request(duration=20))

    assert registry.timeout_for(out) == 20
    with pytest.raises(DispatchError, match="timed out"):
        await registry.dispatch(out)


def test_default_timeout_fallback(formatter, make_request):
    registry = DispatchRegistry(default_timeout_ms=250)
    assert registry.timeout_for(formatter.format(make_request())) == 250
    assert registry.timeout_for(formatter.format(make_request(duration=40))) == 40
    assert DispatchRegistry().timeout_for(formatter.format(make_request())) is None


def test_register_and_unregister(scripted_handler):
    registry = DispatchRegistry()
    h = scripted_handler()
    registry.register("system", h)
    assert registry.get(TargetType.SYSTEM) is h
    assert registry.kinds() == [TargetType.SYSTEM]

    registry.unregister("system")
    assert registry.get("system") is None

    with pytest.raises(ValueError):
        registry.register("satellite", h)


def test_default_handlers_cover_every_target():
    handlers = default_handlers(random.Random(7))
    assert set(handlers) == set(TargetType)
    assert handlers[TargetType.EXTERNAL].success_rate == 0.90


@pytest.mark.asyncio
async def test_simulated_handler_outcomes(formatter, make_request):
    out = formatter.format(make_request())
    always = SimulatedHandler("actuator", 0, 1, 1.0, rng=random.Random(1))
    never = SimulatedHandler("actuator", 0, 1, 0.0, rng=random.Random(1))

    assert await always.dispatch(out)
    assert not await never.dispatch(out)


def test_simulated_handler_validation():
    with pytest.raises(ValueError):
        SimulatedHandler("x", 0, 1, 1.5)
    with pytest.raises(ValueError):
        SimulatedHandler("x", 10, 5, 0.5)


@pytest.mark.asyncio
async def test_handler_timeout_error_without_deadline_keeps_message(
    formatter, make_request, scripted_handler
):
    """A handler's own TimeoutError is a handler error, not an engine timeout."""
    registry = DispatchRegistry({"actuator": scripted_handler([TimeoutError("bus busy")])})

    with pytest.raises(DispatchError) as ei:
        await registry.dispatch(formatter.format(make_request()))
    assert str(ei.value) == "TimeoutError: bus busy"
