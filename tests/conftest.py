"""
Pytest configuration and fixtures for the behavior delivery engine.

Provides request builders, scripted delivery handlers, a controllable clock
and a clean event bus.
"""

import asyncio
import sys
from datetime import datetime, timedelta, timezone

import pytest

from behavior_delivery.coordinator import (
    DeliveryEngine,
    DeliveryHandler,
    DispatchRegistry,
    EngineSettings,
    event_bus,
)

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class ScriptedHandler(DeliveryHandler):
    """Handler returning scripted outcomes, then ``default``; records every call.

    An outcome may be True/False or an exception instance to raise.
    """

    name = "scripted"

    def __init__(self, outcomes=(), default=True, delay: float = 0.0):
        self._outcomes = list(outcomes)
        self._default = default
        self.delay = delay
        self.calls = []

    async def dispatch(self, output) -> bool:
        self.calls.append(output.id)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self._outcomes.pop(0) if self._outcomes else self._default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def count(self, output_id: str) -> int:
        return self.calls.count(output_id)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += timedelta(milliseconds=ms)


@pytest.fixture
def scripted_handler():
    """The ScriptedHandler class (build one per target in a test)."""
    return ScriptedHandler


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_request():
    """Build a raw output request dict with sensible defaults."""

    def _make(
        output_type="action",
        delivery_method="queued",
        target_type="actuator",
        identifier="arm-1",
        protocol="can",
        behavior_data=None,
        dependencies=(),
        delay=None,
        duration=None,
        immediate=False,
        encoding="object",
        compression=False,
        synchronization="async",
    ):
        timing = {"immediate": immediate}
        if delay is not None:
            timing["delay"] = delay
        if duration is not None:
            timing["duration"] = duration
        return {
            "behavior_data": {"command": "grip", "force": 3} if behavior_data is None else behavior_data,
            "output_type": output_type,
            "delivery_method": delivery_method,
            "target": {
                "type": target_type,
                "identifier": identifier,
                "protocol": protocol,
                "parameters": {},
            },
            "format": {"type": "command", "encoding": encoding, "compression": compression},
            "timing": timing,
            "coordination": {
                "sequence": 0,
                "dependencies": list(dependencies),
                "synchronization": synchronization,
            },
        }

    return _make


@pytest.fixture
def fresh_bus():
    """Clear singleton bus subscribers before and after each test."""
    bus = event_bus()
    bus._subs.clear()
    yield bus
    bus._subs.clear()


@pytest.fixture
def fast_settings():
    return EngineSettings(
        engine_id="test-engine",
        scheduler_interval=0.01,
        coordination_interval=0.02,
        max_retries=3,
    )


@pytest.fixture
def engine_factory(fast_settings, clock, fresh_bus):
    """Build a (not started) engine whose every target kind uses ``handler``."""

    def _make(handler=None, *, settings=None, use_clock=True, **registry_handlers):
        if handler is not None:
            for kind in ("actuator", "interface", "system", "external"):
                registry_handlers.setdefault(kind, handler)
        kwargs = {"clock": clock} if use_clock else {}
        return DeliveryEngine(
            settings=settings or fast_settings,
            registry=DispatchRegistry(registry_handlers),
            bus=fresh_bus,
            **kwargs,
        )

    return _make
