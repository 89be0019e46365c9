"""
Unit tests for engine metrics (light sanity checks).
"""

import pytest
from prometheus_client import REGISTRY

from behavior_delivery import ValidationError
from behavior_delivery.metrics import metrics_registry


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.mark.asyncio
async def test_dispatch_outcomes_counted(engine_factory, scripted_handler, make_request):
    before_ok = sample("bde_dispatch_attempts_total", target="actuator", outcome="success")
    before_fail = sample("bde_dispatch_attempts_total", target="actuator", outcome="failure")

    engine = engine_factory(scripted_handler([False], default=True))
    await engine.submit(make_request())
    for _ in range(2):
        await engine.scheduler.tick()
        await engine.scheduler.wait_idle()

    assert sample("bde_dispatch_attempts_total", target="actuator", outcome="success") == before_ok + 1
    assert sample("bde_dispatch_attempts_total", target="actuator", outcome="failure") == before_fail + 1


@pytest.mark.asyncio
async def test_submission_and_rejection_counted(engine_factory, scripted_handler, make_request):
    before = sample("bde_outputs_submitted_total", output_type="signal", method="queued")
    before_rejected = sample("bde_outputs_rejected_total")

    engine = engine_factory(scripted_handler())
    await engine.submit(make_request(output_type="signal"))
    with pytest.raises(ValidationError):
        await engine.submit({"output_type": "signal"})

    assert sample("bde_outputs_submitted_total", output_type="signal", method="queued") == before + 1
    assert sample("bde_outputs_rejected_total") == before_rejected + 1


@pytest.mark.asyncio
async def test_queue_depth_gauge(engine_factory, scripted_handler, make_request):
    engine = engine_factory(scripted_handler())
    await engine.submit(make_request())
    await engine.submit(make_request())
    assert sample("bde_queue_depth", engine="test-engine") == 2

    await engine.scheduler.tick()
    await engine.scheduler.wait_idle()
    assert sample("bde_queue_depth", engine="test-engine") == 0
    assert sample("bde_inflight_dispatches", engine="test-engine") == 0


def test_registry_exposes_all_metrics():
    for attr in (
        "outputs_submitted_total",
        "outputs_rejected_total",
        "dispatch_attempts_total",
        "dispatch_latency_ms",
        "outputs_terminal_total",
        "queue_depth",
        "inflight_dispatches",
        "groups_completed_total",
    ):
        assert getattr(metrics_registry, attr) is not None
