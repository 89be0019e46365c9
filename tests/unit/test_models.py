"""
Unit tests for output model state transitions.
"""

import pytest

from behavior_delivery import OutputFormatter
from behavior_delivery.models import DeliveryStatus, OutputRequest


@pytest.fixture
def output(clock, make_request):
    return OutputFormatter(clock=clock).format(make_request())


def test_request_is_immutable(make_request):
    req = OutputRequest.model_validate(make_request())
    with pytest.raises(Exception):
        req.output_type = "signal"  # type: ignore


def test_record_failure_counts_and_logs_error(output):
    assert output.record_failure("boom") == 1
    assert output.record_failure("bang") == 2
    assert output.status is DeliveryStatus.PENDING
    assert output.delivery_info.last_error == "bang"
    assert output.execution.monitoring.errors == ["boom", "bang"]


def test_delivered_is_terminal(output, clock):
    output.mark_delivered(clock.now)
    assert output.is_terminal
    assert output.delivery_info.delivered_at == clock.now
    with pytest.raises(ValueError):
        output.mark_failed("late")
    with pytest.raises(ValueError):
        output.record_failure("late")


def test_failed_is_terminal(output, clock):
    output.mark_failed("cancelled")
    assert output.status is DeliveryStatus.FAILED
    with pytest.raises(ValueError):
        output.mark_delivered(clock.now)
