"""
Custom exceptions for the behavior delivery engine.

Only ValidationError reaches callers synchronously. Dispatch failures are
captured by the engine and turned into retry bookkeeping; retry exhaustion is
recorded on the output rather than raised.
"""

from __future__ import annotations

from typing import Optional


class DeliveryEngineError(Exception):
    """Base error for the delivery engine."""

    pass


class ValidationError(DeliveryEngineError):
    """Malformed or incomplete output request (rejected, no side effects)."""

    pass


class DispatchError(DeliveryEngineError):
    """A target handler failed, raised, timed out, or was not registered."""

    def __init__(
        self,
        message: str,
        *,
        output_id: Optional[str] = None,
        target: Optional[str] = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.output_id = output_id
        self.target = target
        self.retryable = retryable


class RetryExhausted(DeliveryEngineError):
    """Terminal abandonment of an output after its last allowed attempt.

    Never raised to callers; its message is stored on the output's
    ``delivery_info.last_error`` and published with the ``failed`` event.
    """

    def __init__(self, output_id: str, attempts: int, last_error: Optional[str] = None):
        msg = f"output {output_id} abandoned after {attempts} attempt(s)"
        if last_error:
            msg = f"{msg}: {last_error}"
        super().__init__(msg)
        self.output_id = output_id
        self.attempts = attempts
        self.last_error = last_error


class CoordinationIncomplete(DeliveryEngineError):
    """A coordination group was still coordinating when a caller stopped waiting."""

    def __init__(self, group_id: str, pending: list[str]):
        super().__init__(f"group {group_id} still coordinating; unresolved members: {pending}")
        self.group_id = group_id
        self.pending = pending
