from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from ..errors import DeliveryEngineError
from ..models import FormattedOutput

WatermarkCallback = Callable[[], Awaitable[None]]


class QueueFullError(DeliveryEngineError):
    """Raised when a capacity-limited delivery queue is full."""


class DeliveryHandler(ABC):
    """Per-target-kind dispatch strategy.

    ``dispatch`` returns True on success and False on failure; raising is
    also treated as a failed attempt. Implementations must tolerate being
    called again for the same output after a failure (retries).
    """

    name: str = "handler"

    @abstractmethod
    async def dispatch(self, output: FormattedOutput) -> bool: ...
