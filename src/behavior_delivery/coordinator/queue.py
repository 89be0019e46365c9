from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Dict, List, Optional

from ..models import DeliveryStatus, FormattedOutput
from .types import QueueFullError, WatermarkCallback


class DeliveryQueue:
    """Active delivery queue keyed by output id.

    Unbounded by default. When ``capacity`` is set, ``put`` raises
    QueueFullError at capacity. Watermark callbacks fire once on crossing the
    high watermark and once on recovering to the low watermark; they are
    signals only and never block producers.
    """

    def __init__(
        self,
        capacity: int | None = None,
        high_watermark: int | None = None,
        low_watermark: int | None = None,
        *,
        on_high: Optional[WatermarkCallback] = None,
        on_low: Optional[WatermarkCallback] = None,
    ):
        if capacity is not None and capacity <= 0:
            raise ValueError("capacity must be > 0")

        self._capacity = capacity
        self._items: Dict[str, FormattedOutput] = {}

        if high_watermark is None and capacity is not None:
            high_watermark = max(1, int(0.8 * capacity))
        if low_watermark is None and capacity is not None:
            low_watermark = int(0.5 * capacity)
        self._high_wm = high_watermark
        self._low_wm = low_watermark
        self._on_high = on_high
        self._on_low = on_low
        self._high_fired = False  # avoid duplicate signals

        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int | None:
        return self._capacity

    @property
    def size(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, output_id: object) -> bool:
        return output_id in self._items

    def get(self, output_id: str) -> Optional[FormattedOutput]:
        return self._items.get(output_id)

    def pending(self) -> List[FormattedOutput]:
        """Snapshot of pending outputs (safe to iterate while the queue changes)."""
        return [o for o in self._items.values() if o.status is DeliveryStatus.PENDING]

    def snapshot(self) -> List[FormattedOutput]:
        return list(self._items.values())

    async def put(self, output: FormattedOutput) -> None:
        async with self._lock:
            if output.id in self._items:
                raise ValueError(f"output {output.id} already queued")
            if self._capacity is not None and len(self._items) >= self._capacity:
                raise QueueFullError(f"DeliveryQueue is full ({self._capacity})")
            self._items[output.id] = output
            await self._maybe_signal_high()

    async def remove(self, output_id: str) -> Optional[FormattedOutput]:
        async with self._lock:
            output = self._items.pop(output_id, None)
            if output is not None:
                await self._maybe_signal_low()
            return output

    async def _maybe_signal_high(self) -> None:
        if self._high_wm is None:
            return
        if not self._high_fired and len(self._items) >= self._high_wm:
            self._high_fired = True
            if self._on_high:
                await self._on_high()

    async def _maybe_signal_low(self) -> None:
        if self._low_wm is None:
            return
        if self._high_fired and len(self._items) <= self._low_wm:
            self._high_fired = False
            if self._on_low:
                await self._on_low()


class OutputHistory:
    """Bounded record of outputs that left the active queue (oldest evicted first)."""

    def __init__(self, limit: int = 10_000):
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._limit = limit
        self._items: "OrderedDict[str, FormattedOutput]" = OrderedDict()

    def add(self, output: FormattedOutput) -> None:
        self._items[output.id] = output
        self._items.move_to_end(output.id)
        while len(self._items) > self._limit:
            self._items.popitem(last=False)

    def get(self, output_id: str) -> Optional[FormattedOutput]:
        return self._items.get(output_id)

    def __contains__(self, output_id: object) -> bool:
        return output_id in self._items

    def __len__(self) -> int:
        return len(self._items)
