"""
Simulated delivery handlers.

Stand-ins for real transports: each waits a random latency and succeeds
with a fixed probability. Real transports replace them by registering their
own DeliveryHandler for the target kind.
"""

from __future__ import annotations

import asyncio
import random
from typing import Dict, Optional

from loguru import logger

from ..models import FormattedOutput, TargetType
from .types import DeliveryHandler


class SimulatedHandler(DeliveryHandler):
    def __init__(
        self,
        name: str,
        min_latency_ms: float,
        max_latency_ms: float,
        success_rate: float,
        *,
        rng: Optional[random.Random] = None,
    ):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be within [0, 1]")
        if min_latency_ms < 0 or max_latency_ms < min_latency_ms:
            raise ValueError("latency range is invalid")
        self.name = name
        self.min_latency_ms = min_latency_ms
        self.max_latency_ms = max_latency_ms
        self.success_rate = success_rate
        self._rng = rng or random.Random()

    async def dispatch(self, output: FormattedOutput) -> bool:
        logger.info(f"Delivering to {self.name}: target={output.delivery_info.target} id={output.id}")
        latency = self._rng.uniform(self.min_latency_ms, self.max_latency_ms)
        await asyncio.sleep(latency / 1000.0)
        return self._rng.random() < self.success_rate


# target kind -> (min latency ms, max latency ms, success rate)
SIMULATED_PROFILES: Dict[TargetType, tuple[float, float, float]] = {
    TargetType.ACTUATOR: (10, 60, 0.95),
    TargetType.INTERFACE: (5, 35, 0.98),
    TargetType.SYSTEM: (5, 25, 0.99),
    TargetType.EXTERNAL: (50, 150, 0.90),
}


def default_handlers(rng: Optional[random.Random] = None) -> Dict[TargetType, DeliveryHandler]:
    return {
        kind: SimulatedHandler(kind.value, lo, hi, rate, rng=rng)
        for kind, (lo, hi, rate) in SIMULATED_PROFILES.items()
    }
