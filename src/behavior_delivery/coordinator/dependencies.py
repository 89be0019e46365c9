from __future__ import annotations

from typing import Iterable, List, Literal, Optional

from ..models import DeliveryStatus
from .queue import DeliveryQueue, OutputHistory

DependencyMode = Literal["permissive", "strict"]


class DependencyResolver:
    """Decides whether declared dependency ids are satisfied.

    ``permissive``: an id is satisfied when it is absent from the active queue
    or queued with status delivered. Ids that were never submitted, mistyped
    or abandoned therefore count as satisfied.

    ``strict``: an id is satisfied only once it is known to have been
    delivered. Unknown and failed ids block indefinitely.
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        history: Optional[OutputHistory] = None,
        mode: DependencyMode = "permissive",
    ):
        if mode not in ("permissive", "strict"):
            raise ValueError(f"unknown dependency mode: {mode}")
        if mode == "strict" and history is None:
            raise ValueError("strict mode needs an OutputHistory")
        self._queue = queue
        self._history = history
        self.mode: DependencyMode = mode

    def is_resolved(self, output_id: str) -> bool:
        queued = self._queue.get(output_id)
        if queued is not None:
            return queued.status is DeliveryStatus.DELIVERED
        if self.mode == "permissive":
            return True
        record = self._history.get(output_id)
        return record is not None and record.status is DeliveryStatus.DELIVERED

    def resolved(self, dependency_ids: Iterable[str]) -> bool:
        return all(self.is_resolved(d) for d in dependency_ids)

    def unresolved(self, dependency_ids: Iterable[str]) -> List[str]:
        return [d for d in dependency_ids if not self.is_resolved(d)]
