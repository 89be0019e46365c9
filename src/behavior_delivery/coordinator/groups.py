from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Union

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..metrics.registry import GROUPS_COMPLETED_TOTAL
from ..models import CoordinationGroup, GroupStatus, SyncMode
from ..utils import utc_now
from .dependencies import DependencyResolver
from .events import DeliveryEvent, DeliveryEventKind, EventBus, event_bus


class CoordinationTracker:
    """Tracks named groups of outputs and marks them complete.

    A monitor loop runs every ``interval`` seconds; a coordinating group
    becomes complete once every member resolves under the dependency
    resolver's rule. Completion happens at most once and groups are kept
    (at complete) until the tracker is discarded. Member failure does not
    roll back or cancel siblings.
    """

    def __init__(
        self,
        resolver: DependencyResolver,
        *,
        interval: float = 0.5,
        lock: Optional[asyncio.Lock] = None,
        bus: Optional[EventBus] = None,
        engine_id: str = "behavior-delivery",
        clock: Callable[[], datetime] = utc_now,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self._resolver = resolver
        self._interval = interval
        self._lock = lock or asyncio.Lock()
        self._bus = bus or event_bus()
        self._engine_id = engine_id
        self._clock = clock

        self._groups: Dict[str, CoordinationGroup] = {}
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def alive(self) -> bool:
        return self._task is not None and not self._task.done()

    def get(self, group_id: str) -> Optional[CoordinationGroup]:
        return self._groups.get(group_id)

    def groups(self) -> List[CoordinationGroup]:
        return list(self._groups.values())

    def count(self, status: GroupStatus) -> int:
        return sum(1 for g in self._groups.values() if g.status is status)

    def unresolved(self, group: CoordinationGroup) -> List[str]:
        return self._resolver.unresolved(group.outputs)

    async def create_group(
        self,
        group_id: str,
        outputs: Iterable[str],
        dependencies: Optional[Mapping[str, List[str]]] = None,
        synchronization: Union[SyncMode, str] = SyncMode.ASYNC,
    ) -> CoordinationGroup:
        if not group_id or not str(group_id).strip():
            raise ValidationError("coordination group id must not be empty")
        try:
            group = CoordinationGroup(
                id=group_id,
                outputs=list(outputs),
                dependencies=dict(dependencies or {}),
                synchronization=synchronization,
                created_at=self._clock(),
            )
        except PydanticValidationError as exc:
            raise ValidationError(f"invalid coordination group {group_id}: {exc}") from exc

        async with self._lock:
            if group_id in self._groups:
                raise ValidationError(f"coordination group {group_id} already exists")
            self._groups[group_id] = group

        logger.info(
            f"Coordinating output group {group_id}: {len(group.outputs)} member(s), "
            f"sync={group.synchronization.value}"
        )
        return group

    async def check(self) -> List[str]:
        """One monitor pass. Returns ids of groups completed by this pass."""
        completed: List[str] = []
        async with self._lock:
            now = self._clock()
            for group in self._groups.values():
                if group.status is not GroupStatus.COORDINATING:
                    continue
                if self._resolver.resolved(group.outputs):
                    group.status = GroupStatus.COMPLETE
                    group.completed_at = now
                    completed.append(group.id)
                    GROUPS_COMPLETED_TOTAL.labels(engine=self._engine_id).inc()
                    logger.info(f"Coordination group completed: {group.id}")

        for group_id in completed:
            await self._bus.publish(
                DeliveryEvent(
                    engine_id=self._engine_id,
                    kind=DeliveryEventKind.GROUP_COMPLETE,
                    group_id=group_id,
                )
            )
        return completed

    def start(self) -> None:
        if self.alive:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name=f"{self._engine_id}-groups")

    async def stop(self) -> None:
        self._stopping = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        logger.debug(f"Coordination monitor {self._engine_id} started (interval={self._interval}s)")
        while not self._stopping:
            await self.check()
            await asyncio.sleep(self._interval)
