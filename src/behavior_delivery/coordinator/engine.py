from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime
from time import monotonic
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from loguru import logger

from ..errors import CoordinationIncomplete, DispatchError, ValidationError
from ..formatter import OutputFormatter, parse_request
from ..metrics.registry import (
    OUTPUTS_REJECTED_TOTAL,
    OUTPUTS_SUBMITTED_TOTAL,
    OUTPUTS_TERMINAL_TOTAL,
    QUEUE_DEPTH,
)
from ..models import (
    CancelResult,
    CoordinationGroup,
    CoordinationResult,
    CoordinationSummary,
    DeliveryCounts,
    DeliveryMethod,
    DeliveryStatus,
    FormattedOutput,
    GroupStatus,
    OutputRequest,
    StatusReport,
    SubmissionResult,
    SyncMode,
    TemplateCatalog,
)
from ..utils import elapsed_ms, utc_now
from .dependencies import DependencyResolver
from .events import DeliveryEvent, DeliveryEventKind, EventBus, event_bus
from .groups import CoordinationTracker
from .handlers import default_handlers
from .policy import RetryPolicy
from .queue import DeliveryQueue, OutputHistory
from .registry import DispatchRegistry
from .scheduler import DeliveryScheduler
from .settings import EngineSettings, get_settings


@dataclass(frozen=True)
class EngineHealth:
    engine_id: str
    queue_size: int
    capacity: int | None
    in_flight: int
    history_size: int
    groups_coordinating: int
    groups_complete: int
    scheduler_alive: bool
    monitor_alive: bool


class DeliveryEngine:
    """Behavioral output delivery engine.

    Owns the delivery queue, terminal history and coordination groups; all
    mutation happens on the engine's event loop under one lock, and callers
    only see copies of the records. Immediate requests are dispatched once in
    the calling coroutine; everything else is queued for the scheduler.

    Usage:

        async with DeliveryEngine(registry=my_registry) as engine:
            result = await engine.submit({...})
            report = await engine.status([result.output_id])
        # queue drained and loops stopped on exit
    """

    def __init__(
        self,
        *,
        settings: Optional[EngineSettings] = None,
        registry: Optional[DispatchRegistry] = None,
        formatter: Optional[OutputFormatter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings
        self.engine_id = s.engine_id
        self._clock = clock
        self._bus = bus or event_bus()
        self._lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()
        self._started = False

        self.formatter = formatter or OutputFormatter(clock=clock)
        self.registry = registry or DispatchRegistry(
            default_handlers(rng), default_timeout_ms=s.dispatch_timeout_ms
        )
        self.queue = DeliveryQueue(
            s.queue_capacity,
            on_high=self._on_queue_high,
            on_low=self._on_queue_low,
        )
        self.history = OutputHistory(s.history_limit)
        self.resolver = DependencyResolver(self.queue, self.history, s.dependency_mode)
        self.scheduler = DeliveryScheduler(
            self.queue,
            self.registry,
            self.resolver,
            history=self.history,
            retry_policy=retry_policy or s.retry_policy(),
            interval=s.scheduler_interval,
            lock=self._lock,
            bus=self._bus,
            engine_id=self.engine_id,
            clock=clock,
            max_in_flight=s.max_in_flight,
        )
        self.tracker = CoordinationTracker(
            self.resolver,
            interval=s.coordination_interval,
            lock=self._lock,
            bus=self._bus,
            engine_id=self.engine_id,
            clock=clock,
        )

    @property
    def bus(self) -> EventBus:
        return self._bus

    # ---------------------------
    # lifecycle
    # ---------------------------

    async def __aenter__(self) -> "DeliveryEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop(drain=True)

    async def start(self) -> None:
        if self._started:
            return
        self.scheduler.start()
        self.tracker.start()
        self._started = True
        logger.info(
            f"Delivery engine {self.engine_id} started "
            f"(tick={self.settings.scheduler_interval}s, "
            f"monitor={self.settings.coordination_interval}s, "
            f"max_retries={self.scheduler.retry_policy.max_retries}, "
            f"dependencies={self.resolver.mode})"
        )

    async def stop(self, drain: bool = True, timeout: float = 5.0) -> None:
        """Stop the loops; with ``drain`` keep ticking until the queue empties or ``timeout``."""
        if drain and self.scheduler.alive:
            deadline = monotonic() + timeout
            while len(self.queue) and monotonic() < deadline:
                await asyncio.sleep(self.settings.scheduler_interval)
            if len(self.queue):
                logger.warning(f"Stopping with {len(self.queue)} output(s) still queued")

        await self.scheduler.stop()
        await self.scheduler.wait_idle(timeout=timeout)
        await self.tracker.check()
        await self.tracker.stop()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        self._started = False
        logger.info(f"Delivery engine {self.engine_id} stopped")

    def health(self) -> EngineHealth:
        return EngineHealth(
            engine_id=self.engine_id,
            queue_size=len(self.queue),
            capacity=self.queue.capacity,
            in_flight=self.scheduler.in_flight,
            history_size=len(self.history),
            groups_coordinating=self.tracker.count(GroupStatus.COORDINATING),
            groups_complete=self.tracker.count(GroupStatus.COMPLETE),
            scheduler_alive=self.scheduler.alive,
            monitor_alive=self.tracker.alive,
        )

    # ---------------------------
    # operations
    # ---------------------------

    async def submit(self, request: Union[OutputRequest, Mapping[str, Any]]) -> SubmissionResult:
        t0 = monotonic()
        try:
            req = parse_request(request)
        except ValidationError as exc:
            OUTPUTS_REJECTED_TOTAL.inc()
            logger.warning(f"Rejected output request: {exc}")
            raise

        output = self.formatter.format(req)
        output.metadata.processing_time = elapsed_ms(t0)
        OUTPUTS_SUBMITTED_TOTAL.labels(
            output_type=req.output_type.value, method=req.delivery_method.value
        ).inc()
        logger.info(
            f"Delivering behavioral output {output.id}: type={req.output_type.value} "
            f"method={req.delivery_method.value} target={req.target.type.value}:{req.target.identifier}"
        )

        if req.delivery_method is DeliveryMethod.IMMEDIATE:
            status = await self.deliver_immediate(output)
        else:
            await self.enqueue(output)
            status = output.status

        deps = req.coordination.dependencies
        return SubmissionResult(
            output_id=output.id,
            status=status,
            output=output.model_copy(deep=True),
            delivery=DeliveryCounts(
                total_outputs=1,
                successful=int(status is DeliveryStatus.DELIVERED),
                pending=int(status is DeliveryStatus.PENDING),
                failed=int(status is DeliveryStatus.FAILED),
            ),
            coordination=CoordinationSummary(
                sequence_complete=not deps,
                dependencies_resolved=self.resolver.resolved(deps),
                synchronization_status=req.coordination.synchronization,
            ),
            processing_time=elapsed_ms(t0),
        )

    async def enqueue(self, output: FormattedOutput) -> None:
        async with self._lock:
            await self.queue.put(output)
            QUEUE_DEPTH.labels(engine=self.engine_id).set(len(self.queue))
        logger.debug(f"Output queued: {output.id} (queue={len(self.queue)})")
        await self._bus.publish(self.scheduler.event(DeliveryEventKind.QUEUED, output))

    async def deliver_immediate(self, output: FormattedOutput) -> DeliveryStatus:
        """Exactly one dispatch attempt; the active queue is never touched."""
        error: Optional[DispatchError] = None
        try:
            ok = await self.registry.dispatch(output)
        except DispatchError as exc:
            ok, error = False, exc

        async with self._lock:
            if ok:
                output.mark_delivered(self._clock())
                kind, reason = DeliveryEventKind.DELIVERED, None
                logger.info(f"Output delivered immediately: {output.id}")
            else:
                reason = str(error) if error is not None else "handler reported failure"
                output.record_failure(reason)
                output.mark_failed(reason)
                kind = DeliveryEventKind.FAILED
                logger.warning(f"Immediate delivery failed: {output.id} reason={reason}")
            self.history.add(output)
            OUTPUTS_TERMINAL_TOTAL.labels(status=output.status.value).inc()

        await self._bus.publish(self.scheduler.event(kind, output, reason))
        return output.status

    def _lookup(self, output_id: str) -> Optional[FormattedOutput]:
        return self.queue.get(output_id) or self.history.get(output_id)

    async def status(self, output_ids: Optional[Iterable[str]] = None) -> StatusReport:
        """Records for ``output_ids`` (queued or terminal), or every queued record."""
        t0 = monotonic()
        ids = list(output_ids or [])
        async with self._lock:
            if ids:
                records = [r for r in (self._lookup(i) for i in ids) if r is not None]
            else:
                records = self.queue.snapshot()
            outputs = [r.model_copy(deep=True) for r in records]
            queue_size = len(self.queue)
        return StatusReport(outputs=outputs, queue_size=queue_size, processing_time=elapsed_ms(t0))

    async def get_output(self, output_id: str) -> Optional[FormattedOutput]:
        async with self._lock:
            record = self._lookup(output_id)
            return record.model_copy(deep=True) if record is not None else None

    def templates(self) -> TemplateCatalog:
        templates = [t.model_copy(deep=True) for t in self.formatter.templates.all()]
        return TemplateCatalog(
            templates=templates,
            total_available=len(templates),
            categories=self.formatter.templates.categories(),
        )

    async def cancel(self, output_id: str) -> CancelResult:
        """Cancel a queued pending output. An outstanding dispatch is not aborted."""
        cancelled = False
        async with self._lock:
            output = self.queue.get(output_id)
            if output is not None and output.status is DeliveryStatus.PENDING:
                in_flight = self.scheduler.is_in_flight(output_id)
                output.mark_failed("cancelled")
                await self.scheduler.retire(output)
                cancelled = True
                logger.info(
                    f"Output cancelled: {output_id}"
                    + (" (dispatch already in flight, result will be discarded)" if in_flight else "")
                )

        if cancelled:
            await self._bus.publish(
                self.scheduler.event(DeliveryEventKind.CANCELLED, output, "cancelled")
            )
        return CancelResult(output_id=output_id, cancelled=cancelled)

    async def coordinate(
        self,
        group_id: str,
        outputs: Iterable[str],
        dependencies: Optional[Mapping[str, List[str]]] = None,
        synchronization: Union[SyncMode, str] = SyncMode.ASYNC,
    ) -> CoordinationResult:
        group = await self.tracker.create_group(group_id, outputs, dependencies, synchronization)
        return CoordinationResult(
            group_id=group.id,
            outputs_processed=len(group.outputs),
            synchronization=group.synchronization,
            status=group.status,
        )

    async def group_status(self, group_id: str) -> Optional[CoordinationGroup]:
        async with self._lock:
            group = self.tracker.get(group_id)
            return group.model_copy(deep=True) if group is not None else None

    async def wait_for_group(self, group_id: str, timeout: float | None = None) -> CoordinationGroup:
        """Poll until the group completes; raises CoordinationIncomplete at ``timeout``."""
        deadline = monotonic() + timeout if timeout is not None else None
        while True:
            group = await self.group_status(group_id)
            if group is None:
                raise ValidationError(f"unknown coordination group {group_id}")
            if group.status is GroupStatus.COMPLETE:
                return group
            pause = self.tracker.interval
            if deadline is not None:
                remaining = deadline - monotonic()
                if remaining <= 0:
                    raise CoordinationIncomplete(group_id, self.tracker.unresolved(group))
                pause = min(pause, remaining)
            await asyncio.sleep(pause)

    # ---------------------------
    # queue watermarks
    # ---------------------------

    def _emit_later(self, event: DeliveryEvent) -> None:
        # watermark callbacks run under the queue lock; publish outside it
        task = asyncio.create_task(self._bus.publish(event))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _on_queue_high(self) -> None:
        logger.warning(f"Delivery queue above high watermark ({len(self.queue)})")
        self._emit_later(
            DeliveryEvent(
                engine_id=self.engine_id,
                kind=DeliveryEventKind.BACKPRESSURE_HIGH,
                queue_size=len(self.queue),
            )
        )

    async def _on_queue_low(self) -> None:
        logger.info(f"Delivery queue recovered below low watermark ({len(self.queue)})")
        self._emit_later(
            DeliveryEvent(
                engine_id=self.engine_id,
                kind=DeliveryEventKind.BACKPRESSURE_LOW,
                queue_size=len(self.queue),
            )
        )
