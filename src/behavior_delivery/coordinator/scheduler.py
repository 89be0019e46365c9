from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from loguru import logger

from ..errors import DispatchError, RetryExhausted
from ..metrics.registry import INFLIGHT_DISPATCHES, OUTPUTS_TERMINAL_TOTAL, QUEUE_DEPTH
from ..models import DeliveryStatus, FormattedOutput
from ..utils import utc_now
from .dependencies import DependencyResolver
from .events import DeliveryEvent, DeliveryEventKind, EventBus, event_bus
from .policy import RetryPolicy
from .queue import DeliveryQueue, OutputHistory
from .registry import DispatchRegistry


class DeliveryScheduler:
    """Periodic scan of the delivery queue.

    Every ``interval`` seconds each pending output that is not already being
    dispatched is checked against its dependencies, its delay and any retry
    backoff window; eligible outputs are dispatched as independent tasks and
    the scan moves on without waiting for them. Results are applied under
    the shared ``lock``.
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        registry: DispatchRegistry,
        resolver: DependencyResolver,
        *,
        history: OutputHistory,
        retry_policy: Optional[RetryPolicy] = None,
        interval: float = 0.1,
        lock: Optional[asyncio.Lock] = None,
        bus: Optional[EventBus] = None,
        engine_id: str = "behavior-delivery",
        clock: Callable[[], datetime] = utc_now,
        max_in_flight: int | None = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        if max_in_flight is not None and max_in_flight <= 0:
            raise ValueError("max_in_flight must be > 0")

        self._queue = queue
        self._registry = registry
        self._resolver = resolver
        self._history = history
        self._policy = retry_policy or RetryPolicy()
        self._interval = interval
        self._lock = lock or asyncio.Lock()
        self._bus = bus or event_bus()
        self._engine_id = engine_id
        self._clock = clock
        self._sem = asyncio.Semaphore(max_in_flight) if max_in_flight else None

        self._inflight: Dict[str, asyncio.Task] = {}
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    # ---------------------------
    # lifecycle
    # ---------------------------

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    @property
    def alive(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    def is_in_flight(self, output_id: str) -> bool:
        return output_id in self._inflight

    def start(self) -> None:
        if self.alive:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name=f"{self._engine_id}-scheduler")

    async def stop(self) -> None:
        self._stopping = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait for outstanding dispatches (those started so far) to finish."""
        tasks = list(self._inflight.values())
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)

    async def _run(self) -> None:
        logger.debug(f"Scheduler {self._engine_id} started (interval={self._interval}s)")
        while not self._stopping:
            await self.tick()
            await asyncio.sleep(self._interval)

    # ---------------------------
    # scanning
    # ---------------------------

    def is_due(self, output: FormattedOutput, now: datetime) -> bool:
        delay_ms = output.request.timing.delay or 0
        if now < output.delivery_info.timestamp + timedelta(milliseconds=delay_ms):
            return False
        nxt = output.delivery_info.next_attempt_at
        return nxt is None or now >= nxt

    def is_eligible(self, output: FormattedOutput, now: datetime) -> bool:
        return (
            output.status is DeliveryStatus.PENDING
            and output.id not in self._inflight
            and self._resolver.resolved(output.dependencies)
            and self.is_due(output, now)
        )

    async def tick(self) -> int:
        """One scan of the queue. Returns the number of dispatches started."""
        now = self._clock()
        started = 0
        for output in self._queue.pending():
            if not self.is_eligible(output, now):
                continue
            self._inflight[output.id] = asyncio.create_task(
                self._attempt(output), name=f"dispatch-{output.id}"
            )
            started += 1

        if started:
            logger.debug(f"Tick started {started} dispatch(es); in flight: {len(self._inflight)}")
        INFLIGHT_DISPATCHES.labels(engine=self._engine_id).set(len(self._inflight))
        return started

    # ---------------------------
    # dispatch & bookkeeping
    # ---------------------------

    def _still_queued(self, output: FormattedOutput) -> bool:
        return self._queue.get(output.id) is output and output.status is DeliveryStatus.PENDING

    async def _attempt(self, output: FormattedOutput) -> None:
        try:
            if self._sem is not None:
                async with self._sem:
                    if not self._still_queued(output):
                        # cancelled while waiting for a dispatch slot
                        logger.debug(f"Skipping dispatch for {output.id} (no longer queued)")
                        return
                    ok, error = await self._call(output)
            else:
                ok, error = await self._call(output)
            await self._record(output, ok, error)
        finally:
            self._inflight.pop(output.id, None)
            INFLIGHT_DISPATCHES.labels(engine=self._engine_id).set(len(self._inflight))

    async def _call(self, output: FormattedOutput) -> Tuple[bool, Optional[DispatchError]]:
        try:
            return await self._registry.dispatch(output), None
        except DispatchError as exc:
            logger.warning(f"Dispatch error for {output.id}: {exc}")
            return False, exc

    async def _record(
        self, output: FormattedOutput, ok: bool, error: Optional[DispatchError]
    ) -> None:
        async with self._lock:
            if not self._still_queued(output):
                # cancelled while the dispatch was outstanding
                logger.debug(f"Discarding dispatch result for {output.id} (no longer queued)")
                return

            if ok:
                output.mark_delivered(self._clock())
                await self.retire(output)
                logger.info(f"Output delivered: {output.id} target={output.delivery_info.target}")
                event = self.event(DeliveryEventKind.DELIVERED, output)
            else:
                reason = str(error) if error is not None else "handler reported failure"
                retries = output.record_failure(reason)
                retryable = error is None or self._policy.classify_retryable(error)
                if not retryable or self._policy.exhausted(retries):
                    exhausted = RetryExhausted(output.id, attempts=retries, last_error=reason)
                    output.mark_failed(str(exhausted))
                    await self.retire(output)
                    logger.error(f"Output abandoned: {exhausted}")
                    event = self.event(DeliveryEventKind.FAILED, output, str(exhausted))
                else:
                    backoff_ms = self._policy.next_backoff_ms(retries)
                    if backoff_ms:
                        output.delivery_info.next_attempt_at = self._clock() + timedelta(
                            milliseconds=backoff_ms
                        )
                    logger.warning(
                        f"Output delivery failed: {output.id} retry_count={retries} "
                        f"backoff={backoff_ms}ms reason={reason}"
                    )
                    event = self.event(DeliveryEventKind.RETRYING, output, reason)

        await self._bus.publish(event)

    async def retire(self, output: FormattedOutput) -> None:
        """Move a terminal output from the active queue into history (caller holds the lock)."""
        await self._queue.remove(output.id)
        self._history.add(output)
        OUTPUTS_TERMINAL_TOTAL.labels(status=output.status.value).inc()
        QUEUE_DEPTH.labels(engine=self._engine_id).set(len(self._queue))

    def event(
        self, kind: DeliveryEventKind, output: FormattedOutput, reason: str | None = None
    ) -> DeliveryEvent:
        return DeliveryEvent(
            engine_id=self._engine_id,
            kind=kind,
            output_id=output.id,
            retry_count=output.delivery_info.retry_count,
            reason=reason,
            queue_size=len(self._queue),
        )
