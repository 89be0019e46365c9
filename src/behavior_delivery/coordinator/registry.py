from __future__ import annotations

import asyncio
from time import monotonic
from typing import Dict, List, Mapping, Optional, Union

from loguru import logger

from ..errors import DispatchError
from ..metrics.registry import DISPATCH_ATTEMPTS_TOTAL, DISPATCH_LATENCY_MS
from ..models import FormattedOutput, TargetType
from .types import DeliveryHandler


class DispatchRegistry:
    """Routes outputs to the handler registered for their target kind.

    ``dispatch`` returns the handler's verdict. A missing handler, a raising
    handler or a timeout surfaces as DispatchError. The per-dispatch timeout
    is the request's ``timing.duration`` (ms), falling back to
    ``default_timeout_ms``; with neither, dispatch is unbounded.
    """

    def __init__(
        self,
        handlers: Optional[Mapping[Union[TargetType, str], DeliveryHandler]] = None,
        *,
        default_timeout_ms: float | None = None,
    ):
        self._handlers: Dict[TargetType, DeliveryHandler] = {}
        self._default_timeout_ms = default_timeout_ms
        for kind, handler in (handlers or {}).items():
            self.register(kind, handler)

    def register(self, kind: Union[TargetType, str], handler: DeliveryHandler) -> None:
        kind = TargetType(kind)
        if kind in self._handlers:
            logger.debug(f"Replacing delivery handler for {kind.value}")
        self._handlers[kind] = handler

    def unregister(self, kind: Union[TargetType, str]) -> None:
        self._handlers.pop(TargetType(kind), None)

    def get(self, kind: Union[TargetType, str]) -> Optional[DeliveryHandler]:
        return self._handlers.get(TargetType(kind))

    def kinds(self) -> List[TargetType]:
        return list(self._handlers)

    def timeout_for(self, output: FormattedOutput) -> float | None:
        return output.request.timing.duration or self._default_timeout_ms

    async def dispatch(self, output: FormattedOutput) -> bool:
        kind = output.request.target.type
        handler = self._handlers.get(kind)
        if handler is None:
            DISPATCH_ATTEMPTS_TOTAL.labels(target=kind.value, outcome="no_handler").inc()
            logger.error(f"No delivery handler for target type {kind.value} (output {output.id})")
            raise DispatchError(
                f"no delivery handler for target type {kind.value}",
                output_id=output.id,
                target=kind.value,
            )

        timeout_ms = self.timeout_for(output)
        t0 = monotonic()
        try:
            if timeout_ms:
                ok = await asyncio.wait_for(handler.dispatch(output), timeout=timeout_ms / 1000.0)
            else:
                ok = await handler.dispatch(output)
        except asyncio.TimeoutError as exc:
            if not timeout_ms:
                # raised by the handler itself, not by wait_for
                DISPATCH_ATTEMPTS_TOTAL.labels(target=kind.value, outcome="error").inc()
                raise DispatchError(
                    f"{type(exc).__name__}: {exc}", output_id=output.id, target=kind.value
                ) from exc
            DISPATCH_ATTEMPTS_TOTAL.labels(target=kind.value, outcome="timeout").inc()
            raise DispatchError(
                f"dispatch timed out after {timeout_ms}ms",
                output_id=output.id,
                target=kind.value,
            ) from exc
        except DispatchError:
            DISPATCH_ATTEMPTS_TOTAL.labels(target=kind.value, outcome="error").inc()
            raise
        except Exception as exc:
            DISPATCH_ATTEMPTS_TOTAL.labels(target=kind.value, outcome="error").inc()
            raise DispatchError(
                f"{type(exc).__name__}: {exc}", output_id=output.id, target=kind.value
            ) from exc
        finally:
            DISPATCH_LATENCY_MS.labels(target=kind.value).observe((monotonic() - t0) * 1000.0)

        outcome = "success" if ok else "failure"
        DISPATCH_ATTEMPTS_TOTAL.labels(target=kind.value, outcome=outcome).inc()
        return bool(ok)
