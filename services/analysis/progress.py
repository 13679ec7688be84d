"""
Stages and progress observers.

Observers are created per request and closed by the pipeline when the run
settles. Delivery is best-effort: an observer that raises is logged and ignored.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    HARVEST_MARKET = "HARVEST_MARKET"
    HARVEST_SOCIAL = "HARVEST_SOCIAL"
    ANALYZE_SOCIAL = "ANALYZE_SOCIAL"
    ANALYZE_TECHNICAL = "ANALYZE_TECHNICAL"
    SYNTHESIZE = "SYNTHESIZE"

    @property
    def order(self) -> int:
        return _STAGE_ORDER[self]


_STAGE_ORDER: Dict[Stage, int] = {
    Stage.HARVEST_MARKET: 0,
    Stage.HARVEST_SOCIAL: 1,
    # The two analyze agents start together and share a rank.
    Stage.ANALYZE_SOCIAL: 2,
    Stage.ANALYZE_TECHNICAL: 2,
    Stage.SYNTHESIZE: 3,
}


@dataclass(frozen=True)
class ProgressEvent:
    stage: Stage
    status: str  # "started" | "failed"
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"stage": self.stage.value, "status": self.status, "detail": self.detail}


class ProgressObserver(Protocol):
    def stage_started(self, stage: Stage) -> None: ...

    def stage_failed(self, stage: Stage, error: BaseException) -> None: ...

    def close(self) -> None: ...


class NullObserver:
    def stage_started(self, stage: Stage) -> None:
        pass

    def stage_failed(self, stage: Stage, error: BaseException) -> None:
        pass

    def close(self) -> None:
        pass


class CallbackObserver:
    """Adapts a plain `on_stage(stage)` callback; failures go to `on_error` if given."""

    def __init__(
        self,
        on_stage: Callable[[Stage], None],
        on_error: Optional[Callable[[Stage, BaseException], None]] = None,
    ):
        self._on_stage = on_stage
        self._on_error = on_error
        self.closed = False

    def stage_started(self, stage: Stage) -> None:
        if not self.closed:
            self._on_stage(stage)

    def stage_failed(self, stage: Stage, error: BaseException) -> None:
        if not self.closed and self._on_error is not None:
            self._on_error(stage, error)

    def close(self) -> None:
        self.closed = True


class ProgressChannel:
    """
    Queue-backed observer that a consumer iterates with `async for`.

    Iteration ends once the pipeline closes the channel. Events published
    after close are dropped.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self.closed = False

    def publish(self, event: ProgressEvent) -> None:
        if self.closed:
            return
        self._queue.put_nowait(event)

    def stage_started(self, stage: Stage) -> None:
        self.publish(ProgressEvent(stage=stage, status="started"))

    def stage_failed(self, stage: Stage, error: BaseException) -> None:
        self.publish(ProgressEvent(stage=stage, status="failed", detail=str(error)))

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(self._CLOSED)

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


class SafeObserver:
    """Wraps an observer so a misbehaving one cannot break the run."""

    def __init__(self, inner: Optional[ProgressObserver], log_context: str = ""):
        self._inner = inner if inner is not None else NullObserver()
        self._log_context = log_context

    def stage_started(self, stage: Stage) -> None:
        try:
            self._inner.stage_started(stage)
        except Exception:
            logger.exception("%sprogress.observer_error stage=%s", self._log_context, stage.value)

    def stage_failed(self, stage: Stage, error: BaseException) -> None:
        try:
            self._inner.stage_failed(stage, error)
        except Exception:
            logger.exception("%sprogress.observer_error stage=%s", self._log_context, stage.value)

    def close(self) -> None:
        try:
            self._inner.close()
        except Exception:
            logger.exception("%sprogress.observer_close_error", self._log_context)
