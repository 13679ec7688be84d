"""
Global pacing lane for outbound provider calls.

One action in flight at a time, FIFO, with a start-to-start spacing of
ceil(60000 / requests_per_minute) ms plus a safety margin.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Optional, TypeVar

from .errors import ActionTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Action = Callable[[], Awaitable[Any]]
Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]

DEFAULT_REQUESTS_PER_MINUTE = 15
DEFAULT_SAFETY_MARGIN_MS = 100


def min_interval_ms(requests_per_minute: int, safety_margin_ms: int = DEFAULT_SAFETY_MARGIN_MS) -> int:
    if requests_per_minute <= 0:
        raise ValueError("requests_per_minute must be positive")
    return math.ceil(60000 / requests_per_minute) + max(0, int(safety_margin_ms))


@dataclass
class _WorkItem:
    action: Action
    future: "asyncio.Future[Any]"


class Pacer:
    def __init__(
        self,
        requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
        *,
        safety_margin_ms: int = DEFAULT_SAFETY_MARGIN_MS,
        action_timeout_s: Optional[float] = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.requests_per_minute = requests_per_minute
        self.min_interval_s = min_interval_ms(requests_per_minute, safety_margin_ms) / 1000.0
        self.action_timeout_s = action_timeout_s if action_timeout_s and action_timeout_s > 0 else None
        self._clock = clock
        self._sleep = sleep
        self._queue: Deque[_WorkItem] = deque()
        self._drain_task: Optional[asyncio.Task[None]] = None
        self._last_invocation: Optional[float] = None

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    async def submit(self, action: Callable[[], Awaitable[T]]) -> T:
        """
        Queue `action` and wait for its outcome.

        The action is invoked exactly once even if the caller stops waiting.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        self._queue.append(_WorkItem(action=action, future=future))
        if not self.draining:
            self._drain_task = loop.create_task(self._drain())
        return await future

    async def _drain(self) -> None:
        while self._queue:
            if self._last_invocation is not None:
                elapsed = self._clock() - self._last_invocation
                if elapsed < self.min_interval_s:
                    wait_s = self.min_interval_s - elapsed
                    logger.debug("pacer.wait wait_s=%.3f pending=%d", wait_s, len(self._queue))
                    await self._sleep(wait_s)

            item = self._queue.popleft()
            self._last_invocation = self._clock()
            try:
                result = await self._invoke(item.action)
            except Exception as exc:
                if not item.future.done():
                    item.future.set_exception(exc)
                continue
            if not item.future.done():
                item.future.set_result(result)

    async def _invoke(self, action: Action) -> Any:
        if self.action_timeout_s is None:
            return await action()
        try:
            return await asyncio.wait_for(action(), timeout=self.action_timeout_s)
        except asyncio.TimeoutError as exc:
            logger.warning("pacer.action_timeout timeout_s=%s", self.action_timeout_s)
            raise ActionTimeoutError(self.action_timeout_s) from exc
