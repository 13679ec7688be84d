"""
Retrying executor: rotates providers across attempts and paces every call.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set, TypeVar

from tenacity import AsyncRetrying, RetryCallState, RetryError, stop_after_attempt

from .errors import ProviderError, ProviderExhaustedError
from .pacer import Pacer
from .provider_pool import ProviderPool

logger = logging.getLogger(__name__)

T = TypeVar("T")

WorkFn = Callable[[str], Awaitable[T]]

DEFAULT_QUOTA_COOLDOWN_S = 5.0


class RetryingExecutor:
    def __init__(
        self,
        pacer: Pacer,
        pool: ProviderPool,
        *,
        quota_cooldown_s: float = DEFAULT_QUOTA_COOLDOWN_S,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.pacer = pacer
        self.pool = pool
        self.quota_cooldown_s = float(quota_cooldown_s)
        self._sleep = sleep

    def _cooldown_wait(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if isinstance(exc, ProviderError) and exc.is_quota:
            return self.quota_cooldown_s
        return 0.0

    def _next_unused(self, used: Set[str]) -> str:
        # The cursor is shared with concurrent tasks; draw until an unused provider comes up.
        provider = self.pool.next()
        for _ in range(len(self.pool)):
            if provider not in used:
                break
            provider = self.pool.next()
        used.add(provider)
        return provider

    async def execute(
        self,
        task_name: str,
        work_fn: WorkFn[T],
        max_attempts: Optional[int] = None,
        *,
        log_context: str = "",
    ) -> T:
        """
        Run `work_fn(provider)` through the pacer, one provider per attempt.

        Quota failures wait `quota_cooldown_s` before the next attempt; any other
        failure moves on immediately. Raises ProviderExhaustedError once every
        attempt has failed.
        """
        pool_size = len(self.pool)
        attempts = pool_size if max_attempts is None else max(1, min(int(max_attempts), pool_size))
        used: Set[str] = set()

        def _log_retry(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            exc = outcome.exception() if outcome is not None else None
            logger.warning(
                "%stask-retry step=%s attempt=%d/%d wait_s=%.1f error=%s",
                log_context,
                task_name,
                retry_state.attempt_number,
                attempts,
                retry_state.next_action.sleep if retry_state.next_action else 0.0,
                exc,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=self._cooldown_wait,
            sleep=self._sleep,
            before_sleep=_log_retry,
            reraise=False,
        )

        result: Any = None
        try:
            async for attempt in retrying:
                with attempt:
                    provider = self._next_unused(used)
                    logger.info("%squeue-task step=%s model=%s", log_context, task_name, provider)

                    async def _paced(provider: str = provider) -> T:
                        logger.info("%sstart-exec step=%s model=%s", log_context, task_name, provider)
                        out = await work_fn(provider)
                        logger.info("%sfinish-exec step=%s model=%s", log_context, task_name, provider)
                        return out

                    result = await self.pacer.submit(_paced)
        except RetryError as err:
            last = err.last_attempt.exception()
            raise ProviderExhaustedError(task_name, attempts, last) from last
        return result
