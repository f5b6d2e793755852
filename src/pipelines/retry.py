"""
Bounded retry with a fixed delay for single provider calls.

Applied per stage call, never across the whole pipeline: a translation failure
does not re-run ASR.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from ..config import RetryConfig
from ..errors import Stage, StageError
from ..logging_config import get_logger
from ..metrics import STAGE_RETRIES_TOTAL

logger = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retry a failing ``StageError`` call up to ``max_retries`` times.

    After the last attempt the original exception object is re-raised, so
    callers can still read its stage and cause.
    """

    def __init__(
        self,
        max_retries: int = 1,
        retry_delay_sec: float = 1.0,
        *,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_retries < 0:
            max_retries = 0
        self.max_retries = int(max_retries)
        self.retry_delay_sec = max(0.0, float(retry_delay_sec))
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_config(cls, config: RetryConfig, **kwargs) -> "RetryPolicy":
        return cls(max_retries=config.max_retries, retry_delay_sec=config.retry_delay_sec, **kwargs)

    async def run(self, call: Callable[[], Awaitable[T]], *, stage: Optional[Stage] = None, label: str = "") -> T:
        for attempt in range(self.max_retries + 1):
            try:
                return await call()
            except StageError as exc:
                if attempt >= self.max_retries:
                    if self.max_retries:
                        logger.warning(
                            "Provider call failed; retries exhausted",
                            stage=(stage or exc.stage).value,
                            label=label or None,
                            attempts=attempt + 1,
                            error=str(exc),
                        )
                    raise
                tag = (stage or exc.stage).value
                STAGE_RETRIES_TOTAL.labels(stage=tag).inc()
                logger.warning(
                    "Provider call failed; retrying",
                    stage=tag,
                    label=label or None,
                    attempt=attempt + 1,
                    attempts_left=self.max_retries - attempt,
                    retry_in_seconds=self.retry_delay_sec,
                    error=str(exc),
                )
                await self._sleep(self.retry_delay_sec)
        raise AssertionError("unreachable")  # pragma: no cover
