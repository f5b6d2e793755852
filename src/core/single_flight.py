"""
Single-flight gate for the pipeline worker.

Each orchestrator owns its own gate, so separate instances (tests, multiple
apps in one process) never share a processing flag.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog

from ..errors import SubmissionRejected

logger = structlog.get_logger(__name__)


class SingleFlight:
    def __init__(self, name: str = "pipeline"):
        self.name = name
        self._lock = asyncio.Lock()
        self._holder: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def holder(self) -> Optional[str]:
        return self._holder

    @asynccontextmanager
    async def hold(self, holder: str, *, wait: bool = True) -> AsyncIterator[None]:
        """Hold the gate for the duration of the block.

        With ``wait=False`` a busy gate raises ``SubmissionRejected`` instead
        of queueing behind the current holder.
        """
        if not wait and self._lock.locked():
            logger.info("Single-flight gate busy", gate=self.name, holder=self._holder, rejected=holder)
            raise SubmissionRejected(f"{self.name} is busy processing {self._holder}")
        async with self._lock:
            self._holder = holder
            try:
                yield
            finally:
                self._holder = None
