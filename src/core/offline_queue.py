"""
In-memory FIFO buffer for submissions made while disconnected.

Draining takes a snapshot of the entries present when it starts and replays
them one at a time in enqueue order. Entries that arrive during a drain wait
for the next one, which keeps a drain bounded even under a steady stream of
offline submissions. A failed replay is recorded and the drain moves on.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import structlog

from ..metrics import OFFLINE_DRAINS_TOTAL, OFFLINE_QUEUE_DEPTH
from .connectivity import ConnectivityMonitor
from .models import OfflineQueueEntry, Sender, TranslationRequest

logger = structlog.get_logger(__name__)

# Returns True when the replayed entry reached ``completed``.
ReplayFn = Callable[[OfflineQueueEntry], Awaitable[bool]]


@dataclass(frozen=True)
class DrainReport:
    attempted: int = 0
    failed: int = 0
    remaining: int = 0
    skipped: bool = False


class OfflineQueue:
    def __init__(self, monitor: ConnectivityMonitor, replay: Optional[ReplayFn] = None):
        self._monitor = monitor
        self._replay = replay
        self._entries: List[OfflineQueueEntry] = []
        self._draining = False

    def bind_replay(self, replay: ReplayFn) -> None:
        self._replay = replay

    @property
    def draining(self) -> bool:
        return self._draining

    def __len__(self) -> int:
        return len(self._entries)

    def pending(self) -> List[OfflineQueueEntry]:
        return list(self._entries)

    def enqueue(self, request: TranslationRequest, *, message_id: str, sender: Sender) -> OfflineQueueEntry:
        entry = OfflineQueueEntry(id=uuid.uuid4().hex, message_id=message_id, sender=sender, request=request)
        self._entries.append(entry)
        OFFLINE_QUEUE_DEPTH.set(len(self._entries))
        logger.info(
            "Submission queued while offline",
            entry_id=entry.id,
            message_id=message_id,
            sender=sender.value,
            queue_depth=len(self._entries),
        )
        return entry

    async def drain_if_online(self) -> DrainReport:
        if self._draining or not self._entries or not self._monitor.is_online:
            return DrainReport(remaining=len(self._entries), skipped=True)
        if self._replay is None:
            raise RuntimeError("OfflineQueue has no replay function bound")

        self._draining = True
        snapshot = list(self._entries)
        attempted = failed = 0
        OFFLINE_DRAINS_TOTAL.inc()
        logger.info("Draining offline queue", entries=len(snapshot))
        try:
            for entry in snapshot:
                if not self._monitor.is_online:
                    logger.warning(
                        "Connectivity lost during drain; keeping remaining entries",
                        remaining=len(self._entries),
                    )
                    break
                attempted += 1
                try:
                    ok = await self._replay(entry)
                except Exception:
                    ok = False
                    logger.error("Offline replay raised", entry_id=entry.id, message_id=entry.message_id, exc_info=True)
                finally:
                    self._entries.remove(entry)
                    OFFLINE_QUEUE_DEPTH.set(len(self._entries))
                if not ok:
                    failed += 1
        finally:
            self._draining = False

        report = DrainReport(attempted=attempted, failed=failed, remaining=len(self._entries))
        logger.info("Offline queue drain finished", attempted=attempted, failed=failed, remaining=report.remaining)
        return report
