"""
Connectivity signal for routing submissions to the pipeline or the offline queue.

The signal is set externally (``set_online``) or by an optional background
probe loop against the language-service provider. Listeners are edge
triggered: ``on_online`` callbacks fire once per offline→online transition.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, Callable, List, Optional, Union

import structlog

from ..metrics import CONNECTIVITY_ONLINE
from ..pipelines.base import LanguageServiceClient, ProbeResult

logger = structlog.get_logger(__name__)

TransitionListener = Callable[[], Union[None, Awaitable[None]]]


class ConnectivityMonitor:
    def __init__(
        self,
        initial_online: bool = True,
        *,
        client: Optional[LanguageServiceClient] = None,
        probe_interval_sec: float = 0.0,
    ):
        self._online = bool(initial_online)
        self._client = client
        self._probe_interval_sec = max(0.0, float(probe_interval_sec or 0.0))
        self._online_listeners: List[TransitionListener] = []
        self._offline_listeners: List[TransitionListener] = []
        self._probe_task: Optional[asyncio.Task] = None
        self.last_probe: Optional[ProbeResult] = None
        CONNECTIVITY_ONLINE.set(1 if self._online else 0)

    @property
    def is_online(self) -> bool:
        return self._online

    def on_online(self, listener: TransitionListener) -> None:
        self._online_listeners.append(listener)

    def on_offline(self, listener: TransitionListener) -> None:
        self._offline_listeners.append(listener)

    async def _notify(self, listeners: List[TransitionListener], edge: str) -> None:
        for listener in list(listeners):
            try:
                outcome = listener()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.error("Connectivity listener failed", edge=edge, exc_info=True)

    async def set_online(self, online: bool) -> bool:
        """Update the signal. Returns True when this call changed the state."""
        online = bool(online)
        if online == self._online:
            return False
        self._online = online
        CONNECTIVITY_ONLINE.set(1 if online else 0)
        logger.info("Connectivity changed", online=online)
        if online:
            await self._notify(self._online_listeners, "online")
        else:
            await self._notify(self._offline_listeners, "offline")
        return True

    async def probe_once(self) -> Optional[ProbeResult]:
        if self._client is None:
            return None
        result = await self._client.probe()
        self.last_probe = result
        await self.set_online(result.is_up)
        return result

    async def _probe_loop(self) -> None:
        logger.info("Starting connectivity probe loop", interval_sec=self._probe_interval_sec)
        while True:
            try:
                await self.probe_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("Connectivity probe iteration failed", exc_info=True)
            await asyncio.sleep(self._probe_interval_sec)

    def start(self) -> None:
        """Start the background probe loop when an interval and client are configured."""
        if not self._client or self._probe_interval_sec <= 0:
            return
        if self._probe_task and not self._probe_task.done():
            logger.debug("Connectivity probe loop already running")
            return
        self._probe_task = asyncio.create_task(self._probe_loop())

    async def stop(self) -> None:
        task, self._probe_task = self._probe_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
