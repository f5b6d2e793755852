"""
Ordered conversation log.

The store owns message identity and ordering: messages are appended once and
then replaced in place by id. ``all()`` always reflects append order, so an
offline message keeps its position when it is replayed later.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from .models import ConversationMessage, MessageStatus

logger = structlog.get_logger(__name__)

Listener = Callable[[str, ConversationMessage], Union[None, Awaitable[None]]]

EVENT_APPENDED = "appended"
EVENT_UPDATED = "updated"


class ConversationStore:
    def __init__(self) -> None:
        self._order: List[str] = []
        self._messages: Dict[str, ConversationMessage] = {}
        self._lock = asyncio.Lock()
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    async def _publish(self, event: str, message: ConversationMessage) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(event, message)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.error("Conversation listener failed", store_event=event, message_id=message.id, exc_info=True)

    async def append(self, message: ConversationMessage) -> ConversationMessage:
        async with self._lock:
            if message.id in self._messages:
                raise ValueError(f"Message id already exists: {message.id}")
            self._messages[message.id] = message
            self._order.append(message.id)
        logger.debug("Message appended", message_id=message.id, status=message.status.value, sender=message.sender.value)
        await self._publish(EVENT_APPENDED, message)
        return message

    async def update_by_id(self, message_id: str, patch: Dict[str, Any]) -> Optional[ConversationMessage]:
        """Apply *patch* to a stored message.

        Unknown ids are a no-op (logged) and return None.
        """
        async with self._lock:
            current = self._messages.get(message_id)
            if current is None:
                logger.warning("Update for unknown message id ignored", message_id=message_id, fields=sorted(patch))
                return None
            updated = current.apply(patch)
            self._messages[message_id] = updated
        logger.debug(
            "Message updated",
            message_id=message_id,
            status=updated.status.value,
            fields=sorted(patch),
        )
        await self._publish(EVENT_UPDATED, updated)
        return updated

    def get(self, message_id: str) -> Optional[ConversationMessage]:
        return self._messages.get(message_id)

    def all(self) -> List[ConversationMessage]:
        return [self._messages[mid] for mid in self._order]

    def stats(self) -> Dict[str, int]:
        counts = Counter(m.status for m in self._messages.values())
        out = {status.value: counts.get(status, 0) for status in MessageStatus}
        out["total"] = len(self._order)
        return out

    def __len__(self) -> int:
        return len(self._order)
