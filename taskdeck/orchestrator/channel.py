"""
Notification channel - the orchestrator's only outbound path.

post() must never block the orchestrator: implementations either enqueue or
call straight through to something that returns immediately.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from taskdeck.orchestrator.messages import OutboundMessage

logger = logging.getLogger(__name__)


class NotificationChannel(Protocol):
    def post(self, message: OutboundMessage) -> None: ...


class QueueNotificationChannel:
    """Unbounded in-memory queue. Consumers await get() or take everything with drain()."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[OutboundMessage] = asyncio.Queue()

    def post(self, message: OutboundMessage) -> None:
        self._queue.put_nowait(message)

    async def get(self) -> OutboundMessage:
        return await self._queue.get()

    def drain(self) -> list[OutboundMessage]:
        """Remove and return every queued message, oldest first."""
        messages: list[OutboundMessage] = []
        while not self._queue.empty():
            messages.append(self._queue.get_nowait())
        return messages


class CallbackNotificationChannel:
    """Hands each message to a synchronous callback (used by the console adapter)."""

    def __init__(self, callback: Callable[[OutboundMessage], None]):
        self._callback = callback

    def post(self, message: OutboundMessage) -> None:
        self._callback(message)
