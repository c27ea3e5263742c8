"""Tracks the single live bot message of each chat."""

from __future__ import annotations

import asyncio
import weakref

from solsmith.errors import MessageNotFoundError, TransportError
from solsmith.log import get_logger
from solsmith.messenger.base import ChatGateway
from solsmith.messenger.models import OutgoingMessage

logger = get_logger(__name__)


class DisplayTracker:
    """Keeps at most one tracked bot message per chat.

    New content never accumulates next to old content: :meth:`replace` removes the
    previous message before sending the next one, so the chat reads as one evolving screen.
    """

    def __init__(self, gateway: ChatGateway):
        self._gateway = gateway
        self._current: dict[str, str] = {}
        # An entry disappears once no coroutine holds or awaits its lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def current(self, chat_id: str) -> str | None:
        return self._current.get(chat_id)

    async def replace(self, chat_id: str, message: OutgoingMessage) -> str:
        """Remove the tracked message (if any), send ``message`` and track it.

        A failed send propagates :class:`~solsmith.errors.SendError`; the chat is then left
        with no tracked message rather than a stale one.
        """
        async with self._lock(chat_id):
            await self._remove_current(chat_id)
            message_ref = await self._gateway.send_message(chat_id, message)
            self._current[chat_id] = message_ref
            return message_ref

    def clear(self, chat_id: str) -> None:
        """Forget the tracked message without touching it on the platform."""
        self._current.pop(chat_id, None)

    async def consume_inbound_echo(self, chat_id: str, message_ref: str) -> None:
        """Adopt a message the caller sent directly as the chat's tracked message."""
        async with self._lock(chat_id):
            if self._current.get(chat_id) != message_ref:
                await self._remove_current(chat_id)
            self._current[chat_id] = message_ref

    async def _remove_current(self, chat_id: str) -> None:
        previous = self._current.pop(chat_id, None)
        if previous is None:
            return
        try:
            await self._gateway.delete_message(chat_id, previous)
        except MessageNotFoundError:
            pass
        except TransportError as e:
            logger.warning(
                "tracked_message_delete_failed",
                chat_id=chat_id,
                message_ref=previous,
                error=str(e),
            )

    def _lock(self, chat_id: str) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = self._locks[chat_id] = asyncio.Lock()
        return lock
