"""Per-chat conversation sessions and their locks."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional

from solsmith.core.types import PatternKind, Phase
from solsmith.log import get_logger

logger = get_logger(__name__)


@dataclass
class ChatSession:
    phase: Phase
    pending_pattern_kind: Optional[PatternKind] = None
    request_id: Optional[str] = None
    task: Optional[asyncio.Task[None]] = None
    page: int = 0  # wallet list page while AWAITING_WALLET_SELECTION


@dataclass
class _ChatSlot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    session: Optional[ChatSession] = None
    last_active: float = field(default_factory=time.monotonic)


class SessionRegistry:
    """Owns every chat's session state.

    A chat without a session is IDLE. Slots are created on the first event for a chat and
    evicted by :meth:`evict_idle` once they have been inactive long enough.
    """

    def __init__(self) -> None:
        self._slots: dict[str, _ChatSlot] = {}

    def lock(self, chat_id: str) -> asyncio.Lock:
        """Return the chat's FIFO lock, marking the chat as active."""
        slot = self._slot(chat_id)
        slot.last_active = time.monotonic()
        return slot.lock

    def get(self, chat_id: str) -> ChatSession | None:
        slot = self._slots.get(chat_id)
        return slot.session if slot else None

    def phase(self, chat_id: str) -> Phase:
        session = self.get(chat_id)
        return session.phase if session else Phase.IDLE

    def set(self, chat_id: str, session: ChatSession) -> None:
        slot = self._slot(chat_id)
        if session.phase is Phase.IDLE:
            slot.session = None
        else:
            slot.session = session
        logger.debug("session_phase", chat_id=chat_id, phase=session.phase)

    def clear(self, chat_id: str) -> ChatSession | None:
        """Return the chat to IDLE, handing back the session that was dropped."""
        slot = self._slots.get(chat_id)
        if slot is None:
            return None
        previous, slot.session = slot.session, None
        return previous

    def generating(self) -> list[asyncio.Task[None]]:
        return [
            slot.session.task
            for slot in self._slots.values()
            if slot.session and slot.session.task and not slot.session.task.done()
        ]

    def evict_idle(self, max_idle: float, now: float | None = None) -> int:
        """Drop slots idle for more than ``max_idle`` seconds. Busy chats are kept."""
        now = time.monotonic() if now is None else now
        stale = [
            chat_id
            for chat_id, slot in self._slots.items()
            if now - slot.last_active > max_idle
            and not slot.lock.locked()
            and (slot.session is None or slot.session.phase is not Phase.GENERATING)
        ]
        for chat_id in stale:
            del self._slots[chat_id]
        if stale:
            logger.info("sessions_evicted", count=len(stale), remaining=len(self._slots))
        return len(stale)

    async def cancel_all(self) -> None:
        """Cancel every running generation and wait for the tasks to finish."""
        tasks = self.generating()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("generations_cancelled", count=len(tasks))

    def __len__(self) -> int:
        return len(self._slots)

    def _slot(self, chat_id: str) -> _ChatSlot:
        slot = self._slots.get(chat_id)
        if slot is None:
            slot = self._slots[chat_id] = _ChatSlot()
            logger.debug("session_slot_created", chat_id=chat_id)
        return slot
