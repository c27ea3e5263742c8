"""Abstract chat gateway interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from solsmith.messenger.models import InboundEvent, OutgoingMessage


class ChatGateway(ABC):
    """Base class for chat platform adapters.

    Outbound calls raise :class:`~solsmith.errors.TransportError` subclasses on failure:
    ``SendError`` when a new message cannot be delivered and ``MessageNotFoundError`` when
    the referenced message is already gone.
    """

    def __init__(self, config: dict):
        self.config = config
        self._event_callback: Callable[[InboundEvent], Awaitable[None]] | None = None

    @abstractmethod
    async def start(self) -> None:
        """Connect to the platform and begin receiving events."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Gracefully disconnect."""
        ...

    @abstractmethod
    async def send_message(self, chat_id: str, message: OutgoingMessage) -> str:
        """Send a message and return its platform reference."""
        ...

    @abstractmethod
    async def edit_message(self, chat_id: str, message_ref: str, message: OutgoingMessage) -> None:
        ...

    @abstractmethod
    async def delete_message(self, chat_id: str, message_ref: str) -> None:
        ...

    @abstractmethod
    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> None:
        """Acknowledge a button press, optionally with a short notice."""
        ...

    def on_event(self, callback: Callable[[InboundEvent], Awaitable[None]]) -> None:
        """Register the callback invoked for every inbound event."""
        self._event_callback = callback

    @property
    @abstractmethod
    def platform_name(self) -> str:
        """Return platform identifier string."""
        ...
