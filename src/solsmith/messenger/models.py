"""Platform-neutral inbound event and outbound message models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Optional

from solsmith.core.types import Platform


class EventKind(StrEnum):
    COMMAND = "command"
    TEXT = "text"
    BUTTON = "button"


@dataclass(frozen=True, slots=True)
class Sender:
    user_id: str
    display_name: str
    username: Optional[str] = None
    language_code: Optional[str] = None


@dataclass(frozen=True, slots=True)
class InboundEvent:
    platform: Platform
    kind: EventKind
    chat_id: str
    sender: Sender
    payload: str  # command name without "/", free text, or callback token
    timestamp: datetime
    message_ref: Optional[str] = None  # the user's own message, if any
    callback_id: Optional[str] = None  # set for BUTTON events


@dataclass(frozen=True, slots=True)
class Button:
    label: str
    token: str


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    text: str
    parse_mode: Optional[str] = None  # "markdown", "html", None
    buttons: tuple[tuple[Button, ...], ...] = field(default_factory=tuple)
