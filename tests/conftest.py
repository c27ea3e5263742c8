from __future__ import annotations

import stat
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

import pytest
from telegram.constants import MessageLimit

from solsmith.config import GeneratorConfig
from solsmith.conversation.handler import ConversationHandler
from solsmith.core.display import DisplayTracker
from solsmith.core.session import SessionRegistry
from solsmith.core.types import Platform
from solsmith.errors import MessageNotFoundError, SendError, TransportError
from solsmith.generation.runner import GenerationRunner
from solsmith.messenger.base import ChatGateway
from solsmith.messenger.models import EventKind, InboundEvent, OutgoingMessage, Sender
from solsmith.storage.record_store import RecordStore

# Mimics `solana-keygen grind --starts-with|--ends-with <pattern>:1`: writes one
# "<address>.json" artifact into the working directory.
GRIND_OK = """#!/bin/sh
spec="$3"
pattern="${spec%:1}"
case "$2" in
  --starts-with) name="${pattern}123XYZ" ;;
  --ends-with) name="XYZ123${pattern}" ;;
  *) exit 2 ;;
esac
printf 'SECRET1' > "$name.json"
"""

GRIND_FAIL = """#!/bin/sh
echo "grind failed" >&2
exit 3
"""

GRIND_SILENT = """#!/bin/sh
exit 0
"""

GRIND_SLOW = """#!/bin/sh
echo $$ > "{pid_file}"
sleep 30
"""


class FakeGateway(ChatGateway):
    """In-memory chat platform that records every call."""

    def __init__(self) -> None:
        super().__init__({})
        self.sent: list[tuple[str, str, OutgoingMessage]] = []
        self.deleted: list[tuple[str, str]] = []
        self.answered: list[tuple[str, Optional[str]]] = []
        self.visible: dict[str, dict[str, OutgoingMessage]] = {}
        self.fail_send = False
        self.reject: Callable[[OutgoingMessage], bool] = lambda message: False
        self.delete_errors: dict[str, TransportError] = {}
        self._next_ref = 100

    @property
    def platform_name(self) -> str:
        return Platform.TELEGRAM

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def send_message(self, chat_id: str, message: OutgoingMessage) -> str:
        if self.fail_send:
            raise SendError("chat unreachable")
        if len(message.text) > MessageLimit.MAX_TEXT_LENGTH or self.reject(message):
            raise SendError("Bad Request: message is too long")
        self._next_ref += 1
        ref = str(self._next_ref)
        self.sent.append((chat_id, ref, message))
        self.visible.setdefault(chat_id, {})[ref] = message
        return ref

    async def edit_message(self, chat_id: str, message_ref: str, message: OutgoingMessage) -> None:
        if message_ref not in self.visible.get(chat_id, {}):
            raise MessageNotFoundError(message_ref)
        self.visible[chat_id][message_ref] = message

    async def delete_message(self, chat_id: str, message_ref: str) -> None:
        if message_ref in self.delete_errors:
            raise self.delete_errors[message_ref]
        if message_ref not in self.visible.get(chat_id, {}):
            raise MessageNotFoundError(message_ref)
        del self.visible[chat_id][message_ref]
        self.deleted.append((chat_id, message_ref))

    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> None:
        self.answered.append((callback_id, text))

    def user_message(self, chat_id: str, text: str) -> str:
        """Put a user-authored message into the chat and return its ref."""
        self._next_ref += 1
        ref = str(self._next_ref)
        self.visible.setdefault(chat_id, {})[ref] = OutgoingMessage(text=text)
        return ref

    def last(self, chat_id: str) -> OutgoingMessage:
        return [m for c, _, m in self.sent if c == chat_id][-1]

    def tokens(self, message: OutgoingMessage) -> list[str]:
        return [b.token for row in message.buttons for b in row]


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def store(tmp_path: Path) -> RecordStore:
    return RecordStore(tmp_path / "users")


@pytest.fixture
def write_tool(tmp_path: Path) -> Callable[[str], str]:
    def _write(body: str, name: str = "fake-keygen") -> str:
        path = tmp_path / "bin" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body, encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _write


@pytest.fixture
def make_runner(tmp_path: Path, write_tool) -> Callable[..., GenerationRunner]:
    def _make(body: str = GRIND_OK, **overrides) -> GenerationRunner:
        config = GeneratorConfig(
            tool_path=write_tool(body),
            scratch_dir=str(tmp_path / "keypairs"),
            **overrides,
        )
        return GenerationRunner(config)

    return _make


@pytest.fixture
def make_event() -> Callable[..., InboundEvent]:
    counter = iter(range(1, 10_000))

    def _make(
        kind: EventKind,
        payload: str,
        chat_id: str = "42",
        user_id: str = "7",
        message_ref: Optional[str] = None,
    ) -> InboundEvent:
        return InboundEvent(
            platform=Platform.TELEGRAM,
            kind=kind,
            chat_id=chat_id,
            sender=Sender(user_id=user_id, display_name="Alice", username="alice", language_code="en"),
            payload=payload,
            timestamp=datetime.now(timezone.utc),
            message_ref=message_ref,
            callback_id=f"cb-{next(counter)}" if kind is EventKind.BUTTON else None,
        )

    return _make


class Harness:
    """Real tracker, sessions, store and runner around a fake gateway."""

    def __init__(self, gateway: FakeGateway, store: RecordStore, runner: GenerationRunner, make_event):
        self.gateway = gateway
        self.store = store
        self.runner = runner
        self.sessions = SessionRegistry()
        self.tracker = DisplayTracker(gateway)
        self.handler = ConversationHandler(
            gateway=gateway,
            tracker=self.tracker,
            sessions=self.sessions,
            store=store,
            runner=runner,
            max_pattern_length=8,
        )
        self._make_event = make_event

    async def command(self, name: str, chat_id: str = "42", message_ref: Optional[str] = None) -> None:
        await self.handler.handle(
            self._make_event(EventKind.COMMAND, name, chat_id=chat_id, message_ref=message_ref)
        )

    async def press(self, token: str, chat_id: str = "42") -> None:
        await self.handler.handle(self._make_event(EventKind.BUTTON, token, chat_id=chat_id))

    async def say(self, text: str, chat_id: str = "42") -> None:
        await self.handler.handle(self._make_event(EventKind.TEXT, text, chat_id=chat_id))

    def phase(self, chat_id: str = "42"):
        return self.sessions.phase(chat_id)

    def visible(self, chat_id: str = "42") -> list[OutgoingMessage]:
        return list(self.gateway.visible.get(chat_id, {}).values())


@pytest.fixture
def make_harness(gateway, store, make_runner, make_event) -> Callable[..., Harness]:
    def _make(body: str = GRIND_OK, **overrides) -> Harness:
        return Harness(gateway, store, make_runner(body, **overrides), make_event)

    return _make
