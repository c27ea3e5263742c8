"""Conversation handler: the per-chat state machine behind the wallet menus."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional

from solsmith.conversation import screens
from solsmith.core.display import DisplayTracker
from solsmith.core.session import ChatSession, SessionRegistry
from solsmith.core.types import Action, PatternKind, Phase
from solsmith.errors import (
    GenerationError,
    GenerationFailure,
    SendError,
    StorageError,
    TransportError,
    ValidationError,
)
from solsmith.generation.runner import GeneratedKey, GenerationRunner, new_request_id
from solsmith.log import get_logger
from solsmith.messenger.base import ChatGateway
from solsmith.messenger.models import EventKind, InboundEvent, OutgoingMessage, Sender
from solsmith.storage.models import KeyRecord, UserIdentity
from solsmith.storage.record_store import RecordStore

logger = get_logger(__name__)

BASE58_ALPHABET = frozenset("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")

GENERATION_BUSY_NOTICE = "Your wallet is still being generated. Please wait."
STALE_MENU_NOTICE = "This menu has expired."


def validate_pattern(text: str, max_length: int) -> str:
    """Return the trimmed pattern or raise ValidationError with a user-facing reason."""
    pattern = text.strip()
    if not pattern:
        raise ValidationError("The pattern cannot be empty.")
    if any(ch.isspace() for ch in pattern):
        raise ValidationError("The pattern cannot contain spaces.")
    if len(pattern) > max_length:
        raise ValidationError(f"The pattern can be at most {max_length} characters long.")
    invalid = sorted({ch for ch in pattern if ch not in BASE58_ALPHABET})
    if invalid:
        raise ValidationError(
            f"Solana addresses never contain these characters: {' '.join(invalid)}"
        )
    return pattern


def parse_selection(text: str, count: int) -> int:
    """Parse a 1-based wallet number within [1, count]."""
    try:
        number = int(text.strip())
    except ValueError:
        number = 0
    if not 1 <= number <= count:
        raise ValidationError(f"Please enter a valid number between 1 and {count}.")
    return number


def _page_number(token: str) -> Optional[int]:
    if not token.startswith(screens.WALLET_PAGE_PREFIX):
        return None
    try:
        return int(token[len(screens.WALLET_PAGE_PREFIX) :])
    except ValueError:
        return None


def _identity(sender: Sender) -> UserIdentity:
    return UserIdentity(
        user_id=sender.user_id,
        display_name=sender.display_name or "User",
        username=sender.username,
        language_tag=sender.language_code or "en",
    )


class ConversationHandler:
    """Drives each chat through the wallet creation and browsing flows.

    Events of one chat are handled one at a time under the chat's session lock. Wallet
    generation runs as a background task so the chat (and every other chat) stays
    responsive; its outcome is applied under the same lock once the tool finishes.
    """

    def __init__(
        self,
        gateway: ChatGateway,
        tracker: DisplayTracker,
        sessions: SessionRegistry,
        store: RecordStore,
        runner: GenerationRunner,
        max_pattern_length: int = 8,
    ):
        self._gateway = gateway
        self._tracker = tracker
        self._sessions = sessions
        self._store = store
        self._runner = runner
        self._max_pattern_length = max_pattern_length
        self._tasks: set[asyncio.Task[None]] = set()

    async def handle(self, event: InboundEvent) -> None:
        chat_id = event.chat_id
        notice: Optional[str] = None
        async with self._sessions.lock(chat_id):
            identity = _identity(event.sender)
            logger.debug(
                "event_received",
                chat_id=chat_id,
                kind=event.kind,
                phase=self._sessions.phase(chat_id),
            )
            await self._touch(identity)
            try:
                match event.kind:
                    case EventKind.COMMAND:
                        await self._on_command(event, identity)
                    case EventKind.BUTTON:
                        notice = await self._on_button(event, identity)
                    case EventKind.TEXT:
                        await self._on_text(event, identity)
            except TransportError as e:
                logger.error("chat_transport_error", chat_id=chat_id, error=str(e))
            finally:
                if event.callback_id:
                    await self._answer(event.callback_id, notice)

    async def drain(self) -> None:
        """Wait until every in-flight generation has been applied."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _on_command(self, event: InboundEvent, identity: UserIdentity) -> None:
        chat_id = event.chat_id
        match event.payload:
            case "start":
                self._abandon(chat_id)
                try:
                    await self._gateway.send_message(chat_id, screens.intro())
                except TransportError as e:
                    logger.warning("intro_send_failed", chat_id=chat_id, error=str(e))
                await self._show_main_menu(chat_id, identity)
            case "help":
                if event.message_ref:
                    await self._delete_user_message(chat_id, event.message_ref)
                await self._show(chat_id, screens.help_text())
            case _:
                if self._sessions.phase(chat_id) is Phase.IDLE:
                    await self._show_main_menu(chat_id, identity)
                else:
                    logger.info("unknown_command_ignored", chat_id=chat_id, command=event.payload)

    async def _on_button(self, event: InboundEvent, identity: UserIdentity) -> Optional[str]:
        chat_id = event.chat_id
        phase = self._sessions.phase(chat_id)
        try:
            action: Optional[Action] = Action(event.payload)
        except ValueError:
            action = None

        if action is Action.BACK_TO_MAIN:
            self._abandon(chat_id)
            await self._show_main_menu(chat_id, identity)
            return None

        if phase is Phase.GENERATING:
            return GENERATION_BUSY_NOTICE

        page = _page_number(event.payload)
        match action:
            case Action.CREATE_WALLET:
                await self._show(chat_id, screens.pattern_chooser())
                self._sessions.set(chat_id, ChatSession(phase=Phase.AWAITING_PATTERN_CHOICE))
            case Action.PATTERN_PREFIX | Action.PATTERN_SUFFIX if (
                phase is Phase.AWAITING_PATTERN_CHOICE
            ):
                kind = PatternKind.PREFIX if action is Action.PATTERN_PREFIX else PatternKind.SUFFIX
                await self._show(chat_id, screens.pattern_prompt(kind))
                self._sessions.set(
                    chat_id,
                    ChatSession(phase=Phase.AWAITING_PATTERN_VALUE, pending_pattern_kind=kind),
                )
            case Action.VIEW_WALLETS:
                await self._show_wallets(chat_id, identity)
            case None if page is not None and phase is Phase.AWAITING_WALLET_SELECTION:
                await self._show_wallets(chat_id, identity, page=page)
            case _:
                logger.info("stale_button", chat_id=chat_id, token=event.payload, phase=phase)
                self._sessions.clear(chat_id)
                await self._show_main_menu(chat_id, identity)
                return STALE_MENU_NOTICE
        return None

    async def _on_text(self, event: InboundEvent, identity: UserIdentity) -> None:
        chat_id = event.chat_id
        session = self._sessions.get(chat_id)
        match session.phase if session else Phase.IDLE:
            case Phase.AWAITING_PATTERN_VALUE:
                await self._start_generation(event, identity, session)  # type: ignore[arg-type]
            case Phase.AWAITING_WALLET_SELECTION:
                await self._select_wallet(event, identity)
            case Phase.AWAITING_PATTERN_CHOICE:
                await self._show(chat_id, screens.pattern_chooser())
            case Phase.GENERATING:
                logger.info("input_ignored_while_generating", chat_id=chat_id)
            case _:
                await self._show_main_menu(chat_id, identity)

    async def _start_generation(
        self, event: InboundEvent, identity: UserIdentity, session: ChatSession
    ) -> None:
        chat_id = event.chat_id
        kind = session.pending_pattern_kind or PatternKind.PREFIX
        try:
            pattern = validate_pattern(event.payload, self._max_pattern_length)
        except ValidationError as e:
            await self._show(chat_id, screens.pattern_prompt(kind, e.reason))
            return

        request_id = new_request_id()
        try:
            placeholder = await self._gateway.send_message(chat_id, screens.generating(kind, pattern))
        except TransportError as e:
            logger.warning("placeholder_send_failed", chat_id=chat_id, error=str(e))
        else:
            await self._tracker.consume_inbound_echo(chat_id, placeholder)

        task = self._spawn(
            self._generate(chat_id, identity, kind, pattern, request_id),
            name=f"generate-{request_id}",
        )
        self._sessions.set(
            chat_id,
            ChatSession(phase=Phase.GENERATING, request_id=request_id, task=task),
        )
        logger.info("generation_dispatched", chat_id=chat_id, request_id=request_id)

    async def _generate(
        self,
        chat_id: str,
        identity: UserIdentity,
        kind: PatternKind,
        pattern: str,
        request_id: str,
    ) -> None:
        try:
            key = await self._runner.generate(kind, pattern, request_id=request_id)
        except GenerationError as e:
            await self._finish(chat_id, request_id, screens.generation_failed(e))
            return
        except asyncio.CancelledError:
            logger.info("generation_abandoned", chat_id=chat_id, request_id=request_id)
            raise
        except Exception as e:
            logger.error("generation_crashed", chat_id=chat_id, request_id=request_id, error=str(e))
            failure = GenerationError(GenerationFailure.EXTERNAL_FAILURE, str(e))
            await self._finish(chat_id, request_id, screens.generation_failed(failure))
            return

        # Once a key exists it is persisted even if the chat gives up waiting for it.
        completion = self._spawn(
            self._complete(chat_id, identity, key, request_id),
            name=f"complete-{request_id}",
        )
        await asyncio.shield(completion)

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _complete(
        self, chat_id: str, identity: UserIdentity, key: GeneratedKey, request_id: str
    ) -> None:
        record = key.to_record()
        async with self._sessions.lock(chat_id):
            try:
                await self._store.append_key_record(identity.user_id, record, identity)
                saved = True
            except StorageError as e:
                logger.error("key_record_not_saved", chat_id=chat_id, error=str(e))
                saved = False

            if not self._owns(chat_id, request_id):
                logger.info("generation_result_not_shown", chat_id=chat_id, request_id=request_id)
                return
            self._sessions.clear(chat_id)
            try:
                await self._show(chat_id, screens.generation_result(record, saved=saved))
            except TransportError as e:
                logger.error("generation_result_send_failed", chat_id=chat_id, error=str(e))

    async def _finish(self, chat_id: str, request_id: str, message: OutgoingMessage) -> None:
        async with self._sessions.lock(chat_id):
            if not self._owns(chat_id, request_id):
                return
            self._sessions.clear(chat_id)
            try:
                await self._show(chat_id, message)
            except TransportError as e:
                logger.error("generation_failure_send_failed", chat_id=chat_id, error=str(e))

    def _owns(self, chat_id: str, request_id: str) -> bool:
        session = self._sessions.get(chat_id)
        return session is not None and session.request_id == request_id

    def _abandon(self, chat_id: str) -> None:
        """Return the chat to IDLE, cancelling its generation if one is running."""
        session = self._sessions.clear(chat_id)
        if session and session.task and not session.task.done():
            session.task.cancel()
            logger.info("generation_cancel_requested", chat_id=chat_id, request_id=session.request_id)

    async def _show_wallets(self, chat_id: str, identity: UserIdentity, page: int = 0) -> None:
        try:
            profile = await self._store.get(identity.user_id)
        except StorageError:
            self._sessions.clear(chat_id)
            await self._show(chat_id, screens.storage_failed())
            return

        wallets = profile.wallets if profile else []
        if not wallets:
            self._sessions.clear(chat_id)
            await self._show(chat_id, screens.no_wallets())
            return

        await self._list_wallets(chat_id, wallets, page)

    async def _list_wallets(
        self, chat_id: str, wallets: list[KeyRecord], page: int, problem: Optional[str] = None
    ) -> None:
        page = min(max(page, 0), screens.page_count(len(wallets)) - 1)
        await self._show(chat_id, screens.wallet_list(wallets, page, problem))
        self._sessions.set(chat_id, ChatSession(phase=Phase.AWAITING_WALLET_SELECTION, page=page))

    async def _select_wallet(self, event: InboundEvent, identity: UserIdentity) -> None:
        chat_id = event.chat_id
        try:
            profile = await self._store.get(identity.user_id)
        except StorageError:
            self._sessions.clear(chat_id)
            await self._show(chat_id, screens.storage_failed())
            return

        wallets = profile.wallets if profile else []
        if not wallets:
            self._sessions.clear(chat_id)
            await self._show(chat_id, screens.no_wallets())
            return

        try:
            number = parse_selection(event.payload, len(wallets))
        except ValidationError as e:
            session = self._sessions.get(chat_id)
            await self._list_wallets(chat_id, wallets, session.page if session else 0, e.reason)
            return

        self._sessions.clear(chat_id)
        await self._show(chat_id, screens.wallet_detail(number, wallets[number - 1]))
        # The detail stays in the chat; the next screen is sent below it.
        self._tracker.clear(chat_id)

    async def _show_main_menu(self, chat_id: str, identity: UserIdentity) -> None:
        await self._show(chat_id, screens.main_menu(identity.display_name))

    async def _show(self, chat_id: str, message: OutgoingMessage) -> None:
        """Replace the chat's screen, falling back to a short error screen if the send fails.

        The original :class:`SendError` is re-raised after the fallback, so callers that
        advance the session after showing a screen leave it untouched.
        """
        try:
            await self._tracker.replace(chat_id, message)
        except SendError as e:
            logger.error("screen_send_failed", chat_id=chat_id, length=len(message.text), error=str(e))
            if self._sessions.phase(chat_id) is not Phase.GENERATING:
                self._sessions.clear(chat_id)
            await self._tracker.replace(chat_id, screens.display_failed())
            raise

    async def _touch(self, identity: UserIdentity) -> None:
        try:
            await self._store.touch(identity.user_id, identity)
        except StorageError as e:
            logger.warning("interaction_touch_failed", user_id=identity.user_id, error=str(e))

    async def _delete_user_message(self, chat_id: str, message_ref: str) -> None:
        try:
            await self._gateway.delete_message(chat_id, message_ref)
        except TransportError as e:
            logger.debug("user_message_delete_failed", chat_id=chat_id, error=str(e))

    async def _answer(self, callback_id: str, notice: Optional[str]) -> None:
        try:
            await self._gateway.answer_callback(callback_id, notice)
        except TransportError as e:
            logger.debug("callback_answer_failed", callback_id=callback_id, error=str(e))
