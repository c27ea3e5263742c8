"""Telegram chat gateway using python-telegram-bot v21+."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import MessageLimit, ParseMode
from telegram.error import BadRequest, TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    ContextTypes,
    MessageHandler as TGMessageHandler,
    filters,
)

from solsmith.core.types import Platform
from solsmith.errors import MessageNotFoundError, SendError, TransportError
from solsmith.log import get_logger
from solsmith.messenger.base import ChatGateway
from solsmith.messenger.models import EventKind, InboundEvent, OutgoingMessage, Sender

logger = get_logger(__name__)


def _parse_mode(value: Optional[str]) -> Optional[str]:
    if value == "markdown":
        return ParseMode.MARKDOWN
    if value == "html":
        return ParseMode.HTML
    return None


def _reply_markup(message: OutgoingMessage) -> InlineKeyboardMarkup | None:
    if not message.buttons:
        return None
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton(b.label, callback_data=b.token) for b in row]
            for row in message.buttons
        ]
    )


def _is_not_found(error: BadRequest) -> bool:
    return "not found" in error.message.lower()


def _command_name(text: str) -> str:
    """'/start@SolSmithBot arg' -> 'start'"""
    head = text.split(maxsplit=1)[0]
    return head.lstrip("/").split("@", 1)[0].lower()


class TelegramAdapter(ChatGateway):
    """Telegram adapter delivering commands, free text and button presses."""

    def __init__(self, config: dict):
        super().__init__(config)
        self._app: Application | None = None  # type: ignore[type-arg]

    @property
    def platform_name(self) -> str:
        return Platform.TELEGRAM

    async def start(self) -> None:
        token = self.config.get("token", "")
        if not token:
            raise ValueError("Telegram bot token not configured")

        # Per-chat ordering is enforced by the session registry, so different chats may
        # be processed concurrently.
        self._app = Application.builder().token(token).concurrent_updates(True).build()

        self._app.add_handler(TGMessageHandler(filters.COMMAND, self._on_command))
        self._app.add_handler(
            TGMessageHandler(filters.TEXT & ~filters.COMMAND, self._on_text)
        )
        self._app.add_handler(CallbackQueryHandler(self._on_callback))
        self._app.add_error_handler(self._on_error)

        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(  # type: ignore[union-attr]
            drop_pending_updates=self.config.get("drop_pending_updates", True)
        )
        logger.info("telegram_adapter_started", bot=self._app.bot.username)

    async def stop(self) -> None:
        if self._app:
            await self._app.updater.stop()  # type: ignore[union-attr]
            await self._app.stop()
            await self._app.shutdown()
            self._app = None
            logger.info("telegram_adapter_stopped")

    @property
    def _bot(self) -> Any:
        if not self._app:
            raise TransportError("Telegram adapter is not started")
        return self._app.bot

    async def send_message(self, chat_id: str, message: OutgoingMessage) -> str:
        if len(message.text) > MessageLimit.MAX_TEXT_LENGTH:
            raise SendError(
                f"send to chat {chat_id} refused: {len(message.text)} characters "
                f"exceeds {MessageLimit.MAX_TEXT_LENGTH}"
            )
        try:
            sent = await self._bot.send_message(
                chat_id=int(chat_id),
                text=message.text,
                parse_mode=_parse_mode(message.parse_mode),
                reply_markup=_reply_markup(message),
            )
        except TelegramError as e:
            raise SendError(f"send to chat {chat_id} failed: {e}") from e
        return str(sent.message_id)

    async def edit_message(self, chat_id: str, message_ref: str, message: OutgoingMessage) -> None:
        try:
            await self._bot.edit_message_text(
                chat_id=int(chat_id),
                message_id=int(message_ref),
                text=message.text,
                parse_mode=_parse_mode(message.parse_mode),
                reply_markup=_reply_markup(message),
            )
        except BadRequest as e:
            if "not modified" in e.message.lower():
                return
            if _is_not_found(e):
                raise MessageNotFoundError(str(e)) from e
            raise TransportError(f"edit of message {message_ref} failed: {e}") from e
        except TelegramError as e:
            raise TransportError(f"edit of message {message_ref} failed: {e}") from e

    async def delete_message(self, chat_id: str, message_ref: str) -> None:
        try:
            await self._bot.delete_message(chat_id=int(chat_id), message_id=int(message_ref))
        except BadRequest as e:
            if _is_not_found(e):
                raise MessageNotFoundError(str(e)) from e
            raise TransportError(f"delete of message {message_ref} failed: {e}") from e
        except TelegramError as e:
            raise TransportError(f"delete of message {message_ref} failed: {e}") from e

    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> None:
        try:
            await self._bot.answer_callback_query(callback_query_id=callback_id, text=text)
        except TelegramError as e:
            raise TransportError(f"answer of callback {callback_id} failed: {e}") from e

    async def _on_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        msg = update.effective_message
        if not msg or not msg.text:
            return
        await self._dispatch(update, EventKind.COMMAND, _command_name(msg.text))

    async def _on_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        msg = update.effective_message
        if not msg or not msg.text:
            return
        await self._dispatch(update, EventKind.TEXT, msg.text)

    async def _on_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if not query:
            return
        await self._dispatch(update, EventKind.BUTTON, query.data or "", callback_id=query.id)

    async def _dispatch(
        self,
        update: Update,
        kind: EventKind,
        payload: str,
        callback_id: Optional[str] = None,
    ) -> None:
        if not self._event_callback:
            return
        user = update.effective_user
        chat = update.effective_chat
        if not user or not chat or user.is_bot:
            return

        msg = update.effective_message
        event = InboundEvent(
            platform=Platform.TELEGRAM,
            kind=kind,
            chat_id=str(chat.id),
            sender=Sender(
                user_id=str(user.id),
                display_name=user.first_name or user.full_name or "User",
                username=user.username,
                language_code=user.language_code,
            ),
            payload=payload,
            timestamp=(msg.date if msg and kind is not EventKind.BUTTON else None)
            or datetime.now(timezone.utc),
            message_ref=str(msg.message_id) if msg and kind is not EventKind.BUTTON else None,
            callback_id=callback_id,
        )

        try:
            await self._event_callback(event)
        except Exception as e:
            logger.error("telegram_handler_error", error=str(e), chat_id=event.chat_id, kind=kind)

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("telegram_update_error", error=str(context.error))
