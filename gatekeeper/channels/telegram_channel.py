"""Telegram channel adapter - thin transport layer only.

This is just a transport layer that:
1. Long-polls Telegram for text commands and button callbacks
2. Hands them to the CommandProcessor as TextCommand / Callback updates
3. Sends approval requests, edits and replies back to Telegram

ALL admission logic lives in the core package - this module only speaks
the Bot API.
"""

import logging
from typing import List, Optional

import telegram
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, ReplyKeyboardMarkup
from telegram.error import BadRequest, TelegramError

from ..core.errors import TransientIOError, ValidationError
from ..core.types import Callback, TextCommand, Update
from .base import Button, Notifier

logger = logging.getLogger(__name__)

# Persistent keyboard shown under command replies
REPLY_KEYBOARD = [["Status", "DStatus", "Log"], ["Enable", "Disable", "Sync"]]


class TelegramChannel(Notifier):
    """Telegram Bot API channel: notifications out, commands and callbacks in."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        poll_timeout: int = 30,
        bot: Optional[telegram.Bot] = None
    ):
        """Initialize Telegram channel.

        Args:
            bot_token: Telegram bot token
            chat_id: Authorized chat ID (the only chat obeyed and notified)
            poll_timeout: Long-poll wait in seconds
            bot: Preconstructed Bot (tests)
        """
        self.bot_token = bot_token
        self.chat_id = str(chat_id)
        self.poll_timeout = poll_timeout
        self.bot = bot or telegram.Bot(token=bot_token)
        self._offset: Optional[int] = None
        logger.info("Telegram channel initialized")

    async def start(self):
        """Open the HTTP session and verify the token."""
        try:
            await self.bot.initialize()
        except TelegramError as e:
            raise TransientIOError(f"Telegram unreachable: {e}") from e

    async def shutdown(self):
        try:
            await self.bot.shutdown()
        except TelegramError as e:
            logger.debug(f"Telegram shutdown: {e}")

    async def send_message(
        self,
        text: str,
        buttons: Optional[List[Button]] = None,
        reply_keyboard: bool = False
    ) -> Optional[int]:
        """Send message to the authorized chat.

        Args:
            text: Markdown text
            buttons: Inline buttons as (label, callback payload)
            reply_keyboard: Attach the persistent command keyboard

        Returns:
            Telegram message id
        """
        markup = None
        if buttons:
            markup = InlineKeyboardMarkup(
                [[InlineKeyboardButton(label, callback_data=payload) for label, payload in buttons]]
            )
        elif reply_keyboard:
            markup = ReplyKeyboardMarkup(REPLY_KEYBOARD, resize_keyboard=True)

        message = await self._with_markdown_fallback(
            self.bot.send_message,
            chat_id=self.chat_id,
            text=text,
            reply_markup=markup,
        )
        return message.message_id if message else None

    async def edit_message(self, message_id: int, text: str):
        """Replace a message's text; inline buttons are dropped."""
        await self._with_markdown_fallback(
            self.bot.edit_message_text,
            chat_id=self.chat_id,
            message_id=message_id,
            text=text,
        )

    async def answer_callback(self, callback_id: Optional[str], text: str = ""):
        """Stop the button spinner, showing text as a toast."""
        if not callback_id:
            return
        try:
            await self.bot.answer_callback_query(callback_query_id=callback_id, text=text[:200])
        except TelegramError as e:
            logger.debug(f"Callback answer skipped: {e}")

    async def reply(self, update: Update, text: str):
        """Deliver a CommandProcessor reply for an update."""
        if isinstance(update, Callback):
            await self.answer_callback(update.callback_id, text)
        else:
            await self.send_message(text, reply_keyboard=True)

    async def _with_markdown_fallback(self, method, **kwargs):
        try:
            return await method(parse_mode="Markdown", **kwargs)
        except BadRequest as e:
            if "parse" not in str(e).lower():
                raise TransientIOError(f"Telegram rejected request: {e}") from e
            logger.warning(f"Markdown rejected, retrying as plain text: {e}")
        except TelegramError as e:
            raise TransientIOError(f"Telegram request failed: {e}") from e

        try:
            return await method(parse_mode=None, **kwargs)
        except TelegramError as e:
            raise TransientIOError(f"Telegram request failed (plain text): {e}") from e

    async def poll_updates(self) -> List[Update]:
        """One long-poll round. Returns authorized updates in arrival order."""
        try:
            raw_updates = await self.bot.get_updates(
                offset=self._offset,
                timeout=self.poll_timeout,
                allowed_updates=["message", "callback_query"],
            )
        except TelegramError as e:
            raise TransientIOError(f"getUpdates failed: {e}") from e

        updates: List[Update] = []
        for raw in raw_updates:
            self._offset = raw.update_id + 1
            update = self._parse_update(raw)
            if update is not None:
                updates.append(update)
        return updates

    def _parse_update(self, raw: telegram.Update) -> Optional[Update]:
        query = raw.callback_query
        if query is not None:
            message = query.message
            from_chat_id = str(message.chat.id) if message else ""
            if from_chat_id != self.chat_id:
                logger.warning(f"Unauthorized callback from chat {from_chat_id}")
                return None
            try:
                return Callback.from_payload(
                    query.data or "",
                    message_id=message.message_id,
                    callback_id=query.id,
                )
            except ValidationError as e:
                logger.warning(f"Ignoring callback: {e}")
                return None

        message = raw.message
        if message is None or not message.text:
            return None
        from_chat_id = str(message.chat.id)
        if from_chat_id != self.chat_id:
            logger.warning(f"Unauthorized: {from_chat_id}")
            return None
        return TextCommand(text=message.text)
