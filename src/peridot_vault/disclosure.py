"""Timed redaction of Telegram messages that reveal key material.

Deletion is best effort: the user may already have deleted the message or
blocked the bot, so Telegram errors are logged and dropped.
"""

import asyncio
import logging
from typing import Optional

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError

from peridot_vault.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_DISCLOSURE_TTL = 60.0


def format_private_key_message(private_key: str, ttl: float = DEFAULT_DISCLOSURE_TTL) -> str:
    """HTML message shown when a private key is exported."""
    return (
        f"<b>Your Private Key</b>\n\n"
        f"<code>{private_key}</code>\n\n"
        f"<b>SECURITY WARNING:</b>\n"
        f"• Never share this private key with anyone\n"
        f"• Store it securely offline\n"
        f"• Anyone with this key can access your wallet\n\n"
        f"<b>This message will be deleted in {int(ttl)} seconds.</b>"
    )


def format_mnemonic_message(mnemonic: str, ttl: float = DEFAULT_DISCLOSURE_TTL) -> str:
    """HTML message shown when a recovery phrase is exported."""
    return (
        f"<b>Your Recovery Phrase</b>\n\n"
        f"<code>{mnemonic}</code>\n\n"
        f"<b>SECURITY WARNING:</b>\n"
        f"• Never share this phrase with anyone\n"
        f"• Store it securely offline\n"
        f"• Anyone with this phrase can access your wallet\n\n"
        f"<b>This message will be deleted in {int(ttl)} seconds.</b>"
    )


class DisclosureRedactor:
    """Sends secret-bearing messages and deletes them after a delay."""

    def __init__(self, bot: Bot, ttl: float = DEFAULT_DISCLOSURE_TTL):
        """Initialize with a bot instance.

        Args:
            bot: aiogram Bot used to send and delete messages
            ttl: Seconds a disclosure message stays visible
        """
        self._bot = bot
        self.ttl = ttl
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, bot: Bot, settings: Settings) -> "DisclosureRedactor":
        """Build a redactor using the configured disclosure TTL."""
        return cls(bot, ttl=settings.disclosure_ttl_seconds)

    @property
    def pending(self) -> int:
        """Number of scheduled deletions not yet run."""
        return len(self._tasks)

    async def send_secret(
        self,
        chat_id: int,
        text: str,
        parse_mode: Optional[str] = "HTML",
    ) -> int:
        """Send a message and schedule its deletion.

        Returns:
            Telegram message ID of the sent message
        """
        message = await self._bot.send_message(
            chat_id=chat_id,
            text=text,
            parse_mode=parse_mode,
        )
        self.schedule(chat_id, message.message_id)
        return message.message_id

    def schedule(
        self,
        chat_id: int,
        message_id: int,
        delay: Optional[float] = None,
    ) -> asyncio.Task:
        """Schedule deletion of an already sent message."""
        task = asyncio.create_task(
            self._delete_later(chat_id, message_id, self.ttl if delay is None else delay)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _delete_later(self, chat_id: int, message_id: int, delay: float) -> bool:
        await asyncio.sleep(delay)
        try:
            await self._bot.delete_message(chat_id=chat_id, message_id=message_id)
            logger.debug(f"Redacted disclosure message {message_id} in chat {chat_id}")
            return True
        except TelegramAPIError as e:
            logger.debug(f"Could not redact message {message_id} in chat {chat_id}: {e}")
            return False

    async def cancel_all(self) -> None:
        """Cancel pending deletions (call on shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
