"""Tests for timed redaction of disclosure messages."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiogram.exceptions import TelegramBadRequest

from peridot_vault.config import Settings
from peridot_vault.disclosure import (
    DEFAULT_DISCLOSURE_TTL,
    DisclosureRedactor,
    format_mnemonic_message,
    format_private_key_message,
)


@pytest.fixture
def bot():
    """Mock aiogram Bot."""
    bot = MagicMock()
    bot.send_message = AsyncMock(return_value=MagicMock(message_id=42))
    bot.delete_message = AsyncMock(return_value=True)
    return bot


class TestFormatting:
    def test_private_key_message(self):
        text = format_private_key_message("0xabc", ttl=60)

        assert "<code>0xabc</code>" in text
        assert "deleted in 60 seconds" in text

    def test_mnemonic_message(self):
        text = format_mnemonic_message("word " * 11 + "word", ttl=30.0)

        assert "Recovery Phrase" in text
        assert "deleted in 30 seconds" in text


class TestDisclosureRedactor:
    """Sending and deleting secret-bearing messages."""

    @pytest.mark.asyncio
    async def test_send_secret_schedules_deletion(self, bot):
        redactor = DisclosureRedactor(bot, ttl=0.01)

        message_id = await redactor.send_secret(123, "secret")

        assert message_id == 42
        bot.send_message.assert_awaited_once_with(chat_id=123, text="secret", parse_mode="HTML")
        assert redactor.pending == 1

        await asyncio.sleep(0.05)

        bot.delete_message.assert_awaited_once_with(chat_id=123, message_id=42)
        assert redactor.pending == 0

    @pytest.mark.asyncio
    async def test_schedule_with_explicit_delay(self, bot):
        redactor = DisclosureRedactor(bot, ttl=3600)

        task = redactor.schedule(123, 7, delay=0)

        assert await task is True
        bot.delete_message.assert_awaited_once_with(chat_id=123, message_id=7)

    @pytest.mark.asyncio
    async def test_telegram_error_is_swallowed(self, bot):
        """Message already deleted by the user."""
        bot.delete_message.side_effect = TelegramBadRequest(
            method=MagicMock(), message="message to delete not found"
        )
        redactor = DisclosureRedactor(bot, ttl=0)

        task = redactor.schedule(123, 42)

        assert await task is False

    @pytest.mark.asyncio
    async def test_cancel_all(self, bot):
        redactor = DisclosureRedactor(bot, ttl=3600)
        redactor.schedule(1, 1)
        redactor.schedule(2, 2)

        await redactor.cancel_all()

        assert redactor.pending == 0
        bot.delete_message.assert_not_awaited()

    def test_from_settings_uses_configured_ttl(self, bot):
        redactor = DisclosureRedactor.from_settings(bot, Settings(disclosure_ttl_seconds=15))

        assert redactor.ttl == 15
        assert Settings().disclosure_ttl_seconds == DEFAULT_DISCLOSURE_TTL

    @pytest.mark.asyncio
    async def test_from_settings_drives_deletion(self, bot):
        redactor = DisclosureRedactor.from_settings(bot, Settings(disclosure_ttl_seconds=0.01))

        await redactor.send_secret(123, "secret")
        await asyncio.sleep(0.05)

        bot.delete_message.assert_awaited_once_with(chat_id=123, message_id=42)
