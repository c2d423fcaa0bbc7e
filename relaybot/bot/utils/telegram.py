"""Telegram sending helpers."""

from __future__ import annotations

from typing import Any

from aiogram import Bot
from aiogram.exceptions import (
    TelegramAPIError,
    TelegramBadRequest,
    TelegramNetworkError,
    TelegramRetryAfter,
    TelegramServerError,
)
from aiogram.types import Message

from relaybot.logging import logger
from relaybot.services.exceptions import RecipientDeliveryFailed
from relaybot.utils.retry import retry_async

TELEGRAM_SEND_MAX_ATTEMPTS = 3
TELEGRAM_SEND_BASE_DELAY = 0.3
TRANSIENT_ERRORS = (TelegramNetworkError, TelegramRetryAfter, TelegramServerError)


async def answer_with_retry(message: Message, text: str, **kwargs: Any) -> Any:
    """Send a reply, retrying transient transport errors."""

    async def _send():
        return await message.answer(text, **kwargs)

    return await retry_async(
        _send,
        max_attempts=TELEGRAM_SEND_MAX_ATTEMPTS,
        base_delay=TELEGRAM_SEND_BASE_DELAY,
        retry_on=TRANSIENT_ERRORS,
        logger=logger,
        operation_name="telegram_answer",
    )


async def bot_send_with_retry(bot: Bot, *, chat_id: int, text: str, **kwargs: Any) -> Any:
    """Send a message via Bot, retrying transient transport errors."""

    async def _send():
        return await bot.send_message(chat_id=chat_id, text=text, **kwargs)

    return await retry_async(
        _send,
        max_attempts=TELEGRAM_SEND_MAX_ATTEMPTS,
        base_delay=TELEGRAM_SEND_BASE_DELAY,
        retry_on=TRANSIENT_ERRORS,
        logger=logger,
        operation_name="telegram_send_message",
    )


async def send_broadcast_message(bot: Bot, chat_id: int, text: str, *, timeout: int) -> None:
    """Single delivery attempt; broadcasts are at-most-once per recipient."""

    try:
        await bot.send_message(chat_id=chat_id, text=text, request_timeout=timeout)
    except TelegramAPIError as exc:
        raise RecipientDeliveryFailed(chat_id, exc.message) from exc


async def edit_or_answer(bot: Bot, status: Message, reply_to: Message, text: str) -> None:
    """Edit a status message in place; post a fresh reply when it can no longer be edited."""

    try:
        await bot.edit_message_text(text=text, chat_id=status.chat.id, message_id=status.message_id)
    except TelegramBadRequest as exc:
        logger.info("status_message_not_edited", message_id=status.message_id, error=exc.message)
        await answer_with_retry(reply_to, text)


__all__ = [
    "answer_with_retry",
    "bot_send_with_retry",
    "edit_or_answer",
    "send_broadcast_message",
]
