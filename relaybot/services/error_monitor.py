"""Record unhandled handler errors and notify the bot owner."""

from __future__ import annotations

import traceback
from typing import Any

from aiogram import Bot
from aiogram.dispatcher.event.bases import UNHANDLED
from aiogram.types import ErrorEvent, Update, User

from relaybot.bot.utils.telegram import bot_send_with_retry
from relaybot.config import BotSettings
from relaybot.logging import logger
from relaybot.services.event_log import EventLog

# Telegram messages are limited to 4096 characters.
TELEGRAM_MESSAGE_LIMIT = 3900
TRACEBACK_CHAR_LIMIT = 1800

ACTOR_FIELDS = (
    "message",
    "edited_message",
    "callback_query",
    "inline_query",
    "my_chat_member",
    "chat_member",
)


class ErrorMonitor:
    """Async callable plugged into aiogram error observer."""

    def __init__(self, settings: BotSettings, event_log: EventLog | None = None) -> None:
        self._settings = settings
        self._event_log = event_log

    async def handle_error(self, event: ErrorEvent, bot: Bot):
        exception = event.exception
        update_id = getattr(event.update, "update_id", None)
        user = self._locate_user(event.update)
        logger.error(
            "bot_error_captured",
            exception_type=exception.__class__.__name__,
            exception=str(exception),
            update_id=update_id,
            user_id=getattr(user, "id", None),
        )
        if self._event_log is not None:
            self._event_log.append(
                "error",
                update_id=update_id,
                user_id=getattr(user, "id", None),
                username=getattr(user, "username", None),
                error=str(exception),
                exception_type=exception.__class__.__name__,
            )

        owner_id = self._settings.owner_id
        if owner_id is None:
            return UNHANDLED
        try:
            await bot_send_with_retry(
                bot,
                chat_id=owner_id,
                text=self._build_message(event, user),
                parse_mode=None,
            )
        except Exception:
            logger.exception("error_monitor_notification_failed", update_id=update_id)
        return UNHANDLED

    def _build_message(self, event: ErrorEvent, user: User | None) -> str:
        exception = event.exception
        lines = [
            "BOT ERROR DETECTED",
            f"Environment: {self._settings.environment}",
            f"Exception: {exception.__class__.__name__}: {exception}",
            f"Update ID: {getattr(event.update, 'update_id', 'unknown')}",
            f"User: {self._format_user(user)}",
        ]
        trace = "".join(traceback.format_exception(exception.__class__, exception, exception.__traceback__))
        if trace.strip():
            lines.extend(["", "Traceback:", self._truncate(trace, TRACEBACK_CHAR_LIMIT)])
        return self._truncate("\n".join(lines), TELEGRAM_MESSAGE_LIMIT)

    @staticmethod
    def _locate_user(update: Update | None) -> Any | None:
        if update is None:
            return None
        for field in ACTOR_FIELDS:
            source = getattr(update, field, None)
            if source is not None:
                return getattr(source, "from_user", None)
        return None

    @staticmethod
    def _format_user(user: User | None) -> str:
        if user is None:
            return "unknown"
        segments = [str(user.id)]
        full_name = " ".join(part for part in (user.first_name, user.last_name) if part)
        if full_name:
            segments.append(full_name)
        if user.username:
            segments.append(f"@{user.username}")
        return " | ".join(segments)

    @staticmethod
    def _truncate(value: str, limit: int) -> str:
        value = value.strip()
        if len(value) <= limit:
            return value
        return f"{value[: limit - 15].rstrip()}\n...[truncated]"


__all__ = ["ErrorMonitor"]
