"""Keep the user registry current and audit every command."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from relaybot.services.event_log import EventLog
from relaybot.services.users import UserDirectory


class UserRegistryMiddleware(BaseMiddleware):
    def __init__(self, event_log: EventLog | None = None) -> None:
        self.event_log = event_log

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        from_user = getattr(event, "from_user", None)
        users: UserDirectory | None = data.get("users")
        if from_user is None or users is None or getattr(from_user, "is_bot", False):
            return await handler(event, data)

        data["db_user"] = await users.upsert_user(
            from_user.id,
            username=from_user.username,
            first_name=from_user.first_name,
            last_name=from_user.last_name,
            language_code=from_user.language_code,
        )

        text = getattr(event, "text", None)
        if isinstance(text, str) and text.startswith("/"):
            await users.increment_command_count(from_user.id)
            if self.event_log is not None:
                chat = getattr(event, "chat", None)
                self.event_log.append(
                    "command",
                    user_id=from_user.id,
                    username=from_user.username or "Unknown",
                    command=text,
                    chat_type=getattr(chat, "type", None),
                )
        # Release the write lock before long-running handlers such as /broadcast.
        await users.session.commit()
        return await handler(event, data)


__all__ = ["UserRegistryMiddleware"]
