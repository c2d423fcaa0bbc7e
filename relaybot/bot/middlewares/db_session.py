"""Middleware that opens one AsyncSession per update and exposes the user registry."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from relaybot.config import BotSettings, get_settings
from relaybot.db.session import Database
from relaybot.services.users import UserDirectory


class DbSessionMiddleware(BaseMiddleware):
    def __init__(self, database: Database, settings: BotSettings | None = None) -> None:
        super().__init__()
        self.database = database
        self.settings = settings or get_settings()

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        async with self.database.session() as session:
            data["session"] = session
            data["users"] = UserDirectory(session, default_language=self.settings.default_language)
            result = await handler(event, data)
            await session.commit()
            return result
