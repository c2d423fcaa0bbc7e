"""Router-level gate for admin and owner commands."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from relaybot.bot.utils.telegram import answer_with_retry
from relaybot.i18n import I18nService
from relaybot.logging import logger
from relaybot.services.event_log import EventLog
from relaybot.services.exceptions import PermissionDenied
from relaybot.services.permissions import PermissionClassifier, Role

DENIAL_KEYS = {
    Role.ADMIN: "access.denied",
    Role.OWNER: "access.owner_only",
}


class PermissionMiddleware(BaseMiddleware):
    def __init__(
        self,
        classifier: PermissionClassifier,
        required: Role = Role.ADMIN,
        *,
        event_log: EventLog | None = None,
        i18n: I18nService | None = None,
    ) -> None:
        self.classifier = classifier
        self.required = required
        self.event_log = event_log
        self.i18n = i18n or I18nService()

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        from_user = getattr(event, "from_user", None)
        if from_user is None:
            return None

        try:
            data["permissions"] = self.classifier.require(from_user.id, self.required)
        except PermissionDenied:
            await self._deny(event, from_user)
            return None
        return await handler(event, data)

    async def _deny(self, event: TelegramObject, from_user: Any) -> None:
        command = getattr(event, "text", None) or "Unknown"
        logger.warning(
            "unauthorized_access",
            user_id=from_user.id,
            required=self.required.value,
            command=command,
        )
        if self.event_log is not None:
            self.event_log.append(
                "unauthorized_access",
                user_id=from_user.id,
                username=from_user.username or "Unknown",
                command=command,
                required=self.required.value,
            )
        text = self.i18n.gettext(
            DENIAL_KEYS.get(self.required, "access.denied"),
            locale=from_user.language_code,
        )
        await answer_with_retry(event, text)


__all__ = ["PermissionMiddleware"]
