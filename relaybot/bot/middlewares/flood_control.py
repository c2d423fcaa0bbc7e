"""Reject rapid-fire updates before they reach a handler."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import CallbackQuery, TelegramObject

from relaybot.bot.utils.telegram import answer_with_retry
from relaybot.config import BotSettings, get_settings
from relaybot.i18n import I18nService
from relaybot.services.flood_control import AdmissionDecision, FloodController
from relaybot.services.permissions import PermissionClassifier


class FloodControlMiddleware(BaseMiddleware):
    def __init__(
        self,
        controller: FloodController,
        classifier: PermissionClassifier,
        *,
        i18n: I18nService | None = None,
        settings: BotSettings | None = None,
    ) -> None:
        self.controller = controller
        self.classifier = classifier
        self.settings = settings or get_settings()
        self.i18n = i18n or I18nService(default_locale=self.settings.default_language)

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        from_user = getattr(event, "from_user", None)
        if from_user is None:
            return await handler(event, data)

        decision = await self.controller.admit(
            from_user.id,
            is_exempt=self.classifier.is_exempt(from_user.id),
        )
        if not decision.allowed:
            await self._notify_limit(event, decision, from_user.language_code)
            return None
        return await handler(event, data)

    async def _notify_limit(
        self,
        event: TelegramObject,
        decision: AdmissionDecision,
        language_code: str | None,
    ) -> None:
        locale = language_code or self.settings.default_language
        if isinstance(event, CallbackQuery):
            text = self.i18n.gettext(
                "flood.cooldown_alert", locale=locale, seconds=decision.retry_after_seconds
            )
            await event.answer(text, show_alert=True)
            return
        text = self.i18n.gettext(
            "flood.cooldown",
            locale=locale,
            seconds=decision.retry_after_seconds,
            max_requests=self.controller.max_requests,
            window_seconds=f"{self.controller.window_ms / 1000:g}",
        )
        await answer_with_retry(event, text)


__all__ = ["FloodControlMiddleware"]
