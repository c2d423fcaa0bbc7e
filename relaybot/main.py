"""Application entrypoint."""

from __future__ import annotations

import asyncio

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.client.session.aiohttp import AiohttpSession
from aiogram.enums import ParseMode

from relaybot.bot.middlewares import (
    DbSessionMiddleware,
    FloodControlMiddleware,
    UserRegistryMiddleware,
)
from relaybot.bot.routers import COMMANDS, bot_commands, setup_routers
from relaybot.config import get_settings
from relaybot.db.session import Database
from relaybot.i18n import I18nService
from relaybot.logging import configure_logging, logger
from relaybot.services.broadcast import BroadcastDispatcher
from relaybot.services.error_monitor import ErrorMonitor
from relaybot.services.event_log import EventLog
from relaybot.services.flood_control import FloodController
from relaybot.services.lifecycle import Lifecycle
from relaybot.services.permissions import PermissionClassifier


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)

    session = (
        AiohttpSession(proxy=settings.telegram_proxy) if settings.telegram_proxy else None
    )
    bot = Bot(
        token=settings.telegram_token.get_secret_value(),
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
        session=session,
    )

    database = Database(settings=settings)
    await database.create_schema()

    event_log = EventLog.from_settings(database, settings)
    i18n = I18nService(default_locale=settings.default_language)
    classifier = PermissionClassifier.from_settings(settings)
    flood_controller = FloodController.from_settings(settings, event_log=event_log)
    # Raises ConfigurationInvalid before polling starts.
    broadcaster = BroadcastDispatcher.from_settings(settings, event_log=event_log)

    dp = Dispatcher()
    dp.include_router(setup_routers(COMMANDS, classifier=classifier, event_log=event_log, i18n=i18n))
    error_monitor = ErrorMonitor(settings=settings, event_log=event_log)
    dp.errors.register(error_monitor.handle_error)

    lifecycle = Lifecycle(
        dp,
        flood_controller=flood_controller,
        event_log=event_log,
        commands=bot_commands(COMMANDS),
        grace_seconds=settings.shutdown_grace_seconds,
    )
    lifecycle.register()

    dp.update.outer_middleware(DbSessionMiddleware(database, settings))
    flood_middleware = FloodControlMiddleware(flood_controller, classifier, i18n=i18n, settings=settings)
    registry_middleware = UserRegistryMiddleware(event_log)

    dp.message.middleware(flood_middleware)
    dp.message.middleware(registry_middleware)

    dp.callback_query.middleware(flood_middleware)
    dp.callback_query.middleware(registry_middleware)

    logger.info(
        "bot_starting",
        environment=settings.environment,
        admins=len(classifier.admin_ids),
        owner_configured=settings.owner_id is not None,
    )
    try:
        await dp.start_polling(
            bot,
            settings=settings,
            i18n=i18n,
            classifier=classifier,
            broadcaster=broadcaster,
            event_log=event_log,
            lifecycle=lifecycle,
        )
    finally:
        await database.dispose()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
