"""Startup/shutdown hooks and owner-initiated shutdown."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Sequence

from aiogram import Bot, Dispatcher
from aiogram.types import BotCommand

from relaybot.logging import logger
from relaybot.services.event_log import EventLog
from relaybot.services.flood_control import FloodController


class Lifecycle:
    """Owns the background tasks that live as long as polling does."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        flood_controller: FloodController,
        event_log: EventLog,
        commands: Sequence[BotCommand] = (),
        grace_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.dispatcher = dispatcher
        self.flood_controller = flood_controller
        self.event_log = event_log
        self.commands = list(commands)
        self.grace_seconds = grace_seconds
        self._sleep = sleep
        self._shutdown_task: asyncio.Task[None] | None = None

    def register(self) -> None:
        self.dispatcher.startup.register(self.on_startup)
        self.dispatcher.shutdown.register(self.on_shutdown)

    async def on_startup(self, bot: Bot) -> None:
        self.event_log.start()
        self.flood_controller.start()
        if self.commands:
            try:
                await bot.set_my_commands(self.commands)
            except Exception as exc:
                logger.warning("bot_commands_not_set", error=str(exc))
        self.event_log.append("system", message="Bot started successfully")
        logger.info("bot_started", commands=[command.command for command in self.commands])

    async def on_shutdown(self) -> None:
        self.event_log.append("system", message="Bot shutdown initiated")
        await self.flood_controller.stop()
        await self.event_log.aclose(self.grace_seconds)
        logger.info("bot_stopped")

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_task is not None

    def request_shutdown(self, *, initiated_by: int | None = None) -> asyncio.Task[None]:
        """Stop polling after the grace period so pending replies can go out."""

        if self._shutdown_task is None:
            logger.warning("bot_shutdown_requested", initiated_by=initiated_by)
            self._shutdown_task = asyncio.create_task(self._stop_after_grace(), name="owner-shutdown")
        return self._shutdown_task

    async def _stop_after_grace(self) -> None:
        await self._sleep(self.grace_seconds)
        try:
            await self.dispatcher.stop_polling()
        except RuntimeError as exc:
            logger.warning("bot_shutdown_without_polling", error=str(exc))


__all__ = ["Lifecycle"]
