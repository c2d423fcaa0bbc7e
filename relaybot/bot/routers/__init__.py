"""Explicit command registry and router assembly."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.types import BotCommand

from relaybot.bot.middlewares.permissions import PermissionMiddleware
from relaybot.bot.routers import admins, users
from relaybot.i18n import I18nService
from relaybot.services.event_log import EventLog
from relaybot.services.permissions import PermissionClassifier, Role


@dataclass(frozen=True)
class CommandSpec:
    name: str
    description: str
    handler: Callable[..., Awaitable[Any]]
    scope: Role = Role.USER
    usage: str | None = None


COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("start", "Start the bot and show welcome message", users.handle_start),
    CommandSpec("help", "Show bot commands and usage information", users.handle_help),
    CommandSpec(
        "ytmp4",
        "Download YouTube video as MP4",
        users.handle_ytmp4,
        usage="/ytmp4 <YouTube URL>",
    ),
    CommandSpec(
        "broadcast",
        "Send a message to all bot users (Admin only)",
        admins.handle_broadcast,
        Role.ADMIN,
        usage="/broadcast <message>",
    ),
    CommandSpec("stats", "Show user and event statistics (Admin only)", admins.handle_stats, Role.ADMIN),
    CommandSpec("shutdown", "Shutdown the bot gracefully (Owner only)", admins.handle_shutdown, Role.OWNER),
)


def setup_routers(
    commands: Sequence[CommandSpec] = COMMANDS,
    *,
    classifier: PermissionClassifier,
    event_log: EventLog | None = None,
    i18n: I18nService | None = None,
) -> Router:
    """One router per scope; admin and owner routers check permissions before their handlers."""

    scoped = {role: Router(name=f"{role.value}_commands") for role in Role}
    for role in (Role.ADMIN, Role.OWNER):
        scoped[role].message.middleware(
            PermissionMiddleware(classifier, role, event_log=event_log, i18n=i18n)
        )

    seen: set[str] = set()
    for entry in commands:
        if entry.name in seen:
            raise ValueError(f"Command /{entry.name} registered twice")
        seen.add(entry.name)
        scoped[entry.scope].message.register(entry.handler, Command(entry.name))

    for callback_data, handler in users.CALLBACKS:
        scoped[Role.USER].callback_query.register(handler, F.data == callback_data)

    router = Router(name="commands")
    for role in (Role.USER, Role.ADMIN, Role.OWNER):
        router.include_router(scoped[role])
    return router


def bot_commands(commands: Sequence[CommandSpec] = COMMANDS) -> list[BotCommand]:
    """Public command menu; admin commands stay out of it."""

    return [
        BotCommand(command=entry.name, description=entry.description)
        for entry in commands
        if entry.scope is Role.USER
    ]


__all__ = ["COMMANDS", "CommandSpec", "bot_commands", "setup_routers"]
