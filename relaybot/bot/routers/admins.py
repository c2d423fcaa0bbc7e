"""Admin and owner commands. Access is checked by the router's PermissionMiddleware."""

from __future__ import annotations

from aiogram import Bot
from aiogram.types import Message
from aiogram.utils.text_decorations import html_decoration

from relaybot.bot.routers.users import command_argument, resolve_locale
from relaybot.bot.utils.telegram import answer_with_retry, edit_or_answer, send_broadcast_message
from relaybot.config import BotSettings
from relaybot.i18n import I18nService
from relaybot.logging import logger
from relaybot.services.broadcast import BroadcastDispatcher, BroadcastProgress
from relaybot.services.event_log import EventLog
from relaybot.services.lifecycle import Lifecycle
from relaybot.services.users import UserDirectory
from relaybot.utils.time import utc_now

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M UTC"


async def handle_broadcast(
    message: Message,
    bot: Bot,
    users: UserDirectory,
    broadcaster: BroadcastDispatcher,
    i18n: I18nService,
    settings: BotSettings,
    event_log: EventLog,
) -> None:
    locale = resolve_locale(message, settings)
    admin = message.from_user
    text = command_argument(message.text)
    if not text:
        await answer_with_retry(message, i18n.gettext("broadcast.usage", locale=locale))
        return
    # Replies and deliveries use HTML parse mode.
    quoted = html_decoration.quote(text)

    event_log.append(
        "admin_command",
        command="/broadcast",
        user_id=admin.id,
        username=admin.username or "Unknown",
        message_length=len(text),
    )

    recipients = [record.telegram_id for record in await users.list_all_users()]
    if not recipients:
        await answer_with_retry(message, i18n.gettext("broadcast.no_recipients", locale=locale))
        return

    await answer_with_retry(
        message,
        i18n.gettext("broadcast.announce", locale=locale, message=quoted, recipients=len(recipients)),
    )
    status = await answer_with_retry(message, i18n.gettext("broadcast.starting", locale=locale))

    payload = i18n.gettext(
        "broadcast.header",
        locale=settings.default_language,
        message=quoted,
        sent_at=utc_now().strftime(TIMESTAMP_FORMAT),
    )
    timeout = settings.broadcast.send_timeout_seconds

    async def send(recipient_id: int, body: str) -> None:
        await send_broadcast_message(bot, recipient_id, body, timeout=timeout)

    async def report(progress: BroadcastProgress) -> None:
        await bot.edit_message_text(
            text=i18n.gettext(
                "broadcast.progress",
                locale=locale,
                delivered=progress.delivered,
                failed=progress.failed,
                percent=progress.percent,
                processed=progress.processed,
                total=progress.total,
                elapsed=round(progress.elapsed_ms / 1000),
            ),
            chat_id=status.chat.id,
            message_id=status.message_id,
        )

    result = await broadcaster.broadcast(payload, recipients, send, report, initiator_id=admin.id)
    summary = i18n.gettext(
        "broadcast.completed",
        locale=locale,
        delivered=result.delivered,
        failed=result.failed,
        success_rate=result.success_rate,
        elapsed=result.elapsed_seconds,
    )
    await edit_or_answer(bot, status, message, summary)


async def handle_stats(
    message: Message,
    users: UserDirectory,
    event_log: EventLog,
    i18n: I18nService,
    settings: BotSettings,
) -> None:
    locale = resolve_locale(message, settings)
    stats = await users.get_stats()
    sections = [i18n.gettext("stats.summary", locale=locale, **stats.model_dump())]
    try:
        counts = await event_log.counts_by_type()
    except Exception as exc:
        logger.warning("event_counts_unavailable", error=str(exc))
        counts = {}
    if counts:
        lines = [i18n.gettext("stats.events", locale=locale)]
        lines.extend(f"• {event_type}: {count}" for event_type, count in sorted(counts.items()))
        sections.append("\n".join(lines))
    else:
        sections.append(i18n.gettext("stats.no_events", locale=locale))
    await answer_with_retry(message, "\n\n".join(sections))


async def handle_shutdown(
    message: Message,
    lifecycle: Lifecycle,
    i18n: I18nService,
    settings: BotSettings,
    event_log: EventLog,
) -> None:
    locale = resolve_locale(message, settings)
    owner = message.from_user
    event_log.append(
        "admin_command",
        command="/shutdown",
        user_id=owner.id,
        username=owner.username or "Unknown",
    )
    await answer_with_retry(
        message,
        i18n.gettext(
            "shutdown.notice",
            locale=locale,
            time=utc_now().strftime(TIMESTAMP_FORMAT),
            name=html_decoration.quote(owner.first_name or owner.username or str(owner.id)),
        ),
    )
    event_log.append(
        "system",
        action="bot_shutdown_initiated",
        admin_id=owner.id,
        admin_username=owner.username or "Unknown",
    )
    lifecycle.request_shutdown(initiated_by=owner.id)
