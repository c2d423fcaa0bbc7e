"""Commands available to every user."""

from __future__ import annotations

from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message
from aiogram.utils.keyboard import InlineKeyboardBuilder
from aiogram.utils.text_decorations import html_decoration

from relaybot import __version__
from relaybot.bot.utils.telegram import answer_with_retry
from relaybot.config import BotSettings
from relaybot.domain.models import UserStats
from relaybot.i18n import I18nService
from relaybot.logging import logger
from relaybot.services.event_log import EventLog
from relaybot.services.permissions import PermissionClassifier
from relaybot.services.users import UserDirectory
from relaybot.services.youtube import extract_video_id, is_youtube_url

HELP_CALLBACK = "help_command"
SUPPORT_CALLBACK = "support_info"
BACK_CALLBACK = "back_to_start"


def resolve_locale(event: Message | CallbackQuery, settings: BotSettings) -> str:
    from_user = getattr(event, "from_user", None)
    return getattr(from_user, "language_code", None) or settings.default_language


def command_argument(text: str | None) -> str:
    """Everything after the command word, with surrounding whitespace removed."""

    parts = (text or "").split(maxsplit=1)
    return parts[1].strip() if len(parts) > 1 else ""


def _welcome_text(event: Message | CallbackQuery, i18n: I18nService, locale: str) -> str:
    first_name = getattr(event.from_user, "first_name", None) or "User"
    return i18n.gettext("start.welcome", locale=locale, name=html_decoration.quote(first_name))


def _welcome_keyboard(i18n: I18nService, locale: str) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.button(text=i18n.gettext("buttons.help", locale=locale), callback_data=HELP_CALLBACK)
    builder.button(text=i18n.gettext("buttons.support", locale=locale), callback_data=SUPPORT_CALLBACK)
    builder.adjust(2)
    return builder.as_markup()


def _back_keyboard(i18n: I18nService, locale: str) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.button(text=i18n.gettext("buttons.back", locale=locale), callback_data=BACK_CALLBACK)
    return builder.as_markup()


def build_help_text(
    i18n: I18nService,
    locale: str,
    *,
    is_admin: bool,
    stats: UserStats | None = None,
) -> str:
    sections = [i18n.gettext("help.title", locale=locale), i18n.gettext("help.user_commands", locale=locale)]
    if is_admin:
        sections.append(i18n.gettext("help.admin_commands", locale=locale))
        if stats is not None:
            sections.append(i18n.gettext("help.stats", locale=locale, **stats.model_dump()))
    sections.append(i18n.gettext("help.support", locale=locale))
    examples = i18n.gettext("help.examples", locale=locale)
    if is_admin:
        examples = f"{examples}\n{i18n.gettext('help.admin_examples', locale=locale)}"
    sections.append(examples)
    return "\n\n".join(sections)


async def handle_start(message: Message, i18n: I18nService, settings: BotSettings) -> None:
    locale = resolve_locale(message, settings)
    await answer_with_retry(
        message,
        _welcome_text(message, i18n, locale),
        reply_markup=_welcome_keyboard(i18n, locale),
    )


async def handle_help(
    message: Message,
    i18n: I18nService,
    settings: BotSettings,
    classifier: PermissionClassifier,
    users: UserDirectory,
) -> None:
    locale = resolve_locale(message, settings)
    is_admin = classifier.classify(message.from_user.id).admin
    stats = None
    if is_admin:
        try:
            stats = await users.get_stats()
        except Exception as exc:
            logger.warning("help_stats_unavailable", error=str(exc))
    await answer_with_retry(message, build_help_text(i18n, locale, is_admin=is_admin, stats=stats))


async def handle_ytmp4(
    message: Message,
    i18n: I18nService,
    settings: BotSettings,
    event_log: EventLog,
) -> None:
    locale = resolve_locale(message, settings)
    url = command_argument(message.text)
    if not url:
        await answer_with_retry(
            message,
            i18n.gettext(
                "errors.missing_parameter",
                locale=locale,
                parameter="YouTube URL",
                usage="/ytmp4 &lt;YouTube URL&gt;",
            ),
        )
        return

    video_id = extract_video_id(url) if is_youtube_url(url) else None
    if video_id is None:
        await answer_with_retry(message, i18n.gettext("errors.invalid_url", locale=locale))
        return

    event_log.append(
        "download",
        format="mp4",
        user_id=message.from_user.id,
        username=message.from_user.username or "Unknown",
        url=url,
        video_id=video_id,
        success=False,
    )
    await answer_with_retry(message, i18n.gettext("ytmp4.unavailable", locale=locale, video_id=video_id))


async def handle_help_callback(
    callback: CallbackQuery,
    i18n: I18nService,
    settings: BotSettings,
    classifier: PermissionClassifier,
) -> None:
    await callback.answer()
    if callback.message is None:
        return
    locale = resolve_locale(callback, settings)
    is_admin = classifier.classify(callback.from_user.id).admin
    await callback.message.edit_text(
        build_help_text(i18n, locale, is_admin=is_admin),
        reply_markup=_back_keyboard(i18n, locale),
    )


async def handle_support_callback(callback: CallbackQuery, i18n: I18nService, settings: BotSettings) -> None:
    await callback.answer()
    if callback.message is None:
        return
    locale = resolve_locale(callback, settings)
    await callback.message.edit_text(
        i18n.gettext("support.info", locale=locale, version=__version__),
        reply_markup=_back_keyboard(i18n, locale),
    )


async def handle_back_to_start(callback: CallbackQuery, i18n: I18nService, settings: BotSettings) -> None:
    await callback.answer()
    if callback.message is None:
        return
    locale = resolve_locale(callback, settings)
    await callback.message.edit_text(
        _welcome_text(callback, i18n, locale),
        reply_markup=_welcome_keyboard(i18n, locale),
    )


CALLBACKS = (
    (HELP_CALLBACK, handle_help_callback),
    (SUPPORT_CALLBACK, handle_support_callback),
    (BACK_CALLBACK, handle_back_to_start),
)
