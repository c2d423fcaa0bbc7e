"""Command handlers and router assembly."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError
from aiogram.methods import EditMessageText, SendMessage

from relaybot import __version__
from relaybot.bot.middlewares.permissions import PermissionMiddleware
from relaybot.bot.routers import COMMANDS, CommandSpec, bot_commands, setup_routers
from relaybot.bot.routers import admins, users as users_router
from relaybot.domain.models import UserStats
from relaybot.i18n import I18nService
from relaybot.services.broadcast import BroadcastDispatcher
from relaybot.services.permissions import PermissionClassifier, Role
from relaybot.services.users import UserDirectory


class DummyFromUser:
    def __init__(self, user_id: int = 1, first_name: str = "Test", username: str | None = "tester") -> None:
        self.id = user_id
        self.username = username
        self.first_name = first_name
        self.last_name = None
        self.language_code = "en"


class DummyMessage:
    def __init__(self, text: str = "", from_user: DummyFromUser | None = None) -> None:
        self.text = text
        self.from_user = from_user or DummyFromUser()
        self.chat = SimpleNamespace(id=self.from_user.id, type="private")
        self.message_id = 1
        self.answers: list[tuple[str, dict]] = []
        self.edits: list[tuple[str, dict]] = []

    async def answer(self, text: str, **kwargs):
        self.answers.append((text, kwargs))
        return SimpleNamespace(chat=self.chat, message_id=100 + len(self.answers))

    async def edit_text(self, text: str, **kwargs):
        self.edits.append((text, kwargs))


class DummyCallback:
    def __init__(self, data: str, from_user: DummyFromUser | None = None) -> None:
        self.data = data
        self.from_user = from_user or DummyFromUser()
        self.message = DummyMessage(from_user=self.from_user)
        self.answered = 0

    async def answer(self, *args, **kwargs):
        self.answered += 1


class DummyBot:
    def __init__(self, blocked: set[int] | None = None, stale_status: bool = False) -> None:
        self.blocked = blocked or set()
        self.stale_status = stale_status
        self.sent: list[dict] = []
        self.edits: list[dict] = []

    async def send_message(self, chat_id, text, **kwargs):
        if chat_id in self.blocked:
            raise TelegramForbiddenError(
                method=SendMessage(chat_id=chat_id, text=text),
                message="Forbidden: bot was blocked by the user",
            )
        self.sent.append({"chat_id": chat_id, "text": text, **kwargs})

    async def edit_message_text(self, text, chat_id, message_id, **kwargs):
        if self.stale_status:
            raise TelegramBadRequest(
                method=EditMessageText(text=text, chat_id=chat_id, message_id=message_id),
                message="Bad Request: message to edit not found",
            )
        self.edits.append({"text": text, "chat_id": chat_id, "message_id": message_id})


class NoSleep:
    async def __call__(self, delay: float) -> None:
        return None


class DummyLifecycle:
    def __init__(self) -> None:
        self.requests: list[int | None] = []

    def request_shutdown(self, *, initiated_by=None):
        self.requests.append(initiated_by)


@pytest.fixture
def settings():
    return SimpleNamespace(default_language="en", broadcast=SimpleNamespace(send_timeout_seconds=5))


@pytest.fixture
def i18n():
    return I18nService()


@pytest.fixture
def classifier():
    return PermissionClassifier(owner_id=1, admin_ids={2})


@pytest.mark.asyncio
async def test_start_greets_with_escaped_name_and_buttons(i18n, settings):
    message = DummyMessage("/start", DummyFromUser(first_name="<Ann>"))

    await users_router.handle_start(message, i18n, settings)

    text, kwargs = message.answers[0]
    assert "&lt;Ann&gt;" in text
    buttons = [button.callback_data for row in kwargs["reply_markup"].inline_keyboard for button in row]
    assert buttons == [users_router.HELP_CALLBACK, users_router.SUPPORT_CALLBACK]


@pytest.mark.asyncio
async def test_help_for_regular_user_hides_admin_section(i18n, settings, classifier, session):
    message = DummyMessage("/help", DummyFromUser(user_id=50))

    await users_router.handle_help(message, i18n, settings, classifier, UserDirectory(session))

    text = message.answers[0][0]
    assert "/ytmp4" in text
    assert "/broadcast" not in text


@pytest.mark.asyncio
async def test_help_for_admin_includes_stats(i18n, settings, classifier, session):
    directory = UserDirectory(session)
    await directory.upsert_user(2)
    await directory.upsert_user(3)
    message = DummyMessage("/help", DummyFromUser(user_id=2))

    await users_router.handle_help(message, i18n, settings, classifier, directory)

    text = message.answers[0][0]
    assert "/broadcast" in text
    assert "Total users: 2" in text


def test_build_help_text_without_stats(i18n):
    text = users_router.build_help_text(i18n, "en", is_admin=True)
    assert "Admin commands" in text
    assert "Bot statistics" not in text
    with_stats = users_router.build_help_text(i18n, "en", is_admin=True, stats=UserStats(total_users=4))
    assert "Total users: 4" in with_stats


def test_command_argument():
    assert users_router.command_argument("/broadcast   hello there ") == "hello there"
    assert users_router.command_argument("/broadcast") == ""
    assert users_router.command_argument(None) == ""


@pytest.mark.asyncio
async def test_ytmp4_requires_url(i18n, settings, event_log):
    message = DummyMessage("/ytmp4")

    await users_router.handle_ytmp4(message, i18n, settings, event_log)

    assert "Missing parameter" in message.answers[0][0]
    assert event_log.records == []


@pytest.mark.asyncio
async def test_ytmp4_rejects_non_youtube_url(i18n, settings, event_log):
    message = DummyMessage("/ytmp4 https://example.com/watch?v=abc")

    await users_router.handle_ytmp4(message, i18n, settings, event_log)

    assert "Invalid URL" in message.answers[0][0]


@pytest.mark.asyncio
async def test_ytmp4_recognises_video_and_logs_download(i18n, settings, event_log):
    message = DummyMessage("/ytmp4 https://youtu.be/dQw4w9WgXcQ", DummyFromUser(user_id=8))

    await users_router.handle_ytmp4(message, i18n, settings, event_log)

    assert "dQw4w9WgXcQ" in message.answers[0][0]
    (download,) = event_log.of_type("download")
    assert download["video_id"] == "dQw4w9WgXcQ"
    assert download["user_id"] == 8
    assert download["success"] is False


@pytest.mark.asyncio
async def test_callbacks_edit_message_in_place(i18n, settings, classifier):
    help_callback = DummyCallback(users_router.HELP_CALLBACK)
    support_callback = DummyCallback(users_router.SUPPORT_CALLBACK)
    back_callback = DummyCallback(users_router.BACK_CALLBACK)

    await users_router.handle_help_callback(help_callback, i18n, settings, classifier)
    await users_router.handle_support_callback(support_callback, i18n, settings)
    await users_router.handle_back_to_start(back_callback, i18n, settings)

    assert all(cb.answered == 1 for cb in (help_callback, support_callback, back_callback))
    assert "Bot Commands" in help_callback.message.edits[0][0]
    assert __version__ in support_callback.message.edits[0][0]
    assert "Welcome" in back_callback.message.edits[0][0]


@pytest.mark.asyncio
async def test_broadcast_usage_without_text(i18n, settings, session, event_log):
    message = DummyMessage("/broadcast", DummyFromUser(user_id=2))
    bot = DummyBot()

    await admins.handle_broadcast(
        message, bot, UserDirectory(session), BroadcastDispatcher(sleep=NoSleep()), i18n, settings, event_log
    )

    assert "Usage" in message.answers[0][0]
    assert bot.sent == []


@pytest.mark.asyncio
async def test_broadcast_with_no_users(i18n, settings, session, event_log):
    message = DummyMessage("/broadcast hello", DummyFromUser(user_id=2))

    await admins.handle_broadcast(
        message, DummyBot(), UserDirectory(session), BroadcastDispatcher(sleep=NoSleep()), i18n, settings, event_log
    )

    assert "No users found" in message.answers[0][0]


@pytest.mark.asyncio
async def test_broadcast_reports_delivery_summary(i18n, settings, session, event_log):
    directory = UserDirectory(session)
    for telegram_id in (10, 11, 12):
        await directory.upsert_user(telegram_id)
    bot = DummyBot(blocked={11})
    broadcaster = BroadcastDispatcher(batch_size=2, inter_batch_delay_ms=0, sleep=NoSleep(), event_log=event_log)
    message = DummyMessage("/broadcast Hello everyone", DummyFromUser(user_id=2))

    await admins.handle_broadcast(message, bot, directory, broadcaster, i18n, settings, event_log)

    assert sorted(item["chat_id"] for item in bot.sent) == [10, 12]
    assert all("Hello everyone" in item["text"] for item in bot.sent)
    assert all(item["request_timeout"] == 5 for item in bot.sent)
    assert "Recipients:</b> 3" in message.answers[0][0]
    summary = bot.edits[-1]["text"]
    assert "Successfully delivered: 2" in summary
    assert "Failed deliveries: 1" in summary
    assert len(bot.edits) == 3
    assert event_log.of_type("broadcast_delivery_failed") == [
        {"user_id": 11, "error": "Forbidden: bot was blocked by the user"}
    ]
    assert event_log.of_type("admin_command")[0]["command"] == "/broadcast"


@pytest.mark.asyncio
async def test_broadcast_summary_falls_back_to_reply(i18n, settings, session, event_log):
    directory = UserDirectory(session)
    await directory.upsert_user(10)
    bot = DummyBot(stale_status=True)
    message = DummyMessage("/broadcast hi", DummyFromUser(user_id=2))

    await admins.handle_broadcast(
        message, bot, directory, BroadcastDispatcher(sleep=NoSleep()), i18n, settings, event_log
    )

    assert "Successfully delivered: 1" in message.answers[-1][0]


@pytest.mark.asyncio
async def test_broadcast_escapes_html_in_admin_text(i18n, settings, session, event_log):
    directory = UserDirectory(session)
    await directory.upsert_user(10)
    bot = DummyBot()
    message = DummyMessage("/broadcast 5 < 6 & <b>more", DummyFromUser(user_id=2))

    await admins.handle_broadcast(
        message, bot, directory, BroadcastDispatcher(sleep=NoSleep()), i18n, settings, event_log
    )

    escaped = "5 &lt; 6 &amp; &lt;b&gt;more"
    assert escaped in message.answers[0][0]
    (delivery,) = bot.sent
    assert escaped in delivery["text"]
    assert "<b>more" not in delivery["text"]


@pytest.mark.asyncio
async def test_stats_lists_event_counts(i18n, settings, session):
    directory = UserDirectory(session)
    await directory.upsert_user(10)

    class CountingLog:
        async def counts_by_type(self):
            return {"command": 3, "error": 1}

    message = DummyMessage("/stats", DummyFromUser(user_id=2))
    await admins.handle_stats(message, directory, CountingLog(), i18n, settings)

    text = message.answers[0][0]
    assert "Total users: 1" in text
    assert "• command: 3" in text
    assert "• error: 1" in text


@pytest.mark.asyncio
async def test_shutdown_notifies_and_requests_stop(i18n, settings, event_log):
    lifecycle = DummyLifecycle()
    message = DummyMessage("/shutdown", DummyFromUser(user_id=1, first_name="Owner"))

    await admins.handle_shutdown(message, lifecycle, i18n, settings, event_log)

    assert "Shutting down" in message.answers[0][0]
    assert "Owner" in message.answers[0][0]
    assert lifecycle.requests == [1]
    assert event_log.of_type("system")[0]["action"] == "bot_shutdown_initiated"


def test_setup_routers_groups_commands_by_scope(classifier):
    router = setup_routers(COMMANDS, classifier=classifier)

    names = [child.name for child in router.sub_routers]
    assert names == ["user_commands", "admin_commands", "owner_commands"]
    user_router, admin_router, owner_router = router.sub_routers
    assert len(user_router.message.handlers) == 3
    assert len(user_router.callback_query.handlers) == 3
    assert len(admin_router.message.handlers) == 2
    assert len(owner_router.message.handlers) == 1
    assert not any(isinstance(m, PermissionMiddleware) for m in user_router.message.middleware)
    (owner_gate,) = [m for m in owner_router.message.middleware if isinstance(m, PermissionMiddleware)]
    assert owner_gate.required is Role.OWNER


def test_setup_routers_rejects_duplicate_command(classifier):
    duplicate = COMMANDS + (CommandSpec("start", "again", users_router.handle_start),)
    with pytest.raises(ValueError):
        setup_routers(duplicate, classifier=classifier)


def test_bot_commands_only_lists_public_commands():
    assert [command.command for command in bot_commands()] == ["start", "help", "ytmp4"]
