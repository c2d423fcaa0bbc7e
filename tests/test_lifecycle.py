from __future__ import annotations

from types import SimpleNamespace

import pytest
from aiogram.types import BotCommand

from relaybot.services.flood_control import FloodController
from relaybot.services.lifecycle import Lifecycle


class DummyDispatcher:
    def __init__(self, polling: bool = True) -> None:
        self.startup_handlers = []
        self.shutdown_handlers = []
        self.startup = SimpleNamespace(register=self.startup_handlers.append)
        self.shutdown = SimpleNamespace(register=self.shutdown_handlers.append)
        self.polling = polling
        self.stop_calls = 0

    async def stop_polling(self):
        self.stop_calls += 1
        if not self.polling:
            raise RuntimeError("Polling is not started")


class DummyEventLog:
    def __init__(self) -> None:
        self.records = []
        self.started = False
        self.closed_with = None

    def append(self, event_type, **fields):
        self.records.append((event_type, fields))

    def start(self):
        self.started = True

    async def aclose(self, grace_seconds=2.0):
        self.closed_with = grace_seconds


class DummyBot:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.commands = None

    async def set_my_commands(self, commands):
        if self.fail:
            raise RuntimeError("network down")
        self.commands = commands


class RecordingSleep:
    def __init__(self) -> None:
        self.calls = []

    async def __call__(self, delay):
        self.calls.append(delay)


def _lifecycle(dispatcher, event_log, **kwargs):
    return Lifecycle(
        dispatcher,
        flood_controller=FloodController(max_requests=5, window_ms=60_000),
        event_log=event_log,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_startup_and_shutdown_manage_background_tasks():
    dispatcher = DummyDispatcher()
    event_log = DummyEventLog()
    commands = [BotCommand(command="start", description="Start")]
    lifecycle = _lifecycle(dispatcher, event_log, commands=commands, grace_seconds=1.5)
    lifecycle.register()
    bot = DummyBot()

    assert dispatcher.startup_handlers == [lifecycle.on_startup]
    await lifecycle.on_startup(bot)

    assert event_log.started is True
    assert lifecycle.flood_controller._sweeper is not None
    assert bot.commands == commands
    assert event_log.records[0] == ("system", {"message": "Bot started successfully"})

    await lifecycle.on_shutdown()

    assert lifecycle.flood_controller._sweeper is None
    assert event_log.closed_with == 1.5
    assert event_log.records[-1] == ("system", {"message": "Bot shutdown initiated"})


@pytest.mark.asyncio
async def test_startup_survives_command_menu_failure():
    event_log = DummyEventLog()
    lifecycle = _lifecycle(DummyDispatcher(), event_log, commands=[BotCommand(command="help", description="Help")])

    await lifecycle.on_startup(DummyBot(fail=True))
    await lifecycle.on_shutdown()

    assert event_log.started is True


@pytest.mark.asyncio
async def test_request_shutdown_stops_polling_after_grace():
    dispatcher = DummyDispatcher()
    sleep = RecordingSleep()
    lifecycle = _lifecycle(dispatcher, DummyEventLog(), grace_seconds=2.0, sleep=sleep)

    task = lifecycle.request_shutdown(initiated_by=1)
    again = lifecycle.request_shutdown(initiated_by=1)
    await task

    assert again is task
    assert lifecycle.shutdown_requested is True
    assert sleep.calls == [2.0]
    assert dispatcher.stop_calls == 1


@pytest.mark.asyncio
async def test_request_shutdown_without_polling_is_logged_not_raised():
    dispatcher = DummyDispatcher(polling=False)
    lifecycle = _lifecycle(dispatcher, DummyEventLog(), sleep=RecordingSleep())

    await lifecycle.request_shutdown()

    assert dispatcher.stop_calls == 1
