"""Per-user sliding-window flood control."""

from __future__ import annotations

import asyncio
import contextlib
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Deque, Dict

from relaybot.logging import logger
from relaybot.services.exceptions import ConfigurationInvalid

if TYPE_CHECKING:
    from relaybot.services.event_log import EventLog

SWEEP_INTERVAL_SECONDS = 300


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    retry_after_seconds: int = 0


ALLOWED = AdmissionDecision(allowed=True)


def _prune(bucket: Deque[float], now: float, window: float) -> None:
    while bucket and now - bucket[0] >= window:
        bucket.popleft()


class FloodController:
    """Admit or reject requests against a trailing window of recent timestamps.

    Timestamps come from ``clock`` (seconds, monotonic by default). Each user
    key is mutated under its own lock, shared by ``admit`` and ``sweep``.
    Errors inside admission never block traffic: the request is let through
    and the anomaly is logged.
    """

    def __init__(
        self,
        max_requests: int,
        window_ms: int,
        *,
        sweep_interval_seconds: float = SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        event_log: EventLog | None = None,
    ) -> None:
        self.max_requests = max_requests
        self.window_ms = window_ms
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._event_log = event_log
        self._windows: Dict[int, Deque[float]] = {}
        self._locks: Dict[int, asyncio.Lock] = {}
        self._sweeper: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, settings, *, event_log: EventLog | None = None) -> "FloodController":
        flood = settings.flood_control
        return cls(
            flood.max_requests,
            flood.window_ms,
            sweep_interval_seconds=flood.sweep_interval_seconds,
            event_log=event_log,
        )

    @property
    def tracked_users(self) -> int:
        return len(self._windows)

    def pending_requests(self, user_id: int) -> int:
        return len(self._windows.get(user_id, ()))

    async def admit(
        self,
        user_id: int,
        *,
        is_exempt: bool = False,
        now: float | None = None,
    ) -> AdmissionDecision:
        if is_exempt:
            return ALLOWED
        try:
            return await self._admit(user_id, self._clock() if now is None else now)
        except Exception as exc:
            logger.exception("flood_control_error", user_id=user_id, error=str(exc))
            if self._event_log is not None:
                self._event_log.append(
                    "middleware_error",
                    middleware="flood_control",
                    user_id=user_id,
                    error=str(exc),
                )
            return ALLOWED

    async def _admit(self, user_id: int, now: float) -> AdmissionDecision:
        window = self._window_seconds()
        async with self._lock_for(user_id):
            bucket = self._windows.setdefault(user_id, deque())
            _prune(bucket, now, window)
            request_count = len(bucket)
            if request_count < self.max_requests:
                bucket.append(now)
                return ALLOWED
            retry_after = math.ceil(window - (now - bucket[0]))

        logger.warning(
            "flood_control_triggered",
            user_id=user_id,
            request_count=request_count,
            max_requests=self.max_requests,
            retry_after_seconds=retry_after,
        )
        if self._event_log is not None:
            self._event_log.append(
                "flood_control_triggered",
                user_id=user_id,
                request_count=request_count,
                max_requests=self.max_requests,
                remaining_cooldown=retry_after,
            )
        return AdmissionDecision(allowed=False, retry_after_seconds=retry_after)

    async def sweep(self, now: float | None = None) -> int:
        """Drop expired timestamps everywhere; forget users left with none."""

        now = self._clock() if now is None else now
        window = self._window_seconds()
        removed = 0
        for user_id in list(self._windows):
            async with self._lock_for(user_id):
                bucket = self._windows.get(user_id)
                if bucket is None:
                    continue
                _prune(bucket, now, window)
                if not bucket:
                    del self._windows[user_id]
                    self._locks.pop(user_id, None)
                    removed += 1
        return removed

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(), name="flood-control-sweep")

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                removed = await self.sweep()
            except Exception:
                logger.exception("flood_control_sweep_failed")
                continue
            logger.debug("flood_control_swept", removed=removed, tracked=self.tracked_users)

    def _lock_for(self, user_id: int) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def _window_seconds(self) -> float:
        if self.max_requests <= 0 or self.window_ms <= 0:
            raise ConfigurationInvalid(
                "flood control needs positive limits: "
                f"max_requests={self.max_requests}, window_ms={self.window_ms}"
            )
        return self.window_ms / 1000


__all__ = ["ALLOWED", "AdmissionDecision", "FloodController"]
