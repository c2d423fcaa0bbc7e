"""Batched fan-out of one message to every known user."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Sequence

from relaybot.logging import logger
from relaybot.services.exceptions import ConfigurationInvalid, RecipientDeliveryFailed
from relaybot.utils.time import elapsed_ms

if TYPE_CHECKING:
    from relaybot.services.event_log import EventLog

DEFAULT_BATCH_SIZE = 30
DEFAULT_INTER_BATCH_DELAY_MS = 1000

SendFn = Callable[[int, str], Awaitable[Any]]


@dataclass(frozen=True)
class BroadcastProgress:
    delivered: int
    failed: int
    total: int
    elapsed_ms: int
    batch_index: int
    batch_count: int

    @property
    def processed(self) -> int:
        return self.delivered + self.failed

    @property
    def percent(self) -> int:
        return round(self.processed / self.total * 100) if self.total else 100


ProgressFn = Callable[[BroadcastProgress], Awaitable[Any]]


@dataclass(frozen=True)
class BroadcastResult:
    total: int
    delivered: int
    failed: int
    elapsed_ms: int

    @property
    def success_rate(self) -> int:
        return round(self.delivered / self.total * 100) if self.total else 0

    @property
    def elapsed_seconds(self) -> int:
        return round(self.elapsed_ms / 1000)


def _failure_reason(exc: BaseException) -> str:
    if isinstance(exc, RecipientDeliveryFailed):
        return exc.reason
    return str(exc) or exc.__class__.__name__


def _batched(recipients: Sequence[int], size: int) -> list[Sequence[int]]:
    return [recipients[start : start + size] for start in range(0, len(recipients), size)]


class BroadcastDispatcher:
    """Deliver a message to N recipients in sequential, internally concurrent batches.

    Every recipient gets at most one ``send`` call per job. A failing send is
    counted and logged for that recipient only; a failing progress callback
    is ignored.
    """

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        inter_batch_delay_ms: int = DEFAULT_INTER_BATCH_DELAY_MS,
        *,
        event_log: EventLog | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size < 1:
            raise ConfigurationInvalid(f"broadcast batch size must be positive, got {batch_size}")
        if inter_batch_delay_ms < 0:
            raise ConfigurationInvalid(
                f"inter-batch delay must not be negative, got {inter_batch_delay_ms}"
            )
        self.batch_size = batch_size
        self.inter_batch_delay_ms = inter_batch_delay_ms
        self._event_log = event_log
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, *, event_log: EventLog | None = None) -> "BroadcastDispatcher":
        return cls(
            settings.broadcast.batch_size,
            settings.broadcast.inter_batch_delay_ms,
            event_log=event_log,
        )

    async def broadcast(
        self,
        message: str,
        recipients: Iterable[int],
        send: SendFn,
        progress: ProgressFn | None = None,
        *,
        initiator_id: int | None = None,
    ) -> BroadcastResult:
        snapshot = list(dict.fromkeys(recipients))
        total = len(snapshot)
        if not snapshot:
            logger.info("broadcast_no_recipients", initiator_id=initiator_id)
            return BroadcastResult(total=0, delivered=0, failed=0, elapsed_ms=0)

        batches = _batched(snapshot, self.batch_size)
        started = self._clock()
        delivered = 0
        failed = 0
        logger.info(
            "broadcast_started",
            initiator_id=initiator_id,
            recipients=total,
            batches=len(batches),
        )

        for index, batch in enumerate(batches):
            outcomes = await asyncio.gather(
                *(self._deliver(send, recipient_id, message) for recipient_id in batch)
            )
            for ok in outcomes:
                if ok:
                    delivered += 1
                else:
                    failed += 1

            await self._report(
                progress,
                BroadcastProgress(
                    delivered=delivered,
                    failed=failed,
                    total=total,
                    elapsed_ms=elapsed_ms(started, self._clock()),
                    batch_index=index,
                    batch_count=len(batches),
                ),
            )
            if index < len(batches) - 1:
                await self._sleep(self.inter_batch_delay_ms / 1000)

        result = BroadcastResult(
            total=total,
            delivered=delivered,
            failed=failed,
            elapsed_ms=elapsed_ms(started, self._clock()),
        )
        logger.info(
            "broadcast_completed",
            initiator_id=initiator_id,
            total=result.total,
            delivered=result.delivered,
            failed=result.failed,
            success_rate=result.success_rate,
            elapsed_ms=result.elapsed_ms,
        )
        self._log_event(
            "broadcast_completed",
            admin_id=initiator_id,
            total_users=result.total,
            success_count=result.delivered,
            failure_count=result.failed,
            completion_time_ms=result.elapsed_ms,
            message=message,
        )
        return result

    async def _deliver(self, send: SendFn, recipient_id: int, message: str) -> bool:
        try:
            outcome = await send(recipient_id, message)
            if outcome is False:
                raise RecipientDeliveryFailed(recipient_id, "rejected by transport")
        except Exception as exc:
            reason = _failure_reason(exc)
            logger.warning("broadcast_delivery_failed", recipient_id=recipient_id, error=reason)
            self._log_event("broadcast_delivery_failed", user_id=recipient_id, error=reason)
            return False
        return True

    @staticmethod
    async def _report(progress: ProgressFn | None, snapshot: BroadcastProgress) -> None:
        if progress is None:
            return
        try:
            await progress(snapshot)
        except Exception as exc:
            logger.debug(
                "broadcast_progress_report_failed",
                batch_index=snapshot.batch_index,
                error=str(exc),
            )

    def _log_event(self, event_type: str, **fields: Any) -> None:
        if self._event_log is not None:
            self._event_log.append(event_type, **fields)


__all__ = [
    "BroadcastDispatcher",
    "BroadcastProgress",
    "BroadcastResult",
    "ProgressFn",
    "SendFn",
]
