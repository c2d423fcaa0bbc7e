"""Append-only audit log persisted alongside the user registry."""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select

from relaybot.db.models.core import EventLogEntry
from relaybot.logging import logger
from relaybot.utils.time import utc_now

if TYPE_CHECKING:
    from relaybot.db.session import Database

DEFAULT_MAX_ENTRIES = 10_000


def _to_payload(fields: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(fields, ensure_ascii=False, default=str))


class EventLog:
    """Fire-and-forget event sink.

    ``append`` only enqueues and never raises. Records are written by a
    background task started with ``start``; ``aclose`` flushes whatever is
    still buffered within a grace period. Records appended after ``aclose``
    are written by a one-off flush and reported with a warning.
    """

    def __init__(self, database: Database, *, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self.database = database
        self.max_entries = max_entries
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._writer: asyncio.Task[None] | None = None
        self._closed = False
        self._late_flushes: set[asyncio.Task[int]] = set()

    @classmethod
    def from_settings(cls, database: Database, settings) -> "EventLog":
        return cls(database, max_entries=settings.event_log.max_entries)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def append(self, event_type: str, **fields: Any) -> None:
        try:
            self._queue.put_nowait(
                {
                    "event_type": event_type,
                    "payload": _to_payload(fields),
                    "created_at": utc_now(),
                }
            )
            if self._closed:
                logger.warning("event_log_append_after_close", event_type=event_type)
                self._schedule_late_flush()
        except Exception:
            logger.exception("event_log_append_failed", event_type=event_type)

    def start(self) -> None:
        self._closed = False
        if self._writer is None or self._writer.done():
            self._writer = asyncio.create_task(self._run(), name="event-log-writer")

    def _schedule_late_flush(self) -> None:
        """Write records appended after the writer is gone; no-op outside a running loop."""

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.flush())
        self._late_flushes.add(task)
        task.add_done_callback(self._late_flushes.discard)

    async def _run(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self._write([record])
            finally:
                self._queue.task_done()

    async def flush(self) -> int:
        """Write every buffered record now; returns how many were taken off the queue."""

        records: list[dict[str, Any]] = []
        while True:
            try:
                records.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        if not records:
            return 0
        try:
            await self._write(records)
        finally:
            for _ in records:
                self._queue.task_done()
        return len(records)

    async def aclose(self, grace_seconds: float = 2.0) -> None:
        try:
            await asyncio.wait_for(self._drain(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("event_log_flush_timeout", pending=self.pending, grace_seconds=grace_seconds)
        finally:
            if self._writer is not None:
                self._writer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._writer
                self._writer = None
            self._closed = True

    async def _drain(self) -> None:
        if self._late_flushes:
            await asyncio.gather(*self._late_flushes)
        if self._writer is not None and not self._writer.done():
            await self._queue.join()
        else:
            await self.flush()

    async def _write(self, records: list[dict[str, Any]]) -> None:
        try:
            async with self.database.session() as session:
                session.add_all([EventLogEntry(**record) for record in records])
                await session.flush()
                await self._trim(session)
                await session.commit()
        except Exception as exc:
            logger.error(
                "event_log_write_failed",
                count=len(records),
                event_types=sorted({record["event_type"] for record in records}),
                error=str(exc),
            )

    async def _trim(self, session) -> None:
        stmt = (
            select(EventLogEntry.id)
            .order_by(EventLogEntry.id.desc())
            .offset(self.max_entries)
            .limit(1)
        )
        cutoff = (await session.execute(stmt)).scalar_one_or_none()
        if cutoff is not None:
            await session.execute(delete(EventLogEntry).where(EventLogEntry.id <= cutoff))

    async def recent(self, limit: int = 100, event_type: str | None = None) -> list[EventLogEntry]:
        stmt = select(EventLogEntry).order_by(EventLogEntry.id.desc()).limit(limit)
        if event_type is not None:
            stmt = stmt.where(EventLogEntry.event_type == event_type)
        async with self.database.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def counts_by_type(self) -> dict[str, int]:
        stmt = select(EventLogEntry.event_type, func.count(EventLogEntry.id)).group_by(
            EventLogEntry.event_type
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
            return {event_type: count for event_type, count in result.all()}


__all__ = ["EventLog"]
