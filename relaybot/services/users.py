"""User registry backed by the ``users`` table."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from relaybot.db.models.core import User
from relaybot.domain.models import UserRecord, UserStats
from relaybot.logging import logger
from relaybot.utils.time import start_of_day, start_of_week, utc_now


class UserDirectory:
    def __init__(self, session: AsyncSession, default_language: str = "en") -> None:
        self.session = session
        self.default_language = default_language

    async def get_user(self, telegram_id: int) -> User | None:
        stmt = select(User).where(User.telegram_id == telegram_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_user(
        self,
        telegram_id: int,
        *,
        username: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        language_code: str | None = None,
    ) -> User:
        """Register a user or merge fresh profile fields into the existing row."""

        now = utc_now()
        user = await self.get_user(telegram_id)
        if user is None:
            user = User(
                telegram_id=telegram_id,
                username=username,
                first_name=first_name,
                last_name=last_name,
                language_code=language_code or self.default_language,
                command_count=0,
                joined_at=now,
                last_active_at=now,
            )
            self.session.add(user)
            await self.session.flush()
            logger.info("user_registered", telegram_id=telegram_id)
            return user

        if username is not None:
            user.username = username
        if first_name is not None:
            user.first_name = first_name
        if last_name is not None:
            user.last_name = last_name
        if language_code:
            user.language_code = language_code
        user.last_active_at = now
        await self.session.flush()
        return user

    async def increment_command_count(self, telegram_id: int) -> bool:
        stmt = (
            update(User)
            .where(User.telegram_id == telegram_id)
            .values(command_count=User.command_count + 1, last_active_at=utc_now())
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def list_all_users(self) -> list[UserRecord]:
        """Snapshot of every registered user, oldest registration first."""

        result = await self.session.execute(select(User).order_by(User.id))
        return [UserRecord.model_validate(user) for user in result.scalars().all()]

    async def get_stats(self, now: datetime | None = None) -> UserStats:
        now = now or utc_now()
        today = start_of_day(now)
        week = start_of_week(now)
        return UserStats(
            total_users=await self._count(),
            active_today=await self._count(User.last_active_at >= today),
            active_this_week=await self._count(User.last_active_at >= week),
            new_today=await self._count(User.joined_at >= today),
            new_this_week=await self._count(User.joined_at >= week),
        )

    async def _count(self, *criteria) -> int:
        stmt = select(func.count(User.id))
        if criteria:
            stmt = stmt.where(*criteria)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())


__all__ = ["UserDirectory"]
