"""Pydantic models shared across service and bot layers."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class UserRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    telegram_id: int
    username: str | None = None
    first_name: str | None = None
    language_code: str | None = None
    command_count: int = 0
    joined_at: datetime | None = None
    last_active_at: datetime | None = None


class UserStats(BaseModel):
    total_users: int = 0
    active_today: int = 0
    active_this_week: int = 0
    new_today: int = 0
    new_this_week: int = 0


__all__ = ["UserRecord", "UserStats"]
