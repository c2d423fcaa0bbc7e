"""Owner/admin classification from static configuration."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from relaybot.services.exceptions import PermissionDenied


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    OWNER = "owner"


@dataclass(frozen=True)
class Permissions:
    owner: bool = False
    admin: bool = False

    def satisfies(self, role: Role) -> bool:
        if role is Role.OWNER:
            return self.owner
        if role is Role.ADMIN:
            return self.admin
        return True


class PermissionClassifier:
    """Pure lookup against the configured owner id and admin id set."""

    def __init__(self, owner_id: int | None, admin_ids: Iterable[int] = ()) -> None:
        self.owner_id = owner_id
        self.admin_ids = frozenset(admin_ids)

    @classmethod
    def from_settings(cls, settings) -> "PermissionClassifier":
        return cls(settings.owner_id, settings.admin_ids)

    def classify(self, user_id: int) -> Permissions:
        owner = self.owner_id is not None and user_id == self.owner_id
        return Permissions(owner=owner, admin=owner or user_id in self.admin_ids)

    def is_exempt(self, user_id: int) -> bool:
        """Owner and admins bypass flood control."""

        return self.classify(user_id).admin

    def require(self, user_id: int, role: Role) -> Permissions:
        permissions = self.classify(user_id)
        if not permissions.satisfies(role):
            raise PermissionDenied(user_id, role.value)
        return permissions


__all__ = ["PermissionClassifier", "Permissions", "Role"]
