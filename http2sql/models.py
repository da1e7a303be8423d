"""Domain models exposed by the registries."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List


@dataclass(frozen=True)
class User:
    """A registered account. The password digest never leaves the database layer."""

    id: int
    email: str
    created_at: datetime


@dataclass(frozen=True)
class Tag:
    id: int
    user_id: int
    name: str
    created_at: datetime


@dataclass(frozen=True)
class UserWithTags:
    """A user together with the tags it owns, in creation order."""

    user: User
    tags: List[Tag] = field(default_factory=list)


__all__ = ["Tag", "User", "UserWithTags"]
