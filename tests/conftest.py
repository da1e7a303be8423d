from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from http2sql.config import Settings, ValidationPolicy
from http2sql.database import Database
from http2sql.registry import TagRegistry, UserRegistry


SEED_USERS = [
    ("john.doe@gmail.com", "Randompassword1!"),
    ("jane.doe@gmail.com", "Randompassword3!"),
    ("bob.smith@yahoo.com", "Randompassword4!"),
]


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_path=tmp_path / "http2sql.sqlite3",
        pool_size=4,
        acquire_timeout=5.0,
        policy=ValidationPolicy(),
    )


@pytest.fixture()
def database(settings: Settings) -> Iterator[Database]:
    db = Database.from_settings(settings)
    db.initialize()
    yield db
    db.close()


@pytest.fixture()
def users(database: Database, settings: Settings) -> UserRegistry:
    return UserRegistry(database, policy=settings.policy)


@pytest.fixture()
def tags(database: Database, settings: Settings) -> TagRegistry:
    return TagRegistry(database, policy=settings.policy)


@pytest.fixture()
def seeded(users: UserRegistry, tags: TagRegistry):
    """Three users; the first owns ``tag1`` and ``tag2``, the second ``tag3``."""

    created = [users.register(email, password) for email, password in SEED_USERS]
    tags.create(created[0].id, "tag1")
    tags.create(created[0].id, "tag2")
    tags.create(created[1].id, "tag3")
    return created
