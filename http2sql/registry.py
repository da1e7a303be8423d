"""User and tag registries: the request-scoped operations behind the API."""
from __future__ import annotations

import logging
import sqlite3
from typing import Dict, List, Optional

from .config import ValidationPolicy
from .database import Database, current_timestamp, parse_datetime, serialize_datetime
from .errors import (
    ConflictError,
    DatabaseUnavailableError,
    NotFoundError,
    UnauthorizedError,
    UnavailableError,
    ValidationError,
)
from .models import Tag, User, UserWithTags
from .security import burn_verification, hash_password, needs_rehash, verify_password

logger = logging.getLogger("http2sql.registry")


def _storage_failure(operation: str, exc: sqlite3.Error) -> UnavailableError:
    # Storage error text stays in the logs.
    logger.warning("Storage failure during %s: %s", operation, exc)
    return UnavailableError()


# SQLite INTEGER columns hold signed 64-bit values; larger ids cannot name a row.
_MAX_ROW_ID = 2**63 - 1


def _require_user_id(user_id: int) -> int:
    if not -_MAX_ROW_ID - 1 <= user_id <= _MAX_ROW_ID:
        raise NotFoundError("User not found")
    return user_id


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=int(row["id"]),
        email=str(row["email"]),
        created_at=parse_datetime(str(row["created_at"])),
    )


def _row_to_tag(row: sqlite3.Row) -> Tag:
    return Tag(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        name=str(row["name"]),
        created_at=parse_datetime(str(row["created_at"])),
    )


class UserRegistry:
    """Registers, authenticates and lists users."""

    def __init__(self, database: Database, *, policy: Optional[ValidationPolicy] = None) -> None:
        self._database = database
        self._policy = policy or ValidationPolicy()

    def register(self, email: str, password: str) -> User:
        """Create a new user.

        Uniqueness is enforced by the ``users.email`` index: the insert either
        succeeds or fails atomically, and a violation becomes
        :class:`ConflictError`.
        """

        self._policy.validate_email(email)
        self._policy.validate_password(password)

        password_digest = hash_password(password)
        created_at = current_timestamp()

        try:
            with self._database.connection() as conn:
                cursor = conn.execute(
                    "INSERT INTO users (email, password_digest, created_at) VALUES (?, ?, ?)",
                    (email, password_digest, serialize_datetime(created_at)),
                )
                user_id = cursor.lastrowid
        except sqlite3.IntegrityError as exc:
            logger.info("Rejected registration for an email that is already in use (%s)", exc)
            raise ConflictError() from exc
        except sqlite3.Error as exc:
            raise _storage_failure("registration", exc) from exc

        logger.info("Registered user %s", user_id)
        return User(id=int(user_id), email=email, created_at=created_at)

    def login(self, email: str, password: str) -> None:
        """Check ``password`` for ``email``; raise :class:`UnauthorizedError` on any mismatch."""

        try:
            ValidationPolicy.require_utf8(email, "Email address")
        except ValidationError:
            burn_verification(password)
            raise UnauthorizedError() from None

        try:
            with self._database.connection() as conn:
                row = conn.execute(
                    "SELECT id, password_digest FROM users WHERE email = ?",
                    (email,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise _storage_failure("login", exc) from exc

        if row is None:
            burn_verification(password)
            logger.warning("Failed login attempt for %s", email)
            raise UnauthorizedError()

        digest = str(row["password_digest"])
        if not verify_password(password, digest):
            logger.warning("Failed login attempt for %s", email)
            raise UnauthorizedError()

        if needs_rehash(digest):
            self._upgrade_digest(int(row["id"]), password)

    def _upgrade_digest(self, user_id: int, password: str) -> None:
        try:
            with self._database.connection() as conn:
                conn.execute(
                    "UPDATE users SET password_digest = ? WHERE id = ?",
                    (hash_password(password), user_id),
                )
        except (sqlite3.Error, DatabaseUnavailableError) as exc:
            # The login already succeeded; the upgrade is retried next time.
            logger.warning("Could not upgrade password digest for user %s: %s", user_id, exc)
            return
        logger.info("Upgraded password digest for user %s", user_id)

    def get(self, user_id: int) -> User:
        _require_user_id(user_id)
        try:
            with self._database.connection() as conn:
                row = conn.execute(
                    "SELECT id, email, created_at FROM users WHERE id = ?",
                    (user_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise _storage_failure("user lookup", exc) from exc
        if row is None:
            raise NotFoundError("User not found")
        return _row_to_user(row)

    def list_with_tags(self) -> List[UserWithTags]:
        """Return every user with its tags, users and tags in creation order.

        Users that own no tags are included with an empty tag list.
        """

        try:
            with self._database.connection() as conn:
                rows = conn.execute(
                    """
                    SELECT u.id AS user_id,
                           u.email AS email,
                           u.created_at AS user_created_at,
                           t.id AS tag_id,
                           t.name AS tag_name,
                           t.created_at AS tag_created_at
                      FROM users AS u
                      LEFT JOIN tags AS t ON t.user_id = u.id
                     ORDER BY u.id, t.id
                    """
                ).fetchall()
        except sqlite3.Error as exc:
            raise _storage_failure("user listing", exc) from exc

        grouped: Dict[int, UserWithTags] = {}
        for row in rows:
            user_id = int(row["user_id"])
            entry = grouped.get(user_id)
            if entry is None:
                user = User(
                    id=user_id,
                    email=str(row["email"]),
                    created_at=parse_datetime(str(row["user_created_at"])),
                )
                entry = grouped[user_id] = UserWithTags(user=user, tags=[])
            if row["tag_id"] is None:
                continue
            entry.tags.append(
                Tag(
                    id=int(row["tag_id"]),
                    user_id=user_id,
                    name=str(row["tag_name"]),
                    created_at=parse_datetime(str(row["tag_created_at"])),
                )
            )
        return list(grouped.values())


class TagRegistry:
    """Creates tags owned by existing users."""

    def __init__(self, database: Database, *, policy: Optional[ValidationPolicy] = None) -> None:
        self._database = database
        self._policy = policy or ValidationPolicy()

    def create(self, user_id: int, name: str) -> Tag:
        """Attach a new tag to ``user_id``.

        The foreign key on ``tags.user_id`` rejects unknown owners inside the
        same statement, so no row is written for a missing user.
        """

        _require_user_id(user_id)
        name = self._policy.normalize_tag_name(name)
        created_at = current_timestamp()

        try:
            with self._database.connection() as conn:
                cursor = conn.execute(
                    "INSERT INTO tags (user_id, name, created_at) VALUES (?, ?, ?)",
                    (user_id, name, serialize_datetime(created_at)),
                )
                tag_id = cursor.lastrowid
        except sqlite3.IntegrityError as exc:
            logger.info("Rejected tag for unknown user %s (%s)", user_id, exc)
            raise NotFoundError("User not found") from exc
        except sqlite3.Error as exc:
            raise _storage_failure("tag creation", exc) from exc

        logger.info("Created tag %s for user %s", tag_id, user_id)
        return Tag(id=int(tag_id), user_id=user_id, name=name, created_at=created_at)

    def list_for_user(self, user_id: int) -> List[Tag]:
        _require_user_id(user_id)
        try:
            with self._database.connection() as conn:
                owner = conn.execute("SELECT id FROM users WHERE id = ?", (user_id,)).fetchone()
                rows = conn.execute(
                    "SELECT id, user_id, name, created_at FROM tags WHERE user_id = ? ORDER BY id",
                    (user_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise _storage_failure("tag listing", exc) from exc
        if owner is None:
            raise NotFoundError("User not found")
        return [_row_to_tag(row) for row in rows]


__all__ = ["TagRegistry", "UserRegistry"]
