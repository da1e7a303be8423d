"""SQLite-backed persistence: bounded connection pool and schema management."""
from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import ContextManager, Deque, Iterator

from .config import DEFAULT_ACQUIRE_TIMEOUT, DEFAULT_POOL_SIZE, Settings
from .errors import DatabaseUnavailableError

logger = logging.getLogger("http2sql.database")


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


class ConnectionPool:
    """Fixed-size pool of SQLite connections handed out one operation at a time.

    Callers waiting for a connection are served in arrival order. Waiting
    longer than ``timeout`` seconds raises :class:`DatabaseUnavailableError`.
    """

    def __init__(self, path: Path, *, size: int = DEFAULT_POOL_SIZE, timeout: float = DEFAULT_ACQUIRE_TIMEOUT) -> None:
        if size < 1:
            raise ValueError("Pool size must be at least 1")
        self._path = path
        self._size = size
        self._timeout = timeout
        self._idle: Deque[sqlite3.Connection] = deque()
        self._waiters: Deque[object] = deque()
        self._cond = threading.Condition()
        self._closed = False

        try:
            for _ in range(size):
                self._idle.append(self._open())
        except DatabaseUnavailableError:
            self._close_idle()
            raise

    @property
    def size(self) -> int:
        return self._size

    @property
    def available(self) -> int:
        with self._cond:
            return len(self._idle)

    def _open(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self._path, timeout=self._timeout, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as exc:
            logger.error("Unable to open database at %s: %s", self._path, exc)
            raise DatabaseUnavailableError(f"Unable to open database at {self._path}") from exc
        return conn

    def _checkout(self) -> sqlite3.Connection:
        deadline = time.monotonic() + self._timeout
        ticket = object()
        with self._cond:
            if self._closed:
                raise DatabaseUnavailableError("Connection pool is closed")
            self._waiters.append(ticket)
            try:
                while not self._closed and (not self._idle or self._waiters[0] is not ticket):
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        logger.warning(
                            "Timed out after %.2fs waiting for one of %d database connections",
                            self._timeout,
                            self._size,
                        )
                        raise DatabaseUnavailableError("Timed out waiting for a database connection")
                    self._cond.wait(remaining)
                if self._closed:
                    raise DatabaseUnavailableError("Connection pool is closed")
                return self._idle.popleft()
            finally:
                self._waiters.remove(ticket)
                self._cond.notify_all()

    def _checkin(self, conn: sqlite3.Connection) -> None:
        with self._cond:
            if self._closed:
                conn.close()
                return
            self._idle.append(conn)
            self._cond.notify_all()

    @contextmanager
    def acquire(self) -> Iterator[sqlite3.Connection]:
        """Lend a connection for one transaction.

        The transaction commits when the block exits normally and rolls back
        on any exception. The connection always goes back to the pool.
        """

        conn = self._checkout()
        try:
            with conn:
                yield conn
        finally:
            self._checkin(conn)

    def _close_idle(self) -> None:
        while self._idle:
            self._idle.popleft().close()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._close_idle()
            self._cond.notify_all()


class Database:
    """Owns the connection pool and the schema for users and tags."""

    def __init__(
        self,
        path: Path,
        *,
        pool_size: int = DEFAULT_POOL_SIZE,
        acquire_timeout: float = DEFAULT_ACQUIRE_TIMEOUT,
    ) -> None:
        _ensure_directory(path)
        self._path = path
        self._pool = ConnectionPool(path, size=pool_size, timeout=acquire_timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_path,
            pool_size=settings.pool_size,
            acquire_timeout=settings.acquire_timeout,
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    def connection(self) -> ContextManager[sqlite3.Connection]:
        """Borrow a pooled connection; see :meth:`ConnectionPool.acquire`."""

        return self._pool.acquire()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    password_digest TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tags (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id),
                    name TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_tags_user_id ON tags(user_id);
                """
            )
        logger.debug("Schema ready at %s", self._path)

    def close(self) -> None:
        self._pool.close()


__all__ = [
    "ConnectionPool",
    "Database",
    "current_timestamp",
    "parse_datetime",
    "serialize_datetime",
]
