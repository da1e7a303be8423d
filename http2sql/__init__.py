"""Core utilities for the http2sql user and tag service."""

from __future__ import annotations

from typing import Any

from .config import Settings, ValidationPolicy, load_settings, resolve_database_path
from .database import ConnectionPool, Database
from .registry import TagRegistry, UserRegistry


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "ConnectionPool",
    "Database",
    "Settings",
    "TagRegistry",
    "UserRegistry",
    "ValidationPolicy",
    "create_app",
    "load_settings",
    "resolve_database_path",
]
