"""Configuration management for the http2sql service."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .errors import ValidationError

DEFAULT_POOL_SIZE = 5
DEFAULT_ACQUIRE_TIMEOUT = 5.0
# passlib refuses secrets longer than this.
MAX_PASSWORD_BYTES = 4096


@dataclass(frozen=True)
class ValidationPolicy:
    """Input rules applied at the registry boundary.

    The defaults only require a non-empty local and domain part around an
    ``@``. ``email_pattern`` adds a stricter regular expression on top.
    Every text field must be encodable as UTF-8.
    """

    email_pattern: Optional[str] = None
    min_password_length: int = 1
    max_password_bytes: int = MAX_PASSWORD_BYTES
    strip_tag_names: bool = False
    max_tag_name_length: int = 255

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "ValidationPolicy":
        pattern = data.get("email_pattern")
        if pattern is not None:
            try:
                re.compile(str(pattern))
            except re.error as exc:
                raise ValueError(f"Invalid email_pattern: {exc}") from exc
        min_length = int(data.get("min_password_length", 1))
        if min_length < 1:
            raise ValueError("min_password_length must be at least 1")
        max_password_bytes = int(data.get("max_password_bytes", MAX_PASSWORD_BYTES))
        if not min_length <= max_password_bytes <= MAX_PASSWORD_BYTES:
            raise ValueError(
                f"max_password_bytes must be between min_password_length and {MAX_PASSWORD_BYTES}"
            )
        max_tag_length = int(data.get("max_tag_name_length", 255))
        if max_tag_length < 1:
            raise ValueError("max_tag_name_length must be at least 1")
        strip_tag_names = data.get("strip_tag_names", False)
        if not isinstance(strip_tag_names, bool):
            raise ValueError("strip_tag_names must be true or false")
        return ValidationPolicy(
            email_pattern=str(pattern) if pattern is not None else None,
            min_password_length=min_length,
            max_password_bytes=max_password_bytes,
            strip_tag_names=strip_tag_names,
            max_tag_name_length=max_tag_length,
        )

    @staticmethod
    def require_utf8(value: str, label: str) -> bytes:
        """Return ``value`` encoded as UTF-8; lone surrogates are rejected."""

        try:
            return value.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise ValidationError(f"{label} contains invalid characters") from exc

    def validate_email(self, email: str) -> str:
        if not email or not email.strip():
            raise ValidationError("Email address must not be empty")
        self.require_utf8(email, "Email address")
        local, sep, domain = email.rpartition("@")
        if not sep or not local or not domain:
            raise ValidationError("Email address is malformed")
        if self.email_pattern and re.fullmatch(self.email_pattern, email) is None:
            raise ValidationError("Email address is malformed")
        return email

    def validate_password(self, password: str) -> str:
        if not password:
            raise ValidationError("Password must not be empty")
        encoded = self.require_utf8(password, "Password")
        if len(password) < self.min_password_length:
            raise ValidationError(
                f"Password must be at least {self.min_password_length} characters long"
            )
        if len(encoded) > self.max_password_bytes:
            raise ValidationError(
                f"Password must be at most {self.max_password_bytes} bytes long"
            )
        return password

    def normalize_tag_name(self, name: str) -> str:
        if not name or not name.strip():
            raise ValidationError("Tag name must not be empty")
        self.require_utf8(name, "Tag name")
        if self.strip_tag_names:
            name = name.strip()
        if len(name) > self.max_tag_name_length:
            raise ValidationError(
                f"Tag name must be at most {self.max_tag_name_length} characters long"
            )
        return name


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the database layer and input validation."""

    database_path: Path
    pool_size: int = DEFAULT_POOL_SIZE
    acquire_timeout: float = DEFAULT_ACQUIRE_TIMEOUT
    policy: ValidationPolicy = field(default_factory=ValidationPolicy)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "http2sql.sqlite3").resolve(strict=False)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the optional YAML configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "http2sql.yaml").resolve(strict=False)
    return candidate


def _read_config_file(config_path: Path) -> Dict[str, object]:
    if not config_path.exists():
        return {}
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return raw


def _section(raw: Mapping[str, object], name: str) -> Mapping[str, object]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Configuration section '{name}' must be a mapping")
    return value


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from the YAML file, then apply environment overrides."""

    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(env.get("HTTP2SQL_CONFIG"))

    raw = _read_config_file(config_path)
    database = _section(raw, "database")
    pool = _section(raw, "pool")
    validation = _section(raw, "validation")

    db_value = env.get("HTTP2SQL_DB_PATH") or database.get("path")
    if db_value and not env.get("HTTP2SQL_DB_PATH"):
        raw_path = Path(str(db_value)).expanduser()
        if not raw_path.is_absolute():
            db_value = str(config_path.parent / raw_path)
    database_path = resolve_database_path(str(db_value) if db_value else None)

    try:
        pool_size = int(env.get("HTTP2SQL_POOL_SIZE") or pool.get("size", DEFAULT_POOL_SIZE))
        acquire_timeout = float(
            env.get("HTTP2SQL_POOL_TIMEOUT") or pool.get("timeout", DEFAULT_ACQUIRE_TIMEOUT)
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid pool configuration: {exc}") from exc

    if pool_size < 1:
        raise ValueError("Pool size must be at least 1")
    if acquire_timeout <= 0:
        raise ValueError("Pool timeout must be positive")

    return Settings(
        database_path=database_path,
        pool_size=pool_size,
        acquire_timeout=acquire_timeout,
        policy=ValidationPolicy.from_dict(validation),
    )


__all__ = [
    "Settings",
    "ValidationPolicy",
    "load_settings",
    "resolve_config_path",
    "resolve_database_path",
]
