"""Password hashing and verification for user credentials."""
from __future__ import annotations

import secrets
from functools import lru_cache

from passlib.context import CryptContext

# argon2id with fixed cost factors. Digests are PHC strings that embed the
# algorithm, cost parameters and salt, so the cost can be raised later and old
# rows are upgraded on their next successful login. This service only ever
# writes argon2id; pbkdf2_sha256 is listed as a deprecated scheme so that the
# rehash-on-login path has a second scheme to migrate from, which the tests use.
_ARGON2_TIME_COST = 3
_ARGON2_MEMORY_COST = 64 * 1024
_ARGON2_PARALLELISM = 4

_pwd_context = CryptContext(
    schemes=["argon2", "pbkdf2_sha256"],
    deprecated="auto",
    argon2__type="ID",
    argon2__time_cost=_ARGON2_TIME_COST,
    argon2__memory_cost=_ARGON2_MEMORY_COST,
    argon2__parallelism=_ARGON2_PARALLELISM,
)


def hash_password(password: str) -> str:
    """Return a salted, self-describing digest for ``password``."""

    return _pwd_context.hash(password)


def verify_password(password: str, digest: str) -> bool:
    """Return ``True`` if ``password`` matches ``digest``.

    Malformed or unrecognised digests yield ``False`` instead of raising.
    """

    if not digest:
        return False
    try:
        return _pwd_context.verify(password, digest)
    except (ValueError, TypeError):
        return False


def needs_rehash(digest: str) -> bool:
    """Return ``True`` when ``digest`` was produced with outdated parameters."""

    try:
        return _pwd_context.needs_update(digest)
    except (ValueError, TypeError):
        return False


@lru_cache(maxsize=1)
def _dummy_digest() -> str:
    return hash_password(secrets.token_urlsafe(32))


def burn_verification(password: str) -> None:
    """Spend the cost of one verification without a stored digest.

    Used when the principal is unknown so the response time does not reveal
    whether the account exists.
    """

    verify_password(password, _dummy_digest())


__all__ = ["burn_verification", "hash_password", "needs_rehash", "verify_password"]
