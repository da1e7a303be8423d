from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timezone

import pytest
from passlib.hash import pbkdf2_sha256

from http2sql.config import ValidationPolicy
from http2sql.database import Database
from http2sql.errors import (
    ApiError,
    ConflictError,
    ErrorKind,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from http2sql.registry import TagRegistry, UserRegistry


def _tag_count(database: Database) -> int:
    with database.connection() as conn:
        return conn.execute("SELECT COUNT(*) FROM tags").fetchone()[0]


def test_register_returns_user_without_digest(users: UserRegistry, database: Database) -> None:
    user = users.register("luke.warm@hotmail.fr", "Randompassword2!")

    assert user.id == 1
    assert user.email == "luke.warm@hotmail.fr"
    assert user.created_at.tzinfo is timezone.utc
    assert not hasattr(user, "password_digest")

    with database.connection() as conn:
        stored = conn.execute("SELECT password_digest FROM users WHERE id = ?", (user.id,)).fetchone()[0]
    assert stored.startswith("$argon2id$")
    assert "Randompassword2!" not in stored


def test_register_assigns_sequential_ids(users: UserRegistry, seeded) -> None:
    assert [user.id for user in seeded] == [1, 2, 3]
    assert users.register("luke.warm@hotmail.fr", "Randompassword2!").id == 4


def test_register_duplicate_email_is_conflict(users: UserRegistry) -> None:
    users.register("dup@example.com", "first-password")

    with pytest.raises(ConflictError) as excinfo:
        users.register("dup@example.com", "second-password")

    assert excinfo.value.kind is ErrorKind.CONFLICT
    assert "email" not in excinfo.value.message.lower()


def test_email_uniqueness_is_case_sensitive(users: UserRegistry) -> None:
    users.register("Case@example.com", "password")
    other = users.register("case@example.com", "password")
    assert other.email == "case@example.com"


def test_concurrent_registration_yields_one_success_and_one_conflict(users: UserRegistry) -> None:
    barrier = threading.Barrier(2)

    def attempt(password: str):
        barrier.wait()
        try:
            return users.register("race@example.com", password)
        except ApiError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=2) as executor:
        results = list(executor.map(attempt, ["password-one", "password-two"]))

    successes = [result for result in results if not isinstance(result, ApiError)]
    failures = [result for result in results if isinstance(result, ApiError)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], ConflictError)


@pytest.mark.parametrize(
    "email",
    ["", "   ", "no-at-sign", "@example.com", "local@", "@"],
)
def test_register_rejects_malformed_email(users: UserRegistry, email: str) -> None:
    with pytest.raises(ValidationError):
        users.register(email, "password")


def test_register_rejects_empty_password(users: UserRegistry) -> None:
    with pytest.raises(ValidationError) as excinfo:
        users.register("someone@example.com", "")
    assert excinfo.value.message == "Password must not be empty"


def test_stricter_email_pattern_is_applied(database: Database) -> None:
    strict = UserRegistry(database, policy=ValidationPolicy(email_pattern=r"[^@\s]+@[^@\s]+\.[a-z]+"))

    with pytest.raises(ValidationError):
        strict.register("user@localhost", "password")
    assert strict.register("user@example.org", "password").email == "user@example.org"


def test_login_accepts_correct_password(users: UserRegistry, seeded) -> None:
    assert users.login("john.doe@gmail.com", "Randompassword1!") is None


def test_login_failures_are_indistinguishable(users: UserRegistry, seeded) -> None:
    with pytest.raises(UnauthorizedError) as unknown:
        users.login("nobody@example.com", "Randompassword1!")
    with pytest.raises(UnauthorizedError) as wrong:
        users.login("john.doe@gmail.com", "not-the-password")

    assert unknown.value.to_dict() == wrong.value.to_dict()
    assert unknown.value.status_code == wrong.value.status_code


def test_login_migrates_deprecated_scheme_digest(users: UserRegistry, database: Database) -> None:
    with database.connection() as conn:
        conn.execute(
            "INSERT INTO users (email, password_digest, created_at) VALUES (?, ?, ?)",
            ("migrate@example.com", pbkdf2_sha256.hash("old-password"), "2020-01-01T00:00:00+00:00"),
        )

    users.login("migrate@example.com", "old-password")

    with database.connection() as conn:
        digest = conn.execute(
            "SELECT password_digest FROM users WHERE email = ?", ("migrate@example.com",)
        ).fetchone()[0]
    assert digest.startswith("$argon2id$")
    users.login("migrate@example.com", "old-password")


def test_list_with_tags_preserves_order(users: UserRegistry, seeded) -> None:
    entries = users.list_with_tags()

    assert [entry.user.email for entry in entries] == [
        "john.doe@gmail.com",
        "jane.doe@gmail.com",
        "bob.smith@yahoo.com",
    ]
    assert [tag.name for tag in entries[0].tags] == ["tag1", "tag2"]
    assert [tag.name for tag in entries[1].tags] == ["tag3"]
    assert all(tag.user_id == entries[0].user.id for tag in entries[0].tags)


def test_list_with_tags_keeps_users_without_tags(users: UserRegistry, seeded) -> None:
    entries = users.list_with_tags()

    assert len(entries) == 3
    assert entries[2].user.email == "bob.smith@yahoo.com"
    assert entries[2].tags == []


def test_list_with_tags_on_empty_store(users: UserRegistry) -> None:
    assert users.list_with_tags() == []


def test_tag_order_follows_creation_not_name(users: UserRegistry, tags: TagRegistry) -> None:
    user = users.register("order@example.com", "password")
    for name in ["zeta", "alpha", "mid"]:
        tags.create(user.id, name)

    entries = users.list_with_tags()
    assert [tag.name for tag in entries[0].tags] == ["zeta", "alpha", "mid"]


def test_get_user(users: UserRegistry, seeded) -> None:
    assert users.get(seeded[1].id).email == "jane.doe@gmail.com"
    with pytest.raises(NotFoundError):
        users.get(999999)


def test_create_tag(tags: TagRegistry, seeded) -> None:
    tag = tags.create(seeded[0].id, "tag4")

    assert tag.id == 4
    assert tag.user_id == seeded[0].id
    assert tag.name == "tag4"
    assert tag.created_at.timestamp() > 0


def test_create_tag_for_unknown_user_persists_nothing(tags: TagRegistry, database: Database, seeded) -> None:
    before = _tag_count(database)

    with pytest.raises(NotFoundError) as excinfo:
        tags.create(999999, "orphan")

    assert excinfo.value.kind is ErrorKind.NOT_FOUND
    assert excinfo.value.message == "User not found"
    assert _tag_count(database) == before


@pytest.mark.parametrize("name", ["", " ", "\t\n"])
def test_create_tag_rejects_blank_names(tags: TagRegistry, seeded, name: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        tags.create(seeded[0].id, name)
    assert excinfo.value.message == "Tag name must not be empty"


def test_tag_names_are_stored_verbatim_by_default(tags: TagRegistry, seeded) -> None:
    assert tags.create(seeded[0].id, "  padded  ").name == "  padded  "


def test_tag_names_can_be_trimmed_by_policy(database: Database, seeded) -> None:
    trimming = TagRegistry(database, policy=ValidationPolicy(strip_tag_names=True))
    assert trimming.create(seeded[0].id, "  padded  ").name == "padded"


def test_duplicate_tag_names_are_allowed(tags: TagRegistry, seeded) -> None:
    first = tags.create(seeded[2].id, "same")
    second = tags.create(seeded[2].id, "same")
    assert first.id != second.id


def test_list_for_user(tags: TagRegistry, seeded) -> None:
    assert [tag.name for tag in tags.list_for_user(seeded[0].id)] == ["tag1", "tag2"]
    assert tags.list_for_user(seeded[2].id) == []
    with pytest.raises(NotFoundError):
        tags.list_for_user(999999)


def test_out_of_range_user_ids_are_not_found(users: UserRegistry, tags: TagRegistry, database: Database, seeded) -> None:
    for user_id in (2**63, 2**64, -(2**63) - 1):
        with pytest.raises(NotFoundError):
            users.get(user_id)
        with pytest.raises(NotFoundError):
            tags.create(user_id, "overflow")
        with pytest.raises(NotFoundError):
            tags.list_for_user(user_id)

    assert _tag_count(database) == 3


def test_register_rejects_password_over_byte_limit(users: UserRegistry) -> None:
    # Two UTF-8 bytes per character: under 4096 characters but over 4096 bytes.
    with pytest.raises(ValidationError) as excinfo:
        users.register("wide@example.com", "é" * 2049)
    assert excinfo.value.message == "Password must be at most 4096 bytes long"


def test_register_rejects_unencodable_text(users: UserRegistry, tags: TagRegistry, seeded) -> None:
    with pytest.raises(ValidationError):
        users.register("a\ud800@b.c", "password")
    with pytest.raises(ValidationError):
        users.register("surrogate@example.com", "pass\ud800word")
    with pytest.raises(ValidationError):
        tags.create(seeded[0].id, "tag\udfff")
