"""Command-line interface for the http2sql service."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence

from http2sql.config import Settings, load_settings
from http2sql.database import Database
from http2sql.errors import ApiError
from http2sql.registry import TagRegistry, UserRegistry

logger = logging.getLogger("http2sql.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="http2sql service utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML configuration file (default: HTTP2SQL_CONFIG or config/http2sql.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the database schema")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the HTTP API (default: 8000)",
    )

    subparsers.add_parser("admin", help="Launch the interactive administration console")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "admin", "init-db"}

    # Global options may precede the subcommand.
    prefix: list[str] = []
    if args_list[:1] == ["--config"] and len(args_list) >= 2:
        prefix, args_list = args_list[:2], args_list[2:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(prefix + args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(prefix + args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(prefix + args_list)


def _initialise_database(settings: Settings) -> Database:
    database = Database.from_settings(settings)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, database: Database, settings: Settings, host: str, port: int) -> None:
    from http2sql.api import create_app
    import uvicorn

    logger.info("Starting http2sql API on http://%s:%s", host, port)

    app = create_app(database=database, settings=settings)
    try:
        uvicorn.run(app, host=host, port=port, log_level="info")
    finally:
        database.close()


def _run_admin_cli(database: Database, settings: Settings) -> None:
    """Provide an interactive console for administrators."""

    users = UserRegistry(database, policy=settings.policy)
    tags = TagRegistry(database, policy=settings.policy)

    print("http2sql Administration Console")
    print("Press Ctrl+C at any time to exit.\n")

    try:
        while True:
            print("Select an option:")
            print("  1) List users and tags")
            print("  2) Add a new user")
            print("  3) Add a tag to a user")
            print("  4) Exit")

            choice = input("Enter choice [1-4]: ").strip()

            if choice == "1":
                _list_users(users)
            elif choice == "2":
                _add_user(users)
            elif choice == "3":
                _add_tag(users, tags)
            elif choice == "4":
                print("Goodbye!")
                return
            else:
                print("Invalid selection. Please choose a number from the menu.\n")

            print()
    except KeyboardInterrupt:
        print("\nExiting administration console.")


def _list_users(users: UserRegistry) -> None:
    entries = users.list_with_tags()
    if not entries:
        print("No users are currently registered.")
        return

    print(f"{len(entries)} user(s) found:")
    print(f"{'ID':>4}  {'Email':<32}  {'Created':<24}  Tags")
    print("-" * 80)
    for entry in entries:
        user = entry.user
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        tag_names = ", ".join(tag.name for tag in entry.tags) or "-"
        print(f"{user.id:>4}  {user.email:<32}  {created:<24}  {tag_names}")


def _add_user(users: UserRegistry) -> None:
    print("\nCreate a new user (leave the email blank to cancel).")
    email = input("Email address: ").strip()
    if not email:
        print("User creation cancelled.")
        return

    password = _prompt_for_password()
    if password is None:
        print("Aborted creating user.")
        return

    try:
        user = users.register(email, password)
    except ApiError as exc:
        print(f"Failed to create user: {exc.message}")
        return

    print(f"Created user #{user.id}: {user.email}")


def _add_tag(users: UserRegistry, tags: TagRegistry) -> None:
    raw_id = input("User ID: ").strip()
    try:
        user_id = int(raw_id)
    except ValueError:
        print("User ID must be a number.")
        return

    try:
        user = users.get(user_id)
    except ApiError as exc:
        print(f"Failed to add tag: {exc.message}")
        return

    name = input(f"Tag name for {user.email}: ")
    try:
        tag = tags.create(user.id, name)
    except ApiError as exc:
        print(f"Failed to add tag: {exc.message}")
        return

    print(f"Created tag #{tag.id} '{tag.name}' for user #{tag.user_id}")

    try:
        owned = tags.list_for_user(user.id)
    except ApiError as exc:
        print(f"Failed to list tags: {exc.message}")
        return
    print(f"{user.email} now has {len(owned)} tag(s): " + ", ".join(t.name for t in owned))


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass("Password: ")
        if not password:
            print("Password must not be empty. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    args = _parse_args(argv)
    settings = load_settings(Path(args.config) if args.config else None)
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(database=database, settings=settings, host=args.host, port=args.port)
    elif args.command == "admin":
        try:
            _run_admin_cli(database, settings)
        finally:
            database.close()
    elif args.command == "init-db":
        database.close()
        print("Database initialisation complete.")


if __name__ == "__main__":
    main()
