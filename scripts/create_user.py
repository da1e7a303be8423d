import argparse
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from http2sql.config import load_settings
from http2sql.database import Database
from http2sql.errors import ApiError
from http2sql.registry import UserRegistry


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an http2sql user")
    parser.add_argument("email", help="Unique email address for login")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML configuration file (defaults to HTTP2SQL_CONFIG or config/http2sql.yaml)",
    )
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if not password:
            print("Password must not be empty.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    password = prompt_for_password()

    settings = load_settings(Path(args.config) if args.config else None)
    database = Database.from_settings(settings)
    database.initialize()

    try:
        user = UserRegistry(database, policy=settings.policy).register(args.email.strip(), password)
    except ApiError as exc:  # duplicates, malformed input, storage trouble
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        database.close()

    print(f"Created user #{user.id}: {user.email}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
