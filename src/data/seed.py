"""User directory seeding.

Loads officers and admins from the bundled ``users.json`` (or the file
named by ``RESOLVEDESK_SEED_USERS_FILE``) so complaints can be assigned
before anyone has signed in.  Runs once at application startup.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from src.models.user import User

if TYPE_CHECKING:
    from src.services.repository import UserRepository

logger = structlog.get_logger(__name__)

_DEFAULT_USERS_PATH: Path = Path(__file__).resolve().parent / "users.json"


def load_users(path: Path | None = None) -> list[User]:
    """Parse a JSON list of ``{id, full_name, email, roles}`` objects.

    Entries that fail validation are logged and skipped.

    Raises
    ------
    FileNotFoundError
        If the JSON file does not exist.
    json.JSONDecodeError
        If the JSON is malformed.
    """
    file_path = path or _DEFAULT_USERS_PATH
    if not file_path.exists():
        raise FileNotFoundError(f"User seed file not found: {file_path}")

    with file_path.open("r", encoding="utf-8") as f:
        raw_users: list[dict] = json.load(f)

    users: list[User] = []
    for raw in raw_users:
        try:
            users.append(User.model_validate(raw))
        except Exception:
            logger.warning("seed.parse_error", user_id=raw.get("id", "unknown"), exc_info=True)

    logger.info("seed.loaded_users", count=len(users), source=str(file_path))
    return users


async def seed_users(users: UserRepository, *, path: Path | None = None) -> list[User]:
    """Load users from JSON and upsert them into *users*."""
    loaded = load_users(path)
    for user in loaded:
        await users.upsert(user)
    logger.info("seed.complete", users=len(loaded))
    return loaded
