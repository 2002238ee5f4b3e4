"""
Runtime settings, read from the environment (and a .env file if present).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .logging_config import get_logger
from .models import DEFAULT_RATING

log = get_logger(__name__)


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warning("Invalid %s value %r, using default %s", name, raw, default)
        return default
    if value <= 0:
        log.warning("%s must be positive, using default %s", name, default)
        return default
    return value


@dataclass(frozen=True)
class Settings:
    discord_token: Optional[str] = None
    test_mode: bool = False
    test_guild_id: Optional[int] = None
    database_path: str = "./padel_rank.sqlite"
    default_rating: float = DEFAULT_RATING
    leaderboard_page_size: int = 30
    momentum_window: int = 5

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()

        test_mode = _flag("TEST_MODE")
        database_path = os.getenv(
            "DATABASE_PATH",
            "./test_padel_rank.sqlite" if test_mode else "./padel_rank.sqlite",
        )
        if _flag("EPHEMERAL_DB"):
            database_path = "file::memory:?cache=shared"

        try:
            default_rating = float(os.getenv("DEFAULT_RATING", str(DEFAULT_RATING)))
            if default_rating <= 0:
                log.warning("DEFAULT_RATING must be positive, using default %s", DEFAULT_RATING)
                default_rating = DEFAULT_RATING
        except ValueError:
            log.warning("Invalid DEFAULT_RATING value, using default %s", DEFAULT_RATING)
            default_rating = DEFAULT_RATING

        return cls(
            discord_token=os.getenv("DISCORD_TOKEN"),
            test_mode=test_mode,
            test_guild_id=int(os.getenv("TEST_GUILD_ID", "0") or 0) or None,
            database_path=database_path,
            default_rating=default_rating,
            leaderboard_page_size=_positive_int("LEADERBOARD_PAGE_SIZE", 30),
            momentum_window=_positive_int("MOMENTUM_WINDOW", 5),
        )
