"""Padel Rank core package.

Exports commonly used modules for convenience.
"""

from . import mmr as mmr
from . import rules as rules
from . import logging_config as logging_config
from .db import SqliteStore
from .errors import MatchNotFoundError, PersistenceError, PreconditionError, RatingError, ValidationError
from .models import (
    ConfirmationState,
    FinalizeResult,
    Match,
    MatchCategory,
    MatchStatus,
    MatchType,
    Player,
    RatingProjection,
    SetScore,
)
from .store import MemoryStore, RatingStore
from .workflow import MatchService

__all__ = [
    "mmr",
    "rules",
    "logging_config",
    "SqliteStore",
    "MemoryStore",
    "RatingStore",
    "MatchService",
    "RatingError",
    "ValidationError",
    "PreconditionError",
    "MatchNotFoundError",
    "PersistenceError",
    "ConfirmationState",
    "FinalizeResult",
    "Match",
    "MatchCategory",
    "MatchStatus",
    "MatchType",
    "Player",
    "RatingProjection",
    "SetScore",
]
