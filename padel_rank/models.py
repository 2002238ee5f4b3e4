"""
Data models for the padel rating engine.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

DEFAULT_RATING = 1000.0


class MatchType(str, Enum):
    SINGLES = "singles"
    DOUBLES = "doubles"

    @property
    def team_size(self) -> int:
        return 1 if self is MatchType.SINGLES else 2


class MatchCategory(str, Enum):
    FRIENDLY = "friendly"
    CLUB_LEAGUE = "club_league"
    OFFICIAL_TOURNAMENT = "official_tournament"
    CORPORATE_CHALLENGE = "corporate_challenge"
    NATIONAL_CHAMPIONSHIP = "national_championship"


class MatchStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISPUTED = "disputed"
    RATED = "rated"

    @property
    def is_terminal(self) -> bool:
        return self is MatchStatus.RATED


# Legacy spellings found in older rows; mapped once at the storage boundary.
_STATUS_SYNONYMS = {
    "finalized": MatchStatus.RATED,
    "completed": MatchStatus.RATED,
    "complete": MatchStatus.RATED,
    "verified": MatchStatus.RATED,
    "rejected": MatchStatus.DISPUTED,
}

_CATEGORY_SYNONYMS = {
    "league": MatchCategory.CLUB_LEAGUE,
    "ranked": MatchCategory.CLUB_LEAGUE,
    "tournament": MatchCategory.OFFICIAL_TOURNAMENT,
    "nationals": MatchCategory.NATIONAL_CHAMPIONSHIP,
}


def normalize_status(value: str | MatchStatus) -> MatchStatus:
    """Map a stored status (canonical or legacy synonym) to MatchStatus."""
    if isinstance(value, MatchStatus):
        return value
    key = (value or "").strip().lower()
    if key in _STATUS_SYNONYMS:
        return _STATUS_SYNONYMS[key]
    return MatchStatus(key)


def normalize_category(value: str | MatchCategory) -> MatchCategory:
    """Map a category name (canonical or legacy 4-tier name) to MatchCategory."""
    if isinstance(value, MatchCategory):
        return value
    key = (value or "").strip().lower()
    if key in _CATEGORY_SYNONYMS:
        return _CATEGORY_SYNONYMS[key]
    return MatchCategory(key)


@dataclass(frozen=True)
class SetScore:
    t1: int
    t2: int
    super_tiebreak: bool = False

    def to_dict(self) -> dict:
        return {"t1": self.t1, "t2": self.t2, "super_tiebreak": self.super_tiebreak}

    @classmethod
    def from_dict(cls, d: dict) -> "SetScore":
        return cls(int(d["t1"]), int(d["t2"]), bool(d.get("super_tiebreak", False)))


@dataclass
class Player:
    user_id: int
    username: str
    rating: float = DEFAULT_RATING
    wins: int = 0
    losses: int = 0


@dataclass
class Match:
    id: int | None
    match_type: MatchType
    category: MatchCategory
    sets: list[SetScore]
    score: str
    status: MatchStatus
    winning_team: int | None
    submitted_by: int
    created_at: str | None = None
    projection: Optional["RatingProjection"] = None


@dataclass
class Participant:
    match_id: int
    user_id: int
    team_number: int
    is_winner: bool | None = None
    rating_delta: int | None = None


@dataclass
class Confirmation:
    match_id: int
    user_id: int
    confirmed: bool = False
    rejected: bool = False
    responded_at: str | None = None

    @property
    def responded(self) -> bool:
        return self.confirmed or self.rejected


@dataclass(frozen=True)
class ProjectionItem:
    user_id: int
    team: int
    old: float
    delta: int
    new: float


@dataclass(frozen=True)
class RatingProjection:
    """Per-player rating preview; the same object is persisted at finalization."""

    k: int
    margin: float
    team1_avg: float
    team2_avg: float
    exp1: float
    exp2: float
    winner_team: int
    delta: int
    items: tuple[ProjectionItem, ...] = ()

    def for_user(self, user_id: int) -> ProjectionItem | None:
        for item in self.items:
            if item.user_id == user_id:
                return item
        return None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["items"] = [asdict(i) for i in self.items]
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "RatingProjection":
        items = tuple(
            ProjectionItem(
                user_id=int(i["user_id"]),
                team=int(i["team"]),
                old=float(i["old"]),
                delta=int(i["delta"]),
                new=float(i["new"]),
            )
            for i in d.get("items", [])
        )
        return cls(
            k=int(d["k"]),
            margin=float(d["margin"]),
            team1_avg=float(d["team1_avg"]),
            team2_avg=float(d["team2_avg"]),
            exp1=float(d["exp1"]),
            exp2=float(d["exp2"]),
            winner_team=int(d["winner_team"]),
            delta=int(d["delta"]),
            items=items,
        )


@dataclass
class ConfirmationState:
    match_id: int
    status: MatchStatus
    confirmed: list[int] = field(default_factory=list)
    pending: list[int] = field(default_factory=list)
    rejected: list[int] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        """True when every required confirmation is in and nobody rejected."""
        return not self.pending and not self.rejected and self.status is not MatchStatus.RATED


@dataclass
class FinalizeResult:
    match_id: int
    status: MatchStatus
    # None only for matches rated before projections were stored
    projection: Optional[RatingProjection]
    already_finalized: bool = False


@dataclass
class PlayerStats:
    user_id: int
    rating: float
    matches: int
    wins: int
    losses: int
    win_rate_pct: int
    streak: int
    last_delta: int
