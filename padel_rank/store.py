"""
Storage interfaces the rating engine depends on, plus an in-memory store.

The engine never talks SQL directly. Anything that implements RatingStore
(see db.SqliteStore) can back a MatchService; MemoryStore is the reference
implementation used by the unit tests.
"""

from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import AsyncContextManager, AsyncIterator, Iterable, Optional, Protocol

from .errors import MatchNotFoundError
from .models import (
    DEFAULT_RATING,
    Confirmation,
    Match,
    MatchStatus,
    Participant,
    Player,
    RatingProjection,
)


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class PlayerRatingStore(Protocol):
    async def get_player(self, user_id: int) -> Optional[Player]: ...

    async def get_or_create_player(self, user_id: int, username: Optional[str] = None) -> Player: ...

    async def get_ratings(self, user_ids: Iterable[int]) -> dict[int, float]: ...

    async def update_player(self, user_id: int, new_rating: float, won: bool) -> None: ...

    async def top_players(self, limit: int = 30, offset: int = 0) -> list[Player]: ...


class MatchStore(Protocol):
    async def insert_pending_match(
        self, match: Match, team1: list[int], team2: list[int], confirmers: list[int]
    ) -> int: ...

    async def get_match(self, match_id: int) -> Optional[Match]: ...

    async def get_participants(self, match_id: int) -> list[Participant]: ...

    async def set_match_status(self, match_id: int, status: MatchStatus) -> None: ...

    async def record_finalization(self, match_id: int, projection: RatingProjection) -> None: ...

    async def participant_history(self, user_id: int, limit: Optional[int] = None) -> list[Participant]: ...


class ConfirmationStore(Protocol):
    async def upsert_confirmation(self, match_id: int, user_id: int, confirmed: bool, rejected: bool) -> None: ...

    async def get_confirmations(self, match_id: int) -> list[Confirmation]: ...

    async def list_pending_for_user(self, user_id: int) -> list[Match]: ...


class RatingStore(PlayerRatingStore, MatchStore, ConfirmationStore, Protocol):
    def transaction(self) -> AsyncContextManager["RatingStore"]:
        """Exclusive, all-or-nothing section; at most one runs at a time per store."""
        ...


class MemoryStore:
    """Dict-backed RatingStore. Transactions hold a lock and restore a snapshot on error."""

    def __init__(self, default_rating: float = DEFAULT_RATING):
        self.default_rating = default_rating
        self._players: dict[int, Player] = {}
        self._matches: dict[int, Match] = {}
        self._participants: dict[int, list[Participant]] = {}
        self._confirmations: dict[int, dict[int, Confirmation]] = {}
        self._rated_order: list[int] = []
        self._next_id = 1
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["MemoryStore"]:
        async with self._lock:
            snapshot = copy.deepcopy(
                (self._players, self._matches, self._participants, self._confirmations, self._rated_order, self._next_id)
            )
            try:
                yield self
            except BaseException:
                (
                    self._players,
                    self._matches,
                    self._participants,
                    self._confirmations,
                    self._rated_order,
                    self._next_id,
                ) = snapshot
                raise

    # players

    async def get_player(self, user_id: int) -> Optional[Player]:
        p = self._players.get(user_id)
        return replace(p) if p else None

    async def get_or_create_player(self, user_id: int, username: Optional[str] = None) -> Player:
        if user_id not in self._players:
            self._players[user_id] = Player(user_id, username or f"User{user_id}", self.default_rating)
        return replace(self._players[user_id])

    async def get_ratings(self, user_ids: Iterable[int]) -> dict[int, float]:
        return {
            uid: (self._players[uid].rating if uid in self._players else self.default_rating)
            for uid in user_ids
        }

    async def update_player(self, user_id: int, new_rating: float, won: bool) -> None:
        p = self._players.setdefault(user_id, Player(user_id, f"User{user_id}", self.default_rating))
        p.rating = new_rating
        if won:
            p.wins += 1
        else:
            p.losses += 1

    async def top_players(self, limit: int = 30, offset: int = 0) -> list[Player]:
        ranked = sorted(self._players.values(), key=lambda p: (-p.rating, p.user_id))
        return [replace(p) for p in ranked[offset : offset + limit]]

    # matches

    async def insert_pending_match(
        self, match: Match, team1: list[int], team2: list[int], confirmers: list[int]
    ) -> int:
        match_id = self._next_id
        self._next_id += 1
        self._matches[match_id] = replace(match, id=match_id, status=MatchStatus.PENDING, created_at=utcnow())
        self._participants[match_id] = [Participant(match_id, uid, 1) for uid in team1] + [
            Participant(match_id, uid, 2) for uid in team2
        ]
        self._confirmations[match_id] = {uid: Confirmation(match_id, uid) for uid in confirmers}
        return match_id

    async def get_match(self, match_id: int) -> Optional[Match]:
        m = self._matches.get(match_id)
        return replace(m) if m else None

    async def get_participants(self, match_id: int) -> list[Participant]:
        return [replace(p) for p in self._participants.get(match_id, [])]

    async def set_match_status(self, match_id: int, status: MatchStatus) -> None:
        if match_id not in self._matches:
            raise MatchNotFoundError(match_id)
        self._matches[match_id].status = status

    async def record_finalization(self, match_id: int, projection: RatingProjection) -> None:
        if match_id not in self._matches:
            raise MatchNotFoundError(match_id)
        for p in self._participants[match_id]:
            item = projection.for_user(p.user_id)
            p.rating_delta = item.delta if item else 0
            p.is_winner = p.team_number == projection.winner_team
        m = self._matches[match_id]
        m.status = MatchStatus.RATED
        m.projection = projection
        self._rated_order.append(match_id)

    async def participant_history(self, user_id: int, limit: Optional[int] = None) -> list[Participant]:
        out = []
        for match_id in reversed(self._rated_order):
            for p in self._participants[match_id]:
                if p.user_id == user_id:
                    out.append(replace(p))
        return out if limit is None else out[:limit]

    # confirmations

    async def upsert_confirmation(self, match_id: int, user_id: int, confirmed: bool, rejected: bool) -> None:
        rows = self._confirmations.setdefault(match_id, {})
        rows[user_id] = Confirmation(match_id, user_id, confirmed, rejected, utcnow())

    async def get_confirmations(self, match_id: int) -> list[Confirmation]:
        return [replace(c) for c in self._confirmations.get(match_id, {}).values()]

    async def list_pending_for_user(self, user_id: int) -> list[Match]:
        out = []
        for match_id in sorted(self._matches, reverse=True):
            m = self._matches[match_id]
            c = self._confirmations.get(match_id, {}).get(user_id)
            if m.status in (MatchStatus.PENDING, MatchStatus.CONFIRMED) and c and not c.responded:
                out.append(replace(m))
        return out
