import json
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Optional

import aiosqlite

from .errors import MatchNotFoundError, PersistenceError
from .logging_config import get_logger
from .models import (
    DEFAULT_RATING,
    Confirmation,
    Match,
    MatchStatus,
    MatchType,
    Participant,
    Player,
    RatingProjection,
    SetScore,
    normalize_category,
    normalize_status,
)
from .store import utcnow

log = get_logger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS players (
        user_id INTEGER PRIMARY KEY,
        username TEXT NOT NULL,
        rating REAL NOT NULL DEFAULT 1000.0,
        wins INTEGER NOT NULL DEFAULT 0,
        losses INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS matches (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        match_type TEXT CHECK(match_type IN ('singles','doubles')) NOT NULL,
        match_level TEXT NOT NULL DEFAULT 'friendly',
        sets TEXT NOT NULL,
        score TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        winning_team INTEGER CHECK(winning_team IN (1,2)),
        submitted_by INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        rated_at TEXT,
        projection TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS match_players (
        match_id INTEGER NOT NULL REFERENCES matches(id),
        user_id INTEGER NOT NULL,
        team_number INTEGER CHECK(team_number IN (1,2)) NOT NULL,
        is_winner INTEGER,
        rating_delta INTEGER,
        PRIMARY KEY(match_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS match_confirmations (
        match_id INTEGER NOT NULL REFERENCES matches(id),
        user_id INTEGER NOT NULL,
        confirmed INTEGER NOT NULL DEFAULT 0,
        rejected INTEGER NOT NULL DEFAULT 0,
        responded_at TEXT,
        PRIMARY KEY(match_id, user_id),
        CHECK(NOT (confirmed = 1 AND rejected = 1))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_match_players_user ON match_players(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_match_confirmations_user ON match_confirmations(user_id)",
)

# One-time rewrite of legacy status / category spellings to the canonical values.
LEGACY_STATUS = {
    "rated": ("finalized", "completed", "complete", "verified"),
    "disputed": ("rejected",),
}
LEGACY_LEVEL = {
    "club_league": ("league", "ranked"),
    "official_tournament": ("tournament",),
    "national_championship": ("nationals",),
}


def _row_to_player(row) -> Player:
    return Player(
        user_id=row["user_id"],
        username=row["username"],
        rating=row["rating"],
        wins=row["wins"],
        losses=row["losses"],
    )


def _row_to_match(row) -> Match:
    projection = json.loads(row["projection"]) if row["projection"] else None
    return Match(
        id=row["id"],
        match_type=MatchType(row["match_type"]),
        category=normalize_category(row["match_level"]),
        sets=[SetScore.from_dict(s) for s in json.loads(row["sets"] or "[]")],
        score=row["score"],
        status=normalize_status(row["status"]),
        winning_team=row["winning_team"],
        submitted_by=row["submitted_by"],
        created_at=row["created_at"],
        projection=RatingProjection.from_dict(projection) if projection else None,
    )


def _row_to_participant(row) -> Participant:
    return Participant(
        match_id=row["match_id"],
        user_id=row["user_id"],
        team_number=row["team_number"],
        is_winner=None if row["is_winner"] is None else bool(row["is_winner"]),
        rating_delta=row["rating_delta"],
    )


def _row_to_confirmation(row) -> Confirmation:
    return Confirmation(
        match_id=row["match_id"],
        user_id=row["user_id"],
        confirmed=bool(row["confirmed"]),
        rejected=bool(row["rejected"]),
        responded_at=row["responded_at"],
    )


class SqliteStore:
    """aiosqlite-backed RatingStore.

    Outside a transaction every call opens its own connection and commits
    before returning. Inside ``transaction()`` all calls share one connection
    holding the database write lock (BEGIN IMMEDIATE) and commit together.
    """

    def __init__(self, db_path: str = "padel_rank.sqlite", default_rating: float = DEFAULT_RATING):
        self.db_path = db_path
        self.default_rating = default_rating
        self._conn: Optional[aiosqlite.Connection] = None
        self._anchor: Optional[aiosqlite.Connection] = None

    def _connect(self) -> aiosqlite.Connection:
        # Shared in-memory databases are addressed by URI
        return aiosqlite.connect(self.db_path, uri=self.db_path.startswith("file:"))

    @asynccontextmanager
    async def _db(self) -> AsyncIterator[aiosqlite.Connection]:
        if self._conn is not None:
            yield self._conn
            return
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                yield db
                await db.commit()
        except aiosqlite.Error as e:
            log.error("Database error on %s: %s", self.db_path, e)
            raise PersistenceError(str(e)) from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SqliteStore"]:
        if self._conn is not None:
            raise RuntimeError("transactions do not nest")
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                await db.execute("BEGIN IMMEDIATE")
                tx = type(self)(self.db_path, self.default_rating)
                tx._conn = db
                try:
                    yield tx
                except BaseException:
                    await db.rollback()
                    raise
                await db.commit()
        except aiosqlite.Error as e:
            log.error("Transaction failed on %s: %s", self.db_path, e)
            raise PersistenceError(str(e)) from e

    async def init_db(self) -> None:
        """Create tables and normalize legacy status/category values."""
        if self.db_path.startswith("file:") and self._anchor is None:
            # Keep one connection open so the shared in-memory database survives
            self._anchor = await self._connect()
        async with self._db() as db:
            for stmt in SCHEMA:
                await db.execute(stmt)
            for canonical, legacy in LEGACY_STATUS.items():
                marks = ",".join("?" * len(legacy))
                cur = await db.execute(
                    f"UPDATE matches SET status = ? WHERE lower(status) IN ({marks})", (canonical, *legacy)
                )
                if cur.rowcount:
                    log.warning("Migrated %s match(es) to status=%s", cur.rowcount, canonical)
            for canonical, legacy in LEGACY_LEVEL.items():
                marks = ",".join("?" * len(legacy))
                await db.execute(
                    f"UPDATE matches SET match_level = ? WHERE lower(match_level) IN ({marks})", (canonical, *legacy)
                )
        log.debug("Database ready at %s", self.db_path)

    async def close(self) -> None:
        if self._anchor is not None:
            await self._anchor.close()
            self._anchor = None

    # --- Players ---

    async def get_player(self, user_id: int) -> Optional[Player]:
        async with self._db() as db:
            async with db.execute("SELECT * FROM players WHERE user_id = ?", (user_id,)) as cursor:
                row = await cursor.fetchone()
                return _row_to_player(row) if row else None

    async def get_or_create_player(self, user_id: int, username: Optional[str] = None) -> Player:
        """Get existing player or create new one with the default rating."""
        async with self._db() as db:
            now = utcnow()
            await db.execute(
                """
                INSERT INTO players (user_id, username, rating, wins, losses, created_at, updated_at)
                VALUES (?, ?, ?, 0, 0, ?, ?)
                ON CONFLICT(user_id) DO NOTHING
                """,
                (user_id, username or f"User{user_id}", self.default_rating, now, now),
            )
            async with db.execute("SELECT * FROM players WHERE user_id = ?", (user_id,)) as cursor:
                row = await cursor.fetchone()
                return _row_to_player(row)

    async def get_ratings(self, user_ids: Iterable[int]) -> dict[int, float]:
        ids = list(user_ids)
        if not ids:
            return {}
        marks = ",".join("?" * len(ids))
        async with self._db() as db:
            async with db.execute(
                f"SELECT user_id, rating FROM players WHERE user_id IN ({marks})", ids
            ) as cursor:
                found = {row["user_id"]: row["rating"] for row in await cursor.fetchall()}
        return {uid: found.get(uid, self.default_rating) for uid in ids}

    async def update_player(self, user_id: int, new_rating: float, won: bool) -> None:
        """Update player rating and win/loss count."""
        async with self._db() as db:
            now = utcnow()
            await db.execute(
                """
                INSERT INTO players (user_id, username, rating, wins, losses, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    rating = excluded.rating,
                    wins = players.wins + excluded.wins,
                    losses = players.losses + excluded.losses,
                    updated_at = excluded.updated_at
                """,
                (user_id, f"User{user_id}", new_rating, int(won), int(not won), now, now),
            )
        log.debug("Updated player=%s rating=%.1f won=%s", user_id, new_rating, won)

    async def top_players(self, limit: int = 30, offset: int = 0) -> list[Player]:
        """Get top players by rating."""
        async with self._db() as db:
            async with db.execute(
                "SELECT * FROM players ORDER BY rating DESC, user_id ASC LIMIT ? OFFSET ?",
                (limit, offset),
            ) as cursor:
                return [_row_to_player(row) for row in await cursor.fetchall()]

    # --- Matches ---

    async def insert_pending_match(
        self, match: Match, team1: list[int], team2: list[int], confirmers: list[int]
    ) -> int:
        """Insert a pending match with its participant and confirmation rows, return its ID."""
        async with self._db() as db:
            cursor = await db.execute(
                """
                INSERT INTO matches (match_type, match_level, sets, score, status, winning_team, submitted_by, created_at)
                VALUES (?, ?, ?, ?, 'pending', ?, ?, ?)
                """,
                (
                    match.match_type.value,
                    match.category.value,
                    json.dumps([s.to_dict() for s in match.sets]),
                    match.score,
                    match.winning_team,
                    match.submitted_by,
                    utcnow(),
                ),
            )
            match_id = cursor.lastrowid
            await db.executemany(
                "INSERT INTO match_players (match_id, user_id, team_number) VALUES (?, ?, ?)",
                [(match_id, uid, 1) for uid in team1] + [(match_id, uid, 2) for uid in team2],
            )
            await db.executemany(
                "INSERT INTO match_confirmations (match_id, user_id) VALUES (?, ?)",
                [(match_id, uid) for uid in confirmers],
            )
        log.debug("Inserted pending match id=%s team1=%s team2=%s score=%s", match_id, team1, team2, match.score)
        return match_id

    async def get_match(self, match_id: int) -> Optional[Match]:
        async with self._db() as db:
            async with db.execute("SELECT * FROM matches WHERE id = ?", (match_id,)) as cursor:
                row = await cursor.fetchone()
                return _row_to_match(row) if row else None

    async def get_participants(self, match_id: int) -> list[Participant]:
        async with self._db() as db:
            async with db.execute(
                "SELECT * FROM match_players WHERE match_id = ? ORDER BY team_number, rowid", (match_id,)
            ) as cursor:
                return [_row_to_participant(row) for row in await cursor.fetchall()]

    async def set_match_status(self, match_id: int, status: MatchStatus) -> None:
        async with self._db() as db:
            cursor = await db.execute("UPDATE matches SET status = ? WHERE id = ?", (status.value, match_id))
            if cursor.rowcount == 0:
                raise MatchNotFoundError(match_id)
        log.debug("Set match status id=%s status=%s", match_id, status.value)

    async def record_finalization(self, match_id: int, projection: RatingProjection) -> None:
        """Store per-participant deltas and the projection, and mark the match rated."""
        async with self._db() as db:
            cursor = await db.execute(
                "UPDATE matches SET status = 'rated', rated_at = ?, projection = ? WHERE id = ?",
                (utcnow(), json.dumps(projection.to_dict(), sort_keys=True), match_id),
            )
            if cursor.rowcount == 0:
                raise MatchNotFoundError(match_id)
            await db.executemany(
                "UPDATE match_players SET rating_delta = ?, is_winner = ? WHERE match_id = ? AND user_id = ?",
                [
                    (item.delta, int(item.team == projection.winner_team), match_id, item.user_id)
                    for item in projection.items
                ],
            )
        log.debug("Recorded finalization match=%s delta=%s", match_id, projection.delta)

    async def participant_history(self, user_id: int, limit: Optional[int] = None) -> list[Participant]:
        """Participant rows of rated matches for a user, newest first."""
        async with self._db() as db:
            async with db.execute(
                """
                SELECT mp.* FROM match_players mp
                JOIN matches m ON m.id = mp.match_id
                WHERE mp.user_id = ? AND m.status = 'rated'
                ORDER BY m.rated_at DESC, m.id DESC
                LIMIT ?
                """,
                (user_id, -1 if limit is None else limit),
            ) as cursor:
                return [_row_to_participant(row) for row in await cursor.fetchall()]

    # --- Confirmations ---

    async def upsert_confirmation(self, match_id: int, user_id: int, confirmed: bool, rejected: bool) -> None:
        """Add or update a user's confirmation; the latest response wins."""
        async with self._db() as db:
            await db.execute(
                """
                INSERT INTO match_confirmations (match_id, user_id, confirmed, rejected, responded_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(match_id, user_id) DO UPDATE SET
                    confirmed = excluded.confirmed,
                    rejected = excluded.rejected,
                    responded_at = excluded.responded_at
                """,
                (match_id, user_id, int(confirmed), int(rejected), utcnow()),
            )
        log.debug("Confirmation recorded match=%s user=%s confirmed=%s rejected=%s", match_id, user_id, confirmed, rejected)

    async def get_confirmations(self, match_id: int) -> list[Confirmation]:
        async with self._db() as db:
            async with db.execute(
                "SELECT * FROM match_confirmations WHERE match_id = ? ORDER BY rowid", (match_id,)
            ) as cursor:
                return [_row_to_confirmation(row) for row in await cursor.fetchall()]

    async def list_pending_for_user(self, user_id: int) -> list[Match]:
        """Open matches still waiting for this user's response, newest first."""
        async with self._db() as db:
            async with db.execute(
                """
                SELECT m.* FROM matches m
                JOIN match_confirmations c ON c.match_id = m.id
                WHERE c.user_id = ? AND c.confirmed = 0 AND c.rejected = 0
                  AND m.status IN ('pending', 'confirmed')
                ORDER BY m.id DESC
                """,
                (user_id,),
            ) as cursor:
                rows = await cursor.fetchall()
        out = [_row_to_match(row) for row in rows]
        log.debug("Pending matches for user=%s -> %s", user_id, len(out))
        return out
