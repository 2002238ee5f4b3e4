"""
Match submission, confirmation and rating finalization.

    submit -> pending --(all confirm)--> confirmed --finalize--> rated
                 \\--(any reject)--> disputed

Every state change runs inside ``store.transaction()`` so concurrent calls on
the same match are serialized, and finalize writes all ratings or none.
"""

from __future__ import annotations

from typing import Optional, Sequence

from . import mmr, rules
from .errors import MatchNotFoundError, PreconditionError, ValidationError
from .logging_config import get_logger
from .models import (
    ConfirmationState,
    FinalizeResult,
    Match,
    MatchCategory,
    MatchStatus,
    MatchType,
    Participant,
    Player,
    PlayerStats,
    RatingProjection,
    SetScore,
    normalize_category,
)
from .store import RatingStore

log = get_logger(__name__)


def _match_type(value: MatchType | str) -> MatchType:
    try:
        return MatchType(value)
    except ValueError:
        raise ValidationError(f"Unknown match type {value!r}; use singles or doubles.") from None


def _category(value: MatchCategory | str) -> MatchCategory:
    try:
        return normalize_category(value)
    except ValueError:
        raise ValidationError(f"Unknown match category {value!r}.") from None


def _teams(participants: Sequence[Participant]) -> tuple[list[int], list[int]]:
    team1 = [p.user_id for p in participants if p.team_number == 1]
    team2 = [p.user_id for p in participants if p.team_number == 2]
    return team1, team2


class MatchService:
    def __init__(self, store: RatingStore, leaderboard_page_size: int = 30, momentum_window: int = 5):
        self.store = store
        self.leaderboard_page_size = leaderboard_page_size
        self.momentum_window = momentum_window

    # --- Projection ---

    @staticmethod
    def category_weights() -> dict[str, int]:
        return mmr.category_weights()

    @staticmethod
    def project_rating(
        team1_ratings: dict[int, float],
        team2_ratings: dict[int, float],
        category: MatchCategory | str,
        winner_team: int,
        sets: Sequence[SetScore] = (),
    ) -> RatingProjection:
        """Pure preview from explicit ratings; nothing is read or written."""
        return mmr.project_rating(team1_ratings, team2_ratings, _category(category), winner_team, sets)

    async def preview(
        self,
        match_type: MatchType | str,
        category: MatchCategory | str,
        sets: Sequence[SetScore],
        team1_ids: Sequence[int],
        team2_ids: Sequence[int],
    ) -> RatingProjection:
        """Validate a proposed result and project it against current stored ratings."""
        mtype, cat = _match_type(match_type), _category(category)
        rules.validate_teams(mtype, team1_ids, team2_ids)
        winner = rules.validate_sets(sets)
        ratings = await self.store.get_ratings(list(team1_ids) + list(team2_ids))
        return mmr.project_rating(
            {uid: ratings[uid] for uid in team1_ids},
            {uid: ratings[uid] for uid in team2_ids},
            cat,
            winner,
            sets,
        )

    # --- Submission ---

    async def submit_match(
        self,
        match_type: MatchType | str,
        category: MatchCategory | str,
        sets: Sequence[SetScore],
        team1_ids: Sequence[int],
        team2_ids: Sequence[int],
        submitter_id: int,
    ) -> int:
        """Validate and persist a pending match. Returns the new match ID."""
        mtype, cat = _match_type(match_type), _category(category)
        rules.validate_teams(mtype, team1_ids, team2_ids, submitter_id)
        winner = rules.validate_sets(sets)

        team1, team2 = list(team1_ids), list(team2_ids)
        confirmers = [uid for uid in team1 + team2 if uid != submitter_id]
        match = Match(
            id=None,
            match_type=mtype,
            category=cat,
            sets=list(sets),
            score=rules.to_score_string(sets),
            status=MatchStatus.PENDING,
            winning_team=winner,
            submitted_by=submitter_id,
        )
        async with self.store.transaction() as tx:
            for uid in team1 + team2:
                await tx.get_or_create_player(uid)
            match_id = await tx.insert_pending_match(match, team1, team2, confirmers)

        log.info("Match #%s submitted by %s (%s, %s) %s", match_id, submitter_id, mtype.value, cat.value, match.score)
        return match_id

    # --- Confirmation ---

    async def confirm(self, match_id: int, user_id: int) -> ConfirmationState:
        return await self._respond(match_id, user_id, confirmed=True)

    async def reject(self, match_id: int, user_id: int) -> ConfirmationState:
        return await self._respond(match_id, user_id, confirmed=False)

    async def _respond(self, match_id: int, user_id: int, confirmed: bool) -> ConfirmationState:
        async with self.store.transaction() as tx:
            match = await tx.get_match(match_id)
            if match is None:
                raise MatchNotFoundError(match_id)
            if match.status in (MatchStatus.RATED, MatchStatus.DISPUTED):
                raise PreconditionError(f"Match #{match_id} is {match.status.value}; responses are closed.")

            required = {c.user_id for c in await tx.get_confirmations(match_id)}
            if user_id not in required:
                if user_id == match.submitted_by:
                    raise ValidationError("The submitter has already confirmed by submitting the match.")
                raise ValidationError(f"User {user_id} is not asked to confirm match #{match_id}.")

            await tx.upsert_confirmation(match_id, user_id, confirmed=confirmed, rejected=not confirmed)
            state = await self._state(tx, match)

            new_status = MatchStatus.DISPUTED if state.rejected else (
                MatchStatus.CONFIRMED if not state.pending else MatchStatus.PENDING
            )
            if new_status is not match.status:
                await tx.set_match_status(match_id, new_status)
                state.status = new_status

        if state.status is MatchStatus.DISPUTED:
            log.info("Match #%s disputed by %s", match_id, user_id)
        elif state.ready:
            log.info("Match #%s fully confirmed; ready to finalize", match_id)
        else:
            log.info("Match #%s %s by %s (%s pending)", match_id, "confirmed" if confirmed else "rejected", user_id, len(state.pending))
        return state

    async def confirmation_state(self, match_id: int) -> ConfirmationState:
        match = await self.store.get_match(match_id)
        if match is None:
            raise MatchNotFoundError(match_id)
        return await self._state(self.store, match)

    @staticmethod
    async def _state(store: RatingStore, match: Match) -> ConfirmationState:
        state = ConfirmationState(match_id=match.id, status=match.status)
        for c in await store.get_confirmations(match.id):
            if c.rejected:
                state.rejected.append(c.user_id)
            elif c.confirmed:
                state.confirmed.append(c.user_id)
            else:
                state.pending.append(c.user_id)
        return state

    # --- Finalization ---

    async def finalize(self, match_id: int) -> FinalizeResult:
        """
        Apply the match result to player ratings exactly once.

        A second call (or the loser of a race) finds the match already rated
        and gets the recorded projection back without touching any rating.
        """
        async with self.store.transaction() as tx:
            match = await tx.get_match(match_id)
            if match is None:
                raise MatchNotFoundError(match_id)

            if match.status is MatchStatus.RATED:
                log.info("Match #%s already finalized; returning recorded result", match_id)
                return FinalizeResult(match_id, match.status, match.projection, already_finalized=True)

            state = await self._state(tx, match)
            if state.rejected or match.status is MatchStatus.DISPUTED:
                raise PreconditionError(f"Match #{match_id} is disputed and cannot be finalized.")
            if state.pending:
                raise PreconditionError(
                    f"Match #{match_id} is waiting on {len(state.pending)} confirmation(s): {state.pending}"
                )
            if match.winning_team is None:
                raise PreconditionError(f"Match #{match_id} has no winner recorded.")

            team1, team2 = _teams(await tx.get_participants(match_id))
            ratings = await tx.get_ratings(team1 + team2)
            projection = mmr.project_rating(
                {uid: ratings[uid] for uid in team1},
                {uid: ratings[uid] for uid in team2},
                match.category,
                match.winning_team,
                match.sets,
            )
            for item in projection.items:
                await tx.update_player(item.user_id, item.new, won=item.team == projection.winner_team)
            await tx.record_finalization(match_id, projection)

        log.info(
            "Match #%s finalized (winner=team%s k=%s margin=%.2f delta=%s)",
            match_id, projection.winner_team, projection.k, projection.margin, projection.delta,
        )
        return FinalizeResult(match_id, MatchStatus.RATED, projection)

    # --- Read models ---

    async def get_match(self, match_id: int) -> Match:
        match = await self.store.get_match(match_id)
        if match is None:
            raise MatchNotFoundError(match_id)
        return match

    async def teams(self, match_id: int) -> tuple[list[int], list[int]]:
        return _teams(await self.store.get_participants(match_id))

    async def leaderboard(self, limit: Optional[int] = None, offset: int = 0) -> list[Player]:
        return await self.store.top_players(self.leaderboard_page_size if limit is None else limit, offset)

    async def pending_for_user(self, user_id: int) -> list[Match]:
        return await self.store.list_pending_for_user(user_id)

    async def rating_history(self, user_id: int, limit: Optional[int] = None) -> list[tuple[int, int]]:
        """(match_id, rating_delta) for rated matches, newest first."""
        rows = await self.store.participant_history(user_id, limit)
        return [(p.match_id, p.rating_delta or 0) for p in rows]

    async def momentum(self, user_id: int, window: Optional[int] = None) -> int:
        """Sum of the user's most recent rating deltas."""
        history = await self.rating_history(user_id, window or self.momentum_window)
        return sum(delta for _match_id, delta in history)

    async def player_stats(self, user_id: int) -> Optional[PlayerStats]:
        player = await self.store.get_player(user_id)
        if player is None:
            return None
        history = await self.store.participant_history(user_id)
        wins = sum(1 for p in history if p.is_winner)
        losses = len(history) - wins
        streak = 0
        for p in history:
            if not p.is_winner:
                break
            streak += 1
        return PlayerStats(
            user_id=user_id,
            rating=player.rating,
            matches=len(history),
            wins=wins,
            losses=losses,
            win_rate_pct=round(100 * wins / len(history)) if history else 0,
            streak=streak,
            last_delta=(history[0].rating_delta or 0) if history else 0,
        )
