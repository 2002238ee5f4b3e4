"""
Tests for the submit / confirm / reject / finalize workflow against the
in-memory store.
"""

import asyncio

import pytest

from padel_rank.errors import MatchNotFoundError, PersistenceError, PreconditionError, ValidationError
from padel_rank.models import MatchStatus, SetScore
from padel_rank.store import MemoryStore
from padel_rank.workflow import MatchService

STRAIGHT = [SetScore(6, 4), SetScore(6, 4)]


def run(coro):
    return asyncio.run(coro)


async def _doubles(svc: MatchService, category="friendly", sets=STRAIGHT) -> int:
    return await svc.submit_match("doubles", category, sets, [1, 2], [3, 4], submitter_id=1)


async def _confirm_all(svc: MatchService, match_id: int, users=(2, 3, 4)):
    state = None
    for uid in users:
        state = await svc.confirm(match_id, uid)
    return state


def test_submit_creates_pending_match():
    async def scenario():
        svc = MatchService(MemoryStore())
        mid = await _doubles(svc)
        match = await svc.get_match(mid)
        assert match.status is MatchStatus.PENDING
        assert match.winning_team == 1
        assert match.score == "6-4, 6-4"
        assert await svc.teams(mid) == ([1, 2], [3, 4])

        state = await svc.confirmation_state(mid)
        assert state.pending == [2, 3, 4]  # no row for the submitter
        assert not state.ready

        # Players are created with the default rating
        assert (await svc.store.get_ratings([1, 2, 3, 4])) == {1: 1000.0, 2: 1000.0, 3: 1000.0, 4: 1000.0}
        assert [m.id for m in await svc.pending_for_user(3)] == [mid]
        assert await svc.pending_for_user(1) == []

    run(scenario())


@pytest.mark.parametrize(
    "kwargs,message",
    [
        (dict(match_type="singles", team1=[1, 2], team2=[3]), "exactly 1"),
        (dict(team1=[1, 2], team2=[2, 3]), "twice"),
        (dict(submitter=9), "submitter"),
        (dict(sets=[SetScore(10, 8, True), SetScore(6, 4), SetScore(6, 4)]), "final set"),
        (dict(sets=[SetScore(6, 4), SetScore(4, 6)]), "no winner"),
        (dict(sets=[SetScore(6, 4)]), "2 or 3 sets"),
        (dict(match_type="mixed"), "match type"),
        (dict(category="exhibition"), "category"),
    ],
)
def test_submit_validation_persists_nothing(kwargs, message):
    async def scenario():
        store = MemoryStore()
        svc = MatchService(store)
        args = dict(match_type="doubles", category="friendly", sets=STRAIGHT, team1=[1, 2], team2=[3, 4], submitter=1)
        args.update(kwargs)
        with pytest.raises(ValidationError, match=message):
            await svc.submit_match(
                args["match_type"], args["category"], args["sets"], args["team1"], args["team2"], args["submitter"]
            )
        assert await store.top_players() == []
        assert await store.get_match(1) is None

    run(scenario())


def test_confirm_until_ready():
    async def scenario():
        svc = MatchService(MemoryStore())
        mid = await _doubles(svc)
        state = await svc.confirm(mid, 2)
        assert state.status is MatchStatus.PENDING
        assert state.confirmed == [2] and state.pending == [3, 4]

        # Confirming twice is harmless
        await svc.confirm(mid, 2)
        state = await _confirm_all(svc, mid, users=(3, 4))
        assert state.status is MatchStatus.CONFIRMED
        assert state.ready
        assert (await svc.get_match(mid)).status is MatchStatus.CONFIRMED

    run(scenario())


def test_confirm_by_wrong_user():
    async def scenario():
        svc = MatchService(MemoryStore())
        mid = await _doubles(svc)
        with pytest.raises(ValidationError, match="submitter"):
            await svc.confirm(mid, 1)
        with pytest.raises(ValidationError, match="not asked"):
            await svc.confirm(mid, 99)
        with pytest.raises(MatchNotFoundError):
            await svc.confirm(123, 2)

    run(scenario())


def test_reject_disputes_match():
    async def scenario():
        svc = MatchService(MemoryStore())
        mid = await _doubles(svc)
        await svc.confirm(mid, 2)
        state = await svc.reject(mid, 3)
        assert state.status is MatchStatus.DISPUTED
        assert state.rejected == [3]
        assert not state.ready

        with pytest.raises(PreconditionError, match="disputed"):
            await svc.finalize(mid)
        with pytest.raises(PreconditionError):
            await svc.confirm(mid, 4)
        assert (await svc.store.get_ratings([1, 3]))[1] == 1000.0

    run(scenario())


def test_last_response_wins():
    async def scenario():
        svc = MatchService(MemoryStore())
        mid = await _doubles(svc)
        state = await _confirm_all(svc, mid)
        assert state.status is MatchStatus.CONFIRMED

        # Changing your mind after confirming disputes the match
        state = await svc.reject(mid, 2)
        assert state.status is MatchStatus.DISPUTED
        assert state.rejected == [2] and state.confirmed == [3, 4]
        row = next(c for c in await svc.store.get_confirmations(mid) if c.user_id == 2)
        assert (row.confirmed, row.rejected) == (False, True)
        assert (await svc.get_match(mid)).status is MatchStatus.DISPUTED

    run(scenario())


def test_concurrent_confirmations():
    async def scenario():
        svc = MatchService(MemoryStore())
        mid = await _doubles(svc)
        await asyncio.gather(svc.confirm(mid, 2), svc.confirm(mid, 3), svc.confirm(mid, 4))
        state = await svc.confirmation_state(mid)
        assert state.status is MatchStatus.CONFIRMED
        assert sorted(state.confirmed) == [2, 3, 4]
        assert state.ready

    run(scenario())


def test_finalize_requires_all_confirmations():
    """One confirmation still outstanding: finalize refuses and ratings stay put."""
    async def scenario():
        svc = MatchService(MemoryStore())
        mid = await _doubles(svc)
        await _confirm_all(svc, mid, users=(2, 3))
        with pytest.raises(PreconditionError, match="waiting on 1"):
            await svc.finalize(mid)
        assert await svc.store.get_ratings([1, 2, 3, 4]) == {1: 1000.0, 2: 1000.0, 3: 1000.0, 4: 1000.0}
        assert (await svc.get_match(mid)).status is MatchStatus.PENDING

    run(scenario())


def test_finalize_applies_ratings_once():
    async def scenario():
        svc = MatchService(MemoryStore())
        preview = await svc.preview("doubles", "friendly", STRAIGHT, [1, 2], [3, 4])
        mid = await _doubles(svc)
        await _confirm_all(svc, mid)

        result = await svc.finalize(mid)
        assert not result.already_finalized
        assert result.status is MatchStatus.RATED
        assert result.projection.delta == 11
        assert result.projection.to_dict() == preview.to_dict()
        assert await svc.store.get_ratings([1, 2, 3, 4]) == {1: 1011.0, 2: 1011.0, 3: 989.0, 4: 989.0}

        again = await svc.finalize(mid)
        assert again.already_finalized
        assert again.projection == result.projection
        assert await svc.store.get_ratings([1, 2, 3, 4]) == {1: 1011.0, 2: 1011.0, 3: 989.0, 4: 989.0}

        with pytest.raises(PreconditionError, match="rated"):
            await svc.reject(mid, 2)

    run(scenario())


def test_concurrent_finalize_applies_once():
    async def scenario():
        svc = MatchService(MemoryStore())
        mid = await _doubles(svc, category="club_league", sets=[SetScore(6, 0), SetScore(6, 0)])
        await _confirm_all(svc, mid)
        first, second = await asyncio.gather(svc.finalize(mid), svc.finalize(mid))
        assert sorted([first.already_finalized, second.already_finalized]) == [False, True]
        assert first.projection == second.projection
        assert (await svc.store.get_ratings([1]))[1] == 1000.0 + first.projection.delta

    run(scenario())


def test_finalize_rolls_back_on_store_failure():
    class FlakyStore(MemoryStore):
        calls = 0

        async def update_player(self, user_id, new_rating, won):
            FlakyStore.calls += 1
            if FlakyStore.calls == 3:
                raise PersistenceError("disk full")
            await super().update_player(user_id, new_rating, won)

    async def scenario():
        svc = MatchService(FlakyStore())
        mid = await _doubles(svc)
        await _confirm_all(svc, mid)
        with pytest.raises(PersistenceError):
            await svc.finalize(mid)
        assert await svc.store.get_ratings([1, 2, 3, 4]) == {1: 1000.0, 2: 1000.0, 3: 1000.0, 4: 1000.0}
        assert (await svc.get_match(mid)).status is MatchStatus.CONFIRMED

        # Retrying after the failure succeeds
        result = await svc.finalize(mid)
        assert result.projection.delta == 11

    run(scenario())


def test_singles_flow_and_stats():
    async def scenario():
        svc = MatchService(MemoryStore(), momentum_window=2)
        m1 = await svc.submit_match("singles", "friendly", STRAIGHT, [1], [2], submitter_id=2)
        await svc.confirm(m1, 1)
        r1 = await svc.finalize(m1)

        m2 = await svc.submit_match("singles", "club_league", [SetScore(6, 7), SetScore(10, 12, True)], [1], [2], 1)
        await svc.confirm(m2, 2)
        r2 = await svc.finalize(m2)
        assert r2.projection.winner_team == 2

        history = await svc.rating_history(1)
        assert history == [(m2, r2.projection.delta), (m1, r1.projection.delta)]
        assert await svc.momentum(1) == r1.projection.delta + r2.projection.delta

        s1 = await svc.player_stats(1)
        assert (s1.matches, s1.wins, s1.losses, s1.win_rate_pct, s1.streak) == (2, 1, 1, 50, 0)
        assert s1.last_delta == r2.projection.delta
        s2 = await svc.player_stats(2)
        assert s2.streak == 1
        assert await svc.player_stats(42) is None

        board = await svc.leaderboard()
        assert {p.user_id for p in board} == {1, 2}
        assert board[0].rating >= board[1].rating
        assert [p.user_id for p in await svc.leaderboard(limit=1, offset=1)] == [board[1].user_id]
        assert await svc.leaderboard(limit=0) == []

    run(scenario())


def test_project_rating_is_pure():
    async def scenario():
        store = MemoryStore()
        svc = MatchService(store)
        p = svc.project_rating({1: 1000.0}, {2: 1000.0}, "national_championship", 1, STRAIGHT)
        assert p.delta == 53
        assert await store.top_players() == []

    run(scenario())


def test_category_weights_exposed():
    assert MatchService.category_weights()["corporate_challenge"] == 25
