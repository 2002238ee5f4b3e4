"""
MMR (Matchmaking Rating) calculations using ELO system.
Pure functions for calculating team rating changes; both the preview path and
match finalization go through project_rating so the two can never disagree.
"""

import math
from typing import Iterable, Mapping, Sequence

from .models import (
    DEFAULT_RATING,
    MatchCategory,
    ProjectionItem,
    RatingProjection,
    SetScore,
    normalize_category,
)

K_FACTORS: dict[MatchCategory, int] = {
    MatchCategory.FRIENDLY: 16,
    MatchCategory.CLUB_LEAGUE: 32,
    MatchCategory.OFFICIAL_TOURNAMENT: 50,
    MatchCategory.CORPORATE_CHALLENGE: 25,
    MatchCategory.NATIONAL_CHAMPIONSHIP: 75,
}

MARGIN_PER_GAME = 0.1
MARGIN_GAMES_CAP = 5
SUPER_TIEBREAK_BONUS = 0.05
MARGIN_CAP = 1.5


def expected_score(ra: float, rb: float) -> float:
    """
    Calculate the expected score for side A against side B.

    Args:
        ra: Rating of side A
        rb: Rating of side B

    Returns:
        Expected score (probability) for side A to win, strictly between 0 and 1
    """
    return 1 / (1 + math.pow(10, (rb - ra) / 400))


def team_rating(ratings: Iterable[float]) -> float:
    """
    Calculate the effective team rating from individual player ratings.
    Uses the average rating as the team's effective rating.

    Args:
        ratings: Individual player ratings

    Returns:
        Team's effective rating (DEFAULT_RATING for an empty team)
    """
    ratings = list(ratings)
    if not ratings:
        return DEFAULT_RATING
    return sum(ratings) / len(ratings)


def k_factor(category: MatchCategory | str) -> int:
    """K-factor for a match category; legacy category names are accepted."""
    return K_FACTORS[normalize_category(category)]


def category_weights() -> dict[str, int]:
    """The K-factor table keyed by category name, for display before submission."""
    return {c.value: k for c, k in K_FACTORS.items()}


def margin_multiplier(sets: Sequence[SetScore]) -> float:
    """
    Scale factor rewarding lopsided results.

    1.0 plus 0.1 per game of total differential (at most 5 games counted),
    plus 0.05 when a super tiebreak was played, never above 1.5.
    """
    games = sum(abs(s.t1 - s.t2) for s in sets)
    stb = any(s.super_tiebreak for s in sets)
    mul = 1.0 + min(MARGIN_GAMES_CAP, games) * MARGIN_PER_GAME + (SUPER_TIEBREAK_BONUS if stb else 0.0)
    return min(MARGIN_CAP, mul)


def apply_elo(ra: float, rb: float, score_a: int, k: int, margin: float = 1.0) -> tuple[float, float, float]:
    """
    Apply a zero-sum ELO update between two (team-average) ratings.

    Args:
        ra: Rating of side A
        rb: Rating of side B
        score_a: 1 if side A won, 0 if it lost
        k: K-factor for the match category
        margin: Margin multiplier

    Returns:
        Tuple of (new_rating_a, new_rating_b, unrounded_delta_a)
    """
    delta_a = k * margin * (score_a - expected_score(ra, rb))
    return ra + delta_a, rb - delta_a, delta_a


def round_delta(delta: float) -> int:
    """Round half up (toward positive infinity), e.g. 52.5 -> 53 and -52.5 -> -52."""
    return int(math.floor(delta + 0.5))


def project_rating(
    team1: Mapping[int, float],
    team2: Mapping[int, float],
    category: MatchCategory | str,
    winner_team: int,
    sets: Sequence[SetScore] = (),
) -> RatingProjection:
    """
    Compute the rating change every player would receive for a result.

    The rounded team delta is applied identically to every member: added for
    team 1, subtracted for team 2. An empty ``sets`` means no margin bonus.
    """
    if winner_team not in (1, 2):
        raise ValueError(f"winner_team must be 1 or 2, got {winner_team!r}")

    k = k_factor(category)
    margin = margin_multiplier(sets) if sets else 1.0
    r1 = team_rating(team1.values())
    r2 = team_rating(team2.values())
    exp1 = expected_score(r1, r2)

    _new1, _new2, raw = apply_elo(r1, r2, 1 if winner_team == 1 else 0, k, margin)
    delta = round_delta(raw)

    items = [ProjectionItem(uid, 1, r, delta, r + delta) for uid, r in team1.items()]
    items += [ProjectionItem(uid, 2, r, -delta, r - delta) for uid, r in team2.items()]

    return RatingProjection(
        k=k,
        margin=margin,
        team1_avg=r1,
        team2_avg=r2,
        exp1=exp1,
        exp2=1 - exp1,
        winner_team=winner_team,
        delta=delta,
        items=tuple(items),
    )
