import re
from typing import Iterable, Optional, Sequence

from .errors import ValidationError
from .models import MatchType, SetScore

MIN_SETS = 2
MAX_SETS = 3
SUPER_TIEBREAK_TARGET = 10


def valid_standard_set(t1: int, t2: int) -> bool:
    """
    Returns True if (t1, t2) is a finished standard padel set.
    - 6 games with a 2-game margin (loser at most 4), or
    - 7-5 / 7-6 (tiebreak)
    """
    if t1 < 0 or t2 < 0 or t1 == t2:
        return False
    hi, lo = max(t1, t2), min(t1, t2)
    six_win = hi == 6 and hi - lo >= 2 and lo <= 4
    seven_win = hi == 7 and lo in (5, 6)
    return six_win or seven_win


def valid_super_tiebreak(t1: int, t2: int) -> bool:
    """Returns True if (t1, t2) is a finished super tiebreak: 10+ points, win by 2."""
    if t1 < 0 or t2 < 0 or t1 == t2:
        return False
    return max(t1, t2) >= SUPER_TIEBREAK_TARGET and abs(t1 - t2) >= 2


def compute_winning_team(sets: Iterable[SetScore]) -> Optional[int]:
    """
    Determines the winning team from set scores.
    Returns 1 or 2 for the team with strictly more sets won, None on a tie.
    """
    wins1 = wins2 = 0
    for s in sets:
        if s.t1 > s.t2:
            wins1 += 1
        elif s.t2 > s.t1:
            wins2 += 1
    if wins1 == wins2:
        return None
    return 1 if wins1 > wins2 else 2


def validate_sets(sets: Sequence[SetScore]) -> int:
    """
    Validate a full match score and return the winning team.
    Raises ValidationError if the match is not 2 or 3 sets, any set is illegal,
    a super tiebreak is not the final set, or nobody won more sets.
    """
    if not MIN_SETS <= len(sets) <= MAX_SETS:
        raise ValidationError(f"Best of 3: a match has {MIN_SETS} or {MAX_SETS} sets (2-0 or 2-1), got {len(sets)}.")

    last = len(sets) - 1
    for i, s in enumerate(sets):
        n = i + 1
        if s.super_tiebreak:
            if i != last:
                raise ValidationError(f"Set {n}: super tiebreak allowed only as the final set.")
            if not valid_super_tiebreak(s.t1, s.t2):
                raise ValidationError(f"Set {n}: super tiebreak is to 10, win by 2 ({s.t1}-{s.t2}).")
        elif not valid_standard_set(s.t1, s.t2):
            raise ValidationError(f"Set {n}: set must be 6 with 2-game margin, or 7-5 / 7-6 ({s.t1}-{s.t2}).")

    winner = compute_winning_team(sets)
    if winner is None:
        raise ValidationError("The match has no winner: both teams won the same number of sets.")
    return winner


def validate_teams(
    match_type: MatchType,
    team1: Sequence[int],
    team2: Sequence[int],
    submitter: Optional[int] = None,
) -> None:
    """Check team sizes for the match type, duplicate players and submitter membership."""
    size = match_type.team_size
    if len(team1) != size or len(team2) != size:
        raise ValidationError(
            f"{match_type.value.capitalize()} requires exactly {size} player(s) per team."
        )
    everyone = list(team1) + list(team2)
    if len(set(everyone)) != len(everyone):
        raise ValidationError("A player cannot appear twice in the same match.")
    if submitter is not None and submitter not in everyone:
        raise ValidationError("The submitter must be one of the players.")


def to_score_string(sets: Iterable[SetScore]) -> str:
    return ", ".join(f"{s.t1}-{s.t2}{' (STB)' if s.super_tiebreak else ''}" for s in sets)


_SET_RE = re.compile(r"^\s*(\d{1,2})\s*[-:]\s*(\d{1,2})\s*(\((?:STB|stb)\))?\s*$")


def parse_score(text: str) -> list[SetScore]:
    """
    Parse "6-4, 3-6, 10-8 (STB)" into SetScore values.

    A set whose higher score is 10 or more is read as a super tiebreak even
    without the (STB) marker. Legality is not checked here; see validate_sets.
    """
    parts = [p for p in re.split(r"[,;]", text or "") if p.strip()]
    if not parts:
        raise ValidationError("No set scores given.")
    sets: list[SetScore] = []
    for part in parts:
        m = _SET_RE.match(part)
        if not m:
            raise ValidationError(f"Could not read set score {part.strip()!r}; use e.g. 6-4.")
        t1, t2 = int(m.group(1)), int(m.group(2))
        stb = bool(m.group(3)) or max(t1, t2) >= SUPER_TIEBREAK_TARGET
        sets.append(SetScore(t1, t2, stb))
    return sets
