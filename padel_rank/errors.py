"""Exceptions raised by the rating engine."""


class RatingError(Exception):
    """Base class for all rating engine failures."""


class ValidationError(RatingError, ValueError):
    """Bad input at submission: team composition, set scores, no winner."""


class PreconditionError(RatingError):
    """The match is not in a state that allows the requested operation."""


class MatchNotFoundError(PreconditionError):
    def __init__(self, match_id: int):
        super().__init__(f"match {match_id} not found")
        self.match_id = match_id


class PersistenceError(RatingError):
    """The backing store failed; nothing was committed and the call may be retried."""
