"""Error taxonomy for the pronunciation mastery engine.

Every error here is recoverable at the request boundary; ``app.main`` maps
each class to a structured JSON response. ``NoDataAvailable`` is
not an exception: the confidence calculator returns it as a value.
"""
from typing import Optional


class MasteryEngineError(Exception):
    """Base class for all engine errors."""

    code = "EngineError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ScoringUnavailable(MasteryEngineError):
    """The external speech scorer failed, timed out or returned garbage.

    No attempt is recorded and no state is mutated; the caller should retry
    the whole submission later.
    """

    code = "ScoringUnavailable"


class InvalidInput(MasteryEngineError):
    """Input rejected before any mutation."""

    code = "InvalidInput"


class InvalidThreshold(InvalidInput):
    """Passing threshold is missing, non-numeric or outside [0, 100]."""

    code = "InvalidThreshold"


class InvalidScore(InvalidInput):
    """A score is missing, non-numeric or outside [0, 100]."""

    code = "InvalidScore"


class ConcurrentUpdateConflict(MasteryEngineError):
    """Optimistic-concurrency retries were exhausted for one record key."""

    code = "ConcurrentUpdateConflict"

    def __init__(self, message: str, key: Optional[str] = None, attempts: int = 0):
        super().__init__(message)
        self.key = key
        self.attempts = attempts


class NoDataAvailable:
    """Result returned when a learner has never recorded an attempt.

    Callers branch on ``isinstance(result, NoDataAvailable)`` to tell
    "never practiced" apart from "practiced poorly".
    """

    status = "no_data"

    def __init__(self, learner_id: str):
        self.learner_id = learner_id

    def __eq__(self, other) -> bool:
        return isinstance(other, NoDataAvailable) and other.learner_id == self.learner_id

    def __repr__(self) -> str:
        return f"NoDataAvailable(learner_id={self.learner_id!r})"

    def to_dict(self) -> dict:
        return {"learner_id": self.learner_id, "status": self.status}
