"""
Unlock engine error taxonomy.

Recoverable, unit-local failures (one malformed artifact block, one failed
oracle call) are isolated by the component that hits them. Everything else
propagates to the caller of the SessionManager entry point.
"""

from typing import Optional


class UnlockEngineError(Exception):
    """Base class for all unlock engine errors."""

    code = "UNLOCK_ENGINE_ERROR"

    def __init__(self, message: str, *, artifact_id: Optional[str] = None):
        super().__init__(message)
        self.artifact_id = artifact_id


class ExtractionError(UnlockEngineError):
    """A demarcated artifact block could not be parsed (bad marker metadata)."""

    code = "EXTRACTION_ERROR"


class StaleQuizError(UnlockEngineError):
    """An answer was submitted against a quiz that is no longer current."""

    code = "STALE_QUIZ"

    def __init__(
        self,
        message: str,
        *,
        artifact_id: Optional[str] = None,
        quiz_id: Optional[str] = None,
        current_quiz_id: Optional[str] = None,
    ):
        super().__init__(message, artifact_id=artifact_id)
        self.quiz_id = quiz_id
        self.current_quiz_id = current_quiz_id


class OracleUnavailableError(UnlockEngineError):
    """Quiz generation or grading call failed. Safe to retry."""

    code = "ORACLE_UNAVAILABLE"


class RestoreError(UnlockEngineError):
    """A persisted snapshot failed shape or invariant validation."""

    code = "RESTORE_ERROR"


class InvariantViolationError(UnlockEngineError):
    """A structural invariant (quiz ids, progress map, level bounds) is broken."""

    code = "INVARIANT_VIOLATION"


class SkipNotAllowedError(UnlockEngineError):
    """Skip was requested while the session policy forbids it."""

    code = "SKIP_NOT_ALLOWED"


class UnknownArtifactError(UnlockEngineError):
    """The artifact id is not tracked by this session."""

    code = "UNKNOWN_ARTIFACT"


class SessionClosedError(UnlockEngineError):
    """The session was closed; its manager accepts no further calls."""

    code = "SESSION_CLOSED"
