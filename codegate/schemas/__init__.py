"""
Pydantic schemas for API request/response validation.
"""

from codegate.schemas.common import ErrorResponse, HealthResponse
from codegate.schemas.session import (
    AnswerRequest,
    AnswerResponse,
    ArtifactSummary,
    DialogueRequest,
    IngestRequest,
    IngestResponse,
    PhaseResponse,
    ProgressResponse,
    QuizSchema,
    SessionStateResponse,
    SetActiveRequest,
    VisibleCodeResponse,
)

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "AnswerRequest",
    "AnswerResponse",
    "ArtifactSummary",
    "DialogueRequest",
    "IngestRequest",
    "IngestResponse",
    "PhaseResponse",
    "ProgressResponse",
    "QuizSchema",
    "SessionStateResponse",
    "SetActiveRequest",
    "VisibleCodeResponse",
]
