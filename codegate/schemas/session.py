"""
Pydantic schemas for the conversation unlock API.

Quiz payloads sent to clients never include the correct label or option
explanations; those only come back in an AnswerResponse.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from codegate.engines.unlock.models import Artifact, ArtifactProgress, Quiz


class IngestRequest(BaseModel):
    """Assistant text so far (a growing prefix while streaming)."""

    text: str
    is_final: bool = False
    turn_ordinal: Optional[int] = Field(default=None, ge=0)


class QuizOptionSchema(BaseModel):
    label: str
    text: str


class QuizSchema(BaseModel):
    """A quiz as shown to the learner."""

    id: str
    level: int
    question: str
    options: List[QuizOptionSchema]
    hint: Optional[str] = None
    code_snippet: Optional[str] = None
    code_language: Optional[str] = None

    @classmethod
    def from_quiz(cls, quiz: Optional[Quiz]) -> Optional["QuizSchema"]:
        if quiz is None:
            return None
        return cls(
            id=quiz.id,
            level=quiz.level,
            question=quiz.question,
            options=[QuizOptionSchema(label=o.label, text=o.text) for o in quiz.options],
            hint=quiz.hint,
            code_snippet=quiz.code_snippet,
            code_language=quiz.code_language,
        )


class ArtifactSummary(BaseModel):
    """Artifact metadata plus its unlock progress."""

    id: str
    key: str
    title: str
    language: str
    version: int
    truncated: bool
    line_count: int
    artifact_type: str
    unlock_level: int
    total_gates: int
    percent: int
    is_unlocked: bool

    @classmethod
    def build(cls, artifact: Artifact, progress: ArtifactProgress) -> "ArtifactSummary":
        return cls(
            id=artifact.id,
            key=artifact.key,
            title=artifact.title,
            language=artifact.language,
            version=artifact.version,
            truncated=artifact.truncated,
            line_count=artifact.line_count,
            artifact_type=artifact.artifact_type.value,
            unlock_level=progress.unlock_level,
            total_gates=progress.total_gates,
            percent=progress.percent,
            is_unlocked=progress.is_unlocked,
        )


class IngestResponse(BaseModel):
    phase: str
    artifacts: List[ArtifactSummary]
    display_text: str


class SessionStateResponse(BaseModel):
    conversation_id: str
    phase: str
    active_artifact_id: Optional[str] = None
    turn_ordinal: int
    skip_allowed: bool
    artifacts: List[ArtifactSummary] = []


class SetActiveRequest(BaseModel):
    artifact_id: str


class ProgressResponse(BaseModel):
    artifact_id: str
    unlock_level: int
    total_gates: int
    percent: int
    is_unlocked: bool
    description: str
    current_quiz: Optional[QuizSchema] = None


class VisibleCodeResponse(BaseModel):
    """Redacted artifact text for the code panel."""

    artifact_id: str
    title: str
    language: str
    version: int
    code: str
    visible_lines: List[int]
    total_lines: int
    progress: ProgressResponse


class AnswerRequest(BaseModel):
    quiz_id: str
    answer: str = Field(..., min_length=1)


class DialogueRequest(BaseModel):
    """Free-form answer graded by the oracle."""

    quiz_id: str
    answer: str = Field(..., min_length=1, max_length=4000)
    code_context: Optional[str] = None


class AnswerResponse(BaseModel):
    artifact_id: str
    quiz_id: str
    is_correct: bool
    unlock_level: int
    total_gates: int
    is_unlocked: bool
    feedback: Optional[str] = None
    explanation: Optional[str] = None
    next_quiz: Optional[QuizSchema] = None


class PhaseResponse(BaseModel):
    conversation_id: str
    phase: str
