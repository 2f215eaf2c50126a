"""
Unlock engine data model.

Artifacts and quizzes are immutable values; ArtifactProgress and SessionState
are the mutable aggregate owned by a single SessionManager.
"""

import hashlib
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_content_hash(content: str) -> str:
    """SHA-256 fingerprint of artifact content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class GenerationPhase(str, Enum):
    """Session-level phase (a projection of the active artifact's progress)."""
    INITIAL = "initial"
    PLANNING = "planning"
    CODING = "coding"
    UNLOCKING = "unlocking"
    UNLOCKED = "unlocked"


class ArtifactType(str, Enum):
    """Kinds of generated artifacts."""
    CODE = "code"
    COMPONENT = "component"
    CONFIG = "config"


class LineImportance(str, Enum):
    """Structural importance of a source line, most important first."""
    SIGNATURE = "signature"
    STRUCTURE = "structure"
    LOGIC = "logic"
    DETAIL = "detail"


class QuizSource(str, Enum):
    """Where a quiz came from."""
    ORACLE = "oracle"      # Structured object returned by the oracle
    TEXT = "text"          # Recovered from oracle free text
    FALLBACK = "fallback"  # Synthesized locally from artifact metadata


class Artifact(BaseModel):
    """A named block of generated source code. Replaced, never edited."""

    model_config = ConfigDict(frozen=True)

    id: str
    key: str
    title: str
    language: str = "text"
    content: str
    content_hash: str
    version: int = 1
    truncated: bool = False
    ordinal: int = 0
    artifact_type: ArtifactType = ArtifactType.CODE
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def line_count(self) -> int:
        return len(self.content.split("\n")) if self.content else 0


class AnalyzedLine(BaseModel):
    """One classified line of an artifact."""

    model_config = ConfigDict(frozen=True)

    index: int
    content: str
    importance: LineImportance

    @property
    def is_blank(self) -> bool:
        return self.content.strip() == ""


class QuizOption(BaseModel):
    """A single answer option."""

    label: str
    text: str
    explanation: Optional[str] = None


class Quiz(BaseModel):
    """A comprehension check tied to one artifact version and one gate level."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    level: int = 0
    question: str
    options: List[QuizOption]
    correct_label: str
    hint: Optional[str] = None
    detailed_explanation: Optional[str] = None
    code_snippet: Optional[str] = None
    code_language: Optional[str] = None
    source: QuizSource = QuizSource.ORACLE

    @model_validator(mode="after")
    def _check_options(self) -> "Quiz":
        if not self.question.strip():
            raise ValueError("quiz question must not be empty")
        if not 2 <= len(self.options) <= 4:
            raise ValueError(f"quiz needs 2-4 options, got {len(self.options)}")
        labels = [o.label for o in self.options]
        if len(set(labels)) != len(labels):
            raise ValueError(f"quiz option labels must be unique: {labels}")
        if labels.count(self.correct_label) != 1:
            raise ValueError(
                f"correct_label {self.correct_label!r} must match exactly one option"
            )
        return self

    def option(self, label: str) -> Optional[QuizOption]:
        for o in self.options:
            if o.label == label:
                return o
        return None


class QuizAnswerRecord(BaseModel):
    """Append-only history entry for one answered quiz."""

    quiz_id: str
    user_answer: str
    is_correct: bool
    answered_at_turn: int
    quiz: Quiz
    feedback: Optional[str] = None
    answered_at: datetime = Field(default_factory=_utcnow)


class ArtifactProgress(BaseModel):
    """Unlock progress for one artifact identity (shared by all its versions)."""

    unlock_level: int = 0
    total_gates: int = 0
    current_quiz: Optional[Quiz] = None
    history: List[QuizAnswerRecord] = Field(default_factory=list)

    # Engine bookkeeping, persisted so resumption never re-triggers generation
    pending_quizzes: List[Quiz] = Field(default_factory=list)
    generation_attempted: bool = False
    fallback_levels: List[int] = Field(default_factory=list)

    @property
    def is_unlocked(self) -> bool:
        return self.total_gates == 0 or self.unlock_level >= self.total_gates

    @property
    def percent(self) -> int:
        if self.is_unlocked:
            return 100
        return round(100 * self.unlock_level / self.total_gates)

    def quiz_ids(self) -> List[str]:
        """All quiz ids currently held (current + pending)."""
        ids = [q.id for q in self.pending_quizzes]
        if self.current_quiz is not None:
            ids.append(self.current_quiz.id)
        return ids


class SessionState(BaseModel):
    """Aggregate root: one per conversation."""

    conversation_id: str
    phase: GenerationPhase = GenerationPhase.INITIAL
    artifacts: Dict[str, Artifact] = Field(default_factory=dict)
    artifact_history: Dict[str, List[Artifact]] = Field(default_factory=dict)
    active_artifact_id: Optional[str] = None
    progress: Dict[str, ArtifactProgress] = Field(default_factory=dict)
    skip_allowed: bool = False
    turn_ordinal: int = 0  # final assistant turns ingested so far
    last_final_hash: Optional[str] = None
    schema_version: int = 1

    def artifact_by_key(self, key: str) -> Optional[Artifact]:
        for artifact in self.artifacts.values():
            if artifact.key == key:
                return artifact
        return None

    @property
    def active_artifact(self) -> Optional[Artifact]:
        if self.active_artifact_id is None:
            return None
        return self.artifacts.get(self.active_artifact_id)


class ProgressView(BaseModel):
    """Consumer read model for one artifact's unlock progress."""

    artifact_id: str
    unlock_level: int
    total_gates: int
    percent: int
    is_unlocked: bool
    description: str


class AnswerOutcome(BaseModel):
    """Result of an answer submission."""

    artifact_id: str
    quiz_id: str
    is_correct: bool
    unlock_level: int
    total_gates: int
    is_unlocked: bool
    feedback: Optional[str] = None
    explanation: Optional[str] = None
    next_quiz: Optional[Quiz] = None
    needs_quiz: bool = False


class GradeResult(BaseModel):
    """Verdict returned by the free-form grading oracle."""

    is_correct: bool
    feedback: str = ""
    explanation: Optional[str] = None
