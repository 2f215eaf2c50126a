"""
Unlock Engine - progressive disclosure of generated code.

Components (dependency order):
- ArtifactStore: extracts <!--ARTIFACT--> blocks from assistant text
- Line classifier: signature / structure / logic / detail per line
- Visibility planner: which lines a learner may see at an unlock level
- QuizOracleAdapter: quiz generation, text recovery and local fallbacks
- UnlockStateMachine: gate progression and session phase
- SessionManager: single writer per conversation, persistence, observers

Reveal bands (unlock_level / total_gates):
- 0           : signatures
- (0, 0.34)   : + control flow
- [0.34, 0.67): + logic
- >= 0.67     : everything
"""

from codegate.engines.unlock.artifact_store import ArtifactStore, strip_artifacts
from codegate.engines.unlock.errors import (
    ExtractionError,
    InvariantViolationError,
    OracleUnavailableError,
    RestoreError,
    SessionClosedError,
    SkipNotAllowedError,
    StaleQuizError,
    UnknownArtifactError,
    UnlockEngineError,
)
from codegate.engines.unlock.line_classifier import ClassificationCache, classify
from codegate.engines.unlock.models import (
    AnswerOutcome,
    Artifact,
    ArtifactProgress,
    GenerationPhase,
    GradeResult,
    LineImportance,
    ProgressView,
    Quiz,
    QuizOption,
    SessionState,
)
from codegate.engines.unlock.persistence import (
    DebouncedSnapshotWriter,
    InMemorySnapshotStore,
    SnapshotStore,
    SqlSnapshotStore,
)
from codegate.engines.unlock.quiz_oracle import QuizOracle, QuizOracleAdapter
from codegate.engines.unlock.quiz_parser import remove_quiz_markers
from codegate.engines.unlock.session_manager import SessionManager, SessionRegistry
from codegate.engines.unlock.state_machine import UnlockStateMachine
from codegate.engines.unlock.visibility_planner import (
    band_description,
    render_visible_code,
    visible_indices,
)

__all__ = [
    "ArtifactStore",
    "strip_artifacts",
    "ExtractionError",
    "InvariantViolationError",
    "OracleUnavailableError",
    "RestoreError",
    "SessionClosedError",
    "SkipNotAllowedError",
    "StaleQuizError",
    "UnknownArtifactError",
    "UnlockEngineError",
    "ClassificationCache",
    "classify",
    "AnswerOutcome",
    "Artifact",
    "ArtifactProgress",
    "GenerationPhase",
    "GradeResult",
    "LineImportance",
    "ProgressView",
    "Quiz",
    "QuizOption",
    "SessionState",
    "DebouncedSnapshotWriter",
    "InMemorySnapshotStore",
    "SnapshotStore",
    "SqlSnapshotStore",
    "QuizOracle",
    "QuizOracleAdapter",
    "remove_quiz_markers",
    "SessionManager",
    "SessionRegistry",
    "UnlockStateMachine",
    "band_description",
    "render_visible_code",
    "visible_indices",
]
