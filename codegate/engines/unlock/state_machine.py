"""
Unlock State Machine - per-artifact gate progression and session phase.

Phase transitions:
- initial -> planning   : begin_planning() or planning language before any code
- initial|planning -> coding : first artifact registered
- coding -> unlocking   : active artifact has a quiz and is not unlocked
- unlocking -> unlocked : active artifact reaches its gate count

The phase is a projection of the active artifact and is recomputed after
every mutation. All mutating methods here are synchronous except
answer_freeform, which re-checks its preconditions after grading.
"""

import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from codegate.config import get_settings
from codegate.engines.unlock.artifact_store import ArtifactStore
from codegate.engines.unlock.errors import (
    InvariantViolationError,
    RestoreError,
    SessionClosedError,
    SkipNotAllowedError,
    StaleQuizError,
    UnknownArtifactError,
)
from codegate.engines.unlock.models import (
    AnswerOutcome,
    Artifact,
    ArtifactProgress,
    GenerationPhase,
    Quiz,
    QuizAnswerRecord,
    SessionState,
)
from codegate.engines.unlock.quiz_oracle import QuizOracleAdapter
from codegate.engines.unlock.quiz_parser import normalize_label
from codegate.logging_config import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

VERSION_POLICIES = ("inherit", "reset")

PLANNING_PATTERNS: List[re.Pattern] = [
    re.compile(r"\b(plan|planning|steps?)\b", re.I),
    re.compile(r"手順|ステップ|計画"),
]


def _answer_key(value: str) -> str:
    return normalize_label(re.sub(r"\s+", "", value))


def check_invariants(state: SessionState) -> None:
    """Raise InvariantViolationError if the aggregate is structurally broken."""
    unknown = set(state.progress) - set(state.artifacts)
    if unknown:
        raise InvariantViolationError(f"Progress tracked for unknown artifacts: {sorted(unknown)}")

    if state.active_artifact_id is not None and state.active_artifact_id not in state.artifacts:
        raise InvariantViolationError(
            f"Active artifact {state.active_artifact_id!r} is not tracked",
            artifact_id=state.active_artifact_id,
        )

    for artifact_id, artifact in state.artifacts.items():
        if artifact.id != artifact_id:
            raise InvariantViolationError(
                f"Artifact stored under {artifact_id!r} carries id {artifact.id!r}",
                artifact_id=artifact_id,
            )

    for artifact_id, progress in state.progress.items():
        if progress.total_gates < 0:
            raise InvariantViolationError("total_gates must not be negative", artifact_id=artifact_id)
        if not 0 <= progress.unlock_level <= progress.total_gates:
            raise InvariantViolationError(
                f"unlock_level {progress.unlock_level} outside [0, {progress.total_gates}]",
                artifact_id=artifact_id,
            )
        ids = progress.quiz_ids()
        if len(set(ids)) != len(ids):
            raise InvariantViolationError("Duplicate quiz ids", artifact_id=artifact_id)


class UnlockStateMachine:
    """Owns a SessionState and applies every unlock transition to it."""

    def __init__(
        self,
        state: SessionState,
        adapter: QuizOracleAdapter,
        *,
        artifact_store: Optional[ArtifactStore] = None,
        default_total_gates: Optional[int] = None,
        version_policy: Optional[str] = None,
    ):
        settings = get_settings()
        self.state = state
        self.adapter = adapter
        self.closed = False
        self.artifact_store = artifact_store or ArtifactStore()
        self.default_total_gates = (
            settings.default_total_gates if default_total_gates is None else default_total_gates
        )
        self.version_policy = version_policy or settings.version_progress_policy
        if self.version_policy not in VERSION_POLICIES:
            raise ValueError(f"Unknown version policy: {self.version_policy!r}")

    # ── lookups ────────────────────────────────────────────────────────

    def artifact(self, artifact_id: str) -> Artifact:
        artifact = self.state.artifacts.get(artifact_id)
        if artifact is None:
            raise UnknownArtifactError(f"Unknown artifact {artifact_id!r}", artifact_id=artifact_id)
        return artifact

    def progress(self, artifact_id: str) -> ArtifactProgress:
        self.artifact(artifact_id)
        progress = self.state.progress.get(artifact_id)
        if progress is None:
            raise InvariantViolationError("Artifact has no progress record", artifact_id=artifact_id)
        return progress

    def needs_quiz(self, artifact_id: str) -> bool:
        progress = self.progress(artifact_id)
        return not progress.is_unlocked and progress.current_quiz is None

    # ── phase ──────────────────────────────────────────────────────────

    def recompute_phase(self) -> GenerationPhase:
        if self.state.artifacts:
            active = self.state.active_artifact_id
            progress = self.state.progress.get(active) if active else None
            if progress is None or progress.is_unlocked:
                self.state.phase = (
                    GenerationPhase.UNLOCKED if progress is not None else GenerationPhase.CODING
                )
            elif progress.current_quiz is not None:
                self.state.phase = GenerationPhase.UNLOCKING
            else:
                self.state.phase = GenerationPhase.CODING
        return self.state.phase

    def begin_planning(self) -> GenerationPhase:
        if self.state.phase == GenerationPhase.INITIAL:
            self.state.phase = GenerationPhase.PLANNING
            logger.info("Session entered planning phase")
        return self.state.phase

    def observe_text(self, text: str) -> GenerationPhase:
        """Enter planning when the assistant talks about a plan before any code exists."""
        if (
            self.state.phase == GenerationPhase.INITIAL
            and not self.state.artifacts
            and any(p.search(text) for p in PLANNING_PATTERNS)
        ):
            return self.begin_planning()
        return self.state.phase

    # ── artifacts ──────────────────────────────────────────────────────

    def register_artifact(self, artifact: Artifact) -> Artifact:
        """
        Track a newly extracted artifact and return the stored record.

        A known key with unchanged content is a no-op. A known key with new
        content becomes the next version under the same id, and the version
        policy decides what happens to progress.
        """
        existing = self.state.artifact_by_key(artifact.key)
        if existing is not None:
            if existing.content_hash == artifact.content_hash:
                return existing
            updated = self.artifact_store.next_version(existing, artifact)
            self.state.artifacts[updated.id] = updated
            self.state.artifact_history.setdefault(updated.id, []).append(updated)
            self._apply_version_policy(updated)
            logger.info(
                "Artifact updated",
                extra={"artifact_id": updated.id, "version": updated.version},
            )
            self.recompute_phase()
            return updated

        stored = artifact
        if stored.id in self.state.artifacts:
            suffix = 2
            while f"{artifact.id}-{suffix}" in self.state.artifacts:
                suffix += 1
            stored = artifact.model_copy(update={"id": f"{artifact.id}-{suffix}"})

        self.state.artifacts[stored.id] = stored
        self.state.artifact_history[stored.id] = [stored]
        self.state.progress[stored.id] = ArtifactProgress(
            total_gates=0 if self.state.skip_allowed else self.default_total_gates,
        )
        self.state.active_artifact_id = stored.id
        logger.info(
            "Artifact registered",
            extra={"artifact_id": stored.id, "key": stored.key, "truncated": stored.truncated},
        )
        self.recompute_phase()
        return stored

    def _apply_version_policy(self, artifact: Artifact) -> None:
        if self.version_policy != "reset":
            return
        progress = self.state.progress[artifact.id]
        progress.unlock_level = 0
        progress.current_quiz = None
        progress.pending_quizzes = []
        progress.generation_attempted = False
        progress.fallback_levels = []

    def switch_active_artifact(self, artifact_id: str) -> GenerationPhase:
        self.artifact(artifact_id)
        self.state.active_artifact_id = artifact_id
        return self.recompute_phase()

    def attach_quizzes(self, artifact_id: str, quizzes: Sequence[Quiz], *, expected_version: int) -> bool:
        """
        Completion handler for quiz generation.

        No-op (returns False) when the artifact is gone, has a newer version,
        is already unlocked or already has a quiz.
        """
        artifact = self.state.artifacts.get(artifact_id)
        progress = self.state.progress.get(artifact_id)
        if artifact is None or progress is None:
            return False
        if artifact.version != expected_version or progress.is_unlocked or progress.current_quiz is not None:
            logger.debug(
                "Discarding late quiz batch",
                extra={"artifact_id": artifact_id, "expected_version": expected_version},
            )
            return False

        taken = {r.quiz_id for r in progress.history}
        fresh = [q for q in quizzes if q.id not in taken]
        if not fresh:
            return False

        remaining = progress.total_gates - progress.unlock_level
        leveled = [
            q.model_copy(update={"level": progress.unlock_level + i})
            for i, q in enumerate(fresh[:remaining])
        ]
        progress.current_quiz = leveled[0]
        progress.pending_quizzes = leveled[1:]
        self.recompute_phase()
        return True

    def fill_from_fallback(self, artifact_id: str, *, force: bool = False) -> Optional[Quiz]:
        """Put a locally synthesized quiz on a gate that has none."""
        artifact = self.artifact(artifact_id)
        progress = self.progress(artifact_id)
        if progress.is_unlocked or progress.current_quiz is not None:
            return None
        quiz = self.adapter.fallback_for(artifact, progress, progress.unlock_level, force=force)
        if quiz is not None:
            progress.current_quiz = quiz
            self.recompute_phase()
        return quiz

    def clear_quizzes(self, artifact_id: str) -> None:
        """Drop current and pending quizzes before regeneration."""
        progress = self.progress(artifact_id)
        progress.current_quiz = None
        progress.pending_quizzes = []
        self.recompute_phase()

    # ── answers ────────────────────────────────────────────────────────

    def _current_quiz(self, artifact_id: str, quiz_id: str) -> Quiz:
        progress = self.progress(artifact_id)
        quiz = progress.current_quiz
        if quiz is None or quiz.id != quiz_id:
            raise StaleQuizError(
                f"Quiz {quiz_id!r} is not the current quiz",
                artifact_id=artifact_id,
                quiz_id=quiz_id,
                current_quiz_id=quiz.id if quiz else None,
            )
        return quiz

    def answer(self, artifact_id: str, quiz_id: str, user_answer: str, turn_ordinal: int = 0) -> AnswerOutcome:
        """Grade a multiple-choice answer against the current quiz."""
        quiz = self._current_quiz(artifact_id, quiz_id)
        is_correct = _answer_key(user_answer) == _answer_key(quiz.correct_label)
        chosen = quiz.option(_answer_key(user_answer))
        explanation = quiz.detailed_explanation or (chosen.explanation if chosen else None)
        return self._record(
            artifact_id, quiz, user_answer, is_correct, turn_ordinal,
            feedback=chosen.explanation if chosen else None,
            explanation=explanation,
        )

    async def answer_freeform(
        self,
        artifact_id: str,
        quiz_id: str,
        user_answer: str,
        turn_ordinal: int = 0,
        code_context: Optional[str] = None,
    ) -> AnswerOutcome:
        """Grade a free-form answer through the oracle. Nothing is recorded on failure."""
        quiz = self._current_quiz(artifact_id, quiz_id)
        context = code_context if code_context is not None else self.artifact(artifact_id).content
        state = self.state

        grade = await self.adapter.grade(quiz, user_answer, context)

        if self.closed:
            raise SessionClosedError("Session closed while grading", artifact_id=artifact_id)
        if self.state is not state:
            raise StaleQuizError("Session was restored while grading", artifact_id=artifact_id, quiz_id=quiz_id)
        self._current_quiz(artifact_id, quiz_id)
        return self._record(
            artifact_id, quiz, user_answer, grade.is_correct, turn_ordinal,
            feedback=grade.feedback or None,
            explanation=grade.explanation or quiz.detailed_explanation,
        )

    def _record(
        self,
        artifact_id: str,
        quiz: Quiz,
        user_answer: str,
        is_correct: bool,
        turn_ordinal: int,
        *,
        feedback: Optional[str],
        explanation: Optional[str],
    ) -> AnswerOutcome:
        progress = self.progress(artifact_id)
        progress.history.append(QuizAnswerRecord(
            quiz_id=quiz.id,
            user_answer=user_answer,
            is_correct=is_correct,
            answered_at_turn=turn_ordinal,
            quiz=quiz,
            feedback=feedback,
        ))

        next_quiz: Optional[Quiz] = quiz
        if is_correct:
            progress.unlock_level = min(progress.unlock_level + 1, progress.total_gates)
            progress.current_quiz = None
            next_quiz = self._advance(artifact_id, progress)
            logger.info(
                "Gate passed",
                extra={
                    "artifact_id": artifact_id,
                    "unlock_level": progress.unlock_level,
                    "total_gates": progress.total_gates,
                },
            )
        self.recompute_phase()

        return AnswerOutcome(
            artifact_id=artifact_id,
            quiz_id=quiz.id,
            is_correct=is_correct,
            unlock_level=progress.unlock_level,
            total_gates=progress.total_gates,
            is_unlocked=progress.is_unlocked,
            feedback=feedback,
            explanation=explanation,
            next_quiz=next_quiz,
            needs_quiz=not progress.is_unlocked and progress.current_quiz is None,
        )

    def _advance(self, artifact_id: str, progress: ArtifactProgress) -> Optional[Quiz]:
        if progress.is_unlocked:
            progress.pending_quizzes = []
            return None
        if progress.pending_quizzes:
            upcoming = progress.pending_quizzes.pop(0)
            progress.current_quiz = upcoming.model_copy(update={"level": progress.unlock_level})
            return progress.current_quiz
        return self.fill_from_fallback(artifact_id)

    def skip(self, artifact_id: str) -> ArtifactProgress:
        """Unlock an artifact without quizzes. History is left untouched."""
        progress = self.progress(artifact_id)
        if not self.state.skip_allowed:
            raise SkipNotAllowedError("Skipping is not allowed for this session", artifact_id=artifact_id)
        progress.unlock_level = progress.total_gates
        progress.current_quiz = None
        progress.pending_quizzes = []
        logger.info("Artifact skipped", extra={"artifact_id": artifact_id})
        self.recompute_phase()
        return progress

    # ── snapshots ──────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        return self.state.model_dump(mode="json")

    def restore(self, payload: Mapping[str, Any]) -> SessionState:
        """Replace the owned state with a validated snapshot."""
        if not isinstance(payload, Mapping):
            raise RestoreError("Snapshot must be a mapping")
        version = payload.get("schema_version", SCHEMA_VERSION)
        if version != SCHEMA_VERSION:
            raise RestoreError(f"Unsupported snapshot schema version {version!r}")
        try:
            candidate = SessionState.model_validate(payload)
        except ValidationError as exc:
            raise RestoreError(f"Snapshot has an invalid shape: {exc.error_count()} errors") from exc
        try:
            check_invariants(candidate)
        except InvariantViolationError as exc:
            raise RestoreError(f"Snapshot violates invariants: {exc}", artifact_id=exc.artifact_id) from exc

        self.state = candidate
        return candidate

    def validate(self) -> None:
        check_invariants(self.state)
