"""
Quiz Oracle Adapter - normalizes oracle output into gate quizzes.

Guarantees:
- at most one automatic generation attempt per artifact identity
  (progress.generation_attempted is set before the oracle is awaited)
- oracle failures never leave a gate without a question: a local
  fallback quiz is synthesized instead
- returned quizzes have distinct questions and ids, with levels
  re-assigned to consecutive gates from the current unlock level
"""

import re
import uuid
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Sequence, Union

from pydantic import ValidationError

from codegate.engines.unlock.errors import InvariantViolationError, OracleUnavailableError
from codegate.engines.unlock.fallback_quiz import build_fallback_quiz
from codegate.engines.unlock.models import Artifact, ArtifactProgress, GradeResult, Quiz, QuizSource
from codegate.engines.unlock.quiz_parser import quiz_from_mapping, quizzes_from_text
from codegate.logging_config import get_logger

logger = get_logger(__name__)

RawQuizzes = Union[str, Sequence[Any]]


class QuizOracle(Protocol):
    """Outbound question-generation and grading service."""

    async def generate_quizzes(self, content: str, language: str, gate_count: int) -> RawQuizzes:
        ...

    async def grade_freeform(self, question: str, user_answer: str, code_context: str) -> GradeResult:
        ...


def _normalized_question(question: str) -> str:
    return re.sub(r"\s+", " ", question).strip().lower()


class QuizOracleAdapter:
    """Wraps a QuizOracle with validation, deduplication and fallbacks."""

    def __init__(self, oracle: Optional[QuizOracle] = None):
        self.oracle = oracle

    async def generate(
        self,
        artifact: Artifact,
        progress: ArtifactProgress,
        *,
        regenerate: bool = False,
    ) -> List[Quiz]:
        """
        Quizzes for the remaining gates of an artifact.

        Returns [] when generation was already attempted (unless regenerate)
        or when no gates remain.
        """
        if progress.generation_attempted and not regenerate:
            logger.debug("Quiz generation already attempted", extra={"artifact_id": artifact.id})
            return []

        start_level = progress.unlock_level
        gate_count = progress.total_gates - start_level
        if gate_count <= 0:
            return []

        progress.generation_attempted = True

        if self.oracle is None:
            return self._fallback_list(artifact, progress, start_level, regenerate)

        try:
            raw = await self.oracle.generate_quizzes(artifact.content, artifact.language, gate_count)
        except Exception as exc:
            error = OracleUnavailableError(f"Quiz generation failed: {exc}", artifact_id=artifact.id)
            logger.warning(
                "Quiz oracle unavailable, using fallback quiz",
                extra={"artifact_id": artifact.id, "error": str(error)},
            )
            return self._fallback_list(artifact, progress, start_level, regenerate)

        quizzes = self.normalize(raw, start_level, taken_ids=(r.quiz_id for r in progress.history))
        if not quizzes:
            logger.info(
                "Oracle returned no usable quizzes, using fallback quiz",
                extra={"artifact_id": artifact.id},
            )
            return self._fallback_list(artifact, progress, start_level, regenerate)

        logger.info(
            "Quizzes generated",
            extra={"artifact_id": artifact.id, "count": min(len(quizzes), gate_count)},
        )
        return quizzes[:gate_count]

    def normalize(
        self,
        raw: Any,
        start_level: int = 0,
        *,
        taken_ids: Iterable[str] = (),
    ) -> List[Quiz]:
        """
        Turn raw oracle output into validated, deduplicated quizzes.

        Raises InvariantViolationError when two quizzes share an id but
        differ in content.
        """
        candidates: List[Quiz] = []
        if isinstance(raw, str):
            candidates = quizzes_from_text(raw, start_level=start_level)
        elif isinstance(raw, Mapping):
            quiz = quiz_from_mapping(raw, level=start_level)
            candidates = [quiz] if quiz is not None else []
        elif isinstance(raw, Sequence):
            for item in raw:
                quiz = self._coerce(item, start_level + len(candidates))
                if quiz is not None:
                    candidates.append(quiz)

        taken = set(taken_ids)
        by_id: dict = {}
        seen_questions = set()
        result: List[Quiz] = []
        for quiz in candidates:
            previous = by_id.get(quiz.id)
            if previous is not None:
                if previous.model_dump(exclude={"level"}) != quiz.model_dump(exclude={"level"}):
                    raise InvariantViolationError(f"Duplicate quiz id {quiz.id!r} with differing content")
                continue
            by_id[quiz.id] = quiz

            question = _normalized_question(quiz.question)
            if question in seen_questions:
                continue
            seen_questions.add(question)

            update = {"level": start_level + len(result)}
            if quiz.id in taken:
                update["id"] = uuid.uuid4().hex
            result.append(quiz.model_copy(update=update))
        return result

    def fallback_for(
        self,
        artifact: Artifact,
        progress: ArtifactProgress,
        level: int,
        *,
        force: bool = False,
    ) -> Optional[Quiz]:
        """Local quiz for one gate; None if one was already synthesized for it."""
        if level in progress.fallback_levels and not force:
            return None
        if level not in progress.fallback_levels:
            progress.fallback_levels.append(level)
        return build_fallback_quiz(artifact, level, progress.total_gates)

    async def grade(self, quiz: Quiz, user_answer: str, code_context: str) -> GradeResult:
        """Grade a free-form answer; raises OracleUnavailableError on any failure."""
        if self.oracle is None:
            raise OracleUnavailableError("No grading oracle configured")
        try:
            result = await self.oracle.grade_freeform(quiz.question, user_answer, code_context)
        except OracleUnavailableError:
            raise
        except Exception as exc:
            logger.warning("Grading oracle failed", extra={"quiz_id": quiz.id, "error": str(exc)})
            raise OracleUnavailableError(f"Grading failed: {exc}") from exc

        if isinstance(result, GradeResult):
            return result
        try:
            return GradeResult.model_validate(result)
        except ValidationError as exc:
            raise OracleUnavailableError("Grading oracle returned an invalid verdict") from exc

    # ── internals ──────────────────────────────────────────────────────

    def _coerce(self, item: Any, level: int) -> Optional[Quiz]:
        if isinstance(item, Quiz):
            return item
        if isinstance(item, Mapping):
            return quiz_from_mapping(item, level=level, source=QuizSource.ORACLE)
        if isinstance(item, str):
            recovered = quizzes_from_text(item, start_level=level)
            return recovered[0] if recovered else None
        return None

    def _fallback_list(
        self,
        artifact: Artifact,
        progress: ArtifactProgress,
        level: int,
        force: bool,
    ) -> List[Quiz]:
        quiz = self.fallback_for(artifact, progress, level, force=force)
        return [quiz] if quiz is not None else []
