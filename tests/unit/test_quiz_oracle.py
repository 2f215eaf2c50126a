"""
Unit tests for the quiz oracle adapter and fallback synthesis.
"""

from unittest.mock import AsyncMock

import pytest

from codegate.ai.static_oracle import StaticQuizOracle
from codegate.engines.unlock.errors import InvariantViolationError, OracleUnavailableError
from codegate.engines.unlock.fallback_quiz import build_fallback_quiz, question_kind
from codegate.engines.unlock.models import ArtifactProgress, GradeResult, QuizSource
from codegate.engines.unlock.quiz_oracle import QuizOracleAdapter


class TestGenerate:
    """Generation attempts and fallbacks."""

    @pytest.mark.asyncio
    async def test_generates_one_quiz_per_gate(self, add_artifact, static_oracle):
        adapter = QuizOracleAdapter(static_oracle)
        progress = ArtifactProgress(total_gates=3)

        quizzes = await adapter.generate(add_artifact, progress)

        assert [q.level for q in quizzes] == [0, 1, 2]
        assert [q.correct_label for q in quizzes] == ["A", "B", "C"]
        assert progress.generation_attempted is True
        assert static_oracle.generate_calls[0][1:] == ("typescript", 3)

    @pytest.mark.asyncio
    async def test_at_most_one_attempt(self, add_artifact, static_oracle):
        adapter = QuizOracleAdapter(static_oracle)
        progress = ArtifactProgress(total_gates=3)

        await adapter.generate(add_artifact, progress)
        assert await adapter.generate(add_artifact, progress) == []
        assert len(static_oracle.generate_calls) == 1

    @pytest.mark.asyncio
    async def test_regenerate_calls_again(self, add_artifact, static_oracle):
        adapter = QuizOracleAdapter(static_oracle)
        progress = ArtifactProgress(total_gates=3)

        await adapter.generate(add_artifact, progress)
        quizzes = await adapter.generate(add_artifact, progress, regenerate=True)
        assert len(quizzes) == 3
        assert len(static_oracle.generate_calls) == 2

    @pytest.mark.asyncio
    async def test_remaining_gates_only(self, add_artifact, static_oracle):
        adapter = QuizOracleAdapter(static_oracle)
        progress = ArtifactProgress(total_gates=3, unlock_level=1)

        quizzes = await adapter.generate(add_artifact, progress)
        assert [q.level for q in quizzes] == [1, 2]
        assert static_oracle.generate_calls[0][2] == 2

    @pytest.mark.asyncio
    async def test_unlocked_artifact_not_generated(self, add_artifact, static_oracle):
        adapter = QuizOracleAdapter(static_oracle)
        progress = ArtifactProgress(total_gates=0)

        assert await adapter.generate(add_artifact, progress) == []
        assert static_oracle.generate_calls == []
        assert progress.generation_attempted is False

    @pytest.mark.asyncio
    async def test_oracle_failure_falls_back(self, add_artifact):
        oracle = AsyncMock()
        oracle.generate_quizzes.side_effect = RuntimeError("model overloaded")
        adapter = QuizOracleAdapter(oracle)
        progress = ArtifactProgress(total_gates=3)

        quizzes = await adapter.generate(add_artifact, progress)

        assert len(quizzes) == 1
        assert quizzes[0].source == QuizSource.FALLBACK
        assert quizzes[0].level == 0
        assert progress.generation_attempted is True
        assert progress.fallback_levels == [0]
        oracle.generate_quizzes.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_output_falls_back(self, add_artifact):
        adapter = QuizOracleAdapter(StaticQuizOracle(quizzes=[]))
        quizzes = await adapter.generate(add_artifact, ArtifactProgress(total_gates=3))
        assert [q.source for q in quizzes] == [QuizSource.FALLBACK]

    @pytest.mark.asyncio
    async def test_no_oracle_falls_back(self, add_artifact):
        quizzes = await QuizOracleAdapter().generate(add_artifact, ArtifactProgress(total_gates=3))
        assert [q.source for q in quizzes] == [QuizSource.FALLBACK]

    @pytest.mark.asyncio
    async def test_free_text_output(self, add_artifact):
        text = "What does add() return?\nA) The sum\nB) Nothing\nAnswer: A"
        adapter = QuizOracleAdapter(StaticQuizOracle(quizzes=text))
        quizzes = await adapter.generate(add_artifact, ArtifactProgress(total_gates=3))
        assert len(quizzes) == 1
        assert quizzes[0].source == QuizSource.TEXT


class TestNormalize:
    """Validation, dedup and id hygiene."""

    def test_duplicate_questions_dropped(self, quiz_payloads):
        copy = {**quiz_payloads[0], "question": "  what does ADD() return? "}
        quizzes = QuizOracleAdapter().normalize([quiz_payloads[0], copy, quiz_payloads[1]])
        assert len(quizzes) == 2
        assert [q.level for q in quizzes] == [0, 1]

    def test_duplicate_id_same_content_collapsed(self, quiz_payloads):
        payload = {**quiz_payloads[0], "id": "q-1"}
        assert len(QuizOracleAdapter().normalize([payload, dict(payload)])) == 1

    def test_duplicate_id_different_content_raises(self, quiz_payloads):
        first = {**quiz_payloads[0], "id": "q-1"}
        second = {**quiz_payloads[1], "id": "q-1"}
        with pytest.raises(InvariantViolationError):
            QuizOracleAdapter().normalize([first, second])

    def test_answered_ids_replaced(self, quiz_payloads):
        payload = {**quiz_payloads[0], "id": "old"}
        quizzes = QuizOracleAdapter().normalize([payload], taken_ids=["old"])
        assert quizzes[0].id != "old"

    def test_invalid_items_skipped(self, quiz_payloads):
        quizzes = QuizOracleAdapter().normalize([{"question": "broken"}, 42, quiz_payloads[1]], start_level=1)
        assert len(quizzes) == 1
        assert quizzes[0].level == 1


class TestFallback:

    def test_once_per_level(self, add_artifact):
        adapter = QuizOracleAdapter()
        progress = ArtifactProgress(total_gates=3)

        assert adapter.fallback_for(add_artifact, progress, 0) is not None
        assert adapter.fallback_for(add_artifact, progress, 0) is None
        assert adapter.fallback_for(add_artifact, progress, 0, force=True) is not None
        assert progress.fallback_levels == [0]

    def test_fallback_quiz_content(self, add_artifact):
        quiz = build_fallback_quiz(add_artifact, 0, 3)
        assert quiz.question == "What is the main purpose of add.ts (typescript, 6 lines)?"
        assert quiz.correct_label == "A"
        assert quiz.hint == "Think about what the code is for."
        assert quiz.detailed_explanation == quiz.options[0].explanation
        assert quiz.source == QuizSource.FALLBACK

    def test_trait_options(self, artifact_store, artifact_block):
        code = "async function load() {\n  try {\n    await fetch('/api');\n  } catch (e) {}\n}"
        artifact = artifact_store.extract(artifact_block("load.js", "javascript", code))[0]

        purpose = build_fallback_quiz(artifact, 0, 3)
        design = build_fallback_quiz(artifact, 3, 4)
        assert purpose.options[0].text == "Talk to an external service"
        assert design.options[0].text == "Async work with explicit error handling"
        assert design.hint.endswith("Look at how awaited calls can fail.")

    def test_question_kind_bands(self):
        assert question_kind(0, 3) == "purpose"
        assert question_kind(1, 3) == "purpose"
        assert question_kind(2, 3) == "pattern"
        assert question_kind(3, 4) == "design"
        assert question_kind(0, 0) == "purpose"


class TestGrade:

    @pytest.mark.asyncio
    async def test_no_oracle(self, add_artifact):
        quiz = build_fallback_quiz(add_artifact, 0, 3)
        with pytest.raises(OracleUnavailableError):
            await QuizOracleAdapter().grade(quiz, "It adds", add_artifact.content)

    @pytest.mark.asyncio
    async def test_oracle_error_wrapped(self, add_artifact):
        oracle = AsyncMock()
        oracle.grade_freeform.side_effect = TimeoutError("slow")
        quiz = build_fallback_quiz(add_artifact, 0, 3)
        with pytest.raises(OracleUnavailableError):
            await QuizOracleAdapter(oracle).grade(quiz, "It adds", add_artifact.content)

    @pytest.mark.asyncio
    async def test_mapping_verdict(self, add_artifact):
        oracle = AsyncMock()
        oracle.grade_freeform.return_value = {"is_correct": False, "feedback": "Not quite."}
        quiz = build_fallback_quiz(add_artifact, 0, 3)

        result = await QuizOracleAdapter(oracle).grade(quiz, "It multiplies", add_artifact.content)
        assert result == GradeResult(is_correct=False, feedback="Not quite.")

    @pytest.mark.asyncio
    async def test_invalid_verdict(self, add_artifact):
        oracle = AsyncMock()
        oracle.grade_freeform.return_value = {"feedback": "no verdict"}
        quiz = build_fallback_quiz(add_artifact, 0, 3)
        with pytest.raises(OracleUnavailableError):
            await QuizOracleAdapter(oracle).grade(quiz, "?", add_artifact.content)
