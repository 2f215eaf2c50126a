"""
Unit tests for the unlock state machine.

Covers gate progression, stale answers, skip policy, version policies,
phase transitions and snapshot restore.
"""

import pytest

from codegate.engines.unlock.errors import (
    RestoreError,
    SkipNotAllowedError,
    StaleQuizError,
    UnknownArtifactError,
)
from codegate.engines.unlock.models import GenerationPhase, QuizSource, SessionState
from codegate.engines.unlock.quiz_oracle import QuizOracleAdapter
from codegate.engines.unlock.state_machine import UnlockStateMachine


@pytest.fixture
def quizzes(quiz_payloads):
    return QuizOracleAdapter().normalize(quiz_payloads)


@pytest.fixture
def attached(state_machine, add_artifact, quizzes):
    """State machine tracking add.ts with all three quizzes attached."""
    stored = state_machine.register_artifact(add_artifact)
    assert state_machine.attach_quizzes(stored.id, quizzes, expected_version=1)
    return state_machine, stored.id


def _current(machine, artifact_id):
    return machine.progress(artifact_id).current_quiz


class TestRegistration:

    def test_new_artifact_becomes_active(self, state_machine, add_artifact):
        stored = state_machine.register_artifact(add_artifact)

        assert state_machine.state.active_artifact_id == stored.id
        progress = state_machine.progress(stored.id)
        assert progress.total_gates == 3
        assert progress.unlock_level == 0
        assert state_machine.state.phase == GenerationPhase.CODING
        assert state_machine.needs_quiz(stored.id)

    def test_same_content_is_noop(self, state_machine, add_artifact):
        first = state_machine.register_artifact(add_artifact)
        assert state_machine.register_artifact(add_artifact) is first
        assert len(state_machine.state.artifact_history[first.id]) == 1

    def test_id_collision_gets_suffix(self, state_machine, artifact_store, artifact_block):
        a = artifact_store.extract(artifact_block("a.py", "python", "x = 1"))[0]
        b = artifact_store.extract(artifact_block("b.py", "python", "x = 1"))[0]
        assert a.id == b.id

        state_machine.register_artifact(a)
        stored = state_machine.register_artifact(b)
        assert stored.id == f"{a.id}-2"
        assert state_machine.state.active_artifact_id == stored.id

    def test_skip_allowed_registers_unlocked(self, static_oracle, artifact_store, add_artifact):
        machine = UnlockStateMachine(
            SessionState(conversation_id="c", skip_allowed=True),
            QuizOracleAdapter(static_oracle),
            artifact_store=artifact_store,
            default_total_gates=3,
            version_policy="inherit",
        )
        stored = machine.register_artifact(add_artifact)
        assert machine.progress(stored.id).is_unlocked
        assert machine.state.phase == GenerationPhase.UNLOCKED

    def test_unknown_artifact(self, state_machine):
        with pytest.raises(UnknownArtifactError):
            state_machine.progress("missing")

    def test_switch_active(self, state_machine, artifact_store, artifact_block):
        a = state_machine.register_artifact(artifact_store.extract(artifact_block("a.py", "python", "a = 1"))[0])
        state_machine.register_artifact(artifact_store.extract(artifact_block("b.py", "python", "b = 2"))[0])

        state_machine.switch_active_artifact(a.id)
        assert state_machine.state.active_artifact_id == a.id
        with pytest.raises(UnknownArtifactError):
            state_machine.switch_active_artifact("missing")


class TestVersionPolicy:

    def _edit(self, artifact_store, artifact_block):
        return artifact_store.extract(artifact_block("add.ts", "typescript", "export const add = (a, b) => a + b;"))[0]

    def test_inherit_keeps_progress(self, attached, artifact_store, artifact_block):
        machine, artifact_id = attached
        machine.answer(artifact_id, _current(machine, artifact_id).id, "A")

        updated = machine.register_artifact(self._edit(artifact_store, artifact_block))
        assert updated.id == artifact_id
        assert updated.version == 2
        assert machine.progress(artifact_id).unlock_level == 1
        assert len(machine.state.artifact_history[artifact_id]) == 2

    def test_reset_clears_progress(self, static_oracle, artifact_store, artifact_block, add_artifact, quizzes):
        machine = UnlockStateMachine(
            SessionState(conversation_id="c"),
            QuizOracleAdapter(static_oracle),
            artifact_store=artifact_store,
            default_total_gates=3,
            version_policy="reset",
        )
        stored = machine.register_artifact(add_artifact)
        machine.attach_quizzes(stored.id, quizzes, expected_version=1)
        machine.progress(stored.id).generation_attempted = True
        machine.answer(stored.id, _current(machine, stored.id).id, "A")

        machine.register_artifact(self._edit(artifact_store, artifact_block))
        progress = machine.progress(stored.id)
        assert progress.unlock_level == 0
        assert progress.current_quiz is None
        assert progress.pending_quizzes == []
        assert progress.generation_attempted is False
        assert len(progress.history) == 1

    def test_unknown_policy_rejected(self, static_oracle):
        with pytest.raises(ValueError):
            UnlockStateMachine(SessionState(conversation_id="c"), QuizOracleAdapter(), version_policy="merge")


class TestAttachQuizzes:

    def test_attach_sets_current_and_pending(self, attached):
        machine, artifact_id = attached
        progress = machine.progress(artifact_id)
        assert progress.current_quiz.level == 0
        assert [q.level for q in progress.pending_quizzes] == [1, 2]
        assert machine.state.phase == GenerationPhase.UNLOCKING

    def test_noop_when_quiz_present(self, attached, quizzes):
        machine, artifact_id = attached
        assert machine.attach_quizzes(artifact_id, quizzes, expected_version=1) is False

    def test_noop_for_stale_version(self, state_machine, add_artifact, quizzes):
        stored = state_machine.register_artifact(add_artifact)
        assert state_machine.attach_quizzes(stored.id, quizzes, expected_version=2) is False
        assert state_machine.progress(stored.id).current_quiz is None

    def test_noop_for_unknown_artifact(self, state_machine, quizzes):
        assert state_machine.attach_quizzes("missing", quizzes, expected_version=1) is False


class TestAnswers:

    def test_full_progression(self, attached):
        machine, artifact_id = attached

        for expected_level, label in enumerate(["A", "B", "C"], start=1):
            quiz = _current(machine, artifact_id)
            outcome = machine.answer(artifact_id, quiz.id, label)
            assert outcome.is_correct
            assert outcome.unlock_level == expected_level

        assert outcome.is_unlocked
        assert outcome.next_quiz is None
        assert outcome.explanation == "const signals the binding is not reassigned."
        assert machine.state.phase == GenerationPhase.UNLOCKED
        assert len(machine.progress(artifact_id).history) == 3

    def test_wrong_answer_keeps_quiz(self, attached):
        machine, artifact_id = attached
        quiz = _current(machine, artifact_id)

        outcome = machine.answer(artifact_id, quiz.id, "B")

        assert not outcome.is_correct
        assert outcome.unlock_level == 0
        assert outcome.next_quiz.id == quiz.id
        assert _current(machine, artifact_id).id == quiz.id
        assert machine.progress(artifact_id).history[0].is_correct is False

    def test_label_normalized(self, attached):
        machine, artifact_id = attached
        outcome = machine.answer(artifact_id, _current(machine, artifact_id).id, " a ")
        assert outcome.is_correct

    def test_stale_quiz(self, attached):
        machine, artifact_id = attached
        current = _current(machine, artifact_id)

        with pytest.raises(StaleQuizError) as exc_info:
            machine.answer(artifact_id, "not-the-quiz", "A")
        assert exc_info.value.current_quiz_id == current.id
        assert machine.progress(artifact_id).history == []

    def test_answered_quiz_is_stale(self, attached):
        machine, artifact_id = attached
        quiz = _current(machine, artifact_id)
        machine.answer(artifact_id, quiz.id, "A")

        with pytest.raises(StaleQuizError):
            machine.answer(artifact_id, quiz.id, "A")

    def test_fallback_fills_next_gate(self, state_machine, add_artifact, quizzes):
        stored = state_machine.register_artifact(add_artifact)
        state_machine.attach_quizzes(stored.id, quizzes[:1], expected_version=1)

        outcome = state_machine.answer(stored.id, _current(state_machine, stored.id).id, "A")

        assert outcome.next_quiz.source == QuizSource.FALLBACK
        assert outcome.next_quiz.level == 1
        assert outcome.needs_quiz is False
        assert state_machine.progress(stored.id).fallback_levels == [1]

    def test_turn_ordinal_recorded(self, attached):
        machine, artifact_id = attached
        machine.answer(artifact_id, _current(machine, artifact_id).id, "A", turn_ordinal=4)
        assert machine.progress(artifact_id).history[0].answered_at_turn == 4


class TestSkip:

    def test_skip_not_allowed(self, attached):
        machine, artifact_id = attached
        with pytest.raises(SkipNotAllowedError):
            machine.skip(artifact_id)

    def test_skip_keeps_history(self, attached):
        machine, artifact_id = attached
        machine.answer(artifact_id, _current(machine, artifact_id).id, "A")
        machine.state.skip_allowed = True

        progress = machine.skip(artifact_id)

        assert progress.is_unlocked
        assert progress.current_quiz is None
        assert progress.pending_quizzes == []
        assert len(progress.history) == 1
        assert machine.state.phase == GenerationPhase.UNLOCKED


class TestPlanning:

    def test_planning_language_before_code(self, state_machine):
        assert state_machine.observe_text("Let me plan the steps first.") == GenerationPhase.PLANNING

    def test_no_planning_once_code_exists(self, state_machine, add_artifact):
        state_machine.register_artifact(add_artifact)
        assert state_machine.observe_text("Next steps: tests") == GenerationPhase.CODING

    def test_plain_text_stays_initial(self, state_machine):
        assert state_machine.observe_text("Sure, here you go.") == GenerationPhase.INITIAL

    def test_begin_planning(self, state_machine):
        assert state_machine.begin_planning() == GenerationPhase.PLANNING


class TestSnapshots:

    def test_round_trip(self, attached, static_oracle):
        machine, artifact_id = attached
        machine.answer(artifact_id, _current(machine, artifact_id).id, "A")
        snapshot = machine.snapshot()

        other = UnlockStateMachine(
            SessionState(conversation_id="conv-test"),
            QuizOracleAdapter(static_oracle),
            default_total_gates=3,
            version_policy="inherit",
        )
        restored = other.restore(snapshot)

        assert restored.model_dump(mode="json") == snapshot
        assert other.progress(artifact_id).unlock_level == 1
        assert other.progress(artifact_id).current_quiz.correct_label == "B"

    def test_not_a_mapping(self, state_machine):
        with pytest.raises(RestoreError):
            state_machine.restore(["not", "a", "snapshot"])

    def test_unsupported_schema_version(self, state_machine):
        with pytest.raises(RestoreError):
            state_machine.restore({"conversation_id": "c", "schema_version": 99})

    def test_invalid_shape(self, state_machine):
        with pytest.raises(RestoreError):
            state_machine.restore({"artifacts": "nope"})

    def test_progress_for_unknown_artifact(self, state_machine):
        with pytest.raises(RestoreError):
            state_machine.restore({"conversation_id": "c", "progress": {"ghost": {}}})

    def test_level_out_of_bounds(self, attached):
        machine, artifact_id = attached
        snapshot = machine.snapshot()
        snapshot["progress"][artifact_id]["unlock_level"] = 7

        with pytest.raises(RestoreError):
            machine.restore(snapshot)
        assert machine.progress(artifact_id).unlock_level == 0

    def test_validate_current_state(self, attached):
        machine, _ = attached
        machine.validate()


class TestSkipFourGates:

    def test_skip_jumps_to_gate_count(self, static_oracle, artifact_store, add_artifact):
        machine = UnlockStateMachine(
            SessionState(conversation_id="c"),
            QuizOracleAdapter(static_oracle),
            artifact_store=artifact_store,
            default_total_gates=4,
            version_policy="inherit",
        )
        stored = machine.register_artifact(add_artifact)
        machine.state.skip_allowed = True

        progress = machine.skip(stored.id)

        assert progress.unlock_level == 4
        assert progress.total_gates == 4
        assert progress.history == []
