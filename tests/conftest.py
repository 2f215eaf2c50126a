"""
Pytest fixtures for unlock engine tests.
"""

from typing import Callable, Dict, List

import pytest
import pytest_asyncio

from codegate.ai.static_oracle import StaticQuizOracle
from codegate.engines.unlock.artifact_store import ArtifactStore
from codegate.engines.unlock.models import Artifact, SessionState
from codegate.engines.unlock.persistence import InMemorySnapshotStore
from codegate.engines.unlock.quiz_oracle import QuizOracleAdapter
from codegate.engines.unlock.session_manager import SessionManager
from codegate.engines.unlock.state_machine import UnlockStateMachine


ADD_SOURCE = "\n".join([
    "export function add(a,b) {",
    "  // sum two numbers",
    "  const result = a + b;",
    "  if (result < 0) {",
    "  }",
    "}",
])


def _block(title: str, language: str, content: str) -> str:
    return (
        f'<!--ARTIFACT:{{"title":"{title}","language":"{language}"}}-->\n'
        f"```{language}\n{content}\n```\n"
        "<!--/ARTIFACT-->"
    )


@pytest.fixture
def add_source() -> str:
    """Six-line TypeScript function used across classifier/planner tests."""
    return ADD_SOURCE


@pytest.fixture
def artifact_block() -> Callable[[str, str, str], str]:
    """Builds a demarcated artifact block."""
    return _block


@pytest.fixture
def add_message() -> str:
    """A complete assistant message holding the add() artifact."""
    return "Here is the helper you asked for.\n\n" + _block("add.ts", "typescript", ADD_SOURCE) + "\n\nTry it out."


@pytest.fixture
def artifact_store() -> ArtifactStore:
    return ArtifactStore(truncation_sentinels=["[TRUNCATED]"])


@pytest.fixture
def add_artifact(artifact_store: ArtifactStore, add_message: str) -> Artifact:
    return artifact_store.extract(add_message, is_final=True)[0]


@pytest.fixture
def quiz_payloads() -> List[Dict]:
    """Three structured quizzes, correct answers A, B, C."""
    return [
        {
            "question": "What does add() return?",
            "options": [
                {"label": "A", "text": "The sum of a and b"},
                {"label": "B", "text": "The difference of a and b"},
                {"label": "C", "text": "Nothing"},
            ],
            "correctLabel": "A",
            "hint": "Look at the return line.",
        },
        {
            "question": "When is the if-branch entered?",
            "options": [
                {"label": "A", "text": "Always"},
                {"label": "B", "text": "When the sum is negative"},
                {"label": "C", "text": "Never"},
            ],
            "correctLabel": "B",
        },
        {
            "question": "Why is the result stored in a const?",
            "options": [
                {"label": "A", "text": "To make it mutable"},
                {"label": "B", "text": "It is required by JavaScript"},
                {"label": "C", "text": "It is never reassigned"},
            ],
            "correctLabel": "C",
            "detailedExplanation": "const signals the binding is not reassigned.",
        },
    ]


@pytest.fixture
def static_oracle(quiz_payloads) -> StaticQuizOracle:
    return StaticQuizOracle(quizzes=quiz_payloads)


@pytest.fixture
def state_machine(static_oracle: StaticQuizOracle, artifact_store: ArtifactStore) -> UnlockStateMachine:
    """State machine with 3 gates, skip disabled, inherit policy."""
    return UnlockStateMachine(
        SessionState(conversation_id="conv-test"),
        QuizOracleAdapter(static_oracle),
        artifact_store=artifact_store,
        default_total_gates=3,
        version_policy="inherit",
    )


@pytest.fixture
def snapshot_store() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


@pytest_asyncio.fixture
async def session_manager(static_oracle, snapshot_store, artifact_store):
    """SessionManager with 3 gates and a long debounce; closed after the test."""
    manager = SessionManager(
        "conv-test",
        store=snapshot_store,
        oracle=static_oracle,
        artifact_store=artifact_store,
        skip_allowed=False,
        default_total_gates=3,
        version_policy="inherit",
        debounce_seconds=60,
    )
    yield manager
    await manager.close()
