"""
Conversation endpoints - ingestion, code panel, quizzes, navigation.

Engine errors are mapped to HTTP statuses by the application's exception
handlers (404 unknown artifact, 409 stale quiz, 403 skip, 503 oracle).
"""

from typing import List

from fastapi import APIRouter, Response, status

from codegate.api.deps import ConversationId, Registry, Session
from codegate.engines.unlock.artifact_store import strip_artifacts
from codegate.engines.unlock.models import AnswerOutcome
from codegate.engines.unlock.quiz_parser import remove_quiz_markers
from codegate.engines.unlock.session_manager import SessionManager
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

router = APIRouter()


def _summaries(session: SessionManager) -> List[ArtifactSummary]:
    state = session.state
    return [
        ArtifactSummary.build(artifact, state.progress[artifact_id])
        for artifact_id, artifact in state.artifacts.items()
    ]


def _state_response(session: SessionManager) -> SessionStateResponse:
    state = session.state
    return SessionStateResponse(
        conversation_id=state.conversation_id,
        phase=state.phase.value,
        active_artifact_id=state.active_artifact_id,
        turn_ordinal=state.turn_ordinal,
        skip_allowed=state.skip_allowed,
        artifacts=_summaries(session),
    )


def _progress_response(session: SessionManager, artifact_id: str) -> ProgressResponse:
    view = session.get_progress(artifact_id)
    return ProgressResponse(
        **view.model_dump(),
        current_quiz=QuizSchema.from_quiz(session.state.progress[artifact_id].current_quiz),
    )


def _answer_response(outcome: AnswerOutcome) -> AnswerResponse:
    return AnswerResponse(
        artifact_id=outcome.artifact_id,
        quiz_id=outcome.quiz_id,
        is_correct=outcome.is_correct,
        unlock_level=outcome.unlock_level,
        total_gates=outcome.total_gates,
        is_unlocked=outcome.is_unlocked,
        feedback=outcome.feedback,
        explanation=outcome.explanation,
        next_quiz=QuizSchema.from_quiz(outcome.next_quiz),
    )


@router.post("/ingest", response_model=IngestResponse)
async def ingest(data: IngestRequest, session: Session):
    """
    Feed assistant text. Call repeatedly while streaming with is_final=false,
    then once with the complete message and is_final=true.
    """
    artifacts = await session.ingest_assistant_text(
        data.text,
        data.is_final,
        turn_ordinal=data.turn_ordinal,
    )
    state = session.state
    return IngestResponse(
        phase=state.phase.value,
        artifacts=[ArtifactSummary.build(a, state.progress[a.id]) for a in artifacts],
        display_text=remove_quiz_markers(strip_artifacts(data.text)),
    )


@router.get("/state", response_model=SessionStateResponse)
async def get_state(session: Session):
    return _state_response(session)


@router.get("/artifacts", response_model=List[ArtifactSummary])
async def list_artifacts(session: Session):
    return _summaries(session)


@router.put("/active", response_model=SessionStateResponse)
async def set_active(data: SetActiveRequest, session: Session):
    session.set_active_artifact(data.artifact_id)
    return _state_response(session)


@router.get("/artifacts/{artifact_id}/code", response_model=VisibleCodeResponse)
async def get_code(artifact_id: str, session: Session):
    """Artifact text with locked lines redacted."""
    code = session.get_visible_code(artifact_id)
    artifact = session.state.artifacts[artifact_id]
    return VisibleCodeResponse(
        artifact_id=artifact.id,
        title=artifact.title,
        language=artifact.language,
        version=artifact.version,
        code=code,
        visible_lines=session.visible_line_indices(artifact_id),
        total_lines=artifact.line_count,
        progress=_progress_response(session, artifact_id),
    )


@router.get("/artifacts/{artifact_id}/progress", response_model=ProgressResponse)
async def get_progress(artifact_id: str, session: Session):
    return _progress_response(session, artifact_id)


@router.post("/artifacts/{artifact_id}/answer", response_model=AnswerResponse)
async def answer(artifact_id: str, data: AnswerRequest, session: Session):
    outcome = await session.answer_quiz(artifact_id, data.quiz_id, data.answer)
    return _answer_response(outcome)


@router.post("/artifacts/{artifact_id}/dialogue", response_model=AnswerResponse)
async def answer_dialogue(artifact_id: str, data: DialogueRequest, session: Session):
    """Free-form explanation graded by the oracle."""
    outcome = await session.answer_freeform(
        artifact_id,
        data.quiz_id,
        data.answer,
        code_context=data.code_context,
    )
    return _answer_response(outcome)


@router.post("/artifacts/{artifact_id}/skip", response_model=ProgressResponse)
async def skip(artifact_id: str, session: Session):
    await session.skip(artifact_id)
    return _progress_response(session, artifact_id)


@router.post("/artifacts/{artifact_id}/quizzes/regenerate", response_model=ProgressResponse)
async def regenerate_quizzes(artifact_id: str, session: Session):
    await session.regenerate_quizzes(artifact_id)
    return _progress_response(session, artifact_id)


@router.post("/plan", response_model=PhaseResponse)
async def begin_planning(session: Session):
    session.begin_planning()
    return PhaseResponse(conversation_id=session.conversation_id, phase=session.state.phase.value)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def close_conversation(
    conversation_id: ConversationId,
    registry: Registry,
    forget: bool = False,
):
    """Close the conversation's session. forget=true also deletes its snapshot."""
    await registry.close(conversation_id, forget=forget)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
