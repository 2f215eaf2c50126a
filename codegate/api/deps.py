"""
FastAPI dependencies for the session registry and per-conversation managers.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Path, Request, status

from codegate.engines.unlock.session_manager import SessionManager, SessionRegistry


def get_registry(request: Request) -> SessionRegistry:
    """The application-wide registry created in the lifespan handler."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session registry is not initialized",
        )
    return registry


Registry = Annotated[SessionRegistry, Depends(get_registry)]

ConversationId = Annotated[
    str,
    Path(min_length=1, max_length=128, pattern=r"^[\w.:-]+$"),
]


async def get_session(conversation_id: ConversationId, registry: Registry) -> SessionManager:
    """Open (or reuse) the SessionManager for the conversation in the path."""
    return await registry.get(conversation_id)


Session = Annotated[SessionManager, Depends(get_session)]
