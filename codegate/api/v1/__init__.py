"""
API v1 routes.
"""

from fastapi import APIRouter

from codegate.api.v1 import sessions
from codegate.schemas.common import ErrorResponse

router = APIRouter()

router.include_router(
    sessions.router,
    prefix="/conversations/{conversation_id}",
    tags=["Conversations"],
    responses={
        403: {"model": ErrorResponse, "description": "Skip not allowed"},
        404: {"model": ErrorResponse, "description": "Unknown artifact"},
        409: {"model": ErrorResponse, "description": "Stale quiz or closed session"},
        503: {"model": ErrorResponse, "description": "Quiz oracle unavailable"},
    },
)
