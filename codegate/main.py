"""
Codegate Unlock Engine

FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Type

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from codegate.ai.openai_oracle import OpenAIQuizOracle
from codegate.api.middleware.request_id import RequestIdMiddleware
from codegate.api.v1 import router as api_v1_router
from codegate.config import get_settings
from codegate.database import async_session_maker, close_db, init_db
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
from codegate.engines.unlock.persistence import SqlSnapshotStore
from codegate.engines.unlock.session_manager import SessionRegistry
from codegate.logging_config import configure_logging, get_logger
from codegate.schemas.common import HealthResponse

settings = get_settings()
logger = get_logger(__name__)

ENGINE_ERROR_STATUS: Dict[Type[UnlockEngineError], int] = {
    UnknownArtifactError: status.HTTP_404_NOT_FOUND,
    StaleQuizError: status.HTTP_409_CONFLICT,
    SessionClosedError: status.HTTP_409_CONFLICT,
    SkipNotAllowedError: status.HTTP_403_FORBIDDEN,
    OracleUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ExtractionError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    RestoreError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    InvariantViolationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.

    Configures logging, creates tables and the session registry on startup;
    flushes every open session before closing the database on shutdown.
    """
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )

    logger.info("Starting %s v%s", settings.project_name, settings.version)
    await init_db()
    logger.info("Database initialized")

    if getattr(app.state, "registry", None) is None:
        app.state.registry = SessionRegistry(
            SqlSnapshotStore(async_session_maker),
            OpenAIQuizOracle(settings),
        )

    yield

    logger.info("Shutting down...")
    await app.state.registry.close_all()
    await close_db()
    logger.info("Database connections closed")


app = FastAPI(
    title=settings.project_name,
    description="""
    Codegate Unlock Engine

    Generated code is revealed progressively as the learner proves they
    understand it.

    ## Flow

    - **Ingest**: stream assistant text; artifact blocks are extracted
    - **Code panel**: locked lines are redacted, signatures first
    - **Quizzes**: each correct answer opens the next band of lines
    - **Dialogue**: free-form explanations graded by the oracle
    """,
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


_cors_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
]

app.add_middleware(RequestIdMiddleware)

# Added last = outermost, so every response carries CORS headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_headers(request: Request) -> dict:
    req_id = getattr(request.state, "request_id", None)
    return {"X-Request-ID": req_id} if req_id else {}


@app.exception_handler(UnlockEngineError)
async def unlock_engine_exception_handler(request: Request, exc: UnlockEngineError):
    """Map engine errors to HTTP statuses."""
    status_code = next(
        (code for cls, code in ENGINE_ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    if status_code >= 500:
        logger.error("Engine error: %s", exc, extra={"error_code": exc.code})
    content = {"detail": str(exc), "code": exc.code}
    if exc.artifact_id:
        content["artifact_id"] = exc.artifact_id
    if isinstance(exc, StaleQuizError):
        content["current_quiz_id"] = exc.current_quiz_id
    return JSONResponse(status_code=status_code, content=content, headers=_error_headers(request))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    headers = _error_headers(request)
    content = {"detail": exc.detail}
    if headers and exc.status_code >= 500:
        content["request_id"] = headers["X-Request-ID"]
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return field-level validation errors."""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation error", "errors": errors},
        headers=_error_headers(request),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception("Unhandled exception: %s", exc)
    req_id = getattr(request.state, "request_id", None)
    if settings.debug:
        content = {"detail": str(exc), "type": type(exc).__name__, "request_id": req_id}
    else:
        content = {"detail": "Internal server error", "request_id": req_id}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content,
        headers=_error_headers(request),
    )


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Check application health."""
    return HealthResponse(
        status="ok",
        version=settings.version,
        database="connected",
        ai_configured=OpenAIQuizOracle(settings).is_configured,
    )


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.project_name,
        "version": settings.version,
        "docs": "/docs" if settings.debug else "disabled",
        "api": {
            "v1": settings.api_v1_prefix,
        },
    }


app.include_router(
    api_v1_router,
    prefix=settings.api_v1_prefix,
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "codegate.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
