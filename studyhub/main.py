"""
StudyHub Mastery Backend

FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError

from studyhub.api.middleware.request_id import RequestIdMiddleware
from studyhub.api.v1 import router as api_v1_router
from studyhub.config import get_settings
from studyhub.database import async_session_maker, close_db, init_db
from studyhub.engines.mastery.grader import Grader
from studyhub.exceptions import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    StudyHubError,
    UnknownJobTypeError,
)
from studyhub.kernel.models import BackgroundJob, JobStatus
from studyhub.logging_config import configure_logging, get_logger
from studyhub.schemas.common import ErrorResponse, HealthResponse

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.

    Runs startup and shutdown tasks.
    """
    # Configure logging first
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )

    # Startup
    logger.info("Starting %s v%s", settings.project_name, settings.version)
    await init_db()
    logger.info("Database initialized")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.project_name,
    description="""
    StudyHub Mastery Backend

    Mastery tracking and grounded study-content generation.

    ## Features

    - **Attempts**: graded submissions update per-skill mastery and review schedules
    - **Gate verification**: skills are certified only after spaced, timed proof
    - **Readiness**: exam-weighted mastery per unit with trend and evidence
    - **Study sessions**: precomputed sessions whose assets cite verified sources
    - **Jobs**: durable, retryable background generation
    """,
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# Middleware order: add_middleware stacks innermost-first, so LAST added = OUTERMOST.
# CORS must be outermost so every response, errors included, gets CORS headers.
_cors_origins = [
    "http://localhost:3000",
    "http://localhost:5173",  # Vite default
    "http://127.0.0.1:3000",
]

app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _cors_headers(request: Request) -> dict:
    """CORS headers for error responses (500s often bypass CORS middleware)."""
    origin = request.headers.get("origin") or ""
    allow_origin = origin if origin in _cors_origins else _cors_origins[0]
    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "*",
        "Access-Control-Allow-Headers": "*",
    }


def _error_response(request: Request, status_code: int, content: dict) -> JSONResponse:
    headers = _cors_headers(request)
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        headers["X-Request-ID"] = req_id
        content["request_id"] = req_id
    return JSONResponse(status_code=status_code, content=content, headers=headers)


_DOMAIN_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    ConcurrencyConflictError: status.HTTP_409_CONFLICT,
    UnknownJobTypeError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Ensure 401/404/409 etc. responses have CORS headers and the request id."""
    return _error_response(request, exc.status_code, {"detail": exc.detail})


@app.exception_handler(StudyHubError)
async def domain_exception_handler(request: Request, exc: StudyHubError):
    """Domain errors not translated by a route."""
    status_code = next(
        (code for cls, code in _DOMAIN_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    logger.warning("Domain error: %s", exc, extra={"error_type": type(exc).__name__})
    return _error_response(request, status_code, {"detail": str(exc), "code": type(exc).__name__})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })
    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        {"detail": "Validation error", "errors": errors},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception("Unhandled exception: %s", exc)
    if settings.debug:
        content = {"detail": str(exc), "type": type(exc).__name__}
    else:
        content = {"detail": "Internal server error"}
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, content)


# Health check endpoint
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Check application health, database reachability and queue depth."""
    database = "connected"
    pending = None
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
            pending = (await session.execute(
                select(func.count()).select_from(BackgroundJob)
                .where(BackgroundJob.status == JobStatus.PENDING.value)
            )).scalar_one()
    except SQLAlchemyError as exc:
        logger.error("Health check database error: %s", exc)
        database = "unavailable"

    return HealthResponse(
        status="ok" if database == "connected" else "degraded",
        version=settings.version,
        database=database,
        grader="model" if Grader.model_configured() else "fallback",
        pending_jobs=pending,
    )


# Root endpoint
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


# Mount API v1 routes
app.include_router(
    api_v1_router,
    prefix=settings.api_v1_prefix,
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    },
)


# Main entry point for development
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "studyhub.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
