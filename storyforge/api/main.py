"""Main FastAPI application for Storyforge."""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

# Load environment variables using centralized loader
from storyforge.core.env_loader import ensure_env_loaded
ensure_env_loaded()

from storyforge.core.config import StoryforgeConfig, get_config
from storyforge.core.constants import VERSION
from storyforge.core.exceptions import (
    ExpansionError,
    GenerationError,
    ImportValidationError,
    InputValidationError,
    InvalidConfigError,
    PanelIndexError,
    PipelineError,
    ProjectNotFoundError,
    StoryforgeError,
)
from storyforge.core.logging_config import get_logger
from storyforge.orchestrator import StudioOrchestrator
from storyforge.api.routers import media, projects, storyboard

logger = get_logger("api.main")

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)

# Most specific first
ERROR_STATUS_CODES = [
    (ProjectNotFoundError, 404),
    (PanelIndexError, 404),
    (InputValidationError, 422),
    (InvalidConfigError, 422),
    (ImportValidationError, 400),
    (ExpansionError, 409),
    (PipelineError, 409),
]


def status_code_for(error: StoryforgeError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    if isinstance(error, GenerationError):
        return 429 if error.is_quota else 502
    return 500


async def storyforge_error_handler(request: Request, exc: StoryforgeError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.__class__.__name__, "detail": exc.message, "details": exc.details},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = StudioOrchestrator.from_config(app.state.config)
    await app.state.orchestrator.pipeline.start()
    yield
    await app.state.orchestrator.close()


def create_app(
    orchestrator: Optional[StudioOrchestrator] = None,
    config: Optional[StoryforgeConfig] = None,
) -> FastAPI:
    """Build the API around an orchestrator (built from config on startup when omitted)."""
    app = FastAPI(
        title="Storyforge API",
        description="API for AI-assisted storyboard and video generation",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.config = config or get_config()
    app.state.orchestrator = orchestrator

    # Add rate limiter to app state
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(StoryforgeError, storyforge_error_handler)

    # CORS middleware for web UI
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(storyboard.router, prefix="/api/storyboard", tags=["storyboard"])
    app.include_router(projects.router, prefix="/api/projects", tags=["projects"])
    app.include_router(media.router, prefix="/api/media", tags=["media"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": "Storyforge API", "version": VERSION}

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


def start_server(host: str = "0.0.0.0", port: int = 8000, config: Optional[StoryforgeConfig] = None):
    """Start the FastAPI server."""
    uvicorn.run(
        create_app(config=config),
        host=host,
        port=port,
        log_level="warning",  # Suppress INFO logs for each request
    )


if __name__ == "__main__":
    start_server()
