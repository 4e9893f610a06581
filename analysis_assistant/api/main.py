"""FastAPI application entry point for the analysis assistant.

Creates the app, wires shared clients into ``app.state`` for the
lifetime of the process, maps error types to HTTP responses, and mounts
the routers under ``/api/v1``.

Run with:
    uvicorn analysis_assistant.api.main:app
"""

import logging
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from analysis_assistant.api.routes import assistant
from analysis_assistant.config import get_settings
from analysis_assistant.db.connection import init_db
from analysis_assistant.errors import AssistantError, IdentifierResolutionError
from analysis_assistant.services.llm_client import CompletionClient
from analysis_assistant.services.workflow_client import WorkflowClient

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

_startup_time: float | None = None


def _status_for_code(code: str) -> int:
    """HTTP status for an error code by category."""
    if code == "E-4003":
        return 504
    if code.startswith("E-1"):
        return 400 if code == "E-1002" else 404
    if code.startswith("E-2"):
        return 400
    if code.startswith("E-3"):
        return 502
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Async lifespan: database setup and shared client lifecycle."""
    global _startup_time

    # --- Startup ---
    _startup_time = _time.time()
    init_db()

    settings = get_settings()
    app.state.workflow_client = WorkflowClient(settings.workflow)
    app.state.completer = CompletionClient(settings.completion)
    logger.info(
        "Analysis assistant started (workflow engine %s)", settings.workflow.base_url
    )

    yield

    # --- Shutdown ---
    await app.state.workflow_client.aclose()
    await app.state.completer.aclose()


app = FastAPI(
    title="Analysis Assistant API",
    description="Conversational assistant for repository analysis workflows",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(AssistantError)
async def assistant_error_handler(
    request: Request, exc: AssistantError
) -> JSONResponse:
    """Handle AssistantError exceptions with consistent format.

    Args:
        request: The incoming request.
        exc: The AssistantError exception.

    Returns:
        JSONResponse with error details.
    """
    return JSONResponse(
        status_code=_status_for_code(exc.code),
        content={
            "error_code": exc.code,
            "message": exc.message,
            "remediation": exc.remediation,
        },
    )


@app.exception_handler(IdentifierResolutionError)
async def identifier_error_handler(
    request: Request, exc: IdentifierResolutionError
) -> JSONResponse:
    """Render submission lookup failures from the error registry."""
    error = AssistantError.from_code(exc.error_code, identifier=exc.identifier)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error.code,
            "message": error.message,
            "remediation": error.remediation,
        },
    )


# Include routers
app.include_router(assistant.router, prefix="/api/v1")


@app.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Dictionary with status, version and uptime.
    """
    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    try:
        version = _pkg_version("analysis-assistant")
    except PackageNotFoundError:
        version = "unknown"
    return {
        "status": "healthy",
        "version": version,
        "uptime_seconds": uptime,
    }
