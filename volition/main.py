"""
Volition - FastAPI Application

HTTP surface for the goal lifecycle engine.

Error mapping:
- ValidationError         -> 400
- MalformedContentError   -> 502 (generated content failed validation)
- UnauthorizedError       -> 401
- NotFoundError           -> 404
- StatePreconditionError  -> 409 (with expected/actual status)
- GenerationError         -> 502
"""

import logging
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .config import load_settings
from .errors import (
    GenerationError,
    MalformedContentError,
    NotFoundError,
    StatePreconditionError,
    UnauthorizedError,
    ValidationError,
    VolitionError,
)
from .lifecycle_router import router as lifecycle_router

# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=getattr(logging, load_settings().log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("volition")

ERROR_STATUS_CODES = (
    (MalformedContentError, 502),
    (ValidationError, 400),
    (UnauthorizedError, 401),
    (NotFoundError, 404),
    (StatePreconditionError, 409),
    (GenerationError, 502),
)


def status_code_for(exc: VolitionError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


app = FastAPI(
    title="Volition - Goal Lifecycle Engine",
    description="Stress test, trial, blueprint and job execution for personal goals",
    version=__version__
)

app.include_router(lifecycle_router)


@app.exception_handler(VolitionError)
async def volition_error_handler(request: Request, exc: VolitionError):
    status_code = status_code_for(exc)
    body = {"detail": str(exc)}
    if isinstance(exc, StatePreconditionError):
        body["expected"] = exc.expected
        body["actual"] = exc.actual
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content=body)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "Volition - Goal Lifecycle Engine",
        "status": "running",
        "version": __version__
    }


@app.get("/health")
async def health_check():
    """Detailed health check."""
    settings = load_settings()
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "components": {
            "api": "operational",
            "state_file": str(settings.state_file),
            "generation": "configured" if settings.llm_api_key else "missing_api_key",
        },
    }


# -----------------------------------------------------------------------------
# Main Entry Point (for development)
# -----------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("volition.main:app", host="0.0.0.0", port=8000)
