"""
FastAPI application for the valuation pipeline service.

Production deployment configuration via environment variables.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from utils.config import Config
from valuation import ValuationPipeline
from valuation.errors import (
    LockedSlotConflict,
    NotFound,
    PipelineError,
    PreconditionMissing,
    ValidationError,
)
from web.order_routes import router as order_router


logger = logging.getLogger(__name__)

VERSION = "0.1.0"


# =============================================================================
# Error Mapping
# =============================================================================


def error_body(error: PipelineError) -> dict:
    """Structured JSON body for a pipeline error."""
    body = {"error": type(error).__name__, "message": str(error)}
    if isinstance(error, ValidationError):
        body["errors"] = error.errors
        body["concern"] = error.concern
    elif isinstance(error, LockedSlotConflict):
        body["compId"] = error.comp_id
        body["targetIndex"] = error.target_index
        body["requiresConfirmation"] = True
    elif isinstance(error, PreconditionMissing):
        body["missing"] = error.missing
    elif isinstance(error, NotFound):
        body["kind"] = error.kind
        body["key"] = error.key
    return body


STATUS_CODES = (
    (ValidationError, 400),
    (NotFound, 404),
    (LockedSlotConflict, 409),
    (PreconditionMissing, 422),
)


def status_for(error: PipelineError) -> int:
    for error_type, status in STATUS_CODES:
        if isinstance(error, error_type):
            return status
    return 500


def create_app(
    pipeline: Optional[ValuationPipeline] = None,
    config: Optional[Config] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or Config.load()
    app = FastAPI(
        title="Comparable Valuation Pipeline",
        description="Comp selection, Hi-Lo bracketing and adjustments per order",
        version=VERSION,
        debug=config.debug,
    )

    # ==========================================================================
    # Healthcheck endpoints are registered first. They perform no IO.
    # ==========================================================================
    @app.get("/", include_in_schema=False)
    def root():
        """Root healthcheck. No dependencies, no IO."""
        return {"status": "ok"}

    @app.get("/health", include_in_schema=False)
    def health():
        """Secondary health endpoint. No dependencies, no IO."""
        return {"status": "healthy"}

    app.state.pipeline = pipeline or ValuationPipeline.from_config(config)

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        status = status_for(exc)
        if status >= 500:
            logger.error("Unhandled pipeline error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=status, content=error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def request_error_handler(request: Request, exc: RequestValidationError):
        # Malformed bodies are input errors; 422 is reserved for missing preconditions
        return JSONResponse(
            status_code=400,
            content={
                "error": "ValidationError",
                "message": "Malformed request",
                "errors": [
                    f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                    for error in exc.errors()
                ],
                "concern": "request",
            },
        )

    app.include_router(order_router)

    @app.get("/api/health")
    async def api_health():
        """Health check endpoint."""
        return {"status": "healthy", "version": VERSION}

    return app


# Create app instance for uvicorn
app = create_app()
