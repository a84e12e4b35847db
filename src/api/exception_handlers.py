"""
Global exception handlers for FastAPI.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

import structlog

from src.core.exceptions import (
    ConfigurationError,
    FormPayloadError,
    InvalidTransitionError,
    ResearchWorkflowError,
    SchemaIntegrityError,
    SessionNotFoundError,
)

log = structlog.get_logger(__name__)


def status_for(exc: ResearchWorkflowError) -> int:
    """HTTP status code for a domain exception."""
    if isinstance(exc, SessionNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, InvalidTransitionError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, (FormPayloadError, SchemaIntegrityError)):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def setup_exception_handlers(app: FastAPI):
    """Register exception handlers with the FastAPI application.

    Domain errors get a status code from status_for; configuration errors
    and anything unexpected become a 500 with a generic message.
    """

    @app.exception_handler(ResearchWorkflowError)
    async def workflow_error_handler(
        request: Request,
        exc: ResearchWorkflowError,
    ) -> JSONResponse:
        log_ctx = log.bind(
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        status_code = status_for(exc)
        log_ctx.warning("request_error", message=exc.message, status_code=status_code)

        content = {
            "error": {
                "type": type(exc).__name__,
                "message": exc.message,
            }
        }
        if isinstance(exc, InvalidTransitionError):
            content["error"]["from_state"] = exc.from_state
            content["error"]["trigger"] = exc.trigger
        elif isinstance(exc, SchemaIntegrityError) and exc.field_ids:
            content["error"]["field_ids"] = list(exc.field_ids)

        return JSONResponse(status_code=status_code, content=content)

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request,
        exc: ConfigurationError,
    ) -> JSONResponse:
        log.error(
            "configuration_error",
            path=request.url.path,
            message=exc.message,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "type": "ConfigurationError",
                    "message": "Server configuration error",
                }
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Unhandled exceptions: log with context, answer with a generic 500."""
        log.bind(
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        ).error(
            "unhandled_exception",
            message=str(exc),
            exc_info=exc,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "type": "InternalServerError",
                    "message": "An unexpected error occurred",
                }
            },
        )
