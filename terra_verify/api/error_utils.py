"""
Standardized error handling utilities for the verification API.
Provides consistent error formats, HTTP status codes, and error codes across all endpoints.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from terra_verify.config.logging import get_logger
from terra_verify.data_management.quest_store import QuestNotFoundError
from terra_verify.data_management.submission_store import SubmissionNotFoundError

logger = get_logger("api.errors")

ERROR_CODES = {
    "NOT_FOUND": "Resource not found",
    "QUEST_NOT_FOUND": "Quest not found",
    "SUBMISSION_NOT_FOUND": "Submission not found",
    "PIPELINE_NOT_FOUND": "Verification pipeline not found",
    "INVALID_REQUEST": "Invalid request body or parameters",
    "VALIDATION_ERROR": "Request validation failed",
    "SERVER_ERROR": "Internal server error",
}


def create_error_response(
    error_code: str,
    message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    status_code: int = 500,
) -> JSONResponse:
    """
    Create a standardized error response with consistent format.

    Args:
        error_code: One of the standard ERROR_CODES keys
        message: Optional custom message (defaults to standard message)
        details: Optional additional error details
        status_code: HTTP status code

    Returns:
        JSONResponse with {"success": false, "error_code", "message"[, "details"]}
    """
    body: Dict[str, Any] = {
        "success": False,
        "error_code": error_code,
        "message": message or ERROR_CODES.get(error_code, "An error occurred"),
    }
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    """Map domain exceptions onto the standard error format."""

    @app.exception_handler(QuestNotFoundError)
    async def quest_not_found(request: Request, exc: QuestNotFoundError):
        return create_error_response("QUEST_NOT_FOUND", str(exc), status_code=404)

    @app.exception_handler(SubmissionNotFoundError)
    async def submission_not_found(request: Request, exc: SubmissionNotFoundError):
        return create_error_response("SUBMISSION_NOT_FOUND", str(exc), status_code=404)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        return create_error_response(
            "VALIDATION_ERROR",
            details={"errors": jsonable_errors(exc.errors())},
            status_code=422,
        )

    @app.exception_handler(ValueError)
    async def value_error(request: Request, exc: ValueError):
        return create_error_response("INVALID_REQUEST", str(exc), status_code=400)

    @app.exception_handler(Exception)
    async def internal_server_error(request: Request, exc: Exception):
        logger.opt(exception=exc).critical(f"Unhandled exception on {request.url.path}")
        return create_error_response("SERVER_ERROR", status_code=500)


def jsonable_errors(errors) -> list:
    """Drop non-serializable context (e.g. exception objects) from pydantic errors."""
    return [
        {key: value for key, value in error.items() if key in ("type", "loc", "msg")}
        for error in errors
    ]
