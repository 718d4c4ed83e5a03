"""
Global exception handlers for the API layer.

These handlers transform domain exceptions raised by the password-reset
service into the JSON error shape the frontend expects:
{"error": "...", "waitSeconds"?: int, "attemptsRemaining"?: int}
"""

import logging
from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.exceptions import (
    ResetFlowError,
    RateLimited,
    InvalidCode,
)

logger = logging.getLogger(__name__)


async def reset_flow_exception_handler(
        request: Request, exc: ResetFlowError
) -> JSONResponse:
    """
    Handle every ResetFlowError subclass.
    Status code comes from the exception class (400, 429 or 500).
    """
    content = {"error": exc.message}

    if isinstance(exc, RateLimited) and exc.wait_seconds is not None:
        content["waitSeconds"] = exc.wait_seconds
    if isinstance(exc, InvalidCode):
        content["attemptsRemaining"] = exc.attempts_remaining

    headers = None
    if isinstance(exc, RateLimited) and exc.wait_seconds:
        headers = {"Retry-After": str(exc.wait_seconds)}

    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle Pydantic body validation failures.
    Maps to HTTP 400 with the first error's message instead of FastAPI's 422.
    """
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = first.get("msg", "Invalid request")
        if field:
            message = f"{field}: {message}"
    else:
        message = "Invalid request"

    logger.info(f"Rejected malformed request to {request.url.path}: {message}")

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message},
    )


# Dictionary mapping exception types to their handlers
# This is used to register all handlers at once in main.py
EXCEPTION_HANDLERS = {
    ResetFlowError: reset_flow_exception_handler,
    RequestValidationError: request_validation_exception_handler,
}
