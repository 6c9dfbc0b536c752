"""API error taxonomy.

Every failure the auth core reports to a client is one of three kinds,
rendered as ``{"error": message}`` with the matching status code.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class ApiError(Exception):
    """Base class for errors surfaced directly to the caller."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(ApiError):
    """Missing, invalid or expired credentials."""

    status_code = 401


class BadRequest(ApiError):
    """Malformed input or failed cryptographic verification."""

    status_code = 400


class NotFound(ApiError):
    """Referenced record is absent at the point of use."""

    status_code = 404


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message},
        headers=headers,
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request parsing failures as BadRequest instead of a 422."""
    first = exc.errors()[0] if exc.errors() else {}
    if first.get("type") == "missing" and tuple(first.get("loc", ())) == ("body",):
        message = "Request body required"
    else:
        message = "Invalid request body"
    return await api_error_handler(request, BadRequest(message))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
