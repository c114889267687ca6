"""
Application exceptions and the FastAPI handlers that render them.

Every handler answers with an ``ErrorResponse`` envelope carrying the
request id from the current context. Debug details are attached only when
``settings.debug`` is on.
"""

from __future__ import annotations

import traceback

from typing import Any

import asyncpg

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from openai import APIError as OpenAIAPIError, RateLimitError as OpenAIRateLimitError

from api.middleware.request_context import get_request_context, get_request_id
from core.constants import get_settings
from models.error_models import ErrorCode, ErrorDetail, ErrorResponse, get_status_code
from utils.logger import logger


class AppException(Exception):
    """Error with a stable code that maps onto an HTTP status.

    Example:
        raise AppException(ErrorCode.GENERATION_FAILED, "Reply stream failed", cause=exc)
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.cause = cause


class ResourceNotFoundError(AppException):
    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND,
    ):
        label = f"{resource} '{resource_id}'" if resource_id else resource
        super().__init__(code, f"{label} not found", details={"resource": resource, "id": resource_id})


class ChatRoomNotFoundError(ResourceNotFoundError):
    """Raised for chatrooms that do not exist or were soft-deleted."""

    def __init__(self, chatroom_id: str):
        super().__init__("Chatroom", chatroom_id, code=ErrorCode.CHATROOM_NOT_FOUND)


class MessagePersistenceError(AppException):
    """A bot or greeting message could not be written."""

    def __init__(self, chatroom_id: str, cause: Exception | None = None):
        super().__init__(
            ErrorCode.MESSAGE_PERSISTENCE_FAILED,
            f"Failed to persist message in chatroom '{chatroom_id}'",
            details={"chatroom_id": chatroom_id},
            cause=cause,
        )


def _render(
    request: Request,
    status_code: int,
    code: ErrorCode,
    message: str,
    details: list[ErrorDetail] | None = None,
    debug: dict[str, Any] | None = None,
) -> JSONResponse:
    show_debug = bool(get_settings().debug)
    body = ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=request.url.path,
        details=details,
        debug=debug if show_debug else None,
    )
    return JSONResponse(status_code=status_code, content=body.to_dict(include_debug=show_debug))


def _log(exc: Exception, code: ErrorCode, status_code: int) -> None:
    ctx = get_request_context()
    fields = ctx.to_log_context() if ctx else {}
    fields.update(error_code=code.value, status_code=status_code)
    if status_code >= 500:
        logger.error(f"{code.value}: {exc}", exc_info=True, **fields)
    else:
        logger.warning(f"{code.value}: {exc}", **fields)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    status_code = get_status_code(exc.code)
    _log(exc, exc.code, status_code)
    details = [ErrorDetail(field=key, message=str(value)) for key, value in exc.details.items() if value is not None]
    debug = {"exception_type": type(exc).__name__, "cause": str(exc.cause) if exc.cause else None}
    return _render(request, status_code, exc.code, exc.message, details=details or None, debug=debug)


_HTTP_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.EXTERNAL_RATE_LIMITED,
    502: ErrorCode.EXTERNAL_SERVICE_ERROR,
    503: ErrorCode.EXTERNAL_TIMEOUT,
}


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    _log(exc, code, exc.status_code)
    return _render(request, exc.status_code, code, str(exc.detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request bodies and params that fail pydantic parsing."""
    details = [
        ErrorDetail(field=".".join(str(part) for part in error["loc"]), message=error["msg"], code=error["type"])
        for error in exc.errors()
    ]
    _log(exc, ErrorCode.VALIDATION_ERROR, 422)
    return _render(request, 422, ErrorCode.VALIDATION_ERROR, "Request validation failed", details=details)


async def openai_exception_handler(request: Request, exc: OpenAIAPIError) -> JSONResponse:
    if isinstance(exc, OpenAIRateLimitError):
        code, message = ErrorCode.EXTERNAL_RATE_LIMITED, "LLM rate limit exceeded"
    else:
        code, message = ErrorCode.OPENAI_ERROR, f"LLM API error: {exc}"
    status_code = get_status_code(code)
    _log(exc, code, status_code)
    return _render(request, status_code, code, message)


async def asyncpg_exception_handler(request: Request, exc: asyncpg.PostgresError) -> JSONResponse:
    _log(exc, ErrorCode.DATABASE_ERROR, 500)
    debug = {"pg_error_code": getattr(exc, "sqlstate", None), "pg_error_class": type(exc).__name__}
    return _render(request, 500, ErrorCode.DATABASE_ERROR, "Database operation failed", debug=debug)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: anything no other handler claimed."""
    logger.error(f"Unhandled {type(exc).__name__}: {exc}", exc_info=True, path=request.url.path)
    debug = {
        "exception_type": type(exc).__name__,
        "exception_message": str(exc),
        "traceback": traceback.format_exc(),
    }
    return _render(request, 500, ErrorCode.INTERNAL_UNEXPECTED, "An unexpected error occurred", debug=debug)


def register_exception_handlers(app: FastAPI) -> None:
    # Starlette types handlers as taking Exception; narrower handlers work at runtime
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(OpenAIAPIError, openai_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(asyncpg.PostgresError, asyncpg_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
