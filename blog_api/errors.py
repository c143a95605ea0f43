"""
Typed application errors and the single place that turns them into HTTP
responses.

Services and dependencies raise an ``AppError`` subclass; they never build
error responses themselves.  ``register_exception_handlers`` wires the
handlers that render every failure into the response envelope::

    {"status": "fail" | "error", "message": "..."}

``fail`` is used for client errors (4xx) and ``error`` for server errors
(5xx).  Unexpected exceptions are logged with their traceback and reported
to the client as a generic 500 with no internal detail.
"""
import asyncio
import logging
import os
import signal

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------

class AppError(Exception):
    status_code: int = 500
    default_message: str = "Something went wrong"

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    @property
    def status(self) -> str:
        return "fail" if self.status_code < 500 else "error"


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid input data"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"


class PageOutOfRange(NotFoundError):
    default_message = "This page does not exist"


class AuthenticationError(AppError):
    status_code = 401
    default_message = "Authentication failed"


class Unauthenticated(AuthenticationError):
    default_message = "You are not logged in"


class InvalidToken(AuthenticationError):
    default_message = "Invalid or expired token. Please log in again"


class UserNotFound(AuthenticationError):
    default_message = "The user belonging to this token no longer exists"


class StaleSession(AuthenticationError):
    default_message = "Your password has just been changed. Please log in again"


class AuthorizationError(AppError):
    status_code = 403
    default_message = "You do not have permission to perform this action"


Forbidden = AuthorizationError


class InternalError(AppError):
    """Unexpected failure; rendered without any internal detail."""

    status_code = 500


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def _envelope(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    status = "fail" if status_code < 500 else "error"
    return JSONResponse(
        status_code=status_code,
        content={"status": status, "message": message},
        headers=headers,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return _envelope(exc.status_code, exc.message, headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        text = error.get("msg", "invalid value")
        messages.append(f"{location}: {text}" if location else text)
    return _envelope(400, "; ".join(messages) or ValidationError.default_message)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _envelope(exc.status_code, message, getattr(exc, "headers", None))


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.info("Integrity violation on %s %s: %s", request.method, request.url.path, exc.orig)
    return _envelope(400, "Duplicate field value. Please use another value")


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = InternalError()
    return _envelope(error.status_code, error.message)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)


# ---------------------------------------------------------------------------
# Process-level crash handling
# ---------------------------------------------------------------------------

def handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """
    Loop-level handler for exceptions nobody awaited (the asyncio analogue
    of an unhandled promise rejection).

    Logs the failure and asks the process to terminate with SIGTERM so the
    ASGI server stops accepting connections, drains in-flight requests and
    runs the lifespan shutdown before exiting.
    """
    exc = context.get("exception")
    message = context.get("message", "Unhandled exception in event loop")
    logger.critical("UNHANDLED FAILURE: %s", message, exc_info=exc)
    logger.critical("Shutting down gracefully")
    os.kill(os.getpid(), signal.SIGTERM)


def install_crash_handler(loop: asyncio.AbstractEventLoop) -> None:
    loop.set_exception_handler(handle_loop_exception)
