"""
Error kinds raised by the API.

Every failure leaves the service as `{"success": false, "message": ..., "error": code}`.
Handlers for the kinds below, for FastAPI's own request validation errors and
for database failures are installed by `install_error_handlers`.
"""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(HTTPException):
    status_code = 500
    code = "server_error"
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(status_code=self.status_code, detail=message or self.default_message)

    @property
    def message(self) -> str:
        return self.detail


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid input"


class Unauthenticated(AppError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Not authorized, token failed"


class InvalidCredentials(AppError):
    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid email or password"


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied"


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class Conflict(AppError):
    status_code = 409
    code = "conflict"
    default_message = "Conflict"


class SelfModification(Conflict):
    code = "self_modification"
    default_message = "You cannot modify your own account"


class DependencyFailure(AppError):
    status_code = 502
    code = "dependency_failure"
    default_message = "A backing service failed, please try again later"


def error_body(message: str, code: str) -> dict:
    return {"success": False, "message": message, "error": code}


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid input"
    err = errors[0]
    loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
    field = ".".join(loc)
    msg = err.get("msg", "Invalid value")
    return f"{field}: {msg}" if field else msg


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        message = exc.message
        if isinstance(exc, DependencyFailure):
            # detail stays in the log
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
            message = DependencyFailure.default_message
        return JSONResponse(status_code=exc.status_code, content=error_body(message, exc.code))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=ValidationError.status_code,
            content=error_body(_first_validation_message(exc), ValidationError.code),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail), "http_error"),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(PyMongoError)
    async def database_error_handler(request: Request, exc: PyMongoError):
        logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=DependencyFailure.status_code,
            content=error_body(DependencyFailure.default_message, DependencyFailure.code),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_body("Server error", "server_error"))
