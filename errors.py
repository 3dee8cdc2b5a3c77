import logging
import re
import traceback
from typing import Any, Dict, Optional

import jwt
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from database import CastError

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Operational error: safe to show its message to the client."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.status = "fail" if 400 <= status_code < 500 else "error"
        self.is_operational = True


def _duplicate_error(err: DuplicateKeyError) -> AppError:
    key_value: Optional[Dict[str, Any]] = (err.details or {}).get("keyValue")
    if not key_value:
        match = re.search(r"dup key: \{ (\w+): \"?([^\"}]*)\"? \}", str(err))
        if match:
            key_value = {match.group(1): match.group(2).strip()}
    if not key_value:
        return AppError("Duplicate field value. Please use another value.", 400)
    field, value = next(iter(key_value.items()))
    return AppError(
        f"The {field} '{value}' already exists. Please use a different {field}.", 400
    )


def _validation_error(errors) -> AppError:
    messages = []
    for e in errors:
        loc = ".".join(str(part) for part in e.get("loc", ()) if part != "body")
        msg = e.get("msg", "invalid value")
        messages.append(f"{loc}: {msg}" if loc else msg)
    return AppError(f"Invalid input data. {'. '.join(messages)}", 400)


def to_app_error(exc: Exception) -> Optional[AppError]:
    """Map known error shapes to operational errors; None for unknown ones."""
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, CastError):
        return AppError(f"Invalid {exc.path}: {exc.value}.", 400)
    if isinstance(exc, DuplicateKeyError):
        return _duplicate_error(exc)
    if isinstance(exc, RequestValidationError):
        return _validation_error(exc.errors())
    if isinstance(exc, ValidationError):
        return _validation_error(exc.errors())
    if isinstance(exc, jwt.ExpiredSignatureError):
        return AppError("Your token has expired! Please log in again.", 401)
    if isinstance(exc, jwt.InvalidTokenError):
        return AppError("Invalid token. Please log in again!", 401)
    if isinstance(exc, StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return None
        return AppError(str(exc.detail), exc.status_code)
    return None


def _send_error_dev(exc: Exception, app_error: Optional[AppError]) -> JSONResponse:
    status_code = app_error.status_code if app_error else 500
    return JSONResponse(
        status_code=status_code,
        content={
            "status": app_error.status if app_error else "error",
            "error": {"name": type(exc).__name__, "detail": str(exc)},
            "message": app_error.message if app_error else str(exc),
            "stack": traceback.format_exception(type(exc), exc, exc.__traceback__),
        },
    )


def _send_error_prod(exc: Exception, app_error: Optional[AppError]) -> JSONResponse:
    if app_error is not None:
        return JSONResponse(
            status_code=app_error.status_code,
            content={"status": app_error.status, "message": app_error.message},
        )
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Something went very wrong!"},
    )


async def global_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, StarletteHTTPException) and exc.status_code == 404 and exc.detail == "Not Found":
        exc = AppError(f"Can't find {request.url.path} on this server!", 404)
    app_error = to_app_error(exc)
    if app_error is None:
        logger.error("ERROR 💥 %s %s", request.method, request.url.path, exc_info=exc)
    if config.is_production():
        response = _send_error_prod(exc, app_error)
    else:
        response = _send_error_dev(exc, app_error)
    if isinstance(exc, StarletteHTTPException) and exc.headers:
        response.headers.update(exc.headers)
    return response


def register_error_handlers(app: FastAPI) -> None:
    for exc_class in (
        AppError,
        CastError,
        DuplicateKeyError,
        RequestValidationError,
        ValidationError,
        jwt.InvalidTokenError,
        StarletteHTTPException,
        Exception,
    ):
        app.add_exception_handler(exc_class, global_error_handler)
