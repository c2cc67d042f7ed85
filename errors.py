"""Error taxonomy and the handlers that turn it into the JSON error envelope."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base exception carrying the message shown to the client."""

    code = "APP_ERROR"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors

    def payload(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": False, "message": self.message}
        if self.errors:
            data["errors"] = self.errors
        return data


class ValidationError(AppError):
    code = "VALIDATION"
    http_status = status.HTTP_400_BAD_REQUEST


class StateError(AppError):
    code = "STATE"
    http_status = status.HTTP_400_BAD_REQUEST


# Reported as a plain 400.
class ConflictError(AppError):
    code = "CONFLICT"
    http_status = status.HTTP_400_BAD_REQUEST


class AuthError(AppError):
    code = "AUTH"
    http_status = status.HTTP_401_UNAUTHORIZED


class NotFoundError(AppError):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND


class EmailDeliveryError(AppError):
    code = "EMAIL"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR


def _field_name(loc) -> str:
    # loc looks like ("body", "amount") or ("query", "page")
    parts = [str(part) for part in loc if part not in ("body", "query", "path")]
    return ".".join(parts) or "request"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(
            "%s on %s %s: %s",
            exc.code,
            request.method,
            request.url.path,
            exc.message,
            extra={"component": "errors", "status": exc.http_status},
        )
    return JSONResponse(status_code=exc.http_status, content=exc.payload())


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"field": _field_name(err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": "Validation failed", "errors": errors},
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        message = "Route not found"
    else:
        message = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": message},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
        extra={"component": "errors"},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": "Internal server error"},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
