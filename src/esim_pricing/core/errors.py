"""
Error types shared by the API layer, plus FastAPI exception handlers.

Every error leaves the service in the same envelope:
    {"error": {"code": ..., "message": ..., "details": ...}, "request_id": ...}
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger(__name__)


class AppError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = int(status_code)
        self.code = str(code)
        self.message = str(message)
        self.details = details
        self.headers = headers


class NotFoundError(AppError):
    def __init__(self, *, code: str = "not_found", message: str = "Not found", details: dict[str, Any] | None = None):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, code=code, message=message, details=details)


class ConflictError(AppError):
    def __init__(self, *, code: str = "conflict", message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(status_code=status.HTTP_409_CONFLICT, code=code, message=message, details=details)


class BadRequestError(AppError):
    def __init__(self, *, code: str = "bad_request", message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, code=code, message=message, details=details)


class ForbiddenError(AppError):
    def __init__(self, *, code: str = "forbidden", message: str = "Forbidden", details: dict[str, Any] | None = None):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, code=code, message=message, details=details)


def _request_id(request: Request) -> str | None:
    hdr = request.headers.get("x-request-id")
    if hdr and hdr.strip():
        return hdr.strip()
    return None


def _error_payload(*, code: str, message: str, details: dict[str, Any] | None, request_id: str | None) -> dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
        "request_id": request_id,
    }


def _json_error(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    rid = _request_id(request)

    out_headers = dict(headers or {})
    if rid:
        out_headers.setdefault("X-Request-ID", rid)

    return JSONResponse(
        status_code=int(status_code),
        content=_error_payload(code=code, message=message, details=details, request_id=rid),
        headers=out_headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("AppError %s: %s", exc.code, exc.message)
        return _json_error(
            request,
            status_code=exc.status_code,
            code=exc.code,
            message=exc.message,
            details=exc.details,
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _json_error(
            request,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="validation_error",
            message="Request validation failed",
            details={"errors": exc.errors()},
        )

    @app.exception_handler(HTTPException)
    async def _handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        details: dict[str, Any] | None = None
        message = "Request failed"

        if isinstance(exc.detail, str):
            message = exc.detail
        elif isinstance(exc.detail, dict):
            message = str(exc.detail.get("message") or message)
            details = exc.detail

        return _json_error(
            request,
            status_code=exc.status_code,
            code="http_exception",
            message=message,
            details=details,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception", exc_info=exc)
        return _json_error(
            request,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="internal_error",
            message="Internal server error",
        )
