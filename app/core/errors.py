from __future__ import annotations

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(RuntimeError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "internal_error"

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    """Rejected input; raised before any state is mutated."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_error"


class StorageError(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "storage_unavailable"


class ExternalServiceError(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "external_service_error"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


FILE_UNAVAILABLE_MESSAGE = "File unavailable, please re-upload."


def error_body(message: str, code: str) -> dict[str, str]:
    return {"error": message, "code": code}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("request_failed path=%s code=%s: %s", request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.code))


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    _ = request
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed."
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(detail, "http_error"),
        headers=getattr(exc, "headers", None),
    )
