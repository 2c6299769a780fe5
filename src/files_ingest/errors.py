"""
Error taxonomy for the Files Ingest service and the FastAPI handlers that render it.

Every domain error carries an HTTP status, a stable error code, and a ``retryable``
flag. The worker consults ``retryable`` to decide between backing off and
dead-lettering a job straight away.
"""

import logging

import pydantic
from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class FilesIngestError(Exception):
    """Base class for all domain errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.error_code)
        self.message = message or self.error_code


class QuotaExceeded(FilesIngestError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "quota_exceeded"


class InvalidArgument(FilesIngestError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "invalid_argument"


class PayloadTooLarge(FilesIngestError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    error_code = "payload_too_large"


class NotFound(FilesIngestError):
    """Record missing or caller lacks access. The two cases are deliberately conflated."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "not_found"


class InvalidState(FilesIngestError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "invalid_state"


class FileNotReady(InvalidState):
    """The job arrived before the file's ``scanning`` flip became visible."""

    error_code = "file_not_ready"
    retryable = True


class AccessDenied(FilesIngestError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "access_denied"


class TransientStorageError(FilesIngestError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "storage_unavailable"
    retryable = True


class ScannerUnavailable(FilesIngestError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "scanner_unavailable"
    retryable = True


class QueueUnavailable(FilesIngestError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "queue_unavailable"
    retryable = True


class ProcessingFailed(FilesIngestError):
    """Terminal processing failure, recorded on the file as ``rejected``."""

    error_code = "processing_failed"


def is_retryable(exc: BaseException) -> bool:
    """Unknown exceptions are retried; domain errors say so explicitly."""
    return getattr(exc, "retryable", True)


async def handle_files_ingest_errors(request: Request, exc: FilesIngestError) -> JSONResponse:
    """Render a domain error as JSON with its own status code."""
    if exc.status_code >= 500:
        logger.error("Request %s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_code, "detail": exc.message},
    )


async def handle_pydantic_validation_errors(request: Request, exc: pydantic.ValidationError) -> JSONResponse:
    errors = exc.errors()
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": [
                {
                    "msg": error["msg"],
                    "input": error.get("input"),
                }
                for error in errors
            ]
        },
    )


async def handle_broad_exceptions(request: Request, call_next):
    """Handle any exception that propagates past the route handlers."""
    try:
        return await call_next(request)
    except Exception as err:  # pylint: disable=broad-except
        logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, err)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )
