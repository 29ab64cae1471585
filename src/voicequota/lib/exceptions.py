"""Voice quota exception types.

Also, defines functions that translate service and repository exceptions
into HTTP exceptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from advanced_alchemy.exceptions import IntegrityError, NotFoundError, RepositoryError
from litestar.response import Response
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
    HTTP_504_GATEWAY_TIMEOUT,
)

if TYPE_CHECKING:
    from litestar import Request

__all__ = (
    "ApplicationClientError",
    "ApplicationError",
    "InvalidRequestError",
    "StorageUnavailableError",
    "TranscriptionServiceError",
    "TranscriptionTimeoutError",
    "exception_to_http_response",
)

logger = structlog.get_logger()


class ApplicationError(Exception):
    """Base exception type for the voice quota service."""

    detail: str = "Internal server error"
    status_code: int = HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, *args: Any, detail: str = "", **extra: Any) -> None:
        """Initialize ``ApplicationError``.

        Args:
            *args: args are converted to :class:`str` before passing to :class:`Exception`
            detail: detail of the exception.
            **extra: additional fields rendered into the error payload.
        """
        str_args = [str(arg) for arg in args if arg]
        if not detail:
            if str_args:
                detail, *str_args = str_args
            else:
                detail = self.detail
        self.detail = detail
        self.extra = extra
        super().__init__(*str_args)

    def __repr__(self) -> str:
        if self.detail:
            return f"{self.__class__.__name__} - {self.detail}"
        return self.__class__.__name__

    def __str__(self) -> str:
        return " ".join((*self.args, self.detail)).strip()

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.detail, **self.extra}


class ApplicationClientError(ApplicationError):
    """Base exception type for client errors."""

    status_code = HTTP_400_BAD_REQUEST


class InvalidRequestError(ApplicationClientError):
    """The request cannot be processed as sent: empty audio, unsupported language."""

    detail = "Invalid request"


class StorageUnavailableError(ApplicationError):
    """The usage ledger storage could not be reached."""

    detail = "Usage storage is unavailable"
    status_code = HTTP_503_SERVICE_UNAVAILABLE


class TranscriptionServiceError(ApplicationError):
    """The transcription service failed. The user may retry."""

    detail = "Failed to transcribe audio"
    status_code = HTTP_502_BAD_GATEWAY

    def __init__(self, *args: Any, detail: str = "", **extra: Any) -> None:
        extra.setdefault("retryable", True)
        super().__init__(*args, detail=detail, **extra)


class TranscriptionTimeoutError(TranscriptionServiceError):
    """The transcription service did not answer in time."""

    detail = "Transcription timed out"
    status_code = HTTP_504_GATEWAY_TIMEOUT


def exception_to_http_response(
    request: Request[Any, Any, Any],
    exc: ApplicationError | RepositoryError,
) -> Response[dict[str, Any]]:
    """Transform repository exceptions to HTTP exceptions.

    Args:
        request: The request that experienced the exception.
        exc: Exception raised during handling of the request.

    Returns:
        Exception response appropriate to the type of original exception.
    """
    if isinstance(exc, ApplicationError):
        status_code = exc.status_code
        payload = exc.to_payload()
    elif isinstance(exc, NotFoundError):
        status_code = HTTP_404_NOT_FOUND
        payload = {"error": exc.detail or "Not found"}
    elif isinstance(exc, IntegrityError):
        status_code = HTTP_409_CONFLICT
        payload = {"error": exc.detail or "Conflict"}
    else:
        status_code = HTTP_500_INTERNAL_SERVER_ERROR
        payload = {"error": "Internal server error"}

    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(
            "Request failed",
            path=request.url.path,
            status_code=status_code,
            error=str(exc),
            error_type=type(exc).__name__,
        )
    return Response(content=payload, status_code=status_code)
