"""
Exception taxonomy shared by services and routers.

Every error carries the HTTP status it maps to and a short machine-readable
code.  Routers let these propagate; ``register_exception_handlers`` turns them
into JSON responses.  Extraction and annotation errors are normally caught
inside background tasks and never reach a client.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class FolioError(Exception):
    """Base class for all application errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"

    def __init__(self, message: str = "", **extra: Any) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.extra: Dict[str, Any] = extra


# ---------------------------------------------------------------------------
# Request-time errors
# ---------------------------------------------------------------------------

class ValidationError(FolioError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class AuthError(FolioError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthorized"


class ForbiddenError(FolioError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class NotFoundOrForbidden(FolioError):
    """Record absent, soft-deleted or owned by someone else (never distinguished)."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ArtifactNotReady(NotFoundOrForbidden):
    """The requested derived artifact has not been generated yet."""

    code = "not_ready"


class ConflictError(FolioError):
    """A concurrent writer changed the record first (version check failed)."""

    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class ProcessingFailed(FolioError):
    """An owner-triggered reprocess attempt ended in ``failed`` again."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "processing_failed"


# ---------------------------------------------------------------------------
# Extraction errors (written to the record, not returned to the uploader)
# ---------------------------------------------------------------------------

class ExtractionError(FolioError):
    status_code = 422
    code = "extraction_error"


class UnsupportedMediaType(ExtractionError):
    code = "unsupported_media_type"


class MalformedInput(ExtractionError):
    code = "malformed_input"


# ---------------------------------------------------------------------------
# Annotation errors
# ---------------------------------------------------------------------------

class AnnotationError(FolioError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "annotation_error"


class UpstreamUnavailable(AnnotationError):
    """Model endpoint unreachable, timed out or returned a non-2xx status."""

    code = "upstream_unavailable"


class ResponseFormatError(AnnotationError):
    """Model output did not parse into the requested structure."""

    code = "response_format_error"


# ---------------------------------------------------------------------------
# HTTP mapping
# ---------------------------------------------------------------------------

def _error_body(
    request: Request, detail: Any, code: str, extra: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "detail": detail,
        "error": code,
        "path": str(request.url.path),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if extra:
        body.update(extra)
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Install JSON handlers for application, validation and unhandled errors."""

    @app.exception_handler(FolioError)
    async def folio_error_handler(request: Request, exc: FolioError):
        if exc.status_code >= 500:
            logger.error(
                "%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.message, exc.code, exc.extra),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "loc": [str(part) for part in err.get("loc", ())],
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body(request, "Invalid request", ValidationError.code, {"errors": errors}),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Return a structured JSON error for any unhandled exception."""
        logger.error(
            "Unhandled exception on %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(request, "Internal server error", FolioError.code, {"message": str(exc)}),
        )
