"""Maps core error kinds to HTTP responses.

Routers catch StudyError and re-raise ``to_http_exception(e)``.  Detail
bodies carry the machine-readable ``error`` code so clients can branch on
it; configuration and store failures never echo internal text.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from studyflow.core.errors import (
    AccessDenied,
    AlreadyCompleted,
    AlreadyConsented,
    ConfigurationError,
    ConsentVersionExists,
    InvalidPayload,
    NotFound,
    PathReadOnly,
    PayloadTooLarge,
    ReadOnly,
    StoreUnavailable,
    StudyError,
    VersionNotActive,
)
from studyflow.services.access_controller import DENIAL_MESSAGES

logger = logging.getLogger(__name__)


def to_http_exception(error: StudyError) -> HTTPException:
    if isinstance(error, AccessDenied):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "access_denied",
                "reason": error.reason,
                "message": DENIAL_MESSAGES.get(error.reason, "Access denied"),
                "next_module": error.next_module,
            },
        )
    if isinstance(error, PathReadOnly):
        return _detail(status.HTTP_403_FORBIDDEN, error)
    if isinstance(error, NotFound):
        return _detail(status.HTTP_404_NOT_FOUND, error)
    if isinstance(error, (AlreadyCompleted, ReadOnly)):
        return _detail(status.HTTP_400_BAD_REQUEST, error)
    if isinstance(error, (AlreadyConsented, ConsentVersionExists)):
        return _detail(status.HTTP_409_CONFLICT, error)
    if isinstance(error, PayloadTooLarge):
        return _detail(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, error)
    if isinstance(error, (VersionNotActive, InvalidPayload)):
        return _detail(status.HTTP_400_BAD_REQUEST, error)
    if isinstance(error, StoreUnavailable):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": error.code, "message": "Service temporarily unavailable"},
            headers={"Retry-After": "1"},
        )
    if isinstance(error, ConfigurationError):
        logger.error("Configuration error: %s", error)
    else:
        logger.error("Unmapped study error %s: %s", type(error).__name__, error)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "internal_error", "message": "Internal server error"},
    )


def _detail(status_code: int, error: StudyError) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": error.code, "message": str(error)},
    )
