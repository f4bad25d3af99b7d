from __future__ import annotations

import pytest

from studyflow.api.errors import to_http_exception
from studyflow.core.errors import (
    AccessDenied,
    AlreadyConsented,
    CompletionConflict,
    ModuleNotFound,
    NoActiveVersion,
    PathReadOnly,
    PayloadTooLarge,
    ReadOnly,
    StoreUnavailable,
    StudyError,
    VersionNotActive,
)


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (ModuleNotFound("m"), 404),
        (ReadOnly("u", "m"), 400),
        (CompletionConflict("u", "m"), 400),
        (PathReadOnly("u", "p", "m"), 403),
        (AlreadyConsented("u", "1.0"), 409),
        (VersionNotActive("1.0", "RETIRED"), 400),
        (PayloadTooLarge(10, 5), 413),
    ],
)
def test_status_codes(error: StudyError, status_code: int) -> None:
    exc = to_http_exception(error)
    assert exc.status_code == status_code
    assert exc.detail["error"] == error.code


def test_denial_body_shape() -> None:
    exc = to_http_exception(AccessDenied("prior_modules_incomplete", next_module="module1"))
    assert exc.status_code == 403
    assert exc.detail == {
        "error": "access_denied",
        "reason": "prior_modules_incomplete",
        "message": "Complete the previous modules first",
        "next_module": "module1",
    }


def test_store_unavailable_is_retriable() -> None:
    exc = to_http_exception(StoreUnavailable("store unavailable during progress.get"))
    assert exc.status_code == 503
    assert exc.headers == {"Retry-After": "1"}
    assert "progress.get" not in str(exc.detail)


@pytest.mark.parametrize("error", [NoActiveVersion(), StudyError("secret internals")])
def test_internal_errors_do_not_leak_text(error: StudyError) -> None:
    exc = to_http_exception(error)
    assert exc.status_code == 500
    assert exc.detail == {"error": "internal_error", "message": "Internal server error"}
