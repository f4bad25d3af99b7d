"""Error taxonomy for the progression core.

Every business-rule failure is a typed ``StudyError`` subclass so callers
can branch on the kind instead of parsing messages:

  NotFound            module/path/record/identity absent          terminal
  AccessDenied        consent, sequence or branching rule unmet   terminal until state changes
  TerminalStateError  write attempted on a COMPLETED record       terminal, client logic error
  ConsentError        consent version/record violations           terminal
  ConfigurationError  operator error (no active consent version)  surfaced as 500
  InvalidPayload      opaque payload not JSON or too large        terminal
  StoreUnavailable    persistent store unreachable                retriable with backoff

The HTTP boundary (studyflow/api/errors.py) maps these kinds to status
codes.  The core never converts them to strings on its own.
"""

from __future__ import annotations


class StudyError(Exception):
    """Base class for every failure the core reports to its callers."""

    code = "study_error"


# --- NotFound -----------------------------------------------------------------


class NotFound(StudyError):
    code = "not_found"


class ModuleNotFound(NotFound):
    code = "module_not_found"

    def __init__(self, name: str) -> None:
        super().__init__(f"module {name!r} not found")
        self.name = name


class PathNotFound(NotFound):
    code = "path_not_found"

    def __init__(self, name: str) -> None:
        super().__init__(f"path {name!r} not found")
        self.name = name


class PathNotWritable(NotFound):
    """The path has no backing module, so there is no progress to write."""

    code = "path_not_writable"

    def __init__(self, name: str) -> None:
        super().__init__(f"path {name!r} has no module to progress through")
        self.name = name


class ProgressNotFound(NotFound):
    code = "progress_not_found"

    def __init__(self, user_id: str, module_name: str) -> None:
        super().__init__(f"no progress for user={user_id} module={module_name!r}")
        self.user_id = user_id
        self.module_name = module_name


class IdentityNotFound(NotFound):
    code = "identity_not_found"


class ConsentVersionNotFound(NotFound):
    code = "consent_version_not_found"

    def __init__(self, version: str) -> None:
        super().__init__(f"consent version {version!r} not found")
        self.version = version


# --- AccessDenied -------------------------------------------------------------


class AccessDenied(StudyError):
    """Raised by mutating operations when the eligibility check fails.

    ``reason`` is one of the machine-readable denial reasons
    (consent_required | prior_modules_incomplete | branching_rule_not_satisfied).
    """

    code = "access_denied"

    def __init__(self, reason: str, *, next_module: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.next_module = next_module


# --- Terminal states ----------------------------------------------------------


class TerminalStateError(StudyError):
    code = "terminal_state"

    def __init__(self, user_id: str, module_name: str, message: str) -> None:
        super().__init__(message)
        self.user_id = user_id
        self.module_name = module_name


class AlreadyCompleted(TerminalStateError):
    code = "already_completed"

    def __init__(self, user_id: str, module_name: str) -> None:
        super().__init__(
            user_id,
            module_name,
            f"module {module_name!r} has already been completed",
        )


class CompletionConflict(AlreadyCompleted):
    """Lost the compare-and-set race: another request completed it first."""

    code = "completion_conflict"


class ReadOnly(TerminalStateError):
    code = "read_only"

    def __init__(self, user_id: str, module_name: str) -> None:
        super().__init__(
            user_id,
            module_name,
            f"module {module_name!r} is completed and read-only",
        )


class PathReadOnly(TerminalStateError):
    code = "path_read_only"

    def __init__(self, user_id: str, path_name: str, module_name: str) -> None:
        super().__init__(
            user_id,
            module_name,
            f"path {path_name!r} has been completed and can no longer be modified",
        )
        self.path_name = path_name


# --- Consent ------------------------------------------------------------------


class ConsentError(StudyError):
    code = "consent_error"


class VersionNotActive(ConsentError):
    code = "version_not_active"

    def __init__(self, version: str, status: str) -> None:
        super().__init__(
            f"consent version {version!r} is {status.lower()} and cannot be used"
        )
        self.version = version
        self.status = status


class AlreadyConsented(ConsentError):
    code = "already_consented"

    def __init__(self, user_id: str, version: str) -> None:
        super().__init__(f"user {user_id} has already consented to {version!r}")
        self.user_id = user_id
        self.version = version


class ConsentVersionExists(ConsentError):
    code = "consent_version_exists"

    def __init__(self, version: str) -> None:
        super().__init__(f"consent version {version!r} already exists")
        self.version = version


# --- Operator / infrastructure ------------------------------------------------


class ConfigurationError(StudyError):
    code = "configuration_error"


class NoActiveVersion(ConfigurationError):
    code = "no_active_version"

    def __init__(self) -> None:
        super().__init__("no ACTIVE consent version is configured")


class InvalidModuleGraph(ConfigurationError):
    code = "invalid_module_graph"


class InvalidPayload(StudyError):
    code = "invalid_payload"


class PayloadTooLarge(InvalidPayload):
    code = "payload_too_large"

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"payload is {size} bytes; limit is {limit}")
        self.size = size
        self.limit = limit


class StoreUnavailable(StudyError):
    """The persistent store could not be reached.  Safe to retry with backoff."""

    code = "store_unavailable"
