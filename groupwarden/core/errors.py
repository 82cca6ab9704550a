"""Directory error taxonomy and status-code classification."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from groupwarden.core.models import FailureKind, MutationOperation


class DirectoryError(RuntimeError):
    """Failure raised by the group directory port."""

    def __init__(self, message: str, *, status: int | None = None, retryable: bool = True):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class DirectoryUnavailableError(DirectoryError):
    """Directory connection is not usable (disconnected, closed)."""


class DirectoryTimeoutError(DirectoryError):
    """A directory call did not finish before its deadline."""

    def __init__(self, message: str = "directory call timed out"):
        super().__init__(message, status=408, retryable=True)


class RateLimitedError(DirectoryError):
    """Directory rejected the call because of rate limiting."""

    def __init__(self, message: str = "rate limited"):
        super().__init__(message, status=429, retryable=True)


class CapabilityUnsupportedError(DirectoryError):
    """The directory does not offer the requested capability."""

    def __init__(self, capability: str):
        super().__init__(f"directory capability unsupported: {capability}", retryable=False)
        self.capability = capability


class IdentityResolutionError(ValueError):
    """No identifier candidate could be produced for a phone number."""


class NotAuthorizedError(PermissionError):
    """The automation account lacks the admin role in a group."""


class ErrorClass(Enum):
    """Retry class of one directory status."""

    SUCCESS = "success"
    ALREADY = "already"
    PERMANENT = "permanent"
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True, slots=True)
class StatusClassification:
    error_class: ErrorClass
    kind: FailureKind | None
    message: str


_ADD_PERMANENT: dict[int, tuple[FailureKind, str]] = {
    400: ("invalid_request", "request rejected as invalid"),
    401: ("not_authorized", "bot is not allowed to add participants"),
    403: ("not_found", "number cannot be added (privacy setting, block, or not on the network)"),
    404: ("not_found", "number not found on the network"),
}

_ROLE_PERMANENT: dict[int, tuple[FailureKind, str]] = {
    401: ("not_authorized", "bot is not allowed to change roles"),
    403: ("not_authorized", "no permission to change this participant's role"),
    404: ("target_not_found", "participant not found in group"),
    406: ("protected_role", "cannot change the role of the group owner or superadmin"),
}

_RENAME_PERMANENT: dict[int, tuple[FailureKind, str]] = {
    401: ("not_authorized", "bot is not allowed to rename the group"),
    403: ("not_authorized", "bot is not allowed to rename the group"),
    404: ("not_found", "group not found"),
}

_PERMANENT_BY_OPERATION: dict[str, dict[int, tuple[FailureKind, str]]] = {
    "add": _ADD_PERMANENT,
    "promote": _ROLE_PERMANENT,
    "demote": _ROLE_PERMANENT,
    "rename": _RENAME_PERMANENT,
}


def classify_status(operation: MutationOperation, status: int | None) -> StatusClassification:
    """Partition a directory status into success, permanent, transient or rate-limited."""
    if status == 200:
        return StatusClassification(ErrorClass.SUCCESS, None, "ok")
    if status == 409:
        return StatusClassification(ErrorClass.ALREADY, None, "already in desired state")
    if status == 429:
        return StatusClassification(ErrorClass.RATE_LIMITED, "rate_limited", "rate limited by directory")
    permanent = _PERMANENT_BY_OPERATION.get(operation, {})
    if status in permanent:
        kind, message = permanent[status]
        return StatusClassification(ErrorClass.PERMANENT, kind, f"status {status}: {message}")
    if status == 408:
        return StatusClassification(ErrorClass.TRANSIENT, "transient", "status 408: directory timeout")
    label = status if status is not None else "unknown"
    return StatusClassification(ErrorClass.TRANSIENT, "transient", f"status {label}: directory error")


def classify_exception(err: BaseException) -> StatusClassification:
    """Classify an exception raised by a directory call."""
    if isinstance(err, RateLimitedError):
        return StatusClassification(ErrorClass.RATE_LIMITED, "rate_limited", str(err))
    if isinstance(err, CapabilityUnsupportedError):
        return StatusClassification(ErrorClass.PERMANENT, "unavailable", str(err))
    if isinstance(err, DirectoryError):
        if err.retryable:
            return StatusClassification(ErrorClass.TRANSIENT, "transient", str(err))
        return StatusClassification(ErrorClass.PERMANENT, "unavailable", str(err))
    if isinstance(err, (TimeoutError, ConnectionError, OSError)):
        return StatusClassification(ErrorClass.TRANSIENT, "transient", str(err) or err.__class__.__name__)
    raise err
