"""
Platform-wide exception hierarchy.

Two families live here:

  * ``WorkflowError`` and its subclasses: raised by the pure workflow
    engine when an action is rejected. Each carries a stable ``kind``
    string (FORBIDDEN, INVALID_TRANSITION, ...) that the HTTP layer maps
    to a status code once, in ``unisync.utils.errors``.
  * ``NotFoundError`` / ``ValidationError`` / ``ConflictError``: raised by
    the service layer around persistence.

Usage:
    from unisync.core.exceptions import LockedError, NotFoundError

    raise NotFoundError(resource="ShowSet", resource_id="SS-07-01")
    raise LockedError(showset_id="SS-07-01")
"""


class WorkflowError(Exception):
    """Base class for rejected workflow actions.

    A rejected action never partially applies: the engine raises before it
    builds the result snapshot, so callers can surface the error as-is.

    Args:
        message: Human-readable explanation.
        stage: Stage name the rejection concerns, when there is one.
        details: Extra structured payload for the API response.
    """

    kind = "WORKFLOW_ERROR"

    def __init__(self, message: str, stage: str | None = None, details: dict | None = None) -> None:
        self.stage = stage
        self.details = details or {}
        super().__init__(message)


class ForbiddenError(WorkflowError):
    """Actor's role does not own the stage, or the action is admin-only."""

    kind = "FORBIDDEN"


class InvalidStatusForRoleError(WorkflowError):
    """Role owns the stage but may not set the requested status."""

    kind = "INVALID_STATUS_FOR_ROLE"


class InvalidTransitionError(WorkflowError):
    """Target status is unreachable from the stage's current status."""

    kind = "INVALID_TRANSITION"


class LockedError(WorkflowError):
    """ShowSet is locked; every action except unlock is refused."""

    kind = "LOCKED"

    def __init__(self, showset_id: str, details: dict | None = None) -> None:
        self.showset_id = showset_id
        super().__init__(f"ShowSet {showset_id} is locked", details=details)


class MissingRevisionNoteError(WorkflowError):
    """A rejection or upstream revision request arrived without a note."""

    kind = "MISSING_REVISION_NOTE"


class VersionNotMonotonicError(WorkflowError):
    """A manual version set would not move the counter forward."""

    kind = "VERSION_NOT_MONOTONIC"

    def __init__(self, version_type: str, current: int, requested: int) -> None:
        self.version_type = version_type
        self.current = current
        self.requested = requested
        super().__init__(
            f"{version_type} must increase (current={current}, requested={requested})",
            details={"versionType": version_type, "current": current, "requested": requested},
        )


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "ShowSet").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed JSON but violates a field rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised on a duplicate unique value or a stale snapshot write.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field that conflicted (``showset_id``, ``row_version``).
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | int | None = None,
                 message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")
