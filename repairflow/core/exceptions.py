"""
Workflow exception hierarchy.

Every service in this package raises one of these types and never
translates to HTTP itself.  Each carries a machine-readable ``kind``; the
blueprint layer maps kind → status code once (see ``issue_bp``).

Kinds:
    validation  — malformed or missing input (blank status, bad cost, ...)
    not_found   — issue / acting user / assignee does not resolve
    forbidden   — role may not request that status, or actor is not active
    conflict    — state precondition failed (double accept, early resolve, ...)

Usage:
    from repairflow.core.exceptions import ConflictError, NotFoundError

    raise NotFoundError(resource="Issue", resource_id=issue_id)
    raise ConflictError("Issue already in progress.", current_status="in-progress")
"""


class WorkflowError(Exception):
    """Base class for errors raised by the issue workflow engine."""

    kind = "internal"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(WorkflowError):
    """Raised when input fails validation before any state is touched.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    kind = "validation"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class NotFoundError(WorkflowError):
    """Raised when a requested resource does not exist.

    Also used when a tenant addresses an issue that is not theirs, so the
    response does not confirm that the issue exists.

    Args:
        resource: Human-readable entity name (e.g. "Issue", "User").
        resource_id: The key that was looked up.
    """

    kind = "not_found"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource} not found"
        if resource_id is not None:
            msg = f"{resource} {resource_id!s} not found"
        super().__init__(msg)


class ForbiddenError(WorkflowError):
    """Raised when the acting identity may not perform the requested change."""

    kind = "forbidden"

    def __init__(self, message: str, *, role: str | None = None, requested: str | None = None) -> None:
        self.role = role
        self.requested = requested
        super().__init__(message)


class ConflictError(WorkflowError):
    """Raised when the issue's current state does not allow the transition.

    Args:
        message: Human-readable explanation.
        current_status: The issue status observed when the check failed.
    """

    kind = "conflict"

    def __init__(self, message: str, *, current_status: str | None = None) -> None:
        self.current_status = current_status
        super().__init__(message)
