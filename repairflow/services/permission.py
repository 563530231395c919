"""
Issue Workflow — Role-Based Permission Matrix

Maps each staff/associate role to the issue statuses it may request.
The check is necessary but not sufficient: transition handlers apply the
state-dependent preconditions on top (see ``issue_lifecycle``).

Usage:
    from repairflow.services.permission import check_permission, is_allowed

    # Raises ForbiddenError if not allowed
    check_permission("manager", "forwarded")

    # Boolean check
    if is_allowed("associate", "in-progress"):
        ...
"""

from repairflow.core.exceptions import ForbiddenError
from repairflow.models.issue import (
    STATUS_ASSIGNED,
    STATUS_FORWARDED,
    STATUS_IN_PROGRESS,
    STATUS_REJECTED,
    STATUS_RESOLVED,
)
from repairflow.models.user import (
    ROLE_ADMIN,
    ROLE_ASSOCIATE,
    ROLE_DIRECTOR,
    ROLE_MANAGER,
    USER_STATUS_ACTIVE,
)

# Permission matrix: role → statuses it may request.  Anything unlisted is forbidden.
PERMISSION_MATRIX: dict[str, frozenset[str]] = {
    ROLE_ASSOCIATE: frozenset({STATUS_IN_PROGRESS, STATUS_RESOLVED, STATUS_REJECTED}),
    ROLE_MANAGER: frozenset({
        STATUS_FORWARDED, STATUS_ASSIGNED, STATUS_IN_PROGRESS, STATUS_RESOLVED, STATUS_REJECTED,
    }),
    ROLE_DIRECTOR: frozenset({
        STATUS_ASSIGNED, STATUS_IN_PROGRESS, STATUS_RESOLVED, STATUS_REJECTED,
    }),
    ROLE_ADMIN: frozenset({
        STATUS_FORWARDED, STATUS_ASSIGNED, STATUS_IN_PROGRESS, STATUS_RESOLVED, STATUS_REJECTED,
    }),
}

# Roles that must hold an active account to transition issues.
ACTIVE_REQUIRED_ROLES = frozenset({ROLE_MANAGER, ROLE_ASSOCIATE})


def is_allowed(role: str | None, requested_status: str | None) -> bool:
    """Return True if ``role`` may request ``requested_status``."""
    return requested_status in PERMISSION_MATRIX.get(role or "", frozenset())


def check_permission(role: str | None, requested_status: str | None) -> None:
    """
    Assert the role may request the status; raise ForbiddenError if not.

    Raises:
        ForbiddenError: If the pair is not in PERMISSION_MATRIX.
    """
    if not is_allowed(role, requested_status):
        raise ForbiddenError(
            "Forbidden status change",
            role=role,
            requested=requested_status,
        )


def check_actor_active(role: str | None, status: str | None) -> None:
    """Managers and associates must be active to act on issues."""
    if role in ACTIVE_REQUIRED_ROLES and status != USER_STATUS_ACTIVE:
        raise ForbiddenError(
            "Inactive user cannot perform this action",
            role=role,
        )


def get_allowed_statuses(role: str | None) -> set[str]:
    """Return the set of statuses a role may request (empty for unknown roles)."""
    return set(PERMISSION_MATRIX.get(role or "", frozenset()))
