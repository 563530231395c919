"""
Issue Reporting & Query Service

Entry point of the lifecycle (a tenant reports an issue in ``reported``)
plus the read paths used by the tenant, staff and associate views.

Usage:
    from repairflow.services.issue_service import report_issue

    result = report_issue("tenant1", title="Leaking tap", description="Kitchen sink")
"""

import logging

from repairflow.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from repairflow.models import db
from repairflow.models.issue import (
    ISSUE_STATUSES,
    STATUS_REPORTED,
    URGENCY_LEVELS,
    URGENCY_NOT_URGENT,
    Issue,
    IssueHistory,
    normalize_status,
)
from repairflow.models.user import ROLE_ASSOCIATE, ROLE_TENANT, STAFF_ROLES
from repairflow.services.identity import Identity, find_identity_by_username
from repairflow.services.issue_lifecycle import get_available_transitions
from repairflow.services.issue_store import HistoryEntry, append_history, get_issue_or_404, save_issue
from repairflow.utils.helpers import clean_text

logger = logging.getLogger(__name__)


def _require_identity(username: str) -> Identity:
    identity = find_identity_by_username(username)
    if identity is None:
        raise NotFoundError("User", username)
    return identity


def report_issue(
    tenant_username: str,
    *,
    title: str | None,
    description: str | None,
    urgency: str | None = None,
) -> dict:
    """
    Create a new issue in ``reported`` for the acting tenant.

    Raises:
        ValidationError: blank title/description or unknown urgency.
        NotFoundError: tenant unknown.
        ForbiddenError: reporter is not a tenant.
    """
    errors = {}
    clean_title = clean_text(title)
    clean_description = clean_text(description)
    if not clean_title:
        errors["title"] = "Title is required."
    if not clean_description:
        errors["description"] = "Description is required."

    level = URGENCY_NOT_URGENT
    if urgency is not None and urgency != "":
        level = normalize_status(urgency)
        if level not in URGENCY_LEVELS:
            errors["urgency"] = f"Invalid urgency. Must be one of: {', '.join(URGENCY_LEVELS)}"

    if errors:
        raise ValidationError(next(iter(errors.values())), details=errors)

    tenant = _require_identity(tenant_username)
    if tenant.role != ROLE_TENANT:
        raise ForbiddenError("Only tenants can report issues", role=tenant.role)

    issue = Issue(
        tenant_id=tenant.id,
        title=clean_title,
        description=description.strip(),
        urgency=level,
        status=STATUS_REPORTED,
    )
    db.session.add(issue)
    append_history(issue, HistoryEntry(tenant.username, "report", "Issue reported"))
    save_issue(issue)

    logger.info("Issue %s reported by %s", issue.id, tenant.username,
                extra={"issue_id": issue.id, "actor": tenant.username, "action": "report"})
    return {"message": "Issue reported successfully.", "issue": issue.to_dict()}


def list_tenant_issues(tenant_username: str) -> list[Issue]:
    """The tenant's own issues, newest first."""
    tenant = _require_identity(tenant_username)
    return (
        Issue.query
        .filter_by(tenant_id=tenant.id)
        .order_by(Issue.created_at.desc(), Issue.id)
        .all()
    )


def issues_query(status: str | None = None):
    """Query over all issues (staff view), optionally filtered by status."""
    query = Issue.query
    if status:
        wanted = normalize_status(status)
        if wanted not in ISSUE_STATUSES:
            raise ValidationError(
                f"Invalid status filter. Must be one of: {', '.join(ISSUE_STATUSES)}",
                details={"status": status},
            )
        query = query.filter_by(status=wanted)
    return query.order_by(Issue.created_at.desc(), Issue.id)


def list_issues(status: str | None = None) -> list[Issue]:
    return issues_query(status).all()


def list_associate_issues(associate_username: str) -> list[Issue]:
    """Issues currently assigned to an active associate, newest first."""
    associate = find_identity_by_username(associate_username)
    if associate is None or associate.role != ROLE_ASSOCIATE or not associate.is_active:
        raise ForbiddenError("Associate not active", role=associate.role if associate else None)
    return (
        Issue.query
        .filter_by(assignee_id=associate.id)
        .order_by(Issue.created_at.desc(), Issue.id)
        .all()
    )


def _check_visibility(issue: Issue, viewer: Identity) -> None:
    """Tenants see their own issues, associates their assigned ones, staff all."""
    if viewer.role in STAFF_ROLES:
        return
    if viewer.role == ROLE_TENANT and issue.tenant_id == viewer.id:
        return
    if viewer.role == ROLE_ASSOCIATE and issue.assignee_id == viewer.id:
        return
    raise NotFoundError("Issue", issue.id)


def get_issue_for_viewer(issue_id: str, viewer_username: str) -> dict:
    """Issue detail plus the statuses the viewer could request next."""
    viewer = _require_identity(viewer_username)
    issue = get_issue_or_404(issue_id)
    _check_visibility(issue, viewer)
    data = issue.to_dict()
    data["available_transitions"] = get_available_transitions(issue, viewer.role)
    return data


def get_issue_history(issue_id: str, viewer_username: str | None = None) -> list[IssueHistory]:
    """History entries in commit order."""
    issue = get_issue_or_404(issue_id)
    if viewer_username is not None:
        _check_visibility(issue, _require_identity(viewer_username))
    return (
        IssueHistory.query
        .filter_by(issue_id=issue.id)
        .order_by(IssueHistory.id)
        .all()
    )
