"""
Issue ETA Sub-flow

An associate announces when they will arrive; the reporting tenant
acknowledges they will be home.  Neither step changes ``status`` or goes
through the permission matrix, but each appends its own history entry.

Both steps use the full-document save path; the version column rejects a
stale save and the step is re-run against the fresh row.
"""

import logging

from flask import current_app

from repairflow.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from repairflow.models.user import ROLE_ASSOCIATE, ROLE_TENANT
from repairflow.services.identity import find_identity_by_username
from repairflow.services.issue_store import (
    HistoryEntry,
    StaleIssueError,
    append_history,
    find_issue_by_id,
    get_issue_or_404,
    save_issue,
)
from repairflow.services.permission import check_actor_active
from repairflow.utils.helpers import isoformat_utc, parse_datetime_input

logger = logging.getLogger(__name__)

DEFAULT_WRITE_ATTEMPTS = 3


def _write_attempts() -> int:
    return max(1, int(current_app.config.get("TRANSITION_WRITE_ATTEMPTS", DEFAULT_WRITE_ATTEMPTS)))


def set_eta(issue_id: str, username: str, eta) -> dict:
    """
    Set the repair ETA on an issue assigned to the acting associate.

    Clears any earlier tenant acknowledgement, since it referred to the old time.

    Raises:
        ValidationError: eta missing or not ISO-8601.
        NotFoundError: issue or user unknown.
        ForbiddenError: actor is not the issue's active associate.
    """
    if eta is None or (isinstance(eta, str) and not eta.strip()):
        raise ValidationError("ETA required", details={"eta": "required"})
    try:
        when = parse_datetime_input(eta)
    except (TypeError, ValueError) as exc:
        raise ValidationError(str(exc), details={"eta": eta}) from None

    attempts = _write_attempts()
    for attempt in range(1, attempts + 1):
        issue = get_issue_or_404(issue_id)
        actor = find_identity_by_username(username)
        if actor is None:
            raise NotFoundError("User", username)
        if actor.role != ROLE_ASSOCIATE:
            raise ForbiddenError("Only associates can set an ETA", role=actor.role)
        check_actor_active(actor.role, actor.status)
        if issue.assignee_id != actor.id:
            raise ForbiddenError("This issue is not assigned to you", role=actor.role)

        issue.eta = when
        issue.eta_acknowledged = False
        append_history(issue, HistoryEntry(actor.username, "eta", f"ETA set to {isoformat_utc(when)}"))
        try:
            save_issue(issue)
        except StaleIssueError:
            logger.warning("Concurrent write on issue %s while setting ETA (attempt %d/%d)",
                           issue_id, attempt, attempts)
            continue
        break
    else:
        raise ConflictError("Issue was modified concurrently; reload and retry.")

    logger.info("ETA set on issue %s by %s", issue.id, actor.username,
                extra={"issue_id": issue.id, "actor": actor.username, "action": "eta"})
    return {"message": "ETA set", "issue": issue.to_dict()}


def acknowledge_eta(issue_id: str, tenant_username: str) -> dict:
    """
    Tenant confirms they will be home for the announced ETA.

    Only the issue's own tenant may acknowledge; anyone else gets NotFound
    so the issue's existence is not disclosed.  Acknowledging twice is a
    no-op.

    Raises:
        NotFoundError: tenant unknown or issue not theirs.
        ConflictError: no ETA set yet.
    """
    attempts = _write_attempts()
    for attempt in range(1, attempts + 1):
        tenant = find_identity_by_username(tenant_username)
        if tenant is None:
            raise NotFoundError("User", tenant_username)
        if tenant.role != ROLE_TENANT:
            raise ForbiddenError("Only the reporting tenant can acknowledge an ETA", role=tenant.role)

        issue = find_issue_by_id(issue_id)
        if issue is None or issue.tenant_id != tenant.id:
            raise NotFoundError("Issue", issue_id)
        if issue.eta is None:
            raise ConflictError("No ETA has been set for this issue.", current_status=issue.status)
        if issue.eta_acknowledged:
            return {"message": "Already acknowledged", "issue": issue.to_dict()}

        issue.eta_acknowledged = True
        append_history(
            issue,
            HistoryEntry(tenant.username, "ack", f"Tenant will be home for ETA {isoformat_utc(issue.eta)}"),
        )
        try:
            save_issue(issue)
        except StaleIssueError:
            logger.warning("Concurrent write on issue %s while acknowledging ETA (attempt %d/%d)",
                           issue_id, attempt, attempts)
            continue
        break
    else:
        raise ConflictError("Issue was modified concurrently; reload and retry.")

    logger.info("ETA acknowledged on issue %s by %s", issue.id, tenant.username,
                extra={"issue_id": issue.id, "actor": tenant.username, "action": "ack"})
    return {"message": "Acknowledged", "issue": issue.to_dict()}
