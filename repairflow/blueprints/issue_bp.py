"""
Issues Blueprint: maintenance issue reporting and lifecycle endpoints.

All routes live under /api/v1/issues and require the ``X-Username`` header
(see ``repairflow.auth``).  The acting role always comes from the identity
store.

Endpoints:
    POST   /api/v1/issues                       tenant reports an issue
    GET    /api/v1/issues                       staff list (?status=, limit/offset)
    GET    /api/v1/issues/my                    tenant's own issues
    GET    /api/v1/issues/assigned-to-me        associate's assigned issues
    GET    /api/v1/issues/<id>                  detail + available transitions
    GET    /api/v1/issues/<id>/history          ordered audit trail
    PATCH  /api/v1/issues/<id>/status           { status, note?, cost?, assignee? }
    POST   /api/v1/issues/<id>/assign           { assignee }
    PATCH  /api/v1/issues/<id>/triage           { action, assignee?, note? }
    POST   /api/v1/issues/<id>/eta              { eta }
    POST   /api/v1/issues/<id>/acknowledge-eta

Layer contract:
    - Blueprint: parse input, call service, return JSON.
    - NO db.session calls and NO workflow rules here; services raise
      WorkflowError subclasses which the handlers below translate.
"""

import logging

from flask import Blueprint, g, jsonify, request

from repairflow.auth import require_actor, require_role
from repairflow.blueprints import paginate_query
from repairflow.core.exceptions import WorkflowError
from repairflow.models.user import ROLE_ADMIN, ROLE_ASSOCIATE, ROLE_DIRECTOR, ROLE_MANAGER, ROLE_TENANT
from repairflow.services import issue_eta, issue_lifecycle, issue_service
from repairflow.utils.errors import E, api_error, error_for

logger = logging.getLogger(__name__)

issue_bp = Blueprint("issues", __name__, url_prefix="/api/v1/issues")

_STAFF = (ROLE_MANAGER, ROLE_DIRECTOR, ROLE_ADMIN)


# ── Error handlers ────────────────────────────────────────────────────────────


@issue_bp.errorhandler(WorkflowError)
def _handle_workflow_error(error: WorkflowError):
    return error_for(error)


@issue_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    logger.exception("Unexpected error in issue_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ── Reporting & queries ───────────────────────────────────────────────────────


@issue_bp.route("", methods=["POST"])
@require_actor
@require_role(ROLE_TENANT)
def report_issue():
    data = _payload()
    result = issue_service.report_issue(
        g.current_username,
        title=data.get("title"),
        description=data.get("description"),
        urgency=data.get("urgency"),
    )
    return jsonify(result), 201


@issue_bp.route("", methods=["GET"])
@require_actor
@require_role(*_STAFF)
def list_issues():
    query = issue_service.issues_query(request.args.get("status"))
    return jsonify(paginate_query(query, lambda issue: issue.to_dict(include_history=False)))


@issue_bp.route("/my", methods=["GET"])
@require_actor
@require_role(ROLE_TENANT)
def my_issues():
    issues = issue_service.list_tenant_issues(g.current_username)
    return jsonify({
        "message": "Your issues retrieved",
        "items": [issue.to_dict(include_history=False) for issue in issues],
    })


@issue_bp.route("/assigned-to-me", methods=["GET"])
@require_actor
@require_role(ROLE_ASSOCIATE)
def assigned_to_me():
    issues = issue_service.list_associate_issues(g.current_username)
    return jsonify({
        "message": "Assigned issues retrieved",
        "items": [issue.to_dict(include_history=False) for issue in issues],
    })


@issue_bp.route("/<issue_id>", methods=["GET"])
@require_actor
def get_issue(issue_id: str):
    return jsonify(issue_service.get_issue_for_viewer(issue_id, g.current_username))


@issue_bp.route("/<issue_id>/history", methods=["GET"])
@require_actor
def issue_history(issue_id: str):
    entries = issue_service.get_issue_history(issue_id, g.current_username)
    return jsonify({"items": [entry.to_dict() for entry in entries]})


# ── Lifecycle ─────────────────────────────────────────────────────────────────


@issue_bp.route("/<issue_id>/status", methods=["PATCH"])
@require_actor
def update_status(issue_id: str):
    """Role-aware status change: accept/resolve (associate), forward (manager),
    assign (staff) or a generic status set."""
    data = _payload()
    result = issue_lifecycle.transition_issue(
        issue_id,
        g.current_user_role,
        g.current_username,
        data.get("status"),
        note=data.get("note"),
        cost=data.get("cost"),
        assignee=data.get("assignee"),
    )
    return jsonify(result)


@issue_bp.route("/<issue_id>/assign", methods=["POST"])
@require_actor
@require_role(*_STAFF)
def assign_issue(issue_id: str):
    data = _payload()
    assignee = data.get("assignee")
    if not isinstance(assignee, str) or not assignee.strip():
        return api_error(E.VALIDATION_REQUIRED, "Assignee required")

    result = issue_lifecycle.transition_issue(
        issue_id,
        g.current_user_role,
        g.current_username,
        "assigned",
        assignee=assignee.strip(),
    )
    return jsonify(result)


@issue_bp.route("/<issue_id>/triage", methods=["PATCH"])
@require_actor
@require_role(*_STAFF)
def triage_issue(issue_id: str):
    data = _payload()
    result = issue_lifecycle.triage_issue(
        issue_id,
        g.current_user_role,
        g.current_username,
        data.get("action"),
        assignee=data.get("assignee") or data.get("assignedTo"),
        note=data.get("note"),
    )
    return jsonify(result)


# ── ETA ───────────────────────────────────────────────────────────────────────


@issue_bp.route("/<issue_id>/eta", methods=["POST"])
@require_actor
@require_role(ROLE_ASSOCIATE)
def set_eta(issue_id: str):
    data = _payload()
    return jsonify(issue_eta.set_eta(issue_id, g.current_username, data.get("eta")))


@issue_bp.route("/<issue_id>/acknowledge-eta", methods=["POST"])
@require_actor
@require_role(ROLE_TENANT)
def acknowledge_eta(issue_id: str):
    return jsonify(issue_eta.acknowledge_eta(issue_id, g.current_username))
