"""
Issue Lifecycle Service

Drives maintenance issues through the multi-actor repair workflow:
  - Permission check (PERMISSION_MATRIX: role → requestable statuses)
  - Routing (TRANSITION_ROUTES: (role, requested status) → TransitionKind)
  - State preconditions (TRANSITION_RULES: kind → allowed from-statuses)
  - Side effects (cost + debt accrual on accept, assignee on assign)
  - History entry appended in the same write as the field changes

5 transition kinds:
  accept, resolve, forward, assign, status (generic fallback)

Every kind writes through ``atomic_update_issue`` guarded by the version
read at load time.  When another writer gets there first the whole
transition is re-run against the fresh row (up to
TRANSITION_WRITE_ATTEMPTS), so a second racing accept sees ``in-progress``
and fails with a conflict instead of billing twice.

Usage:
    from repairflow.services.issue_lifecycle import transition_issue

    result = transition_issue(
        issue_id="abc",
        acting_role="associate",
        acting_username="assoc1",
        requested_status="in-progress",
        cost="1500",
    )
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum

from flask import current_app

from repairflow.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from repairflow.models.issue import (
    ISSUE_STATUSES,
    STATUS_ASSIGNED,
    STATUS_FORWARDED,
    STATUS_IN_PROGRESS,
    STATUS_REJECTED,
    STATUS_RESOLVED,
    Issue,
    normalize_status,
)
from repairflow.models.user import (
    ROLE_ADMIN,
    ROLE_ASSOCIATE,
    ROLE_DIRECTOR,
    ROLE_MANAGER,
    STAFF_ROLES,
)
from repairflow.services.debt_ledger import apply_accrual_best_effort, find_accrual
from repairflow.services.identity import Identity, find_identity_by_username
from repairflow.services.issue_store import (
    AccrualIntent,
    HistoryEntry,
    StaleIssueError,
    atomic_update_issue,
    get_issue_or_404,
)
from repairflow.services.permission import (
    check_actor_active,
    check_permission,
    get_allowed_statuses,
    is_allowed,
)

logger = logging.getLogger(__name__)

DEFAULT_WRITE_ATTEMPTS = 3

ACCEPT_TRANSITION_KEY = "accept"


class TransitionKind(str, Enum):
    ACCEPT = "accept"
    RESOLVE = "resolve"
    FORWARD = "forward"
    ASSIGN = "assign"
    STATUS = "status"


# (role, requested status) → handler.  Permitted pairs not listed here
# fall through to the generic STATUS handler.
TRANSITION_ROUTES: dict[tuple[str, str], TransitionKind] = {
    (ROLE_ASSOCIATE, STATUS_IN_PROGRESS): TransitionKind.ACCEPT,
    (ROLE_ASSOCIATE, STATUS_RESOLVED): TransitionKind.RESOLVE,
    (ROLE_MANAGER, STATUS_FORWARDED): TransitionKind.FORWARD,
    (ROLE_DIRECTOR, STATUS_ASSIGNED): TransitionKind.ASSIGN,
    (ROLE_MANAGER, STATUS_ASSIGNED): TransitionKind.ASSIGN,
    (ROLE_ADMIN, STATUS_ASSIGNED): TransitionKind.ASSIGN,
}

_ANY_STATUS = list(ISSUE_STATUSES)

# Transition rules: "to" None means "the requested status".
TRANSITION_RULES = {
    TransitionKind.ACCEPT: {
        "from": [s for s in ISSUE_STATUSES if s != STATUS_IN_PROGRESS],
        "to": STATUS_IN_PROGRESS,
        "reason": "Issue already in progress.",
    },
    TransitionKind.RESOLVE: {
        "from": [STATUS_IN_PROGRESS],
        "to": STATUS_RESOLVED,
        "reason": "Issue must be in progress to resolve.",
    },
    TransitionKind.FORWARD: {"from": _ANY_STATUS, "to": STATUS_FORWARDED, "reason": None},
    TransitionKind.ASSIGN: {"from": _ANY_STATUS, "to": STATUS_ASSIGNED, "reason": None},
    TransitionKind.STATUS: {"from": _ANY_STATUS, "to": None, "reason": None},
}

_SUCCESS_MESSAGES = {
    TransitionKind.ACCEPT: "Issue accepted",
    TransitionKind.RESOLVE: "Issue resolved",
    TransitionKind.FORWARD: "Forwarded",
    TransitionKind.ASSIGN: "Assigned",
    TransitionKind.STATUS: "Status updated",
}

TRIAGE_ACTIONS = {
    "forward": STATUS_FORWARDED,
    "assign": STATUS_ASSIGNED,
    "reject": STATUS_REJECTED,
}


def _verify_routes() -> None:
    """Every routed pair must be permitted and agree with its rule's target."""
    for (role, status), kind in TRANSITION_ROUTES.items():
        if not is_allowed(role, status):
            raise RuntimeError(f"Route ({role}, {status}) → {kind.value} is not in PERMISSION_MATRIX")
        target = TRANSITION_RULES[kind]["to"]
        if target is not None and target != status:
            raise RuntimeError(f"Route ({role}, {status}) → {kind.value} targets {target}")


_verify_routes()


@dataclass(frozen=True)
class TransitionRequest:
    requested_status: str
    note: str | None = None
    cost: object = None
    assignee: str | None = None


@dataclass(frozen=True)
class TransitionPlan:
    kind: TransitionKind
    set_fields: dict
    history: HistoryEntry
    accrual: AccrualIntent | None = None


def route_transition(role: str, requested_status: str) -> TransitionKind:
    """Select the handler for an already-permitted (role, status) pair."""
    return TRANSITION_ROUTES.get((role, requested_status), TransitionKind.STATUS)


def validate_transition(issue: Issue, kind: TransitionKind, requested_status: str) -> dict:
    """
    Validate the issue's current status against the kind's rule.

    Returns:
        {"valid": bool, "from": str, "to": str, "reason": str|None}
    """
    rule = TRANSITION_RULES[kind]
    target = rule["to"] or requested_status
    if issue.status not in rule["from"]:
        return {"valid": False, "from": issue.status, "to": target,
                "reason": rule["reason"] or f"Cannot '{kind.value}' from status '{issue.status}'"}
    return {"valid": True, "from": issue.status, "to": target, "reason": None}


def parse_cost(cost) -> float:
    """Parse an accept cost: required, finite, ≥ 0."""
    if cost is None or (isinstance(cost, str) and not cost.strip()):
        raise ValidationError("Cost is required when accepting.", details={"cost": "required"})
    if isinstance(cost, bool):
        raise ValidationError("Invalid cost value.", details={"cost": cost})
    try:
        value = float(cost.strip() if isinstance(cost, str) else cost)
    except (TypeError, ValueError):
        raise ValidationError("Invalid cost value.", details={"cost": cost}) from None
    if not math.isfinite(value) or value < 0:
        raise ValidationError("Invalid cost value.", details={"cost": cost})
    return value


def _format_amount(value: float) -> str:
    """1500.0 -> "1500", 12.5 -> "12.5"."""
    return str(int(value)) if float(value).is_integer() else str(value)


def _resolve_assignee(assignee, *, missing_is_validation: bool) -> Identity:
    """Resolve an assignee username to an active associate identity."""
    name = assignee.strip() if isinstance(assignee, str) else ""
    if not name:
        raise ValidationError("Assignee username is required to assign.", details={"assignee": "required"})

    target = find_identity_by_username(name)
    if target is None:
        if missing_is_validation:
            raise ValidationError("Assignee must be an associate user.", details={"assignee": name})
        raise NotFoundError("User", name)
    if target.role != ROLE_ASSOCIATE:
        raise ValidationError("Assignee must be an associate user.", details={"assignee": name})
    if not target.is_active:
        raise ValidationError("Assignee associate is not active.", details={"assignee": name})
    return target


# ── Handlers ─────────────────────────────────────────────────────────────────


def _plan_accept(issue: Issue, actor: Identity, request: TransitionRequest) -> TransitionPlan:
    if issue.cost is not None:
        raise ConflictError(
            "Repair cost has already been accepted for this issue.",
            current_status=issue.status,
        )
    cost = parse_cost(request.cost)
    return TransitionPlan(
        kind=TransitionKind.ACCEPT,
        set_fields={"status": STATUS_IN_PROGRESS, "cost": cost},
        history=HistoryEntry(actor.username, "accept", f"Accepted (cost {_format_amount(cost)})"),
        accrual=AccrualIntent(
            tenant_id=issue.tenant_id,
            amount=cost,
            transition_key=ACCEPT_TRANSITION_KEY,
        ),
    )


def _plan_resolve(issue: Issue, actor: Identity, request: TransitionRequest) -> TransitionPlan:
    return TransitionPlan(
        kind=TransitionKind.RESOLVE,
        set_fields={"status": STATUS_RESOLVED},
        history=HistoryEntry(actor.username, "resolve", "Finished work"),
    )


def _plan_forward(issue: Issue, actor: Identity, request: TransitionRequest) -> TransitionPlan:
    return TransitionPlan(
        kind=TransitionKind.FORWARD,
        set_fields={"status": STATUS_FORWARDED},
        history=HistoryEntry(actor.username, "forward", "Forwarded to director"),
    )


def _plan_assign(issue: Issue, actor: Identity, request: TransitionRequest) -> TransitionPlan:
    target = _resolve_assignee(request.assignee, missing_is_validation=True)
    return TransitionPlan(
        kind=TransitionKind.ASSIGN,
        set_fields={"assignee_id": target.id, "status": STATUS_ASSIGNED},
        history=HistoryEntry(actor.username, "assign", f"Assigned to {target.username}"),
    )


def _plan_status(issue: Issue, actor: Identity, request: TransitionRequest) -> TransitionPlan:
    set_fields = {"status": request.requested_status}
    if request.assignee:
        target = _resolve_assignee(request.assignee, missing_is_validation=False)
        set_fields["assignee_id"] = target.id
    return TransitionPlan(
        kind=TransitionKind.STATUS,
        set_fields=set_fields,
        history=HistoryEntry(actor.username, "status", request.note or request.requested_status),
    )


_HANDLERS = {
    TransitionKind.ACCEPT: _plan_accept,
    TransitionKind.RESOLVE: _plan_resolve,
    TransitionKind.FORWARD: _plan_forward,
    TransitionKind.ASSIGN: _plan_assign,
    TransitionKind.STATUS: _plan_status,
}


def _load_actor(acting_role: str, acting_username: str) -> Identity:
    actor = find_identity_by_username(acting_username)
    if actor is None:
        raise NotFoundError("User", acting_username)
    if actor.role != acting_role:
        raise ForbiddenError("Acting role does not match the user's role", role=acting_role)
    check_actor_active(acting_role, actor.status)
    return actor


def plan_transition(issue: Issue, acting_role: str, actor: Identity, request: TransitionRequest) -> TransitionPlan:
    """Run permission, routing and precondition checks; return the write to perform."""
    check_permission(acting_role, request.requested_status)
    kind = route_transition(acting_role, request.requested_status)

    validation = validate_transition(issue, kind, request.requested_status)
    if not validation["valid"]:
        raise ConflictError(validation["reason"], current_status=issue.status)

    return _HANDLERS[kind](issue, actor, request)


def transition_issue(
    issue_id: str,
    acting_role: str,
    acting_username: str,
    requested_status: str | None,
    *,
    note: str | None = None,
    cost=None,
    assignee: str | None = None,
) -> dict:
    """
    Execute one issue lifecycle transition.

    Args:
        issue_id: Target issue
        acting_role: Role claimed by the caller's credentials
        acting_username: Who is performing the action
        requested_status: Target status (e.g. "in-progress")
        note: Optional note for the generic status handler
        cost: Required for associate accept; finite number ≥ 0
        assignee: Associate username; required for assign

    Returns:
        {"message", "issue", "action", "previous_status", "new_status"}

    Raises:
        ValidationError, NotFoundError, ForbiddenError, ConflictError
    """
    status = normalize_status(requested_status)
    if not status:
        raise ValidationError("Status required", details={"status": "required"})
    if note is not None and not isinstance(note, str):
        raise ValidationError("Note must be text", details={"note": "invalid"})

    request = TransitionRequest(requested_status=status, note=note, cost=cost, assignee=assignee)
    attempts = max(1, int(current_app.config.get("TRANSITION_WRITE_ATTEMPTS", DEFAULT_WRITE_ATTEMPTS)))

    for attempt in range(1, attempts + 1):
        issue = get_issue_or_404(issue_id)
        actor = _load_actor(acting_role, acting_username)
        try:
            plan = plan_transition(issue, acting_role, actor, request)
        except (ForbiddenError, ConflictError) as exc:
            logger.info(
                "Transition refused: %s",
                exc.message,
                extra={"issue_id": issue.id, "actor": acting_username,
                       "from_status": issue.status, "to_status": status},
            )
            raise

        previous_status = issue.status
        try:
            updated = atomic_update_issue(
                issue.id,
                plan.set_fields,
                plan.history,
                expected_version=issue.version,
                accrual=plan.accrual,
            )
        except StaleIssueError:
            logger.warning(
                "Concurrent write on issue %s (attempt %d/%d); re-validating",
                issue_id, attempt, attempts,
                extra={"issue_id": issue_id, "actor": acting_username},
            )
            continue
        break
    else:
        raise ConflictError("Issue was modified concurrently; reload and retry.")

    if plan.accrual is not None:
        accrual = find_accrual(updated.id, plan.accrual.transition_key)
        if accrual is not None:
            apply_accrual_best_effort(accrual.id)

    logger.info(
        "Issue %s: %s → %s by %s",
        updated.id, previous_status, updated.status, acting_username,
        extra={"issue_id": updated.id, "actor": acting_username, "action": plan.kind.value,
               "from_status": previous_status, "to_status": updated.status},
    )

    return {
        "message": _SUCCESS_MESSAGES[plan.kind],
        "issue": updated.to_dict(),
        "action": plan.kind.value,
        "previous_status": previous_status,
        "new_status": updated.status,
    }


def triage_issue(
    issue_id: str,
    acting_role: str,
    acting_username: str,
    action: str | None,
    *,
    assignee: str | None = None,
    note: str | None = None,
) -> dict:
    """
    Staff triage shortcut: forward / assign / reject.

    Delegates to ``transition_issue`` so the permission matrix, handlers and
    side effects are identical to a direct status change.
    """
    if acting_role not in STAFF_ROLES:
        raise ForbiddenError("Only managers, directors and admins can triage issues", role=acting_role)

    act = (action or "").strip().lower()
    if not act:
        raise ValidationError("Action required", details={"action": "required"})
    if act not in TRIAGE_ACTIONS:
        raise ValidationError(
            f"Invalid action. Must be one of: {', '.join(TRIAGE_ACTIONS)}",
            details={"action": act},
        )

    return transition_issue(
        issue_id,
        acting_role,
        acting_username,
        TRIAGE_ACTIONS[act],
        note=note,
        assignee=assignee,
    )


def get_available_transitions(issue: Issue, role: str) -> list[str]:
    """Statuses ``role`` could request right now without a permission/state refusal."""
    available = []
    for status in ISSUE_STATUSES:
        if status not in get_allowed_statuses(role):
            continue
        kind = route_transition(role, status)
        if kind is TransitionKind.ACCEPT and issue.cost is not None:
            continue
        if validate_transition(issue, kind, status)["valid"]:
            available.append(status)
    return available
