"""
Repairflow — Maintenance Issue Workflow
Issue domain models.

Models:
    - Issue: a reported maintenance problem driven through the repair lifecycle.
    - IssueHistory: immutable, append-only audit trail entry for an issue.

Status values:
    reported → forwarded → assigned → in-progress → resolved
                                     ↘ rejected (from any state, role permitting)

``status`` must only change through ``repairflow.services.issue_lifecycle``;
no endpoint writes it directly.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import event as _sa_event
from sqlalchemy.orm import validates

from repairflow.models import db
from repairflow.utils.helpers import isoformat_utc

# ── Constants ────────────────────────────────────────────────────────────────

STATUS_REPORTED = "reported"
STATUS_FORWARDED = "forwarded"
STATUS_ASSIGNED = "assigned"
STATUS_IN_PROGRESS = "in-progress"
STATUS_RESOLVED = "resolved"
STATUS_REJECTED = "rejected"

ISSUE_STATUSES = (
    STATUS_REPORTED,
    STATUS_FORWARDED,
    STATUS_ASSIGNED,
    STATUS_IN_PROGRESS,
    STATUS_RESOLVED,
    STATUS_REJECTED,
)

URGENCY_URGENT = "urgent"
URGENCY_NOT_URGENT = "not-urgent"

URGENCY_LEVELS = (URGENCY_URGENT, URGENCY_NOT_URGENT)

HISTORY_ACTIONS = frozenset({
    "report", "accept", "resolve", "forward", "assign", "status", "eta", "ack",
})


def normalize_status(value) -> str:
    """Canonicalise a status string: trim, lower-case, spaces/underscores → '-'.

    Clients historically sent both ``"in progress"`` and ``"in-progress"``.
    """
    if value is None:
        return ""
    return "-".join(str(value).strip().lower().replace("_", " ").split())


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class Issue(db.Model):
    """
    Maintenance issue reported by a tenant.

    ``version`` is the optimistic-concurrency counter: ORM flushes check and
    bump it through the mapper, and the store's atomic update bumps it in SQL.
    ``cost`` is written exactly once, when an associate accepts the job.
    """

    __tablename__ = "issues"
    __table_args__ = (
        db.Index("idx_issue_status", "status"),
        db.Index("idx_issue_tenant", "tenant_id"),
        db.Index("idx_issue_assignee", "assignee_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Reporting tenant; immutable after creation",
    )
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    urgency = db.Column(
        db.String(20), nullable=False, default=URGENCY_NOT_URGENT,
        comment="urgent | not-urgent",
    )
    status = db.Column(
        db.String(20), nullable=False, default=STATUS_REPORTED,
        comment="reported | forwarded | assigned | in-progress | resolved | rejected",
    )
    assignee_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Associate currently responsible for the repair",
    )
    cost = db.Column(db.Float, nullable=True, comment="Accepted repair cost, set once")
    eta = db.Column(db.DateTime(timezone=True), nullable=True)
    eta_acknowledged = db.Column(db.Boolean, nullable=False, default=False)

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    tenant = db.relationship("User", foreign_keys=[tenant_id], lazy="joined")
    assignee = db.relationship("User", foreign_keys=[assignee_id], lazy="joined")
    history = db.relationship(
        "IssueHistory",
        back_populates="issue",
        order_by="IssueHistory.id",
        lazy="select",
    )

    __mapper_args__ = {"version_id_col": version}

    @validates("status")
    def _validate_status(self, key, value):
        if value not in ISSUE_STATUSES:
            raise ValueError(f"Invalid issue status: {value!r}")
        return value

    @validates("urgency")
    def _validate_urgency(self, key, value):
        if value not in URGENCY_LEVELS:
            raise ValueError(f"Invalid urgency: {value!r}")
        return value

    def to_dict(self, include_history: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "tenant": self.tenant.username if self.tenant else None,
            "title": self.title,
            "description": self.description,
            "urgency": self.urgency,
            "status": self.status,
            "assignee_id": self.assignee_id,
            "assignee": self.assignee.username if self.assignee else None,
            "cost": self.cost,
            "eta": isoformat_utc(self.eta),
            "eta_acknowledged": bool(self.eta_acknowledged),
            "version": self.version,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }
        if include_history:
            data["history"] = [entry.to_dict() for entry in self.history]
        return data

    def __repr__(self):
        return f"<Issue {self.id}: {self.status}>"


class IssueHistory(db.Model):
    """
    One audit entry per action taken on an issue.

    Rows are insert-only: the ORM refuses updates and deletes (see the
    listeners below).  Ordering is by ``id``, i.e. commit order.
    """

    __tablename__ = "issue_history"
    __table_args__ = (
        db.Index("idx_issue_history_issue", "issue_id", "id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    issue_id = db.Column(
        db.String(36),
        db.ForeignKey("issues.id", ondelete="CASCADE"),
        nullable=False,
    )
    actor = db.Column(db.String(50), nullable=False, comment="Username of the acting identity")
    action = db.Column(
        db.String(20), nullable=False,
        comment="report | accept | resolve | forward | assign | status | eta | ack",
    )
    note = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    issue = db.relationship("Issue", back_populates="history")

    @validates("action")
    def _validate_action(self, key, value):
        if value not in HISTORY_ACTIONS:
            raise ValueError(f"Unknown history action: {value!r}")
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor": self.actor,
            "action": self.action,
            "note": self.note,
            "timestamp": isoformat_utc(self.created_at),
        }

    def __repr__(self):
        return f"<IssueHistory {self.id}: {self.action} by {self.actor}>"


@_sa_event.listens_for(IssueHistory, "before_update")
def _block_history_update(mapper, connection, target) -> None:  # noqa: ANN001
    raise RuntimeError(
        f"Issue history is append-only; refusing to update entry {target.id}"
    )


@_sa_event.listens_for(IssueHistory, "before_delete")
def _block_history_delete(mapper, connection, target) -> None:  # noqa: ANN001
    raise RuntimeError(
        f"Issue history is append-only; refusing to delete entry {target.id}"
    )
