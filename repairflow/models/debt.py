"""
Repairflow — Maintenance Issue Workflow
Debt ledger model.

Models:
    - DebtAccrual: outbox row recording that a tenant owes an accepted repair cost.

An accrual is staged in the same commit as the issue transition that caused
it, then applied to ``users.debt`` separately.  ``(issue_id, transition_key)``
is unique so one transition can never bill twice.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import validates

from repairflow.models import db
from repairflow.utils.helpers import isoformat_utc

ACCRUAL_PENDING = "pending"
ACCRUAL_APPLIED = "applied"
ACCRUAL_FAILED = "failed"

ACCRUAL_STATUSES = frozenset({ACCRUAL_PENDING, ACCRUAL_APPLIED, ACCRUAL_FAILED})


def _utcnow():
    return datetime.now(timezone.utc)


class DebtAccrual(db.Model):
    """Idempotent record of one debt increment owed to a tenant's balance."""

    __tablename__ = "debt_accruals"
    __table_args__ = (
        db.UniqueConstraint("issue_id", "transition_key", name="uq_debt_accrual_issue_transition"),
        db.Index("idx_debt_accrual_status", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    issue_id = db.Column(
        db.String(36),
        db.ForeignKey("issues.id", ondelete="CASCADE"),
        nullable=False,
    )
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    amount = db.Column(db.Float, nullable=False)
    transition_key = db.Column(
        db.String(40), nullable=False,
        comment="Transition that produced the accrual, e.g. 'accept'",
    )
    status = db.Column(
        db.String(20), nullable=False, default=ACCRUAL_PENDING,
        comment="pending | applied | failed",
    )
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @validates("status")
    def _validate_status(self, key, value):
        if value not in ACCRUAL_STATUSES:
            raise ValueError(f"Invalid accrual status: {value!r}")
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "tenant_id": self.tenant_id,
            "amount": self.amount,
            "transition_key": self.transition_key,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": isoformat_utc(self.created_at),
            "applied_at": isoformat_utc(self.applied_at),
        }

    def __repr__(self):
        return f"<DebtAccrual {self.id}: {self.amount} for tenant {self.tenant_id} ({self.status})>"
