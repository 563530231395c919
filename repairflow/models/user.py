"""
Repairflow — Maintenance Issue Workflow
Identity domain model.

Models:
    - User: platform identity (tenant, manager, director, admin, associate).

The issue workflow only reads ``role`` / ``status`` for authorisation and
mutates ``debt`` through the debt-ledger side effect.  Account management
(signup, approval, password handling) lives outside this package.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import validates

from repairflow.models import db
from repairflow.utils.helpers import isoformat_utc

# ── Constants ────────────────────────────────────────────────────────────────

ROLE_TENANT = "tenant"
ROLE_MANAGER = "manager"
ROLE_DIRECTOR = "director"
ROLE_ADMIN = "admin"
ROLE_ASSOCIATE = "associate"

VALID_ROLES = frozenset({
    ROLE_TENANT, ROLE_MANAGER, ROLE_DIRECTOR, ROLE_ADMIN, ROLE_ASSOCIATE,
})

STAFF_ROLES = frozenset({ROLE_MANAGER, ROLE_DIRECTOR, ROLE_ADMIN})

USER_STATUS_PENDING = "pending"
USER_STATUS_ACTIVE = "active"
USER_STATUS_REJECTED = "rejected"
USER_STATUS_SUSPENDED = "suspended"

VALID_USER_STATUSES = frozenset({
    USER_STATUS_PENDING, USER_STATUS_ACTIVE, USER_STATUS_REJECTED, USER_STATUS_SUSPENDED,
})


def _utcnow():
    return datetime.now(timezone.utc)


class User(db.Model):
    """Platform identity; tenants additionally carry a running debt balance."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    role = db.Column(
        db.String(20), nullable=False, default=ROLE_TENANT,
        comment="tenant | manager | director | admin | associate",
    )
    status = db.Column(
        db.String(20), nullable=False, default=USER_STATUS_PENDING,
        comment="pending | active | rejected | suspended",
    )
    debt = db.Column(
        db.Float, nullable=False, default=0.0,
        comment="Running balance of accepted repair costs (tenants only)",
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @validates("role")
    def _validate_role(self, key, value):
        if value not in VALID_ROLES:
            raise ValueError(f"Invalid role: {value!r}")
        return value

    @validates("status")
    def _validate_status(self, key, value):
        if value not in VALID_USER_STATUSES:
            raise ValueError(f"Invalid user status: {value!r}")
        return value

    @property
    def is_active(self) -> bool:
        return self.status == USER_STATUS_ACTIVE

    @property
    def full_name(self) -> str | None:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "status": self.status,
            "debt": self.debt,
            "created_at": isoformat_utc(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.id}: {self.username} ({self.role}/{self.status})>"
