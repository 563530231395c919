"""
Identity lookup used by the issue workflow.

Resolves usernames to a read-only ``Identity`` snapshot (id, role, status)
and owns the one write the workflow makes to identities: the atomic tenant
debt increment.

Usage:
    from repairflow.services.identity import find_identity_by_username

    actor = find_identity_by_username("assoc1")
    if actor is None:
        ...
"""

from dataclasses import dataclass

from repairflow.models.user import USER_STATUS_ACTIVE, User


@dataclass(frozen=True)
class Identity:
    id: int
    username: str
    role: str
    status: str

    @property
    def is_active(self) -> bool:
        return self.status == USER_STATUS_ACTIVE

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(id=user.id, username=user.username, role=user.role, status=user.status)


def find_identity_by_username(username: str | None) -> Identity | None:
    """Return the identity for ``username`` (whitespace-trimmed) or None."""
    name = (username or "").strip()
    if not name:
        return None
    user = User.query.filter_by(username=name).first()
    return Identity.from_user(user) if user else None


def increment_tenant_debt(tenant_id: int, amount: float) -> bool:
    """
    Atomically add ``amount`` to a tenant's debt balance.

    Issues ``UPDATE users SET debt = debt + :amount`` so concurrent accepts
    against the same tenant cannot lose increments.  Does not commit;
    callers keep transaction control.

    Returns:
        True if the tenant row exists and was updated.
    """
    count = (
        User.query
        .filter_by(id=tenant_id)
        .update({"debt": User.debt + amount}, synchronize_session=False)
    )
    return count > 0
