"""
Debt ledger tests — accrual outbox and reconciliation.

Covers:
  - apply_accrual increments the tenant balance exactly once
  - a missing tenant row leaves the accrual pending with the error recorded
  - reconcile_pending_accruals applying leftovers and giving up after
    DEBT_RECONCILE_MAX_ATTEMPTS
  - increment_tenant_debt being a relative, atomic update
  - the ``flask reconcile-debt`` CLI command
"""

import pytest
from sqlalchemy.exc import IntegrityError

from repairflow.core.exceptions import NotFoundError
from repairflow.models import db as _db
from repairflow.models.debt import DebtAccrual
from repairflow.models.user import User
from repairflow.services.debt_ledger import (
    apply_accrual,
    apply_accrual_best_effort,
    reconcile_pending_accruals,
    stage_accrual,
)
from repairflow.services.identity import increment_tenant_debt


# ── Helpers ──────────────────────────────────────────────────────────────────


def _accrual(issue, tenant_id, amount, key="accept") -> DebtAccrual:
    accrual = stage_accrual(issue.id, tenant_id, amount, key)
    _db.session.commit()
    return accrual


def _debt(user) -> float:
    return _db.session.get(User, user.id).debt


class TestIncrementTenantDebt:

    def test_relative_increment(self, make_user):
        tenant = make_user("t_debt", debt=10.0)
        assert increment_tenant_debt(tenant.id, 5.5) is True
        _db.session.commit()
        assert _debt(tenant) == pytest.approx(15.5)

    def test_missing_tenant(self):
        assert increment_tenant_debt(4242, 1.0) is False


class TestApplyAccrual:

    def test_applies_once(self, people, make_issue):
        tenant = people["tenant"]
        issue = make_issue(tenant)
        accrual = _accrual(issue, tenant.id, 1500.0)
        accrual_id = accrual.id

        assert apply_accrual(accrual_id) is True
        assert apply_accrual(accrual_id) is False

        assert _debt(tenant) == 1500.0
        fresh = _db.session.get(DebtAccrual, accrual_id)
        assert fresh.status == "applied"
        assert fresh.applied_at is not None
        assert fresh.attempts == 1

    def test_unique_per_issue_and_transition(self, people, make_issue):
        tenant = people["tenant"]
        issue = make_issue(tenant)
        _accrual(issue, tenant.id, 10.0)
        stage_accrual(issue.id, tenant.id, 10.0, "accept")
        with pytest.raises(IntegrityError):
            _db.session.commit()
        _db.session.rollback()

    def test_missing_accrual(self):
        with pytest.raises(NotFoundError):
            apply_accrual(999)

    def test_missing_tenant_keeps_accrual_pending(self, people, make_issue):
        issue = make_issue(people["tenant"])
        accrual = _accrual(issue, 4242, 75.0)
        accrual_id = accrual.id

        with pytest.raises(NotFoundError):
            apply_accrual(accrual_id)

        fresh = _db.session.get(DebtAccrual, accrual_id)
        assert fresh.status == "pending"
        assert fresh.attempts == 1
        assert "User 4242 not found" in fresh.last_error
        assert fresh.applied_at is None

    def test_best_effort_swallows_failure(self, people, make_issue):
        issue = make_issue(people["tenant"])
        accrual = _accrual(issue, 4242, 75.0)
        assert apply_accrual_best_effort(accrual.id) is False


class TestReconciliation:

    def test_applies_pending_accruals(self, people, make_user, make_issue):
        tenant = people["tenant"]
        other = make_user("tenant2")
        _accrual(make_issue(tenant), tenant.id, 100.0)
        _accrual(make_issue(tenant), tenant.id, 50.0)
        _accrual(make_issue(other), other.id, 20.0)

        result = reconcile_pending_accruals()

        assert result == {"processed": 3, "applied": 3, "still_pending": 0, "failed": 0}
        assert _debt(tenant) == 150.0
        assert _debt(other) == 20.0
        assert reconcile_pending_accruals()["processed"] == 0

    def test_unreachable_tenant_stays_pending(self, people, make_issue):
        issue = make_issue(people["tenant"])
        _accrual(issue, 4242, 30.0)

        result = reconcile_pending_accruals()

        assert result == {"processed": 1, "applied": 0, "still_pending": 1, "failed": 0}

    def test_gives_up_after_max_attempts(self, app, people, make_issue, monkeypatch):
        monkeypatch.setitem(app.config, "DEBT_RECONCILE_MAX_ATTEMPTS", 2)
        issue = make_issue(people["tenant"])
        accrual_id = _accrual(issue, 4242, 30.0).id

        assert reconcile_pending_accruals()["still_pending"] == 1
        assert reconcile_pending_accruals()["failed"] == 1

        assert _db.session.get(DebtAccrual, accrual_id).status == "failed"
        assert reconcile_pending_accruals()["processed"] == 0

    def test_respects_limit(self, people, make_issue):
        tenant = people["tenant"]
        for _ in range(3):
            _accrual(make_issue(tenant), tenant.id, 1.0)

        assert reconcile_pending_accruals(limit=2)["applied"] == 2
        assert _debt(tenant) == 2.0

    def test_recovers_after_tenant_appears(self, people, make_issue, monkeypatch):
        tenant = people["tenant"]
        issue = make_issue(tenant)
        monkeypatch.setattr(
            "repairflow.services.debt_ledger.increment_tenant_debt",
            lambda tenant_id, amount: False,
        )
        accrual_id = _accrual(issue, tenant.id, 60.0).id
        assert apply_accrual_best_effort(accrual_id) is False

        monkeypatch.undo()
        result = reconcile_pending_accruals()

        assert result["applied"] == 1
        assert _debt(tenant) == 60.0


class TestReconcileCommand:

    def test_cli_applies_pending(self, app, people, make_issue):
        tenant = people["tenant"]
        _accrual(make_issue(tenant), tenant.id, 12.0)

        runner = app.test_cli_runner()
        result = runner.invoke(args=["reconcile-debt"])

        assert result.exit_code == 0
        assert _debt(tenant) == 12.0
