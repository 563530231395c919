"""
ETA sub-flow tests: associate sets an ETA, tenant acknowledges it.
"""

from datetime import datetime, timezone

import pytest

from repairflow.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from repairflow.models import db as _db
from repairflow.models.issue import Issue, IssueHistory
from repairflow.services import issue_eta
from repairflow.services.issue_eta import acknowledge_eta, set_eta
from repairflow.services.issue_store import StaleIssueError


def _actions(issue_id) -> list[str]:
    rows = IssueHistory.query.filter_by(issue_id=issue_id).order_by(IssueHistory.id).all()
    return [row.action for row in rows]


@pytest.fixture()
def assigned_issue(people, make_issue):
    return make_issue(people["tenant"], status="assigned", assignee=people["associate"])


class TestSetEta:

    def test_sets_eta_and_history(self, assigned_issue):
        result = set_eta(assigned_issue.id, "assoc1", "2026-03-01T09:30:00Z")

        assert result["message"] == "ETA set"
        fresh = _db.session.get(Issue, assigned_issue.id)
        assert fresh.eta.replace(tzinfo=timezone.utc) == datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
        assert fresh.eta_acknowledged is False
        assert fresh.status == "assigned"
        assert _actions(assigned_issue.id) == ["report", "eta"]
        assert fresh.history[-1].note == "ETA set to 2026-03-01T09:30:00+00:00"

    def test_eta_offset_is_normalised_to_utc(self, assigned_issue):
        result = set_eta(assigned_issue.id, "assoc1", "2026-03-01T09:30:00+02:00")

        issue = result["issue"]
        assert issue["eta"] == "2026-03-01T07:30:00+00:00"
        assert issue["created_at"].endswith("+00:00")
        assert issue["updated_at"].endswith("+00:00")
        assert all(entry["timestamp"].endswith("+00:00") for entry in issue["history"])

    def test_ack_note_carries_utc_offset(self, assigned_issue):
        set_eta(assigned_issue.id, "assoc1", "2026-03-01T09:30:00+02:00")
        result = acknowledge_eta(assigned_issue.id, "tenant1")

        assert result["issue"]["history"][-1]["note"] == (
            "Tenant will be home for ETA 2026-03-01T07:30:00+00:00"
        )

    @pytest.mark.parametrize("eta", [None, "", "  "])
    def test_eta_required(self, assigned_issue, eta):
        with pytest.raises(ValidationError, match="ETA required"):
            set_eta(assigned_issue.id, "assoc1", eta)

    def test_eta_must_parse(self, assigned_issue):
        with pytest.raises(ValidationError, match="ISO-8601"):
            set_eta(assigned_issue.id, "assoc1", "next tuesday")

    def test_only_associates(self, assigned_issue):
        with pytest.raises(ForbiddenError, match="Only associates"):
            set_eta(assigned_issue.id, "manager1", "2026-03-01")

    def test_only_the_assigned_associate(self, assigned_issue, make_user):
        make_user("assoc2", role="associate")
        with pytest.raises(ForbiddenError, match="not assigned to you"):
            set_eta(assigned_issue.id, "assoc2", "2026-03-01")

    def test_inactive_associate(self, people, make_issue):
        issue = make_issue(people["tenant"], status="assigned", assignee=people["pending_associate"])
        with pytest.raises(ForbiddenError, match="Inactive"):
            set_eta(issue.id, "assoc_pending", "2026-03-01")

    def test_unknown_issue(self, people):
        with pytest.raises(NotFoundError):
            set_eta("missing", "assoc1", "2026-03-01")

    def test_new_eta_clears_acknowledgement(self, assigned_issue):
        set_eta(assigned_issue.id, "assoc1", "2026-03-01T09:00:00Z")
        acknowledge_eta(assigned_issue.id, "tenant1")

        set_eta(assigned_issue.id, "assoc1", "2026-03-02T09:00:00Z")

        assert _db.session.get(Issue, assigned_issue.id).eta_acknowledged is False
        assert _actions(assigned_issue.id) == ["report", "eta", "ack", "eta"]

    def test_stale_save_is_retried(self, assigned_issue, monkeypatch):
        real = issue_eta.save_issue
        calls = []

        def flaky(issue):
            calls.append(issue.id)
            if len(calls) == 1:
                _db.session.rollback()
                raise StaleIssueError(issue.id, issue.version)
            return real(issue)

        monkeypatch.setattr(issue_eta, "save_issue", flaky)

        set_eta(assigned_issue.id, "assoc1", "2026-03-01")

        assert len(calls) == 2
        assert _actions(assigned_issue.id) == ["report", "eta"]


class TestAcknowledgeEta:

    def test_acknowledge(self, assigned_issue):
        set_eta(assigned_issue.id, "assoc1", "2026-03-01T09:30:00Z")

        result = acknowledge_eta(assigned_issue.id, "tenant1")

        assert result["message"] == "Acknowledged"
        assert result["issue"]["eta_acknowledged"] is True
        assert _actions(assigned_issue.id) == ["report", "eta", "ack"]

    def test_second_acknowledge_is_noop(self, assigned_issue):
        set_eta(assigned_issue.id, "assoc1", "2026-03-01")
        acknowledge_eta(assigned_issue.id, "tenant1")

        result = acknowledge_eta(assigned_issue.id, "tenant1")

        assert result["message"] == "Already acknowledged"
        assert _actions(assigned_issue.id) == ["report", "eta", "ack"]

    def test_no_eta_yet(self, assigned_issue):
        with pytest.raises(ConflictError, match="No ETA"):
            acknowledge_eta(assigned_issue.id, "tenant1")

    def test_other_tenant_gets_not_found(self, assigned_issue, make_user):
        make_user("tenant2")
        set_eta(assigned_issue.id, "assoc1", "2026-03-01")
        with pytest.raises(NotFoundError):
            acknowledge_eta(assigned_issue.id, "tenant2")

    def test_non_tenant_forbidden(self, assigned_issue):
        with pytest.raises(ForbiddenError):
            acknowledge_eta(assigned_issue.id, "assoc1")

    def test_unknown_user(self, assigned_issue):
        with pytest.raises(NotFoundError):
            acknowledge_eta(assigned_issue.id, "ghost")
