"""
Issue reporting & query service tests.
"""

import pytest

from repairflow.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from repairflow.models import db as _db
from repairflow.models.issue import Issue
from repairflow.services.issue_lifecycle import transition_issue
from repairflow.services.issue_service import (
    get_issue_for_viewer,
    get_issue_history,
    issues_query,
    list_associate_issues,
    list_issues,
    list_tenant_issues,
    report_issue,
)


class TestReportIssue:

    def test_report_creates_reported_issue(self, people):
        result = report_issue("tenant1", title="  Broken heater ", description="No heat in bedroom", urgency="Urgent")

        assert result["message"] == "Issue reported successfully."
        issue = result["issue"]
        assert issue["status"] == "reported"
        assert issue["title"] == "Broken heater"
        assert issue["urgency"] == "urgent"
        assert issue["tenant"] == "tenant1"
        assert issue["cost"] is None
        assert issue["assignee"] is None
        assert [h["action"] for h in issue["history"]] == ["report"]
        assert _db.session.get(Issue, issue["id"]).version == 1

    def test_urgency_defaults_to_not_urgent(self, people):
        result = report_issue("tenant1", title="Door", description="Squeaks")
        assert result["issue"]["urgency"] == "not-urgent"

    def test_urgency_spelling_variants(self, people):
        result = report_issue("tenant1", title="Door", description="Squeaks", urgency="not urgent")
        assert result["issue"]["urgency"] == "not-urgent"

    def test_missing_fields(self, people):
        with pytest.raises(ValidationError) as exc:
            report_issue("tenant1", title=" ", description=None)
        assert set(exc.value.details) == {"title", "description"}
        assert Issue.query.count() == 0

    def test_invalid_urgency(self, people):
        with pytest.raises(ValidationError, match="Invalid urgency"):
            report_issue("tenant1", title="Door", description="Squeaks", urgency="whenever")

    def test_only_tenants_report(self, people):
        with pytest.raises(ForbiddenError, match="Only tenants"):
            report_issue("manager1", title="Door", description="Squeaks")

    def test_unknown_reporter(self, people):
        with pytest.raises(NotFoundError):
            report_issue("ghost", title="Door", description="Squeaks")


class TestQueries:

    def test_tenant_sees_only_own(self, people, make_user, make_issue):
        other = make_user("tenant2")
        mine = make_issue(people["tenant"])
        make_issue(other)

        assert [i.id for i in list_tenant_issues("tenant1")] == [mine.id]

    def test_staff_list_with_status_filter(self, people, make_issue):
        make_issue(people["tenant"])
        forwarded = make_issue(people["tenant"], status="forwarded")

        assert len(list_issues()) == 2
        assert [i.id for i in list_issues("Forwarded")] == [forwarded.id]

    def test_invalid_status_filter(self, people):
        with pytest.raises(ValidationError, match="Invalid status filter"):
            issues_query("closed")

    def test_associate_sees_assigned(self, people, make_issue):
        assigned = make_issue(people["tenant"], status="assigned", assignee=people["associate"])
        make_issue(people["tenant"])

        assert [i.id for i in list_associate_issues("assoc1")] == [assigned.id]

    def test_inactive_associate_refused(self, people):
        with pytest.raises(ForbiddenError, match="Associate not active"):
            list_associate_issues("assoc_pending")


class TestVisibility:

    def test_staff_detail_includes_available_transitions(self, people, make_issue):
        issue = make_issue(people["tenant"])
        data = get_issue_for_viewer(issue.id, "manager1")
        assert data["id"] == issue.id
        assert data["available_transitions"] == [
            "forwarded", "assigned", "in-progress", "resolved", "rejected",
        ]

    def test_tenant_owner_sees_detail(self, people, make_issue):
        issue = make_issue(people["tenant"])
        assert get_issue_for_viewer(issue.id, "tenant1")["available_transitions"] == []

    def test_other_tenant_gets_not_found(self, people, make_user, make_issue):
        make_user("tenant2")
        issue = make_issue(people["tenant"])
        with pytest.raises(NotFoundError):
            get_issue_for_viewer(issue.id, "tenant2")

    def test_unassigned_associate_gets_not_found(self, people, make_issue):
        issue = make_issue(people["tenant"])
        with pytest.raises(NotFoundError):
            get_issue_history(issue.id, "assoc1")

    def test_history_in_commit_order(self, people, make_issue):
        issue = make_issue(people["tenant"])
        transition_issue(issue.id, "manager", "manager1", "forwarded")
        transition_issue(issue.id, "director", "director1", "assigned", assignee="assoc1")

        entries = get_issue_history(issue.id, "assoc1")
        assert [e.action for e in entries] == ["report", "forward", "assign"]
