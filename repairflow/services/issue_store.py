"""
Issue Store — persistence primitives for the issue workflow.

Two write paths:
    atomic_update_issue()  single conditional UPDATE of selected fields plus
                           one history INSERT (and optionally a staged debt
                           accrual) in one commit.  Never rewrites the whole
                           row, so legacy rows are not revalidated and
                           concurrent writers cannot lose each other's
                           history entries.
    save_issue()           full-document ORM flush, guarded by the mapper's
                           version column.

Both paths refuse stale writes with ``StaleIssueError``; the lifecycle
engine reloads, re-validates and retries on that signal.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from repairflow.core.exceptions import NotFoundError
from repairflow.models import db
from repairflow.models.issue import HISTORY_ACTIONS, ISSUE_STATUSES, Issue, IssueHistory
from repairflow.services.debt_ledger import stage_accrual

logger = logging.getLogger(__name__)

# Columns the atomic path may set.
UPDATABLE_FIELDS = frozenset({
    "status", "assignee_id", "cost", "eta", "eta_acknowledged",
})


class StaleIssueError(Exception):
    """The issue changed between read and write (optimistic-lock miss)."""

    def __init__(self, issue_id: str, expected_version: int | None = None):
        super().__init__(
            f"Issue {issue_id} was modified concurrently (expected version {expected_version})"
        )
        self.issue_id = issue_id
        self.expected_version = expected_version


@dataclass(frozen=True)
class HistoryEntry:
    actor: str
    action: str
    note: str | None = None

    def __post_init__(self):
        if self.action not in HISTORY_ACTIONS:
            raise ValueError(f"Unknown history action: {self.action!r}")


@dataclass(frozen=True)
class AccrualIntent:
    tenant_id: int
    amount: float
    transition_key: str


def _utcnow():
    return datetime.now(timezone.utc)


def find_issue_by_id(issue_id) -> Issue | None:
    """Return the issue or None; blank ids never match."""
    if not issue_id:
        return None
    return db.session.get(Issue, str(issue_id))


def get_issue_or_404(issue_id) -> Issue:
    """Like find_issue_by_id but raises NotFoundError."""
    issue = find_issue_by_id(issue_id)
    if issue is None:
        raise NotFoundError("Issue", issue_id)
    return issue


def atomic_update_issue(
    issue_id: str,
    set_fields: dict,
    history_entry: HistoryEntry,
    *,
    expected_version: int | None = None,
    accrual: AccrualIntent | None = None,
) -> Issue:
    """
    Set ``set_fields`` and append ``history_entry`` in a single commit.

    Args:
        issue_id: Target issue.
        set_fields: Column → value; keys must be in UPDATABLE_FIELDS.
        history_entry: The one history row this write appends.
        expected_version: When given, the UPDATE only matches that version.
        accrual: Optional debt accrual staged in the same commit.

    Returns:
        The reloaded Issue.

    Raises:
        NotFoundError: issue does not exist.
        StaleIssueError: ``expected_version`` no longer matches.
    """
    unknown = set(set_fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not updatable through the workflow: {sorted(unknown)}")
    if "status" in set_fields and set_fields["status"] not in ISSUE_STATUSES:
        raise ValueError(f"Invalid issue status: {set_fields['status']!r}")

    now = _utcnow()
    values = dict(set_fields)
    values["updated_at"] = now
    values["version"] = Issue.version + 1

    query = Issue.query.filter(Issue.id == issue_id)
    if expected_version is not None:
        query = query.filter(Issue.version == expected_version)

    try:
        count = query.update(values, synchronize_session=False)
        if not count:
            db.session.rollback()
            if db.session.get(Issue, issue_id) is None:
                raise NotFoundError("Issue", issue_id)
            raise StaleIssueError(issue_id, expected_version)

        db.session.add(IssueHistory(
            issue_id=issue_id,
            actor=history_entry.actor,
            action=history_entry.action,
            note=history_entry.note,
            created_at=now,
        ))
        if accrual is not None:
            stage_accrual(issue_id, accrual.tenant_id, accrual.amount, accrual.transition_key)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Atomic update failed for issue %s", issue_id)
        raise

    # commit expired the identity map; this reloads fresh column values
    return db.session.get(Issue, issue_id)


def append_history(issue: Issue, history_entry: HistoryEntry) -> IssueHistory:
    """Attach a new history row to ``issue`` for the next save_issue()."""
    entry = IssueHistory(
        actor=history_entry.actor,
        action=history_entry.action,
        note=history_entry.note,
        created_at=_utcnow(),
    )
    issue.history.append(entry)
    return entry


def save_issue(issue: Issue) -> Issue:
    """
    Persist the full issue document.

    The mapper's ``version_id_col`` turns the UPDATE into
    ``... WHERE id = ? AND version = ?``; a miss raises StaleIssueError.
    """
    issue_id = issue.id
    expected_version = issue.version
    db.session.add(issue)
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise StaleIssueError(issue_id, expected_version) from exc
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Save failed for issue %s", issue_id)
        raise
    return issue
