"""
Tenant Debt Ledger — side effect of accepting a repair cost.

Accepting a job bills the issue's tenant.  The bill is recorded as a
``DebtAccrual`` row staged inside the same commit as the issue transition,
then applied to ``users.debt`` right after the transition commits.

Applying is idempotent: the accrual is claimed with a conditional
``pending → applied`` update and the debt increment runs in the same
transaction, so a retried application can never bill twice.

A failed application never fails the transition.  The accrual stays
``pending`` and a reconciliation run picks it up later:

    flask reconcile-debt

Usage:
    from repairflow.services.debt_ledger import apply_accrual_best_effort

    apply_accrual_best_effort(accrual_id)
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from repairflow.core.exceptions import NotFoundError
from repairflow.models import db
from repairflow.models.debt import (
    ACCRUAL_APPLIED,
    ACCRUAL_FAILED,
    ACCRUAL_PENDING,
    DebtAccrual,
)
from repairflow.services.identity import increment_tenant_debt

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_BATCH_SIZE = 100


def stage_accrual(issue_id: str, tenant_id: int, amount: float, transition_key: str) -> DebtAccrual:
    """
    Add a pending accrual to the current session without committing.

    Called by the issue store inside the transition's write so the accrual
    commits (or rolls back) together with the issue update.
    """
    accrual = DebtAccrual(
        issue_id=issue_id,
        tenant_id=tenant_id,
        amount=amount,
        transition_key=transition_key,
        status=ACCRUAL_PENDING,
        attempts=0,
    )
    db.session.add(accrual)
    return accrual


def find_accrual(issue_id: str, transition_key: str) -> DebtAccrual | None:
    return DebtAccrual.query.filter_by(issue_id=issue_id, transition_key=transition_key).first()


def apply_accrual(accrual_id: int) -> bool:
    """
    Apply one pending accrual to the tenant's debt balance.

    Returns:
        True if this call applied it, False if it was already applied/failed.

    Raises:
        NotFoundError: accrual or tenant row missing (accrual stays pending).
        SQLAlchemyError: database failure (accrual stays pending).
    """
    accrual = db.session.get(DebtAccrual, accrual_id)
    if accrual is None:
        raise NotFoundError("DebtAccrual", accrual_id)
    if accrual.status != ACCRUAL_PENDING:
        return False

    tenant_id = accrual.tenant_id
    amount = accrual.amount
    try:
        claimed = (
            DebtAccrual.query
            .filter_by(id=accrual_id, status=ACCRUAL_PENDING)
            .update(
                {
                    "status": ACCRUAL_APPLIED,
                    "applied_at": datetime.now(timezone.utc),
                    "attempts": DebtAccrual.attempts + 1,
                    "last_error": None,
                },
                synchronize_session=False,
            )
        )
        if not claimed:
            db.session.rollback()
            return False
        if not increment_tenant_debt(tenant_id, amount):
            raise NotFoundError("User", tenant_id)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        _record_failure(accrual_id, exc)
        raise

    logger.info(
        "Debt accrued: tenant=%s amount=%s accrual=%s",
        tenant_id, amount, accrual_id,
        extra={"issue_id": accrual.issue_id, "action": "debt_accrual"},
    )
    return True


def apply_accrual_best_effort(accrual_id: int) -> bool:
    """Apply an accrual, logging and swallowing any failure."""
    try:
        return apply_accrual(accrual_id)
    except Exception:
        logger.warning(
            "Debt accrual %s could not be applied; left pending for reconciliation",
            accrual_id, exc_info=True,
        )
        return False


def _record_failure(accrual_id: int, exc: Exception) -> None:
    """Count a failed attempt; give up after DEBT_RECONCILE_MAX_ATTEMPTS."""
    max_attempts = current_app.config.get("DEBT_RECONCILE_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
    try:
        accrual = db.session.get(DebtAccrual, accrual_id)
        if accrual is None or accrual.status != ACCRUAL_PENDING:
            return
        accrual.attempts = (accrual.attempts or 0) + 1
        accrual.last_error = str(exc)[:500]
        if accrual.attempts >= max_attempts:
            accrual.status = ACCRUAL_FAILED
            logger.error(
                "Debt accrual %s marked failed after %d attempts",
                accrual_id, accrual.attempts,
                extra={"issue_id": accrual.issue_id, "action": "debt_accrual"},
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.warning("Could not record failure for debt accrual %s", accrual_id, exc_info=True)


def reconcile_pending_accruals(limit: int | None = None) -> dict:
    """
    Retry every pending accrual (oldest first), up to ``limit`` rows.

    Returns:
        {"processed", "applied", "still_pending", "failed"}
    """
    if limit is None:
        limit = current_app.config.get("DEBT_RECONCILE_BATCH_SIZE", DEFAULT_BATCH_SIZE)

    pending_ids = [
        row.id for row in (
            DebtAccrual.query
            .filter_by(status=ACCRUAL_PENDING)
            .order_by(DebtAccrual.id)
            .limit(limit)
            .all()
        )
    ]

    result = {"processed": 0, "applied": 0, "still_pending": 0, "failed": 0}
    for accrual_id in pending_ids:
        result["processed"] += 1
        if apply_accrual_best_effort(accrual_id):
            result["applied"] += 1
            continue
        accrual = db.session.get(DebtAccrual, accrual_id)
        if accrual is not None and accrual.status == ACCRUAL_FAILED:
            result["failed"] += 1
        elif accrual is not None and accrual.status == ACCRUAL_PENDING:
            result["still_pending"] += 1

    if pending_ids:
        logger.info("Debt reconciliation finished: %s", result)
    return result

