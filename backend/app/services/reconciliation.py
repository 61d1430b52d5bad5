"""
Repair run and employee records from the ledger's view of a transaction.

Safe to call any number of times: it only moves records toward what the
receipt says and never submits anything.
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from app.models.payroll import PayrollRun, Payment
from app.services.audit import log_action
from app.services.employee_store import mark_paid
from app.services.errors import DataUnavailable, RunNotFound
from app.services.ledger import Ledger, LedgerError
from app.services.payroll_run import finish_run, run_to_dict

logger = logging.getLogger(__name__)


def _as_aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def reconcile_run(db: Session, ledger: Ledger, run_id: int, *, stale_after_seconds: int = 3600) -> dict:
    run = db.get(PayrollRun, run_id)
    if run is None:
        raise RunNotFound(f"Payroll run {run_id} not found")

    if not run.tx_hash:
        age = datetime.now(timezone.utc) - _as_aware(run.created_at)
        if run.status == "in_progress" and age > timedelta(seconds=stale_after_seconds):
            logger.warning("Releasing stale payroll run %s (no transaction, age %s)", run.id, age)
            finish_run(db, run, "abandoned", error="Released by reconciliation: no transaction was recorded")
            log_action(db, "payroll_abandoned", "payroll_run", run.id, {})
            return {"success": True, "outcome": "abandoned", "run": run_to_dict(run), "employeesUpdated": 0}
        return {"success": True, "outcome": "nothing_to_reconcile", "run": run_to_dict(run), "employeesUpdated": 0}

    try:
        receipt = ledger.get_receipt(run.tx_hash)
    except LedgerError as e:
        raise DataUnavailable(f"Could not read transaction {run.tx_hash}: {e}")

    if receipt is None:
        logger.info("Run %s: transaction %s not yet visible on the ledger", run.id, run.tx_hash)
        return {"success": True, "outcome": "pending", "run": run_to_dict(run), "employeesUpdated": 0}

    payments = db.query(Payment).filter(Payment.run_id == run.id).all()

    if not receipt.succeeded:
        for p in payments:
            p.status = "failed"
        finish_run(db, run, "failed", error=f"Transaction reverted in block {receipt.block_number}")
        log_action(db, "payroll_reconciled", "payroll_run", run.id, {"outcome": "failed", "tx": run.tx_hash})
        return {"success": True, "outcome": "failed", "run": run_to_dict(run), "employeesUpdated": 0}

    for p in payments:
        p.status = "confirmed"
    run.block_number = receipt.block_number
    run.gas_used = str(receipt.gas_used)
    finish_run(db, run, "confirmed")

    employee_ids = sorted({p.employee_id for p in payments})
    failures = mark_paid(db, employee_ids)
    log_action(db, "payroll_reconciled", "payroll_run", run.id, {
        "outcome": "confirmed",
        "tx": run.tx_hash,
        "record_update_failures": len(failures),
    })
    logger.info("Run %s reconciled as confirmed (block %s)", run.id, receipt.block_number)
    return {
        "success": True,
        "outcome": "confirmed",
        "run": run_to_dict(run),
        "employeesUpdated": len(employee_ids) - len(failures),
        "recordUpdateFailures": failures,
    }
