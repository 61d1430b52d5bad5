"""
Payroll run: pending employees -> pay calculation -> balance guard -> one
batch payment -> record update -> pay stubs.

Strictly sequential and single-pass. A run holds the run lock (a unique
`lock_key` on its payroll_runs row) from before employee selection until it
reaches a terminal state, so two requests can never check the same balance or
pay the same pending employees. A run whose payment outcome is unknown keeps
the lock until it is reconciled.
"""
import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings
from app.models.employee import Employee
from app.models.payroll import PayrollRun, Payment, RUN_LOCK_KEY
from app.services.audit import log_action
from app.services.employee_store import get_pending_employees, mark_paid
from app.services.errors import (
    BalanceUnavailable,
    DataUnavailable,
    DisbursementFailed,
    DisbursementOutcomeUnknown,
    InsufficientBalance,
    PayrollError,
    RunInProgress,
)
from app.services.executor import BatchDisbursementExecutor, BatchPaymentEmployee, PreparedBatch
from app.services.ledger import Ledger, LedgerError, from_base_units, is_address, to_base_units
from app.services.payroll_calculator import (
    PayrollEstimator,
    PayrollInput,
    PayrollResult,
    apply_test_total_cap,
    calculate_payroll,
    normalized_hours,
)
from app.services.paystub import PaystubNotifier, render_paystub

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("nothing_to_pay", "aborted", "failed", "confirmed", "abandoned")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def acquire_run_lock(db: Session, pay_period: str) -> PayrollRun:
    run = PayrollRun(status="in_progress", lock_key=RUN_LOCK_KEY, pay_period=pay_period)
    db.add(run)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        active = db.query(PayrollRun).filter(PayrollRun.lock_key == RUN_LOCK_KEY).first()
        details = {"runId": active.id, "status": active.status} if active else None
        raise RunInProgress(
            "Another payroll run is in progress or awaiting reconciliation",
            details=details,
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Could not start payroll run: %s", e)
        raise DataUnavailable("Could not start payroll run")
    db.refresh(run)
    return run


def finish_run(db: Session, run: PayrollRun, status: str, *, error: Optional[str] = None) -> None:
    """Move a run to `status`. Every status but `unknown` releases the lock."""
    try:
        run.status = status
        if error:
            run.error_message = error[:2000]
        if status in TERMINAL_STATUSES:
            run.lock_key = None
            run.completed_at = _now_utc()
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not record status %s for payroll run %s", status, run.id)


class PayrollRunner:
    def __init__(
        self,
        ledger: Ledger,
        estimator: PayrollEstimator,
        notifier: PaystubNotifier,
        settings: Settings,
    ):
        self.ledger = ledger
        self.estimator = estimator
        self.notifier = notifier
        self.settings = settings
        self.executor = BatchDisbursementExecutor(
            ledger,
            settings.explorer_url_for,
            confirmation_timeout=settings.tx_confirmation_timeout,
        )

    def run(self, db: Session, pay_period: Optional[str] = None, hours: Optional[dict] = None) -> dict:
        pay_period = pay_period or self.settings.default_pay_period
        hours = {str(k): float(v) for k, v in (hours or {}).items()}

        self.executor.ensure_ready()
        run = acquire_run_lock(db, pay_period)
        logger.info("Starting payroll run %s (%s)", run.id, pay_period)

        try:
            return self._run_locked(db, run, pay_period, hours)
        except DisbursementOutcomeUnknown as e:
            finish_run(db, run, "unknown", error=e.message)
            log_action(db, "payroll_unknown", "payroll_run", run.id, {"tx": e.tx_hash, "error": e.message})
            raise
        except DisbursementFailed as e:
            finish_run(db, run, "failed", error=e.message)
            log_action(db, "payroll_failed", "payroll_run", run.id, {"tx": e.tx_hash, "error": e.message})
            raise
        except PayrollError as e:
            finish_run(db, run, "aborted", error=e.message)
            raise
        except Exception as e:
            # once a hash exists the money may have moved
            tx_hash = run.tx_hash
            db.rollback()
            status = "unknown" if tx_hash else "aborted"
            logger.exception("Payroll run %s crashed; marking %s", run.id, status)
            if not tx_hash:
                finish_run(db, run, status, error=str(e))
                raise
            run.tx_hash = tx_hash
            finish_run(db, run, status, error=str(e))
            log_action(db, "payroll_unknown", "payroll_run", run.id, {"tx": tx_hash, "error": str(e)})
            raise DisbursementOutcomeUnknown(
                f"Batch payment {tx_hash} outcome unknown: {e}. Reconcile before retrying.",
                tx_hash=tx_hash,
            ) from e

    def _run_locked(self, db: Session, run: PayrollRun, pay_period: str, hours: dict) -> dict:
        employees = get_pending_employees(db)
        if not employees:
            logger.info("Payroll run %s: no pending employees", run.id)
            finish_run(db, run, "nothing_to_pay")
            return {"success": False, "runId": run.id, "message": "No pending employees to process"}

        logger.info("Payroll run %s: %d pending employees", run.id, len(employees))

        results = self._calculate(employees, pay_period, hours)
        batch_employees, skipped = self._select_recipients(employees, results)
        if batch_employees and self.settings.test_total_cap is not None:
            results, batch_employees = self._apply_test_cap(results, batch_employees)

        if not batch_employees:
            finish_run(db, run, "nothing_to_pay")
            return {
                "success": False,
                "runId": run.id,
                "message": "No payable employees: every pending employee was skipped",
                "payrollResults": [r.to_dict() for r in results],
                "skipped": skipped,
            }

        self._check_balance(batch_employees)

        def on_submitted(tx_hash: str, batch: PreparedBatch) -> None:
            self._record_submission(db, run, pay_period, batch_employees, batch, tx_hash)

        payment = self.executor.execute(batch_employees, on_submitted=on_submitted)

        run.block_number = payment.block_number
        run.gas_used = payment.gas_used
        db.query(Payment).filter(Payment.run_id == run.id).update({"status": "confirmed"})
        finish_run(db, run, "confirmed")

        failures = mark_paid(db, [e.id for e in batch_employees])
        emails_sent = self._send_paystubs(employees, results, batch_employees, payment.tx_hash, payment.explorer_url)

        log_action(db, "payroll_confirmed", "payroll_run", run.id, {
            "tx": payment.tx_hash,
            "employee_count": payment.employee_count,
            "total_paid": payment.total_paid,
            "record_update_failures": len(failures),
        })
        logger.info(
            "Payroll run %s complete: paid=%d total=%.2f tx=%s",
            run.id, payment.employee_count, payment.total_paid, payment.tx_hash,
        )

        return {
            "success": True,
            "runId": run.id,
            "paid": payment.employee_count,
            "tx": payment.tx_hash,
            "explorer": payment.explorer_url,
            "totalPaid": round(payment.total_paid, 6),
            "blockNumber": payment.block_number,
            "gasUsed": payment.gas_used,
            "emailsSent": emails_sent,
            "payrollResults": [r.to_dict() for r in results],
            "skipped": skipped,
            "recordUpdateFailures": failures,
        }

    def _calculate(self, employees: list[Employee], pay_period: str, hours: dict) -> list[PayrollResult]:
        default_hours = normalized_hours(pay_period)
        inputs = [
            PayrollInput(
                employee_id=str(emp.id),
                employee_name=emp.name,
                salary_annual=float(emp.salary_usd or 0),
                hours_this_period=hours.get(str(emp.id), default_hours),
                pay_period=pay_period,
            )
            for emp in employees
        ]

        if self.settings.test_total_cap is not None:
            # amounts are replaced after recipient selection
            return [calculate_payroll(i, tax_rate=self.settings.tax_rate) for i in inputs]

        # one AI call at a time
        results = []
        for inp in inputs:
            result = self.estimator.estimate(inp)
            logger.info(
                "Payroll for %s: gross=%.2f net=%.2f (%s)",
                inp.employee_name, result.gross_pay, result.net_pay, result.source,
            )
            results.append(result)
        return results

    def _select_recipients(self, employees: list[Employee], results: list[PayrollResult]):
        batch = []
        skipped = []
        for emp, result in zip(employees, results):
            reason = None
            if not emp.wallet_address:
                reason = "no wallet address"
            elif not is_address(emp.wallet_address):
                reason = f"invalid wallet address {emp.wallet_address}"
            elif result.net_pay <= 0:
                reason = "no salary on file" if not emp.salary_usd else "nothing to pay this period"
            if reason:
                logger.warning("Skipping employee %s (%s): %s", emp.id, emp.name, reason)
                skipped.append({
                    "employee_id": str(emp.id),
                    "employee_name": emp.name,
                    "error": "INVALID_RECIPIENT",
                    "message": reason,
                })
                continue
            batch.append(BatchPaymentEmployee(
                id=emp.id,
                employee_id=str(emp.id),
                wallet_address=emp.wallet_address,
                net_pay=result.net_pay,
            ))
        return batch, skipped

    def _apply_test_cap(self, results: list[PayrollResult], batch_employees: list[BatchPaymentEmployee]):
        """Split the test-mode total evenly across the employees actually being paid."""
        cap = self.settings.test_total_cap
        logger.warning("TEST MODE: payroll total capped at $%.2f across %d employees", cap, len(batch_employees))
        paid_ids = {e.employee_id for e in batch_employees}
        capped = {
            r.employee_id: r
            for r in apply_test_total_cap([r for r in results if r.employee_id in paid_ids], cap)
        }
        results = [capped.get(r.employee_id, r) for r in results]
        batch_employees = [replace(e, net_pay=capped[e.employee_id].net_pay) for e in batch_employees]
        return results, batch_employees

    def _check_balance(self, batch_employees: list[BatchPaymentEmployee]) -> None:
        required = sum(to_base_units(e.net_pay) for e in batch_employees)
        try:
            available = self.ledger.get_stablecoin_balance()
        except LedgerError as e:
            logger.error("Could not verify USDC balance: %s", e)
            raise BalanceUnavailable(f"Could not verify USDC balance: {e}")

        logger.info(
            "Balance check: required=%.6f available=%.6f",
            from_base_units(required), from_base_units(available),
        )
        if available < required:
            raise InsufficientBalance(
                required=from_base_units(required),
                available=from_base_units(available),
                employee_count=len(batch_employees),
            )

    def _record_submission(
        self,
        db: Session,
        run: PayrollRun,
        pay_period: str,
        batch_employees: list[BatchPaymentEmployee],
        batch: PreparedBatch,
        tx_hash: str,
    ) -> None:
        explorer_url = self.settings.explorer_url_for(tx_hash)
        run.tx_hash = tx_hash
        run.explorer_url = explorer_url
        run.employee_count = len(batch.recipients)
        run.total_amount = Decimal(batch.total) / Decimal(10 ** 6)
        for emp, units in zip(batch_employees, batch.amounts):
            db.add(Payment(
                run_id=run.id,
                employee_id=emp.id,
                wallet_address=emp.wallet_address,
                amount=Decimal(units) / Decimal(10 ** 6),
                pay_period=pay_period,
                tx_hash=tx_hash,
                explorer_url=explorer_url,
                status="submitted",
            ))
        try:
            db.commit()
        except SQLAlchemyError:
            # the transaction exists regardless; keep the hash on the run at least
            db.rollback()
            logger.exception("Could not record payments for run %s (tx=%s)", run.id, tx_hash)
            run.tx_hash = tx_hash
            run.explorer_url = explorer_url
            db.commit()

    def _send_paystubs(
        self,
        employees: list[Employee],
        results: list[PayrollResult],
        batch_employees: list[BatchPaymentEmployee],
        tx_hash: str,
        explorer_url: str,
    ) -> int:
        paid_ids = {e.id for e in batch_employees}
        sent = 0
        for emp, result in zip(employees, results):
            if emp.id not in paid_ids or not emp.email:
                continue
            stub = render_paystub(
                employee_name=emp.name,
                email=emp.email,
                wallet_address=emp.wallet_address,
                result=result,
                tx_hash=tx_hash,
                explorer_url=explorer_url,
            )
            try:
                self.notifier.send(stub)
                sent += 1
            except Exception:
                logger.exception("Failed to send pay stub to %s", emp.email)
        logger.info("Sent %d pay stubs", sent)
        return sent


def list_runs(db: Session, limit: int = 20) -> list[PayrollRun]:
    return (
        db.query(PayrollRun)
        .order_by(PayrollRun.created_at.desc(), PayrollRun.id.desc())
        .limit(limit)
        .all()
    )


def run_to_dict(run: PayrollRun) -> dict:
    return {
        "id": run.id,
        "status": run.status,
        "pay_period": run.pay_period,
        "employee_count": run.employee_count,
        "total_amount": float(run.total_amount) if run.total_amount is not None else None,
        "tx_hash": run.tx_hash,
        "explorer_url": run.explorer_url,
        "block_number": run.block_number,
        "gas_used": run.gas_used,
        "error_message": run.error_message,
        "created_at": run.created_at.isoformat() if run.created_at else None,
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
    }
