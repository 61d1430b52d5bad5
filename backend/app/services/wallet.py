import logging

from sqlalchemy.orm import Session

from app.models.payroll import PayrollRun
from app.services.employee_store import get_pending_employees
from app.services.errors import BalanceUnavailable
from app.services.ledger import Ledger, LedgerError, from_base_units
from app.services.payroll_calculator import PayrollInput, calculate_payroll, normalized_hours

logger = logging.getLogger(__name__)


def estimate_pending_payroll(db: Session, pay_period: str, tax_rate: float) -> tuple[float, int]:
    """Rule-based net payroll for pending employees at normalized hours.

    Employees without a salary on file are left out, as the payroll run skips them.
    """
    pending = get_pending_employees(db)
    hours = normalized_hours(pay_period)
    total = 0.0
    for emp in pending:
        if not emp.salary_usd:
            continue
        result = calculate_payroll(
            PayrollInput(
                employee_id=str(emp.id),
                employee_name=emp.name,
                salary_annual=float(emp.salary_usd),
                hours_this_period=hours,
                pay_period=pay_period,
            ),
            tax_rate=tax_rate,
        )
        total += result.net_pay
    return total, len(pending)


def balance_summary(db: Session, ledger: Ledger, pay_period: str, tax_rate: float) -> dict:
    try:
        balance = from_base_units(ledger.get_stablecoin_balance())
    except LedgerError as e:
        logger.error("Could not read payer balance: %s", e)
        raise BalanceUnavailable(f"Could not read USDC balance: {e}")

    estimated, pending_count = estimate_pending_payroll(db, pay_period, tax_rate)
    sufficient = balance >= estimated
    return {
        "address": ledger.payer_address,
        "balance": round(balance, 6),
        "estimatedPayroll": round(estimated, 2),
        "hasSufficientBalance": sufficient,
        "shortfall": 0 if sufficient else round(estimated - balance, 2),
        "pendingEmployeeCount": pending_count,
        "percentageAvailable": round(balance / estimated * 100, 2) if estimated > 0 else 100,
    }


def payroll_transactions(db: Session, limit: int = 20) -> list[dict]:
    runs = (
        db.query(PayrollRun)
        .filter(PayrollRun.tx_hash.isnot(None))
        .order_by(PayrollRun.created_at.desc(), PayrollRun.id.desc())
        .limit(limit)
        .all()
    )
    transactions = []
    for run in runs:
        count = run.employee_count or 0
        transactions.append({
            "id": f"payroll-{run.id}",
            "type": "payroll",
            "amount": -float(run.total_amount or 0),
            "status": "completed" if run.status == "confirmed" else run.status,
            "timestamp": run.created_at.isoformat() if run.created_at else None,
            "hash": run.tx_hash,
            "explorerUrl": run.explorer_url,
            "description": f"Payroll run - {count} employee{'s' if count != 1 else ''}",
        })
    return transactions
