import logging
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.models.employee import Employee
from app.models.payroll import PayrollRun

logger = logging.getLogger(__name__)

PENNY_SYSTEM_PROMPT = """You are Penny, the AI payroll assistant of Paystream AI.
Paystream AI pays employee salaries in USDC stablecoin with a single batch transaction per payroll run.

Key principles:
- Be concise and friendly
- Use the payroll context below for facts; never invent balances, amounts or transaction hashes
- Payroll math: base pay is annual salary / pay periods, overtime is paid at 1.5x the hourly rate
  (annual salary / 2080), tax is estimated at a flat percentage of gross pay
- You cannot move money yourself. To pay pending employees, an admin runs payroll from the dashboard
- If asked about anything unrelated to payroll, wallets or employees, politely steer back"""


def _build_payroll_context(db: Session) -> str:
    """Short factual summary of the current payroll state."""
    try:
        total = db.query(func.count(Employee.id)).scalar() or 0
        pending = db.query(func.count(Employee.id)).filter(Employee.status == "pending").scalar() or 0
        last_run = (
            db.query(PayrollRun)
            .filter(PayrollRun.status == "confirmed")
            .order_by(PayrollRun.completed_at.desc(), PayrollRun.id.desc())
            .first()
        )
    except SQLAlchemyError as e:
        logger.error("Payroll context build failed: %s", e)
        return ""

    lines = [
        "PAYROLL CONTEXT:",
        f"- Employees on file: {total}",
        f"- Employees pending payment: {pending}",
    ]
    if last_run:
        lines.append(
            f"- Last confirmed run: {last_run.employee_count or 0} employees, "
            f"{float(last_run.total_amount or 0):.2f} USDC, tx {last_run.tx_hash}"
        )
    else:
        lines.append("- No confirmed payroll run yet")
    return "\n".join(lines)


def assemble_prompt(db: Session | None = None, user_name: str = "") -> str:
    """Assemble the full system prompt with the live payroll context."""
    parts = [PENNY_SYSTEM_PROMPT]

    if user_name:
        parts.append(f"\n\nYou are talking to {user_name}.")

    if db is not None:
        context = _build_payroll_context(db)
        if context:
            parts.append(f"\n\n{context}")

    return "\n".join(parts)
