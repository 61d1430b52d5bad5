"""Dashboard aggregates over employees and confirmed payments."""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.employee import Employee
from app.models.payroll import Payment

logger = logging.getLogger(__name__)

SALARY_RANGES = [
    ("$0-$30k", 0, 30_000),
    ("$30k-$50k", 30_000, 50_000),
    ("$50k-$70k", 50_000, 70_000),
    ("$70k-$90k", 70_000, 90_000),
    ("$90k+", 90_000, float("inf")),
]

SERIES_DAYS = 180


def _months_back(d: date, months: int) -> date:
    month = d.month - months
    year = d.year
    while month <= 0:
        month += 12
        year -= 1
    # clamp to the last valid day of the target month
    for day in (d.day, 30, 29, 28):
        try:
            return date(year, month, day)
        except ValueError:
            continue
    return date(year, month, 28)


def _created_on(emp: Employee) -> Optional[date]:
    return emp.created_at.date() if emp.created_at else None


def salary_distribution(salaries: list[float]) -> list[dict]:
    counts = {label: 0 for label, _, _ in SALARY_RANGES}
    for salary in salaries:
        for label, low, high in SALARY_RANGES:
            if low <= salary < high:
                counts[label] += 1
                break
    return [{"range": label, "count": counts[label]} for label, _, _ in SALARY_RANGES if counts[label] > 0]


def payroll_series(employees: list[Employee], today: date) -> list[dict]:
    """Daily headcount and approximate monthly payroll (annual / 12) by hire date."""
    start = _months_back(today, 6)
    created = [(_created_on(e), float(e.salary_usd or 0)) for e in employees]
    series = []
    for i in range(SERIES_DAYS):
        day = start + timedelta(days=i)
        on_books = [salary for c, salary in created if c is not None and c <= day]
        series.append({
            "date": day.isoformat(),
            "amount": round(sum(on_books) / 12),
            "employees": len(on_books),
        })
    return series


def build_analytics(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    employees = db.query(Employee).all()

    salaries = [float(e.salary_usd or 0) for e in employees]
    total_employees = len(employees)
    active_employees = sum(1 for e in employees if e.status in ("active", "paid"))
    total_payroll = sum(salaries)

    payment_count, payment_volume = (
        db.query(func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.status == "confirmed")
        .one()
    )
    payment_volume = float(payment_volume or 0)

    return {
        "stats": {
            "totalEmployees": total_employees,
            "activeEmployees": active_employees,
            "totalPayroll": round(total_payroll, 2),
            "avgSalary": round(total_payroll / total_employees, 2) if total_employees else 0,
            "totalTransactions": int(payment_count or 0),
            "totalTransactionVolume": round(payment_volume, 2),
        },
        "payrollData": payroll_series(employees, now.date()),
        "transactionDistribution": [
            {"name": "Payroll", "value": round(payment_volume, 2), "count": int(payment_count or 0)},
        ],
        "employeeSalaryDistribution": salary_distribution(salaries),
    }
