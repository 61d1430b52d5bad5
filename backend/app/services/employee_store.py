import logging

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.employee import Employee
from app.services.errors import DataUnavailable

logger = logging.getLogger(__name__)


def get_pending_employees(db: Session) -> list[Employee]:
    """Employees flagged `pending`, oldest first. This set is the whole scope of a run."""
    try:
        return (
            db.query(Employee)
            .filter(Employee.status == "pending")
            .order_by(Employee.created_at.asc(), Employee.id.asc())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error("Could not load pending employees: %s", e)
        raise DataUnavailable("Could not load pending employees")


def mark_paid(db: Session, employee_ids: list[int]) -> list[dict]:
    """Best-effort status flip. Returns one failure dict per employee that could not be updated."""
    failures = []
    for employee_id in employee_ids:
        try:
            emp = db.get(Employee, employee_id)
            if emp is None:
                raise LookupError("employee no longer exists")
            if emp.status != "paid":
                emp.status = "paid"
                db.commit()
        except (SQLAlchemyError, LookupError) as e:
            db.rollback()
            logger.error("Failed to update employee %s after payment: %s", employee_id, e)
            failures.append({"employee_id": str(employee_id), "error": str(e)})
    return failures


def search_employees(db: Session, query: str, limit: int = 10) -> list[dict]:
    """Case-insensitive substring search over name, email, role and department."""
    if not query or not query.strip():
        return []

    q = query.strip()
    pattern = f"%{q}%"
    rows = (
        db.query(Employee)
        .filter(or_(
            Employee.name.ilike(pattern),
            Employee.email.ilike(pattern),
            Employee.role.ilike(pattern),
            Employee.department.ilike(pattern),
        ))
        .order_by(Employee.name.asc())
        .limit(limit)
        .all()
    )

    needle = q.lower()
    return [
        {
            "employee": employee_to_dict(e),
            "relevance": "high" if needle in (e.name or "").lower() else "medium",
        }
        for e in rows
    ]


def employee_to_dict(e: Employee) -> dict:
    return {
        "id": e.id,
        "name": e.name,
        "email": e.email,
        "role": e.role,
        "department": e.department,
        "wallet_id": e.wallet_id,
        "wallet_address": e.wallet_address,
        "salary_usd": float(e.salary_usd) if e.salary_usd is not None else None,
        "status": e.status,
        "created_at": e.created_at.isoformat() if e.created_at else None,
        "updated_at": e.updated_at.isoformat() if e.updated_at else None,
    }
