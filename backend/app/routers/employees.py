# backend/app/routers/employees.py

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.employee import Employee
from app.models.payroll import Payment
from app.schemas.employee import EmployeeCreate, EmployeeResponse, EmployeeUpdate, PaymentResponse
from app.services.audit import log_action
from app.services.employee_store import search_employees

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/employees", tags=["Employees"])
payments_router = APIRouter(prefix="/api/employee", tags=["Employees"])


# ---------- helpers ----------

def _get_employee_or_404(db: Session, employee_id: int) -> Employee:
    emp = db.get(Employee, employee_id)
    if not emp:
        raise HTTPException(status_code=404, detail="Employee not found")
    return emp


def _email_taken(db: Session, email: str, exclude_id: int | None = None) -> bool:
    q = db.query(Employee.id).filter(Employee.email == email)
    if exclude_id is not None:
        q = q.filter(Employee.id != exclude_id)
    return q.first() is not None


# ---------- endpoints ----------

@router.get("", response_model=list[EmployeeResponse])
def list_employees(db: Session = Depends(get_db)):
    return db.query(Employee).order_by(Employee.created_at.asc(), Employee.id.asc()).all()


@router.post("", response_model=EmployeeResponse, status_code=201)
def create_employee(body: EmployeeCreate, db: Session = Depends(get_db)):
    email = body.email.lower()
    if _email_taken(db, email):
        raise HTTPException(status_code=409, detail="An employee with this email already exists")

    data = body.model_dump()
    data["email"] = email
    emp = Employee(**data)
    db.add(emp)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="An employee with this email already exists")
    db.refresh(emp)

    logger.info("Created employee %s (%s)", emp.id, emp.email)
    log_action(db, "employee_created", "employee", emp.id, {"email": emp.email, "status": emp.status})
    return emp


@router.get("/search")
def search(
    q: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_db),
):
    results = search_employees(db, q, limit)
    return {"success": True, "query": q, "results": results}


@router.get("/{employee_id}", response_model=EmployeeResponse)
def get_employee(employee_id: int, db: Session = Depends(get_db)):
    return _get_employee_or_404(db, employee_id)


@router.patch("/{employee_id}", response_model=EmployeeResponse)
def update_employee(employee_id: int, body: EmployeeUpdate, db: Session = Depends(get_db)):
    emp = _get_employee_or_404(db, employee_id)

    changes = body.model_dump(exclude_unset=True)
    # required columns cannot be cleared
    for field in ("name", "email", "status"):
        if field in changes and changes[field] is None:
            changes.pop(field)
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        if _email_taken(db, changes["email"], exclude_id=emp.id):
            raise HTTPException(status_code=409, detail="An employee with this email already exists")

    for field, value in changes.items():
        setattr(emp, field, value)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="An employee with this email already exists")
    db.refresh(emp)

    log_action(db, "employee_updated", "employee", emp.id, {"fields": sorted(changes)})
    return emp


@payments_router.get("/{employee_id}/payments", response_model=list[PaymentResponse])
def employee_payments(employee_id: int, db: Session = Depends(get_db)):
    _get_employee_or_404(db, employee_id)
    return (
        db.query(Payment)
        .filter(Payment.employee_id == employee_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
