"""Payable employees. Status drives payroll eligibility: `pending` rows are paid by the next run."""
from sqlalchemy import Column, Integer, String, DateTime, Numeric
from sqlalchemy.sql import func
from app.database import Base


EMPLOYEE_STATUSES = ("pending", "paid", "active", "inactive")


class Employee(Base):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    role = Column(String(120), nullable=True)
    department = Column(String(120), nullable=True)

    # custody lives in the wallet provider; we only keep the public side
    wallet_id = Column(String(120), nullable=True)
    wallet_address = Column(String(64), nullable=True)

    salary_usd = Column(Numeric(14, 2), nullable=True)
    status = Column(String(32), nullable=False, server_default="pending", index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
