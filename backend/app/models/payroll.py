"""Audit mirror of payroll runs and the per-employee payments they submitted."""
from sqlalchemy import Column, Integer, String, DateTime, Numeric, Text, BigInteger, ForeignKey
from sqlalchemy.sql import func
from app.database import Base


RUN_LOCK_KEY = "active"


class PayrollRun(Base):
    __tablename__ = "payroll_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # in_progress | nothing_to_pay | aborted | failed | unknown | confirmed | abandoned
    status = Column(String(32), nullable=False, server_default="in_progress", index=True)
    # unique and only set while the run may still move money; NULLs never collide
    lock_key = Column(String(16), nullable=True, unique=True)
    pay_period = Column(String(20), nullable=False)

    employee_count = Column(Integer, nullable=True)
    total_amount = Column(Numeric(18, 6), nullable=True)
    tx_hash = Column(String(80), nullable=True, index=True)
    explorer_url = Column(Text, nullable=True)
    block_number = Column(BigInteger, nullable=True)
    gas_used = Column(String(40), nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Integer, ForeignKey("payroll_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    wallet_address = Column(String(64), nullable=False)
    amount = Column(Numeric(18, 6), nullable=False)
    pay_period = Column(String(20), nullable=False)
    tx_hash = Column(String(80), nullable=False)
    explorer_url = Column(Text, nullable=True)
    # submitted | confirmed | failed
    status = Column(String(20), nullable=False, server_default="submitted")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
