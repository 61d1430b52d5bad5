# backend/app/routers/payroll.py

import logging
import traceback
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.config import Settings
from app.database import get_db
from app.dependencies import get_ledger, get_payroll_runner, get_settings
from app.schemas.payroll import PayrollRunRequest
from app.services.employee_store import employee_to_dict, get_pending_employees
from app.services.errors import InternalError, PayrollError
from app.services.ledger import Ledger
from app.services.payroll_run import PayrollRunner, list_runs, run_to_dict
from app.services.reconciliation import reconcile_run

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payroll", tags=["Payroll"])


@router.get("")
def pending_payroll(db: Session = Depends(get_db)):
    employees = get_pending_employees(db)
    return {
        "success": True,
        "pendingCount": len(employees),
        "employees": [employee_to_dict(e) for e in employees],
    }


@router.post("")
def run_payroll(
    req: Optional[PayrollRunRequest] = None,
    db: Session = Depends(get_db),
    runner: PayrollRunner = Depends(get_payroll_runner),
):
    """Pay every pending employee in one batch transaction."""
    req = req or PayrollRunRequest()
    try:
        return runner.run(db, pay_period=req.pay_period, hours=req.hours)
    except PayrollError:
        raise
    except Exception:
        logger.error("PAYROLL RUN 500 TRACEBACK:\n%s", traceback.format_exc())
        raise InternalError("Internal server error")


@router.get("/runs")
def payroll_runs(limit: int = Query(20, ge=1, le=100), db: Session = Depends(get_db)):
    return {"success": True, "runs": [run_to_dict(r) for r in list_runs(db, limit)]}


@router.post("/runs/{run_id}/reconcile")
def reconcile(
    run_id: int,
    db: Session = Depends(get_db),
    ledger: Ledger = Depends(get_ledger),
    settings: Settings = Depends(get_settings),
):
    try:
        return reconcile_run(db, ledger, run_id, stale_after_seconds=settings.stale_run_seconds)
    except PayrollError:
        raise
    except Exception:
        logger.error("RECONCILE 500 TRACEBACK:\n%s", traceback.format_exc())
        raise InternalError("Internal server error")
