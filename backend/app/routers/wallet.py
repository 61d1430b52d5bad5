import logging
import traceback

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.config import Settings
from app.database import get_db
from app.dependencies import get_ledger, get_settings
from app.services.errors import InternalError, PayrollError
from app.services.ledger import Ledger
from app.services.wallet import balance_summary, payroll_transactions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/wallet", tags=["Wallet"])


@router.get("/balance")
def wallet_balance(
    db: Session = Depends(get_db),
    ledger: Ledger = Depends(get_ledger),
    settings: Settings = Depends(get_settings),
):
    try:
        data = balance_summary(db, ledger, settings.default_pay_period, settings.tax_rate)
        return {"success": True, "data": data}
    except PayrollError:
        raise
    except Exception:
        logger.error("WALLET BALANCE 500 TRACEBACK:\n%s", traceback.format_exc())
        raise InternalError("Internal server error")


@router.get("/transactions")
def wallet_transactions(limit: int = Query(20, ge=1, le=20), db: Session = Depends(get_db)):
    transactions = payroll_transactions(db, limit)
    return {"success": True, "data": {"transactions": transactions, "total": len(transactions)}}
