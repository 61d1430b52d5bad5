import logging
import traceback

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import get_db
from app.services.analytics import build_analytics
from app.services.errors import DataUnavailable, InternalError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["Analytics"])


@router.get("")
def analytics(db: Session = Depends(get_db)):
    try:
        return {"success": True, "data": build_analytics(db)}
    except SQLAlchemyError as e:
        logger.error("Analytics query failed: %s", e)
        raise DataUnavailable("Could not load analytics")
    except Exception:
        logger.error("ANALYTICS 500 TRACEBACK:\n%s", traceback.format_exc())
        raise InternalError("Internal server error")
