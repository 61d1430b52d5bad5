import logging
import traceback
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_gemini_client
from app.schemas.payroll import PennyRequest
from app.services.errors import InternalError
from app.services.gemini import GeminiClient, GeminiError
from app.services.prompt import assemble_prompt

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Penny"])

APOLOGY = "Sorry, I'm having trouble reaching my payroll brain right now. Please try again in a moment."


@router.post("/api/penny")
def penny(
    req: PennyRequest,
    db: Session = Depends(get_db),
    gemini: Optional[GeminiClient] = Depends(get_gemini_client),
):
    if gemini is None:
        raise HTTPException(status_code=503, detail="AI assistant not configured. Set GEMINI_API_KEY in environment.")

    try:
        system_prompt = assemble_prompt(db=db, user_name=req.userName or "")
        logger.info("penny user=%s  msg_chars=%d  system_chars=%d", req.userId, len(req.prompt), len(system_prompt))

        try:
            text = gemini.generate(req.prompt, system=system_prompt)
        except GeminiError as e:
            logger.error("Penny AI error: %s", e)
            return {"success": True, "data": {"text": APOLOGY}}

        return {"success": True, "data": {"text": text}}

    except HTTPException:
        raise
    except Exception:
        logger.error("PENNY 500 TRACEBACK:\n%s", traceback.format_exc())
        raise InternalError("Internal server error")
