import os
import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv(dotenv_path=Path(__file__).parent / ".env", override=True)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

from app.config import load_settings
from app.services.errors import PayrollError
from app.routers.payroll import router as payroll_router
from app.routers.employees import router as employees_router, payments_router
from app.routers.wallet import router as wallet_router
from app.routers.analytics import router as analytics_router
from app.routers.penny import router as penny_router

app = FastAPI(title="Paystream AI API")

app.include_router(payroll_router)
app.include_router(employees_router)
app.include_router(payments_router)
app.include_router(wallet_router)
app.include_router(analytics_router)
app.include_router(penny_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(load_settings().cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PayrollError)
async def payroll_error_handler(request: Request, exc: PayrollError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.get("/health")
def health():
    return {"ok": True}
