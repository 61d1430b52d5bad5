"""
Service wiring for the routers.

Each collaborator (settings, ledger, AI client, estimator, notifier, runner)
is produced by a small dependency function so tests can replace it through
app.dependency_overrides.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends

from app.config import Settings, load_settings
from app.services.gemini import GeminiClient
from app.services.ledger import ArcLedger, Ledger
from app.services.payroll_calculator import PayrollEstimator, build_estimator
from app.services.payroll_run import PayrollRunner
from app.services.paystub import LoggingPaystubNotifier, PaystubNotifier


def get_settings() -> Settings:
    return load_settings()


@lru_cache
def _build_ledger(settings: Settings) -> Ledger:
    # raises NotConfigured (503) when the RPC url, key or USDC address is missing
    return ArcLedger(
        rpc_url=settings.arc_rpc_url,
        private_key=settings.payer_private_key,
        usdc_address=settings.usdc_contract_address,
        batch_payer_address=settings.batch_payer_address,
        chain_id=settings.arc_chain_id,
    )


def get_ledger(settings: Settings = Depends(get_settings)) -> Ledger:
    return _build_ledger(settings)


@lru_cache
def _build_gemini(api_key: str, model: str, timeout: float) -> GeminiClient:
    return GeminiClient(api_key, model=model, timeout=timeout)


def get_gemini_client(settings: Settings = Depends(get_settings)) -> Optional[GeminiClient]:
    """None when GEMINI_API_KEY is unset."""
    if not settings.gemini_api_key:
        return None
    return _build_gemini(settings.gemini_api_key, settings.gemini_model, settings.gemini_timeout)


def get_payroll_estimator(
    settings: Settings = Depends(get_settings),
    gemini: Optional[GeminiClient] = Depends(get_gemini_client),
) -> PayrollEstimator:
    return build_estimator(
        tax_rate=settings.tax_rate,
        overtime_multiplier=settings.overtime_multiplier,
        gemini=gemini,
    )


def get_paystub_notifier() -> PaystubNotifier:
    return LoggingPaystubNotifier()


def get_payroll_runner(
    settings: Settings = Depends(get_settings),
    ledger: Ledger = Depends(get_ledger),
    estimator: PayrollEstimator = Depends(get_payroll_estimator),
    notifier: PaystubNotifier = Depends(get_paystub_notifier),
) -> PayrollRunner:
    return PayrollRunner(ledger, estimator, notifier, settings)
