"""
Runtime settings for the Paystream API.

Everything is read from the environment (backend/.env is loaded first) into a
single frozen Settings object. Routers and services receive it through
app.dependencies.get_settings so tests can swap it out.
"""
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env", override=True)

DEFAULT_EXPLORER_TX_URL = "https://testnet.arcscan.app/tx/{tx_hash}"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value or default


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = _env(name)
    return float(raw) if raw is not None else default


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = _env(name)
    return int(raw) if raw is not None else default


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    # ledger
    arc_rpc_url: Optional[str] = None
    arc_chain_id: Optional[int] = None
    payer_private_key: Optional[str] = None
    usdc_contract_address: Optional[str] = None
    batch_payer_address: Optional[str] = None
    explorer_tx_url: str = DEFAULT_EXPLORER_TX_URL
    tx_confirmation_timeout: float = 120.0

    # AI
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    gemini_timeout: float = 30.0

    # payroll rules
    default_pay_period: str = "biweekly"
    tax_rate: float = 0.20
    overtime_multiplier: float = 1.5
    test_total_cap: Optional[float] = None
    stale_run_seconds: int = 3600

    cors_origins: tuple[str, ...] = ("http://localhost:3000",)

    @classmethod
    def from_env(cls) -> "Settings":
        batch_payer = _env("BATCH_PAYER_ADDRESS")
        if batch_payer == "NOT_DEPLOYED":
            batch_payer = None

        return cls(
            arc_rpc_url=_env("ARC_RPC_URL"),
            arc_chain_id=_env_int("ARC_CHAIN_ID", None),
            payer_private_key=_env("ETHER_PRIVATE_KEY"),
            usdc_contract_address=_env("USDC_CONTRACT_ADDRESS"),
            batch_payer_address=batch_payer,
            explorer_tx_url=_env("ARC_EXPLORER_TX_URL", DEFAULT_EXPLORER_TX_URL),
            tx_confirmation_timeout=_env_float("TX_CONFIRMATION_TIMEOUT", 120.0),
            gemini_api_key=_env("GEMINI_API_KEY"),
            gemini_model=_env("GEMINI_MODEL", "gemini-2.0-flash"),
            gemini_timeout=_env_float("GEMINI_TIMEOUT", 30.0),
            default_pay_period=_env("PAYROLL_DEFAULT_PAY_PERIOD", "biweekly"),
            tax_rate=_env_float("PAYROLL_TAX_RATE", 0.20),
            overtime_multiplier=_env_float("PAYROLL_OVERTIME_MULTIPLIER", 1.5),
            test_total_cap=_env_float("PAYROLL_TEST_TOTAL_CAP", None),
            stale_run_seconds=_env_int("PAYROLL_STALE_RUN_SECONDS", 3600),
            cors_origins=tuple(
                o.strip() for o in _env("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()
            ),
        )

    def explorer_url_for(self, tx_hash: str) -> str:
        return self.explorer_tx_url.format(tx_hash=tx_hash)


@lru_cache
def load_settings() -> Settings:
    return Settings.from_env()
