from pydantic import AfterValidator, BaseModel, EmailStr, Field
from typing import Annotated, Literal, Optional
from datetime import datetime
from decimal import Decimal

from app.services.ledger import is_address

EmployeeStatus = Literal["pending", "paid", "active", "inactive"]


def _check_wallet(v: str) -> Optional[str]:
    v = v.strip()
    if not v:
        return None
    if not is_address(v):
        raise ValueError("wallet_address must be a 0x-prefixed 20-byte hex address")
    return v


WalletAddress = Annotated[str, AfterValidator(_check_wallet)]


class EmployeeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    wallet_id: Optional[str] = None
    wallet_address: Optional[WalletAddress] = None
    salary_usd: Optional[Decimal] = Field(default=None, ge=0)
    role: Optional[str] = None
    department: Optional[str] = None
    status: EmployeeStatus = "pending"


class EmployeeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    wallet_id: Optional[str] = None
    wallet_address: Optional[WalletAddress] = None
    salary_usd: Optional[Decimal] = Field(default=None, ge=0)
    role: Optional[str] = None
    department: Optional[str] = None
    status: Optional[EmployeeStatus] = None


class EmployeeResponse(BaseModel):
    id: int
    name: str
    email: str
    wallet_id: Optional[str] = None
    wallet_address: Optional[str] = None
    salary_usd: Optional[float] = None
    role: Optional[str] = None
    department: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    id: int
    run_id: int
    employee_id: int
    wallet_address: str
    amount: float
    pay_period: str
    tx_hash: str
    explorer_url: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
