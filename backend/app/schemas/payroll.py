from pydantic import BaseModel, Field
from typing import Annotated, Literal, Optional

PayPeriod = Literal["weekly", "biweekly", "semimonthly", "monthly"]


class PayrollRunRequest(BaseModel):
    pay_period: Optional[PayPeriod] = None
    # employee id -> hours worked this period; missing ids work the normalized hours
    hours: dict[str, Annotated[float, Field(ge=0, le=744)]] = Field(default_factory=dict)


class PennyRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=4000)
    userId: Optional[str] = None
    userName: Optional[str] = None
