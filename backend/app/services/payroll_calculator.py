"""
Payroll calculation for one employee and one pay period.

Rule-based formulas (the reference implementation):
  hourly_rate  = salary_annual / 2080
  base_pay     = salary_annual / periods_per_year         (covers normalized hours)
  ot_hours     = max(0, hours - normalized_hours)
  ot_pay       = ot_hours * hourly_rate * overtime_multiplier
  gross_pay    = base_pay + ot_pay
  tax          = gross_pay * tax_rate
  net_pay      = gross_pay - tax

Values are kept unrounded; rounding to cents happens only in to_dict(), and
on-chain amounts are derived from the unrounded net pay.

Estimators share one method, estimate(PayrollInput) -> PayrollResult:
  RuleBasedEstimator       deterministic formulas above
  GeminiPayrollEstimator   asks the AI endpoint, validates, raises EstimateUnavailable
  FallbackEstimator        tries a primary, falls back to the rules on any failure
"""
import json
import logging
import re
from dataclasses import dataclass, replace
from typing import Optional

from app.services.errors import EstimateUnavailable
from app.services.gemini import GeminiClient, GeminiError

logger = logging.getLogger(__name__)

STANDARD_ANNUAL_HOURS = 2080
PAY_PERIODS = {
    "weekly": 52,
    "biweekly": 26,
    "semimonthly": 24,
    "monthly": 12,
}

DEFAULT_TAX_RATE = 0.20
DEFAULT_OVERTIME_MULTIPLIER = 1.5

# tolerance when checking AI figures against each other and against the rules
_CENT = 0.01


def periods_per_year(pay_period: str) -> int:
    try:
        return PAY_PERIODS[pay_period]
    except KeyError:
        raise ValueError(f"Unsupported pay period: {pay_period}")


def normalized_hours(pay_period: str) -> float:
    return STANDARD_ANNUAL_HOURS / periods_per_year(pay_period)


@dataclass(frozen=True)
class PayrollInput:
    employee_id: str
    employee_name: str
    salary_annual: float
    hours_this_period: float
    pay_period: str = "biweekly"


@dataclass(frozen=True)
class PayrollResult:
    employee_id: str
    employee_name: str
    base_pay: float
    hours_worked: float
    ot_hours: float
    ot_pay: float
    gross_pay: float
    total_tax_estimated: float
    net_pay: float
    pay_period: str
    source: str = "rules"

    def to_dict(self) -> dict:
        return {
            "employee_id": self.employee_id,
            "employee_name": self.employee_name,
            "base_pay": round(self.base_pay, 2),
            "hours_worked": round(self.hours_worked, 2),
            "ot_hours": round(self.ot_hours, 2),
            "ot_pay": round(self.ot_pay, 2),
            "gross_pay": round(self.gross_pay, 2),
            "total_tax_estimated": round(self.total_tax_estimated, 2),
            "net_pay": round(self.net_pay, 2),
            "pay_period": self.pay_period,
            "source": self.source,
        }


def calculate_payroll(
    inp: PayrollInput,
    *,
    tax_rate: float = DEFAULT_TAX_RATE,
    overtime_multiplier: float = DEFAULT_OVERTIME_MULTIPLIER,
) -> PayrollResult:
    """Deterministic payroll. Pure: identical inputs always give identical output."""
    periods = periods_per_year(inp.pay_period)
    salary = max(0.0, float(inp.salary_annual or 0))
    hours = max(0.0, float(inp.hours_this_period or 0))

    hourly_rate = salary / STANDARD_ANNUAL_HOURS
    base_pay = salary / periods
    ot_hours = max(0.0, hours - STANDARD_ANNUAL_HOURS / periods)
    ot_pay = ot_hours * hourly_rate * overtime_multiplier
    gross_pay = base_pay + ot_pay
    tax = gross_pay * tax_rate

    return PayrollResult(
        employee_id=inp.employee_id,
        employee_name=inp.employee_name,
        base_pay=base_pay,
        hours_worked=hours,
        ot_hours=ot_hours,
        ot_pay=ot_pay,
        gross_pay=gross_pay,
        total_tax_estimated=tax,
        net_pay=gross_pay - tax,
        pay_period=inp.pay_period,
        source="rules",
    )


def apply_test_total_cap(results: list[PayrollResult], cap: float) -> list[PayrollResult]:
    """Test mode: replace computed pay with an even split of a fixed run total."""
    if not results:
        return []
    share = cap / len(results)
    capped = []
    for r in results:
        capped.append(replace(
            r,
            base_pay=share,
            hours_worked=normalized_hours(r.pay_period),
            ot_hours=0.0,
            ot_pay=0.0,
            gross_pay=share,
            total_tax_estimated=0.0,
            net_pay=share,
            source="test_cap",
        ))
    return capped


class PayrollEstimator:
    def estimate(self, inp: PayrollInput) -> PayrollResult:
        raise NotImplementedError


class RuleBasedEstimator(PayrollEstimator):
    def __init__(self, tax_rate: float = DEFAULT_TAX_RATE, overtime_multiplier: float = DEFAULT_OVERTIME_MULTIPLIER):
        self.tax_rate = tax_rate
        self.overtime_multiplier = overtime_multiplier

    def estimate(self, inp: PayrollInput) -> PayrollResult:
        return calculate_payroll(inp, tax_rate=self.tax_rate, overtime_multiplier=self.overtime_multiplier)


PAYROLL_SYSTEM_PROMPT = """You are a payroll calculation engine for a US company paying salaries in USDC.

Rules:
- Standard year is 2080 hours. hourly_rate = salary_annual / 2080.
- base_pay = salary_annual / periods_per_year and covers the normalized hours of the period.
- Overtime hours are hours above the normalized hours and are paid at {ot_multiplier}x hourly_rate.
- gross_pay = base_pay + ot_pay.
- Estimate total tax withholding at {tax_pct:.0f}% of gross_pay.
- net_pay = gross_pay - total_tax_estimated.

Respond ONLY with valid JSON of this shape, numbers without currency symbols:
{{
  "base_pay": 0,
  "ot_hours": 0,
  "ot_pay": 0,
  "gross_pay": 0,
  "total_tax_estimated": 0,
  "net_pay": 0
}}"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


class GeminiPayrollEstimator(PayrollEstimator):
    """AI-assisted estimate. Any problem surfaces as EstimateUnavailable.

    The answer moves money, so it is only accepted if it is internally
    consistent and its gross pay agrees with the rule-based gross within
    `gross_tolerance` (a fraction of the rule-based gross).
    """

    FIELDS = ("base_pay", "ot_hours", "ot_pay", "gross_pay", "total_tax_estimated", "net_pay")

    def __init__(
        self,
        client: GeminiClient,
        tax_rate: float = DEFAULT_TAX_RATE,
        overtime_multiplier: float = DEFAULT_OVERTIME_MULTIPLIER,
        gross_tolerance: float = 0.01,
    ):
        self.client = client
        self.tax_rate = tax_rate
        self.overtime_multiplier = overtime_multiplier
        self.gross_tolerance = gross_tolerance

    def _prompt(self, inp: PayrollInput) -> str:
        return (
            f"Employee: {inp.employee_name} (id {inp.employee_id})\n"
            f"salary_annual: {inp.salary_annual}\n"
            f"pay_period: {inp.pay_period} ({periods_per_year(inp.pay_period)} periods per year, "
            f"{normalized_hours(inp.pay_period):g} normalized hours)\n"
            f"hours_this_period: {inp.hours_this_period}\n\n"
            "Calculate this employee's pay for the period."
        )

    def _parse(self, text: str) -> dict:
        cleaned = _FENCE_RE.sub("", text.strip()).strip()
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise EstimateUnavailable(f"AI response is not JSON: {e}")
        if not isinstance(data, dict):
            raise EstimateUnavailable("AI response is not a JSON object")

        values = {}
        for field in self.FIELDS:
            try:
                values[field] = float(data[field])
            except (KeyError, TypeError, ValueError):
                raise EstimateUnavailable(f"AI response missing numeric field '{field}'")
            if values[field] < 0:
                raise EstimateUnavailable(f"AI response has negative '{field}'")
        return values

    def estimate(self, inp: PayrollInput) -> PayrollResult:
        system = PAYROLL_SYSTEM_PROMPT.format(
            ot_multiplier=self.overtime_multiplier,
            tax_pct=self.tax_rate * 100,
        )
        try:
            text = self.client.generate(self._prompt(inp), system=system, json_mode=True)
        except GeminiError as e:
            raise EstimateUnavailable(str(e))

        v = self._parse(text)

        if abs(v["base_pay"] + v["ot_pay"] - v["gross_pay"]) > _CENT:
            raise EstimateUnavailable("AI gross_pay != base_pay + ot_pay")
        if abs(v["gross_pay"] - v["total_tax_estimated"] - v["net_pay"]) > _CENT:
            raise EstimateUnavailable("AI net_pay != gross_pay - total_tax_estimated")

        reference = calculate_payroll(inp, tax_rate=self.tax_rate, overtime_multiplier=self.overtime_multiplier)
        allowed = max(_CENT, reference.gross_pay * self.gross_tolerance)
        if abs(v["gross_pay"] - reference.gross_pay) > allowed:
            raise EstimateUnavailable(
                f"AI gross_pay {v['gross_pay']:.2f} disagrees with rules {reference.gross_pay:.2f}"
            )

        return PayrollResult(
            employee_id=inp.employee_id,
            employee_name=inp.employee_name,
            base_pay=v["base_pay"],
            hours_worked=float(inp.hours_this_period),
            ot_hours=v["ot_hours"],
            ot_pay=v["ot_pay"],
            gross_pay=v["gross_pay"],
            total_tax_estimated=v["total_tax_estimated"],
            net_pay=v["net_pay"],
            pay_period=inp.pay_period,
            source="ai",
        )


class FallbackEstimator(PayrollEstimator):
    def __init__(self, primary: PayrollEstimator, fallback: PayrollEstimator):
        self.primary = primary
        self.fallback = fallback

    def estimate(self, inp: PayrollInput) -> PayrollResult:
        try:
            return self.primary.estimate(inp)
        except Exception as e:
            logger.warning(
                "Payroll estimate fallback for employee %s (%s): %s",
                inp.employee_id, inp.employee_name, e,
            )
            return self.fallback.estimate(inp)


def build_estimator(
    *,
    tax_rate: float,
    overtime_multiplier: float,
    gemini: Optional[GeminiClient] = None,
) -> PayrollEstimator:
    rules = RuleBasedEstimator(tax_rate=tax_rate, overtime_multiplier=overtime_multiplier)
    if gemini is None:
        return rules
    return FallbackEstimator(
        GeminiPayrollEstimator(gemini, tax_rate=tax_rate, overtime_multiplier=overtime_multiplier),
        rules,
    )
