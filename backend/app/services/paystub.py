"""
Pay stub notifications sent after a confirmed batch payment.

Delivery is by log line: there is no mail transport on the test network. A
notifier only has to implement send(PayStub); failures never touch the run.
"""
import logging
from dataclasses import dataclass

from app.services.payroll_calculator import PayrollResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayStub:
    to: str
    subject: str
    body: str


def render_paystub(
    *,
    employee_name: str,
    email: str,
    wallet_address: str,
    result: PayrollResult,
    tx_hash: str,
    explorer_url: str,
) -> PayStub:
    lines = [
        f"Hello {employee_name}!",
        "",
        "Your payroll for this period has been processed and paid in USDC.",
        "",
        f"Pay period:       {result.pay_period}",
        f"Base pay:         ${result.base_pay:,.2f}",
        f"Hours worked:     {result.hours_worked:g} hours",
        f"Overtime hours:   {result.ot_hours:g} hours",
        f"Overtime pay:     ${result.ot_pay:,.2f}",
        f"Gross pay:        ${result.gross_pay:,.2f}",
        f"Tax (estimated): -${result.total_tax_estimated:,.2f}",
        f"Net pay:          ${result.net_pay:,.2f} USDC",
        "",
        f"Transaction: {tx_hash}",
        f"Wallet:      {wallet_address}",
        f"Explorer:    {explorer_url}",
        "",
        "This is an automated message from Paystream AI.",
    ]
    return PayStub(
        to=email,
        subject=f"Your Paystream AI Pay Stub - ${result.net_pay:.2f} USDC",
        body="\n".join(lines),
    )


class PaystubNotifier:
    def send(self, stub: PayStub) -> None:
        raise NotImplementedError


class LoggingPaystubNotifier(PaystubNotifier):
    def send(self, stub: PayStub) -> None:
        logger.info("Pay stub for %s | %s\n%s", stub.to, stub.subject, stub.body)
