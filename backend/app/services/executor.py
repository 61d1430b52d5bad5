"""
Batch disbursement: one batchPay transaction that pays every recipient at once.

All preconditions are checked before anything is signed, so a bad recipient
aborts the whole batch with no partial submission. Atomicity of the payment
itself is the ledger's: the contract call either pays everyone or no one.
Nothing here retries a submission.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from app.services.errors import (
    DisbursementFailed,
    DisbursementOutcomeUnknown,
    InvalidRecipient,
    NotConfigured,
)
from app.services.ledger import (
    Ledger,
    LedgerError,
    LedgerRejected,
    LedgerUnreachable,
    from_base_units,
    is_address,
    to_base_units,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchPaymentEmployee:
    id: int
    employee_id: str
    wallet_address: Optional[str]
    net_pay: float


@dataclass(frozen=True)
class PreparedBatch:
    recipients: list[str]
    amounts: list[int]
    total: int


@dataclass(frozen=True)
class BatchPaymentResult:
    tx_hash: str
    total_paid: float
    employee_count: int
    explorer_url: str
    block_number: int
    gas_used: str

    def to_dict(self) -> dict:
        return {
            "txHash": self.tx_hash,
            "totalPaid": round(self.total_paid, 6),
            "employeeCount": self.employee_count,
            "explorerUrl": self.explorer_url,
            "blockNumber": self.block_number,
            "gasUsed": self.gas_used,
        }


def prepare_batch(employees: list[BatchPaymentEmployee]) -> PreparedBatch:
    if not employees:
        raise InvalidRecipient("No employees to pay")

    recipients = []
    amounts = []
    for emp in employees:
        if not emp.wallet_address:
            raise InvalidRecipient(f"Employee {emp.employee_id} has no wallet address")
        if not is_address(emp.wallet_address):
            raise InvalidRecipient(f"Invalid wallet address for {emp.employee_id}: {emp.wallet_address}")
        units = to_base_units(emp.net_pay)
        if emp.net_pay <= 0 or units <= 0:
            raise InvalidRecipient(f"Invalid payment amount for {emp.employee_id}: {emp.net_pay}")
        recipients.append(emp.wallet_address)
        amounts.append(units)

    # the contract splits msg.value by amounts, so the total is their exact sum
    return PreparedBatch(recipients=recipients, amounts=amounts, total=sum(amounts))


class BatchDisbursementExecutor:
    def __init__(self, ledger: Ledger, explorer_url_for: Callable[[str], str], confirmation_timeout: float = 120.0):
        self.ledger = ledger
        self.explorer_url_for = explorer_url_for
        self.confirmation_timeout = confirmation_timeout

    def ensure_ready(self) -> None:
        if not self.ledger.has_batch_payer:
            raise NotConfigured("BatchPayer contract not deployed. Set BATCH_PAYER_ADDRESS.")

    def execute(
        self,
        employees: list[BatchPaymentEmployee],
        on_submitted: Optional[Callable[[str, PreparedBatch], None]] = None,
    ) -> BatchPaymentResult:
        """Submit one batchPay and wait (bounded) for its receipt.

        `on_submitted(tx_hash, batch)` runs as soon as the transaction hash is
        known, before waiting, so callers can persist it for reconciliation.
        """
        self.ensure_ready()
        batch = prepare_batch(employees)

        logger.info(
            "Executing batch payment: employees=%d total=%.6f USDC",
            len(batch.recipients), from_base_units(batch.total),
        )

        try:
            tx_hash = self.ledger.submit_batch_pay(batch.recipients, batch.amounts, batch.total)
        except LedgerUnreachable as e:
            logger.error("Batch payment broadcast outcome unknown (tx=%s): %s", e.tx_hash, e)
            if e.tx_hash and on_submitted:
                on_submitted(e.tx_hash, batch)
            raise DisbursementOutcomeUnknown(
                f"Batch payment may have been broadcast: {e}. Reconcile before retrying.",
                tx_hash=e.tx_hash,
            )
        except LedgerRejected as e:
            logger.error("Batch payment rejected: %s", e)
            raise DisbursementFailed(f"Batch payment execution failed: {e}")

        logger.info("Batch payment submitted: tx=%s, waiting for confirmation", tx_hash)
        if on_submitted:
            on_submitted(tx_hash, batch)

        try:
            receipt = self.ledger.wait_for_receipt(tx_hash, self.confirmation_timeout)
        except LedgerError as e:
            logger.error("Batch payment %s unconfirmed: %s", tx_hash, e)
            raise DisbursementOutcomeUnknown(
                f"Batch payment {tx_hash} not confirmed: {e}. Reconcile before retrying.",
                tx_hash=tx_hash,
            )

        if not receipt.succeeded:
            logger.error("Batch payment %s reverted in block %s", tx_hash, receipt.block_number)
            raise DisbursementFailed(
                f"Batch payment execution failed: transaction reverted in block {receipt.block_number}",
                tx_hash=tx_hash,
            )

        logger.info("Batch payment confirmed: tx=%s block=%s gas=%s", tx_hash, receipt.block_number, receipt.gas_used)
        return BatchPaymentResult(
            tx_hash=tx_hash,
            total_paid=from_base_units(batch.total),
            employee_count=len(batch.recipients),
            explorer_url=self.explorer_url_for(tx_hash),
            block_number=receipt.block_number,
            gas_used=str(receipt.gas_used),
        )
