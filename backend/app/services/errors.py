"""
Payroll run error taxonomy.

Every error that can end a run derives from PayrollError and knows how it is
rendered to the caller (see main.py exception handler). Errors raised before
the transaction is submitted leave no side effects and are safe to retry once
the underlying condition is fixed. DisbursementFailed and its subclass mark the
irreversible boundary: never resubmit the same batch automatically.
"""
from typing import Optional


class PayrollError(Exception):
    code = "PAYROLL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict:
        payload = {"success": False, "error": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class DataUnavailable(PayrollError):
    code = "DATA_UNAVAILABLE"
    status_code = 503


class BalanceUnavailable(DataUnavailable):
    code = "BALANCE_UNAVAILABLE"


class NotConfigured(PayrollError):
    code = "NOT_CONFIGURED"
    status_code = 503


class InternalError(PayrollError):
    code = "INTERNAL_ERROR"
    status_code = 500


class RunInProgress(PayrollError):
    code = "RUN_IN_PROGRESS"
    status_code = 409


class RunNotFound(PayrollError):
    code = "RUN_NOT_FOUND"
    status_code = 404


class InvalidRecipient(PayrollError):
    code = "INVALID_RECIPIENT"
    status_code = 400


class InsufficientBalance(PayrollError):
    code = "INSUFFICIENT_BALANCE"
    status_code = 400

    def __init__(self, required: float, available: float, employee_count: int):
        self.required = round(required, 2)
        self.available = round(available, 2)
        self.shortfall = round(required - available, 2)
        self.employee_count = employee_count
        super().__init__(
            f"Insufficient USDC balance. Need ${self.required:.2f}, have ${self.available:.2f}. "
            f"Shortfall: ${self.shortfall:.2f}",
            details={
                "required": self.required,
                "available": self.available,
                "shortfall": self.shortfall,
                "employeeCount": employee_count,
            },
        )


class DisbursementFailed(PayrollError):
    code = "DISBURSEMENT_FAILED"
    status_code = 502

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message, details={"tx": tx_hash} if tx_hash else None)


class DisbursementOutcomeUnknown(DisbursementFailed):
    """The transaction may still land. Reconcile the run before paying again."""

    code = "DISBURSEMENT_OUTCOME_UNKNOWN"
    status_code = 504


class EstimateUnavailable(Exception):
    """AI-assisted estimate could not be used; callers fall back to the rules."""
