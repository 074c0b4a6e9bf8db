from __future__ import annotations

from typing import Any


class LoanEngineError(ValueError):
    """Base class for errors raised by loan engine operations.

    Each subclass pins the machine readable ``code`` and the HTTP status the
    API layer answers with; ``details`` carries structured context.
    """

    code = "loan_error"
    status_code = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class LoanValidationError(LoanEngineError):
    code = "validation_error"
    status_code = 422


class InvalidLoanState(LoanEngineError):
    code = "invalid_state"
    status_code = 409


class ApprovalOutOfOrder(LoanEngineError):
    code = "out_of_order"
    status_code = 409


class LoanNotFound(LoanEngineError):
    code = "loan_not_found"
    status_code = 404


class MemberNotFound(LoanEngineError):
    code = "member_not_found"
    status_code = 404


class InsufficientRepaymentData(LoanEngineError):
    code = "insufficient_data"
    status_code = 409


class ConcurrentLoanUpdate(LoanEngineError):
    code = "concurrent_update"
    status_code = 409
