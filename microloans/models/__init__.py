from microloans.models.audit_log import AuditLog
from microloans.models.ledger_transaction import LedgerTransaction
from microloans.models.loan import Loan
from microloans.models.loan_approval_log import LoanApprovalLog
from microloans.models.loan_installment import LoanInstallment
from microloans.models.loan_payment import LoanPayment, LoanPaymentAllocation
from microloans.models.member import Member
from microloans.models.notification import Notification
from microloans.models.user import User

__all__ = [
    "AuditLog",
    "LedgerTransaction",
    "Loan",
    "LoanApprovalLog",
    "LoanInstallment",
    "LoanPayment",
    "LoanPaymentAllocation",
    "Member",
    "Notification",
    "User",
]
