from __future__ import annotations

from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from microloans.core.settings import LedgerPostingConfig
from microloans.models.ledger_transaction import LedgerTransaction
from microloans.models.loan import Loan
from microloans.models.loan_payment import LoanPayment
from microloans.schemas.loan import LedgerTransactionType


def post_disbursement(
    db: AsyncSession,
    loan: Loan,
    *,
    config: LedgerPostingConfig,
    transaction_date: date,
) -> LedgerTransaction:
    entry = LedgerTransaction(
        member_id=loan.member_id,
        loan_id=loan.id,
        transaction_type=LedgerTransactionType.LOAN_DISBURSEMENT.value,
        amount=loan.amount,
        currency=config.currency,
        transaction_date=transaction_date,
        debit_account=config.loan_receivable_account,
        credit_account=config.cash_account,
        reference=f"loan:{loan.id}",
    )
    db.add(entry)
    return entry


def post_repayment(
    db: AsyncSession,
    payment: LoanPayment,
    *,
    config: LedgerPostingConfig,
) -> LedgerTransaction:
    entry = LedgerTransaction(
        member_id=payment.member_id,
        loan_id=payment.loan_id,
        transaction_type=LedgerTransactionType.LOAN_REPAYMENT.value,
        amount=payment.amount,
        currency=config.currency,
        transaction_date=payment.payment_date,
        debit_account=config.cash_account,
        credit_account=config.loan_receivable_account,
        reference=payment.reference or f"payment:{payment.id}",
    )
    db.add(entry)
    return entry
