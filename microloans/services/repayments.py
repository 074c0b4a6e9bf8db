"""Repayment allocation against a disbursed loan's installments.

Allocation is strict FIFO by due date. The walk itself is the pure
:func:`allocate_payment`; :func:`apply_payment` wraps it with the locking,
persistence and balance recomputation that must commit together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from microloans.api import deps
from microloans.core.settings import LedgerPostingConfig, settings
from microloans.models.loan import Loan
from microloans.models.loan_installment import LoanInstallment
from microloans.models.loan_payment import LoanPayment, LoanPaymentAllocation
from microloans.schemas.loan import InstallmentStatus, LoanStatus, PaymentSourceType
from microloans.services import ledger_posting, loan_ledger, notifications
from microloans.services.amortization import TWOPLACES, _as_decimal
from microloans.services.audit import model_snapshot, record_audit_log
from microloans.services.exceptions import (
    InsufficientRepaymentData,
    InvalidLoanState,
    LoanValidationError,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class InstallmentAllocation:
    installment: LoanInstallment
    amount: Decimal


@dataclass
class PaymentOutcome:
    loan: Loan
    payment: LoanPayment
    allocations: list[LoanPaymentAllocation] = field(default_factory=list)


def allocate_payment(
    installments: Sequence[LoanInstallment],
    amount: Decimal,
    *,
    paid_on: date,
) -> tuple[list[InstallmentAllocation], Decimal]:
    """Spread ``amount`` over ``installments`` oldest first.

    Mutates ``paid_amount``/``status``/``paid_at`` on the installments it
    touches and returns the allocations plus whatever could not be placed.
    """
    remaining = _as_decimal(amount)
    allocations: list[InstallmentAllocation] = []
    ordered = sorted(installments, key=lambda inst: (inst.due_date, inst.installment_number))
    for installment in ordered:
        if remaining <= 0:
            break
        unpaid = installment.unpaid_amount
        if unpaid <= 0:
            continue
        applied = min(remaining, unpaid)
        installment.paid_amount = installment.paid_amount + applied
        remaining -= applied
        if installment.paid_amount >= installment.scheduled_amount:
            installment.status = InstallmentStatus.PAID.value
            installment.paid_at = paid_on
        allocations.append(InstallmentAllocation(installment=installment, amount=applied))
    return allocations, remaining


def outstanding_balance(installments: Sequence[LoanInstallment]) -> Decimal:
    balance = sum(
        (inst.unpaid_amount for inst in installments),
        ZERO,
    )
    return max(balance, ZERO)


async def apply_payment(
    db: AsyncSession,
    loan_id: UUID,
    amount,
    *,
    payment_date: date | None = None,
    source_type: PaymentSourceType | str = PaymentSourceType.MANUAL,
    reference: str | None = None,
    actor: deps.Actor | None = None,
    notifier: notifications.Notifier | None = None,
    ledger_config: LedgerPostingConfig | None = None,
    reject_overpayments: bool | None = None,
) -> PaymentOutcome:
    amount = _validate_amount(amount)
    messages: list[notifications.NotificationMessage] = []
    async with loan_ledger.unit_of_work(db):
        loan = await loan_ledger.get_loan(db, loan_id, for_update=True)
        outcome = await _apply_to_loan(
            db,
            loan,
            amount,
            payment_date=payment_date,
            source_type=source_type,
            reference=reference,
            actor=actor,
            ledger_config=ledger_config,
            reject_overpayments=reject_overpayments,
            messages=messages,
        )
    await db.refresh(outcome.payment)
    await notifications.dispatch(messages, notifier)
    return outcome


async def apply_member_payment(
    db: AsyncSession,
    member_id: UUID,
    amount,
    *,
    payment_date: date | None = None,
    source_type: PaymentSourceType | str = PaymentSourceType.PAYROLL,
    reference: str | None = None,
    actor: deps.Actor | None = None,
    notifier: notifications.Notifier | None = None,
    ledger_config: LedgerPostingConfig | None = None,
    reject_overpayments: bool | None = None,
) -> PaymentOutcome:
    """Apply a payment that only identifies the member (payroll or bank feed)."""
    amount = _validate_amount(amount)
    messages: list[notifications.NotificationMessage] = []
    async with loan_ledger.unit_of_work(db):
        await loan_ledger.get_member(db, member_id)
        loan = await loan_ledger.get_latest_disbursed_loan(db, member_id, for_update=True)
        outcome = await _apply_to_loan(
            db,
            loan,
            amount,
            payment_date=payment_date,
            source_type=source_type,
            reference=reference,
            actor=actor,
            ledger_config=ledger_config,
            reject_overpayments=reject_overpayments,
            messages=messages,
        )
    await db.refresh(outcome.payment)
    await notifications.dispatch(messages, notifier)
    return outcome


def _validate_amount(amount) -> Decimal:
    value = _as_decimal(amount)
    if value <= 0:
        raise LoanValidationError(
            "Payment amount must be greater than zero",
            details={"field": "amount", "constraint": "value > 0", "value": str(value)},
        )
    if value != value.quantize(TWOPLACES):
        raise LoanValidationError(
            "Payment amount cannot have more than two decimal places",
            details={"field": "amount", "value": str(value)},
        )
    return value


async def _apply_to_loan(
    db: AsyncSession,
    loan: Loan,
    amount: Decimal,
    *,
    payment_date: date | None,
    source_type: PaymentSourceType | str,
    reference: str | None,
    actor: deps.Actor | None,
    ledger_config: LedgerPostingConfig | None,
    reject_overpayments: bool | None,
    messages: list[notifications.NotificationMessage],
) -> PaymentOutcome:
    status = LoanStatus(loan.status)
    if status in (LoanStatus.REJECTED, LoanStatus.REPAID):
        raise InvalidLoanState(
            f"Loan is already {status.value}",
            details={"loan_id": str(loan.id), "status": status.value},
        )
    if status != LoanStatus.DISBURSED:
        raise InsufficientRepaymentData(
            "Loan has not been disbursed",
            details={"loan_id": str(loan.id), "status": status.value},
        )

    installments = await loan_ledger.list_installments(db, loan.id, for_update=True)
    if not installments:
        raise InsufficientRepaymentData(
            "Loan has no repayment schedule",
            details={"loan_id": str(loan.id)},
        )

    if reject_overpayments is None:
        reject_overpayments = settings.reject_overpayments
    outstanding = outstanding_balance(installments)
    if reject_overpayments and amount > outstanding:
        raise LoanValidationError(
            "Payment exceeds the outstanding balance",
            details={"loan_id": str(loan.id), "amount": str(amount), "outstanding": str(outstanding)},
        )

    old_snapshot = model_snapshot(loan)
    paid_on = payment_date or datetime.now(timezone.utc).date()
    placed, unallocated = allocate_payment(installments, amount, paid_on=paid_on)
    if unallocated > 0:
        logger.warning(
            "Payment on loan %s exceeds outstanding balance; %s left unallocated",
            loan.id,
            unallocated,
        )

    payment = await loan_ledger.record_payment(
        db,
        LoanPayment(
            loan_id=loan.id,
            member_id=loan.member_id,
            amount=amount,
            allocated_amount=amount - unallocated,
            unallocated_amount=unallocated,
            payment_date=paid_on,
            source_type=PaymentSourceType(source_type).value,
            reference=reference,
            recorded_by_user_id=actor.user_id if actor else None,
        ),
    )
    allocation_rows = [
        LoanPaymentAllocation(payment_id=payment.id, installment_id=item.installment.id, amount=item.amount)
        for item in placed
    ]
    await loan_ledger.record_allocations(db, allocation_rows)
    ledger_posting.post_repayment(db, payment, config=ledger_config or settings.ledger)

    loan.remaining_amount = outstanding_balance(installments)
    if loan.remaining_amount <= 0:
        loan.remaining_amount = ZERO
        await loan_ledger.update_status(db, loan, LoanStatus.REPAID)
        member = await loan_ledger.get_member(db, loan.member_id)
        if member.user_id is not None:
            messages.append(
                notifications.NotificationMessage(
                    user_id=member.user_id,
                    title="Loan Repaid",
                    message="Your loan has been fully repaid.",
                    notification_type=notifications.LOAN_STATUS_UPDATE,
                )
            )
    db.add(loan)

    record_audit_log(
        db,
        actor_id=actor.user_id if actor else None,
        action="loan.payment",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value=old_snapshot,
        new_value=model_snapshot(loan),
    )
    logger.info(
        "Payment %s applied to loan %s: allocated=%s installments=%s remaining=%s status=%s",
        payment.id,
        loan.id,
        payment.allocated_amount,
        len(allocation_rows),
        loan.remaining_amount,
        loan.status,
    )
    return PaymentOutcome(loan=loan, payment=payment, allocations=allocation_rows)
