"""Sequential role-based loan approval.

The chain is an ordered list of roles. A loan's position in it is the
approval order of its newest log row, so the next approver is always
``APPROVAL_CHAIN[last_order]``; anything else is out of order.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from microloans.api import deps
from microloans.core.settings import LedgerPostingConfig, settings
from microloans.models.loan import Loan
from microloans.models.loan_approval_log import LoanApprovalLog
from microloans.models.loan_installment import LoanInstallment
from microloans.schemas.loan import (
    ApprovalDecision,
    InstallmentStatus,
    LoanStatus,
    UserRole,
)
from microloans.services import amortization, ledger_posting, loan_ledger, notifications
from microloans.services.audit import model_snapshot, record_audit_log
from microloans.services.exceptions import ApprovalOutOfOrder, InvalidLoanState

logger = logging.getLogger(__name__)


APPROVAL_CHAIN: tuple[UserRole, ...] = (
    UserRole.LOAN_OFFICER,
    UserRole.BRANCH_MANAGER,
    UserRole.REGIONAL_MANAGER,
    UserRole.FINANCE_ADMIN,
)

TERMINAL_STATUSES = frozenset({LoanStatus.DISBURSED, LoanStatus.REJECTED, LoanStatus.REPAID})

APPROVED_STATUS_BY_ROLE = {
    UserRole.LOAN_OFFICER: LoanStatus.VERIFIED,
    UserRole.BRANCH_MANAGER: LoanStatus.VERIFIED,
    UserRole.REGIONAL_MANAGER: LoanStatus.APPROVED,
    UserRole.FINANCE_ADMIN: LoanStatus.DISBURSED,
}


def role_rank(role: UserRole | str) -> int:
    role = UserRole(role)
    if role == UserRole.MEMBER:
        return 0
    return APPROVAL_CHAIN.index(role) + 1


def next_expected_role(status: LoanStatus | str, last_approval_order: int) -> UserRole | None:
    if LoanStatus(status) in TERMINAL_STATUSES:
        return None
    if last_approval_order < 0 or last_approval_order >= len(APPROVAL_CHAIN):
        return None
    return APPROVAL_CHAIN[last_approval_order]


def resulting_status(role: UserRole | str, decision: ApprovalDecision | str) -> LoanStatus:
    if ApprovalDecision(decision) == ApprovalDecision.REJECT:
        return LoanStatus.REJECTED
    return APPROVED_STATUS_BY_ROLE[UserRole(role)]


async def submit_approval(
    db: AsyncSession,
    loan_id: UUID,
    actor: deps.Actor,
    decision: ApprovalDecision | str,
    comments: str | None = None,
    *,
    notifier: notifications.Notifier | None = None,
    ledger_config: LedgerPostingConfig | None = None,
) -> Loan:
    decision = ApprovalDecision(decision)
    actor_role = UserRole(actor.role)
    messages: list[notifications.NotificationMessage] = []

    async with loan_ledger.unit_of_work(db):
        loan = await loan_ledger.get_loan(db, loan_id, for_update=True)
        current = LoanStatus(loan.status)
        if current in TERMINAL_STATUSES:
            raise InvalidLoanState(
                f"Loan is already {current.value}",
                details={"loan_id": str(loan.id), "status": current.value},
            )

        last = await loan_ledger.last_approval(db, loan.id)
        last_order = last.approval_order if last is not None else 0
        expected = next_expected_role(current, last_order)
        if expected is None or actor_role != expected:
            raise ApprovalOutOfOrder(
                "Approval submitted out of order",
                details={
                    "loan_id": str(loan.id),
                    "actor_role": actor_role.value,
                    "expected_role": expected.value if expected else None,
                    "last_approval_order": last_order,
                },
            )

        old_snapshot = model_snapshot(loan)
        new_status = resulting_status(actor_role, decision)
        if new_status == LoanStatus.DISBURSED:
            await _disburse(db, loan, ledger_config=ledger_config or settings.ledger)
        await loan_ledger.update_status(db, loan, new_status)
        await loan_ledger.append_approval(
            db,
            LoanApprovalLog(
                loan_id=loan.id,
                actor_user_id=actor.user_id,
                actor_role=actor_role.value,
                decision=decision.value,
                status=new_status.value,
                approval_order=role_rank(actor_role),
                comments=comments,
            ),
        )
        record_audit_log(
            db,
            actor_id=actor.user_id,
            action=f"loan.{new_status.value.lower()}",
            resource_type="loan",
            resource_id=str(loan.id),
            old_value=old_snapshot,
            new_value=model_snapshot(loan),
        )

        member = await loan_ledger.get_member(db, loan.member_id)
        if member.user_id is not None:
            messages.append(
                notifications.NotificationMessage(
                    user_id=member.user_id,
                    title="Loan Status Update",
                    message=f"Your loan application status has been updated to {new_status.value}.",
                    notification_type=notifications.LOAN_STATUS_UPDATE,
                )
            )
        if new_status == LoanStatus.APPROVED:
            for admin_id in await notifications.staff_user_ids(db, UserRole.FINANCE_ADMIN):
                messages.append(
                    notifications.NotificationMessage(
                        user_id=admin_id,
                        title="Loan Ready for Disbursement",
                        message=f"Loan {loan.id} has been approved and is ready for disbursement.",
                        notification_type=notifications.LOAN_DISBURSEMENT_READY,
                    )
                )

    logger.info(
        "Loan %s %s by %s; status=%s",
        loan.id,
        decision.value,
        actor_role.value,
        loan.status,
    )
    await notifications.dispatch(messages, notifier)
    return loan


async def _disburse(db: AsyncSession, loan: Loan, *, ledger_config: LedgerPostingConfig) -> None:
    schedule = amortization.compute_schedule(
        loan.amount,
        loan.interest_rate,
        loan.tenure_months,
        loan.repayment_frequency,
    )
    now = datetime.now(timezone.utc)
    disbursed_on = now.date()
    dates = amortization.due_dates(disbursed_on, loan.repayment_frequency, len(schedule.entries))
    installments = [
        LoanInstallment(
            loan_id=loan.id,
            installment_number=entry.period,
            due_date=due_date,
            scheduled_amount=entry.payment,
            principal_amount=entry.principal_portion,
            interest_amount=entry.interest_portion,
            paid_amount=Decimal("0.00"),
            status=InstallmentStatus.PENDING.value,
        )
        for entry, due_date in zip(schedule.entries, dates)
    ]
    await loan_ledger.add_installments(db, installments)

    loan.periodic_payment = schedule.periodic_payment
    loan.total_repayable_amount = schedule.total_payment
    loan.total_interest_amount = schedule.total_interest
    loan.remaining_amount = schedule.total_payment
    loan.disbursed_at = now
    ledger_posting.post_disbursement(db, loan, config=ledger_config, transaction_date=disbursed_on)
    logger.info(
        "Loan %s disbursed: %s installments, total repayable %s",
        loan.id,
        len(installments),
        schedule.total_payment,
    )
