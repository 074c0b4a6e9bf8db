from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from microloans.api import deps
from microloans.core.settings import settings
from microloans.models.loan import Loan
from microloans.models.loan_approval_log import LoanApprovalLog
from microloans.schemas.loan import LoanStatus, RepaymentFrequency, UserRole
from microloans.services import amortization, loan_ledger, notifications
from microloans.services.audit import model_snapshot, record_audit_log
from microloans.services.exceptions import InvalidLoanState, MemberNotFound

logger = logging.getLogger(__name__)


async def apply_for_loan(
    db: AsyncSession,
    actor: deps.Actor,
    member_id: UUID,
    amount,
    interest_rate,
    tenure_months: int,
    repayment_frequency: RepaymentFrequency | str = RepaymentFrequency.MONTHLY,
    remarks: str | None = None,
    *,
    notifier: notifications.Notifier | None = None,
    max_open_loans: int | None = None,
) -> Loan:
    """Create a PENDING loan for a member.

    The terms are run through the calculator up front so an application that
    could never be disbursed is refused here rather than at the last approval.
    """
    frequency = RepaymentFrequency(repayment_frequency)
    schedule = amortization.compute_schedule(amount, interest_rate, tenure_months, frequency)
    limit = max_open_loans if max_open_loans is not None else settings.max_open_loans_per_member
    messages: list[notifications.NotificationMessage] = []

    async with loan_ledger.unit_of_work(db):
        # Locking the member serializes concurrent applications for the open-loan check.
        member = await loan_ledger.get_member(db, member_id, for_update=True)
        if UserRole(actor.role) == UserRole.MEMBER and member.user_id != actor.user_id:
            # Members may only apply for themselves; do not reveal other members.
            raise MemberNotFound("Member not found", details={"member_id": str(member_id)})
        if not member.is_active:
            raise InvalidLoanState(
                "Member is not active",
                details={"member_id": str(member_id)},
            )
        open_loans = await loan_ledger.count_open_loans(db, member_id)
        if open_loans >= limit:
            raise InvalidLoanState(
                "Member already has an open loan",
                details={"member_id": str(member_id), "open_loans": open_loans, "limit": limit},
            )

        loan = await loan_ledger.create_loan(
            db,
            Loan(
                member_id=member_id,
                amount=schedule.principal,
                interest_rate=schedule.annual_rate_percent,
                tenure_months=int(tenure_months),
                repayment_frequency=frequency.value,
                status=LoanStatus.PENDING.value,
                remaining_amount=schedule.principal,
                total_repayable_amount=schedule.total_payment,
                total_interest_amount=schedule.total_interest,
                periodic_payment=schedule.periodic_payment,
                remarks=remarks,
                version=1,
            ),
        )
        await loan_ledger.append_approval(
            db,
            LoanApprovalLog(
                loan_id=loan.id,
                actor_user_id=actor.user_id,
                actor_role=UserRole.MEMBER.value,
                decision=None,
                status=LoanStatus.PENDING.value,
                approval_order=0,
                comments=remarks,
            ),
        )
        record_audit_log(
            db,
            actor_id=actor.user_id,
            action="loan.apply",
            resource_type="loan",
            resource_id=str(loan.id),
            new_value=model_snapshot(loan),
        )

        for officer_id in await notifications.staff_user_ids(db, UserRole.LOAN_OFFICER):
            messages.append(
                notifications.NotificationMessage(
                    user_id=officer_id,
                    title="New Loan Application",
                    message=f"{member.full_name} applied for a loan of {schedule.principal}.",
                    notification_type=notifications.LOAN_APPLICATION_SUBMITTED,
                )
            )

    await db.refresh(loan)
    logger.info("Loan %s applied for member %s amount=%s", loan.id, member_id, loan.amount)
    await notifications.dispatch(messages, notifier)
    return loan
