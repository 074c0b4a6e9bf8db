"""Persistence for loans and everything a loan owns.

Every write the engine performs goes through these functions. Callers group
them inside :func:`unit_of_work` so that a status change and its approval log,
or a payment and the installment and balance updates it causes, commit
together or not at all.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from microloans.models.loan import Loan
from microloans.models.loan_approval_log import LoanApprovalLog
from microloans.models.loan_installment import LoanInstallment
from microloans.models.loan_payment import LoanPayment, LoanPaymentAllocation
from microloans.models.member import Member
from microloans.schemas.loan import InstallmentStatus, LoanStatus
from microloans.services.exceptions import (
    ConcurrentLoanUpdate,
    InvalidLoanState,
    LoanNotFound,
    MemberNotFound,
)

logger = logging.getLogger(__name__)


OPEN_LOAN_STATUSES = {
    LoanStatus.PENDING.value,
    LoanStatus.VERIFIED.value,
    LoanStatus.APPROVED.value,
    LoanStatus.DISBURSED.value,
}

ALLOWED_TRANSITIONS: dict[LoanStatus, set[LoanStatus]] = {
    LoanStatus.PENDING: {LoanStatus.VERIFIED, LoanStatus.REJECTED},
    LoanStatus.VERIFIED: {LoanStatus.VERIFIED, LoanStatus.APPROVED, LoanStatus.REJECTED},
    LoanStatus.APPROVED: {LoanStatus.DISBURSED, LoanStatus.REJECTED},
    LoanStatus.DISBURSED: {LoanStatus.REPAID},
    LoanStatus.REPAID: set(),
    LoanStatus.REJECTED: set(),
}


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit on success, roll back on any error.

    Optimistic-lock failures and unique violations (two approvals racing for
    the same rank) surface as :class:`ConcurrentLoanUpdate`.
    """
    try:
        yield db
        await db.commit()
    except (IntegrityError, StaleDataError) as exc:
        await db.rollback()
        logger.warning("Concurrent loan update rejected: %s", exc.__class__.__name__)
        raise ConcurrentLoanUpdate("Loan was modified concurrently; retry the operation") from exc
    except Exception:
        await db.rollback()
        raise


async def create_loan(db: AsyncSession, loan: Loan) -> Loan:
    db.add(loan)
    await db.flush()
    return loan


async def get_loan(db: AsyncSession, loan_id: UUID, *, for_update: bool = False) -> Loan:
    stmt = select(Loan).where(Loan.id == loan_id)
    if for_update:
        stmt = stmt.with_for_update()
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        raise LoanNotFound("Loan not found", details={"loan_id": str(loan_id)})
    return loan


async def get_loan_with_related(db: AsyncSession, loan_id: UUID) -> Loan:
    stmt = (
        select(Loan)
        .options(
            selectinload(Loan.approval_logs),
            selectinload(Loan.installments),
            selectinload(Loan.payments),
        )
        .where(Loan.id == loan_id)
    )
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        raise LoanNotFound("Loan not found", details={"loan_id": str(loan_id)})
    return loan


async def get_latest_disbursed_loan(
    db: AsyncSession, member_id: UUID, *, for_update: bool = False
) -> Loan:
    stmt = (
        select(Loan)
        .where(Loan.member_id == member_id, Loan.status == LoanStatus.DISBURSED.value)
        .order_by(Loan.created_at.desc())
        .limit(1)
    )
    if for_update:
        stmt = stmt.with_for_update()
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        raise LoanNotFound(
            "No disbursed loan found for member",
            details={"member_id": str(member_id)},
        )
    return loan


async def get_member(db: AsyncSession, member_id: UUID, *, for_update: bool = False) -> Member:
    stmt = select(Member).where(Member.id == member_id)
    if for_update:
        stmt = stmt.with_for_update()
    member = (await db.execute(stmt)).scalar_one_or_none()
    if member is None:
        raise MemberNotFound("Member not found", details={"member_id": str(member_id)})
    return member


async def count_open_loans(db: AsyncSession, member_id: UUID) -> int:
    stmt = select(func.count()).select_from(Loan).where(
        Loan.member_id == member_id,
        Loan.status.in_(OPEN_LOAN_STATUSES),
    )
    return int((await db.execute(stmt)).scalar_one() or 0)


async def last_approval(db: AsyncSession, loan_id: UUID) -> LoanApprovalLog | None:
    stmt = (
        select(LoanApprovalLog)
        .where(LoanApprovalLog.loan_id == loan_id)
        .order_by(LoanApprovalLog.approval_order.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalars().first()


async def append_approval(db: AsyncSession, log: LoanApprovalLog) -> LoanApprovalLog:
    db.add(log)
    await db.flush()
    return log


async def update_status(db: AsyncSession, loan: Loan, status: LoanStatus | str) -> Loan:
    current = LoanStatus(loan.status)
    target = LoanStatus(status)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidLoanState(
            f"Loan cannot move from {current.value} to {target.value}",
            details={"loan_id": str(loan.id), "status": current.value, "target_status": target.value},
        )
    loan.status = target.value
    db.add(loan)
    return loan


async def add_installments(db: AsyncSession, installments: Iterable[LoanInstallment]) -> None:
    for installment in installments:
        db.add(installment)
    await db.flush()


async def list_installments(
    db: AsyncSession,
    loan_id: UUID,
    *,
    status: InstallmentStatus | str | None = None,
    for_update: bool = False,
) -> list[LoanInstallment]:
    stmt = select(LoanInstallment).where(LoanInstallment.loan_id == loan_id)
    if status is not None:
        stmt = stmt.where(LoanInstallment.status == InstallmentStatus(status).value)
    stmt = stmt.order_by(LoanInstallment.due_date.asc(), LoanInstallment.installment_number.asc())
    if for_update:
        stmt = stmt.with_for_update()
    return list((await db.execute(stmt)).scalars().all())


async def record_payment(db: AsyncSession, payment: LoanPayment) -> LoanPayment:
    db.add(payment)
    await db.flush()
    return payment


async def record_allocations(db: AsyncSession, allocations: Iterable[LoanPaymentAllocation]) -> None:
    for allocation in allocations:
        db.add(allocation)
    await db.flush()
