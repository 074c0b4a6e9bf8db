from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from microloans.models.loan import Loan
from microloans.models.loan_approval_log import LoanApprovalLog
from microloans.schemas.loan import LoanStatus, UserRole
from microloans.services.approval_workflow import TERMINAL_STATUSES, role_rank


def _last_order_subquery():
    return (
        select(
            LoanApprovalLog.loan_id.label("loan_id"),
            func.max(LoanApprovalLog.approval_order).label("last_order"),
        )
        .group_by(LoanApprovalLog.loan_id)
        .subquery()
    )


async def last_approval_orders(db: AsyncSession, loan_ids: list[UUID]) -> dict[UUID, int]:
    """Map each loan id to the approval order of its newest log row."""
    if not loan_ids:
        return {}
    stmt = (
        select(LoanApprovalLog.loan_id, func.max(LoanApprovalLog.approval_order))
        .where(LoanApprovalLog.loan_id.in_(loan_ids))
        .group_by(LoanApprovalLog.loan_id)
    )
    rows = (await db.execute(stmt)).all()
    return {loan_id: int(order) for loan_id, order in rows}


async def list_loans(
    db: AsyncSession,
    *,
    status: LoanStatus | str | None = None,
    member_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Loan], int]:
    filters = []
    if status is not None:
        filters.append(Loan.status == LoanStatus(status).value)
    if member_id is not None:
        filters.append(Loan.member_id == member_id)

    count_stmt = select(func.count()).select_from(Loan).where(*filters)
    total = int((await db.execute(count_stmt)).scalar_one() or 0)
    stmt = (
        select(Loan)
        .where(*filters)
        .order_by(Loan.created_at.desc(), Loan.id)
        .offset(offset)
        .limit(limit)
    )
    items = list((await db.execute(stmt)).scalars().all())
    return items, total


async def list_queue_for_role(
    db: AsyncSession,
    role: UserRole | str,
    *,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Loan], int]:
    """Loans waiting on ``role``: open, with the previous rank as the newest approval."""
    last_orders = _last_order_subquery()
    open_statuses = [s.value for s in LoanStatus if s not in TERMINAL_STATUSES]
    filters = (
        Loan.status.in_(open_statuses),
        last_orders.c.last_order == role_rank(role) - 1,
    )

    count_stmt = (
        select(func.count())
        .select_from(Loan)
        .join(last_orders, last_orders.c.loan_id == Loan.id)
        .where(*filters)
    )
    total = int((await db.execute(count_stmt)).scalar_one() or 0)
    stmt = (
        select(Loan)
        .join(last_orders, last_orders.c.loan_id == Loan.id)
        .where(*filters)
        .order_by(Loan.created_at.asc(), Loan.id)
        .offset(offset)
        .limit(limit)
    )
    items = list((await db.execute(stmt)).scalars().all())
    return items, total


async def list_approval_history(
    db: AsyncSession,
    *,
    loan_id: UUID | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[LoanApprovalLog], int]:
    filters = []
    if loan_id is not None:
        filters.append(LoanApprovalLog.loan_id == loan_id)

    count_stmt = select(func.count()).select_from(LoanApprovalLog).where(*filters)
    total = int((await db.execute(count_stmt)).scalar_one() or 0)
    stmt = (
        select(LoanApprovalLog)
        .where(*filters)
        .order_by(LoanApprovalLog.loan_id, LoanApprovalLog.approval_order.asc())
        .offset(offset)
        .limit(limit)
    )
    items = list((await db.execute(stmt)).scalars().all())
    return items, total
