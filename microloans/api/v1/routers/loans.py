from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from microloans.api import deps
from microloans.db.session import get_db
from microloans.models.loan import Loan
from microloans.schemas.loan import (
    AmortizationSchedule,
    LoanApplyRequest,
    LoanApprovalHistoryResponse,
    LoanApprovalLogDTO,
    LoanApprovalRequest,
    LoanDetailResponse,
    LoanDTO,
    LoanListResponse,
    LoanPaymentAllocationDTO,
    LoanPaymentDTO,
    LoanPaymentRequest,
    LoanPaymentResponse,
    LoanStatus,
    RepaymentFrequency,
    UserRole,
)
from microloans.services import (
    amortization,
    approval_workflow,
    loan_applications,
    loan_ledger,
    loan_queue,
    repayments,
)
from microloans.services.exceptions import LoanNotFound

router = APIRouter(prefix="/loans", tags=["loans"])

PAYMENT_ROLES = (UserRole.LOAN_OFFICER, UserRole.FINANCE_ADMIN)


def loan_to_dto(loan: Loan, last_approval_order: int) -> LoanDTO:
    dto = LoanDTO.model_validate(loan)
    dto.next_expected_role = approval_workflow.next_expected_role(loan.status, last_approval_order)
    return dto


def payment_response(outcome: repayments.PaymentOutcome) -> LoanPaymentResponse:
    return LoanPaymentResponse(
        loan=loan_to_dto(outcome.loan, len(approval_workflow.APPROVAL_CHAIN)),
        payment=LoanPaymentDTO.model_validate(outcome.payment),
        allocations=[LoanPaymentAllocationDTO.model_validate(item) for item in outcome.allocations],
    )


@router.get(
    "/schedule-preview",
    response_model=AmortizationSchedule,
    summary="Preview an amortization schedule without creating a loan",
)
async def schedule_preview(
    amount: Decimal = Query(..., gt=0),
    interest_rate: Decimal = Query(..., ge=0),
    tenure_months: int = Query(..., ge=1),
    frequency: RepaymentFrequency = Query(default=RepaymentFrequency.MONTHLY),
    actor: deps.Actor = Depends(deps.get_current_actor),
) -> AmortizationSchedule:
    return amortization.compute_schedule(amount, interest_rate, tenure_months, frequency)


@router.get(
    "/queue",
    response_model=LoanListResponse,
    summary="Loans waiting on the caller's approval rank",
)
async def approval_queue(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    actor: deps.Actor = Depends(deps.require_roles(*deps.STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
) -> LoanListResponse:
    items, total = await loan_queue.list_queue_for_role(db, actor.role, limit=limit, offset=offset)
    last_order = approval_workflow.role_rank(actor.role) - 1
    return LoanListResponse(items=[loan_to_dto(loan, last_order) for loan in items], total=total)


@router.get(
    "/approval-history",
    response_model=LoanApprovalHistoryResponse,
    summary="Approval log rows, optionally for one loan",
)
async def approval_history(
    loan_id: UUID | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    actor: deps.Actor = Depends(deps.require_roles(*deps.STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
) -> LoanApprovalHistoryResponse:
    items, total = await loan_queue.list_approval_history(db, loan_id=loan_id, limit=limit, offset=offset)
    return LoanApprovalHistoryResponse(
        items=[LoanApprovalLogDTO.model_validate(item) for item in items],
        total=total,
    )


@router.get("", response_model=LoanListResponse, summary="List loans")
async def list_loans(
    status_filter: LoanStatus | None = Query(default=None, alias="status"),
    member_id: UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    actor: deps.Actor = Depends(deps.require_roles(*deps.STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
) -> LoanListResponse:
    items, total = await loan_queue.list_loans(
        db, status=status_filter, member_id=member_id, limit=limit, offset=offset
    )
    orders = await loan_queue.last_approval_orders(db, [loan.id for loan in items])
    return LoanListResponse(
        items=[loan_to_dto(loan, orders.get(loan.id, 0)) for loan in items],
        total=total,
    )


@router.post(
    "",
    response_model=LoanDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Apply for a loan",
)
async def apply_for_loan(
    payload: LoanApplyRequest,
    actor: deps.Actor = Depends(deps.require_roles(UserRole.MEMBER, UserRole.LOAN_OFFICER)),
    db: AsyncSession = Depends(get_db),
) -> LoanDTO:
    loan = await loan_applications.apply_for_loan(
        db,
        actor,
        payload.member_id,
        payload.amount,
        payload.interest_rate,
        payload.tenure_months,
        payload.repayment_frequency,
        payload.remarks,
    )
    return loan_to_dto(loan, 0)


@router.get("/{loan_id}", response_model=LoanDetailResponse, summary="Loan with logs, schedule and payments")
async def get_loan(
    loan_id: UUID,
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> LoanDetailResponse:
    loan = await loan_ledger.get_loan_with_related(db, loan_id)
    if actor.role == UserRole.MEMBER:
        member = await loan_ledger.get_member(db, loan.member_id)
        if member.user_id != actor.user_id:
            raise LoanNotFound("Loan not found", details={"loan_id": str(loan_id)})
    last_order = max((log.approval_order for log in loan.approval_logs), default=0)
    detail = LoanDetailResponse.model_validate(loan)
    detail.next_expected_role = approval_workflow.next_expected_role(loan.status, last_order)
    return detail


@router.post(
    "/{loan_id}/approvals",
    response_model=LoanDTO,
    summary="Approve or reject a loan at the caller's rank",
)
async def submit_approval(
    loan_id: UUID,
    payload: LoanApprovalRequest,
    actor: deps.Actor = Depends(deps.require_roles(*deps.STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
) -> LoanDTO:
    loan = await approval_workflow.submit_approval(db, loan_id, actor, payload.decision, payload.comments)
    return loan_to_dto(loan, approval_workflow.role_rank(actor.role))


@router.post(
    "/{loan_id}/payments",
    response_model=LoanPaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a repayment against a disbursed loan",
)
async def record_payment(
    loan_id: UUID,
    payload: LoanPaymentRequest,
    actor: deps.Actor = Depends(deps.require_roles(*PAYMENT_ROLES)),
    db: AsyncSession = Depends(get_db),
) -> LoanPaymentResponse:
    outcome = await repayments.apply_payment(
        db,
        loan_id,
        payload.amount,
        payment_date=payload.payment_date,
        source_type=payload.source_type,
        reference=payload.reference,
        actor=actor,
    )
    return payment_response(outcome)
