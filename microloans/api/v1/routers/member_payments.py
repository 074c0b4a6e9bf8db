from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from microloans.api import deps
from microloans.api.v1.routers.loans import PAYMENT_ROLES, payment_response
from microloans.db.session import get_db
from microloans.schemas.loan import LoanPaymentRequest, LoanPaymentResponse, PaymentSourceType
from microloans.services import repayments

router = APIRouter(prefix="/members", tags=["member-payments"])


@router.post(
    "/{member_id}/loan-payments",
    response_model=LoanPaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Apply a payroll or bank payment to the member's active loan",
)
async def record_member_payment(
    member_id: UUID,
    payload: LoanPaymentRequest,
    actor: deps.Actor = Depends(deps.require_roles(*PAYMENT_ROLES)),
    db: AsyncSession = Depends(get_db),
) -> LoanPaymentResponse:
    source_type = payload.source_type
    if "source_type" not in payload.model_fields_set:
        source_type = PaymentSourceType.PAYROLL.value
    outcome = await repayments.apply_member_payment(
        db,
        member_id,
        payload.amount,
        payment_date=payload.payment_date,
        source_type=source_type,
        reference=payload.reference,
        actor=actor,
    )
    return payment_response(outcome)
