from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class LoanStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    APPROVED = "APPROVED"
    DISBURSED = "DISBURSED"
    REPAID = "REPAID"
    REJECTED = "REJECTED"


class UserRole(str, Enum):
    MEMBER = "MEMBER"
    LOAN_OFFICER = "LOAN_OFFICER"
    BRANCH_MANAGER = "BRANCH_MANAGER"
    REGIONAL_MANAGER = "REGIONAL_MANAGER"
    FINANCE_ADMIN = "FINANCE_ADMIN"


class ApprovalDecision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class RepaymentFrequency(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUALLY = "ANNUALLY"

    @classmethod
    def _missing_(cls, value):  # type: ignore[override]
        if isinstance(value, str):
            return cls._value2member_map_.get(value.strip().upper())
        return None


class InstallmentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class PaymentSourceType(str, Enum):
    MANUAL = "MANUAL"
    PAYROLL = "PAYROLL"
    BANK = "BANK"


class LedgerTransactionType(str, Enum):
    LOAN_DISBURSEMENT = "LOAN_DISBURSEMENT"
    LOAN_REPAYMENT = "LOAN_REPAYMENT"


class LoanApplyRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    member_id: UUID
    amount: Decimal = Field(gt=0)
    interest_rate: Decimal = Field(ge=0)
    tenure_months: int = Field(ge=1)
    repayment_frequency: RepaymentFrequency = RepaymentFrequency.MONTHLY
    remarks: str | None = Field(default=None, max_length=1000)


class LoanApprovalRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    decision: ApprovalDecision
    comments: str | None = Field(default=None, max_length=1000)


class LoanPaymentRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    amount: Decimal = Field(gt=0)
    payment_date: date | None = None
    source_type: PaymentSourceType = PaymentSourceType.MANUAL
    reference: str | None = Field(default=None, max_length=255)


class AmortizationEntry(BaseModel):
    period: int
    payment: Decimal
    principal_portion: Decimal
    interest_portion: Decimal
    balance: Decimal


class AmortizationSchedule(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    principal: Decimal
    annual_rate_percent: Decimal
    term_months: int
    frequency: RepaymentFrequency
    rate_per_period: Decimal
    number_of_periods: int
    periodic_payment: Decimal
    total_payment: Decimal
    total_interest: Decimal
    entries: list[AmortizationEntry]


class LoanApprovalLogDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_id: UUID
    actor_user_id: UUID | None = None
    actor_role: str
    decision: str | None = None
    status: str
    approval_order: int
    comments: str | None = None
    created_at: datetime | None = None


class LoanInstallmentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    installment_number: int
    due_date: date
    scheduled_amount: Decimal
    principal_amount: Decimal
    interest_amount: Decimal
    paid_amount: Decimal
    status: str
    paid_at: date | None = None


class LoanPaymentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_id: UUID
    member_id: UUID
    amount: Decimal
    allocated_amount: Decimal
    unallocated_amount: Decimal
    payment_date: date
    source_type: str
    reference: str | None = None
    recorded_by_user_id: UUID | None = None
    created_at: datetime | None = None


class LoanPaymentAllocationDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    installment_id: UUID
    amount: Decimal


class LoanDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    member_id: UUID
    amount: Decimal
    interest_rate: Decimal
    tenure_months: int
    repayment_frequency: str
    status: str
    remaining_amount: Decimal
    total_repayable_amount: Decimal | None = None
    total_interest_amount: Decimal | None = None
    periodic_payment: Decimal | None = None
    remarks: str | None = None
    disbursed_at: datetime | None = None
    created_at: datetime | None = None
    next_expected_role: UserRole | None = None


class LoanDetailResponse(LoanDTO):
    approval_logs: list[LoanApprovalLogDTO] = Field(default_factory=list)
    installments: list[LoanInstallmentDTO] = Field(default_factory=list)
    payments: list[LoanPaymentDTO] = Field(default_factory=list)


class LoanListResponse(BaseModel):
    items: list[LoanDTO]
    total: int


class LoanApprovalHistoryResponse(BaseModel):
    items: list[LoanApprovalLogDTO]
    total: int


class LoanPaymentResponse(BaseModel):
    loan: LoanDTO
    payment: LoanPaymentDTO
    allocations: list[LoanPaymentAllocationDTO]
