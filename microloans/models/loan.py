import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from microloans.db.base import Base


LOAN_STATUSES = ("PENDING", "VERIFIED", "APPROVED", "DISBURSED", "REPAID", "REJECTED")
REPAYMENT_FREQUENCIES = ("MONTHLY", "QUARTERLY", "ANNUALLY")


class Loan(Base):
    __tablename__ = "loans"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_loan_amount_positive"),
        CheckConstraint("interest_rate >= 0", name="ck_loan_rate_nonneg"),
        CheckConstraint("tenure_months >= 1", name="ck_loan_tenure_positive"),
        CheckConstraint("remaining_amount >= 0", name="ck_loan_remaining_nonneg"),
        CheckConstraint("version >= 1", name="ck_loan_version_positive"),
        CheckConstraint(
            "status IN ('PENDING', 'VERIFIED', 'APPROVED', 'DISBURSED', 'REPAID', 'REJECTED')",
            name="ck_loan_status",
        ),
        CheckConstraint(
            "repayment_frequency IN ('MONTHLY', 'QUARTERLY', 'ANNUALLY')",
            name="ck_loan_repayment_frequency",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    member_id = Column(
        UUID(as_uuid=True),
        ForeignKey("members.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount = Column(Numeric(18, 2), nullable=False)
    interest_rate = Column(Numeric(10, 4), nullable=False)
    tenure_months = Column(Integer, nullable=False)
    repayment_frequency = Column(String(20), nullable=False, default="MONTHLY")
    status = Column(String(20), nullable=False, default="PENDING", index=True)
    remaining_amount = Column(Numeric(18, 2), nullable=False)
    total_repayable_amount = Column(Numeric(18, 2), nullable=True)
    total_interest_amount = Column(Numeric(18, 2), nullable=True)
    periodic_payment = Column(Numeric(18, 2), nullable=True)
    remarks = Column(Text, nullable=True)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    approval_logs = relationship(
        "LoanApprovalLog",
        back_populates="loan",
        order_by="LoanApprovalLog.approval_order",
    )
    installments = relationship(
        "LoanInstallment",
        back_populates="loan",
        order_by="LoanInstallment.installment_number",
    )
    payments = relationship(
        "LoanPayment",
        back_populates="loan",
        order_by="LoanPayment.created_at",
    )

    __mapper_args__ = {"version_id_col": version}
