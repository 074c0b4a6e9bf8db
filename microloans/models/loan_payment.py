import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from microloans.db.base import Base


class LoanPayment(Base):
    """Immutable record of money received against a loan."""

    __tablename__ = "loan_payments"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_loan_payment_amount_positive"),
        CheckConstraint("allocated_amount >= 0", name="ck_loan_payment_allocated_nonneg"),
        CheckConstraint("unallocated_amount >= 0", name="ck_loan_payment_unallocated_nonneg"),
        CheckConstraint(
            "source_type IN ('MANUAL', 'PAYROLL', 'BANK')",
            name="ck_loan_payment_source_type",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount = Column(Numeric(18, 2), nullable=False)
    allocated_amount = Column(Numeric(18, 2), nullable=False)
    unallocated_amount = Column(Numeric(18, 2), nullable=False, default=0)
    payment_date = Column(Date, nullable=False)
    source_type = Column(String(20), nullable=False, default="MANUAL")
    reference = Column(String(255), nullable=True)
    recorded_by_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    loan = relationship("Loan", back_populates="payments")
    allocations = relationship("LoanPaymentAllocation", back_populates="payment")


class LoanPaymentAllocation(Base):
    __tablename__ = "loan_payment_allocations"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_loan_payment_allocation_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_payments.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    installment_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_installments.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount = Column(Numeric(18, 2), nullable=False)

    payment = relationship("LoanPayment", back_populates="allocations")
