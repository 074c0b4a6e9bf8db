import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from microloans.db.base import Base


class LoanInstallment(Base):
    __tablename__ = "loan_installments"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint("loan_id", "installment_number", name="uq_loan_installment_number"),
        CheckConstraint("scheduled_amount >= 0", name="ck_loan_installment_scheduled_nonneg"),
        CheckConstraint("paid_amount >= 0", name="ck_loan_installment_paid_nonneg"),
        CheckConstraint("paid_amount <= scheduled_amount", name="ck_loan_installment_not_overpaid"),
        CheckConstraint("status IN ('PENDING', 'PAID')", name="ck_loan_installment_status"),
        Index("ix_loan_installments_loan_due", "loan_id", "due_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    installment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    scheduled_amount = Column(Numeric(18, 2), nullable=False)
    principal_amount = Column(Numeric(18, 2), nullable=False)
    interest_amount = Column(Numeric(18, 2), nullable=False)
    paid_amount = Column(Numeric(18, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="PENDING")
    paid_at = Column(Date, nullable=True)

    loan = relationship("Loan", back_populates="installments")

    @property
    def unpaid_amount(self):
        return self.scheduled_amount - self.paid_amount
