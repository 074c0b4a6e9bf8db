import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from microloans.db.base import Base


class LoanApprovalLog(Base):
    """Append-only record of one loan status transition."""

    __tablename__ = "loan_approval_logs"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint("loan_id", "approval_order", name="uq_loan_approval_order"),
        CheckConstraint("approval_order >= 0", name="ck_loan_approval_order_nonneg"),
        CheckConstraint(
            "decision IS NULL OR decision IN ('APPROVE', 'REJECT')",
            name="ck_loan_approval_decision",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    actor_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_role = Column(String(30), nullable=False)
    decision = Column(String(10), nullable=True)
    status = Column(String(20), nullable=False)
    approval_order = Column(Integer, nullable=False)
    comments = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    loan = relationship("Loan", back_populates="approval_logs")
