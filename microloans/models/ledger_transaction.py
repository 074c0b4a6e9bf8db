import uuid

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID

from microloans.db.base import Base


class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_transaction_amount_positive"),
        CheckConstraint(
            "transaction_type IN ('LOAN_DISBURSEMENT', 'LOAN_REPAYMENT')",
            name="ck_ledger_transaction_type",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id", ondelete="RESTRICT"), nullable=False, index=True)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id", ondelete="RESTRICT"), nullable=True, index=True)
    transaction_type = Column(String(30), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    transaction_date = Column(Date, nullable=False, server_default=func.current_date())
    debit_account = Column(String(255), nullable=False)
    credit_account = Column(String(255), nullable=False)
    reference = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
