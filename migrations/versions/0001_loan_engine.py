"""Create loan engine tables"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_loan_engine"
down_revision = None
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=30), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.CheckConstraint(
            "role IN ('MEMBER', 'LOAN_OFFICER', 'BRANCH_MANAGER', 'REGIONAL_MANAGER', 'FINANCE_ADMIN')",
            name="ck_users_role",
        ),
    )
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "members",
        _uuid_pk(),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("member_number", sa.String(length=50), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_index("ix_members_user_id", "members", ["user_id"])

    op.create_table(
        "loans",
        _uuid_pk(),
        sa.Column(
            "member_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("members.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("interest_rate", sa.Numeric(10, 4), nullable=False),
        sa.Column("tenure_months", sa.Integer(), nullable=False),
        sa.Column("repayment_frequency", sa.String(length=20), nullable=False, server_default="MONTHLY"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("remaining_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("total_repayable_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("total_interest_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("periodic_payment", sa.Numeric(18, 2), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("disbursed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
        ),
        sa.CheckConstraint("amount > 0", name="ck_loan_amount_positive"),
        sa.CheckConstraint("interest_rate >= 0", name="ck_loan_rate_nonneg"),
        sa.CheckConstraint("tenure_months >= 1", name="ck_loan_tenure_positive"),
        sa.CheckConstraint("remaining_amount >= 0", name="ck_loan_remaining_nonneg"),
        sa.CheckConstraint("version >= 1", name="ck_loan_version_positive"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'VERIFIED', 'APPROVED', 'DISBURSED', 'REPAID', 'REJECTED')",
            name="ck_loan_status",
        ),
        sa.CheckConstraint(
            "repayment_frequency IN ('MONTHLY', 'QUARTERLY', 'ANNUALLY')",
            name="ck_loan_repayment_frequency",
        ),
    )
    op.create_index("ix_loans_member_id", "loans", ["member_id"])
    op.create_index("ix_loans_status", "loans", ["status"])

    op.create_table(
        "loan_approval_logs",
        _uuid_pk(),
        sa.Column(
            "loan_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loans.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "actor_user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("actor_role", sa.String(length=30), nullable=False),
        sa.Column("decision", sa.String(length=10), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("approval_order", sa.Integer(), nullable=False),
        sa.Column("comments", sa.Text(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("loan_id", "approval_order", name="uq_loan_approval_order"),
        sa.CheckConstraint("approval_order >= 0", name="ck_loan_approval_order_nonneg"),
        sa.CheckConstraint(
            "decision IS NULL OR decision IN ('APPROVE', 'REJECT')",
            name="ck_loan_approval_decision",
        ),
    )
    op.create_index("ix_loan_approval_logs_loan_id", "loan_approval_logs", ["loan_id"])

    op.create_table(
        "loan_installments",
        _uuid_pk(),
        sa.Column(
            "loan_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loans.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("installment_number", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("scheduled_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("principal_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("interest_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(18, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("paid_at", sa.Date(), nullable=True),
        sa.UniqueConstraint("loan_id", "installment_number", name="uq_loan_installment_number"),
        sa.CheckConstraint("scheduled_amount >= 0", name="ck_loan_installment_scheduled_nonneg"),
        sa.CheckConstraint("paid_amount >= 0", name="ck_loan_installment_paid_nonneg"),
        sa.CheckConstraint("paid_amount <= scheduled_amount", name="ck_loan_installment_not_overpaid"),
        sa.CheckConstraint("status IN ('PENDING', 'PAID')", name="ck_loan_installment_status"),
    )
    op.create_index("ix_loan_installments_loan_id", "loan_installments", ["loan_id"])
    op.create_index("ix_loan_installments_loan_due", "loan_installments", ["loan_id", "due_date"])

    op.create_table(
        "loan_payments",
        _uuid_pk(),
        sa.Column(
            "loan_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loans.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "member_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("members.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("allocated_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("unallocated_amount", sa.Numeric(18, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("source_type", sa.String(length=20), nullable=False, server_default="MANUAL"),
        sa.Column("reference", sa.String(length=255), nullable=True),
        sa.Column(
            "recorded_by_user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _created_at(),
        sa.CheckConstraint("amount > 0", name="ck_loan_payment_amount_positive"),
        sa.CheckConstraint("allocated_amount >= 0", name="ck_loan_payment_allocated_nonneg"),
        sa.CheckConstraint("unallocated_amount >= 0", name="ck_loan_payment_unallocated_nonneg"),
        sa.CheckConstraint(
            "source_type IN ('MANUAL', 'PAYROLL', 'BANK')",
            name="ck_loan_payment_source_type",
        ),
    )
    op.create_index("ix_loan_payments_loan_id", "loan_payments", ["loan_id"])
    op.create_index("ix_loan_payments_member_id", "loan_payments", ["member_id"])

    op.create_table(
        "loan_payment_allocations",
        _uuid_pk(),
        sa.Column(
            "payment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loan_payments.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "installment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loan_installments.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_loan_payment_allocation_positive"),
    )
    op.create_index("ix_loan_payment_allocations_payment_id", "loan_payment_allocations", ["payment_id"])
    op.create_index(
        "ix_loan_payment_allocations_installment_id", "loan_payment_allocations", ["installment_id"]
    )

    op.create_table(
        "ledger_transactions",
        _uuid_pk(),
        sa.Column(
            "member_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("members.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "loan_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loans.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("transaction_type", sa.String(length=30), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False, server_default=sa.func.current_date()),
        sa.Column("debit_account", sa.String(length=255), nullable=False),
        sa.Column("credit_account", sa.String(length=255), nullable=False),
        sa.Column("reference", sa.String(length=255), nullable=True),
        _created_at(),
        sa.CheckConstraint("amount > 0", name="ck_ledger_transaction_amount_positive"),
        sa.CheckConstraint(
            "transaction_type IN ('LOAN_DISBURSEMENT', 'LOAN_REPAYMENT')",
            name="ck_ledger_transaction_type",
        ),
    )
    op.create_index("ix_ledger_transactions_member_id", "ledger_transactions", ["member_id"])
    op.create_index("ix_ledger_transactions_loan_id", "ledger_transactions", ["loan_id"])

    op.create_table(
        "notifications",
        _uuid_pk(),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("notification_type", sa.String(length=50), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    op.create_table(
        "audit_logs",
        _uuid_pk(),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_resource_id", "audit_logs", ["resource_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("notifications")
    op.drop_table("ledger_transactions")
    op.drop_table("loan_payment_allocations")
    op.drop_table("loan_payments")
    op.drop_table("loan_installments")
    op.drop_table("loan_approval_logs")
    op.drop_table("loans")
    op.drop_table("members")
    op.drop_table("users")
