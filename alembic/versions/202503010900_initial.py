"""initial ledger and spending limit schema

Revision ID: 202503010900
Revises:
Create Date: 2025-03-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202503010900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("Cash", "Bank", "E-Wallet", name="accountkind"),
            nullable=False,
        ),
        sa.Column("account_number", sa.String(length=50)),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_accounts_user_active", "accounts", ["user_id", "is_active"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column(
            "status",
            sa.Enum("completed", "pending", name="transactionstatus"),
            nullable=False,
            server_default="completed",
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_account", "transactions", ["user_id", "account_id"]
    )
    op.create_index(
        "ix_transactions_user_type_status_at",
        "transactions",
        ["user_id", "type", "status", "occurred_at"],
    )

    op.create_table(
        "savings_allocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "type",
            sa.Enum("deposit", "withdrawal", name="allocationtype"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=200)),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_savings_amount_positive"),
    )
    op.create_index("ix_savings_user_date", "savings_allocations", ["user_id", "date"])

    op.create_table(
        "spending_limits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "type",
            sa.Enum("Daily", "Weekly", "Monthly", name="spendinglimittype"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "current_spending_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("last_reset", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "type", name="uq_spending_limit_user_type"),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_spending_limit_amount_positive"
        ),
        sa.CheckConstraint(
            "current_spending_cents >= 0", name="ck_spending_limit_current_positive"
        ),
    )
    op.create_index(
        "ix_spending_limits_last_reset", "spending_limits", ["last_reset"]
    )

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("action", sa.String(length=60), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_activity_logs_user_at", "activity_logs", ["user_id", "created_at"]
    )


def downgrade():
    op.drop_index("ix_activity_logs_user_at", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_index("ix_spending_limits_last_reset", table_name="spending_limits")
    op.drop_table("spending_limits")
    op.drop_index("ix_savings_user_date", table_name="savings_allocations")
    op.drop_table("savings_allocations")
    op.drop_index("ix_transactions_user_type_status_at", table_name="transactions")
    op.drop_index("ix_transactions_user_account", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_accounts_user_active", table_name="accounts")
    op.drop_table("accounts")
