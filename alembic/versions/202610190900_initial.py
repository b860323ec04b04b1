"""initial schema: users, budgets, transactions

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=254), nullable=False, unique=True),
        sa.Column(
            "notifications_enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        sa.Column(
            "budget_alerts_enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        sa.Column(
            "weekly_reports_enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "kind", sa.Enum("monthly", "category", name="budgetkind"), nullable=False
        ),
        sa.Column("category", sa.String(length=100)),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("month", sa.Integer()),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "notifications_enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        sa.Column(
            "notification_threshold", sa.Integer(), nullable=False, server_default="80"
        ),
        sa.Column("created_by", sa.String(length=10), nullable=False, server_default="user"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_budget_amount_positive"),
        sa.CheckConstraint("year BETWEEN 2020 AND 2100", name="ck_budget_year_range"),
        sa.CheckConstraint(
            "month IS NULL OR month BETWEEN 1 AND 12", name="ck_budget_month_range"
        ),
        sa.CheckConstraint(
            "notification_threshold BETWEEN 0 AND 100",
            name="ck_budget_threshold_range",
        ),
    )
    op.create_index(
        "ix_budget_user_kind_month", "budgets", ["user_id", "kind", "year", "month"]
    )
    op.create_index(
        "ix_budget_user_kind_category_month",
        "budgets",
        ["user_id", "kind", "category", "year", "month"],
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("subcategory", sa.String(length=100)),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "payment_method",
            sa.Enum(
                "cash", "card", "upi", "bank_transfer", "other", name="paymentmethod"
            ),
            nullable=False,
            server_default="other",
        ),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column(
            "source",
            sa.Enum("manual", "receipt", name="transactionsource"),
            nullable=False,
            server_default="manual",
        ),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="confirmed"),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category", "date"],
    )


def downgrade():
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_budget_user_kind_category_month", table_name="budgets")
    op.drop_index("ix_budget_user_kind_month", table_name="budgets")
    op.drop_table("budgets")
    op.drop_table("users")
