"""initial ledger schema

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

KINDS = ("income", "bill", "subscription", "savings", "expense", "refund")
RECURRENCES = ("daily", "weekly", "monthly", "yearly")


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("label", sa.String(length=100), nullable=False),
        sa.Column("icon", sa.String(length=50)),
        sa.Column("color", sa.String(length=9)),
        sa.Column("budget_cents", sa.Integer()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "budget_cents IS NULL OR budget_cents >= 0",
            name="ck_category_budget_positive",
        ),
    )
    op.create_index("ix_categories_user", "categories", ["user_id"])

    op.create_table(
        "savings_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("target_amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "current_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("due_date", sa.Date()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("target_amount_cents >= 0", name="ck_goal_target_positive"),
    )
    op.create_index("ix_savings_goals_user", "savings_goals", ["user_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("label", sa.String(length=200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("kind", sa.Enum(*KINDS, name="transactionkind"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("goal_id", sa.Integer(), sa.ForeignKey("savings_goals.id")),
        sa.Column("recurrence", sa.Enum(*RECURRENCES, name="recurrence")),
        sa.Column("recurrence_count", sa.Integer()),
        sa.Column("recurrence_end_date", sa.Date()),
        sa.Column(
            "parent_transaction_id", sa.Integer(), sa.ForeignKey("transactions.id")
        ),
        sa.Column("is_paid", sa.Boolean()),
        sa.Column("is_auto", sa.Boolean()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "recurrence_count IS NULL OR recurrence_count > 0",
            name="ck_transactions_recurrence_count_positive",
        ),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_kind_date", "transactions", ["user_id", "kind", "date"]
    )
    op.create_index(
        "ix_transactions_parent_date",
        "transactions",
        ["parent_transaction_id", "date"],
    )

    op.create_table(
        "monthly_balance_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("income_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bills_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("savings_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "subscriptions_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("expenses_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refunds_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_snapshot_user_month"),
    )


def downgrade():
    op.drop_table("monthly_balance_snapshots")
    op.drop_index("ix_transactions_parent_date", table_name="transactions")
    op.drop_index("ix_transactions_user_kind_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_savings_goals_user", table_name="savings_goals")
    op.drop_table("savings_goals")
    op.drop_index("ix_categories_user", table_name="categories")
    op.drop_table("categories")
