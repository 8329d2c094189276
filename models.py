import datetime as dt
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TransactionKind(str, Enum):
    income = "income"
    bill = "bill"
    subscription = "subscription"
    savings = "savings"
    expense = "expense"
    refund = "refund"


class Recurrence(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class RecurrenceScope(str, Enum):
    current_only = "current_only"
    current_and_future = "current_and_future"
    all = "all"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(50))
    color: Mapped[Optional[str]] = mapped_column(String(9))
    budget_cents: Mapped[Optional[int]] = mapped_column(Integer)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        Index("ix_categories_user", "user_id"),
        CheckConstraint(
            "budget_cents IS NULL OR budget_cents >= 0",
            name="ck_category_budget_positive",
        ),
    )


class SavingsGoal(Base):
    __tablename__ = "savings_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    # Only SavingsGoalSynchronizer writes this column.
    current_amount_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    due_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="goal"
    )

    __table_args__ = (
        Index("ix_savings_goals_user", "user_id"),
        CheckConstraint(
            "target_amount_cents >= 0", name="ck_goal_target_positive"
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    label: Mapped[str] = mapped_column(String(200), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[TransactionKind] = mapped_column(
        SAEnum(TransactionKind), nullable=False
    )
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    goal_id: Mapped[Optional[int]] = mapped_column(ForeignKey("savings_goals.id"))
    recurrence: Mapped[Optional[Recurrence]] = mapped_column(SAEnum(Recurrence))
    recurrence_count: Mapped[Optional[int]] = mapped_column(Integer)
    recurrence_end_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    parent_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id")
    )
    is_paid: Mapped[Optional[bool]] = mapped_column(Boolean)
    is_auto: Mapped[Optional[bool]] = mapped_column(Boolean)

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    goal: Mapped[Optional["SavingsGoal"]] = relationship(
        "SavingsGoal", back_populates="transactions"
    )
    parent: Mapped[Optional["Transaction"]] = relationship(
        "Transaction", remote_side=[id], back_populates="children"
    )
    children: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="parent"
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_kind_date", "user_id", "kind", "date"),
        Index("ix_transactions_parent_date", "parent_transaction_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "recurrence_count IS NULL OR recurrence_count > 0",
            name="ck_transactions_recurrence_count_positive",
        ),
    )

    @property
    def is_series_head(self) -> bool:
        return self.recurrence is not None and self.parent_transaction_id is None

    @property
    def paid(self) -> bool:
        return bool(self.is_paid)


class MonthlyBalanceSnapshot(Base, TimestampMixin):
    __tablename__ = "monthly_balance_snapshots"
    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_snapshot_user_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    income_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bills_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    savings_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    subscriptions_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    expenses_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refunds_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
