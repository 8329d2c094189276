from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from database import create_schema
from models import MonthlyBalanceSnapshot, Recurrence, SavingsGoal, Transaction
from recurrence import RecurringEngine, add_months, expand, next_occurrence
from schemas import BillIn, IncomeIn, SavingIn
from services import TransactionService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    create_schema(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _row_count(session, head_id: int) -> int:
    return session.scalar(
        select(func.count(Transaction.id)).where(
            (Transaction.id == head_id) | (Transaction.parent_transaction_id == head_id)
        )
    )


def test_next_occurrence_clamps_to_month_end():
    assert next_occurrence(date(2024, 1, 31), Recurrence.monthly) == date(2024, 2, 29)
    assert next_occurrence(date(2023, 1, 31), Recurrence.monthly) == date(2023, 2, 28)
    assert next_occurrence(date(2024, 2, 29), Recurrence.yearly) == date(2025, 2, 28)


def test_next_occurrence_chaining_differs_from_multi_step():
    chained = next_occurrence(
        next_occurrence(date(2024, 1, 31), Recurrence.monthly), Recurrence.monthly
    )
    assert chained == date(2024, 3, 29)
    assert next_occurrence(date(2024, 1, 31), Recurrence.monthly, 2) == date(2024, 3, 31)


def test_next_occurrence_daily_and_weekly():
    assert next_occurrence(date(2024, 12, 31), Recurrence.daily) == date(2025, 1, 1)
    assert next_occurrence(date(2024, 2, 26), Recurrence.weekly, 2) == date(2024, 3, 11)


def test_next_occurrence_rejects_non_positive_offset():
    with pytest.raises(ValueError):
        next_occurrence(date(2024, 1, 1), Recurrence.daily, 0)


def test_add_months_crosses_year_boundary():
    assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)


def test_expand_month_end_across_leap_year():
    dates = expand(date(2024, 1, 31), Recurrence.monthly, None, 12)
    assert len(dates) == 12
    assert dates[0] == date(2024, 2, 29)
    assert dates[1] == date(2024, 3, 31)
    assert dates[2] == date(2024, 4, 30)
    assert dates[-1] == date(2025, 1, 31)


def test_expand_end_date_is_inclusive():
    dates = expand(date(2024, 1, 1), Recurrence.monthly, date(2024, 4, 1), 12)
    assert dates == [date(2024, 2, 1), date(2024, 3, 1), date(2024, 4, 1)]


def test_expand_end_before_first_occurrence_yields_nothing():
    assert expand(date(2024, 1, 1), Recurrence.weekly, date(2024, 1, 5), 12) == []


def test_horizon_sweep_extends_and_is_idempotent():
    session = make_session()
    head = TransactionService(session).create_income(
        IncomeIn(
            label="Salary",
            date=date(2024, 1, 1),
            amount_cents=300_000,
            recurrence=Recurrence.monthly,
        )
    )
    assert _row_count(session, head.id) == 13

    engine = RecurringEngine(session)
    created = engine.extend_all(today=date(2024, 6, 15))
    session.commit()
    assert created == 5
    assert _row_count(session, head.id) == 18

    snapshot = session.scalar(
        select(MonthlyBalanceSnapshot).where(
            MonthlyBalanceSnapshot.year == 2025, MonthlyBalanceSnapshot.month == 6
        )
    )
    assert snapshot is not None
    assert snapshot.income_cents == 300_000

    assert engine.extend_all(today=date(2024, 6, 15)) == 0
    assert _row_count(session, head.id) == 18


def test_horizon_sweep_respects_recurrence_count():
    session = make_session()
    head = TransactionService(session).create_bill(
        BillIn(
            label="Phone",
            date=date(2024, 1, 1),
            amount_cents=2_000,
            recurrence=Recurrence.monthly,
            recurrence_count=3,
        )
    )
    assert _row_count(session, head.id) == 3

    assert RecurringEngine(session).extend_all(today=date(2024, 2, 10)) == 0
    assert _row_count(session, head.id) == 3


def test_horizon_sweep_skips_series_that_already_ended():
    session = make_session()
    head = TransactionService(session).create_bill(
        BillIn(
            label="Gym",
            date=date(2024, 1, 1),
            amount_cents=3_000,
            recurrence=Recurrence.monthly,
            recurrence_end_date=date(2024, 3, 31),
        )
    )
    assert _row_count(session, head.id) == 3

    assert RecurringEngine(session).extend_all(today=date(2024, 6, 1)) == 0
    assert _row_count(session, head.id) == 3


def test_horizon_sweep_credits_goal_for_paid_savings():
    session = make_session()
    goal = SavingsGoal(user_id=1, name="Bike", target_amount_cents=100_000)
    session.add(goal)
    session.commit()

    TransactionService(session).create_saving(
        SavingIn(
            goal_id=goal.id,
            date=date(2024, 1, 1),
            amount_cents=1_000,
            recurrence=Recurrence.monthly,
            is_paid=True,
        )
    )
    session.refresh(goal)
    assert goal.current_amount_cents == 13_000

    created = RecurringEngine(session).extend_all(today=date(2024, 3, 1))
    session.commit()
    assert created == 2
    session.refresh(goal)
    assert goal.current_amount_cents == 15_000


def test_horizon_sweep_continues_after_a_failing_head(monkeypatch):
    session = make_session()
    service = TransactionService(session)
    broken = service.create_bill(
        BillIn(
            label="Broken",
            date=date(2024, 1, 1),
            amount_cents=100,
            recurrence=Recurrence.monthly,
        )
    )
    healthy = service.create_bill(
        BillIn(
            label="Rent",
            date=date(2024, 1, 1),
            amount_cents=90_000,
            recurrence=Recurrence.monthly,
        )
    )

    original = RecurringEngine.extend_series

    def flaky(self, head, today=None):
        if head.id == broken.id:
            raise RuntimeError("boom")
        return original(self, head, today)

    monkeypatch.setattr(RecurringEngine, "extend_series", flaky)

    created = RecurringEngine(session).extend_all(today=date(2024, 6, 15))
    session.commit()
    assert created == 5
    assert _row_count(session, healthy.id) == 18
    assert _row_count(session, broken.id) == 13
