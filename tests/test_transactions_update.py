from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from database import create_schema
from errors import InvalidArgumentError
from models import (
    MonthlyBalanceSnapshot,
    Recurrence,
    RecurrenceScope,
    SavingsGoal,
    Transaction,
)
from schemas import BillIn, ExpenseIn, IncomeIn, SavingIn, TransactionUpdate
from services import SavingsGoalSynchronizer, TransactionService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    create_schema(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _series(session, head_id: int) -> list[Transaction]:
    stmt = (
        select(Transaction)
        .where(
            (Transaction.id == head_id) | (Transaction.parent_transaction_id == head_id)
        )
        .order_by(Transaction.date)
    )
    return list(session.scalars(stmt).all())


def _snapshot(session, year: int, month: int) -> MonthlyBalanceSnapshot:
    return session.scalar(
        select(MonthlyBalanceSnapshot).where(
            MonthlyBalanceSnapshot.year == year, MonthlyBalanceSnapshot.month == month
        )
    )


def _goal(session, current: int = 0) -> SavingsGoal:
    goal = SavingsGoal(
        user_id=1, name="House", target_amount_cents=1_000_000, current_amount_cents=current
    )
    session.add(goal)
    session.commit()
    return goal


def _monthly_income(service, count: int, amount: int = 1_000) -> Transaction:
    return service.create_income(
        IncomeIn(
            label="Salary",
            date=date(2024, 1, 10),
            amount_cents=amount,
            recurrence=Recurrence.monthly,
            recurrence_count=count,
        )
    )


def test_value_change_across_paid_savings_series_is_one_adjustment(monkeypatch):
    session = make_session()
    goal = _goal(session)
    service = TransactionService(session)
    head = service.create_saving(
        SavingIn(
            goal_id=goal.id,
            date=date(2024, 1, 1),
            amount_cents=100,
            recurrence=Recurrence.monthly,
            recurrence_count=6,
            is_paid=True,
        )
    )
    session.refresh(goal)
    assert goal.current_amount_cents == 600

    calls: list[tuple] = []
    original = SavingsGoalSynchronizer.adjust_for_value_change_batch

    def recorder(self, *args):
        calls.append(args)
        return original(self, *args)

    monkeypatch.setattr(SavingsGoalSynchronizer, "adjust_for_value_change_batch", recorder)

    service.update(head.id, TransactionUpdate(amount_cents=150, scope=RecurrenceScope.all))

    session.refresh(goal)
    assert calls == [(goal.id, 100, 150, 6)]
    assert goal.current_amount_cents == 900
    assert all(row.amount_cents == 150 for row in _series(session, head.id))


def test_date_is_never_propagated_to_siblings():
    session = make_session()
    service = TransactionService(session)
    head = _monthly_income(service, count=3)

    service.update(
        head.id,
        TransactionUpdate(
            label="Paycheck", date=date(2024, 1, 5), scope=RecurrenceScope.all
        ),
    )

    rows = _series(session, head.id)
    assert [row.date for row in rows] == [
        date(2024, 1, 5),
        date(2024, 2, 10),
        date(2024, 3, 10),
    ]
    assert all(row.label == "Paycheck" for row in rows)


def test_current_and_future_from_middle_child():
    session = make_session()
    service = TransactionService(session)
    head = _monthly_income(service, count=4)
    march = _series(session, head.id)[2]

    service.update(
        march.id,
        TransactionUpdate(amount_cents=2_000, scope=RecurrenceScope.current_and_future),
    )

    amounts = [row.amount_cents for row in _series(session, head.id)]
    assert amounts == [1_000, 1_000, 2_000, 2_000]
    assert _snapshot(session, 2024, 2).income_cents == 1_000
    assert _snapshot(session, 2024, 4).income_cents == 2_000


def test_current_only_edits_one_row():
    session = make_session()
    service = TransactionService(session)
    head = _monthly_income(service, count=3)
    february = _series(session, head.id)[1]

    service.update(february.id, TransactionUpdate(amount_cents=5))

    assert [row.amount_cents for row in _series(session, head.id)] == [1_000, 5, 1_000]


def test_rule_change_needs_wider_scope():
    session = make_session()
    service = TransactionService(session)
    head = _monthly_income(service, count=3)

    with pytest.raises(InvalidArgumentError):
        service.update(head.id, TransactionUpdate(recurrence=Recurrence.weekly))


def test_rule_change_from_child_also_updates_head():
    session = make_session()
    service = TransactionService(session)
    head = _monthly_income(service, count=4)
    march = _series(session, head.id)[2]

    service.update(
        march.id,
        TransactionUpdate(
            recurrence_end_date=date(2024, 6, 30),
            scope=RecurrenceScope.current_and_future,
        ),
    )

    rows = _series(session, head.id)
    assert rows[0].recurrence_end_date == date(2024, 6, 30)
    assert rows[1].recurrence_end_date is None
    assert rows[2].recurrence_end_date == date(2024, 6, 30)
    assert rows[3].recurrence_end_date == date(2024, 6, 30)


def test_standalone_becomes_series_head_when_given_a_rule():
    session = make_session()
    service = TransactionService(session)
    single = service.create_bill(
        BillIn(label="Insurance", date=date(2024, 3, 1), amount_cents=12_000)
    )

    updated = service.update(single.id, TransactionUpdate(recurrence=Recurrence.yearly))

    assert updated.recurrence == Recurrence.yearly
    assert updated.is_series_head


def test_moving_date_invalidates_both_months():
    session = make_session()
    service = TransactionService(session)
    expense = service.create_expense(
        ExpenseIn(label="Dentist", date=date(2024, 1, 10), amount_cents=500)
    )
    assert _snapshot(session, 2024, 1).expenses_cents == 500

    service.update(expense.id, TransactionUpdate(date=date(2024, 2, 10)))

    assert _snapshot(session, 2024, 1).expenses_cents == 0
    assert _snapshot(session, 2024, 2).expenses_cents == 500


def test_paid_flag_flips_move_goal_amount():
    session = make_session()
    goal = _goal(session)
    service = TransactionService(session)
    head = service.create_saving(
        SavingIn(
            goal_id=goal.id,
            date=date(2024, 1, 1),
            amount_cents=200,
            recurrence=Recurrence.monthly,
            recurrence_count=3,
        )
    )
    session.refresh(goal)
    assert goal.current_amount_cents == 0

    service.update(head.id, TransactionUpdate(is_paid=True, scope=RecurrenceScope.all))
    session.refresh(goal)
    assert goal.current_amount_cents == 600

    service.update(head.id, TransactionUpdate(is_paid=False, scope=RecurrenceScope.all))
    session.refresh(goal)
    assert goal.current_amount_cents == 0


def test_single_saving_value_change_uses_plain_adjustment(monkeypatch):
    session = make_session()
    goal = _goal(session)
    service = TransactionService(session)
    saving = service.create_saving(
        SavingIn(goal_id=goal.id, date=date(2024, 1, 1), amount_cents=300, is_paid=True)
    )
    calls: list[tuple] = []
    original = SavingsGoalSynchronizer.adjust_for_value_change

    def recorder(self, *args):
        calls.append(args)
        return original(self, *args)

    monkeypatch.setattr(SavingsGoalSynchronizer, "adjust_for_value_change", recorder)

    service.update(saving.id, TransactionUpdate(amount_cents=250))

    session.refresh(goal)
    assert calls == [(goal.id, 300, 250)]
    assert goal.current_amount_cents == 250


def test_set_auto_on_head_marks_series_paid():
    session = make_session()
    goal = _goal(session)
    service = TransactionService(session)
    head = service.create_saving(
        SavingIn(
            goal_id=goal.id,
            date=date(2024, 1, 1),
            amount_cents=400,
            recurrence=Recurrence.monthly,
            recurrence_count=3,
        )
    )

    service.set_auto(head.id, True)

    rows = _series(session, head.id)
    assert all(row.is_auto and row.paid for row in rows)
    session.refresh(goal)
    assert goal.current_amount_cents == 1_200

    service.set_auto(rows[1].id, False)
    session.refresh(goal)
    assert goal.current_amount_cents == 800
    assert not _series(session, head.id)[1].paid


def test_set_auto_rejects_one_off_transactions():
    session = make_session()
    service = TransactionService(session)
    single = service.create_bill(
        BillIn(label="Repair", date=date(2024, 3, 1), amount_cents=8_000)
    )
    with pytest.raises(InvalidArgumentError):
        service.set_auto(single.id, True)


def test_clearing_recurrence_on_a_series_is_rejected():
    session = make_session()
    service = TransactionService(session)
    head = _monthly_income(service, count=3)

    for scope in RecurrenceScope:
        with pytest.raises(InvalidArgumentError):
            service.update(head.id, TransactionUpdate(recurrence=None, scope=scope))

    rows = _series(session, head.id)
    assert all(row.recurrence == Recurrence.monthly for row in rows)
    assert all(row.parent_transaction_id == head.id for row in rows[1:])

    assert len(service.delete(head.id, RecurrenceScope.all)) == 3
    assert _series(session, head.id) == []
