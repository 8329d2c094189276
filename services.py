from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Sequence, TypeVar

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from config import get_settings
from errors import ForbiddenError, InvalidArgumentError, NotFoundError
from models import (
    Category,
    MonthlyBalanceSnapshot,
    RecurrenceScope,
    SavingsGoal,
    Transaction,
    TransactionKind,
)
from periods import (
    Period,
    distinct_months,
    month_period,
    normalize_year_month,
    previous_month,
    validate_month,
)
from recurrence import build_children, expand, local_today, next_occurrence
from schemas import (
    BillIn,
    CategoryIn,
    ExpenseIn,
    IncomeIn,
    RecurringIn,
    RefundIn,
    SavingIn,
    SavingsGoalIn,
    SavingsGoalUpdate,
    SubscriptionIn,
    TransactionUpdate,
)
from scope import (
    is_series_head,
    is_series_member,
    resolve_affected_ids,
    series_head_id,
)


logger = logging.getLogger(__name__)

PAID_BY_DEFAULT = (TransactionKind.expense, TransactionKind.refund)
RULE_FIELDS = ("recurrence", "recurrence_end_date")
KIND_TOTAL_FIELDS = {
    TransactionKind.income: "income_cents",
    TransactionKind.bill: "bills_cents",
    TransactionKind.savings: "savings_cents",
    TransactionKind.subscription: "subscriptions_cents",
    TransactionKind.expense: "expenses_cents",
    TransactionKind.refund: "refunds_cents",
}

OwnedModel = TypeVar("OwnedModel", Category, SavingsGoal, Transaction)


def get_current_user_id() -> int:
    return 1


def get_owned(
    session: Session, model: type[OwnedModel], entity_id: int, user_id: int
) -> OwnedModel:
    """Load ``entity_id`` and check it belongs to ``user_id``.

    A missing row and a row owned by someone else are reported separately.
    """
    names = {Category: "category", SavingsGoal: "savings goal", Transaction: "transaction"}
    name = names[model]
    entity = session.get(model, entity_id)
    if entity is None:
        raise NotFoundError(f"{name.capitalize()} not found")
    if entity.user_id != user_id:
        raise ForbiddenError(f"You do not have access to this {name}")
    return entity


def resolve_is_paid(
    kind: TransactionKind, is_paid: Optional[bool], is_auto: bool
) -> bool:
    if is_paid is not None:
        return is_paid
    if kind in PAID_BY_DEFAULT:
        return True
    return is_auto


def _amount_groups(rows: Iterable[Transaction]) -> Counter:
    return Counter(row.amount_cents for row in rows)


def _savings_rows_by_goal(
    rows: Iterable[Transaction],
) -> dict[int, list[Transaction]]:
    by_goal: dict[int, list[Transaction]] = {}
    for row in rows:
        if row.kind == TransactionKind.savings and row.goal_id is not None:
            by_goal.setdefault(row.goal_id, []).append(row)
    return by_goal


@dataclass
class MonthlyBalance:
    year: int
    month: int
    income_cents: int
    bills_cents: int
    savings_cents: int
    subscriptions_cents: int
    expenses_cents: int
    refunds_cents: int
    balance_cents: int
    previous_month_balance_cents: Optional[int]

    @property
    def delta_cents(self) -> int:
        return month_delta(
            {
                "income_cents": self.income_cents,
                "bills_cents": self.bills_cents,
                "savings_cents": self.savings_cents,
                "subscriptions_cents": self.subscriptions_cents,
                "expenses_cents": self.expenses_cents,
                "refunds_cents": self.refunds_cents,
            }
        )


def month_delta(totals: dict[str, int]) -> int:
    return (
        totals["income_cents"]
        + totals["refunds_cents"]
        - totals["bills_cents"]
        - totals["savings_cents"]
        - totals["subscriptions_cents"]
        - totals["expenses_cents"]
    )


class MonthlyBalanceService:
    """Per-month aggregate cache over the ledger.

    ``get_balance`` fills a missing month and chains the previous month's
    cached balance into it. ``invalidate`` rewrites a month's totals with a
    balance equal to that month's own delta, without reading the previous
    month; the chained value only comes back on a cold ``get_balance``.
    """

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _snapshot(self, year: int, month: int) -> Optional[MonthlyBalanceSnapshot]:
        return self.session.scalar(
            select(MonthlyBalanceSnapshot).where(
                MonthlyBalanceSnapshot.user_id == self.user_id,
                MonthlyBalanceSnapshot.year == year,
                MonthlyBalanceSnapshot.month == month,
            )
        )

    def _previous_balance(self, year: int, month: int) -> Optional[int]:
        prev_year, prev_month = previous_month(year, month)
        snapshot = self._snapshot(prev_year, prev_month)
        return snapshot.balance_cents if snapshot else None

    def _aggregate(self, year: int, month: int) -> dict[str, int]:
        period = month_period(year, month)
        rows = self.session.execute(
            select(Transaction.kind, func.coalesce(func.sum(Transaction.amount_cents), 0))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.kind)
        ).all()
        totals = {field: 0 for field in KIND_TOTAL_FIELDS.values()}
        for kind, total in rows:
            totals[KIND_TOTAL_FIELDS[TransactionKind(kind)]] = int(total or 0)
        return totals

    def _upsert(
        self, year: int, month: int, totals: dict[str, int], balance: int
    ) -> MonthlyBalanceSnapshot:
        snapshot = self._snapshot(year, month)
        if snapshot is None:
            snapshot = MonthlyBalanceSnapshot(user_id=self.user_id, year=year, month=month)
            self.session.add(snapshot)
        for field, value in totals.items():
            setattr(snapshot, field, value)
        snapshot.balance_cents = balance
        self.session.flush()
        return snapshot

    def get_balance(self, year: int, month: int) -> MonthlyBalance:
        validate_month(month)
        snapshot = self._snapshot(year, month)
        previous = self._previous_balance(year, month)
        if snapshot is None:
            totals = self._aggregate(year, month)
            snapshot = self._upsert(
                year, month, totals, (previous or 0) + month_delta(totals)
            )
        return MonthlyBalance(
            year=year,
            month=month,
            income_cents=snapshot.income_cents,
            bills_cents=snapshot.bills_cents,
            savings_cents=snapshot.savings_cents,
            subscriptions_cents=snapshot.subscriptions_cents,
            expenses_cents=snapshot.expenses_cents,
            refunds_cents=snapshot.refunds_cents,
            balance_cents=snapshot.balance_cents,
            previous_month_balance_cents=previous,
        )

    def previous_month_balance(self, today: Optional[date] = None) -> MonthlyBalance:
        today = today or local_today()
        year, month = previous_month(today.year, today.month)
        return self.get_balance(year, month)

    def invalidate(self, year: int, month: int) -> MonthlyBalanceSnapshot:
        validate_month(month)
        totals = self._aggregate(year, month)
        return self._upsert(year, month, totals, month_delta(totals))

    def invalidate_for_date(self, txn_date: date) -> MonthlyBalanceSnapshot:
        return self.invalidate(txn_date.year, txn_date.month)

    def invalidate_months(self, months: Iterable[tuple[int, int]]) -> None:
        for year, month in sorted(set(months)):
            self.invalidate(year, month)

    def rebuild(self) -> int:
        self.session.execute(
            delete(MonthlyBalanceSnapshot).where(
                MonthlyBalanceSnapshot.user_id == self.user_id
            )
        )
        self.session.flush()
        dates = self.session.scalars(
            select(Transaction.date)
            .where(Transaction.user_id == self.user_id)
            .distinct()
        ).all()
        months = distinct_months(dates)
        # Ascending order so each cold read chains onto the month before it.
        for year, month in months:
            self.get_balance(year, month)
        self.session.commit()
        return len(months)


class SavingsGoalSynchronizer:
    """Moves a goal's ``current_amount_cents`` in step with its paid savings.

    Every change is a single ``current = current + delta`` statement executed
    by the database. Callers pass only paid rows.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def _increment(self, goal_id: int, delta: int) -> None:
        if delta == 0:
            return
        self.session.execute(
            update(SavingsGoal)
            .where(SavingsGoal.id == goal_id)
            .values(current_amount_cents=SavingsGoal.current_amount_cents + delta)
        )

    def add_to_goal(self, goal_id: int, value: int, count: int = 1) -> None:
        self._increment(goal_id, value * count)

    def subtract_from_goal(self, goal_id: int, value: int) -> None:
        self._increment(goal_id, -value)

    def adjust_for_value_change(
        self, goal_id: int, old_value: int, new_value: int
    ) -> None:
        self._increment(goal_id, new_value - old_value)

    def adjust_for_value_change_batch(
        self,
        goal_id: int,
        old_value: int,
        new_value: int,
        affected_paid_count: int,
    ) -> None:
        self._increment(goal_id, (new_value - old_value) * affected_paid_count)

    def recompute(self, goal_id: int) -> None:
        paid_total = (
            select(func.coalesce(func.sum(Transaction.amount_cents), 0))
            .where(
                Transaction.goal_id == goal_id,
                Transaction.kind == TransactionKind.savings,
                Transaction.is_paid.is_(True),
            )
            .scalar_subquery()
        )
        self.session.execute(
            update(SavingsGoal)
            .where(SavingsGoal.id == goal_id)
            .values(current_amount_cents=paid_total)
            .execution_options(synchronize_session="fetch")
        )


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.settings = get_settings()
        self.balances = MonthlyBalanceService(session, self.user_id)
        self.goals = SavingsGoalSynchronizer(session)

    def get(self, transaction_id: int) -> Transaction:
        return get_owned(self.session, Transaction, transaction_id, self.user_id)

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is not None:
            get_owned(self.session, Category, category_id, self.user_id)

    def _series(self, txn: Transaction) -> list[Transaction]:
        head_id = series_head_id(txn)
        if head_id is None:
            return [txn]
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                or_(
                    Transaction.id == head_id,
                    Transaction.parent_transaction_id == head_id,
                ),
            )
            .order_by(Transaction.date, Transaction.id)
        )
        return list(self.session.scalars(stmt).all())

    # -- create -----------------------------------------------------------

    def create_income(self, data: IncomeIn) -> Transaction:
        self._check_category(data.category_id)
        return self._create(
            TransactionKind.income, data, label=data.label, category_id=data.category_id
        )

    def create_bill(self, data: BillIn) -> Transaction:
        self._check_category(data.category_id)
        return self._create(
            TransactionKind.bill, data, label=data.label, category_id=data.category_id
        )

    def create_subscription(self, data: SubscriptionIn) -> Transaction:
        self._check_category(data.category_id)
        return self._create(
            TransactionKind.subscription,
            data,
            label=data.label,
            category_id=data.category_id,
        )

    def create_saving(self, data: SavingIn) -> Transaction:
        goal = get_owned(self.session, SavingsGoal, data.goal_id, self.user_id)
        return self._create(
            TransactionKind.savings,
            data,
            label=data.label or f"Saving to {goal.name}",
            goal_id=goal.id,
        )

    def create_expense(self, data: ExpenseIn) -> Transaction:
        self._check_category(data.category_id)
        return self._create(
            TransactionKind.expense, data, label=data.label, category_id=data.category_id
        )

    def create_refund(self, data: RefundIn) -> Transaction:
        get_owned(self.session, Category, data.category_id, self.user_id)
        txn = Transaction(
            user_id=self.user_id,
            label=data.label,
            date=data.date,
            amount_cents=data.amount_cents,
            kind=TransactionKind.refund,
            category_id=data.category_id,
            is_paid=resolve_is_paid(TransactionKind.refund, data.is_paid, False),
            is_auto=False,
        )
        self.session.add(txn)
        self.session.flush()
        self.balances.invalidate_for_date(txn.date)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def _create(
        self,
        kind: TransactionKind,
        data: RecurringIn,
        *,
        label: str,
        category_id: Optional[int] = None,
        goal_id: Optional[int] = None,
    ) -> Transaction:
        is_auto = bool(data.is_auto) if data.is_auto is not None else False
        is_paid = resolve_is_paid(kind, data.is_paid, is_auto)
        head = Transaction(
            user_id=self.user_id,
            label=label,
            date=data.date,
            amount_cents=data.amount_cents,
            kind=kind,
            category_id=category_id,
            goal_id=goal_id,
            recurrence=data.recurrence,
            recurrence_count=data.recurrence_count,
            recurrence_end_date=data.recurrence_end_date,
            is_paid=is_paid,
            is_auto=is_auto,
        )
        self.session.add(head)
        self.session.flush()

        dates: list[date] = []
        if data.recurrence is not None:
            # recurrence_count includes the head; the end date still applies.
            if data.recurrence_count is not None:
                cap = data.recurrence_count - 1
            else:
                cap = self.settings.default_occurrence_cap
            dates = expand(data.date, data.recurrence, data.recurrence_end_date, cap)
            if dates:
                self.session.add_all(build_children(head, dates))
                self.session.flush()
            logger.debug(f"series_created: head={head.id} children={len(dates)}")

        if kind == TransactionKind.savings and goal_id is not None and is_paid:
            self.goals.add_to_goal(goal_id, data.amount_cents, 1 + len(dates))

        self.balances.invalidate_months(distinct_months([data.date, *dates]))
        self.session.commit()
        self.session.refresh(head)
        return head

    # -- update -----------------------------------------------------------

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.changes()
        if changes.get("category_id") is not None:
            self._check_category(changes["category_id"])

        in_series = is_series_member(txn)
        scope = data.scope if in_series else RecurrenceScope.current_only
        rule_changes = {k: changes[k] for k in RULE_FIELDS if k in changes}
        if in_series and rule_changes and scope == RecurrenceScope.current_only:
            raise InvalidArgumentError(
                "Recurrence changes on a series must use scope all or current_and_future"
            )
        if in_series and "recurrence" in changes and changes["recurrence"] is None:
            raise InvalidArgumentError(
                "Recurrence cannot be removed from a series; delete its occurrences instead"
            )

        series = self._series(txn) if scope != RecurrenceScope.current_only else [txn]
        affected_ids = resolve_affected_ids(txn, scope, series)
        by_id = {row.id: row for row in series}
        affected = [by_id[i] for i in affected_ids]
        months = set(distinct_months(row.date for row in affected))

        self._sync_goals_for_update(affected, changes)

        batch = {k: v for k, v in changes.items() if k != "date"}
        if batch:
            self.session.execute(
                update(Transaction)
                .where(Transaction.id.in_(affected_ids))
                .values(**batch)
            )
        head_id = series_head_id(txn)
        if (
            rule_changes
            and scope == RecurrenceScope.current_and_future
            and head_id is not None
            and head_id not in affected_ids
        ):
            self.session.execute(
                update(Transaction)
                .where(Transaction.id == head_id)
                .values(**rule_changes)
            )
        if "date" in changes:
            txn.date = changes["date"]
            months.add((txn.date.year, txn.date.month))

        self.session.flush()
        self.balances.invalidate_months(months)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def _sync_goals_for_update(
        self, affected: Sequence[Transaction], changes: dict[str, object]
    ) -> None:
        new_amount = changes.get("amount_cents")
        new_paid = changes.get("is_paid")
        if new_amount is None and new_paid is None:
            return
        single = len(affected) == 1
        for goal_id, rows in _savings_rows_by_goal(affected).items():
            if new_amount is not None and new_paid is not False:
                staying_paid = [row for row in rows if row.paid]
                for old_amount, count in _amount_groups(staying_paid).items():
                    if single:
                        self.goals.adjust_for_value_change(
                            goal_id, old_amount, new_amount
                        )
                    else:
                        self.goals.adjust_for_value_change_batch(
                            goal_id, old_amount, new_amount, count
                        )
            if new_paid is True:
                becoming_paid = [row for row in rows if not row.paid]
                if new_amount is not None and becoming_paid:
                    self.goals.add_to_goal(goal_id, new_amount, len(becoming_paid))
                else:
                    for amount, count in _amount_groups(becoming_paid).items():
                        self.goals.add_to_goal(goal_id, amount, count)
            elif new_paid is False:
                was_paid = [row for row in rows if row.paid]
                if was_paid:
                    self.goals.subtract_from_goal(
                        goal_id, sum(row.amount_cents for row in was_paid)
                    )

    def set_auto(self, transaction_id: int, is_auto: bool) -> Transaction:
        txn = self.get(transaction_id)
        if txn.recurrence is None:
            raise InvalidArgumentError(
                "Auto payment can only be set on recurring transactions"
            )
        rows = self._series(txn) if is_series_head(txn) else [txn]
        for goal_id, goal_rows in _savings_rows_by_goal(rows).items():
            if is_auto:
                becoming_paid = [row for row in goal_rows if not row.paid]
                for amount, count in _amount_groups(becoming_paid).items():
                    self.goals.add_to_goal(goal_id, amount, count)
            else:
                was_paid = [row for row in goal_rows if row.paid]
                if was_paid:
                    self.goals.subtract_from_goal(
                        goal_id, sum(row.amount_cents for row in was_paid)
                    )
        self.session.execute(
            update(Transaction)
            .where(Transaction.id.in_([row.id for row in rows]))
            .values(is_auto=is_auto, is_paid=is_auto)
        )
        self.balances.invalidate_months(distinct_months(row.date for row in rows))
        self.session.commit()
        self.session.refresh(txn)
        return txn

    # -- delete -----------------------------------------------------------

    def delete(
        self,
        transaction_id: int,
        scope: RecurrenceScope = RecurrenceScope.current_only,
    ) -> list[int]:
        txn = self.get(transaction_id)
        series = self._series(txn) if is_series_member(txn) else [txn]
        affected_ids = resolve_affected_ids(txn, scope, series)
        doomed = set(affected_ids)
        affected = [row for row in series if row.id in doomed]
        months = distinct_months(row.date for row in affected)

        for goal_id, rows in _savings_rows_by_goal(affected).items():
            paid_total = sum(row.amount_cents for row in rows if row.paid)
            if paid_total:
                self.goals.subtract_from_goal(goal_id, paid_total)

        head_id = series_head_id(txn)
        survivors = [row for row in series if row.id not in doomed]
        if head_id is not None and survivors:
            head = next(row for row in series if row.id == head_id)
            self._reshape_series(head, survivors, affected, scope)

        self.session.execute(
            delete(Transaction).where(Transaction.id.in_(affected_ids))
        )
        self.balances.invalidate_months(months)
        self.session.commit()
        return affected_ids

    def _reshape_series(
        self,
        head: Transaction,
        survivors: Sequence[Transaction],
        removed: Sequence[Transaction],
        scope: RecurrenceScope,
    ) -> None:
        """Keep the surviving members of a partly deleted series well-formed.

        A removed head hands the rule to the earliest survivor. When a wider
        scope removed rows past the last survivor, the series ends there so the
        horizon sweep does not bring them back.
        """
        last = survivors[-1]
        head_removed = any(row.id == head.id for row in removed)
        tail_removed = scope != RecurrenceScope.current_only and any(
            (row.date, row.id) > (last.date, last.id) for row in removed
        )
        if not (head_removed or tail_removed):
            return

        count = head.recurrence_count
        end_date = head.recurrence_end_date
        if tail_removed:
            end_date = last.date if end_date is None else min(end_date, last.date)
            if count is not None:
                count = len(survivors)
        elif count is not None:
            count = max(count - len(removed), len(survivors))

        new_head = survivors[0] if head_removed else head
        head_values = {"recurrence_count": count, "recurrence_end_date": end_date}
        if head_removed:
            head_values.update(parent_transaction_id=None, recurrence=head.recurrence)
        self.session.execute(
            update(Transaction)
            .where(Transaction.id == new_head.id)
            .values(**head_values)
        )

        others = [row.id for row in survivors if row.id != new_head.id]
        if others:
            child_values: dict[str, object] = {"recurrence_end_date": end_date}
            if head_removed:
                child_values["parent_transaction_id"] = new_head.id
            self.session.execute(
                update(Transaction)
                .where(Transaction.id.in_(others))
                .values(**child_values)
            )


class TransactionQueryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, transaction_id: int) -> Transaction:
        return get_owned(self.session, Transaction, transaction_id, self.user_id)

    def _period(self, year: Optional[int], month: Optional[int]) -> Optional[Period]:
        return normalize_year_month(year, month, today=local_today())

    def list(
        self,
        kinds: Sequence[TransactionKind],
        year: Optional[int] = None,
        month: Optional[int] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Transaction]:
        period = self._period(year, month)
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.kind.in_(list(kinds)),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if period is not None:
            stmt = stmt.where(Transaction.date.between(period.start, period.end))
        return list(self.session.scalars(stmt).all())

    def count(
        self,
        kinds: Sequence[TransactionKind],
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> int:
        period = self._period(year, month)
        stmt = select(func.count(Transaction.id)).where(
            Transaction.user_id == self.user_id,
            Transaction.kind.in_(list(kinds)),
        )
        if period is not None:
            stmt = stmt.where(Transaction.date.between(period.start, period.end))
        return int(self.session.execute(stmt).scalar_one() or 0)

    def income(self, year=None, month=None, limit: int = 20, offset: int = 0):
        return self.list([TransactionKind.income], year, month, limit, offset)

    def bills(self, year=None, month=None, limit: int = 20, offset: int = 0):
        return self.list([TransactionKind.bill], year, month, limit, offset)

    def subscriptions(self, year=None, month=None, limit: int = 20, offset: int = 0):
        return self.list([TransactionKind.subscription], year, month, limit, offset)

    def savings(self, year=None, month=None, limit: int = 20, offset: int = 0):
        return self.list([TransactionKind.savings], year, month, limit, offset)

    def expenses_and_refunds(
        self, year=None, month=None, limit: int = 20, offset: int = 0
    ):
        return self.list(
            [TransactionKind.expense, TransactionKind.refund],
            year,
            month,
            limit,
            offset,
        )

    def current_month(
        self, kinds: Sequence[TransactionKind], limit: int = 20, offset: int = 0
    ) -> list[Transaction]:
        today = local_today()
        return self.list(kinds, today.year, today.month, limit, offset)

    def available_months(self) -> list[tuple[int, int]]:
        dates = self.session.scalars(
            select(Transaction.date)
            .where(Transaction.user_id == self.user_id)
            .distinct()
        ).all()
        return list(reversed(distinct_months(dates)))

    def occurrence_label(self, txn: Transaction) -> Optional[str]:
        """Position of ``txn`` in a bounded series, e.g. ``"3/12"``."""
        head_id = series_head_id(txn)
        if head_id is None:
            return None
        head = txn if head_id == txn.id else self.session.get(Transaction, head_id)
        if head is None or head.recurrence is None:
            return None
        if head.recurrence_count is None and head.recurrence_end_date is None:
            return None
        siblings = self.session.scalars(
            select(Transaction.id)
            .where(
                or_(
                    Transaction.id == head_id,
                    Transaction.parent_transaction_id == head_id,
                )
            )
            .order_by(Transaction.date, Transaction.id)
        ).all()
        position = list(siblings).index(txn.id) + 1
        total = _planned_occurrences(head)
        return f"{position}/{total}"


def _planned_occurrences(head: Transaction) -> int:
    totals = []
    if head.recurrence_count is not None:
        totals.append(head.recurrence_count)
    if head.recurrence_end_date is not None:
        count = 1
        while next_occurrence(head.date, head.recurrence, count) <= head.recurrence_end_date:
            count += 1
        totals.append(count)
    return min(totals)


def _filtered_transactions(
    session: Session,
    user_id: int,
    criterion,
    year: Optional[int],
    month: Optional[int],
) -> list[Transaction]:
    period = normalize_year_month(year, month, today=local_today())
    stmt = (
        select(Transaction)
        .where(Transaction.user_id == user_id, criterion)
        .order_by(Transaction.date.desc(), Transaction.id.desc())
    )
    if period is not None:
        stmt = stmt.where(Transaction.date.between(period.start, period.end))
    return list(session.scalars(stmt).all())


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.label)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        return get_owned(self.session, Category, category_id, self.user_id)

    def create(self, data: CategoryIn) -> Category:
        category = Category(
            user_id=self.user_id,
            label=data.label.strip(),
            icon=data.icon,
            color=data.color,
            budget_cents=data.budget_cents,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        category.label = data.label.strip()
        category.icon = data.icon
        category.color = data.color
        category.budget_cents = data.budget_cents
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.category_id == category.id)
            .values(category_id=None)
        )
        self.session.delete(category)
        self.session.commit()

    def transactions(
        self,
        category_id: int,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> list[Transaction]:
        category = self.get(category_id)
        return _filtered_transactions(
            self.session,
            self.user_id,
            Transaction.category_id == category.id,
            year,
            month,
        )


class SavingsGoalService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[SavingsGoal]:
        stmt = (
            select(SavingsGoal)
            .where(SavingsGoal.user_id == self.user_id)
            .order_by(SavingsGoal.created_at, SavingsGoal.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, goal_id: int) -> SavingsGoal:
        return get_owned(self.session, SavingsGoal, goal_id, self.user_id)

    def create(self, data: SavingsGoalIn) -> SavingsGoal:
        goal = SavingsGoal(
            user_id=self.user_id,
            name=data.name.strip(),
            target_amount_cents=data.target_amount_cents,
            current_amount_cents=0,
            due_date=data.due_date,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def update(self, goal_id: int, data: SavingsGoalUpdate) -> SavingsGoal:
        goal = self.get(goal_id)
        if data.name is not None:
            goal.name = data.name.strip()
        if data.target_amount_cents is not None:
            goal.target_amount_cents = data.target_amount_cents
        if data.due_date is not None:
            goal.due_date = data.due_date
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.goal_id == goal.id)
            .values(goal_id=None)
        )
        self.session.delete(goal)
        self.session.commit()

    def transactions(
        self,
        goal_id: int,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> list[Transaction]:
        goal = self.get(goal_id)
        return _filtered_transactions(
            self.session,
            self.user_id,
            Transaction.goal_id == goal.id,
            year,
            month,
        )

    def reconcile(self, goal_id: int) -> SavingsGoal:
        goal = self.get(goal_id)
        SavingsGoalSynchronizer(self.session).recompute(goal.id)
        self.session.commit()
        self.session.refresh(goal)
        return goal
