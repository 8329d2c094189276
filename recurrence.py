import logging
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import Recurrence, Transaction, TransactionKind
from periods import distinct_months


logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


def next_occurrence(base: date, unit: Recurrence, n: int = 1) -> date:
    """Date of the ``n``-th occurrence after ``base``.

    Month and year steps keep ``base``'s day of month, clamped to the last day
    of the target month (Jan 31 + 1 month is Feb 28/29, Feb 29 + 1 year is
    Feb 28). Because clamping is applied against ``base``, chaining single
    steps is not the same as one ``n``-step: Jan 31 -> Feb 28 -> Mar 28, while
    ``next_occurrence(Jan 31, monthly, 2)`` is Mar 31.
    """
    if n < 1:
        raise ValueError("Occurrence offset must be at least 1")
    if unit == Recurrence.daily:
        return base + timedelta(days=n)
    if unit == Recurrence.weekly:
        return base + timedelta(weeks=n)
    if unit == Recurrence.monthly:
        return add_months(base, n)
    if unit == Recurrence.yearly:
        return add_months(base, 12 * n)
    raise ValueError(f"Unsupported recurrence: {unit!r}")


def expand(
    start: date,
    unit: Recurrence,
    end_date: Optional[date],
    max_occurrences: int = 12,
) -> list[date]:
    dates: list[date] = []
    for n in range(1, max_occurrences + 1):
        candidate = next_occurrence(start, unit, n)
        if end_date is not None and candidate > end_date:
            break
        dates.append(candidate)
    return dates


def build_children(head: Transaction, dates: list[date]) -> list[Transaction]:
    return [
        Transaction(
            user_id=head.user_id,
            label=head.label,
            date=occurrence_date,
            amount_cents=head.amount_cents,
            kind=head.kind,
            category_id=head.category_id,
            goal_id=head.goal_id,
            recurrence=head.recurrence,
            recurrence_end_date=head.recurrence_end_date,
            parent_transaction_id=head.id,
            is_paid=head.is_paid,
            is_auto=head.is_auto,
        )
        for occurrence_date in dates
    ]


class RecurringEngine:
    """Keeps recurring series materialized up to a rolling horizon."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.settings = get_settings()

    def horizon_for(self, today: date) -> date:
        return add_months(today, self.settings.horizon_months)

    def heads(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.recurrence.isnot(None),
                Transaction.parent_transaction_id.is_(None),
            )
            .order_by(Transaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def extend_series(self, head: Transaction, today: Optional[date] = None) -> int:
        from services import MonthlyBalanceService, SavingsGoalSynchronizer

        today = today or local_today()
        if head.recurrence is None or head.parent_transaction_id is not None:
            return 0
        end_date = head.recurrence_end_date
        if end_date is not None and end_date < today:
            return 0
        if head.recurrence_count is not None:
            # The count includes the head, so the series ends at its last planned date.
            if head.recurrence_count <= 1:
                return 0
            final = next_occurrence(head.date, head.recurrence, head.recurrence_count - 1)
            end_date = final if end_date is None else min(end_date, final)

        horizon = self.horizon_for(today)
        last_child = self.session.scalar(
            select(Transaction)
            .where(Transaction.parent_transaction_id == head.id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(1)
        )
        last_date = last_child.date if last_child else head.date

        candidate = next_occurrence(last_date, head.recurrence, 1)
        if end_date is not None and candidate > end_date:
            return 0
        if candidate > horizon:
            return 0
        exists = self.session.scalar(
            select(Transaction.id)
            .where(
                Transaction.parent_transaction_id == head.id,
                Transaction.date == candidate,
            )
            .limit(1)
        )
        if exists:
            return 0

        dates = [
            d
            for d in expand(
                last_date, head.recurrence, end_date, self.settings.default_occurrence_cap
            )
            if last_date < d <= horizon
        ]
        if not dates:
            return 0

        children = build_children(head, dates)
        self.session.add_all(children)
        self.session.flush()
        logger.debug(f"horizon_extend: head={head.id} created={len(children)}")

        if head.kind == TransactionKind.savings and head.goal_id and head.paid:
            SavingsGoalSynchronizer(self.session).add_to_goal(
                head.goal_id, head.amount_cents, len(children)
            )
        MonthlyBalanceService(self.session, head.user_id).invalidate_months(
            distinct_months(dates)
        )
        return len(children)

    def extend_all(self, today: Optional[date] = None) -> int:
        today = today or local_today()
        logger.info(f"horizon_sweep: start today={today}")
        generated = 0
        failures = 0
        for head in self.heads():
            head_id = head.id
            try:
                with self.session.begin_nested():
                    generated += self.extend_series(head, today)
            except Exception:
                failures += 1
                logger.exception(f"horizon_sweep: head={head_id} failed, skipping")
        logger.info(
            f"horizon_sweep: done generated={generated} failed_heads={failures}"
        )
        return generated
