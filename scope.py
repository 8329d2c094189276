"""Series scope resolution.

A mutation addressed at one member of a recurring series may fan out to other
members depending on the requested scope. Everything here is pure: callers
load the series from storage, ask which ids are affected, then issue one batch
statement for the returned ids.
"""

from typing import Optional, Protocol, Sequence

from models import Recurrence, RecurrenceScope


class SeriesMember(Protocol):
    id: int
    date: object
    parent_transaction_id: Optional[int]
    recurrence: Optional[Recurrence]


def is_series_head(txn: SeriesMember) -> bool:
    return txn.recurrence is not None and txn.parent_transaction_id is None


def is_series_member(txn: SeriesMember) -> bool:
    return is_series_head(txn) or txn.parent_transaction_id is not None


def series_head_id(txn: SeriesMember) -> Optional[int]:
    if txn.parent_transaction_id is not None:
        return txn.parent_transaction_id
    if txn.recurrence is not None:
        return txn.id
    return None


def resolve_affected_ids(
    target: SeriesMember,
    scope: RecurrenceScope,
    series: Sequence[SeriesMember],
) -> list[int]:
    """Ids touched by a mutation of ``target`` under ``scope``.

    ``series`` is the head plus every child of the target's series. The result
    is ordered by date, then id, and always contains ``target.id``.
    """
    head_id = series_head_id(target)
    if head_id is None or scope == RecurrenceScope.current_only:
        return [target.id]

    members = [m for m in series if m.id == head_id or m.parent_transaction_id == head_id]
    if scope == RecurrenceScope.all:
        affected = members
    else:
        affected = [
            m
            for m in members
            if m.id == target.id or m.date >= target.date
        ]
    if all(m.id != target.id for m in affected):
        affected.append(target)
    affected.sort(key=lambda m: (m.date, m.id))
    return [m.id for m in affected]
