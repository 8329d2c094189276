from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from errors import InvalidArgumentError


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def validate_month(month: int) -> None:
    if month < 1 or month > 12:
        raise InvalidArgumentError("Month must be between 1 and 12")


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def month_period(year: int, month: int) -> Period:
    validate_month(month)
    return Period(f"{year:04d}-{month:02d}", month_start(year, month), month_end(year, month))


def previous_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def distinct_months(dates: Iterable[date]) -> list[tuple[int, int]]:
    return sorted({(d.year, d.month) for d in dates})


def normalize_year_month(
    year: Optional[int],
    month: Optional[int],
    *,
    today: Optional[date] = None,
) -> Optional[Period]:
    """Turn optional ``year``/``month`` query arguments into a month period.

    A year without a month is rejected; a month without a year refers to the
    current year. Returns ``None`` when neither is given (no date filter).
    """
    if year is not None and month is None:
        raise InvalidArgumentError("Month is required when year is provided")
    if month is None:
        return None
    if year is None:
        year = (today or date.today()).year
    return month_period(year, month)
