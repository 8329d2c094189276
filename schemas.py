import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import Recurrence, RecurrenceScope


class CategoryIn(BaseModel):
    label: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[str] = Field(default=None, max_length=9)
    budget_cents: Optional[int] = Field(default=None, ge=0)


class SavingsGoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    target_amount_cents: int = Field(..., ge=0)
    due_date: Optional[dt.date] = None


class SavingsGoalUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    target_amount_cents: Optional[int] = Field(default=None, ge=0)
    due_date: Optional[dt.date] = None


class RecurringIn(BaseModel):
    """Fields shared by every kind that may start a recurring series."""

    date: dt.date
    amount_cents: int = Field(..., ge=0)
    recurrence: Optional[Recurrence] = None
    recurrence_count: Optional[int] = Field(default=None, ge=1)
    recurrence_end_date: Optional[dt.date] = None
    is_paid: Optional[bool] = None
    is_auto: Optional[bool] = None


class IncomeIn(RecurringIn):
    label: str = Field(..., min_length=1, max_length=200)
    category_id: Optional[int] = None


class BillIn(RecurringIn):
    label: str = Field(..., min_length=1, max_length=200)
    category_id: Optional[int] = None


class SubscriptionIn(RecurringIn):
    label: str = Field(..., min_length=1, max_length=200)
    category_id: Optional[int] = None


class SavingIn(RecurringIn):
    goal_id: int
    label: Optional[str] = Field(default=None, max_length=200)


class ExpenseIn(RecurringIn):
    label: str = Field(..., min_length=1, max_length=200)
    category_id: Optional[int] = None


class RefundIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    label: str = Field(..., min_length=1, max_length=200)
    date: dt.date
    amount_cents: int = Field(..., ge=0)
    category_id: int
    is_paid: Optional[bool] = None


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    label: Optional[str] = Field(default=None, min_length=1, max_length=200)
    date: Optional[dt.date] = None
    amount_cents: Optional[int] = Field(default=None, ge=0)
    category_id: Optional[int] = None
    is_paid: Optional[bool] = None
    recurrence: Optional[Recurrence] = None
    recurrence_end_date: Optional[dt.date] = None
    scope: RecurrenceScope = RecurrenceScope.current_only

    def changes(self) -> dict[str, object]:
        data = self.model_dump(exclude_unset=True, exclude={"scope"})
        for key in ("label", "date", "amount_cents", "is_paid"):
            if data.get(key, ...) is None:
                data.pop(key)
        return data
