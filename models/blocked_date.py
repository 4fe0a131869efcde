"""Blocked date range models."""

import calendar
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, model_validator


class BlockScope(str, Enum):
    """How a blocked range was authored. Evaluation ignores it."""

    SINGLE = "single"
    RANGE = "range"
    MONTH = "month"


class BlockedDate(BaseModel):
    """Closed, inclusive range of days on which nothing may be booked."""

    id: Optional[str] = None
    start_date: date
    end_date: date
    reason: Optional[str] = None
    scope: BlockScope = BlockScope.RANGE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        use_enum_values = True

    def contains(self, day: date) -> bool:
        """True when ``day`` falls inside the range."""
        return self.start_date <= day <= self.end_date


class BlockedDateCreate(BaseModel):
    """Blocked range creation model."""

    start_date: date
    end_date: date
    reason: Optional[str] = None
    scope: BlockScope = BlockScope.RANGE

    class Config:
        use_enum_values = True

    @model_validator(mode="after")
    def _check_order(self) -> "BlockedDateCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self

    @classmethod
    def single_day(cls, day: date, reason: Optional[str] = None) -> "BlockedDateCreate":
        return cls(start_date=day, end_date=day, reason=reason, scope=BlockScope.SINGLE)

    @classmethod
    def whole_month(
        cls, year: int, month: int, reason: Optional[str] = None
    ) -> "BlockedDateCreate":
        last_day = calendar.monthrange(year, month)[1]
        return cls(
            start_date=date(year, month, 1),
            end_date=date(year, month, last_day),
            reason=reason,
            scope=BlockScope.MONTH,
        )
