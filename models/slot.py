"""Slot models for appointment time slots."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from utils.validation import validate_slot_time


class SlotStatus(str, Enum):
    """Slot availability status."""

    AVAILABLE = "available"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    BLOCKED = "blocked"


class SlotType(str, Enum):
    """Pricing flavour of a slot."""

    REGULAR = "regular"
    WITH_SQUEEZE_FEE = "with_squeeze_fee"


def _check_time(value: str) -> str:
    if not validate_slot_time(value):
        raise ValueError(f"Slot time must be HH:MM, got {value!r}")
    return value.strip()


class Slot(BaseModel):
    """Time slot model."""

    id: Optional[str] = None
    date: date
    time: str
    status: SlotStatus = SlotStatus.AVAILABLE
    resource_id: Optional[str] = Field(
        default=None, description="Nail tech the slot belongs to"
    )
    slot_type: Optional[SlotType] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = Field(default=0, ge=0)

    @field_validator("time")
    @classmethod
    def normalize_time(cls, value: str) -> str:
        return _check_time(value)

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "date": "2026-01-15",
                "time": "10:00",
                "status": "available",
                "resource_id": "tech_1",
            }
        }

    @property
    def key(self) -> tuple:
        """Uniqueness key: one slot per date, time and nail tech."""
        return (self.date, self.time, self.resource_id)


class SlotCreate(BaseModel):
    """Slot creation model."""

    date: date
    time: str
    resource_id: Optional[str] = None
    status: SlotStatus = SlotStatus.AVAILABLE
    slot_type: Optional[SlotType] = None
    notes: Optional[str] = None

    @field_validator("time")
    @classmethod
    def normalize_time(cls, value: str) -> str:
        return _check_time(value)

    class Config:
        use_enum_values = True
