"""Booking models for appointments."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from models.service import ServiceLocation, ServiceType


class BookingStatus(str, Enum):
    """Booking status."""

    PENDING_FORM = "pending_form"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ClientType(str, Enum):
    """Whether the customer booked before."""

    NEW = "new"
    REPEAT = "repeat"


class Booking(BaseModel):
    """Booking model."""

    id: Optional[str] = None
    booking_id: str = Field(..., description="Human-facing id, e.g. GN-00042")
    slot_id: str = Field(..., description="First slot of the chain")
    linked_slot_ids: List[str] = Field(
        default_factory=list, description="Additional consecutive slots, in order"
    )
    status: BookingStatus = BookingStatus.PENDING_FORM
    service_type: ServiceType = ServiceType.MANICURE
    resource_id: Optional[str] = None
    customer_id: Optional[str] = None
    client_type: Optional[ClientType] = None
    service_location: ServiceLocation = ServiceLocation.HOMEBASED_STUDIO
    customer_data: Dict[str, str] = Field(default_factory=dict)
    customer_data_order: List[str] = Field(default_factory=list)
    form_response_id: Optional[str] = None
    slots_released_at: Optional[datetime] = Field(
        default=None, description="Set once the slots of a cancelled booking were freed"
    )
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = Field(default=0, ge=0)

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "booking_id": "GN-00042",
                "slot_id": "slot_1",
                "linked_slot_ids": ["slot_2"],
                "service_type": "mani_pedi",
                "status": "pending_form",
                "resource_id": "tech_1",
            }
        }

    @model_validator(mode="before")
    @classmethod
    def _upgrade_paired_slot(cls, data):
        # Older records stored a single paired slot instead of a list
        if isinstance(data, dict) and "paired_slot_id" in data:
            data = dict(data)
            paired = data.pop("paired_slot_id")
            if paired and not data.get("linked_slot_ids"):
                data["linked_slot_ids"] = [paired]
        if isinstance(data, dict) and data.get("linked_slot_ids") is None:
            data = dict(data)
            data["linked_slot_ids"] = []
        return data

    @property
    def chain(self) -> List[str]:
        """Ordered slot ids held by this booking: primary first."""
        return [self.slot_id, *self.linked_slot_ids]

    @property
    def is_active(self) -> bool:
        return self.status != BookingStatus.CANCELLED.value


class BookingReservation(BaseModel):
    """Result of a successful reservation."""

    id: str
    booking_id: str
    reference_token: str
    slot_ids: List[str]
