"""Pydantic models for data validation and serialization."""

from .blocked_date import BlockedDate, BlockedDateCreate, BlockScope
from .booking import Booking, BookingReservation, BookingStatus, ClientType
from .customer import Customer, CustomerCreate
from .service import (
    SERVICE_VARIANTS,
    ServiceLocation,
    ServiceType,
    ServiceVariant,
    get_required_slot_count,
    get_service_variant,
)
from .slot import Slot, SlotCreate, SlotStatus, SlotType

__all__ = [
    "BlockedDate",
    "BlockedDateCreate",
    "BlockScope",
    "Booking",
    "BookingReservation",
    "BookingStatus",
    "ClientType",
    "Customer",
    "CustomerCreate",
    "SERVICE_VARIANTS",
    "ServiceLocation",
    "ServiceType",
    "ServiceVariant",
    "get_required_slot_count",
    "get_service_variant",
    "Slot",
    "SlotCreate",
    "SlotStatus",
    "SlotType",
]
