"""Service models: what a booking reserves and how many slots it needs."""

from enum import Enum
from typing import Dict, List, Sequence

from pydantic import BaseModel, Field

from utils.exceptions import MissingLinkedSlotsError, UnexpectedLinkedSlotsError


class ServiceType(str, Enum):
    """Available service types."""

    MANICURE = "manicure"
    PEDICURE = "pedicure"
    MANI_PEDI = "mani_pedi"
    HOME_SERVICE_2SLOTS = "home_service_2slots"
    HOME_SERVICE_3SLOTS = "home_service_3slots"


class ServiceLocation(str, Enum):
    """Where the service is performed."""

    HOMEBASED_STUDIO = "homebased_studio"
    HOME_SERVICE = "home_service"


class ServiceVariant(BaseModel):
    """
    Booking shape for one service type.

    The variant owns the number of consecutive slots the service occupies
    and the chain-length check, so callers never infer it from nullable
    booking fields.
    """

    type: ServiceType
    name: str
    required_slots: int = Field(..., ge=1, le=3)
    default_location: ServiceLocation = ServiceLocation.HOMEBASED_STUDIO

    class Config:
        use_enum_values = True
        frozen = True

    @property
    def linked_slot_count(self) -> int:
        return self.required_slots - 1

    def validate_linked_slots(self, linked_slot_ids: Sequence[str]) -> List[str]:
        """
        Check the number of additional slots supplied for this service.

        Raises:
            UnexpectedLinkedSlotsError: Single-slot service got linked slots
            MissingLinkedSlotsError: Multi-slot service got the wrong count
        """
        linked = list(linked_slot_ids or [])
        if self.required_slots == 1 and linked:
            raise UnexpectedLinkedSlotsError(
                f"Additional slots provided for single-slot service {self.type}."
            )
        if self.required_slots > 1 and len(linked) != self.linked_slot_count:
            raise MissingLinkedSlotsError(
                f"{self.name} requires {self.required_slots} consecutive slots, "
                f"got {len(linked) + 1}."
            )
        return linked


SERVICE_VARIANTS: Dict[ServiceType, ServiceVariant] = {
    ServiceType.MANICURE: ServiceVariant(
        type=ServiceType.MANICURE, name="Manicure", required_slots=1
    ),
    ServiceType.PEDICURE: ServiceVariant(
        type=ServiceType.PEDICURE, name="Pedicure", required_slots=1
    ),
    ServiceType.MANI_PEDI: ServiceVariant(
        type=ServiceType.MANI_PEDI, name="Mani + Pedi", required_slots=2
    ),
    ServiceType.HOME_SERVICE_2SLOTS: ServiceVariant(
        type=ServiceType.HOME_SERVICE_2SLOTS,
        name="Home Service (2 slots)",
        required_slots=2,
        default_location=ServiceLocation.HOME_SERVICE,
    ),
    ServiceType.HOME_SERVICE_3SLOTS: ServiceVariant(
        type=ServiceType.HOME_SERVICE_3SLOTS,
        name="Home Service (3 slots)",
        required_slots=3,
        default_location=ServiceLocation.HOME_SERVICE,
    ),
}


def get_service_variant(service_type) -> ServiceVariant:
    """Get the variant for a service type (enum or raw value)."""
    return SERVICE_VARIANTS[ServiceType(service_type)]


def get_required_slot_count(service_type) -> int:
    """Number of consecutive slots the service occupies."""
    return get_service_variant(service_type).required_slots
