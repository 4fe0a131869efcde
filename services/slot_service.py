"""
Admin slot authoring: create, update, delete and list calendar slots.
"""

from datetime import date
from typing import Dict, List, Optional, Sequence, Union

from db.store import CalendarStore, CalendarTransaction
from models.slot import Slot, SlotCreate, SlotStatus, SlotType
from services.blocked_ranges import assert_not_blocked
from utils.constants import MAX_NOTES_LENGTH, SLOT_TIMES
from utils.datetime_utils import parse_calendar_date
from utils.exceptions import (
    DuplicateSlotError,
    InvalidSlotTransitionError,
    SlotInUseError,
    SlotNotFoundError,
    ValidationError,
)
from utils.logging_config import get_logger
from utils.validation import sanitize_text

logger = get_logger(__name__)

# Statuses an admin may set directly; pending and confirmed belong to bookings
ADMIN_STATUSES = (SlotStatus.AVAILABLE.value, SlotStatus.BLOCKED.value)


class SlotService:
    """Admin operations on slots."""

    def __init__(self, store: CalendarStore, slot_times: Optional[Sequence[str]] = None):
        self.store = store
        self.slot_times = list(slot_times or SLOT_TIMES)

    async def create_slot(
        self,
        day: Union[date, str],
        time: str,
        resource_id: Optional[str] = None,
        status: str = SlotStatus.AVAILABLE.value,
        slot_type: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Slot:
        """
        Create a slot at a canonical time.

        Raises:
            ValidationError: Bad date, time, status or slot type
            BlockedSlotError: Date is inside a blocked range
            DuplicateSlotError: Slot already exists for date, time and tech
        """
        if time is None or time.strip() not in self.slot_times:
            raise ValidationError(
                f"Invalid slot time: {time}. Allowed: {', '.join(self.slot_times)}"
            )
        status = self._admin_status(status)
        try:
            slot_data = SlotCreate(
                date=parse_calendar_date(day),
                time=time.strip(),
                resource_id=resource_id,
                status=status,
                slot_type=SlotType(slot_type) if slot_type else None,
                notes=sanitize_text(notes, MAX_NOTES_LENGTH) if notes else None,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e

        blocked_ranges = await self.store.list_blocked_dates()
        assert_not_blocked(slot_data, blocked_ranges)

        slot = await self.store.create_slot(slot_data)
        logger.info(f"Created slot {slot.id} on {slot.date} {slot.time}")
        return slot

    async def create_day_slots(
        self,
        day: Union[date, str],
        resource_id: Optional[str] = None,
        times: Optional[Sequence[str]] = None,
    ) -> List[Slot]:
        """Create available slots for a whole day, skipping ones that exist."""
        created = []
        for time in times or self.slot_times:
            try:
                created.append(await self.create_slot(day, time, resource_id))
            except DuplicateSlotError:
                logger.debug(f"Slot {day} {time} already exists, skipping")
        logger.info(f"Created {len(created)} slot(s) for {day}")
        return created

    async def update_slot(
        self,
        slot_id: str,
        status: Optional[str] = None,
        notes: Optional[str] = None,
        slot_type: Optional[str] = None,
    ) -> Slot:
        """
        Update an admin-editable slot.

        Raises:
            SlotNotFoundError: Unknown slot
            InvalidSlotTransitionError: Slot is held by a booking, or the
                requested status is engine-owned
            BlockedSlotError: Reopening a slot inside a blocked range
        """
        if status is not None:
            status = self._admin_status(status)
        if slot_type is not None:
            try:
                slot_type = SlotType(slot_type).value
            except ValueError as e:
                raise ValidationError(f"Invalid slot type: {slot_type}") from e
        blocked_ranges = await self.store.list_blocked_dates()

        async def update(tx: CalendarTransaction) -> Slot:
            slot = await tx.get_slot(slot_id)
            if slot is None:
                raise SlotNotFoundError(f"Slot {slot_id} not found.")
            changes: Dict[str, object] = {}
            if status is not None and status != slot.status:
                if slot.status not in ADMIN_STATUSES:
                    raise InvalidSlotTransitionError(
                        f"Slot {slot_id} is {slot.status} and held by a booking."
                    )
                if status == SlotStatus.AVAILABLE.value:
                    assert_not_blocked(slot, blocked_ranges)
                changes["status"] = status
            if notes is not None:
                changes["notes"] = sanitize_text(notes, MAX_NOTES_LENGTH) or None
            if slot_type is not None:
                changes["slot_type"] = slot_type
            if not changes:
                return slot
            return tx.update_slot(slot, **changes)

        slot = await self.store.run_transaction(update)
        logger.info(f"Updated slot {slot_id}")
        return slot

    async def delete_slot(self, slot_id: str) -> None:
        """
        Raises:
            SlotNotFoundError: Unknown slot
            SlotInUseError: A non-cancelled booking holds the slot
        """
        active = [b for b in await self.store.list_bookings_for_slot(slot_id) if b.is_active]

        async def delete(tx: CalendarTransaction) -> None:
            slot = await tx.get_slot(slot_id)
            if slot is None:
                raise SlotNotFoundError(f"Slot {slot_id} not found.")
            if active or slot.status in (SlotStatus.PENDING.value, SlotStatus.CONFIRMED.value):
                raise SlotInUseError(
                    f"Slot {slot_id} is referenced by an active booking."
                )
            tx.delete_slot(slot_id)

        await self.store.run_transaction(delete)
        logger.info(f"Deleted slot {slot_id}")

    async def list_slots(
        self,
        day: Optional[Union[date, str]] = None,
        status: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> List[Slot]:
        try:
            day = parse_calendar_date(day) if day is not None else None
            status = SlotStatus(status).value if status else None
        except ValueError as e:
            raise ValidationError(str(e)) from e
        return await self.store.list_slots(day, status, resource_id)

    async def list_available_slots(
        self, day: Union[date, str], resource_id: Optional[str] = None
    ) -> List[Slot]:
        return await self.list_slots(day, SlotStatus.AVAILABLE.value, resource_id)

    async def count_slots_by_status(
        self, day: Optional[Union[date, str]] = None
    ) -> Dict[str, int]:
        counts = {status.value: 0 for status in SlotStatus}
        for slot in await self.list_slots(day):
            counts[slot.status] = counts.get(slot.status, 0) + 1
        return counts

    @staticmethod
    def _admin_status(status) -> str:
        try:
            value = SlotStatus(status).value
        except ValueError as e:
            raise ValidationError(f"Invalid slot status: {status}") from e
        if value not in ADMIN_STATUSES:
            raise InvalidSlotTransitionError(
                f"Slot status {value} can only be set by a booking."
            )
        return value
