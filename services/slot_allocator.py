"""
Slot allocator: turns a starting slot plus the caller's linked slots into a
verified chain of consecutive, available slots.

All reads and writes go through the caller's transaction. Slots are staged
as the walk proceeds; if any check fails the exception aborts the
transaction and none of the staged changes are committed.
"""

from typing import Iterable, List, Optional, Sequence

from db.store import CalendarTransaction
from models.blocked_date import BlockedDate
from models.service import ServiceVariant
from models.slot import Slot, SlotStatus
from services.blocked_ranges import assert_not_blocked
from utils.constants import SLOT_TIMES, get_next_slot_time
from utils.exceptions import (
    CrossDateSlotsError,
    NonConsecutiveSlotsError,
    ResourceMismatchError,
    SlotNotFoundError,
    SlotUnavailableError,
)


class SlotAllocator:
    """Validates and reserves slot chains."""

    def __init__(self, slot_times: Optional[Sequence[str]] = None):
        self.slot_times = list(slot_times or SLOT_TIMES)

    def next_time(self, time: str) -> Optional[str]:
        return get_next_slot_time(time, self.slot_times)

    async def allocate_chain(
        self,
        tx: CalendarTransaction,
        start_slot_id: str,
        variant: ServiceVariant,
        linked_slot_ids: Optional[Sequence[str]],
        blocked_ranges: Iterable[BlockedDate],
        resource_id: Optional[str] = None,
        target_status: SlotStatus = SlotStatus.PENDING,
    ) -> List[str]:
        """
        Reserve the consecutive slots ``variant`` needs, starting at ``start_slot_id``.

        Args:
            tx: Open transaction
            start_slot_id: First slot of the chain
            variant: Service being booked; owns the chain length
            linked_slot_ids: The following slots, in order
            blocked_ranges: Current blocked date ranges
            resource_id: Nail tech the caller expects the chain to belong to
            target_status: Status every chain slot moves to

        Returns:
            Ordered slot ids, primary first

        Raises:
            SlotNotFoundError, SlotUnavailableError, BlockedSlotError,
            ResourceMismatchError, UnexpectedLinkedSlotsError,
            MissingLinkedSlotsError, CrossDateSlotsError,
            NonConsecutiveSlotsError
        """
        blocked_ranges = list(blocked_ranges)

        start = await self._read_available(tx, start_slot_id)
        assert_not_blocked(start, blocked_ranges)
        if resource_id is not None and start.resource_id != resource_id:
            raise ResourceMismatchError(
                f"Slot {start_slot_id} does not belong to nail tech {resource_id}."
            )

        linked_slot_ids = variant.validate_linked_slots(linked_slot_ids)

        chain: List[Slot] = [start]
        tx.set_slot_status(start, target_status)

        previous = start
        for linked_id in linked_slot_ids:
            slot = await self._read_available(tx, linked_id)
            self._check_follows(previous, slot)
            assert_not_blocked(slot, blocked_ranges)
            tx.set_slot_status(slot, target_status)
            chain.append(slot)
            previous = slot

        return [slot.id for slot in chain]

    async def _read_available(self, tx: CalendarTransaction, slot_id: str) -> Slot:
        slot = await tx.get_slot(slot_id)
        if slot is None:
            raise SlotNotFoundError(f"Slot {slot_id} not found.")
        if slot.status != SlotStatus.AVAILABLE.value:
            raise SlotUnavailableError(
                f"Slot {slot_id} is no longer available. Current status: {slot.status}."
            )
        return slot

    def _check_follows(self, previous: Slot, slot: Slot) -> None:
        if slot.date != previous.date:
            raise CrossDateSlotsError("Consecutive slots must be on the same day.")
        if slot.resource_id != previous.resource_id:
            raise ResourceMismatchError(
                "Consecutive slots must belong to the same nail tech."
            )
        expected = self.next_time(previous.time)
        if expected is None or slot.time != expected:
            raise NonConsecutiveSlotsError(
                f"Slot at {slot.time} does not follow {previous.time}."
            )
