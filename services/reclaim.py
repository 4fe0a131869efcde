"""
Reclaim sweeper: frees slots held by bookings whose customer never
submitted the form.
"""

from datetime import datetime
from typing import Callable, Iterable, List, Optional

from db.store import CalendarStore, CalendarTransaction
from models.booking import Booking, BookingStatus
from models.slot import Slot, SlotStatus
from services.booking_service import for_each_in_chain
from utils.constants import MANUAL_RELEASE_MIN_AGE_MINUTES, PENDING_FORM_TIMEOUT_MINUTES
from utils.datetime_utils import minutes_before, utc_now
from utils.exceptions import DatabaseError
from utils.logging_config import get_logger

logger = get_logger(__name__)


class ReclaimSweeper:
    """Releases stale ``pending_form`` bookings."""

    def __init__(
        self,
        store: CalendarStore,
        clock: Callable[[], datetime] = utc_now,
        max_age_minutes: int = PENDING_FORM_TIMEOUT_MINUTES,
    ):
        self.store = store
        self.clock = clock
        self.max_age_minutes = max_age_minutes

    async def _pending_older_than(self, minutes: int) -> List[Booking]:
        cutoff = minutes_before(minutes, self.clock())
        pending = await self.store.list_bookings(BookingStatus.PENDING_FORM)
        return [
            booking
            for booking in pending
            if booking.created_at is not None and booking.created_at < cutoff
        ]

    async def release_expired(self, max_age_minutes: Optional[int] = None) -> int:
        """
        Release every pending_form booking older than ``max_age_minutes``.

        Each booking is released in its own transaction; a failure is logged
        and the sweep moves on. Running the sweep again right away releases
        nothing.

        Returns:
            Number of bookings released
        """
        minutes = max_age_minutes if max_age_minutes is not None else self.max_age_minutes
        expired = await self._pending_older_than(minutes)
        if not expired:
            logger.debug("No expired pending bookings")
            return 0

        logger.info(f"Found {len(expired)} expired pending booking(s)")
        released = await self._release_each(expired, only_pending_slots=True)
        logger.info(f"Released {released} expired booking(s)")
        return released

    async def get_eligible_bookings_for_release(
        self, min_age_minutes: int = MANUAL_RELEASE_MIN_AGE_MINUTES
    ) -> List[Booking]:
        """Pending_form bookings older than the threshold with no form response."""
        bookings = await self._pending_older_than(min_age_minutes)
        return [booking for booking in bookings if not booking.form_response_id]

    async def manually_release_bookings(self, booking_ids: Iterable[str]) -> int:
        """
        Admin release of selected bookings.

        Only bookings still awaiting the form are released; any chain slot
        that is not available goes back to available.

        Returns:
            Number of bookings released
        """
        bookings = []
        for booking_id in booking_ids:
            booking = await self.store.get_booking(booking_id)
            if booking is None:
                logger.warning(f"Booking {booking_id} not found, skipping release")
                continue
            bookings.append(booking)

        released = await self._release_each(bookings, only_pending_slots=False)
        logger.info(f"Manually released {released} booking(s)")
        return released

    async def _release_each(self, bookings: List[Booking], only_pending_slots: bool) -> int:
        released = 0
        for booking in bookings:
            try:
                if await self._release_booking(booking.id, only_pending_slots):
                    released += 1
            except DatabaseError as e:
                logger.error(
                    f"Database error releasing booking {booking.booking_id}: {e}",
                    exc_info=True,
                )
            except Exception as e:
                logger.error(
                    f"Unexpected error releasing booking {booking.booking_id}: {e}",
                    exc_info=True,
                )
        return released

    async def _release_booking(self, booking_id: str, only_pending_slots: bool) -> bool:
        async def release(tx: CalendarTransaction) -> bool:
            def revert(slot: Slot) -> bool:
                if only_pending_slots:
                    held = slot.status == SlotStatus.PENDING.value
                else:
                    held = slot.status != SlotStatus.AVAILABLE.value
                if held:
                    tx.set_slot_status(slot, SlotStatus.AVAILABLE)
                return held

            booking = await tx.get_booking(booking_id)
            # Confirmed, form-submitted or already released in the meantime
            if booking is None or booking.status != BookingStatus.PENDING_FORM.value:
                return False
            await for_each_in_chain(tx, booking, revert)
            tx.delete_booking(booking_id)
            logger.info(f"Releasing booking {booking.booking_id}")
            return True

        return await self.store.run_transaction(release)
