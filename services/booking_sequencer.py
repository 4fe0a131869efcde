"""
Human-readable booking identifiers (GN-00001, GN-00002, ...).
"""

import re
from typing import Iterable, Optional

from db.store import CalendarStore, CalendarTransaction
from utils.constants import (
    BOOKING_COUNTER_NAME,
    BOOKING_ID_DIGITS,
    BOOKING_ID_MAX_SEQUENCE_DIGITS,
    BOOKING_ID_PREFIX,
)
from utils.logging_config import get_logger

logger = get_logger(__name__)


class BookingSequencer:
    """Derives sequential booking ids."""

    def __init__(
        self,
        store: CalendarStore,
        prefix: str = BOOKING_ID_PREFIX,
        digits: int = BOOKING_ID_DIGITS,
        max_sequence_digits: int = BOOKING_ID_MAX_SEQUENCE_DIGITS,
        counter_name: str = BOOKING_COUNTER_NAME,
    ):
        self.store = store
        self.prefix = prefix
        self.digits = digits
        self.counter_name = counter_name
        self._pattern = re.compile(
            rf"^{re.escape(prefix)}(\d{{1,{max_sequence_digits}}})$"
        )

    def parse_number(self, booking_id: Optional[str]) -> Optional[int]:
        """Sequence number of a sequential id, None for legacy or malformed ids."""
        if not booking_id:
            return None
        match = self._pattern.match(booking_id)
        if not match:
            return None
        return int(match.group(1))

    def highest_number(self, booking_ids: Iterable[str]) -> int:
        numbers = [n for n in (self.parse_number(b) for b in booking_ids) if n is not None]
        return max(numbers, default=0)

    async def next_booking_number(self) -> int:
        """
        Scan stored booking ids and return the highest sequence number + 1.

        Not atomic: two callers can get the same number. Booking creation
        goes through ``reserve_booking_id`` instead.
        """
        references = await self.store.list_booking_references()
        return self.highest_number(references) + 1

    def format_booking_id(self, number: int) -> str:
        return f"{self.prefix}{number:0{self.digits}d}"

    async def reserve_booking_id(self, tx: CalendarTransaction) -> str:
        """
        Take the next id from the counter document inside ``tx``.

        The counter is seeded from the id scan the first time it is used,
        whether the document is missing or was pre-created at zero.
        Concurrent reservations conflict on the counter, so one of them is
        replayed and every committed id is unique.
        """
        current = await tx.get_counter(self.counter_name)
        if not current:
            number = await self.next_booking_number()
            logger.info(f"Seeding booking counter at {number}")
        else:
            number = current + 1
        tx.set_counter(self.counter_name, number)
        return self.format_booking_id(number)
