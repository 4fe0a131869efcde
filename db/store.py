"""
Calendar store contract shared by the Supabase and in-memory backends.

Every read-then-write of slots and bookings goes through
``CalendarStore.run_transaction``. A transaction records the version of each
document it reads and stages its writes locally; the backend commits the
staged writes atomically only if none of those versions moved in the
meantime. A moved version raises ``TransactionConflictError`` and the runner
replays the whole operation, so the loser of a race re-reads fresh state.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple, TypeVar

from models.blocked_date import BlockedDate, BlockedDateCreate
from models.booking import Booking, BookingStatus
from models.customer import Customer, CustomerCreate
from models.slot import Slot, SlotCreate, SlotStatus
from utils.constants import TRANSACTION_MAX_ATTEMPTS
from utils.datetime_utils import utc_now
from utils.exceptions import DatabaseError, TransactionConflictError
from utils.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

SLOTS = "slots"
BOOKINGS = "bookings"
COUNTERS = "counters"

ReadKey = Tuple[str, str]


def new_document_id() -> str:
    """Opaque id for a new document."""
    return str(uuid.uuid4())


class CalendarTransaction(ABC):
    """
    One attempt of an atomic read-modify-write over slots and bookings.

    Reads see this transaction's own staged writes. Nothing reaches the
    store until the runner commits.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self.reads: Dict[ReadKey, Optional[int]] = {}
        self.slot_writes: Dict[str, Slot] = {}
        self.slot_deletes: Set[str] = set()
        self.booking_writes: Dict[str, Booking] = {}
        self.booking_deletes: Set[str] = set()
        self.counter_writes: Dict[str, int] = {}
        self.closed = False

    # ========== Backend hooks ==========

    @abstractmethod
    async def _load_slot(self, slot_id: str) -> Optional[Slot]:
        """Fetch committed slot state."""

    @abstractmethod
    async def _load_booking(self, booking_id: str) -> Optional[Booking]:
        """Fetch committed booking state."""

    @abstractmethod
    async def _load_counter(self, name: str) -> Optional[int]:
        """Fetch a committed counter value."""

    # ========== Reads ==========

    def _record(self, key: ReadKey, version: Optional[int]) -> None:
        # First read wins; later reads must not hide an earlier version
        self.reads.setdefault(key, version)

    async def get_slot(self, slot_id: str) -> Optional[Slot]:
        if slot_id in self.slot_deletes:
            return None
        if slot_id in self.slot_writes:
            return self.slot_writes[slot_id].model_copy(deep=True)
        slot = await self._load_slot(slot_id)
        self._record((SLOTS, slot_id), slot.version if slot else None)
        return slot

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        if booking_id in self.booking_deletes:
            return None
        if booking_id in self.booking_writes:
            return self.booking_writes[booking_id].model_copy(deep=True)
        booking = await self._load_booking(booking_id)
        self._record((BOOKINGS, booking_id), booking.version if booking else None)
        return booking

    async def get_counter(self, name: str) -> Optional[int]:
        if name in self.counter_writes:
            return self.counter_writes[name]
        value = await self._load_counter(name)
        self._record((COUNTERS, name), value)
        return value

    # ========== Staged writes ==========

    def update_slot(self, slot: Slot, **changes) -> Slot:
        """Stage changes to a slot previously read in this transaction."""
        self._ensure_open()
        if slot.id is None:
            raise DatabaseError("Cannot update a slot without an id")
        updated = slot.model_copy(update={**changes, "updated_at": self._clock()})
        self.slot_writes[slot.id] = updated
        return updated

    def set_slot_status(self, slot: Slot, status: SlotStatus) -> Slot:
        return self.update_slot(slot, status=SlotStatus(status).value)

    def delete_slot(self, slot_id: str) -> None:
        self._ensure_open()
        self.slot_writes.pop(slot_id, None)
        self.slot_deletes.add(slot_id)

    def set_booking(self, booking: Booking) -> Booking:
        """Stage a full booking document (insert or overwrite)."""
        self._ensure_open()
        if booking.id is None:
            booking = booking.model_copy(update={"id": new_document_id()})
        now = self._clock()
        updates = {"updated_at": now}
        if booking.created_at is None:
            updates["created_at"] = now
        booking = booking.model_copy(update=updates)
        self.booking_deletes.discard(booking.id)
        self.booking_writes[booking.id] = booking
        return booking

    def update_booking(self, booking: Booking, **changes) -> Booking:
        return self.set_booking(booking.model_copy(update=changes))

    def set_booking_status(self, booking: Booking, status: BookingStatus) -> Booking:
        return self.update_booking(booking, status=BookingStatus(status).value)

    def delete_booking(self, booking_id: str) -> None:
        self._ensure_open()
        self.booking_writes.pop(booking_id, None)
        self.booking_deletes.add(booking_id)

    def set_counter(self, name: str, value: int) -> None:
        self._ensure_open()
        self.counter_writes[name] = value

    @property
    def has_writes(self) -> bool:
        return bool(
            self.slot_writes
            or self.slot_deletes
            or self.booking_writes
            or self.booking_deletes
            or self.counter_writes
        )

    def _ensure_open(self) -> None:
        if self.closed:
            raise DatabaseError("Transaction already finished")


Operation = Callable[[CalendarTransaction], Awaitable[T]]


class CalendarStore(ABC):
    """Persisted slots, bookings, blocked dates, customers and counters."""

    def __init__(
        self,
        max_attempts: int = TRANSACTION_MAX_ATTEMPTS,
        retry_delay: float = 0.05,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.clock = clock

    # ========== Transactions ==========

    @abstractmethod
    def begin(self) -> CalendarTransaction:
        """Start a new transaction attempt."""

    @abstractmethod
    async def commit(self, tx: CalendarTransaction) -> None:
        """
        Validate read versions and apply staged writes atomically.

        Raises:
            TransactionConflictError: A document read by ``tx`` changed
        """

    async def run_transaction(
        self, operation: Operation, max_attempts: Optional[int] = None
    ) -> T:
        """
        Run ``operation`` inside a transaction, replaying it on conflict.

        Exceptions raised by the operation abort the attempt without
        committing anything and are propagated unchanged.
        """
        attempts = max_attempts or self.max_attempts
        for attempt in range(1, attempts + 1):
            tx = self.begin()
            try:
                result = await operation(tx)
                if tx.has_writes:
                    await self.commit(tx)
                return result
            except TransactionConflictError:
                if attempt >= attempts:
                    logger.error(
                        f"Transaction still conflicting after {attempts} attempts"
                    )
                    raise
                logger.warning(
                    f"Transaction conflict (attempt {attempt}/{attempts}), retrying"
                )
                if self.retry_delay:
                    await asyncio.sleep(self.retry_delay * attempt)
            finally:
                tx.closed = True
        raise TransactionConflictError("Transaction attempts exhausted")

    # ========== Slots ==========

    @abstractmethod
    async def get_slot(self, slot_id: str) -> Optional[Slot]:
        ...

    @abstractmethod
    async def list_slots(
        self,
        day: Optional[date] = None,
        status: Optional[SlotStatus] = None,
        resource_id: Optional[str] = None,
    ) -> List[Slot]:
        """Slots ordered by date and time."""

    @abstractmethod
    async def create_slot(self, slot_data: SlotCreate) -> Slot:
        """
        Insert a slot.

        Raises:
            DuplicateSlotError: A slot exists for the same date, time and tech
        """

    # ========== Bookings ==========

    @abstractmethod
    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        ...

    @abstractmethod
    async def find_booking_by_reference(self, reference: str) -> Optional[Booking]:
        """Look a booking up by its human-facing booking id."""

    @abstractmethod
    async def list_bookings(
        self, status: Optional[BookingStatus] = None
    ) -> List[Booking]:
        """Bookings, newest first."""

    @abstractmethod
    async def list_booking_references(self) -> List[str]:
        """Every stored human-facing booking id."""

    @abstractmethod
    async def list_bookings_for_slot(self, slot_id: str) -> List[Booking]:
        """Bookings whose chain contains ``slot_id``."""

    @abstractmethod
    async def list_bookings_for_customer(self, customer_id: str) -> List[Booking]:
        ...

    # ========== Blocked dates ==========

    @abstractmethod
    async def list_blocked_dates(self) -> List[BlockedDate]:
        """Blocked ranges ordered by start date."""

    @abstractmethod
    async def create_blocked_date(self, block_data: BlockedDateCreate) -> BlockedDate:
        ...

    @abstractmethod
    async def delete_blocked_date(self, block_id: str) -> bool:
        ...

    # ========== Customers ==========

    @abstractmethod
    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        ...

    @abstractmethod
    async def find_customer_by_email(self, email: str) -> Optional[Customer]:
        ...

    @abstractmethod
    async def find_customer_by_phone(self, phone: str) -> Optional[Customer]:
        ...

    @abstractmethod
    async def create_customer(self, customer_data: CustomerCreate) -> Customer:
        ...

    @abstractmethod
    async def update_customer(self, customer_id: str, **fields) -> Optional[Customer]:
        ...
