"""
In-process calendar store.

Used for local runs and the test suite. Commits are serialized by an
asyncio lock, which gives the same all-or-nothing, version-checked
semantics as the Supabase commit function.
"""

import asyncio
from datetime import date
from typing import Dict, List, Optional, Tuple

from db.store import (
    BOOKINGS,
    COUNTERS,
    SLOTS,
    CalendarStore,
    CalendarTransaction,
    new_document_id,
)
from models.blocked_date import BlockedDate, BlockedDateCreate
from models.booking import Booking, BookingStatus
from models.customer import Customer, CustomerCreate
from models.slot import Slot, SlotCreate, SlotStatus
from utils.exceptions import DatabaseError, DuplicateSlotError, TransactionConflictError
from utils.validation import normalize_phone


class InMemoryTransaction(CalendarTransaction):
    """Transaction attempt against an ``InMemoryCalendarStore``."""

    def __init__(self, store: "InMemoryCalendarStore"):
        super().__init__(clock=store.clock)
        self._store = store

    async def _load_slot(self, slot_id: str) -> Optional[Slot]:
        return self._store._copy(self._store._slots.get(slot_id))

    async def _load_booking(self, booking_id: str) -> Optional[Booking]:
        return self._store._copy(self._store._bookings.get(booking_id))

    async def _load_counter(self, name: str) -> Optional[int]:
        return self._store._counters.get(name)


class InMemoryCalendarStore(CalendarStore):
    """Dictionary-backed store with optimistic transactions."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._slots: Dict[str, Slot] = {}
        self._bookings: Dict[str, Booking] = {}
        self._blocked_dates: Dict[str, BlockedDate] = {}
        self._customers: Dict[str, Customer] = {}
        self._counters: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _copy(model):
        return model.model_copy(deep=True) if model is not None else None

    # ========== Transactions ==========

    def begin(self) -> InMemoryTransaction:
        return InMemoryTransaction(self)

    def _current_version(self, collection: str, doc_id: str) -> Optional[int]:
        if collection == SLOTS:
            slot = self._slots.get(doc_id)
            return slot.version if slot else None
        if collection == BOOKINGS:
            booking = self._bookings.get(doc_id)
            return booking.version if booking else None
        if collection == COUNTERS:
            return self._counters.get(doc_id)
        raise DatabaseError(f"Unknown collection: {collection}")

    async def commit(self, tx: CalendarTransaction) -> None:
        async with self._lock:
            for (collection, doc_id), version in tx.reads.items():
                if self._current_version(collection, doc_id) != version:
                    raise TransactionConflictError(
                        f"{collection}/{doc_id} changed during transaction"
                    )

            for slot_id, slot in tx.slot_writes.items():
                current = self._slots.get(slot_id)
                if current is None:
                    raise TransactionConflictError(f"slots/{slot_id} no longer exists")
                self._slots[slot_id] = slot.model_copy(
                    update={"version": current.version + 1}, deep=True
                )
            for slot_id in tx.slot_deletes:
                self._slots.pop(slot_id, None)

            for booking_id, booking in tx.booking_writes.items():
                current = self._bookings.get(booking_id)
                version = current.version + 1 if current else 1
                self._bookings[booking_id] = booking.model_copy(
                    update={"version": version}, deep=True
                )
            for booking_id in tx.booking_deletes:
                self._bookings.pop(booking_id, None)

            self._counters.update(tx.counter_writes)

    # ========== Slots ==========

    async def get_slot(self, slot_id: str) -> Optional[Slot]:
        return self._copy(self._slots.get(slot_id))

    async def list_slots(
        self,
        day: Optional[date] = None,
        status: Optional[SlotStatus] = None,
        resource_id: Optional[str] = None,
    ) -> List[Slot]:
        slots = [
            slot
            for slot in self._slots.values()
            if (day is None or slot.date == day)
            and (status is None or slot.status == SlotStatus(status).value)
            and (resource_id is None or slot.resource_id == resource_id)
        ]
        slots.sort(key=lambda s: (s.date, s.time))
        return [self._copy(slot) for slot in slots]

    async def create_slot(self, slot_data: SlotCreate) -> Slot:
        async with self._lock:
            key: Tuple = (slot_data.date, slot_data.time, slot_data.resource_id)
            if any(slot.key == key for slot in self._slots.values()):
                raise DuplicateSlotError(
                    f"A slot already exists for {slot_data.date} {slot_data.time}."
                )
            now = self.clock()
            slot = Slot(
                id=new_document_id(),
                created_at=now,
                updated_at=now,
                version=1,
                **slot_data.model_dump(),
            )
            self._slots[slot.id] = slot
            return self._copy(slot)

    # ========== Bookings ==========

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self._copy(self._bookings.get(booking_id))

    async def find_booking_by_reference(self, reference: str) -> Optional[Booking]:
        for booking in self._bookings.values():
            if booking.booking_id == reference:
                return self._copy(booking)
        return None

    async def list_bookings(
        self, status: Optional[BookingStatus] = None
    ) -> List[Booking]:
        bookings = [
            booking
            for booking in self._bookings.values()
            if status is None or booking.status == BookingStatus(status).value
        ]
        bookings.sort(key=lambda b: b.created_at or self.clock(), reverse=True)
        return [self._copy(booking) for booking in bookings]

    async def list_booking_references(self) -> List[str]:
        return [b.booking_id for b in self._bookings.values() if b.booking_id]

    async def list_bookings_for_slot(self, slot_id: str) -> List[Booking]:
        return [
            self._copy(booking)
            for booking in self._bookings.values()
            if slot_id in booking.chain
        ]

    async def list_bookings_for_customer(self, customer_id: str) -> List[Booking]:
        return [
            self._copy(booking)
            for booking in self._bookings.values()
            if booking.customer_id == customer_id
        ]

    # ========== Blocked dates ==========

    async def list_blocked_dates(self) -> List[BlockedDate]:
        blocks = sorted(self._blocked_dates.values(), key=lambda b: b.start_date)
        return [self._copy(block) for block in blocks]

    async def create_blocked_date(self, block_data: BlockedDateCreate) -> BlockedDate:
        now = self.clock()
        block = BlockedDate(
            id=new_document_id(), created_at=now, updated_at=now, **block_data.model_dump()
        )
        self._blocked_dates[block.id] = block
        return self._copy(block)

    async def delete_blocked_date(self, block_id: str) -> bool:
        return self._blocked_dates.pop(block_id, None) is not None

    # ========== Customers ==========

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        return self._copy(self._customers.get(customer_id))

    async def find_customer_by_email(self, email: str) -> Optional[Customer]:
        email = email.strip().lower()
        for customer in self._customers.values():
            if customer.email and customer.email.strip().lower() == email:
                return self._copy(customer)
        return None

    async def find_customer_by_phone(self, phone: str) -> Optional[Customer]:
        phone = normalize_phone(phone)
        for customer in self._customers.values():
            if customer.phone and normalize_phone(customer.phone) == phone:
                return self._copy(customer)
        return None

    async def create_customer(self, customer_data: CustomerCreate) -> Customer:
        now = self.clock()
        customer = Customer(
            id=new_document_id(), created_at=now, updated_at=now, **customer_data.model_dump()
        )
        self._customers[customer.id] = customer
        return self._copy(customer)

    async def update_customer(self, customer_id: str, **fields) -> Optional[Customer]:
        customer = self._customers.get(customer_id)
        if customer is None:
            return None
        updated = customer.model_copy(update={**fields, "updated_at": self.clock()})
        self._customers[customer_id] = updated
        return self._copy(updated)

    # ========== Test helpers ==========

    def reset(self) -> None:
        """Clear all collections. Used by test fixtures for isolation."""
        self._slots.clear()
        self._bookings.clear()
        self._blocked_dates.clear()
        self._customers.clear()
        self._counters.clear()
