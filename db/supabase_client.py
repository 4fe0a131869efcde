"""
Supabase calendar store.
Handles all database interactions for slots, bookings, blocked dates and
customers.

Transactions
============
PostgREST has no client-side transactions, so a transaction reads rows
normally, stages its writes, and commits them with a single call to the
``commit_calendar_transaction`` Postgres function (see
``db/migrations/001_calendar_schema.sql``). The function locks the touched
rows, compares their ``version`` columns with the versions this
transaction read and applies every write, or applies nothing and reports
the conflicting row.

This client uses the service key which bypasses RLS. Public booking
requests never talk to Supabase directly; they go through the HTTP layer.
"""

import asyncio
from datetime import date
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import Client as SupabaseClientType
from supabase import create_client

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
from utils.datetime_utils import parse_iso_datetime, to_iso_string
from utils.exceptions import DatabaseError, DuplicateSlotError, TransactionConflictError
from utils.logging_config import get_logger
from utils.validation import normalize_phone

logger = get_logger(__name__, log_file="database.log")

COMMIT_FUNCTION = "commit_calendar_transaction"
UNIQUE_VIOLATION = "23505"


class SupabaseTransaction(CalendarTransaction):
    """Transaction attempt against Supabase."""

    def __init__(self, store: "SupabaseCalendarStore"):
        super().__init__(clock=store.clock)
        self._store = store

    async def _load_slot(self, slot_id: str) -> Optional[Slot]:
        return await self._store.get_slot(slot_id)

    async def _load_booking(self, booking_id: str) -> Optional[Booking]:
        return await self._store.get_booking(booking_id)

    async def _load_counter(self, name: str) -> Optional[int]:
        return await self._store.get_counter(name)


class SupabaseCalendarStore(CalendarStore):
    """
    Supabase database client wrapper.

    Synchronous supabase-py calls run in a worker thread so they never
    block the event loop.
    """

    def __init__(self, supabase_url: str, supabase_key: str, **kwargs):
        super().__init__(**kwargs)
        self.client: SupabaseClientType = create_client(supabase_url, supabase_key)

    async def _execute(self, query) -> Any:
        return await asyncio.to_thread(query.execute)

    # ========== Transactions ==========

    def begin(self) -> SupabaseTransaction:
        return SupabaseTransaction(self)

    def _commit_payload(self, tx: CalendarTransaction) -> Dict[str, Any]:
        return {
            "p_reads": [
                {"collection": collection, "id": doc_id, "version": version}
                for (collection, doc_id), version in tx.reads.items()
            ],
            "p_slot_writes": [
                self._serialize_slot(slot) for slot in tx.slot_writes.values()
            ],
            "p_slot_deletes": sorted(tx.slot_deletes),
            "p_booking_writes": [
                self._serialize_booking(booking)
                for booking in tx.booking_writes.values()
            ],
            "p_booking_deletes": sorted(tx.booking_deletes),
            "p_counter_writes": [
                {"name": name, "value": value}
                for name, value in tx.counter_writes.items()
            ],
        }

    async def commit(self, tx: CalendarTransaction) -> None:
        try:
            response = await self._execute(
                self.client.rpc(COMMIT_FUNCTION, self._commit_payload(tx))
            )
        except Exception as e:
            raise DatabaseError(f"Failed to commit transaction: {e}") from e

        result = response.data or {}
        if isinstance(result, list):
            result = result[0] if result else {}
        if not result.get("committed"):
            raise TransactionConflictError(
                f"{result.get('conflict', 'unknown row')} changed during transaction"
            )

    async def get_counter(self, name: str) -> Optional[int]:
        """Read a named counter outside a transaction."""
        try:
            response = await self._execute(
                self.client.table(COUNTERS).select("value").eq("name", name)
            )
        except Exception as e:
            raise DatabaseError(f"Failed to get counter: {e}") from e
        if response.data:
            return int(response.data[0]["value"])
        return None

    # ========== Slot Operations ==========

    async def get_slot(self, slot_id: str) -> Optional[Slot]:
        """Get slot by ID."""
        try:
            response = await self._execute(
                self.client.table(SLOTS).select("*").eq("id", slot_id)
            )
        except Exception as e:
            raise DatabaseError(f"Failed to get slot: {e}") from e

        if response.data:
            return self._parse_slot(response.data[0])
        return None

    async def list_slots(
        self,
        day: Optional[date] = None,
        status: Optional[SlotStatus] = None,
        resource_id: Optional[str] = None,
    ) -> List[Slot]:
        """
        Get slots matching the filters, ordered by date and time.

        Args:
            day: Only slots on this calendar day
            status: Only slots in this status
            resource_id: Only slots of this nail tech
        """
        try:
            query = self.client.table(SLOTS).select("*")
            if day:
                query = query.eq("date", day.isoformat())
            if status:
                query = query.eq("status", SlotStatus(status).value)
            if resource_id:
                query = query.eq("resource_id", resource_id)
            query = query.order("date", desc=False).order("time", desc=False)
            response = await self._execute(query)
        except Exception as e:
            raise DatabaseError(f"Failed to list slots: {e}") from e

        return [self._parse_slot(item) for item in response.data]

    async def create_slot(self, slot_data: SlotCreate) -> Slot:
        """Create a new time slot."""
        data = slot_data.model_dump(mode="json")
        data["id"] = new_document_id()
        data["version"] = 1

        try:
            response = await self._execute(self.client.table(SLOTS).insert(data))
        except APIError as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                raise DuplicateSlotError(
                    f"A slot already exists for {slot_data.date} {slot_data.time}."
                ) from e
            raise DatabaseError(f"Failed to create slot: {e}") from e
        except Exception as e:
            raise DatabaseError(f"Failed to create slot: {e}") from e

        if not response.data:
            raise DatabaseError("Failed to create slot: no data returned")
        return self._parse_slot(response.data[0])

    # ========== Booking Operations ==========

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        """Get booking by document ID."""
        try:
            response = await self._execute(
                self.client.table(BOOKINGS).select("*").eq("id", booking_id)
            )
        except Exception as e:
            raise DatabaseError(f"Failed to get booking: {e}") from e

        if response.data:
            return self._parse_booking(response.data[0])
        return None

    async def find_booking_by_reference(self, reference: str) -> Optional[Booking]:
        """Get booking by its human-facing booking id (e.g. GN-00042)."""
        try:
            response = await self._execute(
                self.client.table(BOOKINGS)
                .select("*")
                .eq("booking_id", reference)
                .limit(1)
            )
        except Exception as e:
            raise DatabaseError(f"Failed to find booking: {e}") from e

        if response.data:
            return self._parse_booking(response.data[0])
        return None

    async def list_bookings(
        self, status: Optional[BookingStatus] = None
    ) -> List[Booking]:
        """Get bookings, newest first, optionally filtered by status."""
        try:
            query = self.client.table(BOOKINGS).select("*")
            if status:
                query = query.eq("status", BookingStatus(status).value)
            response = await self._execute(query.order("created_at", desc=True))
        except Exception as e:
            raise DatabaseError(f"Failed to list bookings: {e}") from e

        return [self._parse_booking(item) for item in response.data]

    async def list_booking_references(self) -> List[str]:
        """Get every stored booking id, used to derive the next sequence number."""
        try:
            response = await self._execute(
                self.client.table(BOOKINGS).select("booking_id")
            )
        except Exception as e:
            raise DatabaseError(f"Failed to list booking ids: {e}") from e

        return [item["booking_id"] for item in response.data if item.get("booking_id")]

    async def list_bookings_for_slot(self, slot_id: str) -> List[Booking]:
        """Get bookings holding ``slot_id`` as primary or linked slot."""
        try:
            primary = await self._execute(
                self.client.table(BOOKINGS).select("*").eq("slot_id", slot_id)
            )
            linked = await self._execute(
                self.client.table(BOOKINGS)
                .select("*")
                .contains("linked_slot_ids", [slot_id])
            )
        except Exception as e:
            raise DatabaseError(f"Failed to list bookings for slot: {e}") from e

        bookings: Dict[str, Booking] = {}
        for item in [*primary.data, *linked.data]:
            booking = self._parse_booking(item)
            bookings[booking.id] = booking
        return list(bookings.values())

    async def list_bookings_for_customer(self, customer_id: str) -> List[Booking]:
        try:
            response = await self._execute(
                self.client.table(BOOKINGS).select("*").eq("customer_id", customer_id)
            )
        except Exception as e:
            raise DatabaseError(f"Failed to list customer bookings: {e}") from e

        return [self._parse_booking(item) for item in response.data]

    # ========== Blocked Dates ==========

    async def list_blocked_dates(self) -> List[BlockedDate]:
        try:
            response = await self._execute(
                self.client.table("blocked_dates")
                .select("*")
                .order("start_date", desc=False)
            )
        except Exception as e:
            raise DatabaseError(f"Failed to list blocked dates: {e}") from e

        return [self._parse_blocked_date(item) for item in response.data]

    async def create_blocked_date(self, block_data: BlockedDateCreate) -> BlockedDate:
        data = block_data.model_dump(mode="json")
        data["id"] = new_document_id()
        try:
            response = await self._execute(
                self.client.table("blocked_dates").insert(data)
            )
        except Exception as e:
            raise DatabaseError(f"Failed to create blocked date: {e}") from e

        if not response.data:
            raise DatabaseError("Failed to create blocked date: no data returned")
        return self._parse_blocked_date(response.data[0])

    async def delete_blocked_date(self, block_id: str) -> bool:
        try:
            response = await self._execute(
                self.client.table("blocked_dates").delete().eq("id", block_id)
            )
        except Exception as e:
            raise DatabaseError(f"Failed to delete blocked date: {e}") from e
        return len(response.data) > 0

    # ========== Customers ==========

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        return await self._find_customer("id", customer_id)

    async def find_customer_by_email(self, email: str) -> Optional[Customer]:
        return await self._find_customer("email", email.strip().lower())

    async def find_customer_by_phone(self, phone: str) -> Optional[Customer]:
        return await self._find_customer("phone", normalize_phone(phone))

    async def _find_customer(self, column: str, value: str) -> Optional[Customer]:
        try:
            response = await self._execute(
                self.client.table("customers").select("*").eq(column, value).limit(1)
            )
        except Exception as e:
            raise DatabaseError(f"Failed to get customer: {e}") from e

        if response.data:
            return self._parse_customer(response.data[0])
        return None

    async def create_customer(self, customer_data: CustomerCreate) -> Customer:
        data = customer_data.model_dump(mode="json", exclude_none=True)
        data["id"] = new_document_id()
        if data.get("email"):
            data["email"] = data["email"].strip().lower()
        if data.get("phone"):
            data["phone"] = normalize_phone(data["phone"])
        try:
            response = await self._execute(self.client.table("customers").insert(data))
        except Exception as e:
            raise DatabaseError(f"Failed to create customer: {e}") from e

        if not response.data:
            raise DatabaseError("Failed to create customer: no data returned")
        return self._parse_customer(response.data[0])

    async def update_customer(self, customer_id: str, **fields) -> Optional[Customer]:
        update_data = dict(fields)
        update_data["updated_at"] = to_iso_string(self.clock())
        try:
            response = await self._execute(
                self.client.table("customers").update(update_data).eq("id", customer_id)
            )
        except Exception as e:
            raise DatabaseError(f"Failed to update customer: {e}") from e

        if not response.data:
            return None
        return self._parse_customer(response.data[0])

    # ========== Helper Methods ==========

    @staticmethod
    def _parse_timestamps(item: dict, fields) -> dict:
        item = item.copy()
        for field in fields:
            if isinstance(item.get(field), str):
                item[field] = parse_iso_datetime(item[field])
        return item

    def _parse_slot(self, item: dict) -> Slot:
        """Parse slot data from database response."""
        return Slot(**self._parse_timestamps(item, ("created_at", "updated_at")))

    def _parse_booking(self, item: dict) -> Booking:
        """Parse booking data from database response."""
        item = self._parse_timestamps(item, ("created_at", "updated_at", "slots_released_at"))
        for field in ("customer_data", "customer_data_order"):
            if item.get(field) is None:
                item.pop(field, None)
        return Booking(**item)

    def _parse_blocked_date(self, item: dict) -> BlockedDate:
        return BlockedDate(**self._parse_timestamps(item, ("created_at", "updated_at")))

    def _parse_customer(self, item: dict) -> Customer:
        return Customer(**self._parse_timestamps(item, ("created_at", "updated_at")))

    @staticmethod
    def _serialize_slot(slot: Slot) -> Dict[str, Any]:
        return slot.model_dump(mode="json")

    @staticmethod
    def _serialize_booking(booking: Booking) -> Dict[str, Any]:
        return booking.model_dump(mode="json")
