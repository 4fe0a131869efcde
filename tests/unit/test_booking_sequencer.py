"""
Unit tests for booking id sequencing.
"""

import pytest

from models.booking import Booking
from services.booking_sequencer import BookingSequencer
from utils.constants import BOOKING_COUNTER_NAME
from utils.exceptions import TransactionConflictError


async def seed_bookings(store, *booking_ids):
    async def operation(tx):
        for booking_id in booking_ids:
            tx.set_booking(Booking(booking_id=booking_id, slot_id="s1"))

    await store.run_transaction(operation)


class TestBookingSequencer:
    """Scan-based numbering and the counter document."""

    @pytest.mark.asyncio
    async def test_empty_store_starts_at_one(self, store):
        assert await BookingSequencer(store).next_booking_number() == 1

    @pytest.mark.asyncio
    async def test_legacy_and_malformed_ids_ignored(self, store):
        await seed_bookings(
            store, "GN-00007", "GN-1700000000000", "GN-12", "BK-00099", "GN-ABC", "GN-"
        )
        assert await BookingSequencer(store).next_booking_number() == 13

    @pytest.mark.asyncio
    async def test_six_digit_ids_counted(self, store):
        await seed_bookings(store, "GN-100000", "GN-1234567")
        assert await BookingSequencer(store).next_booking_number() == 100001

    def test_format(self, store):
        sequencer = BookingSequencer(store)
        assert sequencer.format_booking_id(42) == "GN-00042"
        assert sequencer.format_booking_id(123456) == "GN-123456"
        assert BookingSequencer(store, prefix="BK-", digits=3).format_booking_id(7) == "BK-007"

    @pytest.mark.asyncio
    async def test_counter_seeded_from_scan(self, store):
        await seed_bookings(store, "GN-00041")
        sequencer = BookingSequencer(store)

        first = await store.run_transaction(sequencer.reserve_booking_id)
        second = await store.run_transaction(sequencer.reserve_booking_id)

        assert (first, second) == ("GN-00042", "GN-00043")
        assert store._counters[BOOKING_COUNTER_NAME] == 43

    @pytest.mark.asyncio
    async def test_zero_counter_seeded_from_scan(self, store):
        """A counter row created empty by the migration still respects existing ids."""
        await seed_bookings(store, "GN-00041")
        store._counters[BOOKING_COUNTER_NAME] = 0
        sequencer = BookingSequencer(store)

        assert await store.run_transaction(sequencer.reserve_booking_id) == "GN-00042"
        assert store._counters[BOOKING_COUNTER_NAME] == 42

    @pytest.mark.asyncio
    async def test_first_reservations_conflict_on_zero_counter(self, store):
        store._counters[BOOKING_COUNTER_NAME] = 0
        sequencer = BookingSequencer(store)
        tx1, tx2 = store.begin(), store.begin()

        assert await sequencer.reserve_booking_id(tx1) == "GN-00001"
        assert await sequencer.reserve_booking_id(tx2) == "GN-00001"
        await store.commit(tx1)

        with pytest.raises(TransactionConflictError):
            await store.commit(tx2)

    @pytest.mark.asyncio
    async def test_interleaved_reservations_conflict(self, store):
        """Two transactions reading the same counter cannot both commit."""
        sequencer = BookingSequencer(store)
        tx1, tx2 = store.begin(), store.begin()

        assert await sequencer.reserve_booking_id(tx1) == "GN-00001"
        assert await sequencer.reserve_booking_id(tx2) == "GN-00001"
        await store.commit(tx1)

        with pytest.raises(TransactionConflictError):
            await store.commit(tx2)
