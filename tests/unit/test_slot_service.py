"""
Unit tests for admin slot authoring.
"""

import pytest

from models.blocked_date import BlockedDateCreate
from services.slot_service import SlotService
from tests.conftest import TECH, TEST_DAY
from utils.exceptions import (
    BlockedSlotError,
    DuplicateSlotError,
    InvalidSlotTransitionError,
    SlotInUseError,
    SlotNotFoundError,
    ValidationError,
)


@pytest.fixture
def slot_service(store):
    return SlotService(store)


class TestCreateSlot:
    """Slot creation rules."""

    @pytest.mark.asyncio
    async def test_create_slot(self, slot_service):
        slot = await slot_service.create_slot("2026-03-10", "13:00", TECH, notes="  gel  ")

        assert slot.date == TEST_DAY
        assert slot.time == "13:00"
        assert slot.status == "available"
        assert slot.notes == "gel"

    @pytest.mark.asyncio
    async def test_non_canonical_time_rejected(self, slot_service):
        with pytest.raises(ValidationError):
            await slot_service.create_slot(TEST_DAY, "11:15", TECH)

    @pytest.mark.asyncio
    async def test_bad_date_rejected(self, slot_service):
        with pytest.raises(ValidationError):
            await slot_service.create_slot("10/03/2026", "13:00", TECH)

    @pytest.mark.asyncio
    async def test_engine_status_rejected(self, slot_service):
        with pytest.raises(InvalidSlotTransitionError):
            await slot_service.create_slot(TEST_DAY, "13:00", TECH, status="confirmed")

    @pytest.mark.asyncio
    async def test_blocked_date_rejected(self, store, slot_service):
        await store.create_blocked_date(BlockedDateCreate.single_day(TEST_DAY, "Holiday"))
        with pytest.raises(BlockedSlotError):
            await slot_service.create_slot(TEST_DAY, "13:00", TECH)
        assert await store.list_slots(TEST_DAY) == []

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, slot_service):
        await slot_service.create_slot(TEST_DAY, "13:00", TECH)
        with pytest.raises(DuplicateSlotError):
            await slot_service.create_slot(TEST_DAY, "13:00", TECH)

    @pytest.mark.asyncio
    async def test_day_slots_skip_existing(self, slot_service):
        await slot_service.create_slot(TEST_DAY, "13:00", TECH)

        created = await slot_service.create_day_slots(TEST_DAY, TECH, times=["10:00", "13:00"])

        assert [s.time for s in created] == ["10:00"]


class TestUpdateSlot:
    """Admin status edits."""

    @pytest.mark.asyncio
    async def test_block_and_reopen(self, slot_service, day_slots):
        slot_id = day_slots["13:00"].id

        blocked = await slot_service.update_slot(slot_id, status="blocked", notes="Tech off")
        assert blocked.status == "blocked"
        assert blocked.notes == "Tech off"

        reopened = await slot_service.update_slot(slot_id, status="available")
        assert reopened.status == "available"

    @pytest.mark.asyncio
    async def test_held_slot_cannot_be_edited(self, slot_service, booking_service, day_slots):
        await booking_service.create_booking(day_slots["13:00"].id, "manicure")
        with pytest.raises(InvalidSlotTransitionError):
            await slot_service.update_slot(day_slots["13:00"].id, status="blocked")

    @pytest.mark.asyncio
    async def test_notes_on_held_slot_allowed(self, slot_service, booking_service, day_slots):
        await booking_service.create_booking(day_slots["13:00"].id, "manicure")
        slot = await slot_service.update_slot(day_slots["13:00"].id, notes="VIP")
        assert slot.status == "pending"
        assert slot.notes == "VIP"

    @pytest.mark.asyncio
    async def test_reopen_inside_blocked_range(self, store, slot_service, day_slots):
        slot_id = day_slots["13:00"].id
        await slot_service.update_slot(slot_id, status="blocked")
        await store.create_blocked_date(BlockedDateCreate.single_day(TEST_DAY))

        with pytest.raises(BlockedSlotError):
            await slot_service.update_slot(slot_id, status="available")

    @pytest.mark.asyncio
    async def test_unknown_slot(self, slot_service):
        with pytest.raises(SlotNotFoundError):
            await slot_service.update_slot("missing", status="blocked")

    @pytest.mark.asyncio
    async def test_invalid_slot_type(self, slot_service, day_slots):
        with pytest.raises(ValidationError):
            await slot_service.update_slot(day_slots["13:00"].id, slot_type="spa")


class TestDeleteSlot:
    """Deletion guards."""

    @pytest.mark.asyncio
    async def test_delete_free_slot(self, store, slot_service, day_slots):
        await slot_service.delete_slot(day_slots["13:00"].id)
        assert await store.get_slot(day_slots["13:00"].id) is None

    @pytest.mark.asyncio
    async def test_delete_held_slot(self, slot_service, booking_service, day_slots):
        await booking_service.create_booking(
            day_slots["10:00"].id, "mani_pedi", linked_slot_ids=[day_slots["10:30"].id]
        )
        with pytest.raises(SlotInUseError):
            await slot_service.delete_slot(day_slots["10:30"].id)

    @pytest.mark.asyncio
    async def test_delete_after_cancel_and_release(
        self, store, slot_service, booking_service, day_slots
    ):
        reservation = await booking_service.create_booking(day_slots["13:00"].id, "manicure")
        await booking_service.cancel_booking(reservation.id)
        await booking_service.release_cancelled_booking_slots(reservation.id)

        await slot_service.delete_slot(day_slots["13:00"].id)
        assert await store.get_slot(day_slots["13:00"].id) is None

    @pytest.mark.asyncio
    async def test_delete_unknown(self, slot_service):
        with pytest.raises(SlotNotFoundError):
            await slot_service.delete_slot("missing")


class TestListing:
    """Reads and counts."""

    @pytest.mark.asyncio
    async def test_available_slots(self, slot_service, booking_service, day_slots):
        await booking_service.create_booking(day_slots["08:00"].id, "manicure")

        available = await slot_service.list_available_slots("2026-03-10", TECH)

        assert "08:00" not in [s.time for s in available]
        assert len(available) == len(day_slots) - 1

    @pytest.mark.asyncio
    async def test_counts(self, slot_service, booking_service, day_slots):
        await booking_service.create_booking(day_slots["08:00"].id, "manicure")
        await slot_service.update_slot(day_slots["21:00"].id, status="blocked")

        counts = await slot_service.count_slots_by_status(TEST_DAY)

        assert counts["pending"] == 1
        assert counts["blocked"] == 1
        assert counts["confirmed"] == 0
        assert counts["available"] == len(day_slots) - 2

    @pytest.mark.asyncio
    async def test_bad_status_filter(self, slot_service):
        with pytest.raises(ValidationError):
            await slot_service.list_slots(status="held")
