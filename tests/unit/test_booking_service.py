"""
Unit tests for the booking lifecycle.
"""

import asyncio
from urllib.parse import parse_qs, urlsplit

import pytest

from models.blocked_date import BlockedDateCreate
from models.booking import Booking, BookingStatus
from models.customer import CustomerCreate
from models.slot import SlotStatus
from services.booking_service import BookingService
from tests.conftest import TECH, TEST_DAY
from utils.exceptions import (
    BlockedSlotError,
    BookingNotFoundError,
    InvalidBookingTransitionError,
    MissingLinkedSlotsError,
    NonConsecutiveSlotsError,
    SlotNotFoundError,
    SlotUnavailableError,
    ValidationError,
)

FORM_DATA = {"Name": "Jane Cruz", "Email": "jane@example.com", "Phone": "09171234567"}


async def slot_statuses(store, *slots):
    return [(await store.get_slot(slot.id)).status for slot in slots]


async def create_mani_pedi(booking_service, day_slots, first="10:00", second="10:30"):
    return await booking_service.create_booking(
        day_slots[first].id,
        "mani_pedi",
        resource_id=TECH,
        linked_slot_ids=[day_slots[second].id],
    )


class TestCreateBooking:
    """Reservation of slot chains."""

    @pytest.mark.asyncio
    async def test_mani_pedi_reserves_both_slots(self, store, booking_service, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)

        booking = await store.get_booking(reservation.id)
        assert reservation.booking_id == "GN-00001"
        assert reservation.reference_token == reservation.id
        assert reservation.slot_ids == [day_slots["10:00"].id, day_slots["10:30"].id]
        assert booking.status == BookingStatus.PENDING_FORM.value
        assert booking.service_location == "homebased_studio"
        assert booking.resource_id == TECH
        assert await slot_statuses(store, day_slots["10:00"], day_slots["10:30"]) == [
            "pending",
            "pending",
        ]

    @pytest.mark.asyncio
    async def test_home_service_location_default(self, store, booking_service, day_slots):
        reservation = await booking_service.create_booking(
            day_slots["13:00"].id,
            "home_service_3slots",
            linked_slot_ids=[day_slots["15:00"].id, day_slots["15:30"].id],
        )
        booking = await store.get_booking(reservation.id)
        assert booking.service_location == "home_service"
        assert booking.chain == [
            day_slots["13:00"].id,
            day_slots["15:00"].id,
            day_slots["15:30"].id,
        ]

    @pytest.mark.asyncio
    async def test_failed_creation_leaves_no_trace(self, store, booking_service, day_slots):
        with pytest.raises(NonConsecutiveSlotsError):
            await booking_service.create_booking(
                day_slots["10:00"].id, "mani_pedi", linked_slot_ids=[day_slots["15:00"].id]
            )

        assert await store.list_bookings() == []
        assert await slot_statuses(store, day_slots["10:00"], day_slots["15:00"]) == [
            "available",
            "available",
        ]
        # Counter was not advanced either
        reservation = await booking_service.create_booking(day_slots["08:00"].id, "manicure")
        assert reservation.booking_id == "GN-00001"

    @pytest.mark.asyncio
    async def test_chain_length_checked(self, booking_service, day_slots):
        with pytest.raises(MissingLinkedSlotsError):
            await booking_service.create_booking(day_slots["10:00"].id, "mani_pedi")

    @pytest.mark.asyncio
    async def test_unknown_service_type(self, booking_service, day_slots):
        with pytest.raises(ValidationError):
            await booking_service.create_booking(day_slots["10:00"].id, "haircut")

    @pytest.mark.asyncio
    async def test_invalid_client_type(self, booking_service, day_slots):
        with pytest.raises(ValidationError):
            await booking_service.create_booking(
                day_slots["10:00"].id, "manicure", client_type="vip"
            )

    @pytest.mark.asyncio
    async def test_sequential_booking_ids(self, booking_service, day_slots):
        first = await booking_service.create_booking(day_slots["08:00"].id, "manicure")
        second = await booking_service.create_booking(day_slots["10:00"].id, "pedicure")
        assert (first.booking_id, second.booking_id) == ("GN-00001", "GN-00002")

    @pytest.mark.asyncio
    async def test_race_for_one_slot(self, store, booking_service, day_slots):
        """Two concurrent reservations of one slot: exactly one wins."""
        results = await asyncio.gather(
            booking_service.create_booking(day_slots["10:00"].id, "manicure"),
            booking_service.create_booking(day_slots["10:00"].id, "manicure"),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], SlotUnavailableError)
        assert len(await store.list_bookings()) == 1

    @pytest.mark.asyncio
    async def test_concurrent_ids_unique(self, booking_service, day_slots):
        times = ["08:00", "10:00", "13:00", "19:00", "21:00"]
        reservations = await asyncio.gather(
            *(booking_service.create_booking(day_slots[t].id, "manicure") for t in times)
        )
        ids = sorted(r.booking_id for r in reservations)
        assert ids == [f"GN-0000{n}" for n in range(1, 6)]

    @pytest.mark.asyncio
    async def test_prefilled_form_url(self, store, notifier, day_slots):
        service = BookingService(
            store,
            notifier=notifier,
            form_base_url="https://docs.google.com/forms/d/e/abc/viewform?usp=pp_url",
            form_booking_id_entry="entry.1",
            form_date_entry="entry.2",
            form_time_entry="entry.3",
        )
        reservation = await create_mani_pedi(service, day_slots, "13:00", "15:00")

        query = parse_qs(urlsplit(reservation.reference_token).query)
        assert query["usp"] == ["pp_url"]
        assert query["entry.1"] == [reservation.booking_id]
        assert query["entry.2"] == ["Tuesday, March 10, 2026"]
        assert query["entry.3"] == ["1:00 PM - 3:00 PM"]


class TestFormAttachment:
    """Customer form submissions."""

    @pytest.mark.asyncio
    async def test_attach_moves_to_pending_payment(self, store, booking_service, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)

        booking = await booking_service.attach_external_form_data(
            reservation.booking_id, FORM_DATA, "resp_1", field_order=["Name", "Phone", "Email"]
        )

        assert booking.status == BookingStatus.PENDING_PAYMENT.value
        assert booking.form_response_id == "resp_1"
        assert booking.customer_data["Name"] == "Jane Cruz"
        assert booking.customer_data_order == ["Name", "Phone", "Email"]
        assert booking.client_type == "new"
        customer = await store.get_customer(booking.customer_id)
        assert customer.email == "jane@example.com"

    @pytest.mark.asyncio
    async def test_same_response_is_idempotent(self, store, booking_service, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)
        await booking_service.attach_external_form_data(reservation.booking_id, FORM_DATA, "resp_1")
        before = await store.get_booking(reservation.id)

        again = await booking_service.attach_external_form_data(
            reservation.booking_id, {"Name": "Someone Else"}, "resp_1"
        )

        assert again is None
        after = await store.get_booking(reservation.id)
        assert after.version == before.version
        assert after.customer_data["Name"] == "Jane Cruz"

    @pytest.mark.asyncio
    async def test_unknown_booking_and_blank_data(self, booking_service, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)
        assert await booking_service.attach_external_form_data("GN-99999", FORM_DATA, "r") is None
        assert (
            await booking_service.attach_external_form_data(
                reservation.booking_id, {"Name": "  "}, "r"
            )
            is None
        )

    @pytest.mark.asyncio
    async def test_confirmed_booking_keeps_status(self, booking_service, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)
        await booking_service.confirm_booking(reservation.id)

        booking = await booking_service.attach_external_form_data(
            reservation.booking_id, FORM_DATA, "resp_1"
        )
        assert booking.status == BookingStatus.CONFIRMED.value

    @pytest.mark.asyncio
    async def test_repeat_client_detected(self, store, booking_service, day_slots):
        first = await booking_service.create_booking(day_slots["08:00"].id, "manicure")
        await booking_service.attach_external_form_data(first.booking_id, FORM_DATA, "resp_1")
        second = await booking_service.create_booking(day_slots["19:00"].id, "pedicure")

        booking = await booking_service.attach_external_form_data(
            second.booking_id, {"Email": "JANE@example.com"}, "resp_2"
        )

        assert booking.client_type == "repeat"
        first_booking = await store.get_booking(first.id)
        assert booking.customer_id == first_booking.customer_id

    @pytest.mark.asyncio
    async def test_flagged_repeat_customer(self, store, booking_service, day_slots):
        await store.create_customer(
            CustomerCreate(name="Ana", phone="09998887777", is_repeat_client=True)
        )
        reservation = await booking_service.create_booking(day_slots["08:00"].id, "manicure")

        booking = await booking_service.attach_external_form_data(
            reservation.booking_id, {"Contact Number": "0999 888 7777"}, "resp_1"
        )
        assert booking.client_type == "repeat"


class TestConfirmBooking:
    """Confirmation cascades to the whole chain."""

    @pytest.mark.asyncio
    async def test_confirm_cascades(self, store, booking_service, notifier, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)

        booking = await booking_service.confirm_booking(reservation.id)

        assert booking.status == BookingStatus.CONFIRMED.value
        assert await slot_statuses(store, day_slots["10:00"], day_slots["10:30"]) == [
            "confirmed",
            "confirmed",
        ]
        notifier.booking_confirmed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_confirm_twice_is_noop(self, booking_service, notifier, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)
        await booking_service.confirm_booking(reservation.id)
        booking = await booking_service.confirm_booking(reservation.id)

        assert booking.status == BookingStatus.CONFIRMED.value
        notifier.booking_confirmed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_newly_blocked_date_rejected(self, store, booking_service, day_slots):
        """Blocking a date after reservation stops its confirmation."""
        reservation = await create_mani_pedi(booking_service, day_slots)
        await store.create_blocked_date(
            BlockedDateCreate(start_date=TEST_DAY, end_date=TEST_DAY, reason="Closed")
        )

        with pytest.raises(BlockedSlotError):
            await booking_service.confirm_booking(reservation.id)

        booking = await store.get_booking(reservation.id)
        assert booking.status == BookingStatus.PENDING_FORM.value
        assert await slot_statuses(store, day_slots["10:00"], day_slots["10:30"]) == [
            "pending",
            "pending",
        ]

    @pytest.mark.asyncio
    async def test_blocked_primary_slot_rejected(self, store, booking_service, day_slots):
        reservation = await booking_service.create_booking(day_slots["08:00"].id, "manicure")

        async def block(tx):
            slot = await tx.get_slot(day_slots["08:00"].id)
            tx.set_slot_status(slot, SlotStatus.BLOCKED)

        await store.run_transaction(block)
        with pytest.raises(BlockedSlotError):
            await booking_service.confirm_booking(reservation.id)

    @pytest.mark.asyncio
    async def test_missing_linked_slot(self, store, booking_service, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)

        async def remove(tx):
            tx.delete_slot(day_slots["10:30"].id)

        await store.run_transaction(remove)
        with pytest.raises(SlotNotFoundError):
            await booking_service.confirm_booking(reservation.id)
        assert await slot_statuses(store, day_slots["10:00"]) == ["pending"]

    @pytest.mark.asyncio
    async def test_cancelled_cannot_be_confirmed(self, booking_service, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)
        await booking_service.cancel_booking(reservation.id)

        with pytest.raises(InvalidBookingTransitionError):
            await booking_service.confirm_booking(reservation.id)

    @pytest.mark.asyncio
    async def test_unknown_booking(self, booking_service):
        with pytest.raises(BookingNotFoundError):
            await booking_service.confirm_booking("nope")

    @pytest.mark.asyncio
    async def test_notifier_failure_is_swallowed(self, booking_service, notifier, day_slots):
        notifier.booking_confirmed.side_effect = RuntimeError("telegram down")
        reservation = await booking_service.create_booking(day_slots["08:00"].id, "manicure")

        booking = await booking_service.confirm_booking(reservation.id)
        assert booking.status == BookingStatus.CONFIRMED.value


class TestCancelAndRelease:
    """Cancellation and explicit slot unwinding."""

    @pytest.mark.asyncio
    async def test_cancel_keeps_slots(self, store, booking_service, notifier, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)
        await booking_service.confirm_booking(reservation.id)

        booking = await booking_service.cancel_booking(reservation.id)
        await booking_service.cancel_booking(reservation.id)

        assert booking.status == BookingStatus.CANCELLED.value
        assert await slot_statuses(store, day_slots["10:00"], day_slots["10:30"]) == [
            "confirmed",
            "confirmed",
        ]
        notifier.booking_cancelled.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_release_cancelled_slots(self, store, booking_service, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)
        await booking_service.confirm_booking(reservation.id)
        await booking_service.cancel_booking(reservation.id)

        released = await booking_service.release_cancelled_booking_slots(reservation.id)

        assert released == 2
        assert await slot_statuses(store, day_slots["10:00"], day_slots["10:30"]) == [
            "available",
            "available",
        ]
        assert (await store.get_booking(reservation.id)).status == "cancelled"
        assert await booking_service.release_cancelled_booking_slots(reservation.id) == 0

    @pytest.mark.asyncio
    async def test_repeated_release_keeps_rebooked_slot(self, store, booking_service, day_slots):
        """A second release must not free a slot a newer booking now holds."""
        slot = day_slots["10:00"]
        first = await booking_service.create_booking(slot.id, "manicure")
        await booking_service.cancel_booking(first.id)
        assert await booking_service.release_cancelled_booking_slots(first.id) == 1

        second = await booking_service.create_booking(slot.id, "manicure")
        await booking_service.confirm_booking(second.id)

        assert await booking_service.release_cancelled_booking_slots(first.id) == 0
        assert await slot_statuses(store, slot) == ["confirmed"]
        assert (await store.get_booking(first.id)).slots_released_at is not None
        with pytest.raises(SlotUnavailableError):
            await booking_service.create_booking(slot.id, "manicure")

    @pytest.mark.asyncio
    async def test_release_requires_cancellation(self, booking_service, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)
        with pytest.raises(InvalidBookingTransitionError):
            await booking_service.release_cancelled_booking_slots(reservation.id)


class TestReschedule:
    """Moving a booking to a new chain."""

    @pytest.mark.asyncio
    async def test_reschedule_pending_booking(self, store, booking_service, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)

        booking = await booking_service.reschedule_booking(
            reservation.id, day_slots["19:00"].id, [day_slots["20:00"].id]
        )

        assert booking.chain == [day_slots["19:00"].id, day_slots["20:00"].id]
        assert await slot_statuses(
            store, day_slots["10:00"], day_slots["10:30"], day_slots["19:00"], day_slots["20:00"]
        ) == ["available", "available", "pending", "pending"]

    @pytest.mark.asyncio
    async def test_reschedule_overlapping_confirmed(self, store, booking_service, day_slots):
        """Shifting by one slot reuses the overlapping slot and stays confirmed."""
        reservation = await create_mani_pedi(booking_service, day_slots)
        await booking_service.confirm_booking(reservation.id)

        await booking_service.reschedule_booking(
            reservation.id, day_slots["10:30"].id, [day_slots["13:00"].id]
        )

        assert await slot_statuses(
            store, day_slots["10:00"], day_slots["10:30"], day_slots["13:00"]
        ) == ["available", "confirmed", "confirmed"]

    @pytest.mark.asyncio
    async def test_failed_reschedule_keeps_old_chain(self, store, booking_service, day_slots):
        reservation = await create_mani_pedi(booking_service, day_slots)
        other = await booking_service.create_booking(day_slots["19:00"].id, "manicure")

        with pytest.raises(SlotUnavailableError):
            await booking_service.reschedule_booking(
                reservation.id, day_slots["19:00"].id, [day_slots["20:00"].id]
            )

        booking = await store.get_booking(reservation.id)
        assert booking.chain == [day_slots["10:00"].id, day_slots["10:30"].id]
        assert await slot_statuses(store, day_slots["10:00"], day_slots["10:30"]) == [
            "pending",
            "pending",
        ]
        assert other.slot_ids == [day_slots["19:00"].id]

    @pytest.mark.asyncio
    async def test_cancelled_cannot_be_rescheduled(self, booking_service, day_slots):
        reservation = await booking_service.create_booking(day_slots["08:00"].id, "manicure")
        await booking_service.cancel_booking(reservation.id)
        with pytest.raises(InvalidBookingTransitionError):
            await booking_service.reschedule_booking(reservation.id, day_slots["10:00"].id)


class TestReads:
    """Lookups and listings."""

    @pytest.mark.asyncio
    async def test_lookups(self, booking_service, day_slots):
        first = await booking_service.create_booking(day_slots["08:00"].id, "manicure")
        second = await booking_service.create_booking(day_slots["10:00"].id, "manicure")
        await booking_service.cancel_booking(second.id)

        assert (await booking_service.get_booking(first.id)).booking_id == first.booking_id
        assert (await booking_service.get_booking_by_reference(second.booking_id)).id == second.id
        pending = await booking_service.list_bookings("pending_form")
        assert [b.id for b in pending] == [first.id]
        assert len(await booking_service.list_bookings()) == 2

    @pytest.mark.asyncio
    async def test_invalid_status_filter(self, booking_service):
        with pytest.raises(ValidationError):
            await booking_service.list_bookings("paid")


@pytest.mark.asyncio
async def test_legacy_booking_shape_confirms(store, booking_service, day_slots):
    """Bookings stored with a single paired slot still cascade to both slots."""

    async def seed(tx):
        for time in ("10:00", "10:30"):
            slot = await tx.get_slot(day_slots[time].id)
            tx.set_slot_status(slot, SlotStatus.PENDING)
        return tx.set_booking(
            Booking(
                booking_id="GN-00050",
                slot_id=day_slots["10:00"].id,
                paired_slot_id=day_slots["10:30"].id,
                service_type="mani_pedi",
            )
        )

    legacy = await store.run_transaction(seed)
    await booking_service.confirm_booking(legacy.id)

    assert await slot_statuses(store, day_slots["10:00"], day_slots["10:30"]) == [
        "confirmed",
        "confirmed",
    ]
