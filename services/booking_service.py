"""
Booking lifecycle: reservation, form attachment, confirmation, cancellation,
slot unwinding and rescheduling.

Every read-then-write runs inside ``store.run_transaction`` so booking and
slot state move together, and a failed check leaves nothing behind.
"""

from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlencode, urlsplit, urlunsplit

from db.store import CalendarStore, CalendarTransaction
from models.booking import Booking, BookingReservation, BookingStatus, ClientType
from models.service import ServiceLocation, ServiceVariant, get_service_variant
from models.slot import Slot, SlotStatus
from services.blocked_ranges import assert_not_blocked
from services.booking_sequencer import BookingSequencer
from services.customers import CustomerResolver, StoreCustomerResolver
from services.notifications import LoggingNotifier, Notifier
from services.slot_allocator import SlotAllocator
from utils.constants import PENDING_CUSTOMER_ID
from utils.datetime_utils import format_long_date, format_time_12h
from utils.exceptions import (
    BlockedSlotError,
    BookingNotFoundError,
    InvalidBookingTransitionError,
    SlotNotFoundError,
    ValidationError,
)
from utils.logging_config import get_logger
from utils.validation import has_meaningful_values, sanitize_form_data, sanitize_text

logger = get_logger(__name__)

ENGINE_HELD_STATUSES = (SlotStatus.PENDING.value, SlotStatus.CONFIRMED.value)


def build_prefilled_form_url(base_url: str, fields: Dict[str, str]) -> str:
    """Append prefill fields to the form URL, keeping any existing query."""
    parts = urlsplit(base_url)
    extra = urlencode({key: value for key, value in fields.items() if value})
    query = f"{parts.query}&{extra}" if parts.query and extra else parts.query or extra
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


async def for_each_in_chain(
    tx: CalendarTransaction,
    booking: Booking,
    fn: Callable[[Slot], object],
    require_all: bool = False,
) -> int:
    """
    Apply ``fn`` to every slot of the booking's chain.

    All slots are read before ``fn`` runs on any of them. Missing slots
    raise when ``require_all`` is set and are skipped otherwise.

    Returns:
        Number of slots for which ``fn`` returned a truthy value
    """
    slots = []
    for slot_id in booking.chain:
        slot = await tx.get_slot(slot_id)
        if slot is None:
            if require_all:
                raise SlotNotFoundError(f"Slot {slot_id} not found.")
            logger.warning(
                f"Slot {slot_id} of booking {booking.booking_id} no longer exists"
            )
            continue
        slots.append(slot)
    return sum(1 for slot in slots if fn(slot))


class BookingService:
    """Owns the booking state machine."""

    def __init__(
        self,
        store: CalendarStore,
        allocator: Optional[SlotAllocator] = None,
        sequencer: Optional[BookingSequencer] = None,
        notifier: Optional[Notifier] = None,
        customer_resolver: Optional[CustomerResolver] = None,
        form_base_url: Optional[str] = None,
        form_booking_id_entry: Optional[str] = None,
        form_date_entry: Optional[str] = None,
        form_time_entry: Optional[str] = None,
    ):
        self.store = store
        self.allocator = allocator or SlotAllocator()
        self.sequencer = sequencer or BookingSequencer(store)
        self.notifier = notifier or LoggingNotifier()
        self.customer_resolver = customer_resolver or StoreCustomerResolver(store)
        self.form_base_url = form_base_url
        self.form_booking_id_entry = form_booking_id_entry
        self.form_date_entry = form_date_entry
        self.form_time_entry = form_time_entry

    # ========== Reservation ==========

    async def create_booking(
        self,
        slot_id: str,
        service_type: str,
        resource_id: Optional[str] = None,
        linked_slot_ids: Optional[Sequence[str]] = None,
        client_type: Optional[str] = None,
        service_location: Optional[str] = None,
        social_media_name: Optional[str] = None,
    ) -> BookingReservation:
        """
        Reserve a slot chain and open a booking awaiting the customer form.

        Args:
            slot_id: First slot of the chain
            service_type: ServiceType value
            resource_id: Nail tech the slots must belong to
            linked_slot_ids: Following consecutive slots for multi-slot services
            client_type: "new" or "repeat" when already known
            service_location: Overrides the service's default location
            social_media_name: Customer handle captured at reservation time

        Returns:
            BookingReservation with the ids and the customer's reference token

        Raises:
            ValidationError: Unknown service type, client type or location
            CalendarError: Any slot chain check failed
        """
        variant = self._variant(service_type)
        client_type = self._enum_value(ClientType, client_type, "client type")
        location = self._enum_value(ServiceLocation, service_location, "service location")
        location = location or ServiceLocation(variant.default_location).value
        initial_data: Dict[str, str] = {}
        if social_media_name:
            initial_data["social_media_name"] = sanitize_text(social_media_name, 200)

        blocked_ranges = await self.store.list_blocked_dates()

        async def reserve(tx: CalendarTransaction) -> Tuple[Booking, List[Slot]]:
            booking_id = await self.sequencer.reserve_booking_id(tx)
            chain = await self.allocator.allocate_chain(
                tx,
                slot_id,
                variant,
                linked_slot_ids,
                blocked_ranges,
                resource_id=resource_id,
            )
            slots = [await tx.get_slot(chain_slot_id) for chain_slot_id in chain]
            booking = tx.set_booking(
                Booking(
                    booking_id=booking_id,
                    slot_id=chain[0],
                    linked_slot_ids=chain[1:],
                    status=BookingStatus.PENDING_FORM,
                    service_type=variant.type,
                    resource_id=slots[0].resource_id,
                    customer_id=PENDING_CUSTOMER_ID,
                    client_type=client_type,
                    service_location=location,
                    customer_data=initial_data,
                    customer_data_order=list(initial_data),
                )
            )
            return booking, slots

        booking, slots = await self.store.run_transaction(reserve)
        logger.info(
            f"Reserved {booking.booking_id} ({booking.service_type}) "
            f"on {slots[0].date} {slots[0].time}, {len(slots)} slot(s)"
        )
        return BookingReservation(
            id=booking.id,
            booking_id=booking.booking_id,
            reference_token=self._reference_token(booking, slots),
            slot_ids=booking.chain,
        )

    def _reference_token(self, booking: Booking, slots: List[Slot]) -> str:
        if not (self.form_base_url and self.form_booking_id_entry):
            return booking.id
        fields = {self.form_booking_id_entry: booking.booking_id}
        if self.form_date_entry:
            fields[self.form_date_entry] = format_long_date(slots[0].date)
        if self.form_time_entry:
            start = format_time_12h(slots[0].time)
            fields[self.form_time_entry] = (
                f"{start} - {format_time_12h(slots[-1].time)}" if len(slots) > 1 else start
            )
        return build_prefilled_form_url(self.form_base_url, fields)

    # ========== Customer form ==========

    async def attach_external_form_data(
        self,
        booking_id: str,
        data: Dict[str, object],
        external_response_id: str,
        field_order: Optional[Sequence[str]] = None,
    ) -> Optional[Booking]:
        """
        Attach a submitted customer form to a booking.

        Args:
            booking_id: Human-facing booking id from the form
            data: Submitted field values keyed by question
            external_response_id: Form provider's response id
            field_order: Question order as shown on the form

        Returns:
            The updated booking, or None when the booking is unknown, the
            response was already applied or the submission is blank
        """
        booking = await self.store.find_booking_by_reference(booking_id)
        if booking is None:
            logger.warning(f"Form submission for unknown booking {booking_id}")
            return None
        if booking.form_response_id == external_response_id:
            logger.info(f"Form response {external_response_id} already applied")
            return None

        cleaned = sanitize_form_data(data)
        if not has_meaningful_values(cleaned):
            logger.warning(f"Ignoring blank form submission for {booking_id}")
            return None

        customer = await self.customer_resolver.resolve(cleaned)
        previous = await self.store.list_bookings_for_customer(customer.id)
        is_repeat = bool(customer.is_repeat_client) or any(
            other.id != booking.id and other.is_active for other in previous
        )
        order = [key for key in (field_order or cleaned.keys()) if key in cleaned]

        async def attach(tx: CalendarTransaction) -> Optional[Booking]:
            current = await tx.get_booking(booking.id)
            if current is None or current.form_response_id == external_response_id:
                return None
            status = current.status
            if status == BookingStatus.PENDING_FORM.value:
                status = BookingStatus.PENDING_PAYMENT.value
            merged_order = [key for key in current.customer_data_order if key not in cleaned]
            return tx.update_booking(
                current,
                customer_id=customer.id,
                customer_data={**current.customer_data, **cleaned},
                customer_data_order=merged_order + order,
                form_response_id=external_response_id,
                client_type=(ClientType.REPEAT if is_repeat else ClientType.NEW).value,
                status=status,
            )

        updated = await self.store.run_transaction(attach)
        if updated is not None:
            logger.info(
                f"Form data attached to {updated.booking_id}, status {updated.status}"
            )
        return updated

    # ========== Transitions ==========

    async def confirm_booking(self, booking_id: str) -> Booking:
        """
        Confirm a booking and every slot in its chain.

        Raises:
            BookingNotFoundError: Unknown booking
            InvalidBookingTransitionError: Booking was cancelled
            SlotNotFoundError: A chain slot no longer exists
            BlockedSlotError: The primary slot is blocked
        """
        blocked_ranges = await self.store.list_blocked_dates()

        async def confirm(tx: CalendarTransaction) -> Tuple[Booking, bool]:
            booking = await self._read_booking(tx, booking_id)
            if booking.status == BookingStatus.CANCELLED.value:
                raise InvalidBookingTransitionError(
                    f"Booking {booking.booking_id} is cancelled and cannot be confirmed."
                )
            if booking.status == BookingStatus.CONFIRMED.value:
                return booking, False

            primary = await tx.get_slot(booking.slot_id)
            if primary is None:
                raise SlotNotFoundError(f"Slot {booking.slot_id} not found.")
            if primary.status == SlotStatus.BLOCKED.value:
                raise BlockedSlotError(f"Slot {primary.id} is blocked.")
            assert_not_blocked(primary, blocked_ranges)

            await for_each_in_chain(
                tx,
                booking,
                lambda slot: tx.set_slot_status(slot, SlotStatus.CONFIRMED),
                require_all=True,
            )
            return tx.set_booking_status(booking, BookingStatus.CONFIRMED), True

        booking, changed = await self.store.run_transaction(confirm)
        if changed:
            logger.info(f"Booking {booking.booking_id} confirmed")
            await self._notify(self.notifier.booking_confirmed, booking)
        return booking

    async def cancel_booking(self, booking_id: str) -> Booking:
        """
        Cancel a booking. Its slots stay held until an admin releases them.

        Raises:
            BookingNotFoundError: Unknown booking
        """

        async def cancel(tx: CalendarTransaction) -> Tuple[Booking, bool]:
            booking = await self._read_booking(tx, booking_id)
            if booking.status == BookingStatus.CANCELLED.value:
                return booking, False
            return tx.set_booking_status(booking, BookingStatus.CANCELLED), True

        booking, changed = await self.store.run_transaction(cancel)
        if changed:
            logger.info(f"Booking {booking.booking_id} cancelled")
            await self._notify(self.notifier.booking_cancelled, booking)
        return booking

    async def release_cancelled_booking_slots(self, booking_id: str) -> int:
        """
        Free the slots still held by a cancelled booking.

        The booking record is kept and marked, so the unwind happens once.

        Returns:
            Number of slots returned to available

        Raises:
            BookingNotFoundError: Unknown booking
            InvalidBookingTransitionError: Booking is not cancelled
        """

        async def release(tx: CalendarTransaction) -> int:
            booking = await self._read_booking(tx, booking_id)
            if booking.status != BookingStatus.CANCELLED.value:
                raise InvalidBookingTransitionError(
                    f"Booking {booking.booking_id} must be cancelled before its slots are released."
                )
            # The chain may belong to newer bookings once it was freed
            if booking.slots_released_at is not None:
                return 0
            released = await for_each_in_chain(
                tx, booking, lambda slot: self._release_slot(tx, slot)
            )
            tx.update_booking(booking, slots_released_at=self.store.clock())
            return released

        released = await self.store.run_transaction(release)
        logger.info(f"Released {released} slot(s) of cancelled booking {booking_id}")
        return released

    async def reschedule_booking(
        self,
        booking_id: str,
        new_slot_id: str,
        linked_slot_ids: Optional[Sequence[str]] = None,
    ) -> Booking:
        """
        Move a booking to a new slot chain.

        The old chain is freed and the new one is reserved in the same
        transaction; confirmed bookings keep their new slots confirmed.

        Raises:
            BookingNotFoundError: Unknown booking
            InvalidBookingTransitionError: Booking was cancelled
            CalendarError: The new chain failed validation
        """
        blocked_ranges = await self.store.list_blocked_dates()

        async def reschedule(tx: CalendarTransaction) -> Booking:
            booking = await self._read_booking(tx, booking_id)
            if booking.status == BookingStatus.CANCELLED.value:
                raise InvalidBookingTransitionError(
                    f"Booking {booking.booking_id} is cancelled and cannot be rescheduled."
                )
            variant = self._variant(booking.service_type)
            target = (
                SlotStatus.CONFIRMED
                if booking.status == BookingStatus.CONFIRMED.value
                else SlotStatus.PENDING
            )

            # Free the old chain first so the new one may overlap it
            await for_each_in_chain(
                tx, booking, lambda slot: self._release_slot(tx, slot)
            )
            chain = await self.allocator.allocate_chain(
                tx,
                new_slot_id,
                variant,
                linked_slot_ids,
                blocked_ranges,
                target_status=target,
            )
            primary = await tx.get_slot(chain[0])
            return tx.update_booking(
                booking,
                slot_id=chain[0],
                linked_slot_ids=chain[1:],
                resource_id=primary.resource_id,
            )

        booking = await self.store.run_transaction(reschedule)
        logger.info(
            f"Booking {booking.booking_id} rescheduled to {', '.join(booking.chain)}"
        )
        return booking

    # ========== Reads ==========

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        return await self.store.get_booking(booking_id)

    async def get_booking_by_reference(self, reference: str) -> Optional[Booking]:
        return await self.store.find_booking_by_reference(reference)

    async def list_bookings(self, status: Optional[str] = None) -> List[Booking]:
        status = self._enum_value(BookingStatus, status, "booking status")
        return await self.store.list_bookings(status)

    # ========== Helpers ==========

    async def _read_booking(self, tx: CalendarTransaction, booking_id: str) -> Booking:
        booking = await tx.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found.")
        return booking

    @staticmethod
    def _release_slot(tx: CalendarTransaction, slot: Slot) -> bool:
        if slot.status not in ENGINE_HELD_STATUSES:
            return False
        tx.set_slot_status(slot, SlotStatus.AVAILABLE)
        return True

    @staticmethod
    def _variant(service_type) -> ServiceVariant:
        try:
            return get_service_variant(service_type)
        except (KeyError, ValueError) as e:
            raise ValidationError(f"Unknown service type: {service_type}") from e

    @staticmethod
    def _enum_value(enum_cls, value, label: str) -> Optional[str]:
        if value is None or value == "":
            return None
        try:
            return enum_cls(value).value
        except ValueError as e:
            raise ValidationError(f"Invalid {label}: {value}") from e

    async def _notify(self, send, booking: Booking) -> None:
        try:
            await send(booking)
        except Exception as e:
            logger.error(
                f"Notification for {booking.booking_id} failed: {e}", exc_info=True
            )
