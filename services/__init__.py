"""Booking engine services: slot allocation, booking lifecycle and reclaim."""

from .blocked_ranges import BlockService, assert_not_blocked, is_blocked
from .booking_sequencer import BookingSequencer
from .booking_service import BookingService
from .customers import CustomerResolver, StoreCustomerResolver
from .notifications import LoggingNotifier, Notifier, TelegramNotifier, create_notifier
from .reclaim import ReclaimSweeper
from .slot_allocator import SlotAllocator
from .slot_service import SlotService

__all__ = [
    "BlockService",
    "BookingSequencer",
    "BookingService",
    "CustomerResolver",
    "LoggingNotifier",
    "Notifier",
    "ReclaimSweeper",
    "SlotAllocator",
    "SlotService",
    "StoreCustomerResolver",
    "TelegramNotifier",
    "assert_not_blocked",
    "create_notifier",
    "is_blocked",
]
