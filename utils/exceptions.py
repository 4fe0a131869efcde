"""
Custom exception classes for the booking engine.
Provides specific error types instead of generic exceptions.
"""


class DatabaseError(Exception):
    """Base exception for datastore operations."""

    pass


class TransactionConflictError(DatabaseError):
    """Raised when a transaction read was invalidated by a concurrent commit."""

    pass


class ValidationError(Exception):
    """Raised when input validation fails."""

    pass


class CalendarError(Exception):
    """Base exception for slot and booking rule violations."""

    pass


class SlotNotFoundError(CalendarError):
    """Raised when a slot is not found."""

    pass


class SlotUnavailableError(CalendarError):
    """Raised when a slot is not in the status an operation requires."""

    pass


class NonConsecutiveSlotsError(CalendarError):
    """Raised when linked slots do not follow each other in the time sequence."""

    pass


class CrossDateSlotsError(CalendarError):
    """Raised when linked slots span more than one calendar date."""

    pass


class BlockedSlotError(CalendarError):
    """Raised when a slot is blocked or falls inside a blocked date range."""

    pass


class ResourceMismatchError(CalendarError):
    """Raised when slots of one chain belong to different nail techs."""

    pass


class ChainLengthError(CalendarError):
    """Raised when the number of linked slots does not match the service."""

    pass


class UnexpectedLinkedSlotsError(ChainLengthError):
    """Raised when linked slots are supplied for a single-slot service."""

    pass


class MissingLinkedSlotsError(ChainLengthError):
    """Raised when a multi-slot service gets the wrong number of linked slots."""

    pass


class BookingNotFoundError(CalendarError):
    """Raised when a booking is not found."""

    pass


class InvalidBookingTransitionError(CalendarError):
    """Raised when a booking cannot move to the requested status."""

    pass


class DuplicateSlotError(CalendarError):
    """Raised when a slot already exists for the same date, time and nail tech."""

    pass


class SlotInUseError(CalendarError):
    """Raised when deleting a slot that an active booking still references."""

    pass


class InvalidSlotTransitionError(CalendarError):
    """Raised when an admin slot update would bypass the booking engine."""

    pass
