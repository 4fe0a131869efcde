"""
Application-wide constants.
Centralizes the canonical slot times and booking identifier format.
"""

from typing import Optional, Sequence

# Canonical ordered start times. A multi-slot service always takes the
# next entry in this list, there is no "next" after the last one.
SLOT_TIMES = (
    "08:00",
    "10:00",
    "10:30",
    "13:00",
    "15:00",
    "15:30",
    "19:00",
    "20:00",
    "21:00",
)

# Booking identifiers: GN-00001, GN-00002, ...
BOOKING_ID_PREFIX = "GN-"
BOOKING_ID_DIGITS = 5
# Sequential ids have at most this many digits; older timestamp ids (13+) are ignored
BOOKING_ID_MAX_SEQUENCE_DIGITS = 6
BOOKING_COUNTER_NAME = "booking_number"

# Placeholder used before the customer form is submitted
PENDING_CUSTOMER_ID = "PENDING_FORM_SUBMISSION"

# Release timings (minutes)
PENDING_FORM_TIMEOUT_MINUTES = 30
RELEASE_INTERVAL_MINUTES = 5
MANUAL_RELEASE_MIN_AGE_MINUTES = 120

# Optimistic transaction retries
TRANSACTION_MAX_ATTEMPTS = 5

# Validation limits
MAX_NOTES_LENGTH = 1000
MAX_FORM_VALUE_LENGTH = 2000


def get_next_slot_time(
    time: str, slot_times: Optional[Sequence[str]] = None
) -> Optional[str]:
    """Return the canonical time that follows ``time``, or None."""
    times = list(slot_times or SLOT_TIMES)
    time = time.strip()
    if time not in times:
        return None
    index = times.index(time)
    if index == len(times) - 1:
        return None
    return times[index + 1]
