"""Task scheduler for releasing abandoned reservations."""

from .release_jobs import release_expired_bookings, setup_scheduler, shutdown_scheduler

__all__ = ["setup_scheduler", "release_expired_bookings", "shutdown_scheduler"]
