"""Calendar store backends and process-wide initialization."""

from .memory_store import InMemoryCalendarStore
from .store import CalendarStore, CalendarTransaction


def create_store(app_settings) -> CalendarStore:
    """
    Build the configured store. Called once at process start; the result is
    passed explicitly to every service.
    """
    options = {"max_attempts": app_settings.transaction_max_attempts}
    if app_settings.store_backend == "supabase":
        from .supabase_client import SupabaseCalendarStore

        return SupabaseCalendarStore(
            app_settings.supabase_url, app_settings.supabase_key, **options
        )
    return InMemoryCalendarStore(**options)


__all__ = ["CalendarStore", "CalendarTransaction", "InMemoryCalendarStore", "create_store"]
