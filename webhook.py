"""
HTTP API for the booking engine.

Thin aiohttp adapter over the booking services:
- Public reservation and availability endpoints
- Customer form submission webhook
- Admin booking, slot and blocked date endpoints
- Cron endpoint for releasing expired reservations
- Security headers and JSON error responses
"""

import hmac
import time
from typing import Any, Dict, List, Optional

from aiohttp import web
from aiohttp.web import Request, Response

from config import Settings, settings
from db import CalendarStore, create_store
from scheduler import setup_scheduler, shutdown_scheduler
from services import (
    BlockService,
    BookingSequencer,
    BookingService,
    ReclaimSweeper,
    SlotAllocator,
    SlotService,
    StoreCustomerResolver,
    create_notifier,
    is_blocked,
)
from services.notifications import Notifier
from utils.datetime_utils import parse_calendar_date
from utils.exceptions import (
    BlockedSlotError,
    BookingNotFoundError,
    CalendarError,
    DatabaseError,
    DuplicateSlotError,
    InvalidBookingTransitionError,
    InvalidSlotTransitionError,
    SlotInUseError,
    SlotNotFoundError,
    SlotUnavailableError,
    TransactionConflictError,
    ValidationError,
)
from utils.logging_config import get_logger

logger = get_logger(__name__, log_file="webhook.log")

MAX_REQUEST_BODY_SIZE = 1024 * 1024  # 1MB max request body size

SETTINGS_KEY = web.AppKey("settings", Settings)
STORE_KEY = web.AppKey("store", CalendarStore)
BOOKINGS_KEY = web.AppKey("booking_service", BookingService)
SLOTS_KEY = web.AppKey("slot_service", SlotService)
BLOCKS_KEY = web.AppKey("block_service", BlockService)
SWEEPER_KEY = web.AppKey("sweeper", ReclaimSweeper)
NOTIFIER_KEY = web.AppKey("notifier", Notifier)
START_TIME_KEY = web.AppKey("start_time", float)

# Domain error -> (HTTP status, error code). First match wins.
ERROR_STATUS = (
    (SlotNotFoundError, 404, "slot_not_found"),
    (BookingNotFoundError, 404, "booking_not_found"),
    (SlotUnavailableError, 409, "slot_unavailable"),
    (BlockedSlotError, 409, "slot_blocked"),
    (DuplicateSlotError, 409, "duplicate_slot"),
    (SlotInUseError, 409, "slot_in_use"),
    (InvalidBookingTransitionError, 409, "invalid_booking_transition"),
    (InvalidSlotTransitionError, 409, "invalid_slot_transition"),
    (TransactionConflictError, 409, "conflict"),
    (CalendarError, 400, "invalid_slot_chain"),
    (ValidationError, 400, "validation_failed"),
)


def _error_response(status: int, error: str, message: str) -> Response:
    return web.json_response(
        {"status": "error", "error": error, "message": message}, status=status
    )


@web.middleware
async def security_headers_middleware(request: Request, handler):
    """
    Add security headers to all responses.

    - Prevents MIME type sniffing
    - Prevents clickjacking
    - Enforces HTTPS in production
    """
    response = await handler(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Strict-Transport-Security"] = (
        "max-age=31536000; includeSubDomains"
    )

    # Only allow POST for webhook endpoint
    if request.path.startswith("/webhook/"):
        response.headers["Allow"] = "POST"

    return response


@web.middleware
async def error_middleware(request: Request, handler):
    """Translate domain errors into JSON error responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except (CalendarError, ValidationError, TransactionConflictError) as e:
        for error_cls, status, code in ERROR_STATUS:
            if isinstance(e, error_cls):
                logger.info(f"{request.method} {request.path} -> {status} {code}: {e}")
                return _error_response(status, code, str(e))
        raise
    except DatabaseError as e:
        logger.error(f"Database error on {request.path}: {e}", exc_info=True)
        return _error_response(503, "database_error", "Datastore unavailable")
    except Exception as e:
        logger.error(f"Unexpected error on {request.path}: {e}", exc_info=True)
        return _error_response(500, "internal_error", "Internal server error")


async def _read_json(request: Request) -> Dict[str, Any]:
    """
    Read a JSON object body.

    Raises:
        ValidationError: Body is too large, empty or not a JSON object
    """
    raw_body = await request.read()
    if len(raw_body) > MAX_REQUEST_BODY_SIZE:
        raise ValidationError(
            f"Request body exceeds maximum size of {MAX_REQUEST_BODY_SIZE} bytes"
        )
    if not raw_body:
        raise ValidationError("Empty payload")
    try:
        payload = await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be valid JSON") from e
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _field(payload: Dict[str, Any], camel: str, snake: str, required: bool = False):
    value = payload.get(camel, payload.get(snake))
    if required and (value is None or value == ""):
        raise ValidationError(f"Missing required field '{camel}'")
    return value


def _linked_slot_ids(payload: Dict[str, Any]) -> Optional[List[str]]:
    linked = _field(payload, "linkedSlotIds", "linked_slot_ids")
    if linked is None:
        return None
    if not isinstance(linked, list) or not all(isinstance(s, str) for s in linked):
        raise ValidationError("'linkedSlotIds' must be a list of slot ids")
    return linked


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json")


# ========== Bookings ==========


async def create_booking_handler(request: Request) -> Response:
    payload = await _read_json(request)
    reservation = await request.app[BOOKINGS_KEY].create_booking(
        slot_id=_field(payload, "slotId", "slot_id", required=True),
        service_type=_field(payload, "serviceType", "service_type", required=True),
        resource_id=_field(payload, "resourceId", "resource_id"),
        linked_slot_ids=_linked_slot_ids(payload),
        client_type=_field(payload, "clientType", "client_type"),
        service_location=_field(payload, "serviceLocation", "service_location"),
        social_media_name=_field(payload, "socialMediaName", "social_media_name"),
    )
    return web.json_response(
        {
            "id": reservation.id,
            "bookingId": reservation.booking_id,
            "referenceToken": reservation.reference_token,
            "slotIds": reservation.slot_ids,
        },
        status=201,
    )


async def confirm_booking_handler(request: Request) -> Response:
    booking = await request.app[BOOKINGS_KEY].confirm_booking(request.match_info["booking_id"])
    return web.json_response({"status": "success", "booking": _dump(booking)})


async def cancel_booking_handler(request: Request) -> Response:
    booking = await request.app[BOOKINGS_KEY].cancel_booking(request.match_info["booking_id"])
    return web.json_response({"status": "success", "booking": _dump(booking)})


async def release_slots_handler(request: Request) -> Response:
    released = await request.app[BOOKINGS_KEY].release_cancelled_booking_slots(
        request.match_info["booking_id"]
    )
    return web.json_response({"status": "success", "released": released})


async def reschedule_booking_handler(request: Request) -> Response:
    payload = await _read_json(request)
    booking = await request.app[BOOKINGS_KEY].reschedule_booking(
        request.match_info["booking_id"],
        new_slot_id=_field(payload, "newSlotId", "new_slot_id", required=True),
        linked_slot_ids=_linked_slot_ids(payload),
    )
    return web.json_response({"status": "success", "booking": _dump(booking)})


async def get_booking_handler(request: Request) -> Response:
    booking_id = request.match_info["booking_id"]
    booking = await request.app[BOOKINGS_KEY].get_booking(booking_id)
    if booking is None:
        raise BookingNotFoundError(f"Booking {booking_id} not found.")
    return web.json_response({"status": "success", "booking": _dump(booking)})


async def list_bookings_handler(request: Request) -> Response:
    bookings = await request.app[BOOKINGS_KEY].list_bookings(request.query.get("status"))
    return web.json_response(
        {"status": "success", "bookings": [_dump(b) for b in bookings]}
    )


async def form_submission_handler(request: Request) -> Response:
    """Customer form webhook. Duplicate or blank submissions are acknowledged."""
    payload = await _read_json(request)
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise ValidationError("'data' must be an object of question -> answer")
    booking = await request.app[BOOKINGS_KEY].attach_external_form_data(
        booking_id=_field(payload, "bookingId", "booking_id", required=True),
        data=data,
        external_response_id=_field(payload, "responseId", "response_id", required=True),
        field_order=_field(payload, "fieldOrder", "field_order"),
    )
    return web.json_response(
        {
            "status": "success",
            "applied": booking is not None,
            "bookingStatus": booking.status if booking else None,
        }
    )


# ========== Release ==========


def _cron_authorized(request: Request) -> bool:
    secret = request.app[SETTINGS_KEY].cron_secret
    if not secret:
        return True
    header = request.headers.get("Authorization", "")
    return hmac.compare_digest(header, f"Bearer {secret}")


async def release_expired_handler(request: Request) -> Response:
    if not _cron_authorized(request):
        logger.warning("Rejected cron call with invalid secret")
        return _error_response(401, "unauthorized", "Invalid cron secret")
    app_settings = request.app[SETTINGS_KEY]
    released = await request.app[SWEEPER_KEY].release_expired(
        app_settings.pending_form_timeout_minutes
    )
    return web.json_response({"status": "success", "released": released})


async def eligible_for_release_handler(request: Request) -> Response:
    min_age = request.query.get("minAgeMinutes")
    try:
        minutes = (
            int(min_age)
            if min_age
            else request.app[SETTINGS_KEY].manual_release_min_age_minutes
        )
    except ValueError as e:
        raise ValidationError(f"Invalid minAgeMinutes: {min_age}") from e
    bookings = await request.app[SWEEPER_KEY].get_eligible_bookings_for_release(minutes)
    return web.json_response(
        {"status": "success", "bookings": [_dump(b) for b in bookings]}
    )


async def manual_release_handler(request: Request) -> Response:
    payload = await _read_json(request)
    booking_ids = _field(payload, "bookingIds", "booking_ids", required=True)
    if not isinstance(booking_ids, list):
        raise ValidationError("'bookingIds' must be a list")
    released = await request.app[SWEEPER_KEY].manually_release_bookings(booking_ids)
    return web.json_response({"status": "success", "released": released})


# ========== Slots & blocks ==========


async def availability_handler(request: Request) -> Response:
    raw_date = request.query.get("date")
    if not raw_date:
        raise ValidationError("Missing required query parameter 'date'")
    try:
        day = parse_calendar_date(raw_date)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    resource_id = request.query.get("resourceId")

    blocked = is_blocked(day, await request.app[BLOCKS_KEY].list_blocked_dates())
    slots = [] if blocked else await request.app[SLOTS_KEY].list_available_slots(day, resource_id)
    return web.json_response(
        {
            "date": day.isoformat(),
            "resourceId": resource_id,
            "blocked": blocked,
            "slots": [_dump(slot) for slot in slots],
        }
    )


async def create_slot_handler(request: Request) -> Response:
    payload = await _read_json(request)
    slot = await request.app[SLOTS_KEY].create_slot(
        day=_field(payload, "date", "date", required=True),
        time=_field(payload, "time", "time", required=True),
        resource_id=_field(payload, "resourceId", "resource_id"),
        status=_field(payload, "status", "status") or "available",
        slot_type=_field(payload, "slotType", "slot_type"),
        notes=_field(payload, "notes", "notes"),
    )
    return web.json_response({"status": "success", "slot": _dump(slot)}, status=201)


async def update_slot_handler(request: Request) -> Response:
    payload = await _read_json(request)
    slot = await request.app[SLOTS_KEY].update_slot(
        request.match_info["slot_id"],
        status=_field(payload, "status", "status"),
        notes=_field(payload, "notes", "notes"),
        slot_type=_field(payload, "slotType", "slot_type"),
    )
    return web.json_response({"status": "success", "slot": _dump(slot)})


async def delete_slot_handler(request: Request) -> Response:
    await request.app[SLOTS_KEY].delete_slot(request.match_info["slot_id"])
    return web.json_response({"status": "success"})


async def list_blocks_handler(request: Request) -> Response:
    blocks = await request.app[BLOCKS_KEY].list_blocked_dates()
    return web.json_response({"status": "success", "blocks": [_dump(b) for b in blocks]})


async def create_block_handler(request: Request) -> Response:
    payload = await _read_json(request)
    start_date = _field(payload, "startDate", "start_date", required=True)
    block = await request.app[BLOCKS_KEY].create_blocked_date(
        start_date=start_date,
        end_date=_field(payload, "endDate", "end_date") or start_date,
        reason=_field(payload, "reason", "reason"),
        scope=_field(payload, "scope", "scope") or "range",
    )
    return web.json_response({"status": "success", "block": _dump(block)}, status=201)


async def delete_block_handler(request: Request) -> Response:
    block_id = request.match_info["block_id"]
    if not await request.app[BLOCKS_KEY].delete_blocked_date(block_id):
        return _error_response(404, "block_not_found", f"Blocked range {block_id} not found.")
    return web.json_response({"status": "success"})


async def health_check(request: Request) -> Response:
    """Health check endpoint."""
    uptime_seconds = time.time() - request.app[START_TIME_KEY]
    return web.json_response(
        {
            "status": "ok",
            "service": "salon-booking-engine",
            "timestamp": time.time(),
            "uptime_hours": round(uptime_seconds / 3600, 2),
            "store_backend": request.app[SETTINGS_KEY].store_backend,
        }
    )


# ========== App ==========


def _wire_services(
    app: web.Application, store: CalendarStore, app_settings: Settings, notifier: Notifier
) -> None:
    allocator = SlotAllocator(app_settings.slot_time_list)
    app[BOOKINGS_KEY] = BookingService(
        store,
        allocator=allocator,
        sequencer=BookingSequencer(
            store,
            prefix=app_settings.booking_id_prefix,
            digits=app_settings.booking_id_digits,
            max_sequence_digits=app_settings.booking_id_max_sequence_digits,
        ),
        notifier=notifier,
        customer_resolver=StoreCustomerResolver(store),
        form_base_url=app_settings.form_base_url,
        form_booking_id_entry=app_settings.form_booking_id_entry,
        form_date_entry=app_settings.form_date_entry,
        form_time_entry=app_settings.form_time_entry,
    )
    app[SLOTS_KEY] = SlotService(store, app_settings.slot_time_list)
    app[BLOCKS_KEY] = BlockService(store)
    app[SWEEPER_KEY] = ReclaimSweeper(
        store,
        clock=store.clock,
        max_age_minutes=app_settings.pending_form_timeout_minutes,
    )


async def _start_background_jobs(app: web.Application) -> None:
    app_settings = app[SETTINGS_KEY]
    setup_scheduler(
        app[SWEEPER_KEY],
        interval_minutes=app_settings.release_interval_minutes,
        max_age_minutes=app_settings.pending_form_timeout_minutes,
    )


async def _stop_background_jobs(app: web.Application) -> None:
    shutdown_scheduler()


async def _close_notifier(app: web.Application) -> None:
    await app[NOTIFIER_KEY].close()


def create_app(
    store: Optional[CalendarStore] = None,
    app_settings: Optional[Settings] = None,
    notifier: Optional[Notifier] = None,
    run_scheduler: bool = False,
) -> web.Application:
    """
    Create aiohttp application with middleware and routes.

    Args:
        store: Calendar store shared by every service (created from settings if None)
        app_settings: Settings to use (global settings if None)
        notifier: Booking notifier (built from settings if None)
        run_scheduler: Start the periodic release job with the app

    Returns:
        Configured web application
    """
    app_settings = app_settings or settings
    store = store or create_store(app_settings)
    notifier = notifier or create_notifier(
        app_settings.bot_token, app_settings.admin_chat_id_list
    )

    app = web.Application(
        middlewares=[security_headers_middleware, error_middleware],
        client_max_size=MAX_REQUEST_BODY_SIZE,
    )
    app[SETTINGS_KEY] = app_settings
    app[STORE_KEY] = store
    app[NOTIFIER_KEY] = notifier
    app[START_TIME_KEY] = time.time()
    _wire_services(app, store, app_settings, notifier)

    if run_scheduler:
        app.on_startup.append(_start_background_jobs)
        app.on_cleanup.append(_stop_background_jobs)
    app.on_cleanup.append(_close_notifier)

    # Routes
    app.router.add_post("/api/bookings", create_booking_handler)
    app.router.add_get("/api/bookings", list_bookings_handler)
    app.router.add_post("/api/bookings/release", manual_release_handler)
    app.router.add_get("/api/bookings/release-eligible", eligible_for_release_handler)
    app.router.add_get("/api/bookings/{booking_id}", get_booking_handler)
    app.router.add_post("/api/bookings/{booking_id}/confirm", confirm_booking_handler)
    app.router.add_post("/api/bookings/{booking_id}/cancel", cancel_booking_handler)
    app.router.add_post("/api/bookings/{booking_id}/release-slots", release_slots_handler)
    app.router.add_post("/api/bookings/{booking_id}/reschedule", reschedule_booking_handler)
    app.router.add_post("/webhook/form-submission", form_submission_handler)
    app.router.add_get("/api/cron/release-expired", release_expired_handler)
    app.router.add_get("/api/availability", availability_handler)
    app.router.add_post("/api/slots", create_slot_handler)
    app.router.add_patch("/api/slots/{slot_id}", update_slot_handler)
    app.router.add_delete("/api/slots/{slot_id}", delete_slot_handler)
    app.router.add_get("/api/blocks", list_blocks_handler)
    app.router.add_post("/api/blocks", create_block_handler)
    app.router.add_delete("/api/blocks/{block_id}", delete_block_handler)
    app.router.add_get("/health", health_check)

    return app


if __name__ == "__main__":
    try:
        settings.validate_all_required()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise SystemExit(1)

    logger.info(f"Starting booking API on {settings.host}:{settings.port}")
    web.run_app(
        create_app(create_store(settings), run_scheduler=True),
        host=settings.host,
        port=settings.port,
    )
