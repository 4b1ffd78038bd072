import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from common.cache import get_cached_json, set_cached_json
from common.logging_config import configure_logging

from . import config, models, schemas
from .auth import get_current_actor, require_elevated
from .database import Base, engine, get_db
from .errors import BookingError
from .events import default_publisher
from .rate_limiter import booking_rate_limiter
from .repository import BookingRepository
from .service import BookingService
from .state_machine import Actor

configure_logging()
error_logger = logging.getLogger("bookings.error")

# Create tables
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Bookings Service", version="2.0.0")
router_v1 = APIRouter(prefix="/api/v1")

SERVICE_NAME = "bookings"

publisher = default_publisher()


def _envelope(request: Request, status_code: int, detail) -> dict:
    return {
        "service": SERVICE_NAME,
        "path": request.url.path,
        "method": request.method,
        "status_code": status_code,
        "detail": detail,
    }


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    content = _envelope(request, exc.status_code, exc.message)
    content.update({k: v for k, v in exc.to_dict().items() if k != "detail"})
    return JSONResponse(status_code=exc.status_code, content=content)


_REQUEST_PARTS = ("body", "query", "path", "header", "cookie")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """
    Report malformed typed input as a 400 naming the first bad field.
    """
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part not in _REQUEST_PARTS]
    content = _envelope(request, status.HTTP_400_BAD_REQUEST, first.get("msg", "Invalid request"))
    content.update({"error": "validation_error", "field": ".".join(location) or None})
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(request, exc.status_code, exc.detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    error_logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=_envelope(request, 500, "Internal server error"),
    )


@app.get("/")
def root():
    """
    Health-check endpoint for the Bookings service.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": "bookings", "status": "running"}


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(BookingRepository(db), publisher)


# ---------- Create booking ----------


@router_v1.post(
    "/bookings",
    response_model=schemas.BookingRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limiter)],
)
def create_booking(
    booking_in: schemas.BookingCreate,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    Request a room for the authenticated user.

    Behavior
    --------
    - Validates fields, time format, duration and that the date is not past.
    - Rejects requests overlapping a pending or approved booking (409).
    - Employees get a pending booking; managers, HR and admins get an
      approved one.
    """
    booking = service.create(booking_in, actor)
    return service.to_read(booking)


# ---------- Reads ----------


@router_v1.get("/bookings/me", response_model=List[schemas.BookingRead])
def list_my_bookings(
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    List bookings requested by the authenticated user, newest date first.
    """
    return [service.to_read(b) for b in service.list_for_requester(actor)]


@router_v1.get("/bookings", response_model=List[schemas.BookingRead])
def list_all_bookings(
    room: Optional[str] = Query(default=None),
    booking_status: Optional[models.BookingStatus] = Query(default=None, alias="status"),
    email: Optional[str] = Query(default=None),
    service: BookingService = Depends(get_booking_service),
    _: Actor = Depends(require_elevated),
):
    """
    Manager/HR/Admin: view all bookings with optional filters.
    """
    bookings = service.list_all(room_name=room, status=booking_status, email=email)
    return [service.to_read(b) for b in bookings]


@router_v1.get("/bookings/availability", response_model=List[schemas.AvailabilitySlot])
def check_availability(
    date: str,
    room: Optional[str] = None,
    service: BookingService = Depends(get_booking_service),
    _: Actor = Depends(get_current_actor),
):
    """
    List the slots already held (pending or approved) on a day.

    Parameters
    ----------
    date : str
        Calendar day, ``YYYY-MM-DD``.
    room : Optional[str]
        Restrict to one room.

    Returns
    -------
    List[AvailabilitySlot]
        Held slots ordered by room then start time. Cached in Redis when
        configured; the cache is dropped after every booking write.
    """
    cache_key = f"{config.AVAILABILITY_CACHE_PREFIX}{date}:{room or '*'}"
    cached = get_cached_json(cache_key)
    if cached is not None:
        return cached

    slots = [
        schemas.AvailabilitySlot.model_validate(b).model_dump(mode="json")
        for b in service.room_availability(date, room)
    ]
    set_cached_json(cache_key, slots, ttl_seconds=config.AVAILABILITY_CACHE_TTL_SECONDS)
    return slots


@router_v1.get("/bookings/date-range", response_model=List[schemas.BookingRead])
def list_bookings_by_date_range(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    room: Optional[str] = None,
    service: BookingService = Depends(get_booking_service),
    _: Actor = Depends(get_current_actor),
):
    """
    List bookings whose date lies in ``[start_date, end_date]``.
    """
    bookings = service.list_by_date_range(start_date, end_date, room)
    return [service.to_read(b) for b in bookings]


@router_v1.get("/bookings/approvals/{manager_id}", response_model=List[schemas.BookingRead])
def list_approval_requests(
    manager_id: str,
    service: BookingService = Depends(get_booking_service),
    _: Actor = Depends(require_elevated),
):
    """
    Approval queue of a manager: pending, approved and rejected requests
    routed to ``manager_id``, most recently submitted first.
    """
    return [service.to_read(b) for b in service.list_for_manager(manager_id)]


@router_v1.get("/bookings/{booking_id}", response_model=schemas.BookingRead)
def get_booking(
    booking_id: str,
    service: BookingService = Depends(get_booking_service),
    _: Actor = Depends(get_current_actor),
):
    return service.to_read(service.get(booking_id))


# ---------- Mutations ----------


@router_v1.put(
    "/bookings/{booking_id}",
    response_model=schemas.BookingRead,
    dependencies=[Depends(booking_rate_limiter)],
)
def update_booking(
    booking_id: str,
    update_data: schemas.BookingUpdate,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    Update an existing booking's room, date, time or details.

    Access
    ------
    - Requester of the booking while it is pending.
    - Manager, HR and admin for any non-terminal booking; only they may
      change ``status``.

    Raises
    ------
    BookingError
        404 unknown booking, 403 not allowed, 400 invalid fields,
        409 overlap or illegal status change.
    """
    return service.to_read(service.update(booking_id, actor, update_data))


@router_v1.put(
    "/bookings/{booking_id}/approve",
    response_model=schemas.BookingRead,
    dependencies=[Depends(booking_rate_limiter)],
)
def approve_booking(
    booking_id: str,
    decision: Optional[schemas.BookingDecision] = None,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    Approve a pending booking (manager, HR, admin).

    The slot is re-checked against every other active booking first.
    """
    notes = decision.notes if decision else None
    return service.to_read(service.approve(booking_id, actor, notes))


@router_v1.put(
    "/bookings/{booking_id}/reject",
    response_model=schemas.BookingRead,
    dependencies=[Depends(booking_rate_limiter)],
)
def reject_booking(
    booking_id: str,
    decision: Optional[schemas.BookingDecision] = None,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    Reject a pending booking (manager, HR, admin); notes become the
    rejection reason.
    """
    notes = decision.notes if decision else None
    return service.to_read(service.reject(booking_id, actor, notes))


@router_v1.patch(
    "/bookings/{booking_id}/cancel",
    response_model=schemas.BookingRead,
    dependencies=[Depends(booking_rate_limiter)],
)
def cancel_booking(
    booking_id: str,
    cancel_in: Optional[schemas.BookingCancel] = None,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    Cancel a pending or approved booking.

    Access
    ------
    - Requester of the booking.
    - Manager, HR and admin for any booking.

    The record is kept with status ``cancelled``; it no longer blocks
    the room.
    """
    reason = cancel_in.reason if cancel_in else None
    return service.to_read(service.cancel(booking_id, actor, reason))


app.include_router(router_v1)
