import logging
from datetime import date, datetime, time

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.database import ensure_booking_schema, ensure_slot_schema, get_db
from backend.models.booking import Booking
from backend.models.slot import DEFAULT_SLOT_DURATION_MINUTES, Slot
from backend.models.student import Student
from backend.services.booking_notifications import booking_cancellation_message
from backend.services.booking_queries import (
    BookingDetails,
    decrypt_guest_fields,
    format_slot_time,
    list_booking_rows,
    load_booking_details,
)
from backend.services.booking_queue import enqueue_booking_job
from backend.services.calendar_client import CalendarClient
from backend.services.crypto import seal_field
from backend.services.mailer import Mailer
from backend.services.recurrence import RecurrenceRule
from backend.services.slot_claims import SlotUnavailableError, claim_slot, release_slot

router = APIRouter(tags=['bookings'])

logger = logging.getLogger(__name__)

OPEN_TIME = time(8, 0)
CLOSE_TIME = time(17, 0)
SLOT_INCREMENT_MINUTES = 30
DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class CreateSlotRequest(BaseModel):
    teacher_id: str | None = None
    slot_date: date
    slot_time: time
    duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES

    @field_validator('teacher_id')
    @classmethod
    def validate_teacher_id(cls, value: str | None) -> str | None:
        return _blank_to_none(value)

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration_minutes(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Duration must be a positive number of minutes.')
        return value


class SlotResponse(BaseModel):
    id: str
    teacher_id: str | None = None
    slot_date: date
    slot_time: str
    duration_minutes: int
    is_available: bool


class CreateSlotResponse(BaseModel):
    ok: bool
    id: str


class CreateBookingRequest(BaseModel):
    slot_id: str
    student_id: str | None = None
    lesson_type: str | None = None
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    recurrence: str | None = None

    @field_validator('slot_id')
    @classmethod
    def validate_slot_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('slot_id is required.')
        return normalized

    @field_validator('student_id', 'lesson_type', 'name', 'phone', 'recurrence')
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        return _blank_to_none(value)

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        normalized = _blank_to_none(value)
        return normalized.lower() if normalized else None


class CreateBookingResponse(BaseModel):
    ok: bool
    bookingId: str
    created_at: datetime | None = None


class BookingRowResponse(BaseModel):
    id: str
    lesson_type: str | None = None
    created_at: datetime | None = None
    student_user_id: str | None = None
    student_email: str | None = None
    student_name: str | None = None
    guest_name: str | None = None
    guest_email: str | None = None
    guest_phone: str | None = None
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    slot_id: str | None = None
    date: date | None
    time: str | None = None
    recurrence_id: str | None = None


class EndSeriesRequest(BaseModel):
    until: date


class EndSeriesResponse(BaseModel):
    ok: bool
    removed: int


class OkResponse(BaseModel):
    ok: bool


def ensure_database_ready() -> None:
    try:
        ensure_slot_schema()
        ensure_booking_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_mailer(request: Request) -> Mailer | None:
    return getattr(request.app.state, 'mailer', None)


def get_calendar_client(request: Request) -> CalendarClient | None:
    return getattr(request.app.state, 'calendar_client', None)


def validate_slot_time(slot_time: time) -> None:
    if slot_time < OPEN_TIME or slot_time > CLOSE_TIME:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Slots must be between 08:00 and 17:00 in 30-minute increments.',
        )

    if slot_time.minute % SLOT_INCREMENT_MINUTES != 0 or slot_time.second or slot_time.microsecond:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Slots must be between 08:00 and 17:00 in 30-minute increments.',
        )


def slot_response(slot: Slot) -> SlotResponse:
    return SlotResponse(
        id=slot.id,
        teacher_id=slot.teacher_id,
        slot_date=slot.slot_date,
        slot_time=format_slot_time(slot.slot_time),
        duration_minutes=slot.duration_minutes or DEFAULT_SLOT_DURATION_MINUTES,
        is_available=bool(slot.is_available),
    )


def send_cancellation_email(mailer: Mailer, details: BookingDetails, reason: str | None) -> None:
    try:
        subject, text, html = booking_cancellation_message(
            details.recipient_name,
            details.date_label,
            details.time_label,
            reason,
        )
        mailer.send(details.recipient_email, subject, text=text, html=html)
    except Exception:
        logger.exception('Failed to send cancellation email for booking %s', details.id)


def remove_calendar_entry(calendar: CalendarClient, details: BookingDetails) -> None:
    try:
        if details.recurrence_id and details.start is not None:
            calendar.delete_recurring_instance(details.calendar_event_id, details.start)
        else:
            calendar.delete_calendar_event(details.calendar_event_id)
    except Exception:
        logger.exception('Failed to remove calendar entry for booking %s', details.id)


def trim_calendar_series(calendar: CalendarClient, event_id: str, until: date) -> None:
    try:
        calendar.update_recurring_event_until(event_id, until)
    except Exception:
        logger.exception('Failed to end calendar series %s at %s', event_id, until)


@router.get('/slots', response_model=list[SlotResponse])
def list_slots(
    slot_date: date | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slots = db.query(Slot).filter(
            Slot.slot_date == (slot_date or date.today()),
        ).order_by(Slot.slot_time.asc()).all()

        return [slot_response(slot) for slot in slots]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.post('/slots', response_model=CreateSlotResponse, status_code=status.HTTP_201_CREATED)
def create_slot(data: CreateSlotRequest, db: Session = Depends(get_db)):
    validate_slot_time(data.slot_time)

    ensure_database_ready()

    try:
        slot = Slot(
            teacher_id=data.teacher_id,
            slot_date=data.slot_date,
            slot_time=data.slot_time,
            duration_minutes=data.duration_minutes,
            is_available=True,
        )
        db.add(slot)
        db.commit()
        db.refresh(slot)

        return CreateSlotResponse(ok=True, id=slot.id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.delete('/slots/{slot_id}', response_model=OkResponse)
def delete_slot(slot_id: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        db.query(Slot).filter(Slot.id == slot_id).delete(synchronize_session=False)
        db.commit()

        return OkResponse(ok=True)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.get('/bookings', response_model=list[BookingRowResponse])
def list_bookings(
    booking_date: date | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return [BookingRowResponse(**row) for row in list_booking_rows(db, booking_date)]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.post('/bookings', response_model=CreateBookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: CreateBookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slot = db.query(Slot).filter(Slot.id == data.slot_id).first()
        if not slot:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Slot not found.',
            )

        if data.student_id and not db.query(Student.id).filter(Student.id == data.student_id).first():
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Student not found.',
            )

        claim_slot(db, slot.id)

        booking = Booking(
            student_id=data.student_id,
            slot_id=slot.id,
            lesson_type=data.lesson_type,
            guest_name=seal_field(data.name),
            guest_email=seal_field(data.email),
            guest_phone=seal_field(data.phone),
            recurrence=data.recurrence,
        )
        db.add(booking)
        db.commit()
        db.refresh(booking)
    except (SlotUnavailableError, IntegrityError) as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='This slot is already booked.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    background_tasks.add_task(enqueue_booking_job, booking.id)

    return CreateBookingResponse(ok=True, bookingId=booking.id, created_at=booking.created_at)


@router.delete('/bookings/{booking_id}', response_model=OkResponse)
def cancel_booking(
    booking_id: str,
    background_tasks: BackgroundTasks,
    notify: bool = Query(default=True),
    reason: str | None = Query(default=None),
    db: Session = Depends(get_db),
    mailer: Mailer | None = Depends(get_mailer),
    calendar: CalendarClient | None = Depends(get_calendar_client),
):
    ensure_database_ready()

    try:
        details = load_booking_details(db, booking_id)
        if details is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Booking not found.',
            )

        if details.slot_id:
            release_slot(db, details.slot_id)
        db.query(Booking).filter(Booking.id == booking_id).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    details = decrypt_guest_fields(details)
    if notify and mailer is not None and details.recipient_email:
        background_tasks.add_task(send_cancellation_email, mailer, details, _blank_to_none(reason))
    if calendar is not None and details.calendar_event_id:
        background_tasks.add_task(remove_calendar_entry, calendar, details)

    return OkResponse(ok=True)


@router.post('/bookings/{booking_id}/end-series', response_model=EndSeriesResponse)
def end_booking_series(
    booking_id: str,
    data: EndSeriesRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    calendar: CalendarClient | None = Depends(get_calendar_client),
):
    ensure_database_ready()

    try:
        details = load_booking_details(db, booking_id)
        if details is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Booking not found.',
            )

        if not details.recurrence_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Booking is not part of a recurring series.',
            )

        later_occurrences = db.query(Booking, Slot).join(Slot, Booking.slot_id == Slot.id).filter(
            Booking.recurrence_id == details.recurrence_id,
            Slot.slot_date > data.until,
        ).all()

        removed_ids = set()
        for booking, slot in later_occurrences:
            slot.is_available = True
            db.delete(booking)
            removed_ids.add(booking.id)

        # Only the first booking of a series stores the rule; siblings carry None.
        rule_holders = db.query(Booking).filter(
            Booking.recurrence_id == details.recurrence_id,
            Booking.recurrence.is_not(None),
        ).all()
        for holder in rule_holders:
            rule = RecurrenceRule.parse(holder.recurrence)
            if holder.id not in removed_ids and rule is not None:
                holder.recurrence = rule.with_until(data.until).to_rrule()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    if calendar is not None and details.calendar_event_id:
        background_tasks.add_task(trim_calendar_series, calendar, details.calendar_event_id, data.until)

    return EndSeriesResponse(ok=True, removed=len(later_occurrences))
