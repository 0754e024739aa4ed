"""Joined booking reads shared by the admin routes and the booking worker."""

from dataclasses import dataclass, replace
from datetime import date, datetime, time

from sqlalchemy.orm import Session

from backend.models.booking import Booking
from backend.models.slot import DEFAULT_SLOT_DURATION_MINUTES, Slot
from backend.models.student import Student
from backend.models.user import User
from backend.services.crypto import open_field


def format_slot_time(value: time | None) -> str | None:
    if value is None:
        return None
    return value.strftime('%H:%M')


@dataclass(frozen=True)
class BookingDetails:
    id: str
    slot_id: str | None
    slot_date: date | None
    slot_time: time | None
    duration_minutes: int
    teacher_id: str | None
    lesson_type: str | None
    recurrence: str | None
    calendar_event_id: str | None
    recurrence_id: str | None
    calendar_instance_id: str | None
    student_id: str | None
    student_user_id: str | None
    user_email: str | None
    user_name: str | None
    user_phone: str | None
    guest_name: str | None
    guest_email: str | None
    guest_phone: str | None

    @property
    def recipient_email(self) -> str | None:
        return self.user_email or self.guest_email

    @property
    def recipient_name(self) -> str:
        return self.user_name or self.guest_name or ''

    @property
    def start(self) -> datetime | None:
        if self.slot_date is None or self.slot_time is None:
            return None
        return datetime.combine(self.slot_date, self.slot_time)

    @property
    def date_label(self) -> str:
        return self.slot_date.isoformat() if self.slot_date else ''

    @property
    def time_label(self) -> str:
        return format_slot_time(self.slot_time) or ''


def booking_rows_query(db: Session):
    return (
        db.query(Booking, Slot, Student, User)
        .outerjoin(Slot, Booking.slot_id == Slot.id)
        .outerjoin(Student, Booking.student_id == Student.id)
        .outerjoin(User, Student.user_id == User.id)
    )


def _details_from_row(booking: Booking, slot: Slot | None, student: Student | None, user: User | None) -> BookingDetails:
    return BookingDetails(
        id=booking.id,
        slot_id=slot.id if slot else None,
        slot_date=slot.slot_date if slot else None,
        slot_time=slot.slot_time if slot else None,
        duration_minutes=(slot.duration_minutes if slot else None) or DEFAULT_SLOT_DURATION_MINUTES,
        teacher_id=slot.teacher_id if slot else None,
        lesson_type=booking.lesson_type,
        recurrence=booking.recurrence,
        calendar_event_id=booking.calendar_event_id,
        recurrence_id=booking.recurrence_id,
        calendar_instance_id=booking.calendar_instance_id,
        student_id=booking.student_id,
        student_user_id=student.user_id if student else None,
        user_email=user.email if user else None,
        user_name=user.name if user else None,
        user_phone=(user.phone if user else None) or (student.phone if student else None),
        guest_name=booking.guest_name,
        guest_email=booking.guest_email,
        guest_phone=booking.guest_phone,
    )


def load_booking_details(db: Session, booking_id: str) -> BookingDetails | None:
    row = booking_rows_query(db).filter(Booking.id == booking_id).first()
    if row is None:
        return None
    return _details_from_row(*row)


def decrypt_guest_fields(details: BookingDetails) -> BookingDetails:
    return replace(
        details,
        guest_name=open_field(details.guest_name),
        guest_email=open_field(details.guest_email),
        guest_phone=open_field(details.guest_phone),
    )


def list_booking_rows(db: Session, on_date: date | None = None) -> list[dict]:
    query = booking_rows_query(db)
    if on_date is not None:
        query = query.filter(Slot.slot_date == on_date).order_by(Slot.slot_time.asc())
    else:
        query = query.order_by(Slot.slot_date.desc(), Slot.slot_time.asc())

    rows = []
    for booking, slot, student, user in query.all():
        details = decrypt_guest_fields(_details_from_row(booking, slot, student, user))
        rows.append({
            'id': details.id,
            'lesson_type': details.lesson_type,
            'created_at': booking.created_at,
            'student_user_id': details.student_user_id,
            'student_email': details.user_email,
            'student_name': details.user_name,
            'guest_name': details.guest_name,
            'guest_email': details.guest_email,
            'guest_phone': details.guest_phone,
            'name': details.user_name or details.guest_name,
            'email': details.user_email or details.guest_email,
            'phone': details.guest_phone or details.user_phone,
            'slot_id': details.slot_id,
            'date': details.slot_date,
            'time': format_slot_time(details.slot_time),
            'recurrence_id': details.recurrence_id,
        })
    return rows
