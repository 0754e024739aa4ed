"""
arq worker for queued booking jobs
Sends the confirmation email, syncs the lesson to Google Calendar and expands
recurring bookings into weekly sibling bookings.

Run with: arq backend.workers.booking_worker.WorkerSettings
"""

import logging
from datetime import datetime, timedelta

from arq import Retry
from arq.worker import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.database import Base, SessionLocal, engine, ensure_booking_schema, ensure_slot_schema
from backend.models.booking import Booking
from backend.services.booking_notifications import booking_confirmation_message
from backend.services.booking_queries import BookingDetails, decrypt_guest_fields, load_booking_details
from backend.services.booking_queue import backoff_seconds, get_redis_settings
from backend.services.calendar_client import CalendarClient
from backend.services.mailer import Mailer
from backend.services.recurrence import RecurrenceRule
from backend.services.slot_claims import SlotUnavailableError, claim_slot, find_or_create_slot

logger = logging.getLogger(__name__)


class BookingNotFoundError(LookupError):
    pass


def send_confirmation(mailer: Mailer | None, details: BookingDetails) -> bool:
    if mailer is None or not details.recipient_email:
        logger.info("No confirmation email for booking %s (no mailer or recipient)", details.id)
        return False

    try:
        subject, text, html = booking_confirmation_message(
            details.recipient_name,
            details.date_label,
            details.time_label,
            details.lesson_type,
        )
        mailer.send(details.recipient_email, subject, text=text, html=html)
        logger.info("Confirmation email sent for booking %s", details.id)
        return True
    except Exception:
        logger.exception("Failed to send booking confirmation for %s", details.id)
        return False


def find_existing_event_id(db: Session, details: BookingDetails) -> tuple[str | None, str | None]:
    """Calendar ids already recorded on a booking for the same slot (covers retries)."""
    if not details.slot_id:
        return None, None

    existing = db.query(Booking.calendar_event_id, Booking.recurrence_id).filter(
        Booking.slot_id == details.slot_id,
        (Booking.calendar_event_id.is_not(None)) | (Booking.recurrence_id.is_not(None)),
    ).first()
    if existing is None:
        return None, None

    event_id, recurrence_id = existing
    return event_id or recurrence_id, recurrence_id


def reserve_calendar_event(db: Session, calendar: CalendarClient, details: BookingDetails, rule: RecurrenceRule | None) -> str | None:
    try:
        event_id, _ = find_existing_event_id(db, details)
    except SQLAlchemyError:
        logger.warning("Failed to check for an existing calendar event for booking %s", details.id, exc_info=True)
        db.rollback()
        event_id = None

    if event_id:
        logger.info("Reusing calendar event %s for booking %s", event_id, details.id)
        return event_id

    start = details.start
    try:
        return calendar.create_calendar_event(
            summary=f"Lesson: {details.lesson_type or 'Lesson'}",
            description=f"Booking for {details.guest_name or details.user_name or ''}",
            start=start,
            end=start + timedelta(minutes=details.duration_minutes),
            recurrence=[rule.to_rrule()] if rule else None,
        )
    except Exception:
        logger.exception("Failed to create calendar event for booking %s", details.id)
        return None


def map_instance(db: Session, calendar: CalendarClient, event_id: str, booking_id: str, start: datetime) -> None:
    try:
        instance = calendar.find_instance(event_id, start)
        if instance and instance.get("id"):
            db.query(Booking).filter(Booking.id == booking_id).update(
                {Booking.calendar_instance_id: instance["id"]},
                synchronize_session=False,
            )
            db.commit()
    except Exception:
        logger.warning("Failed to map calendar instance for booking %s", booking_id, exc_info=True)
        db.rollback()


def expand_recurrence(
    db: Session,
    details: BookingDetails,
    rule: RecurrenceRule,
    event_id: str,
    calendar: CalendarClient | None = None,
) -> int:
    """Create the weekly sibling bookings of a recurring booking; returns how many were added."""
    created = 0
    for occurrence in rule.occurrences_after(details.start):
        try:
            slot = find_or_create_slot(
                db,
                occurrence.date(),
                occurrence.time(),
                teacher_id=details.teacher_id,
                duration_minutes=details.duration_minutes,
            )

            already_booked = db.query(Booking.id).filter(
                Booking.slot_id == slot.id,
                Booking.recurrence_id == event_id,
            ).first()
            if already_booked:
                db.commit()
                continue

            try:
                claim_slot(db, slot.id)
            except SlotUnavailableError:
                logger.warning(
                    "Skipping %s occurrence of series %s: slot %s is already booked",
                    occurrence.isoformat(), event_id, slot.id,
                )
                db.commit()
                continue

            sibling = Booking(
                student_id=details.student_id,
                slot_id=slot.id,
                lesson_type=details.lesson_type,
                guest_name=details.guest_name,
                guest_email=details.guest_email,
                guest_phone=details.guest_phone,
                calendar_event_id=event_id,
                recurrence_id=event_id,
            )
            db.add(sibling)
            db.commit()
            created += 1
        except SQLAlchemyError:
            logger.warning("Failed to create recurring booking occurrence %s", occurrence.isoformat(), exc_info=True)
            db.rollback()
            continue

        if calendar is not None:
            map_instance(db, calendar, event_id, sibling.id, occurrence)

    logger.info("Recurring series %s expanded with %d new bookings", event_id, created)
    return created


def process_booking(
    db: Session,
    booking_id: str,
    calendar: CalendarClient | None = None,
    mailer: Mailer | None = None,
) -> dict:
    details = load_booking_details(db, booking_id)
    if details is None:
        raise BookingNotFoundError(f"Booking not found: {booking_id}")

    # Guest fields are re-sealed on siblings exactly as stored, so keep the raw copy.
    stored = details
    try:
        details = decrypt_guest_fields(details)
    except Exception:
        logger.warning("Failed to decrypt guest fields for booking %s", booking_id, exc_info=True)

    send_confirmation(mailer, details)

    summary = {"ok": True, "booking_id": booking_id, "calendar_event_id": None, "siblings_created": 0}

    if calendar is None:
        logger.warning("Calendar not configured; skipping calendar sync for booking %s", booking_id)
        return summary
    if details.start is None:
        logger.warning("Booking %s has no slot date/time; skipping calendar sync", booking_id)
        return summary

    rule = RecurrenceRule.parse(details.recurrence)
    event_id = reserve_calendar_event(db, calendar, details, rule)
    if not event_id:
        return summary
    summary["calendar_event_id"] = event_id

    try:
        db.query(Booking).filter(Booking.id == booking_id).update(
            {
                Booking.calendar_event_id: event_id,
                Booking.recurrence_id: event_id if rule else None,
            },
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError:
        logger.warning("Failed to persist calendar_event_id on booking %s", booking_id, exc_info=True)
        db.rollback()

    if rule is None:
        return summary

    map_instance(db, calendar, event_id, booking_id, details.start)

    try:
        summary["siblings_created"] = expand_recurrence(db, stored, rule, event_id, calendar)
    except Exception:
        logger.exception("Failed to expand recurring bookings for %s", booking_id)

    return summary


async def process_booking_task(ctx, booking_id: str):
    job_try = ctx.get("job_try", 1)
    logger.info("Processing booking %s (job %s, try %d)", booking_id, ctx.get("job_id", "unknown"), job_try)

    db = SessionLocal()
    try:
        return process_booking(db, booking_id, calendar=ctx.get("calendar"), mailer=ctx.get("mailer"))
    except Exception as exc:
        db.rollback()
        if job_try >= config.BOOKING_JOB_MAX_TRIES:
            logger.exception("Booking job for %s failed after %d attempts", booking_id, job_try)
            raise
        delay = backoff_seconds(job_try)
        logger.warning("Booking job for %s failed (%s); retrying in %ds", booking_id, exc, delay)
        raise Retry(defer=delay) from exc
    finally:
        db.close()


async def startup(ctx) -> None:
    config.configure_logging()
    Base.metadata.create_all(bind=engine)
    ensure_slot_schema()
    ensure_booking_schema()

    ctx["mailer"] = Mailer.from_config()
    ctx["calendar"] = None
    if config.calendar_configured():
        try:
            ctx["calendar"] = CalendarClient.from_config().connect()
        except Exception:
            logger.exception("Google Calendar unavailable; bookings will not be synced")
    logger.info("Booking worker started")


async def shutdown(ctx) -> None:
    mailer = ctx.get("mailer")
    if mailer is not None:
        mailer.close()
    logger.info("Booking worker stopped")


class WorkerSettings:
    functions = [
        func(
            process_booking_task,
            name=config.BOOKING_JOB_NAME,
            max_tries=config.BOOKING_JOB_MAX_TRIES,
            keep_result=config.BOOKING_JOB_KEEP_RESULT_SECONDS,
        ),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()
    max_jobs = config.WORKER_MAX_JOBS
    keep_result = config.BOOKING_JOB_KEEP_RESULT_SECONDS
