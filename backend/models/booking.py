"""Booking model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, text
from backend.database import Base
from backend.models.user import new_id


class Booking(Base):
    """A reservation of one slot by a student or a guest, optionally recurring."""
    __tablename__ = "bookings"
    __table_args__ = (
        Index(
            "idx_bookings_slot_id_unique",
            "slot_id",
            unique=True,
            postgresql_where=text("slot_id IS NOT NULL"),
            sqlite_where=text("slot_id IS NOT NULL"),
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    student_id = Column(String(36), ForeignKey("students.id", ondelete="SET NULL"), nullable=True)
    slot_id = Column(String(36), ForeignKey("slots.id", ondelete="SET NULL"), nullable=True)
    lesson_type = Column(String)
    # plain text, or a JSON envelope when MESSAGE_ENCRYPTION_KEY is set
    guest_name = Column(String)
    guest_email = Column(String)
    guest_phone = Column(String)
    recurrence = Column(String)
    calendar_event_id = Column(String)
    recurrence_id = Column(String)
    calendar_instance_id = Column(String)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
