"""Slot model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Time
from backend.database import Base
from backend.models.user import new_id

DEFAULT_SLOT_DURATION_MINUTES = 30


class Slot(Base):
    """A bookable calendar cell."""
    __tablename__ = "slots"

    id = Column(String(36), primary_key=True, default=new_id)
    teacher_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    slot_date = Column(Date, nullable=False, index=True)
    slot_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, default=DEFAULT_SLOT_DURATION_MINUTES)
    is_available = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
