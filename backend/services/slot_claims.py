"""Availability flips on slots.

Claiming is a single conditional UPDATE, so two sessions racing for the same
slot cannot both succeed; the loser gets :class:`SlotUnavailableError`.
"""

from datetime import date, time

from sqlalchemy.orm import Session

from backend.models.slot import DEFAULT_SLOT_DURATION_MINUTES, Slot


class SlotUnavailableError(Exception):
    def __init__(self, slot_id: str):
        super().__init__(f'Slot {slot_id} is no longer available')
        self.slot_id = slot_id


def claim_slot(db: Session, slot_id: str) -> None:
    claimed = db.query(Slot).filter(
        Slot.id == slot_id,
        Slot.is_available.is_(True),
    ).update({Slot.is_available: False}, synchronize_session=False)

    if claimed == 0:
        raise SlotUnavailableError(slot_id)


def release_slot(db: Session, slot_id: str) -> None:
    db.query(Slot).filter(Slot.id == slot_id).update({Slot.is_available: True}, synchronize_session=False)


def find_or_create_slot(
    db: Session,
    slot_date: date,
    slot_time: time,
    teacher_id: str | None = None,
    duration_minutes: int | None = None,
) -> Slot:
    slot = db.query(Slot).filter(Slot.slot_date == slot_date, Slot.slot_time == slot_time).first()
    if slot is not None:
        return slot

    slot = Slot(
        teacher_id=teacher_id,
        slot_date=slot_date,
        slot_time=slot_time,
        duration_minutes=duration_minutes or DEFAULT_SLOT_DURATION_MINUTES,
        is_available=True,
    )
    db.add(slot)
    db.flush()
    return slot
