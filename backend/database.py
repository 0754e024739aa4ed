from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config

connect_args = {'check_same_thread': False} if config.DATABASE_URL.startswith('sqlite') else {}

engine = create_engine(config.DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_slot_schema_checked = False
_booking_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_slot_schema() -> None:
    global _slot_schema_checked

    if _slot_schema_checked:
        return

    with _schema_lock:
        if _slot_schema_checked:
            return

        inspector = inspect(engine)

        if 'slots' not in inspector.get_table_names():
            _slot_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('slots')}
        migration_steps = [
            ('duration_minutes', 'ALTER TABLE slots ADD COLUMN duration_minutes INTEGER DEFAULT 30'),
            ('is_available', 'ALTER TABLE slots ADD COLUMN is_available BOOLEAN DEFAULT TRUE'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_slots_date_time ON slots(slot_date, slot_time)')
            )

        _slot_schema_checked = True


def ensure_booking_schema() -> None:
    global _booking_schema_checked

    if _booking_schema_checked:
        return

    with _schema_lock:
        if _booking_schema_checked:
            return

        inspector = inspect(engine)

        if 'bookings' not in inspector.get_table_names():
            _booking_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('bookings')}
        migration_steps = [
            ('guest_name', 'ALTER TABLE bookings ADD COLUMN guest_name VARCHAR'),
            ('guest_email', 'ALTER TABLE bookings ADD COLUMN guest_email VARCHAR'),
            ('guest_phone', 'ALTER TABLE bookings ADD COLUMN guest_phone VARCHAR'),
            ('recurrence', 'ALTER TABLE bookings ADD COLUMN recurrence VARCHAR'),
            ('calendar_event_id', 'ALTER TABLE bookings ADD COLUMN calendar_event_id VARCHAR'),
            ('recurrence_id', 'ALTER TABLE bookings ADD COLUMN recurrence_id VARCHAR'),
            ('calendar_instance_id', 'ALTER TABLE bookings ADD COLUMN calendar_instance_id VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_bookings_recurrence_slot ON bookings(recurrence_id, slot_id)')
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS idx_bookings_slot_id_unique '
                    'ON bookings(slot_id) WHERE slot_id IS NOT NULL'
                )
            )

        _booking_schema_checked = True
