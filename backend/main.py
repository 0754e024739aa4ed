import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.database import Base, engine, ensure_booking_schema, ensure_slot_schema
from backend.models import booking, slot, student, user  # noqa: F401
from backend.routes import booking_routes
from backend.services.calendar_client import CalendarClient
from backend.services.mailer import Mailer

config.configure_logging()

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()

    try:
        Base.metadata.create_all(bind=engine)
        ensure_slot_schema()
        ensure_booking_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.on_event('startup')
def initialize_integrations() -> None:
    app.state.mailer = Mailer.from_config()
    if not app.state.mailer.is_configured:
        logger.warning('No SMTP or SendGrid settings found; cancellation emails are disabled.')

    app.state.calendar_client = None
    if config.calendar_configured():
        try:
            app.state.calendar_client = CalendarClient.from_config().connect()
        except Exception:
            logger.exception('Google Calendar unavailable; calendar cleanup is disabled.')


@app.on_event('shutdown')
def close_integrations() -> None:
    mailer = getattr(app.state, 'mailer', None)
    if mailer is not None:
        mailer.close()


@app.get('/')
def root():
    return {'status': 'Studio Booking API Running'}


app.include_router(booking_routes.router, prefix='/api/admin')
