import logging
import os

from dotenv import load_dotenv

load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./studio.db")
FRONTEND_ORIGINS = [
    origin.strip()
    for origin in os.getenv("FRONTEND_ORIGINS", "http://localhost:8080").split(",")
    if origin.strip()
]

REDIS_URL = os.getenv("REDIS_URL") or os.getenv("REDIS")
REDIS_HOST = os.getenv("REDIS_HOST", "127.0.0.1")
REDIS_PORT = _get_int(os.getenv("REDIS_PORT"), 6379)
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD") or None
REDIS_SSL = _get_bool(os.getenv("REDIS_SSL"), default=False)

BOOKING_JOB_NAME = "processBooking"
BOOKING_JOB_MAX_TRIES = 5
BOOKING_JOB_BACKOFF_SECONDS = 5
BOOKING_JOB_KEEP_RESULT_SECONDS = _get_int(os.getenv("BOOKING_JOB_KEEP_RESULT_SECONDS"), 3600)
WORKER_MAX_JOBS = _get_int(os.getenv("WORKER_MAX_JOBS"), 10)

GOOGLE_SERVICE_ACCOUNT_JSON = os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON", "")
GOOGLE_CREDS_BASE64 = os.getenv("GOOGLE_CREDS_BASE64", "")
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "")
GOOGLE_CALENDAR_TIMEZONE = os.getenv("GOOGLE_CALENDAR_TIMEZONE", "Europe/London")

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = _get_int(os.getenv("SMTP_PORT"), 0) or None
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY", "")
FROM_EMAIL = os.getenv("FROM_EMAIL", "no-reply@example.com")

MESSAGE_ENCRYPTION_KEY = os.getenv("MESSAGE_ENCRYPTION_KEY", "")


def calendar_configured() -> bool:
    return bool(GOOGLE_CREDS_BASE64 or GOOGLE_SERVICE_ACCOUNT_JSON)


def configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def validate_runtime_config() -> None:
    if APP_ENV.lower() != "production":
        return
    if DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at PostgreSQL in production.")
    if len(MESSAGE_ENCRYPTION_KEY) < 32:
        raise RuntimeError("MESSAGE_ENCRYPTION_KEY must be at least 32 characters in production.")
