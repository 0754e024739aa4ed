"""
Google Calendar client
Creates lesson events, maps recurring instances and trims recurring series
through a service account.
"""
import base64
import binascii
import json
import logging
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from google.oauth2 import service_account
from googleapiclient.discovery import build

from backend.core import config
from backend.services.recurrence import RRULE_PREFIX, RecurrenceRule

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]
DEFAULT_TIMEZONE = "Europe/London"
INSTANCE_WINDOW = timedelta(seconds=1)


class CalendarError(RuntimeError):
    pass


class CalendarConfigError(CalendarError):
    pass


def load_service_account_info(raw: str) -> dict:
    """
    Parse a service-account key from configuration.

    The expected form is the JSON key itself; a base64-encoded copy of it is
    accepted as a fallback for deployments still using that encoding.
    """
    if not raw or not raw.strip():
        raise CalendarConfigError("Empty service account credentials")

    value = raw.strip()
    try:
        info = json.loads(value)
    except ValueError:
        try:
            info = json.loads(base64.b64decode(value, validate=True).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise CalendarConfigError(
                f"Unable to parse service account credentials (length {len(value)}); "
                "expected JSON or base64-encoded JSON"
            ) from exc

    if not isinstance(info, dict) or "client_email" not in info:
        raise CalendarConfigError("Service account credentials must be a JSON object with client_email")

    if isinstance(info.get("private_key"), str):
        info["private_key"] = info["private_key"].replace("\\n", "\n")
    return info


class CalendarClient:
    def __init__(self, service_account_info: dict, calendar_id: str | None = None, timezone: str | None = None, service=None):
        self.service_account_info = service_account_info
        self.calendar_id = calendar_id or service_account_info.get("client_email")
        self.timezone = timezone or DEFAULT_TIMEZONE
        self._service = service

    @classmethod
    def from_config(cls) -> "CalendarClient":
        if config.GOOGLE_CREDS_BASE64:
            try:
                raw = base64.b64decode(config.GOOGLE_CREDS_BASE64).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as exc:
                raise CalendarConfigError("GOOGLE_CREDS_BASE64 is not valid base64") from exc
        elif config.GOOGLE_SERVICE_ACCOUNT_JSON:
            raw = config.GOOGLE_SERVICE_ACCOUNT_JSON
        else:
            raise CalendarConfigError("Missing GOOGLE_SERVICE_ACCOUNT_JSON or GOOGLE_CREDS_BASE64")

        return cls(
            load_service_account_info(raw),
            calendar_id=config.GOOGLE_CALENDAR_ID or None,
            timezone=config.GOOGLE_CALENDAR_TIMEZONE,
        )

    def connect(self) -> "CalendarClient":
        if self._service is None:
            credentials = service_account.Credentials.from_service_account_info(
                self.service_account_info,
                scopes=SCOPES,
            )
            self._service = build("calendar", "v3", credentials=credentials, cache_discovery=False)
            logger.info("Google Calendar client ready for %s", self.service_account_info.get("client_email"))
        return self

    @property
    def events(self):
        if self._service is None:
            raise CalendarError("CalendarClient.connect() must be called before use")
        return self._service.events()

    def create_calendar_event(
        self,
        summary: str,
        start: datetime | str,
        end: datetime | str,
        description: str = "",
        timezone: str | None = None,
        attendees: list[str] | None = None,
        recurrence: list[str] | None = None,
    ) -> str:
        tz_name = timezone or self.timezone
        event = {
            "summary": summary,
            "description": description or "",
            "start": {"dateTime": _local_iso(start), "timeZone": tz_name},
            "end": {"dateTime": _local_iso(end), "timeZone": tz_name},
        }
        if attendees:
            event["attendees"] = [{"email": email} for email in attendees]
        if recurrence:
            event["recurrence"] = list(recurrence)

        try:
            created = self.events.insert(calendarId=self.calendar_id, body=event).execute()
        except Exception:
            logger.exception("Failed to create calendar event %r on %s", summary, self.calendar_id)
            raise

        event_id = created.get("id")
        logger.info("Calendar event created: %s", event_id)
        return event_id

    def list_instances(self, event_id: str, time_min: datetime | str, time_max: datetime | str, calendar_id: str | None = None) -> list[dict]:
        items: list[dict] = []
        page_token = None
        try:
            while True:
                response = self.events.instances(
                    calendarId=calendar_id or self.calendar_id,
                    eventId=event_id,
                    timeMin=self._rfc3339(time_min),
                    timeMax=self._rfc3339(time_max),
                    pageToken=page_token,
                ).execute()
                items.extend(response.get("items", []))
                page_token = response.get("nextPageToken")
                if not page_token:
                    return items
        except Exception:
            logger.exception("Failed to list instances of calendar event %s", event_id)
            raise

    def find_instance(self, event_id: str, instance_start: datetime | str, calendar_id: str | None = None, match_date_only: bool = False) -> dict | None:
        target = self._aware(instance_start)
        instances = self.list_instances(event_id, target, target + INSTANCE_WINDOW, calendar_id)

        prefix = target.astimezone(ZoneInfo(self.timezone)).replace(tzinfo=None).isoformat()[:19]
        for instance in instances:
            start_value = _instance_start(instance)
            if not start_value:
                continue
            if start_value.startswith(prefix):
                return instance
            try:
                if self._aware(start_value) == target:
                    return instance
            except ValueError:
                continue

        if match_date_only:
            target_day = target.date().isoformat()
            for instance in instances:
                start_value = _instance_start(instance)
                if start_value and start_value[:10] == target_day:
                    return instance
        return None

    def update_recurring_event_until(self, event_id: str, until, calendar_id: str | None = None) -> dict:
        calendar = calendar_id or self.calendar_id
        try:
            event = self.events.get(calendarId=calendar, eventId=event_id).execute()
            rules = event.get("recurrence") or []
            if not rules:
                raise CalendarError(f"Calendar event {event_id} has no recurrence rules")

            rewritten = []
            for line in rules:
                if line.upper().startswith(RRULE_PREFIX):
                    rewritten.append(RecurrenceRule.parse(line).with_until(until).to_rrule())
                else:
                    rewritten.append(line)

            patched = self.events.patch(
                calendarId=calendar,
                eventId=event_id,
                body={"recurrence": rewritten},
            ).execute()
        except Exception:
            logger.exception("Failed to update UNTIL of calendar event %s", event_id)
            raise

        logger.info("Calendar event %s recurrence now %s", event_id, rewritten)
        return patched

    def delete_recurring_instance(self, event_id: str, instance_start: datetime | str, calendar_id: str | None = None) -> bool:
        try:
            instance = self.find_instance(event_id, instance_start, calendar_id, match_date_only=True)
            if instance is None or not instance.get("id"):
                logger.info("No instance of %s found at %s", event_id, instance_start)
                return False
            self.events.delete(calendarId=calendar_id or self.calendar_id, eventId=instance["id"]).execute()
        except Exception:
            logger.exception("Failed to delete instance of calendar event %s at %s", event_id, instance_start)
            raise

        logger.info("Calendar instance %s deleted", instance["id"])
        return True

    def delete_calendar_event(self, event_id: str, calendar_id: str | None = None) -> None:
        try:
            self.events.delete(calendarId=calendar_id or self.calendar_id, eventId=event_id).execute()
        except Exception:
            logger.exception("Failed to delete calendar event %s", event_id)
            raise
        logger.info("Calendar event deleted: %s", event_id)

    def _aware(self, value: datetime | str) -> datetime:
        if isinstance(value, str):
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if value.tzinfo is None:
            value = value.replace(tzinfo=ZoneInfo(self.timezone))
        return value

    def _rfc3339(self, value: datetime | str) -> str:
        return self._aware(value).isoformat()


def _local_iso(value: datetime | str) -> str:
    if isinstance(value, str):
        return value
    return value.replace(microsecond=0).isoformat()


def _instance_start(instance: dict) -> str | None:
    start = instance.get("start") or {}
    return start.get("dateTime") or start.get("date")
