"""Typed view of the RRULE strings stored on recurring bookings.

A rule is parsed once into :class:`RecurrenceRule`; the booking worker uses it
to expand weekly siblings and the calendar client uses it to rewrite the
``UNTIL`` clause of an external event.
"""

import re
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator

DEFAULT_OCCURRENCES = 12
RRULE_PREFIX = 'RRULE:'

_COMPACT_UNTIL = re.compile(r'^(\d{4})(\d{2})(\d{2})(?:T?(\d{2})(\d{2})(\d{2}))?Z?$')


def normalize_until(raw: str) -> str:
    """Turn ``YYYYMMDD[Thhmmss][Z]`` into ISO-8601; other values pass through."""
    value = raw.strip()
    match = _COMPACT_UNTIL.match(value)
    if not match:
        return value
    year, month, day, hour, minute, second = match.groups()
    return f'{year}-{month}-{day}T{hour or "00"}:{minute or "00"}:{second or "00"}Z'


def parse_until(raw: str) -> datetime | None:
    iso_value = normalize_until(raw)
    if iso_value.endswith('Z'):
        iso_value = iso_value[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(iso_value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_until(value: date | datetime | str) -> str:
    """Render an UNTIL value in the compact UTC form calendar services expect."""
    if isinstance(value, str):
        parsed = parse_until(value)
        if parsed is None:
            raise ValueError(f'Unrecognised UNTIL value: {value!r}')
        if re.fullmatch(r'\d{4}-\d{2}-\d{2}|\d{8}', value.strip()):
            parsed = datetime.combine(parsed.date(), time(23, 59, 59), tzinfo=timezone.utc)
        value = parsed
    elif not isinstance(value, datetime):
        value = datetime.combine(value, time(23, 59, 59), tzinfo=timezone.utc)

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime('%Y%m%dT%H%M%SZ')


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: str = 'WEEKLY'
    interval: int = 1
    count: int | None = None
    until: datetime | None = None
    extra: tuple[tuple[str, str], ...] = ()

    @classmethod
    def parse(cls, rule: str | None) -> 'RecurrenceRule | None':
        if not rule or not rule.strip():
            return None

        body = rule.strip()
        if body.upper().startswith(RRULE_PREFIX):
            body = body[len(RRULE_PREFIX):]

        frequency = 'WEEKLY'
        interval = 1
        count = None
        until = None
        extra: list[tuple[str, str]] = []

        for part in body.split(';'):
            if '=' not in part:
                continue
            key, value = part.split('=', 1)
            key = key.strip().upper()
            value = value.strip()

            if key == 'FREQ':
                frequency = value.upper() or frequency
            elif key == 'INTERVAL':
                if value.isdigit() and int(value) > 0:
                    interval = int(value)
            elif key == 'COUNT':
                if value.isdigit():
                    count = int(value)
            elif key == 'UNTIL':
                until = parse_until(value)
            else:
                extra.append((key, value))

        return cls(frequency=frequency, interval=interval, count=count, until=until, extra=tuple(extra))

    @property
    def step(self) -> timedelta:
        return timedelta(weeks=self.interval)

    def occurrences_after(self, start: datetime) -> Iterator[datetime]:
        """Yield the occurrences that follow ``start``, which is itself the first one.

        ``COUNT`` bounds the total including ``start``; ``UNTIL`` is compared by
        date only, so an occurrence on the UNTIL date is always included. With
        neither, twelve further weekly occurrences are produced.
        """
        if self.count is not None:
            for index in range(1, self.count):
                yield start + self.step * index
            return

        if self.until is not None:
            until_key = self.until.date()
            current = start + self.step
            while current.date() <= until_key:
                yield current
                current += self.step
            return

        for index in range(1, DEFAULT_OCCURRENCES + 1):
            yield start + self.step * index

    def with_until(self, until: date | datetime | str) -> 'RecurrenceRule':
        return replace(self, count=None, until=parse_until(format_until(until)))

    def to_rrule(self) -> str:
        parts = [f'FREQ={self.frequency}']
        if self.interval != 1:
            parts.append(f'INTERVAL={self.interval}')
        if self.count is not None:
            parts.append(f'COUNT={self.count}')
        elif self.until is not None:
            parts.append(f'UNTIL={format_until(self.until)}')
        parts.extend(f'{key}={value}' for key, value in self.extra)
        return RRULE_PREFIX + ';'.join(parts)
