from datetime import date, datetime, timezone

import pytest

from backend.services.recurrence import (
    DEFAULT_OCCURRENCES,
    RecurrenceRule,
    format_until,
    normalize_until,
    parse_until,
)


def test_parse_returns_none_for_blank_rule() -> None:
    assert RecurrenceRule.parse(None) is None
    assert RecurrenceRule.parse('   ') is None


def test_parse_reads_count_interval_and_extra_parts() -> None:
    rule = RecurrenceRule.parse('RRULE:FREQ=WEEKLY;INTERVAL=2;COUNT=4;BYDAY=MO')

    assert rule.frequency == 'WEEKLY'
    assert rule.interval == 2
    assert rule.count == 4
    assert rule.until is None
    assert rule.extra == (('BYDAY', 'MO'),)


def test_parse_accepts_rule_without_prefix() -> None:
    rule = RecurrenceRule.parse('FREQ=WEEKLY;COUNT=3')

    assert rule.count == 3


@pytest.mark.parametrize(
    ('raw', 'expected'),
    [
        ('20240624', '2024-06-24T00:00:00Z'),
        ('20240624T101500Z', '2024-06-24T10:15:00Z'),
        ('20240624T101500', '2024-06-24T10:15:00Z'),
        ('2024-06-24T10:15:00Z', '2024-06-24T10:15:00Z'),
    ],
)
def test_normalize_until_expands_compact_forms(raw: str, expected: str) -> None:
    assert normalize_until(raw) == expected


def test_parse_until_returns_aware_utc_datetime() -> None:
    assert parse_until('20240624T101500Z') == datetime(2024, 6, 24, 10, 15, tzinfo=timezone.utc)
    assert parse_until('not-a-date') is None


def test_format_until_treats_dates_as_end_of_day() -> None:
    assert format_until(date(2024, 6, 24)) == '20240624T235959Z'
    assert format_until('2024-06-24') == '20240624T235959Z'
    assert format_until(datetime(2024, 6, 24, 9, 0, tzinfo=timezone.utc)) == '20240624T090000Z'


def test_count_bounds_total_including_first_booking() -> None:
    rule = RecurrenceRule.parse('RRULE:FREQ=WEEKLY;COUNT=4')

    occurrences = list(rule.occurrences_after(datetime(2024, 6, 3, 9, 0)))

    assert occurrences == [
        datetime(2024, 6, 10, 9, 0),
        datetime(2024, 6, 17, 9, 0),
        datetime(2024, 6, 24, 9, 0),
    ]


def test_count_of_one_yields_no_further_occurrences() -> None:
    rule = RecurrenceRule.parse('RRULE:FREQ=WEEKLY;COUNT=1')

    assert list(rule.occurrences_after(datetime(2024, 6, 3, 9, 0))) == []


def test_until_is_inclusive_by_date() -> None:
    rule = RecurrenceRule.parse('RRULE:FREQ=WEEKLY;UNTIL=20240624T000000Z')

    occurrences = list(rule.occurrences_after(datetime(2024, 6, 3, 9, 0)))

    assert occurrences[-1] == datetime(2024, 6, 24, 9, 0)
    assert len(occurrences) == 3


def test_rule_without_bounds_uses_default_occurrences() -> None:
    rule = RecurrenceRule.parse('RRULE:FREQ=WEEKLY')

    occurrences = list(rule.occurrences_after(datetime(2024, 6, 3, 9, 0)))

    assert len(occurrences) == DEFAULT_OCCURRENCES
    assert occurrences[0] == datetime(2024, 6, 10, 9, 0)


def test_interval_spaces_occurrences_in_weeks() -> None:
    rule = RecurrenceRule.parse('RRULE:FREQ=WEEKLY;INTERVAL=2;COUNT=3')

    occurrences = list(rule.occurrences_after(datetime(2024, 6, 3, 9, 0)))

    assert occurrences == [datetime(2024, 6, 17, 9, 0), datetime(2024, 7, 1, 9, 0)]


def test_with_until_replaces_count() -> None:
    rule = RecurrenceRule.parse('RRULE:FREQ=WEEKLY;COUNT=10;BYDAY=MO')

    assert rule.with_until(date(2024, 6, 24)).to_rrule() == 'RRULE:FREQ=WEEKLY;UNTIL=20240624T235959Z;BYDAY=MO'


def test_to_rrule_keeps_non_default_interval() -> None:
    assert RecurrenceRule(interval=2, count=5).to_rrule() == 'RRULE:FREQ=WEEKLY;INTERVAL=2;COUNT=5'
