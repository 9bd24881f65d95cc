from __future__ import annotations

from datetime import date, datetime, time

import pytest

from cadence.orchestrator.temporal import (
    VerificationLedger,
    next_week_monday,
    resolve_date,
    resolve_query,
    this_week_monday,
)

from conftest import NOW, UTC


def at(day: date, hour: int = 9) -> datetime:
    return datetime.combine(day, time(hour), tzinfo=UTC)


@pytest.mark.parametrize(
    ("today", "expected"),
    [
        (date(2026, 1, 11), date(2026, 1, 12)),  # Sunday rolls forward one day
        (date(2026, 1, 10), date(2026, 1, 12)),  # Saturday rolls forward two days
        (date(2026, 1, 7), date(2026, 1, 5)),  # Wednesday looks back to Monday
        (date(2026, 1, 12), date(2026, 1, 12)),
    ],
)
def test_this_week_starts_on_business_monday(today, expected):
    assert this_week_monday(today) == expected


def test_next_week_from_sunday_is_the_following_day():
    sunday = date(2026, 1, 11)
    assert next_week_monday(sunday) == date(2026, 1, 12)


def test_next_week_from_friday_is_three_days_later():
    friday = date(2026, 1, 9)
    assert next_week_monday(friday) == date(2026, 1, 12)


def test_this_week_report_lists_business_days_and_range_arguments():
    ledger = VerificationLedger()
    report = resolve_date("what's on this week?", NOW, ledger)

    assert report.startswith("This week (business days):")
    assert "Monday = 2026-01-05" in report
    assert "Friday = 2026-01-09" in report
    assert 'start_date: "2026-01-05"' in report
    assert 'end_date: "2026-01-09"' in report
    assert len(ledger) == 5
    assert ledger.matches("2026-01-07", "Wednesday")


def test_next_week_on_friday_reports_following_monday():
    ledger = VerificationLedger()
    report = resolve_date("next week", at(date(2026, 1, 9)), ledger)

    assert "Monday = 2026-01-12" in report
    assert 'end_date: "2026-01-16"' in report


def test_next_weekday_records_verification():
    ledger = VerificationLedger()
    report = resolve_date("next Monday", NOW, ledger)

    assert report.startswith("2026-01-12 is a Monday")
    assert '"2026-01-12"' in report
    record = ledger.get("2026-01-12")
    assert record is not None
    assert record.weekday == "Monday"
    assert record.resolved_at == NOW


@pytest.mark.parametrize(
    ("query", "expected"),
    [
        ("next Wednesday", date(2026, 1, 14)),
        ("this Wednesday", date(2026, 1, 7)),
        ("Wednesday", date(2026, 1, 7)),
        ("coming Friday", date(2026, 1, 9)),
        ("last Friday", date(2026, 1, 2)),
        ("last Wednesday", date(2025, 12, 31)),
        ("today", date(2026, 1, 7)),
        ("tomorrow", date(2026, 1, 8)),
        ("yesterday", date(2026, 1, 6)),
    ],
)
def test_single_day_phrases(query, expected):
    resolution = resolve_query(query, NOW)
    assert resolution.kind == "date"
    assert resolution.start == expected


def test_time_hint_is_reported_as_start_instant():
    report = resolve_date("tomorrow at 3pm", NOW, VerificationLedger())

    assert "2026-01-08 is a Thursday" in report
    assert 'Start time on this date: "2026-01-08T15:00:00"' in report


@pytest.mark.parametrize(
    ("query", "expected"),
    [
        ("next Monday at noon", time(12, 0)),
        ("Friday at 15:30", time(15, 30)),
        ("tomorrow 12am", time(0, 0)),
        ("tomorrow 12pm", time(12, 0)),
        ("tomorrow at 9:45 am", time(9, 45)),
    ],
)
def test_time_of_day_variants(query, expected):
    assert resolve_query(query, NOW).time_of_day == expected


def test_range_resolves_both_ends_and_records_them():
    ledger = VerificationLedger()
    report = resolve_date("Monday to Friday", NOW, ledger)

    assert "Date range: 2026-01-12 (Monday) to 2026-01-16 (Friday)" in report
    assert ledger.matches("2026-01-12", "Monday")
    assert ledger.matches("2026-01-16", "Friday")


def test_explicit_calendar_date_uses_general_parser():
    ledger = VerificationLedger()
    report = resolve_date("January 20, 2026", NOW, ledger)

    assert report.startswith("2026-01-20 is a Tuesday")
    assert ledger.matches("2026-01-20", "Tuesday")


def test_written_date_wins_over_weekday_name():
    ledger = VerificationLedger()
    report = resolve_date("Monday, January 19", NOW, ledger)

    assert report.startswith("2026-01-19 is a Monday")
    assert "WARNING" not in report
    assert ledger.matches("2026-01-19", "Monday")
    assert "2026-01-12" not in ledger


def test_weekday_that_disagrees_with_written_date_is_flagged():
    ledger = VerificationLedger()
    report = resolve_date("Tuesday, January 19", NOW, ledger)

    assert report.startswith("2026-01-19 is a Monday")
    assert "the query says Tuesday, but 2026-01-19 is a Monday" in report
    assert ledger.matches("2026-01-19", "Monday")


def test_iso_date_in_query_is_taken_literally():
    resolution = resolve_query("Friday 2026-01-23 at 10am", NOW)

    assert resolution.start == date(2026, 1, 23)
    assert resolution.time_of_day == time(10, 0)
    assert resolution.conflicting_weekday is None


def test_clock_span_is_one_date_with_start_and_end():
    ledger = VerificationLedger()
    report = resolve_date("next Monday from 3pm to 4pm", NOW, ledger)

    assert report.startswith("2026-01-12 is a Monday")
    assert 'Start time on this date: "2026-01-12T15:00:00"' in report
    assert 'End time: "2026-01-12T16:00:00"' in report
    assert "Date range" not in report
    assert list(ledger) == [ledger.get("2026-01-12")]


def test_clock_span_past_midnight_ends_next_day():
    resolution = resolve_query("Friday 11pm - 1am", NOW)

    assert resolution.kind == "date"
    assert (resolution.time_of_day, resolution.end_time_of_day) == (time(23, 0), time(1, 0))
    assert 'End time: "2026-01-10T01:00:00"' in resolve_date("Friday 11pm - 1am", NOW, VerificationLedger())


def test_ledger_remembers_the_resolving_query():
    ledger = VerificationLedger()
    resolve_date("tomorrow at noon", NOW, ledger)

    assert ledger.get("2026-01-08").query == "tomorrow at noon"


def test_unparseable_query_reports_current_date():
    ledger = VerificationLedger()
    report = resolve_date("qwerty zxcv", NOW, ledger)

    assert report == 'Could not find a date in "qwerty zxcv". Current date: Wednesday, 2026-01-07'


def test_empty_query_is_rejected():
    with pytest.raises(ValueError):
        resolve_query("   ", NOW)


def test_ledger_is_per_instance():
    first, second = VerificationLedger(), VerificationLedger()
    resolve_date("next Monday", NOW, first)

    assert "2026-01-12" in first
    assert "2026-01-12" not in second
    first.clear()
    assert len(first) == 0
