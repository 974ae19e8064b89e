from datetime import date

import pytest

from nwcast_core.domain import Event, ParseError, ValidationError
from nwcast_core.services.calendar import (
    form_date_list,
    index_to_month,
    month_index,
    offset_month,
    parse_month,
)


def test_parse_month_returns_first_of_month():
    assert parse_month("2025-03") == date(2025, 3, 1)
    assert parse_month(" 2025-12 ") == date(2025, 12, 1)


def test_parse_month_rejects_bad_input():
    with pytest.raises(ParseError):
        parse_month("")
    with pytest.raises(ParseError):
        parse_month("March 2025")
    with pytest.raises(ValidationError):
        parse_month("2025-03", layout="")


def test_month_index_round_trips_through_display():
    idx = month_index("2025-01")
    assert idx == 2025 * 12
    assert index_to_month(idx + 11) == "2025-12"
    assert index_to_month(-4) == "0000-01"


def test_offset_month_crosses_year_boundaries():
    assert offset_month("2025-12", 1) == "2026-01"
    assert offset_month("2025-01", -1) == "2024-12"
    assert offset_month("2025-05", 24) == "2027-05"


def test_form_date_list_steps_by_frequency_and_keeps_end():
    event = Event(name="quarterly", amount=10, frequency=3, start_date="2025-01", end_date="2025-07")
    assert form_date_list(event, "2030-01", date(2024, 1, 1)) == [
        date(2025, 1, 1),
        date(2025, 4, 1),
        date(2025, 7, 1),
    ]


def test_form_date_list_defaults_to_reference_and_death():
    event = Event(name="open ended", amount=10)
    dates = form_date_list(event, "2025-04", date(2025, 2, 17))
    assert dates == [date(2025, 2, 1), date(2025, 3, 1), date(2025, 4, 1)]
    assert event.end_date is None


def test_form_date_list_start_after_end_is_empty():
    event = Event(name="backwards", amount=10, start_date="2025-06", end_date="2025-01")
    assert form_date_list(event, "2030-01", date(2025, 1, 1)) == []


def test_form_date_list_rejects_non_positive_frequency():
    event = Event(name="never", amount=10, frequency=0, start_date="2025-01")
    with pytest.raises(ValidationError):
        form_date_list(event, "2030-01", date(2025, 1, 1))
