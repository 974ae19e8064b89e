from __future__ import annotations

import datetime as dt
from typing import List, Optional

from nwcast_core.domain.errors import ParseError, ValidationError
from nwcast_core.domain.models import DATE_LAYOUT, Event


def parse_month(value: Optional[str], layout: str = DATE_LAYOUT) -> dt.date:
    """Parse a ``YYYY-MM`` string into the first day of that month."""
    if not layout:
        raise ValidationError("layout cannot be empty")
    text = (value or "").strip()
    if not text:
        raise ParseError("date cannot be empty")
    try:
        parsed = dt.datetime.strptime(text, layout)
    except ValueError as exc:
        raise ParseError(f"failed to parse date {text!r} with layout {layout!r}") from exc
    return dt.date(parsed.year, parsed.month, 1)


def format_month(date: dt.date) -> str:
    return f"{date.year:04d}-{date.month:02d}"


def month_index(value: str | dt.date) -> int:
    date = parse_month(value) if isinstance(value, str) else value
    return date.year * 12 + date.month - 1


def month_from_index(index: int) -> dt.date:
    index = max(index, 0)
    return dt.date(index // 12, index % 12 + 1, 1)


def index_to_month(index: int) -> str:
    index = max(index, 0)
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def add_months(date: dt.date, months: int) -> dt.date:
    return month_from_index(month_index(date) + months)


def offset_month(value: str, months: int) -> str:
    return format_month(add_months(parse_month(value), months))


def form_date_list(event: Event, death_date: str, reference: dt.date) -> List[dt.date]:
    """
    Occurrence months of a recurring event.
    - A blank start falls back to the reference month, a blank end to the death month.
    - Steps by ``frequency`` months and keeps the end month when landed on exactly.
    """
    if event.frequency is None or event.frequency < 1:
        raise ValidationError(f"event {event.name}: frequency must be at least 1 month")

    start = parse_month(event.start_date) if event.start_date else dt.date(reference.year, reference.month, 1)
    end = parse_month(event.end_date or death_date)
    if start > end:
        return []

    dates: List[dt.date] = []
    current = month_index(start)
    last = month_index(end)
    while current <= last:
        dates.append(month_from_index(current))
        current += event.frequency
    return dates
