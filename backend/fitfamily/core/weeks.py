"""Week Identifiers - Pure functions mapping dates to week ids and back.

Week ids look like ``2025-W24``. Weeks start on Monday. The numbering is a
simplified Monday-anchored scheme, not ISO-8601: the year is the year of the
week's Monday, and week 1 is the week whose Monday is on or before Jan 1 of
that year. A year whose Jan 1 is not a Monday therefore starts at week 2.
"""

import re
from datetime import date, timedelta

from .errors import ValidationError
from .models import WeekRange


WEEK_ID_PATTERN = re.compile(r"^(\d{4})-W(\d{2})$")


def _monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _first_monday(year: int) -> date:
    """Monday on or before Jan 1 of the given year."""
    return _monday_of(date(year, 1, 1))


def _week_start(year: int, number: int) -> date:
    return _first_monday(year) + timedelta(weeks=number - 1)


def parse_week_id(week: str) -> tuple[int, int]:
    """Split a week id into (year, week number).

    Only ids that ``week_id`` can produce are accepted, so ``2025-W01``
    (whose Monday is in 2024) and week numbers past the year's last Monday
    are rejected.

    Raises:
        ValidationError: If the id is not of the form YYYY-Www or names no real week
    """
    match = WEEK_ID_PATTERN.match(week or "")
    if match is None:
        raise ValidationError(f"Invalid week id: {week!r}")
    year, number = int(match.group(1)), int(match.group(2))
    try:
        canonical = 1 <= number <= 54 and week_id(_week_start(year, number)) == week
    except (ValueError, OverflowError):
        canonical = False
    if not canonical:
        raise ValidationError(f"Invalid week number in {week!r}")
    return year, number


def week_id(day: date) -> str:
    """Return the week id containing the given date."""
    monday = _monday_of(day)
    week_number = (monday - _first_monday(monday.year)).days // 7 + 1
    return f"{monday.year}-W{week_number:02d}"


def week_range(week: str) -> WeekRange:
    """Return the Monday and Sunday bounding a week id."""
    start = _week_start(*parse_week_id(week))
    return WeekRange(start=start, end=start + timedelta(days=6))


def adjacent_weeks(week: str, before: int = 2, after: int = 2) -> list[str]:
    """Week ids around a week, in calendar order, excluding the week itself."""
    start = week_range(week).start
    return [
        week_id(start + timedelta(weeks=offset))
        for offset in range(-before, after + 1)
        if offset != 0
    ]


def previous_week(week: str) -> str:
    return week_id(week_range(week).start - timedelta(weeks=1))


def next_week(week: str) -> str:
    return week_id(week_range(week).start + timedelta(weeks=1))


def is_date_in_week(day: date, week: str) -> bool:
    bounds = week_range(week)
    return bounds.start <= day <= bounds.end


def format_week_label(week: str) -> str:
    """Human label such as 'Jun 9 - Jun 15'."""
    bounds = week_range(week)
    return f"{bounds.start:%b} {bounds.start.day} - {bounds.end:%b} {bounds.end.day}"


def upcoming_weeks(today: date, count: int = 8) -> list[str]:
    """The next ``count`` week ids after today's week."""
    return [week_id(today + timedelta(weeks=i)) for i in range(1, count + 1)]
