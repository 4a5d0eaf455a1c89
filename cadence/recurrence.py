"""
Expands a recurrence rule into the concrete dates of a lesson series.

Supports daily, weekly, biweekly and monthly frequencies. Weekly rules
repeat on a set of weekdays (0=Sunday .. 6=Saturday); a series ends never
(capped), on a given date, or after a number of occurrences.
"""
import calendar
import logging
from datetime import date, timedelta
from typing import Iterable, List, Optional, Union

from .errors import EmptyRecurrenceRule

logger = logging.getLogger(__name__)

FREQUENCIES = ("daily", "weekly", "biweekly", "monthly")
END_RULES = ("never", "on", "after")

# cap for series that never end
MAX_OCCURRENCES = 52
# an "on" rule never looks further ahead than this from the start date
SCAN_HORIZON_DAYS = 730


def _parse_date(value) -> Optional[date]:
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        return None


def sunday_weekday(day: date) -> int:
    """Weekday index with Sunday=0 .. Saturday=6."""
    return (day.weekday() + 1) % 7


def _add_month(day: date, day_of_month: int) -> date:
    year, month = (day.year + 1, 1) if day.month == 12 else (day.year, day.month + 1)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day_of_month, last_day))


def expand(
    start_date: Union[date, str, None],
    frequency: str,
    repeat_weekdays: Iterable[int] = (),
    end_rule: str = "never",
    count: Optional[int] = None,
    end_date: Union[date, str, None] = None,
    max_occurrences: int = MAX_OCCURRENCES,
) -> List[date]:
    """
    Return the ordered dates on which a recurring lesson occurs.

    Invalid input (missing start date, unknown frequency, no weekdays for a
    weekly rule, non-positive count) yields an empty list so that preview
    counts degrade to zero.
    """
    start = _parse_date(start_date)
    if start is None or frequency not in FREQUENCIES or end_rule not in END_RULES:
        return []

    if end_rule == "after":
        if not count or count <= 0:
            return []
        limit = count
    elif end_rule == "never":
        limit = max_occurrences
    else:
        limit = None

    stop = None
    if end_rule == "on":
        stop = _parse_date(end_date)
        horizon = start + timedelta(days=SCAN_HORIZON_DAYS)
        if stop is None or stop > horizon:
            stop = horizon

    def within(day):
        return stop is None or day <= stop

    dates: List[date] = []

    def full():
        return limit is not None and len(dates) >= limit

    if frequency == "daily":
        current = start
        while within(current) and not full():
            dates.append(current)
            current += timedelta(days=1)

    elif frequency in ("weekly", "biweekly"):
        weekdays = {int(d) for d in repeat_weekdays if 0 <= int(d) <= 6}
        if not weekdays:
            return []
        week_start = start - timedelta(days=sunday_weekday(start))
        current = start
        while within(current) and not full():
            week_index = (current - week_start).days // 7
            in_week = frequency == "weekly" or week_index % 2 == 0
            if in_week and sunday_weekday(current) in weekdays:
                dates.append(current)
            current += timedelta(days=1)

    else:  # monthly
        # short months clamp to their last day; later months go back to start.day
        current = start
        while within(current) and not full():
            dates.append(current)
            current = _add_month(current, start.day)

    logger.debug("expanded %s rule from %s into %d dates", frequency, start, len(dates))
    return dates


def require_dates(
    start_date,
    frequency: str,
    repeat_weekdays: Iterable[int] = (),
    end_rule: str = "never",
    count: Optional[int] = None,
    end_date=None,
    max_occurrences: int = MAX_OCCURRENCES,
) -> List[date]:
    """Like ``expand`` but raises ``EmptyRecurrenceRule`` instead of returning nothing."""
    repeat_weekdays = list(repeat_weekdays)
    if frequency in ("weekly", "biweekly") and not repeat_weekdays:
        raise EmptyRecurrenceRule("Select at least one weekday for a weekly schedule")
    dates = expand(start_date, frequency, repeat_weekdays, end_rule, count, end_date, max_occurrences)
    if not dates:
        raise EmptyRecurrenceRule("The recurrence rule does not produce any lesson dates")
    return dates
