from __future__ import annotations

from collections.abc import Iterator
from datetime import date, datetime, time, timedelta

from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, WEEKLY, rrule

from taskorbit.domain.enums import RecurrenceFrequency
from taskorbit.domain.errors import InvalidRule
from taskorbit.domain.recurrence import RecurrenceRule, as_day, nth_weekday_delta

SEASONAL_MAX_ATTEMPTS = 24

# Day-grid rules go through rrule; month-based rules through relativedelta, which clamps month ends.
_DAY_GRID = {RecurrenceFrequency.DAILY: DAILY, RecurrenceFrequency.WEEKLY: WEEKLY}


def next_due_date(
    anchor: datetime,
    rule: RecurrenceRule,
    current: datetime,
    max_attempts: int = SEASONAL_MAX_ATTEMPTS,
) -> datetime:
    rule.validate()
    if rule.frequency in _DAY_GRID:
        # Inactive months are filtered by rrule itself; the horizon bounds the search.
        horizon = current + relativedelta(months=max_attempts)
        candidate = _day_grid(anchor, rule, current, until=horizon).after(current)
        if candidate is not None:
            return candidate
    else:
        candidate = current
        for _ in range(max_attempts):
            candidate = _next_by_months(anchor, rule, candidate)
            if _month_active(rule, candidate):
                return candidate
    raise InvalidRule(
        f"No occurrence in active months {sorted(rule.active_months)} "
        f"within {max_attempts} steps of {current.isoformat()}"
    )


def iter_occurrences(
    anchor: datetime,
    rule: RecurrenceRule,
    after: datetime,
    until: date,
    limit: int = 1000,
) -> Iterator[datetime]:
    """Yield occurrences strictly after `after` up to and including the day `until`."""
    last_day = as_day(until)
    if rule.end and as_day(rule.end) < last_day:
        last_day = as_day(rule.end)
    stop = datetime.combine(last_day, time.max, tzinfo=after.tzinfo)
    if rule.frequency in _DAY_GRID:
        rule.validate()
        yield from _day_grid(anchor, rule, after, until=stop).between(after, stop)[:limit]
        return
    current = after
    for _ in range(limit):
        current = next_due_date(anchor, rule, current)
        if current > stop:
            return
        yield current


def _day_grid(anchor: datetime, rule: RecurrenceRule, current: datetime, until: datetime) -> rrule:
    start_day = as_day(anchor)
    weekdays = None
    if rule.frequency == RecurrenceFrequency.WEEKLY:
        weekdays = sorted(rule.weekdays or {start_day.weekday()})
        # Interval blocks are Monday-based weeks counted from the anchor's week.
        start_day -= timedelta(days=start_day.weekday())
    return rrule(
        _DAY_GRID[rule.frequency],
        interval=rule.interval,
        dtstart=datetime.combine(start_day, current.timetz()),
        byweekday=weekdays,
        bymonth=sorted(m + 1 for m in rule.active_months) or None,
        until=until,
    )


def _next_by_months(anchor: datetime, rule: RecurrenceRule, current: datetime) -> datetime:
    if rule.uses_nth_weekday:
        return current + nth_weekday_delta(rule.nth, rule.nth_weekday, months=rule.month_step)
    return current + relativedelta(months=rule.month_step, day=rule.day_of_month or as_day(anchor).day)


def _month_active(rule: RecurrenceRule, value: datetime) -> bool:
    return not rule.active_months or (value.month - 1) in rule.active_months
