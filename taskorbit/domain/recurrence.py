from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta

from .enums import RecurrenceFrequency
from .errors import InvalidRule

WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
VALID_NTH = frozenset({1, 2, 3, 4, 5, -1})
WEEKDAYS = (MO, TU, WE, TH, FR, SA, SU)


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: RecurrenceFrequency
    interval: int = 1
    # 0 = Monday .. 6 = Sunday, as date.weekday()
    weekdays: frozenset[int] = field(default_factory=frozenset)
    day_of_month: Optional[int] = None
    nth: Optional[int] = None
    nth_weekday: Optional[int] = None
    # 0 = January .. 11 = December
    active_months: frozenset[int] = field(default_factory=frozenset)
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @property
    def uses_nth_weekday(self) -> bool:
        return (
            self.frequency == RecurrenceFrequency.MONTHLY
            and self.day_of_month is None
            and self.nth is not None
            and self.nth_weekday is not None
        )

    @property
    def month_step(self) -> int:
        if self.frequency == RecurrenceFrequency.QUARTERLY:
            return self.interval * 3
        if self.frequency == RecurrenceFrequency.YEARLY:
            return self.interval * 12
        return self.interval

    def validate(self) -> None:
        if not isinstance(self.frequency, RecurrenceFrequency):
            raise InvalidRule(f"Unknown frequency: {self.frequency!r}")
        if isinstance(self.interval, bool) or not isinstance(self.interval, int) or self.interval < 1:
            raise InvalidRule(f"Interval must be a positive integer, got {self.interval!r}")
        bad_days = [d for d in self.weekdays if not 0 <= d <= 6]
        if bad_days:
            raise InvalidRule(f"Weekdays out of range 0..6: {sorted(bad_days)}")
        bad_months = [m for m in self.active_months if not 0 <= m <= 11]
        if bad_months:
            raise InvalidRule(f"Active months out of range 0..11: {sorted(bad_months)}")
        if self.day_of_month is not None and not 1 <= self.day_of_month <= 31:
            raise InvalidRule(f"Day of month out of range 1..31: {self.day_of_month}")
        if self.day_of_month is None and (self.nth is None) != (self.nth_weekday is None):
            raise InvalidRule("nth and nth_weekday must be set together")
        if self.nth is not None and self.nth not in VALID_NTH:
            raise InvalidRule(f"nth must be one of 1..5 or -1, got {self.nth}")
        if self.nth_weekday is not None and not 0 <= self.nth_weekday <= 6:
            raise InvalidRule(f"nth_weekday out of range 0..6: {self.nth_weekday}")
        if self.start and self.end and as_day(self.end) < as_day(self.start):
            raise InvalidRule("Recurrence end is before its start")

    def describe(self) -> str:
        n = self.interval
        if self.frequency == RecurrenceFrequency.DAILY:
            text = "Daily" if n == 1 else f"Every {n} days"
        elif self.frequency == RecurrenceFrequency.WEEKLY:
            text = "Weekly" if n == 1 else f"Every {n} weeks"
            if self.weekdays:
                text += " on " + ", ".join(WEEKDAY_NAMES[d] for d in sorted(self.weekdays))
        elif self.frequency == RecurrenceFrequency.MONTHLY:
            text = "Monthly" if n == 1 else f"Every {n} months"
            if self.day_of_month is not None:
                text += f" on day {self.day_of_month}"
            elif self.uses_nth_weekday:
                text += f" on {_ordinal(self.nth)} {WEEKDAY_NAMES[self.nth_weekday]}"
        elif self.frequency == RecurrenceFrequency.QUARTERLY:
            text = "Quarterly" if n == 1 else f"Every {3 * n} months"
        else:
            text = "Yearly" if n == 1 else f"Every {n} years"
        if self.active_months:
            text += " (" + ", ".join(MONTH_NAMES[m] for m in sorted(self.active_months)) + ")"
        if self.end:
            text += f" until {as_day(self.end).isoformat()}"
        return text

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["frequency"] = self.frequency.value
        data["weekdays"] = sorted(self.weekdays)
        data["active_months"] = sorted(self.active_months)
        data["start"] = self.start.isoformat() if self.start else None
        data["end"] = self.end.isoformat() if self.end else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecurrenceRule:
        try:
            frequency = RecurrenceFrequency(data["frequency"])
        except (KeyError, ValueError) as exc:
            raise InvalidRule(f"Unknown frequency in {data!r}") from exc
        return cls(
            frequency=frequency,
            interval=data.get("interval", 1),
            weekdays=frozenset(data.get("weekdays") or ()),
            day_of_month=data.get("day_of_month"),
            nth=data.get("nth"),
            nth_weekday=data.get("nth_weekday"),
            active_months=frozenset(data.get("active_months") or ()),
            start=_parse_instant(data.get("start")),
            end=_parse_instant(data.get("end")),
        )


def as_day(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def month_offset(start: date, other: date) -> int:
    return (other.year - start.year) * 12 + (other.month - start.month)


def nth_weekday_delta(nth: int, weekday: int, months: int = 0) -> relativedelta:
    """Step `months` ahead, then land on the nth `weekday` of that month; -1 means last.

    A month has a fifth weekday only when it is also the last one, so a missing
    fifth resolves to the last.
    """
    if nth in (-1, 5):
        return relativedelta(months=months, day=31, weekday=WEEKDAYS[weekday](-1))
    return relativedelta(months=months, day=1, weekday=WEEKDAYS[weekday](nth))


def nth_weekday_of_month(year: int, month: int, nth: int, weekday: int) -> int:
    return (date(year, month, 1) + nth_weekday_delta(nth, weekday)).day


def _ordinal(nth: int) -> str:
    if nth == -1:
        return "last"
    return {1: "1st", 2: "2nd", 3: "3rd"}.get(nth, f"{nth}th")


def _parse_instant(value: str | datetime | None) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)
