from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from taskorbit.domain.entities import TaskEntity
from taskorbit.domain.enums import PriorityLevel, RecurrenceFrequency, TaskStatus
from taskorbit.domain.errors import InvalidRule
from taskorbit.domain.recurrence import RecurrenceRule
from taskorbit.services.occurrences import (
    RealOccurrence,
    VirtualOccurrence,
    occurrences_between,
    occurs_on,
    project,
    recurrence_preview,
)


def _task(
    task_id: str = "root",
    rule: RecurrenceRule | None = None,
    due: datetime | None = None,
    **fields,
) -> TaskEntity:
    return TaskEntity(
        id=task_id,
        title=fields.pop("title", "Water plants"),
        due_date=due,
        recurrence=rule,
        created_at=fields.pop("created_at", datetime(2023, 12, 1, 8, 0)),
        **fields,
    )


def _rule(frequency: RecurrenceFrequency, start: datetime, **params) -> RecurrenceRule:
    return RecurrenceRule(frequency, start=start, **params)


START = datetime(2024, 1, 1, 12, 0)


def test_one_off_occurs_only_on_due_day() -> None:
    task = _task(due=datetime(2024, 3, 5, 10, 0))

    assert occurs_on(task, date(2024, 3, 5))
    assert not occurs_on(task, date(2024, 3, 6))
    assert not occurs_on(_task(), date(2024, 3, 5))


def test_daily_interval_grid() -> None:
    task = _task(rule=_rule(RecurrenceFrequency.DAILY, START, interval=3), due=START)

    assert occurs_on(task, date(2024, 1, 4))
    assert not occurs_on(task, date(2024, 1, 5))
    assert not occurs_on(task, date(2023, 12, 29))


def test_weekly_interval_and_weekdays() -> None:
    biweekly = _task(rule=_rule(RecurrenceFrequency.WEEKLY, START, interval=2, weekdays=frozenset({0})))
    same_day = _task(rule=_rule(RecurrenceFrequency.WEEKLY, datetime(2024, 1, 3, 9, 0)))

    assert occurs_on(biweekly, date(2024, 1, 15))
    assert not occurs_on(biweekly, date(2024, 1, 8))
    assert occurs_on(same_day, date(2024, 1, 10))
    assert not occurs_on(same_day, date(2024, 1, 11))


def test_monthly_uses_month_end_clamping() -> None:
    task = _task(rule=_rule(RecurrenceFrequency.MONTHLY, datetime(2024, 1, 31, 12, 0)))

    assert occurs_on(task, date(2024, 2, 29))
    assert not occurs_on(task, date(2024, 2, 28))
    assert occurs_on(task, date(2024, 3, 31))
    assert occurs_on(task, date(2024, 4, 30))


def test_monthly_last_saturday() -> None:
    task = _task(rule=_rule(RecurrenceFrequency.MONTHLY, START, nth=-1, nth_weekday=5))

    assert occurs_on(task, date(2024, 2, 24))
    assert not occurs_on(task, date(2024, 2, 17))


def test_quarterly_and_yearly() -> None:
    quarterly = _task(rule=_rule(RecurrenceFrequency.QUARTERLY, datetime(2024, 1, 15, 9, 0)))
    leap = _task(rule=_rule(RecurrenceFrequency.YEARLY, datetime(2024, 2, 29, 9, 0)))

    assert occurs_on(quarterly, date(2024, 4, 15))
    assert not occurs_on(quarterly, date(2024, 2, 15))
    assert occurs_on(leap, date(2025, 2, 28))
    assert occurs_on(leap, date(2028, 2, 29))
    assert not occurs_on(leap, date(2028, 2, 28))


def test_excluded_day_never_occurs() -> None:
    task = _task(
        rule=_rule(RecurrenceFrequency.DAILY, START),
        excluded_dates=frozenset({date(2024, 1, 3)}),
    )

    assert not occurs_on(task, date(2024, 1, 3))
    assert occurs_on(task, date(2024, 1, 4))


def test_end_bound_is_inclusive() -> None:
    task = _task(rule=_rule(RecurrenceFrequency.DAILY, START, end=datetime(2024, 1, 10, 0, 0)))

    assert occurs_on(task, date(2024, 1, 10))
    assert not occurs_on(task, date(2024, 1, 11))


def test_seasonal_rule_only_occurs_in_active_months() -> None:
    task = _task(
        rule=_rule(RecurrenceFrequency.MONTHLY, datetime(2024, 6, 15, 9, 0), active_months=frozenset({5, 6, 7}))
    )

    day = date(2024, 1, 1)
    hits = []
    while day <= date(2025, 12, 31):
        if occurs_on(task, day):
            hits.append(day)
        day += timedelta(days=1)

    assert {d.month for d in hits} == {6, 7, 8}
    assert len(hits) == 6


def test_resolved_history_suppresses_occurrence() -> None:
    root = _task(rule=_rule(RecurrenceFrequency.DAILY, START), due=START)
    history = _task(
        "h1",
        due=datetime(2024, 1, 3, 12, 0),
        status=TaskStatus.COMPLETED,
        series_id="root",
    )
    legacy = _task("h2", due=datetime(2024, 1, 4, 12, 0), status=TaskStatus.MISSED)

    assert occurs_on(root, date(2024, 1, 3))
    assert not occurs_on(root, date(2024, 1, 3), [root, history, legacy])
    assert not occurs_on(root, date(2024, 1, 4), [root, history, legacy])
    assert occurs_on(root, date(2024, 1, 5), [root, history, legacy])


def test_invalid_rule_raises() -> None:
    task = _task(rule=RecurrenceRule(RecurrenceFrequency.MONTHLY, day_of_month=35, start=START))

    with pytest.raises(InvalidRule):
        occurs_on(task, date(2024, 1, 5))


def test_project_emits_future_virtuals_with_stable_keys() -> None:
    root = _task(rule=_rule(RecurrenceFrequency.DAILY, START), due=datetime(2024, 1, 3, 12, 0))

    virtuals = project([root], date(2024, 1, 1), date(2024, 1, 7))

    assert [v.day for v in virtuals] == [date(2024, 1, d) for d in (4, 5, 6, 7)]
    assert virtuals[0].key == "root@2024-01-04"
    assert virtuals[0].occurrence_date == datetime(2024, 1, 4, 12, 0)
    assert all(v.status == TaskStatus.PLANNED and v.root is root for v in virtuals)


def test_project_skips_days_with_concrete_records() -> None:
    root = _task(rule=_rule(RecurrenceFrequency.DAILY, START), due=START)
    exception = _task(
        "x1",
        due=datetime(2024, 1, 2, 18, 0),
        series_id="root",
        is_recurring_exception=True,
    )
    history = _task("h1", due=datetime(2024, 1, 3, 12, 0), status=TaskStatus.COMPLETED, series_id="root")

    virtuals = project([root, exception, history], date(2024, 1, 1), date(2024, 1, 4))

    assert [v.day for v in virtuals] == [date(2024, 1, 4)]


def test_project_shows_planned_even_when_root_in_progress() -> None:
    root = _task(rule=_rule(RecurrenceFrequency.DAILY, START), due=START, status=TaskStatus.IN_PROGRESS)

    virtuals = project([root], date(2024, 1, 2), date(2024, 1, 2))

    assert len(virtuals) == 1
    assert virtuals[0].status == TaskStatus.PLANNED


def test_project_ignores_archived_and_skips_invalid_rules() -> None:
    archived = _task("a", rule=_rule(RecurrenceFrequency.DAILY, START), due=START, status=TaskStatus.ARCHIVED)
    broken = _task("b", rule=RecurrenceRule(RecurrenceFrequency.DAILY, interval=0, start=START), due=START)
    healthy = _task("c", rule=_rule(RecurrenceFrequency.DAILY, START), due=START)

    virtuals = project([archived, broken, healthy], date(2024, 1, 2), date(2024, 1, 3))

    assert {v.root_id for v in virtuals} == {"c"}
    assert len(virtuals) == 2


def test_occurrences_between_mixes_real_and_virtual_sorted_by_priority() -> None:
    root = _task(rule=_rule(RecurrenceFrequency.DAILY, START), due=START, priority=PriorityLevel.LOW)
    urgent = _task("u", due=datetime(2024, 1, 2, 9, 0), priority=PriorityLevel.HIGH, title="Call bank")

    calendar = occurrences_between([root, urgent], date(2024, 1, 1), date(2024, 1, 2))

    assert calendar[date(2024, 1, 1)] == [RealOccurrence(root)]
    day_two = calendar[date(2024, 1, 2)]
    assert isinstance(day_two[0], RealOccurrence) and day_two[0].key == "u"
    assert isinstance(day_two[1], VirtualOccurrence) and day_two[1].root_id == "root"


def test_recurrence_preview_lists_days_per_month() -> None:
    task = _task(rule=_rule(RecurrenceFrequency.MONTHLY, START, day_of_month=15))

    preview = recurrence_preview(task, date(2024, 1, 1), months=3)

    assert [month for month, _ in preview] == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]
    assert [days for _, days in preview] == [[date(2024, 1, 15)], [date(2024, 2, 15)], [date(2024, 3, 15)]]
