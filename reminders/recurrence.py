from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import FrozenSet, Iterable, Iterator, Optional, Union

from reminders.errors import InvalidRule

DAYS_PER_WEEK = 7
SUPPORTED_KINDS = ("once", "daily", "weekly", "monthly", "yearly", "custom")
END_TYPES = ("never", "after", "on_date")


@dataclass(frozen=True)
class Never:
    pass


@dataclass(frozen=True)
class After:
    count: int

    def __post_init__(self) -> None:
        if self.count < 1:
            raise InvalidRule("End after count must be at least 1.")


@dataclass(frozen=True)
class OnDate:
    date: date


EndCondition = Union[Never, After, OnDate]
NEVER = Never()


@dataclass(frozen=True)
class RecurrenceRule:
    kind: str = "once"
    interval: int = 1
    days_of_week: Optional[FrozenSet[int]] = None
    end: EndCondition = NEVER

    def __post_init__(self) -> None:
        kind = _normalize_kind(self.kind)
        object.__setattr__(self, "kind", kind)
        if isinstance(self.interval, bool) or not isinstance(self.interval, int):
            raise InvalidRule("Interval must be a whole number.")
        if self.interval < 1:
            raise InvalidRule("Interval must be at least 1.")
        if self.days_of_week is not None:
            days = frozenset(self.days_of_week)
            if kind == "weekly" and not days:
                raise InvalidRule("Weekly reminders need at least one day of the week.")
            if any(day < 0 or day > 6 for day in days):
                raise InvalidRule("Days of the week must be between 0 (Sunday) and 6 (Saturday).")
            object.__setattr__(self, "days_of_week", days)
        if not isinstance(self.end, (Never, After, OnDate)):
            raise InvalidRule("Unsupported end condition.")

    @property
    def is_recurring(self) -> bool:
        return self.kind != "once"

    @property
    def weekdays(self) -> tuple[int, ...]:
        if self.kind != "weekly" or not self.days_of_week:
            return ()
        return tuple(sorted(self.days_of_week))


def build_rule(
    kind: str,
    interval: int = 1,
    days_of_week: Optional[Iterable[int]] = None,
    end_type: str = "never",
    end_count: Optional[int] = None,
    end_date: Optional[date] = None,
) -> RecurrenceRule:
    """Build a rule from the flat fields used by forms and storage rows."""
    return RecurrenceRule(
        kind=kind,
        interval=interval,
        days_of_week=frozenset(days_of_week) if days_of_week is not None else None,
        end=build_end_condition(end_type, end_count, end_date),
    )


def build_end_condition(
    end_type: str, end_count: Optional[int] = None, end_date: Optional[date] = None
) -> EndCondition:
    normalized = (end_type or "never").strip().lower()
    if normalized == "never":
        return NEVER
    if normalized == "after":
        if end_count is None:
            raise InvalidRule("End after requires an occurrence count.")
        return After(end_count)
    if normalized == "on_date":
        if end_date is None:
            raise InvalidRule("End on date requires an end date.")
        return OnDate(end_date)
    raise InvalidRule(f"Unsupported end type: {end_type}")


def end_condition_fields(end: EndCondition) -> tuple[str, Optional[int], Optional[date]]:
    if isinstance(end, After):
        return "after", end.count, None
    if isinstance(end, OnDate):
        return "on_date", None, end.date
    return "never", None, None


def next_occurrence(current: date, rule: RecurrenceRule) -> date:
    """Return the first occurrence of ``rule`` strictly after ``current``."""
    if rule.kind == "once":
        raise InvalidRule("One-time reminders have no next occurrence.")
    if rule.kind in {"daily", "custom"}:
        # custom keeps the interval in days
        return current + timedelta(days=rule.interval)
    if rule.kind == "weekly":
        if rule.weekdays:
            return _next_weekday(current, rule.weekdays, rule.interval)
        return current + timedelta(weeks=rule.interval)
    if rule.kind == "monthly":
        return add_months(current, rule.interval)
    if rule.kind == "yearly":
        return add_months(current, rule.interval * 12)
    raise InvalidRule(f"Unsupported recurrence kind: {rule.kind}")


def iter_occurrences(anchor_date: date, rule: RecurrenceRule) -> Iterator[date]:
    """Yield the anchor followed by every occurrence allowed by the end condition.

    The sequence is unbounded for ``Never`` rules; callers stop consuming it. It
    also ends at the last date ``datetime.date`` can represent.
    """
    yield anchor_date
    if not rule.is_recurring:
        return
    current = anchor_date
    generated = 0
    while True:
        try:
            current = next_occurrence(current, rule)
        except InvalidRule:
            raise
        except (OverflowError, ValueError):
            return
        generated += 1
        if isinstance(rule.end, After) and generated > rule.end.count:
            return
        if isinstance(rule.end, OnDate) and current > rule.end.date:
            return
        yield current


def occurrence_index(anchor_date: date, rule: RecurrenceRule, target: date) -> Optional[int]:
    """Position of ``target`` in the series (anchor is 0), or None if it is not scheduled."""
    for index, candidate in enumerate(iter_occurrences(anchor_date, rule)):
        if candidate == target:
            return index
        if candidate > target:
            return None
    return None


def _next_weekday(current: date, weekdays: tuple[int, ...], week_interval: int) -> date:
    current_day = sunday_weekday(current)
    for day in weekdays:
        if day > current_day:
            return current + timedelta(days=day - current_day)
    days_to_next_week = DAYS_PER_WEEK - current_day + weekdays[0]
    return current + timedelta(days=days_to_next_week + (week_interval - 1) * DAYS_PER_WEEK)


def sunday_weekday(value: date) -> int:
    """Weekday index with Sunday as 0 and Saturday as 6."""
    return (value.weekday() + 1) % DAYS_PER_WEEK


def add_months(start_date: date, months: int) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    return date(year, month, min(start_date.day, last_day))


def start_of_month(value: date) -> date:
    return date(value.year, value.month, 1)


def end_of_month(value: date) -> date:
    return date(value.year, value.month, monthrange(value.year, value.month)[1])


def calendar_date(value: date) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _normalize_kind(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized not in SUPPORTED_KINDS:
        raise InvalidRule(
            "Only once, daily, weekly, monthly, yearly, or custom reminders are supported."
        )
    return normalized
