from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, List

from reminders.recurrence import add_months, calendar_date, end_of_month, start_of_month
from reminders.series import ProjectedOccurrence

THIS_WEEK_DAYS = 7


class OccurrenceStatus(str, Enum):
    PAID = "paid"
    PROJECTED = "projected"
    OVERDUE = "overdue"
    TODAY = "today"
    THIS_WEEK = "this-week"
    UPCOMING = "upcoming"


@dataclass(frozen=True)
class MonthBucket:
    year: int
    month: int
    occurrences: tuple[ProjectedOccurrence, ...]
    is_current_month: bool
    is_past_month: bool

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def label(self) -> str:
        return date(self.year, self.month, 1).strftime("%B %Y")


def classify(occurrence: ProjectedOccurrence, now: date) -> OccurrenceStatus:
    if occurrence.is_materialized and occurrence.paid:
        return OccurrenceStatus.PAID
    if not occurrence.is_materialized:
        return OccurrenceStatus.PROJECTED
    return classify_date(occurrence.scheduled_date, now)


def classify_date(scheduled_date: date, now: date) -> OccurrenceStatus:
    today = calendar_date(now)
    scheduled = calendar_date(scheduled_date)
    if scheduled < today:
        return OccurrenceStatus.OVERDUE
    if scheduled == today:
        return OccurrenceStatus.TODAY
    if scheduled <= today + timedelta(days=THIS_WEEK_DAYS):
        return OccurrenceStatus.THIS_WEEK
    return OccurrenceStatus.UPCOMING


def group_by_month(
    occurrences: Iterable[ProjectedOccurrence],
    now: date,
    months_back: int = 1,
    months_ahead: int = 2,
) -> List[MonthBucket]:
    """Bucket occurrences by the month of their shown date.

    Every month from ``months_back`` before now through ``months_ahead`` after is
    present, empty or not. Occurrences outside that window are left out.
    """
    if months_back < 0 or months_ahead < 0:
        raise ValueError("months_back and months_ahead must be zero or greater.")
    today = calendar_date(now)
    first_month = add_months(start_of_month(today), -months_back)
    month_count = months_back + months_ahead + 1

    grouped: dict[tuple[int, int], List[ProjectedOccurrence]] = {}
    months: List[date] = []
    for offset in range(month_count):
        month_start = add_months(first_month, offset)
        months.append(month_start)
        grouped[(month_start.year, month_start.month)] = []

    for occurrence in occurrences:
        bucket = grouped.get((occurrence.scheduled_date.year, occurrence.scheduled_date.month))
        if bucket is not None:
            bucket.append(occurrence)

    buckets: List[MonthBucket] = []
    for month_start in months:
        items = grouped[(month_start.year, month_start.month)]
        items.sort(key=lambda item: item.scheduled_date)
        buckets.append(
            MonthBucket(
                year=month_start.year,
                month=month_start.month,
                occurrences=tuple(items),
                is_current_month=(month_start.year, month_start.month)
                == (today.year, today.month),
                is_past_month=end_of_month(month_start) < today,
            )
        )
    return buckets


def count_overdue(occurrences: Iterable[ProjectedOccurrence], now: date) -> int:
    today = calendar_date(now)
    return sum(
        1
        for occurrence in occurrences
        if not occurrence.paid and calendar_date(occurrence.scheduled_date) < today
    )
