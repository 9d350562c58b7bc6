from __future__ import annotations

from datetime import date
from typing import List

from reminders.overlay import apply_overlay
from reminders.recurrence import add_months, calendar_date, iter_occurrences, start_of_month
from reminders.series import ProjectedOccurrence, Series

DEFAULT_LOOKAHEAD_MONTHS = 2


def lookahead_horizon(now: date, lookahead_months: int) -> date:
    """First date past the window that ends with the month ``lookahead_months`` after now."""
    if lookahead_months < 0:
        raise ValueError("lookahead_months must be zero or greater.")
    return start_of_month(add_months(calendar_date(now), lookahead_months + 1))


def project_dates(series: Series, now: date, horizon: date) -> List[date]:
    """Future occurrence dates of ``series`` strictly after now and before ``horizon``.

    The anchor is never included. Generation stops at the end condition or at the
    first candidate on or past ``horizon``, whichever comes first.
    """
    if not series.rule.is_recurring:
        return []
    today = calendar_date(now)
    horizon = calendar_date(horizon)
    dates: List[date] = []
    occurrences = iter_occurrences(series.anchor_date, series.rule)
    next(occurrences)
    for candidate in occurrences:
        if candidate >= horizon:
            break
        if candidate > today:
            dates.append(candidate)
    return dates


def candidate_dates(series: Series, now: date, horizon: date) -> List[date]:
    return [series.anchor_date, *project_dates(series, now, horizon)]


def project(
    series: Series,
    now: date,
    lookahead_months: int = DEFAULT_LOOKAHEAD_MONTHS,
) -> List[ProjectedOccurrence]:
    """Visible occurrences of one series: its anchor plus projections inside the window."""
    horizon = lookahead_horizon(now, lookahead_months)
    return apply_overlay(series, candidate_dates(series, now, horizon))


def project_all(
    series_list: List[Series],
    now: date,
    lookahead_months: int = DEFAULT_LOOKAHEAD_MONTHS,
) -> List[ProjectedOccurrence]:
    occurrences: List[ProjectedOccurrence] = []
    for series in series_list:
        occurrences.extend(project(series, now, lookahead_months))
    occurrences.sort(key=lambda item: (item.scheduled_date, item.source_series_id or 0))
    return occurrences
