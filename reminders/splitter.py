from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from reminders.errors import InvalidSplitDate, UnknownOccurrenceDate
from reminders.recurrence import After, EndCondition, OnDate, RecurrenceRule, occurrence_index
from reminders.series import ExternalLinks, Series


@dataclass(frozen=True)
class SplitDetails:
    """Overrides for the series that continues from the split date."""

    title: Optional[str] = None
    amount: Optional[Decimal] = None
    rule: Optional[RecurrenceRule] = None


def split_series(
    series: Series,
    split_date: date,
    details: Optional[SplitDetails] = None,
) -> tuple[Series, Series]:
    """Split ``series`` into the part before ``split_date`` and a new series from it.

    The original keeps its exceptions dated before the split and ends the day
    before it. The new series is anchored on ``split_date``, starts with no
    exceptions and has no id until it is stored.

    ``split_date`` may already be in the past. Its occurrence then becomes the
    unpaid anchor of the new series and shows up as overdue, where before the
    split it was an unshown past projection.
    """
    if split_date <= series.anchor_date:
        raise InvalidSplitDate(split_date, series.anchor_date)
    split_index = occurrence_index(series.anchor_date, series.rule, split_date)
    if split_index is None:
        raise UnknownOccurrenceDate(split_date)

    details = details or SplitDetails()
    last_kept = split_date - timedelta(days=1)
    terminated = replace(
        series,
        rule=replace(series.rule, end=_terminated_end(series.rule.end, last_kept)),
        exceptions={
            original: exception
            for original, exception in series.exceptions.items()
            if original < split_date
        },
    )

    continued_rule = details.rule or replace(
        series.rule, end=_remaining_end(series.rule.end, split_index, split_date)
    )
    continued = Series(
        title=details.title if details.title is not None else series.title,
        amount=details.amount if details.amount is not None else series.amount,
        anchor_date=split_date,
        rule=continued_rule,
        id=None,
        user_id=series.user_id,
        paid=False,
        links=ExternalLinks(
            template_id=series.links.template_id,
            fixed_expense_id=series.links.fixed_expense_id,
        ),
        exceptions={},
    )
    return terminated, continued


def _terminated_end(end: EndCondition, last_kept: date) -> EndCondition:
    if isinstance(end, OnDate) and end.date < last_kept:
        return end
    return OnDate(last_kept)


def _remaining_end(end: EndCondition, split_index: int, split_date: date) -> EndCondition:
    if not isinstance(end, After):
        return end
    # the split occurrence becomes the new anchor (occurrence 0)
    if end.count > split_index:
        return After(end.count - split_index)
    return OnDate(split_date)
