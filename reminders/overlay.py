from __future__ import annotations

from datetime import date
from typing import Iterable, List

from reminders.errors import InvalidException, UnknownOccurrenceDate
from reminders.recurrence import occurrence_index
from reminders.series import (
    Deleted,
    Modified,
    OccurrenceException,
    ProjectedOccurrence,
    Series,
)


def apply_overlay(series: Series, candidate_dates: Iterable[date]) -> List[ProjectedOccurrence]:
    """Turn candidate dates into visible occurrences, honouring per-date exceptions.

    Candidates are looked up by their unmodified date. Deleted occurrences are
    dropped; modified ones take the override fields and fall back to the series
    for anything left unset. The result is ordered by the date actually shown.
    """
    occurrences: List[ProjectedOccurrence] = []
    seen: set[date] = set()
    for original_date in candidate_dates:
        if original_date in seen:
            continue
        seen.add(original_date)
        is_anchor = original_date == series.anchor_date
        exception = series.exception_for(original_date)
        if isinstance(exception, Deleted):
            continue
        occurrence = ProjectedOccurrence(
            source_series_id=series.id,
            scheduled_date=original_date,
            original_date=original_date,
            title=series.title,
            amount=series.amount,
            paid=series.paid if is_anchor else False,
            is_materialized=is_anchor,
            linked_transaction=series.links.transaction_id if is_anchor else None,
        )
        if isinstance(exception, Modified):
            occurrence = _apply_modification(occurrence, exception)
        occurrences.append(occurrence)
    occurrences.sort(key=lambda item: (item.scheduled_date, item.original_date))
    return occurrences


def apply_exception(
    series: Series, original_date: date, exception: OccurrenceException
) -> Series:
    """Return ``series`` with ``exception`` recorded for the occurrence at ``original_date``.

    A second ``Modified`` for the same date is merged into the existing record,
    so the series never holds more than one exception per scheduled date.
    """
    if not isinstance(exception, (Deleted, Modified)):
        raise InvalidException("Exception must be either deleted or modified.")
    if isinstance(exception, Modified) and exception.is_empty:
        raise InvalidException("A modified occurrence needs at least one changed field.")
    if occurrence_index(series.anchor_date, series.rule, original_date) is None:
        raise UnknownOccurrenceDate(original_date)

    previous = series.exception_for(original_date)
    if isinstance(exception, Modified) and isinstance(previous, Modified):
        exception = exception.merged_over(previous)

    exceptions = dict(series.exceptions)
    exceptions[original_date] = exception
    return series.with_exceptions(exceptions)


def remove_exception(series: Series, original_date: date) -> Series:
    if original_date not in series.exceptions:
        raise UnknownOccurrenceDate(original_date)
    exceptions = dict(series.exceptions)
    del exceptions[original_date]
    return series.with_exceptions(exceptions)


def _apply_modification(
    occurrence: ProjectedOccurrence, modification: Modified
) -> ProjectedOccurrence:
    return ProjectedOccurrence(
        source_series_id=occurrence.source_series_id,
        scheduled_date=modification.date or occurrence.scheduled_date,
        original_date=occurrence.original_date,
        title=modification.title if modification.title is not None else occurrence.title,
        amount=modification.amount if modification.amount is not None else occurrence.amount,
        paid=modification.paid if modification.paid is not None else occurrence.paid,
        is_materialized=occurrence.is_materialized,
        linked_transaction=(
            modification.linked_transaction
            if modification.linked_transaction is not None
            else occurrence.linked_transaction
        ),
    )
