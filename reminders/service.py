from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, List, Optional, Protocol

from reminders.errors import UnknownOccurrenceDate
from reminders.logs import get_logger
from reminders.overlay import apply_exception, remove_exception
from reminders.projection import project, project_all
from reminders.recurrence import RecurrenceRule, calendar_date, occurrence_index
from reminders.series import (
    ExternalLinks,
    Modified,
    OccurrenceException,
    ProjectedOccurrence,
    Series,
)
from reminders.splitter import SplitDetails, split_series
from reminders.store import SeriesStore
from reminders.timeline import MonthBucket, count_overdue, group_by_month

logger = get_logger(__name__)

Clock = Callable[[], datetime]


class TransactionMaterializer(Protocol):
    def __call__(self, occurrence: ProjectedOccurrence, transaction_id: str) -> None:
        ...


@dataclass(frozen=True)
class SeriesChanges:
    title: Optional[str] = None
    amount: Optional[Decimal] = None
    anchor_date: Optional[date] = None
    rule: Optional[RecurrenceRule] = None
    template_id: Optional[str] = None
    fixed_expense_id: Optional[str] = None


@dataclass(frozen=True)
class Timeline:
    today: date
    months: List[MonthBucket] = field(default_factory=list)
    overdue_count: int = 0


class ReminderService:
    """Id-based reminder operations on top of the pure projection core.

    Every read recomputes projections from the stored series; "now" always comes
    from the injected clock.
    """

    def __init__(
        self,
        store: SeriesStore,
        clock: Clock,
        materializer: Optional[TransactionMaterializer] = None,
        lookback_months: int = 1,
        lookahead_months: int = 2,
    ) -> None:
        self._store = store
        self._clock = clock
        self._materializer = materializer
        self._lookback_months = lookback_months
        self._lookahead_months = lookahead_months

    def today(self) -> date:
        return calendar_date(self._clock())

    def list_series(self, user_id: int) -> List[Series]:
        return self._store.list_for_user(user_id)

    def get(self, series_id: int, user_id: Optional[int] = None) -> Series:
        return self._store.load(series_id, user_id)

    def create(
        self,
        user_id: int,
        title: str,
        amount: Decimal,
        anchor_date: date,
        rule: Optional[RecurrenceRule] = None,
        links: Optional[ExternalLinks] = None,
    ) -> Series:
        series = Series(
            user_id=user_id,
            title=_clean_title(title),
            amount=amount,
            anchor_date=anchor_date,
            rule=rule or RecurrenceRule(),
            links=links or ExternalLinks(),
        )
        stored = self._store.add(series)
        logger.info(
            "reminder_created",
            series_id=stored.id,
            user_id=user_id,
            kind=stored.rule.kind,
            anchor_date=stored.anchor_date.isoformat(),
        )
        return stored

    def update(
        self, series_id: int, changes: SeriesChanges, user_id: Optional[int] = None
    ) -> Series:
        """Edit every occurrence of a series by changing the series itself.

        Exceptions whose dates are no longer scheduled under the new anchor or
        rule are dropped.
        """
        series = self._store.load(series_id, user_id)
        updated = replace(
            series,
            title=_clean_title(changes.title) if changes.title is not None else series.title,
            amount=changes.amount if changes.amount is not None else series.amount,
            anchor_date=changes.anchor_date or series.anchor_date,
            rule=changes.rule or series.rule,
            links=replace(
                series.links,
                template_id=(
                    changes.template_id
                    if changes.template_id is not None
                    else series.links.template_id
                ),
                fixed_expense_id=(
                    changes.fixed_expense_id
                    if changes.fixed_expense_id is not None
                    else series.links.fixed_expense_id
                ),
            ),
        )
        kept = {
            original_date: exception
            for original_date, exception in updated.exceptions.items()
            if occurrence_index(updated.anchor_date, updated.rule, original_date) is not None
        }
        dropped = len(updated.exceptions) - len(kept)
        stored = self._store.save(updated.with_exceptions(kept))
        logger.info("reminder_updated", series_id=series_id, dropped_exceptions=dropped)
        return stored

    def delete(self, series_id: int, user_id: Optional[int] = None) -> None:
        self._store.delete(series_id, user_id)
        logger.info("reminder_deleted", series_id=series_id)

    def mark_paid(
        self,
        series_id: int,
        transaction_id: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Series:
        """Mark the anchor occurrence paid.

        With a transaction this is the same as paying the anchor through
        ``pay_occurrence``, so the materializer sees it too.
        """
        series = self._store.load(series_id, user_id)
        if transaction_id is not None:
            return self.pay_occurrence(series_id, series.anchor_date, transaction_id, user_id)
        return self._save_paid(series, None)

    def _save_paid(self, series: Series, transaction_id: Optional[str]) -> Series:
        updated = replace(
            series,
            paid=True,
            links=replace(series.links, transaction_id=transaction_id),
        )
        stored = self._store.save(updated)
        logger.info("reminder_paid", series_id=series.id, transaction_id=transaction_id)
        return stored

    def apply_exception(
        self,
        series_id: int,
        original_date: date,
        exception: OccurrenceException,
        user_id: Optional[int] = None,
    ) -> Series:
        series = self._store.load(series_id, user_id)
        stored = self._store.save(apply_exception(series, original_date, exception))
        logger.info(
            "reminder_exception_applied",
            series_id=series_id,
            original_date=original_date.isoformat(),
            action=type(exception).__name__.lower(),
        )
        return stored

    def remove_exception(
        self, series_id: int, original_date: date, user_id: Optional[int] = None
    ) -> Series:
        series = self._store.load(series_id, user_id)
        stored = self._store.save(remove_exception(series, original_date))
        logger.info(
            "reminder_exception_removed",
            series_id=series_id,
            original_date=original_date.isoformat(),
        )
        return stored

    def split(
        self,
        series_id: int,
        split_date: date,
        details: Optional[SplitDetails] = None,
        user_id: Optional[int] = None,
    ) -> tuple[int, int]:
        series = self._store.load(series_id, user_id)
        terminated, continued = split_series(series, split_date, details)
        stored_terminated, stored_continued = self._store.save_split(terminated, continued)
        logger.info(
            "reminder_split",
            series_id=series_id,
            new_series_id=stored_continued.id,
            split_date=split_date.isoformat(),
        )
        return stored_terminated.id, stored_continued.id

    def end_before(
        self, series_id: int, from_date: date, user_id: Optional[int] = None
    ) -> Series:
        """Delete the occurrence at ``from_date`` and every one after it."""
        series = self._store.load(series_id, user_id)
        terminated, _ = split_series(series, from_date)
        stored = self._store.save(terminated)
        logger.info(
            "reminder_ended",
            series_id=series_id,
            from_date=from_date.isoformat(),
        )
        return stored

    def occurrences(
        self, series_id: int, user_id: Optional[int] = None
    ) -> List[ProjectedOccurrence]:
        series = self._store.load(series_id, user_id)
        return project(series, self.today(), self._lookahead_months)

    def timeline(
        self,
        user_id: int,
        months_back: Optional[int] = None,
        months_ahead: Optional[int] = None,
    ) -> Timeline:
        today = self.today()
        months_back = self._lookback_months if months_back is None else months_back
        months_ahead = self._lookahead_months if months_ahead is None else months_ahead
        occurrences = project_all(self._store.list_for_user(user_id), today, months_ahead)
        return Timeline(
            today=today,
            months=group_by_month(occurrences, today, months_back, months_ahead),
            overdue_count=count_overdue(occurrences, today),
        )

    def pay_occurrence(
        self,
        series_id: int,
        original_date: date,
        transaction_id: str,
        user_id: Optional[int] = None,
    ) -> Series:
        """Settle one occurrence with an external transaction.

        The materializer runs first; the payment is stored only if it succeeds.
        """
        series = self._store.load(series_id, user_id)
        occurrence = self._find_occurrence(series, original_date)
        if original_date == series.anchor_date:
            if self._materializer is not None:
                self._materializer(occurrence, transaction_id)
            return self._save_paid(series, transaction_id)
        exception = Modified(paid=True, linked_transaction=transaction_id)
        paid = apply_exception(series, original_date, exception)
        if self._materializer is not None:
            self._materializer(occurrence, transaction_id)
        stored = self._store.save(paid)
        logger.info(
            "reminder_exception_applied",
            series_id=series_id,
            original_date=original_date.isoformat(),
            action="modified",
        )
        return stored

    def release_transaction(
        self, transaction_id: str, user_id: Optional[int] = None
    ) -> List[Series]:
        """Undo every payment that points at a transaction which no longer exists."""
        released: List[Series] = []
        for series in self._store.find_by_linked_transaction(transaction_id, user_id):
            updated = series
            if series.links.transaction_id == transaction_id:
                updated = replace(
                    updated,
                    paid=False,
                    links=replace(updated.links, transaction_id=None),
                )
            exceptions = dict(updated.exceptions)
            for original_date, exception in updated.exceptions.items():
                if isinstance(exception, Modified) and exception.linked_transaction == transaction_id:
                    cleared = replace(exception, paid=None, linked_transaction=None)
                    if cleared.is_empty:
                        del exceptions[original_date]
                    else:
                        exceptions[original_date] = cleared
            released.append(self._store.save(updated.with_exceptions(exceptions)))
            logger.info(
                "reminder_payment_released",
                series_id=series.id,
                transaction_id=transaction_id,
            )
        return released

    def _find_occurrence(self, series: Series, original_date: date) -> ProjectedOccurrence:
        if occurrence_index(series.anchor_date, series.rule, original_date) is None:
            raise UnknownOccurrenceDate(original_date)
        for occurrence in project(series, self.today(), self._lookahead_months):
            if occurrence.original_date == original_date:
                return occurrence
        # scheduled but outside the visible window, e.g. far in the future
        return ProjectedOccurrence(
            source_series_id=series.id,
            scheduled_date=original_date,
            original_date=original_date,
            title=series.title,
            amount=series.amount,
        )


def _clean_title(title: str) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValueError("Reminder title required.")
    return cleaned
