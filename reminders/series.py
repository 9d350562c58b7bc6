from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional, Union

from reminders.recurrence import RecurrenceRule


@dataclass(frozen=True)
class ExternalLinks:
    template_id: Optional[str] = None
    fixed_expense_id: Optional[str] = None
    transaction_id: Optional[str] = None


NO_LINKS = ExternalLinks()


@dataclass(frozen=True)
class Deleted:
    pass


@dataclass(frozen=True)
class Modified:
    title: Optional[str] = None
    amount: Optional[Decimal] = None
    date: Optional[date] = None
    paid: Optional[bool] = None
    linked_transaction: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.title is None
            and self.amount is None
            and self.date is None
            and self.paid is None
            and self.linked_transaction is None
        )

    def merged_over(self, previous: "Modified") -> "Modified":
        return Modified(
            title=self.title if self.title is not None else previous.title,
            amount=self.amount if self.amount is not None else previous.amount,
            date=self.date if self.date is not None else previous.date,
            paid=self.paid if self.paid is not None else previous.paid,
            linked_transaction=(
                self.linked_transaction
                if self.linked_transaction is not None
                else previous.linked_transaction
            ),
        )


OccurrenceException = Union[Deleted, Modified]
DELETED = Deleted()


@dataclass(frozen=True)
class Series:
    """A stored reminder: anchor occurrence, recurrence rule and per-date overrides.

    ``exceptions`` is keyed by the originally scheduled date of the occurrence it
    overrides, even when a ``Modified`` exception moves the occurrence elsewhere.
    Instances are immutable; mutations return a new ``Series``.
    """

    title: str
    amount: Decimal
    anchor_date: date
    rule: RecurrenceRule = field(default_factory=RecurrenceRule)
    id: Optional[int] = None
    user_id: Optional[int] = None
    paid: bool = False
    links: ExternalLinks = NO_LINKS
    exceptions: Mapping[date, OccurrenceException] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _coerce_amount(self.amount))
        object.__setattr__(self, "exceptions", MappingProxyType(dict(self.exceptions)))

    def with_exceptions(self, exceptions: Mapping[date, OccurrenceException]) -> "Series":
        return replace(self, exceptions=exceptions)

    def exception_for(self, original_date: date) -> Optional[OccurrenceException]:
        return self.exceptions.get(original_date)


@dataclass(frozen=True)
class ProjectedOccurrence:
    source_series_id: Optional[int]
    scheduled_date: date
    original_date: date
    title: str
    amount: Decimal
    paid: bool = False
    is_materialized: bool = False
    linked_transaction: Optional[str] = None

    @property
    def key(self) -> tuple[Optional[int], date]:
        return (self.source_series_id, self.original_date)

    @property
    def is_projected(self) -> bool:
        return not self.is_materialized


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
