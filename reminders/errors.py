from __future__ import annotations

from datetime import date


class ReminderError(Exception):
    """Base class for reminder failures surfaced to the caller."""


class InvalidRule(ReminderError, ValueError):
    pass


class InvalidException(ReminderError, ValueError):
    pass


class InvalidSplitDate(ReminderError, ValueError):
    def __init__(self, split_date: date, anchor_date: date) -> None:
        super().__init__(
            f"Split date {split_date.isoformat()} must be after the first occurrence "
            f"({anchor_date.isoformat()})."
        )
        self.split_date = split_date
        self.anchor_date = anchor_date


class UnknownOccurrenceDate(ReminderError, ValueError):
    def __init__(self, occurrence_date: date) -> None:
        super().__init__(
            f"{occurrence_date.isoformat()} is not a scheduled occurrence of this reminder."
        )
        self.occurrence_date = occurrence_date


class SeriesNotFound(ReminderError, LookupError):
    def __init__(self, series_id: int) -> None:
        super().__init__(f"Reminder {series_id} not found.")
        self.series_id = series_id
