from __future__ import annotations

from datetime import date
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    delete,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine

from reminders.errors import SeriesNotFound
from reminders.recurrence import build_rule, end_condition_fields
from reminders.series import Deleted, ExternalLinks, Modified, OccurrenceException, Series

metadata = MetaData()

reminders = Table(
    "reminders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("title", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("due_date", Date, nullable=False),
    Column("is_paid", Boolean, nullable=False, default=False),
    Column("recurrence_type", String(20), nullable=False, default="once"),
    Column("recurrence_interval", Integer, nullable=False, default=1),
    Column("recurrence_days_of_week", String(20)),
    Column("recurrence_end_type", String(20), nullable=False, default="never"),
    Column("recurrence_end_count", Integer),
    Column("recurrence_end_date", Date),
    Column("template_id", String(64)),
    Column("fixed_expense_id", String(64)),
    Column("linked_transaction_id", String(64), index=True),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

reminder_exceptions = Table(
    "reminder_exceptions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "reminder_id",
        Integer,
        ForeignKey("reminders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("original_date", Date, nullable=False),
    Column("action", String(20), nullable=False),
    Column("new_title", String(255)),
    Column("new_amount", Numeric(12, 2)),
    Column("new_date", Date),
    Column("is_paid", Boolean),
    Column("linked_transaction_id", String(64), index=True),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("reminder_id", "original_date", name="uq_reminder_exceptions_date"),
)


class SeriesStore:
    """Reminder persistence over SQLAlchemy Core.

    A series and its exceptions are always written together in one transaction.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create_schema(self) -> None:
        metadata.create_all(self._engine)

    def list_for_user(self, user_id: int) -> List[Series]:
        with self._engine.begin() as conn:
            rows = conn.execute(
                select(reminders)
                .where(reminders.c.user_id == user_id)
                .order_by(reminders.c.due_date.asc(), reminders.c.id.asc())
            ).mappings().all()
            exceptions = self._load_exceptions(conn, [row["id"] for row in rows])
        return [_row_to_series(row, exceptions.get(row["id"], {})) for row in rows]

    def load(self, series_id: int, user_id: Optional[int] = None) -> Series:
        with self._engine.begin() as conn:
            return self._load(conn, series_id, user_id)

    def add(self, series: Series) -> Series:
        with self._engine.begin() as conn:
            return self._insert(conn, series)

    def save(self, series: Series) -> Series:
        if series.id is None:
            return self.add(series)
        with self._engine.begin() as conn:
            self._update(conn, series)
            return self._load(conn, series.id, series.user_id)

    def save_split(self, terminated: Series, continued: Series) -> tuple[Series, Series]:
        if terminated.id is None:
            raise ValueError("Only a stored reminder can be split.")
        with self._engine.begin() as conn:
            self._update(conn, terminated)
            stored_continued = self._insert(conn, continued)
            stored_terminated = self._load(conn, terminated.id, terminated.user_id)
        return stored_terminated, stored_continued

    def delete(self, series_id: int, user_id: Optional[int] = None) -> None:
        with self._engine.begin() as conn:
            self._load(conn, series_id, user_id)
            conn.execute(
                delete(reminder_exceptions).where(reminder_exceptions.c.reminder_id == series_id)
            )
            conn.execute(delete(reminders).where(reminders.c.id == series_id))

    def find_by_linked_transaction(
        self, transaction_id: str, user_id: Optional[int] = None
    ) -> List[Series]:
        with self._engine.begin() as conn:
            linked_exception_ids = select(reminder_exceptions.c.reminder_id).where(
                reminder_exceptions.c.linked_transaction_id == transaction_id
            )
            conditions = [
                or_(
                    reminders.c.linked_transaction_id == transaction_id,
                    reminders.c.id.in_(linked_exception_ids),
                )
            ]
            if user_id is not None:
                conditions.append(reminders.c.user_id == user_id)
            rows = conn.execute(
                select(reminders).where(*conditions).order_by(reminders.c.id.asc())
            ).mappings().all()
            exceptions = self._load_exceptions(conn, [row["id"] for row in rows])
        return [_row_to_series(row, exceptions.get(row["id"], {})) for row in rows]

    def _load(self, conn: Connection, series_id: int, user_id: Optional[int]) -> Series:
        conditions = [reminders.c.id == series_id]
        if user_id is not None:
            conditions.append(reminders.c.user_id == user_id)
        row = conn.execute(select(reminders).where(*conditions)).mappings().first()
        if not row:
            raise SeriesNotFound(series_id)
        exceptions = self._load_exceptions(conn, [series_id])
        return _row_to_series(row, exceptions.get(series_id, {}))

    def _load_exceptions(
        self, conn: Connection, series_ids: List[int]
    ) -> dict[int, dict[date, OccurrenceException]]:
        if not series_ids:
            return {}
        rows = conn.execute(
            select(reminder_exceptions).where(reminder_exceptions.c.reminder_id.in_(series_ids))
        ).mappings().all()
        grouped: dict[int, dict[date, OccurrenceException]] = {}
        for row in rows:
            grouped.setdefault(row["reminder_id"], {})[row["original_date"]] = _row_to_exception(row)
        return grouped

    def _insert(self, conn: Connection, series: Series) -> Series:
        if series.user_id is None:
            raise ValueError("A reminder must belong to a user.")
        result = conn.execute(insert(reminders).values(**_series_values(series)))
        series_id = result.inserted_primary_key[0]
        self._write_exceptions(conn, series_id, series)
        return self._load(conn, series_id, series.user_id)

    def _update(self, conn: Connection, series: Series) -> None:
        conditions = [reminders.c.id == series.id]
        if series.user_id is not None:
            conditions.append(reminders.c.user_id == series.user_id)
        values = _series_values(series)
        values.pop("user_id")
        result = conn.execute(
            update(reminders).where(*conditions).values(**values, updated_at=func.now())
        )
        if result.rowcount == 0:
            raise SeriesNotFound(series.id)
        conn.execute(
            delete(reminder_exceptions).where(reminder_exceptions.c.reminder_id == series.id)
        )
        self._write_exceptions(conn, series.id, series)

    def _write_exceptions(self, conn: Connection, series_id: int, series: Series) -> None:
        rows = [
            _exception_values(series_id, original_date, exception)
            for original_date, exception in sorted(series.exceptions.items())
        ]
        if rows:
            conn.execute(insert(reminder_exceptions), rows)


def _series_values(series: Series) -> dict:
    end_type, end_count, end_date = end_condition_fields(series.rule.end)
    days = series.rule.days_of_week
    return {
        "user_id": series.user_id,
        "title": series.title,
        "amount": series.amount,
        "due_date": series.anchor_date,
        "is_paid": series.paid,
        "recurrence_type": series.rule.kind,
        "recurrence_interval": series.rule.interval,
        "recurrence_days_of_week": ",".join(str(day) for day in sorted(days)) if days else None,
        "recurrence_end_type": end_type,
        "recurrence_end_count": end_count,
        "recurrence_end_date": end_date,
        "template_id": series.links.template_id,
        "fixed_expense_id": series.links.fixed_expense_id,
        "linked_transaction_id": series.links.transaction_id,
    }


def _exception_values(series_id: int, original_date: date, exception: OccurrenceException) -> dict:
    values = {
        "reminder_id": series_id,
        "original_date": original_date,
        "action": "deleted",
        "new_title": None,
        "new_amount": None,
        "new_date": None,
        "is_paid": None,
        "linked_transaction_id": None,
    }
    if isinstance(exception, Modified):
        values.update(
            action="modified",
            new_title=exception.title,
            new_amount=exception.amount,
            new_date=exception.date,
            is_paid=exception.paid,
            linked_transaction_id=exception.linked_transaction,
        )
    return values


def _row_to_series(row, exceptions: dict[date, OccurrenceException]) -> Series:
    raw_days = row["recurrence_days_of_week"]
    days = [int(day) for day in raw_days.split(",") if day.strip()] if raw_days else None
    rule = build_rule(
        kind=row["recurrence_type"] or "once",
        interval=row["recurrence_interval"] or 1,
        days_of_week=days,
        end_type=row["recurrence_end_type"] or "never",
        end_count=row["recurrence_end_count"],
        end_date=row["recurrence_end_date"],
    )
    return Series(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        amount=row["amount"],
        anchor_date=row["due_date"],
        rule=rule,
        paid=bool(row["is_paid"]),
        links=ExternalLinks(
            template_id=row["template_id"],
            fixed_expense_id=row["fixed_expense_id"],
            transaction_id=row["linked_transaction_id"],
        ),
        exceptions=exceptions,
    )


def _row_to_exception(row) -> OccurrenceException:
    if row["action"] == "deleted":
        return Deleted()
    return Modified(
        title=row["new_title"],
        amount=row["new_amount"],
        date=row["new_date"],
        paid=row["is_paid"],
        linked_transaction=row["linked_transaction_id"],
    )
