import unittest
from dataclasses import replace
from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine, func, select
from sqlalchemy.pool import StaticPool

from reminders.errors import SeriesNotFound
from reminders.recurrence import After, OnDate, RecurrenceRule
from reminders.series import DELETED, Deleted, ExternalLinks, Modified, Series
from reminders.splitter import split_series
from reminders.store import SeriesStore, reminder_exceptions


def memory_store() -> SeriesStore:
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    store = SeriesStore(engine)
    store.create_schema()
    return store


def sample_series(**kwargs) -> Series:
    values = dict(
        user_id=5,
        title="Internet",
        amount=Decimal("45.90"),
        anchor_date=date(2025, 2, 3),
        rule=RecurrenceRule(kind="weekly", interval=2, days_of_week=frozenset({1, 3}), end=After(6)),
        links=ExternalLinks(template_id="tpl-7", fixed_expense_id="fx-2"),
        exceptions={
            date(2025, 2, 5): DELETED,
            date(2025, 2, 17): Modified(
                title="Internet (promo)",
                amount=Decimal("30"),
                date=date(2025, 2, 18),
                paid=True,
                linked_transaction="txn-3",
            ),
        },
    )
    values.update(kwargs)
    return Series(**values)


class SeriesStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = memory_store()

    def test_round_trips_series_with_exceptions(self) -> None:
        stored = self.store.add(sample_series())

        loaded = self.store.load(stored.id, user_id=5)

        self.assertIsNotNone(loaded.id)
        self.assertEqual(loaded.title, "Internet")
        self.assertEqual(loaded.amount, Decimal("45.90"))
        self.assertEqual(loaded.anchor_date, date(2025, 2, 3))
        self.assertEqual(loaded.rule, sample_series().rule)
        self.assertEqual(loaded.links, ExternalLinks(template_id="tpl-7", fixed_expense_id="fx-2"))
        self.assertIsInstance(loaded.exceptions[date(2025, 2, 5)], Deleted)
        modified = loaded.exceptions[date(2025, 2, 17)]
        self.assertEqual(modified.title, "Internet (promo)")
        self.assertEqual(modified.amount, Decimal("30"))
        self.assertEqual(modified.date, date(2025, 2, 18))
        self.assertTrue(modified.paid)
        self.assertEqual(modified.linked_transaction, "txn-3")

    def test_on_date_end_condition_round_trips(self) -> None:
        rule = RecurrenceRule(kind="monthly", end=OnDate(date(2025, 12, 31)))
        stored = self.store.add(sample_series(rule=rule, exceptions={}))

        self.assertEqual(self.store.load(stored.id).rule, rule)

    def test_load_scopes_by_user(self) -> None:
        stored = self.store.add(sample_series())

        with self.assertRaises(SeriesNotFound):
            self.store.load(stored.id, user_id=99)
        with self.assertRaises(SeriesNotFound):
            self.store.load(stored.id + 100)

    def test_save_replaces_exceptions(self) -> None:
        stored = self.store.add(sample_series())

        saved = self.store.save(stored.with_exceptions({date(2025, 2, 19): DELETED}))

        self.assertEqual(list(saved.exceptions), [date(2025, 2, 19)])

    def test_delete_removes_exceptions(self) -> None:
        stored = self.store.add(sample_series())

        self.store.delete(stored.id, user_id=5)

        with self.assertRaises(SeriesNotFound):
            self.store.load(stored.id)
        with self.store._engine.begin() as conn:
            remaining = conn.execute(
                select(func.count()).select_from(reminder_exceptions)
            ).scalar_one()
        self.assertEqual(remaining, 0)

    def test_delete_unknown_series(self) -> None:
        with self.assertRaises(SeriesNotFound):
            self.store.delete(1234)

    def test_save_split_commits_both_series(self) -> None:
        stored = self.store.add(sample_series())
        terminated, continued = split_series(stored, date(2025, 2, 19))

        first, second = self.store.save_split(terminated, continued)

        self.assertEqual(first.id, stored.id)
        self.assertEqual(first.rule.end, OnDate(date(2025, 2, 18)))
        self.assertNotEqual(second.id, stored.id)
        self.assertEqual(second.anchor_date, date(2025, 2, 19))
        self.assertEqual(len(self.store.list_for_user(5)), 2)

    def test_save_split_is_atomic(self) -> None:
        stored = self.store.add(sample_series())
        terminated, continued = split_series(stored, date(2025, 2, 19))

        with self.assertRaises(ValueError):
            self.store.save_split(terminated, replace(continued, user_id=None))

        reloaded = self.store.load(stored.id)
        self.assertEqual(reloaded.rule.end, After(6))
        self.assertEqual(len(reloaded.exceptions), 2)
        self.assertEqual(len(self.store.list_for_user(5)), 1)

    def test_find_by_linked_transaction(self) -> None:
        by_exception = self.store.add(sample_series())
        by_anchor = self.store.add(
            sample_series(
                exceptions={}, links=ExternalLinks(transaction_id="txn-3"), paid=True
            )
        )
        self.store.add(sample_series(exceptions={}))

        found = self.store.find_by_linked_transaction("txn-3", user_id=5)

        self.assertEqual([series.id for series in found], [by_exception.id, by_anchor.id])

    def test_list_for_user_orders_by_due_date(self) -> None:
        later = self.store.add(sample_series(anchor_date=date(2025, 3, 1), exceptions={}))
        earlier = self.store.add(sample_series(anchor_date=date(2025, 1, 1), exceptions={}))
        self.store.add(sample_series(user_id=6, exceptions={}))

        self.assertEqual(
            [series.id for series in self.store.list_for_user(5)], [earlier.id, later.id]
        )


if __name__ == "__main__":
    unittest.main()
