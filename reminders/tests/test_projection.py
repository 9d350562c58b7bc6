import unittest
from datetime import date, datetime
from decimal import Decimal

from reminders.recurrence import After, OnDate, RecurrenceRule
from reminders.projection import lookahead_horizon, project, project_all, project_dates
from reminders.series import ProjectedOccurrence, Series


def make_series(anchor: date, rule: RecurrenceRule, **kwargs) -> Series:
    return Series(
        id=kwargs.pop("id", 1),
        title=kwargs.pop("title", "Rent"),
        amount=kwargs.pop("amount", Decimal("950")),
        anchor_date=anchor,
        rule=rule,
        **kwargs,
    )


class ProjectDatesTests(unittest.TestCase):
    def test_weekly_multi_day_two_weeks_ahead(self) -> None:
        series = make_series(
            date(2025, 6, 2), RecurrenceRule(kind="weekly", days_of_week=frozenset({1, 4}))
        )

        dates = project_dates(series, now=date(2025, 6, 2), horizon=date(2025, 6, 16))

        self.assertEqual(dates, [date(2025, 6, 5), date(2025, 6, 9), date(2025, 6, 12)])

    def test_after_count_stops_at_count(self) -> None:
        series = make_series(date(2025, 1, 15), RecurrenceRule(kind="monthly", end=After(2)))

        dates = project_dates(series, now=date(2025, 1, 20), horizon=date(2026, 1, 1))

        self.assertEqual(dates, [date(2025, 2, 15), date(2025, 3, 15)])

    def test_on_date_stops_after_end_date(self) -> None:
        series = make_series(
            date(2025, 1, 6), RecurrenceRule(kind="weekly", end=OnDate(date(2025, 1, 20)))
        )

        dates = project_dates(series, now=date(2025, 1, 1), horizon=date(2025, 12, 31))

        self.assertEqual(dates, [date(2025, 1, 13), date(2025, 1, 20)])

    def test_once_never_projects(self) -> None:
        series = make_series(date(2025, 1, 6), RecurrenceRule(kind="once"))

        self.assertEqual(project_dates(series, date(2025, 1, 1), date(2026, 1, 1)), [])

    def test_skips_past_occurrences(self) -> None:
        series = make_series(date(2025, 1, 1), RecurrenceRule(kind="daily"))

        dates = project_dates(series, now=date(2025, 1, 10), horizon=date(2025, 1, 13))

        self.assertEqual(dates, [date(2025, 1, 11), date(2025, 1, 12)])

    def test_accepts_datetime_now(self) -> None:
        series = make_series(date(2025, 1, 1), RecurrenceRule(kind="daily"))

        dates = project_dates(
            series, now=datetime(2025, 1, 10, 23, 59), horizon=date(2025, 1, 12)
        )

        self.assertEqual(dates, [date(2025, 1, 11)])

    def test_never_returns_dates_on_or_past_horizon(self) -> None:
        horizon = date(2025, 3, 1)
        rules = [
            RecurrenceRule(kind="daily"),
            RecurrenceRule(kind="custom"),
            RecurrenceRule(kind="weekly", days_of_week=frozenset(range(7))),
            RecurrenceRule(kind="monthly", end=After(100)),
            RecurrenceRule(kind="yearly", end=OnDate(date(2030, 1, 1))),
        ]
        for rule in rules:
            series = make_series(date(2024, 2, 29), rule)
            dates = project_dates(series, now=date(2025, 1, 1), horizon=horizon)
            self.assertTrue(all(item < horizon for item in dates), rule)
            self.assertEqual(dates, sorted(set(dates)))


class ProjectTests(unittest.TestCase):
    def test_lookahead_horizon_covers_whole_months(self) -> None:
        self.assertEqual(lookahead_horizon(date(2025, 6, 15), 2), date(2025, 9, 1))
        self.assertEqual(lookahead_horizon(date(2025, 11, 30), 1), date(2026, 1, 1))
        self.assertEqual(lookahead_horizon(date(2025, 6, 15), 0), date(2025, 7, 1))

    def test_project_includes_materialized_anchor(self) -> None:
        series = make_series(date(2025, 6, 10), RecurrenceRule(kind="monthly"))

        occurrences = project(series, now=date(2025, 6, 15), lookahead_months=2)

        self.assertEqual(
            occurrences,
            [
                ProjectedOccurrence(
                    source_series_id=1,
                    scheduled_date=date(2025, 6, 10),
                    original_date=date(2025, 6, 10),
                    title="Rent",
                    amount=Decimal("950"),
                    paid=False,
                    is_materialized=True,
                ),
                ProjectedOccurrence(
                    source_series_id=1,
                    scheduled_date=date(2025, 7, 10),
                    original_date=date(2025, 7, 10),
                    title="Rent",
                    amount=Decimal("950"),
                ),
                ProjectedOccurrence(
                    source_series_id=1,
                    scheduled_date=date(2025, 8, 10),
                    original_date=date(2025, 8, 10),
                    title="Rent",
                    amount=Decimal("950"),
                ),
            ],
        )

    def test_project_identity_is_series_and_original_date(self) -> None:
        series = make_series(date(2025, 6, 10), RecurrenceRule(kind="monthly"), id=7)

        keys = [item.key for item in project(series, date(2025, 6, 15), 1)]

        self.assertEqual(keys, [(7, date(2025, 6, 10)), (7, date(2025, 7, 10))])

    def test_project_all_merges_series_by_date(self) -> None:
        rent = make_series(date(2025, 6, 10), RecurrenceRule(kind="monthly"), id=1)
        phone = make_series(
            date(2025, 6, 3), RecurrenceRule(kind="once"), id=2, title="Phone"
        )

        occurrences = project_all([rent, phone], date(2025, 6, 1), 0)

        self.assertEqual(
            [(item.source_series_id, item.scheduled_date) for item in occurrences],
            [(2, date(2025, 6, 3)), (1, date(2025, 6, 10))],
        )


if __name__ == "__main__":
    unittest.main()
