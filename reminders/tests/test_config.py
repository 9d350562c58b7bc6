import os
import unittest
from datetime import timezone
from unittest import mock

from reminders.config import load_settings


class SettingsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = load_settings()

        self.assertEqual(settings.database_url, "sqlite:///./reminders.db")
        self.assertEqual(settings.connect_args, {"check_same_thread": False})
        self.assertEqual(settings.lookback_months, 1)
        self.assertEqual(settings.lookahead_months, 2)
        self.assertEqual(settings.log_level, "INFO")
        self.assertTrue(settings.log_json)

    def test_invalid_and_negative_months_fall_back(self) -> None:
        env = {
            "REMINDER_LOOKBACK_MONTHS": "many",
            "REMINDER_LOOKAHEAD_MONTHS": "-3",
            "DATABASE_URL": "postgresql://localhost/reminders",
            "LOG_JSON": "false",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = load_settings()

        self.assertEqual(settings.lookback_months, 1)
        self.assertEqual(settings.lookahead_months, 0)
        self.assertEqual(settings.connect_args, {})
        self.assertFalse(settings.log_json)

    def test_unknown_timezone_uses_utc(self) -> None:
        with mock.patch.dict(os.environ, {"REMINDER_TIMEZONE": "Mars/Olympus"}, clear=True):
            settings = load_settings()

        self.assertIs(settings.timezone, timezone.utc)


if __name__ == "__main__":
    unittest.main()
