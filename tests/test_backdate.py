from __future__ import annotations

import unittest
from datetime import datetime, timezone

from momentum.backdate import format_backdated_start_confirmation, parse_backdated_start_input

MINUTE = 60_000


def _ms(*args: int) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


NOW = _ms(2026, 2, 11, 10, 0)


class DurationInputTests(unittest.TestCase):
    def test_minutes_ago_forms(self) -> None:
        self.assertEqual(parse_backdated_start_input("45", NOW), NOW - 45 * MINUTE)
        self.assertEqual(parse_backdated_start_input("90m", NOW), NOW - 90 * MINUTE)
        self.assertEqual(parse_backdated_start_input("1h30m", NOW), NOW - 90 * MINUTE)
        self.assertEqual(parse_backdated_start_input(" 1H 30M ", NOW), NOW - 90 * MINUTE)
        self.assertEqual(parse_backdated_start_input("2h", NOW), NOW - 120 * MINUTE)

    def test_bare_small_number_is_a_duration(self) -> None:
        self.assertEqual(parse_backdated_start_input("9", NOW, "UTC"), NOW - 9 * MINUTE)

    def test_rejects_zero_and_garbage(self) -> None:
        for raw in ("", "   ", "0", "0m", "0h0m", "abc", "1h30", "-5", "1.5h"):
            self.assertIsNone(parse_backdated_start_input(raw, NOW, "UTC"), raw)


class ClockInputTests(unittest.TestCase):
    def test_earlier_today(self) -> None:
        self.assertEqual(parse_backdated_start_input("09:40", NOW, "UTC"), _ms(2026, 2, 11, 9, 40))
        self.assertEqual(parse_backdated_start_input("9:40am", NOW, "UTC"), _ms(2026, 2, 11, 9, 40))
        self.assertEqual(parse_backdated_start_input("12am", NOW, "UTC"), _ms(2026, 2, 11, 0, 0))

    def test_later_time_rolls_back_a_day(self) -> None:
        self.assertEqual(parse_backdated_start_input("11:00", NOW, "UTC"), _ms(2026, 2, 10, 11, 0))
        self.assertEqual(parse_backdated_start_input("9 pm", NOW, "UTC"), _ms(2026, 2, 10, 21, 0))
        self.assertEqual(parse_backdated_start_input("12PM", NOW, "UTC"), _ms(2026, 2, 10, 12, 0))

    def test_exactly_now_rolls_back_a_day(self) -> None:
        self.assertEqual(parse_backdated_start_input("10:00", NOW, "UTC"), _ms(2026, 2, 10, 10, 0))

    def test_invalid_clock_values(self) -> None:
        for raw in ("25:00", "9:60", "13pm", "0am", "24:00", "9:5"):
            self.assertIsNone(parse_backdated_start_input(raw, NOW, "UTC"), raw)

    def test_uses_the_given_zone(self) -> None:
        now = _ms(2026, 2, 10, 22, 30)  # 09:30 in Sydney
        self.assertEqual(parse_backdated_start_input("09:00", now, "Australia/Sydney"), _ms(2026, 2, 10, 22, 0))


class ConfirmationTests(unittest.TestCase):
    def test_same_day(self) -> None:
        started = _ms(2026, 2, 11, 9, 40)
        self.assertEqual(
            format_backdated_start_confirmation(started, NOW, "UTC"),
            "Starting at 9:40 AM (20m ago).",
        )

    def test_previous_day_includes_date(self) -> None:
        started = _ms(2026, 2, 10, 11, 0)
        self.assertEqual(
            format_backdated_start_confirmation(started, NOW, "UTC"),
            "Starting at 11:00 AM on 2026-02-10 (1380m ago).",
        )

    def test_reports_at_least_one_minute(self) -> None:
        self.assertEqual(
            format_backdated_start_confirmation(NOW - 10_000, NOW, "UTC"),
            "Starting at 9:59 AM (1m ago).",
        )


if __name__ == "__main__":
    unittest.main()
