import unittest
from datetime import date

from pennywise.errors import InvalidPeriodConfiguration
from pennywise.period_calculator import (
    add_months,
    current_period_bounds,
    end_date_for,
    is_time_frame_expired,
    next_renewal_for,
    periods_in_time_frame,
    validate_frequency,
    validate_period,
    validate_time_frame,
)


class EndDateTests(unittest.TestCase):
    def test_fixed_time_frames(self) -> None:
        start = date(2024, 1, 1)
        self.assertEqual(end_date_for(start, "1_week"), date(2024, 1, 7))
        self.assertEqual(end_date_for(start, "1_month"), date(2024, 1, 31))
        self.assertEqual(end_date_for(start, "3_months"), date(2024, 3, 31))
        self.assertEqual(end_date_for(start, "6_months"), date(2024, 6, 30))
        self.assertEqual(end_date_for(start, "1_year"), date(2024, 12, 31))
        self.assertEqual(end_date_for(start, "2_years"), date(2025, 12, 31))

    def test_custom_time_frames(self) -> None:
        start = date(2024, 3, 10)
        self.assertEqual(end_date_for(start, "custom", 10, "days"), date(2024, 3, 19))
        self.assertEqual(end_date_for(start, "custom", 2, "weeks"), date(2024, 3, 23))
        self.assertEqual(end_date_for(start, "custom", 2, "months"), date(2024, 5, 9))
        self.assertEqual(end_date_for(start, "custom", 1, "years"), date(2025, 3, 9))

    def test_unknown_time_frame_defaults_to_one_month(self) -> None:
        self.assertEqual(end_date_for(date(2024, 2, 1), "fortnight"), date(2024, 2, 29))
        self.assertEqual(end_date_for(date(2024, 2, 1), None), date(2024, 2, 29))
        self.assertEqual(end_date_for(date(2024, 2, 1), "custom"), date(2024, 2, 29))


class RenewalTests(unittest.TestCase):
    def test_daily_period_is_single_day(self) -> None:
        self.assertEqual(next_renewal_for(date(2024, 5, 5), "daily"), (date(2024, 5, 5), date(2024, 5, 6)))

    def test_frequencies(self) -> None:
        start = date(2024, 1, 15)
        self.assertEqual(next_renewal_for(start, "weekly"), (date(2024, 1, 21), date(2024, 1, 22)))
        self.assertEqual(next_renewal_for(start, "monthly"), (date(2024, 2, 14), date(2024, 2, 15)))
        self.assertEqual(next_renewal_for(start, "quarterly"), (date(2024, 4, 14), date(2024, 4, 15)))
        self.assertEqual(next_renewal_for(start, "yearly"), (date(2025, 1, 14), date(2025, 1, 15)))

    def test_unknown_frequency_behaves_monthly(self) -> None:
        start = date(2024, 1, 15)
        self.assertEqual(next_renewal_for(start, "biweekly"), next_renewal_for(start, "monthly"))
        self.assertEqual(next_renewal_for(start, None), next_renewal_for(start, "monthly"))

    def test_month_end_clamps(self) -> None:
        self.assertEqual(add_months(date(2024, 1, 31), 1), date(2024, 2, 29))
        self.assertEqual(add_months(date(2023, 1, 31), 1), date(2023, 2, 28))
        self.assertEqual(add_months(date(2024, 3, 31), -1), date(2024, 2, 29))
        self.assertEqual(next_renewal_for(date(2024, 1, 31), "monthly"), (date(2024, 2, 28), date(2024, 2, 29)))


class PeriodCountTests(unittest.TestCase):
    def test_counts_per_period(self) -> None:
        start = date(2024, 1, 1)
        end = date(2024, 3, 31)
        self.assertEqual(periods_in_time_frame(start, end, "daily"), 91)
        self.assertEqual(periods_in_time_frame(start, end, "weekly"), 13)
        self.assertEqual(periods_in_time_frame(start, end, "monthly"), 3)
        self.assertEqual(periods_in_time_frame(start, date(2026, 12, 31), "yearly"), 3)

    def test_open_ended_and_unknown(self) -> None:
        self.assertEqual(periods_in_time_frame(date(2024, 1, 1), None, "daily"), 1)
        self.assertEqual(periods_in_time_frame(date(2024, 1, 1), date(2024, 6, 1), "hourly"), 1)

    def test_current_period_bounds(self) -> None:
        today = date(2024, 2, 14)
        self.assertEqual(current_period_bounds("daily", today), (today, today))
        self.assertEqual(current_period_bounds("weekly", today), (date(2024, 2, 12), date(2024, 2, 18)))
        self.assertEqual(current_period_bounds("Monthly", today), (date(2024, 2, 1), date(2024, 2, 29)))
        self.assertEqual(current_period_bounds("yearly", today), (date(2024, 1, 1), date(2024, 12, 31)))
        self.assertEqual(current_period_bounds(None, today), (date(2024, 2, 1), date(2024, 2, 29)))

    def test_expiry(self) -> None:
        self.assertFalse(is_time_frame_expired(None, date(2024, 1, 1)))
        self.assertFalse(is_time_frame_expired(date(2024, 1, 1), date(2024, 1, 1)))
        self.assertTrue(is_time_frame_expired(date(2024, 1, 1), date(2024, 1, 2)))


class ValidationTests(unittest.TestCase):
    def test_accepts_known_values(self) -> None:
        self.assertEqual(validate_frequency(" Weekly "), "weekly")
        self.assertEqual(validate_period("yearly"), "yearly")
        self.assertEqual(validate_time_frame("3_months"), "3_months")
        self.assertEqual(validate_time_frame("custom", 4, "weeks"), "custom")

    def test_rejects_unknown_values(self) -> None:
        with self.assertRaises(InvalidPeriodConfiguration):
            validate_frequency("biweekly")
        with self.assertRaises(InvalidPeriodConfiguration):
            validate_period("quarterly")
        with self.assertRaises(InvalidPeriodConfiguration):
            validate_time_frame("forever")

    def test_custom_requires_value_and_unit(self) -> None:
        with self.assertRaises(InvalidPeriodConfiguration):
            validate_time_frame("custom", None, "days")
        with self.assertRaises(InvalidPeriodConfiguration):
            validate_time_frame("custom", 3, "hours")

    def test_invalid_configuration_is_value_error(self) -> None:
        with self.assertRaises(ValueError):
            validate_frequency("")


if __name__ == "__main__":
    unittest.main()
