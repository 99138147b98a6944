import unittest
from datetime import date
from decimal import Decimal

from pennywise.aggregation_engine import (
    bucket_key,
    budget_vs_actual,
    detailed_income_vs_expenses,
    enhanced_budget_comparison,
    fixed_vs_variable,
    group_records,
    income_sources,
    income_vs_expenses,
    monthly_totals,
    normalize_records,
    subcategory_breakdown,
)
from pennywise.currency_conversion import Currency, CurrencyBook
from pennywise.records import EARNING, EXPENSE, Budget, Lookups, Transaction

USD = Currency(id=1, code="USD", exchange_rate=Decimal("1"), is_default=True)
EUR = Currency(id=2, code="EUR", exchange_rate=Decimal("1.25"))
BOOK = CurrencyBook([USD, EUR])
LOOKUPS = Lookups(
    categories={1: "Food", 2: "Rent"},
    subcategories={10: "Groceries", 11: "Dining"},
    subcategory_parents={10: 1, 11: 1},
    payment_methods={5: "Card"},
    tags={7: "Weekend", 8: "Work"},
    tag_colors={7: "#ff0000", 8: None},
)


def txn(txn_id, amount, when, kind=EXPENSE, **extra):
    values = dict(currency_id=1)
    values.update(extra)
    return Transaction(id=txn_id, user_id=1, kind=kind, amount=Decimal(amount), date=when, **values)


class NormalizeTests(unittest.TestCase):
    def test_converts_before_summing(self) -> None:
        records = [
            txn(1, "100", date(2024, 3, 1), currency_id=2),
            txn(2, "10", date(2024, 3, 2)),
            txn(3, "5", date(2024, 3, 3), currency_id=None),
        ]
        converted, repairs = normalize_records(records, USD, BOOK)
        self.assertEqual([item.amount for item in converted], [Decimal("125.00"), Decimal("10"), Decimal("5")])
        self.assertEqual(len(repairs), 1)
        self.assertEqual(repairs[0].record_id, 3)


class GroupingTests(unittest.TestCase):
    def setUp(self) -> None:
        records = [
            txn(1, "30", date(2024, 1, 1), category_id=1, subcategory_id=10, tag_ids=(7,), payment_method_id=5),
            txn(2, "20", date(2024, 1, 1), category_id=1, subcategory_id=11, tag_ids=(7, 8)),
            txn(3, "900", date(2024, 1, 8), category_id=2),
            txn(4, "15", date(2024, 2, 29)),
            txn(5, "99", date(2024, 3, 1), category_id=1),
        ]
        self.converted, _ = normalize_records(records, USD, BOOK)
        self.start = date(2024, 1, 1)
        self.end = date(2024, 2, 29)

    def test_bucket_keys(self) -> None:
        self.assertEqual(bucket_key(date(2024, 1, 1), "day"), "2024-01-01")
        self.assertEqual(bucket_key(date(2024, 1, 1), "week"), "2024-W01")
        self.assertEqual(bucket_key(date(2021, 1, 3), "week"), "2020-W53")
        self.assertEqual(bucket_key(date(2024, 1, 1), "month"), "2024-01")

    def test_daily_buckets_are_sparse_and_ascending(self) -> None:
        groups = group_records(self.converted, "day", self.start, self.end)
        self.assertEqual([g["key"] for g in groups], ["2024-01-01", "2024-01-08", "2024-02-29"])
        self.assertEqual(groups[0], {"key": "2024-01-01", "total": Decimal("50"), "count": 2, "average": Decimal("25")})

    def test_monthly_buckets_respect_inclusive_window(self) -> None:
        groups = group_records(self.converted, "month", self.start, self.end)
        self.assertEqual([(g["key"], g["total"]) for g in groups], [("2024-01", Decimal("950")), ("2024-02", Decimal("15"))])

    def test_categories_sorted_by_total_and_skip_missing(self) -> None:
        groups = group_records(self.converted, "category", self.start, self.end, LOOKUPS)
        self.assertEqual([g["key"] for g in groups], ["Rent", "Food"])
        self.assertEqual(groups[1]["count"], 2)

    def test_tags_count_each_tag_and_carry_color(self) -> None:
        groups = group_records(self.converted, "tag", self.start, self.end, LOOKUPS)
        self.assertEqual(
            [(g["key"], g["total"], g["color"]) for g in groups],
            [("Weekend", Decimal("50"), "#ff0000"), ("Work", Decimal("20"), None)],
        )

    def test_payment_methods(self) -> None:
        groups = group_records(self.converted, "payment_method", self.start, self.end, LOOKUPS)
        self.assertEqual([(g["key"], g["count"]) for g in groups], [("Card", 1)])

    def test_unknown_grouping_rejected(self) -> None:
        with self.assertRaises(ValueError):
            group_records(self.converted, "hour", self.start, self.end)

    def test_monthly_totals(self) -> None:
        totals = monthly_totals(self.converted, self.start, date(2024, 3, 31), EXPENSE)
        self.assertEqual([key for key, _ in totals], ["2024-01", "2024-02", "2024-03"])

    def test_subcategory_breakdown(self) -> None:
        breakdown = subcategory_breakdown(self.converted, self.start, self.end, LOOKUPS)
        food = breakdown[0]
        self.assertEqual(food["category"], {"id": 1, "name": "Food"})
        self.assertEqual(food["total"], Decimal("50"))
        self.assertEqual([s["name"] for s in food["subcategories"]], ["Groceries", "Dining"])
        self.assertAlmostEqual(food["subcategories"][0]["percentage"], 60.0)
        self.assertEqual(breakdown[1]["subcategories"][0]["name"], "Uncategorized")


class BudgetComparisonTests(unittest.TestCase):
    def setUp(self) -> None:
        records = [
            txn(1, "40", date(2024, 4, 2), category_id=1),
            txn(2, "60", date(2024, 4, 3), category_id=1),
            txn(3, "200", date(2024, 4, 3), category_id=2),
            txn(4, "500", date(2024, 5, 3), category_id=1),
        ]
        self.converted, _ = normalize_records(records, USD, BOOK)
        self.start = date(2024, 4, 1)
        self.end = date(2024, 4, 30)

    def test_overlapping_budgets_only(self) -> None:
        budgets = [
            Budget(id=1, user_id=1, amount=Decimal("80"), currency_id=2, start_date=date(2024, 4, 1), category_id=1),
            Budget(id=2, user_id=1, amount=Decimal("80"), currency_id=1, start_date=date(2024, 5, 1), category_id=1),
            Budget(
                id=3,
                user_id=1,
                amount=Decimal("80"),
                currency_id=1,
                start_date=date(2024, 3, 1),
                end_date=date(2024, 3, 31),
            ),
        ]
        rows = budget_vs_actual(budgets, self.converted, self.start, self.end, USD, BOOK)
        self.assertEqual([row["id"] for row in rows], [1])
        self.assertEqual(rows[0]["budget_amount"], Decimal("100.00"))
        self.assertEqual(rows[0]["spent"], Decimal("100"))
        self.assertEqual(rows[0]["remaining"], Decimal("0"))
        self.assertEqual(rows[0]["percent_used"], 100.0)

    def test_uncategorized_budget_measures_all_expenses(self) -> None:
        budget = Budget(id=4, user_id=1, amount=Decimal("600"), currency_id=1, start_date=date(2024, 1, 1))
        rows = budget_vs_actual([budget], self.converted, self.start, self.end, USD, BOOK)
        self.assertEqual(rows[0]["spent"], Decimal("300"))
        self.assertEqual(rows[0]["percent_used"], 50.0)

    def test_zero_budget_amount_reports_zero_percent(self) -> None:
        budget = Budget(id=5, user_id=1, amount=Decimal("0"), currency_id=1, start_date=date(2024, 4, 1), category_id=1)
        rows = budget_vs_actual([budget], self.converted, self.start, self.end, USD, BOOK)
        self.assertEqual(rows[0]["percent_used"], 0.0)

    def test_enhanced_comparison_insights(self) -> None:
        budget = Budget(id=1, user_id=1, amount=Decimal("80"), currency_id=1, start_date=date(2024, 4, 1), category_id=1)
        rows = enhanced_budget_comparison([budget], self.converted, self.start, self.end, USD, BOOK)
        insights = rows[0]["insights"]
        self.assertTrue(insights["over_budget"])
        self.assertFalse(insights["significantly_under"])
        self.assertEqual(insights["daily_average"], Decimal("100") / 30)
        self.assertEqual([point["cumulative"] for point in insights["spending_trend"]], [Decimal("40"), Decimal("100")])


class IncomeExpenseTests(unittest.TestCase):
    def setUp(self) -> None:
        records = [
            txn(1, "1000", date(2024, 1, 15), kind=EARNING, recurring=True, source="Salary"),
            txn(2, "200", date(2024, 1, 20), kind=EARNING, source="Freelance"),
            txn(3, "300", date(2024, 1, 5), recurring=True),
            txn(4, "100", date(2024, 1, 6), recurring=None),
            txn(5, "1000", date(2024, 2, 15), kind=EARNING, recurring=True, source="Salary"),
            txn(6, "1200", date(2024, 2, 16)),
        ]
        self.converted, _ = normalize_records(records, USD, BOOK)
        self.start = date(2024, 1, 1)
        self.end = date(2024, 2, 29)

    def test_fixed_vs_variable(self) -> None:
        result = fixed_vs_variable(self.converted, self.start, date(2024, 1, 31))
        self.assertEqual(result["fixed"]["amount"], Decimal("300"))
        self.assertEqual(result["variable"]["amount"], Decimal("100"))
        self.assertEqual(result["fixed"]["percentage"], 75.0)

    def test_fixed_vs_variable_empty_window(self) -> None:
        result = fixed_vs_variable(self.converted, date(2023, 1, 1), date(2023, 1, 31))
        self.assertEqual(result["fixed"]["percentage"], 0.0)
        self.assertEqual(result["total"], Decimal("0"))

    def test_income_vs_expenses(self) -> None:
        result = income_vs_expenses(self.converted, self.start, date(2024, 1, 31))
        self.assertEqual(result["savings"], Decimal("800"))
        self.assertAlmostEqual(result["spending_ratio"], 100 * 400 / 1200)

    def test_detailed_income_vs_expenses(self) -> None:
        result = detailed_income_vs_expenses(self.converted, self.start, self.end)
        months = result["monthly_data"]
        self.assertEqual([m["month"] for m in months], ["Jan 2024", "Feb 2024"])
        self.assertEqual(months[1]["savings"], Decimal("-200"))
        self.assertEqual(result["summary"]["total_savings"], Decimal("600"))
        self.assertEqual(result["summary"]["month_count"], 2)

    def test_income_sources(self) -> None:
        result = income_sources(self.converted, self.start, self.end)
        self.assertEqual(result, [{"source": "Salary", "total": Decimal("2000")}, {"source": "Freelance", "total": Decimal("200")}])


if __name__ == "__main__":
    unittest.main()
