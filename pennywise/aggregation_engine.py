from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Optional

import structlog

from pennywise.currency_conversion import (
    Currency,
    CurrencyBook,
    CurrencyRepair,
    convert_or_original,
    resolve_record_currency,
)
from pennywise.ratios import percent_of, safe_average
from pennywise.records import EARNING, EXPENSE, Budget, Lookups, Transaction

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
TIME_BUCKETS = {"day", "week", "month"}
NAMED_GROUPINGS = {"category", "subcategory", "tag", "payment_method"}
GROUPINGS = TIME_BUCKETS | NAMED_GROUPINGS
UNCATEGORIZED = "Uncategorized"
SIGNIFICANTLY_UNDER_PERCENT = 80
OVER_BUDGET_PERCENT = 100


@dataclass(frozen=True)
class ConvertedRecord:
    record: Transaction
    amount: Decimal

    @property
    def date(self) -> date:
        return self.record.date

    @property
    def kind(self) -> str:
        return self.record.kind


def normalize_records(
    records: Iterable[Transaction],
    target: Currency,
    book: CurrencyBook,
) -> tuple[list[ConvertedRecord], list[CurrencyRepair]]:
    """Convert every record into ``target`` before any summation happens."""
    converted: list[ConvertedRecord] = []
    repairs: list[CurrencyRepair] = []
    for record in records:
        source, repair = resolve_record_currency(
            book, record.currency_id, record_kind=record.kind, record_id=record.id
        )
        if repair is not None:
            repairs.append(repair)
        amount = convert_or_original(
            record.amount, source, target, record_kind=record.kind, record_id=record.id
        )
        converted.append(ConvertedRecord(record=record, amount=amount))
    return converted, repairs


def in_window(
    converted: Iterable[ConvertedRecord],
    start: date,
    end: date,
    kind: Optional[str] = None,
) -> list[ConvertedRecord]:
    return [
        item
        for item in converted
        if start <= item.date <= end and (kind is None or item.kind == kind)
    ]


def total_of(converted: Iterable[ConvertedRecord]) -> Decimal:
    return sum((item.amount for item in converted), ZERO)


def bucket_key(value: date, bucket: str) -> str:
    if bucket == "day":
        return value.isoformat()
    if bucket == "week":
        iso_year, iso_week, _ = value.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if bucket == "month":
        return value.strftime("%Y-%m")
    raise ValueError(f"Unsupported time bucket: {bucket}")


def group_records(
    converted: Iterable[ConvertedRecord],
    key: str,
    start: date,
    end: date,
    lookups: Optional[Lookups] = None,
) -> list[dict]:
    """Sum records within ``[start, end]`` into ``{key, total, count, average}`` groups.

    Time buckets come back in ascending key order and only for buckets that
    have records. Named groupings are ordered by total, largest first, and
    skip records without the grouping attribute.
    """
    if key not in GROUPINGS:
        raise ValueError(f"Unsupported grouping: {key}")
    lookups = lookups or Lookups()
    window = [item for item in converted if start <= item.date <= end]

    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    counts: dict[str, int] = defaultdict(int)
    for item in window:
        for group in _group_names(item.record, key, lookups):
            totals[group] += item.amount
            counts[group] += 1

    groups = [
        {
            "key": group,
            "total": totals[group],
            "count": counts[group],
            "average": safe_average(totals[group], counts[group]),
        }
        for group in totals
    ]
    if key in TIME_BUCKETS:
        groups.sort(key=lambda entry: entry["key"])
    else:
        groups.sort(key=lambda entry: (-entry["total"], entry["key"]))
    if key == "tag":
        colors = {name: lookups.tag_colors.get(tag_id) for tag_id, name in lookups.tags.items()}
        for entry in groups:
            entry["color"] = colors.get(entry["key"])
    return groups


def monthly_totals(
    converted: Iterable[ConvertedRecord],
    start: date,
    end: date,
    kind: Optional[str] = None,
) -> list[tuple[str, Decimal]]:
    return [
        (entry["key"], entry["total"])
        for entry in group_records(in_window(converted, start, end, kind), "month", start, end)
    ]


def overlaps(budget: Budget, start: date, end: date) -> bool:
    return budget.start_date <= end and (budget.end_date is None or budget.end_date >= start)


def budget_vs_actual(
    budgets: Iterable[Budget],
    converted: Iterable[ConvertedRecord],
    start: date,
    end: date,
    target: Currency,
    book: CurrencyBook,
    repairs: Optional[list[CurrencyRepair]] = None,
) -> list[dict]:
    """Compare each overlapping budget with expenses inside the report window.

    A budget without a category is measured against all expenses. Budgets
    missing a currency are measured in the default one and reported in
    ``repairs``.
    """
    expenses = in_window(converted, start, end, EXPENSE)
    rows = []
    for budget in budgets:
        if not overlaps(budget, start, end):
            continue
        source, repair = resolve_record_currency(
            book, budget.currency_id, record_kind="budget", record_id=budget.id
        )
        if repair is not None and repairs is not None:
            repairs.append(repair)
        budget_amount = convert_or_original(
            budget.amount, source, target, record_kind="budget", record_id=budget.id
        )
        spent = total_of(
            item
            for item in expenses
            if budget.category_id is None or item.record.category_id == budget.category_id
        )
        rows.append(
            {
                "id": budget.id,
                "budget_name": budget.name,
                "category_id": budget.category_id,
                "budget_amount": budget_amount,
                "spent": spent,
                "remaining": budget_amount - spent,
                "percent_used": percent_of(spent, budget_amount),
            }
        )
    return rows


def enhanced_budget_comparison(
    budgets: Iterable[Budget],
    converted: Iterable[ConvertedRecord],
    start: date,
    end: date,
    target: Currency,
    book: CurrencyBook,
    repairs: Optional[list[CurrencyRepair]] = None,
) -> list[dict]:
    budgets = list(budgets)
    converted = list(converted)
    by_id = {budget.id: budget for budget in budgets}
    expenses = in_window(converted, start, end, EXPENSE)
    window_days = max(1, (end - start).days + 1)

    rows = budget_vs_actual(budgets, converted, start, end, target, book, repairs)
    for row in rows:
        budget = by_id[row["id"]]
        daily = group_records(
            [
                item
                for item in expenses
                if budget.category_id is None or item.record.category_id == budget.category_id
            ],
            "day",
            start,
            end,
        )
        running_total = ZERO
        trend = []
        for entry in daily:
            running_total += entry["total"]
            trend.append(
                {
                    "date": entry["key"],
                    "daily": entry["total"],
                    "cumulative": running_total,
                    "budget_percent": percent_of(running_total, row["budget_amount"]),
                }
            )
        row["insights"] = {
            "significantly_under": row["percent_used"] < SIGNIFICANTLY_UNDER_PERCENT,
            "over_budget": row["percent_used"] > OVER_BUDGET_PERCENT,
            "daily_average": row["spent"] / window_days,
            "spending_trend": trend,
        }
    return rows


def fixed_vs_variable(
    converted: Iterable[ConvertedRecord],
    start: date,
    end: date,
    kind: str = EXPENSE,
    labels: tuple[str, str] = ("fixed", "variable"),
) -> dict:
    """Split records on the ``recurring`` flag; a missing flag counts as variable."""
    window = in_window(converted, start, end, kind)
    fixed = total_of(item for item in window if item.record.recurring is True)
    variable = total_of(item for item in window if item.record.recurring is not True)
    total = fixed + variable
    fixed_label, variable_label = labels
    return {
        fixed_label: {"amount": fixed, "percentage": percent_of(fixed, total)},
        variable_label: {"amount": variable, "percentage": percent_of(variable, total)},
        "total": total,
    }


def income_vs_expenses(converted: Iterable[ConvertedRecord], start: date, end: date) -> dict:
    converted = list(converted)
    income = total_of(in_window(converted, start, end, EARNING))
    expenses = total_of(in_window(converted, start, end, EXPENSE))
    spending_ratio = percent_of(expenses, income) if income > ZERO else 0.0
    return {
        "income": income,
        "expenses": expenses,
        "savings": income - expenses,
        "spending_ratio": spending_ratio,
        "saving_ratio": 100 - spending_ratio if income > ZERO else 0.0,
    }


def detailed_income_vs_expenses(converted: Iterable[ConvertedRecord], start: date, end: date) -> dict:
    converted = list(converted)
    income_by_month = dict(monthly_totals(converted, start, end, EARNING))
    expenses_by_month = dict(monthly_totals(converted, start, end, EXPENSE))

    monthly_data = []
    for month in sorted(set(income_by_month) | set(expenses_by_month)):
        income = income_by_month.get(month, ZERO)
        expenses = expenses_by_month.get(month, ZERO)
        savings = income - expenses
        monthly_data.append(
            {
                "month": month_label(month),
                "month_key": month,
                "income": income,
                "expenses": expenses,
                "savings": savings,
                "savings_rate": percent_of(savings, income) if income > ZERO else 0.0,
            }
        )

    total_income = sum((row["income"] for row in monthly_data), ZERO)
    total_expenses = sum((row["expenses"] for row in monthly_data), ZERO)
    total_savings = total_income - total_expenses
    month_count = len(monthly_data)
    return {
        "monthly_data": monthly_data,
        "summary": {
            "total_income": total_income,
            "total_expenses": total_expenses,
            "total_savings": total_savings,
            "average_monthly_income": safe_average(total_income, month_count),
            "average_monthly_expenses": safe_average(total_expenses, month_count),
            "average_monthly_savings": safe_average(total_savings, month_count),
            "overall_savings_rate": percent_of(total_savings, total_income) if total_income > ZERO else 0.0,
            "month_count": month_count,
        },
    }


def subcategory_breakdown(
    converted: Iterable[ConvertedRecord],
    start: date,
    end: date,
    lookups: Lookups,
    kind: str = EXPENSE,
) -> list[dict]:
    window = in_window(converted, start, end, kind)
    result = []
    for category_id, category_name in sorted(lookups.categories.items()):
        in_category = [item for item in window if item.record.category_id == category_id]
        category_total = total_of(in_category)

        subcategories = []
        for subcategory_id, parent_id in sorted(lookups.subcategory_parents.items()):
            if parent_id != category_id:
                continue
            matched = [item for item in window if item.record.subcategory_id == subcategory_id]
            amount = total_of(matched)
            subcategories.append(
                {
                    "id": subcategory_id,
                    "name": lookups.subcategories.get(subcategory_id, ""),
                    "amount": amount,
                    "percentage": percent_of(amount, category_total),
                    "count": len(matched),
                }
            )

        unassigned = [item for item in in_category if item.record.subcategory_id is None]
        unassigned_total = total_of(unassigned)
        if unassigned_total > ZERO:
            subcategories.append(
                {
                    "id": None,
                    "name": UNCATEGORIZED,
                    "amount": unassigned_total,
                    "percentage": percent_of(unassigned_total, category_total),
                    "count": len(unassigned),
                }
            )

        result.append(
            {
                "category": {"id": category_id, "name": category_name},
                "total": category_total,
                "subcategories": subcategories,
            }
        )
    return result


def income_sources(converted: Iterable[ConvertedRecord], start: date, end: date) -> list[dict]:
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for item in in_window(converted, start, end, EARNING):
        totals[item.record.source or UNCATEGORIZED] += item.amount
    return [
        {"source": source, "total": total}
        for source, total in sorted(totals.items(), key=lambda entry: (-entry[1], entry[0]))
    ]


def _group_names(record: Transaction, key: str, lookups: Lookups) -> list[str]:
    if key in TIME_BUCKETS:
        return [bucket_key(record.date, key)]
    if key == "tag":
        return [lookups.tags[tag_id] for tag_id in record.tag_ids if tag_id in lookups.tags]

    attribute: Callable[[Transaction], Optional[int]]
    names: dict[int, str]
    if key == "category":
        attribute, names = (lambda txn: txn.category_id), lookups.categories
    elif key == "subcategory":
        attribute, names = (lambda txn: txn.subcategory_id), lookups.subcategories
    else:
        attribute, names = (lambda txn: txn.payment_method_id), lookups.payment_methods

    value = attribute(record)
    if value is None or value not in names:
        return []
    return [names[value]]


def month_label(month_key: str) -> str:
    year, month = month_key.split("-")
    return date(int(year), int(month), 1).strftime("%b %Y")
