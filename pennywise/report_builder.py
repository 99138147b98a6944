"""Expense and earning report assembly.

Reports are pure functions of a :class:`ReportSnapshot`: every figure is
computed in the owner's currency at full precision and only rounded when the
result is presented. Money leaves as floats quantized to the currency's
decimal places and ratios leave rounded to two places, so ``ReportResult.data``
is a plain JSON-compatible structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from pennywise import aggregation_engine as agg
from pennywise import forecast_engine
from pennywise.currency_conversion import Currency, CurrencyBook, CurrencyRepair, to_display
from pennywise.period_calculator import add_months, month_start
from pennywise.records import EARNING, EXPENSE, Budget, Lookups, Transaction

DEFAULT_FORECAST_MONTHS = 3
DEFAULT_HISTORY_MONTHS = 6
DEFAULT_GROWTH_MONTHS = 12
PERCENT_PLACES = 2
SCORE_PLACES = 1
HHI_PLACES = 4


@dataclass(frozen=True)
class ReportSnapshot:
    owner_id: int
    book: CurrencyBook
    owner_currency: Currency
    transactions: tuple[Transaction, ...] = ()
    budgets: tuple[Budget, ...] = ()
    lookups: Lookups = field(default_factory=Lookups)


@dataclass(frozen=True)
class ReportResult:
    data: dict
    repairs: tuple[CurrencyRepair, ...] = ()


def history_start(end_date: date, months: int) -> date:
    return add_months(month_start(end_date), -months)


def build_expense_report(
    snapshot: ReportSnapshot,
    start_date: date,
    end_date: date,
    forecast_months: int = DEFAULT_FORECAST_MONTHS,
    history_months: int = DEFAULT_HISTORY_MONTHS,
) -> ReportResult:
    _check_range(start_date, end_date)
    converted, repairs = _convert(snapshot)
    expenses = agg.in_window(converted, start_date, end_date, EXPENSE)
    lookups = snapshot.lookups

    history = agg.monthly_totals(
        converted, history_start(end_date, history_months), end_date, EXPENSE
    )
    data = {
        "currency": snapshot.owner_currency.code,
        "summary": agg.income_vs_expenses(converted, start_date, end_date),
        "categories": agg.group_records(expenses, "category", start_date, end_date, lookups),
        "subcategories": agg.group_records(expenses, "subcategory", start_date, end_date, lookups),
        "time_series": _time_series(expenses, start_date, end_date),
        "budget_comparison": agg.budget_vs_actual(
            snapshot.budgets, converted, start_date, end_date, snapshot.owner_currency, snapshot.book, repairs
        ),
        "payment_methods": agg.group_records(expenses, "payment_method", start_date, end_date, lookups),
        "tags": agg.group_records(expenses, "tag", start_date, end_date, lookups),
        "monthly_comparison": _monthly_comparison(history),
        "expense_forecast": forecast_engine.linear_forecast(
            [total for _, total in history], forecast_months, end_date
        ),
        "expense_stability": forecast_engine.stability_analysis(
            [total for _, total in agg.monthly_totals(expenses, start_date, end_date)]
        ),
        "fixed_vs_variable": agg.fixed_vs_variable(converted, start_date, end_date),
        "subcategory_breakdown": agg.subcategory_breakdown(converted, start_date, end_date, lookups),
        "enhanced_budget_comparison": agg.enhanced_budget_comparison(
            snapshot.budgets, converted, start_date, end_date, snapshot.owner_currency, snapshot.book
        ),
    }
    presented = present(data, snapshot.owner_currency)
    round_scores(presented["expense_stability"])
    return ReportResult(data=presented, repairs=tuple(repairs))


def build_earning_report(
    snapshot: ReportSnapshot,
    start_date: date,
    end_date: date,
    forecast_months: int = DEFAULT_FORECAST_MONTHS,
    history_months: int = DEFAULT_HISTORY_MONTHS,
    growth_months: int = DEFAULT_GROWTH_MONTHS,
) -> ReportResult:
    _check_range(start_date, end_date)
    converted, repairs = _convert(snapshot)
    earnings = agg.in_window(converted, start_date, end_date, EARNING)
    lookups = snapshot.lookups

    categories = agg.group_records(earnings, "category", start_date, end_date, lookups)
    history = agg.monthly_totals(
        converted, history_start(end_date, history_months), end_date, EARNING
    )
    growth_window = agg.monthly_totals(
        converted, history_start(end_date, growth_months), end_date, EARNING
    )
    in_range = agg.monthly_totals(earnings, start_date, end_date)
    diversity = forecast_engine.diversity_analysis((entry["key"], entry["total"]) for entry in categories)

    data = {
        "currency": snapshot.owner_currency.code,
        "categories": categories,
        "time_series": _time_series(earnings, start_date, end_date),
        "growth": forecast_engine.growth_data(growth_window),
        "income_sources": agg.income_sources(converted, start_date, end_date),
        "frequency_analysis": agg.fixed_vs_variable(
            converted, start_date, end_date, kind=EARNING, labels=("recurring", "non_recurring")
        ),
        "monthly_comparison": _monthly_comparison(history),
        "income_forecast": forecast_engine.linear_forecast(
            [total for _, total in history], forecast_months, end_date
        ),
        "income_stability": forecast_engine.stability_analysis([total for _, total in in_range]),
        "income_diversity": diversity,
        "detailed_income_vs_expenses": agg.detailed_income_vs_expenses(converted, start_date, end_date),
    }
    presented = present(data, snapshot.owner_currency)
    round_scores(presented["income_stability"])
    round_scores(presented["income_diversity"])
    if diversity["hhi"] is not None:
        # hhi is a 0-1 fraction
        presented["income_diversity"]["hhi"] = round(diversity["hhi"], HHI_PLACES)
    return ReportResult(data=presented, repairs=tuple(repairs))


def present(value: Any, currency: Currency) -> Any:
    """Round a computed structure for emission.

    ``Decimal`` values are money and are quantized to ``currency``; floats are
    ratios or scores and are rounded to two places.
    """
    if isinstance(value, dict):
        return {key: present(item, currency) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [present(item, currency) for item in value]
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, Decimal):
        return float(to_display(value, currency))
    if isinstance(value, float):
        return round(value, PERCENT_PLACES)
    if isinstance(value, date):
        return value.isoformat()
    return value


def round_scores(data: dict, keys: tuple[str, ...] = ("stability_score", "diversity_score")) -> dict:
    for key in keys:
        if isinstance(data.get(key), float):
            data[key] = round(data[key], SCORE_PLACES)
    return data


def _convert(snapshot: ReportSnapshot) -> tuple[list[agg.ConvertedRecord], list[CurrencyRepair]]:
    owned = [txn for txn in snapshot.transactions if txn.user_id == snapshot.owner_id]
    return agg.normalize_records(owned, snapshot.owner_currency, snapshot.book)


def _time_series(converted: list[agg.ConvertedRecord], start_date: date, end_date: date) -> dict:
    return {
        "daily": agg.group_records(converted, "day", start_date, end_date),
        "weekly": agg.group_records(converted, "week", start_date, end_date),
        "monthly": agg.group_records(converted, "month", start_date, end_date),
    }


def _monthly_comparison(history: list[tuple[str, Decimal]]) -> list[dict]:
    return [
        {"month": agg.month_label(month_key), "month_key": month_key, "total": total}
        for month_key, total in history
    ]


def _check_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise ValueError("start_date must be on or before end_date.")
