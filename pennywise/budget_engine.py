from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from pennywise.currency_conversion import (
    Currency,
    CurrencyBook,
    CurrencyRepair,
    convert,
    convert_or_original,
    resolve_record_currency,
)
from pennywise.errors import ConversionFailure, MissingCurrencyError
from pennywise.period_calculator import current_period_bounds, next_renewal_for
from pennywise.ratios import percent_of, safe_average
from pennywise.records import EXPENSE, Budget, Transaction

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
MONTHS_PER_YEAR = 12
WARNING_PERCENT = 80
EXCEEDED_PERCENT = 100


def budget_currency(
    budget: Budget,
    book: CurrencyBook,
    repairs: Optional[list[CurrencyRepair]] = None,
) -> Currency:
    currency, repair = resolve_record_currency(
        book, budget.currency_id, record_kind="budget", record_id=budget.id
    )
    if repair is not None:
        budget.currency_id = repair.currency_id
        if repairs is not None:
            repairs.append(repair)
    return currency


def budget_expenses(
    budget: Budget,
    transactions: Iterable[Transaction],
    book: CurrencyBook,
    today: date,
    repairs: Optional[list[CurrencyRepair]] = None,
    window: Optional[tuple[date, date]] = None,
) -> list[tuple[Transaction, Decimal]]:
    """Expenses inside the budget's current period, converted to its currency.

    ``window`` replaces the budget's own start and end dates when given.
    """
    target = budget_currency(budget, book, repairs)
    period_start, period_end = window or (budget.start_date, budget.end_date or today)

    matched: list[tuple[Transaction, Decimal]] = []
    for txn in transactions:
        if txn.kind != EXPENSE or txn.user_id != budget.user_id:
            continue
        if not period_start <= txn.date <= period_end:
            continue
        if budget.category_id is not None and txn.category_id != budget.category_id:
            continue
        source, repair = resolve_record_currency(
            book, txn.currency_id, record_kind=txn.kind, record_id=txn.id
        )
        if repair is not None and repairs is not None:
            repairs.append(repair)
        amount = convert_or_original(
            txn.amount, source, target, record_kind=txn.kind, record_id=txn.id
        )
        matched.append((txn, amount))
    return matched


def budget_spent(
    budget: Budget,
    transactions: Iterable[Transaction],
    book: CurrencyBook,
    today: date,
    repairs: Optional[list[CurrencyRepair]] = None,
    window: Optional[tuple[date, date]] = None,
) -> Decimal:
    return sum(
        (amount for _, amount in budget_expenses(budget, transactions, book, today, repairs, window)),
        ZERO,
    )


def budget_total(budget: Budget) -> Decimal:
    if budget.rollover_enabled:
        return budget.amount + budget.rollover_amount
    return budget.amount


def budget_utilization(
    budget: Budget,
    transactions: Iterable[Transaction],
    book: CurrencyBook,
    today: date,
    repairs: Optional[list[CurrencyRepair]] = None,
) -> dict:
    spent = budget_spent(budget, transactions, book, today, repairs)
    total = budget_total(budget)
    percent_used = percent_of(spent, total)
    return {
        "spent": spent,
        "total": total,
        "total_budget": total,
        "remaining": total - spent,
        "percentage": percent_used,
        "percent_used": percent_used,
    }


def budget_limit_status(
    budgets: Iterable[Budget],
    transactions: Iterable[Transaction],
    book: CurrencyBook,
    today: date,
    repairs: Optional[list[CurrencyRepair]] = None,
) -> dict:
    """Sort active budgets into ``exceeded`` and ``warning`` by current-period spending.

    Spending is measured over the calendar period (day, week, month or year)
    holding ``today``. A budget at 100 % or more of its amount is exceeded,
    one at 80 % or more is a warning. A zero-amount budget is exceeded as soon
    as anything is spent against it.
    """
    transactions = list(transactions)
    exceeded: list[dict] = []
    warning: list[dict] = []
    for budget in budgets:
        if budget.end_date is not None and budget.end_date < today:
            continue
        currency = budget_currency(budget, book, repairs)
        window = current_period_bounds(budget.period, today)
        spent = budget_spent(budget, transactions, book, today, repairs, window)
        percentage = percent_of(spent, budget.amount)
        entry = {
            "budget_id": budget.id,
            "name": budget.name,
            "currency": currency.code,
            "amount": budget.amount,
            "spent": spent,
            "percentage": percentage,
            "period_start": window[0],
            "period_end": window[1],
        }
        if budget.amount <= ZERO:
            over_limit, near_limit = spent > ZERO, False
        else:
            over_limit = spent * 100 >= budget.amount * EXCEEDED_PERCENT
            near_limit = spent * 100 >= budget.amount * WARNING_PERCENT
        if over_limit:
            entry["overspent"] = spent - budget.amount
            exceeded.append(entry)
        elif near_limit:
            entry["remaining"] = budget.amount - spent
            warning.append(entry)
    return {"exceeded": exceeded, "warning": warning}


def process_rollover(
    budget: Budget,
    transactions: Iterable[Transaction],
    book: CurrencyBook,
    today: date,
    repairs: Optional[list[CurrencyRepair]] = None,
) -> bool:
    """Carry the closing period's leftover into ``budget.rollover_amount``.

    Returns False when rollover does not apply or the period is still open.
    Overspending resets the rollover to zero; a positive cap clamps it.
    """
    if not budget.recurring or not budget.rollover_enabled:
        return False

    period_end = budget.end_date or today
    if period_end > today:
        return False

    leftover = budget_total(budget) - budget_spent(budget, transactions, book, today, repairs)
    if leftover <= ZERO:
        budget.rollover_amount = ZERO
        logger.info("rollover_reset", budget_id=budget.id, leftover=str(leftover))
        return True

    if budget.rollover_cap > ZERO and leftover > budget.rollover_cap:
        leftover = budget.rollover_cap

    budget.rollover_amount = leftover
    logger.info("rollover_processed", budget_id=budget.id, rollover_amount=str(leftover))
    return True


def renew_budget(
    budget: Budget,
    transactions: Iterable[Transaction],
    book: CurrencyBook,
    today: date,
    repairs: Optional[list[CurrencyRepair]] = None,
) -> bool:
    """Advance a due recurring budget to its next period in place."""
    if not budget.recurring or budget.next_renewal_date is None:
        return False
    if today < budget.next_renewal_date:
        return False

    process_rollover(budget, list(transactions), book, today, repairs)

    new_start = budget.next_renewal_date
    new_end, new_next_renewal = next_renewal_for(new_start, budget.frequency)
    budget.start_date = new_start
    budget.end_date = new_end
    budget.next_renewal_date = new_next_renewal
    logger.info(
        "budget_renewed",
        budget_id=budget.id,
        start_date=new_start.isoformat(),
        end_date=new_end.isoformat(),
        next_renewal_date=new_next_renewal.isoformat(),
    )
    return True


def follow_owner_currency(
    budget: Budget,
    changed_fields: Iterable[str],
    owner_currency: Optional[Currency],
    book: CurrencyBook,
) -> bool:
    """Move a budget into its owner's preferred currency before it is saved.

    Skipped when the update sets ``currency_id`` explicitly. The pass only
    mutates the budget; it never triggers another save.
    """
    if "currency_id" in set(changed_fields):
        return False
    if owner_currency is None or budget.currency_id == owner_currency.id:
        return False
    try:
        current = book.get(budget.currency_id)
    except MissingCurrencyError:
        return False

    try:
        amount = convert(budget.amount, current, owner_currency)
        rollover_amount = budget.rollover_amount
        if rollover_amount > ZERO:
            rollover_amount = convert(rollover_amount, current, owner_currency)
        rollover_cap = budget.rollover_cap
        if rollover_cap > ZERO:
            rollover_cap = convert(rollover_cap, current, owner_currency)
    except ConversionFailure as exc:
        logger.error(
            "budget_currency_follow_failed",
            budget_id=budget.id,
            from_currency=current.code,
            to_currency=owner_currency.code,
            error=str(exc),
        )
        return False

    budget.amount = amount
    budget.rollover_amount = rollover_amount
    budget.rollover_cap = rollover_cap
    budget.currency_id = owner_currency.id
    logger.info(
        "budget_currency_followed",
        budget_id=budget.id,
        from_currency=current.code,
        to_currency=owner_currency.code,
    )
    return True


def variance_analysis(
    budget: Budget,
    transactions: Iterable[Transaction],
    book: CurrencyBook,
    today: date,
) -> dict:
    expenses = budget_expenses(budget, transactions, book, today)
    total_budget = budget_total(budget)
    total_spent = sum((amount for _, amount in expenses), ZERO)
    variance = total_budget - total_spent

    by_category: dict[Optional[int], Decimal] = defaultdict(lambda: ZERO)
    for txn, amount in expenses:
        by_category[txn.category_id] += amount

    return {
        "total_budget": total_budget,
        "total_spent": total_spent,
        "variance": variance,
        "variance_percent": percent_of(variance, total_budget) if total_budget > ZERO else 0.0,
        "status": "under_budget" if variance >= ZERO else "over_budget",
        "category_breakdown": [
            {"category_id": category_id, "total": total}
            for category_id, total in sorted(
                by_category.items(), key=lambda item: (item[0] is None, item[0] or 0)
            )
        ],
    }


def monthly_comparison(
    budget: Budget,
    transactions: Iterable[Transaction],
    book: CurrencyBook,
    today: date,
) -> dict[str, dict]:
    return _compare_by(
        budget_expenses(budget, transactions, book, today),
        lambda txn: txn.date.strftime("%Y-%m"),
    )


def yearly_comparison(
    budget: Budget,
    transactions: Iterable[Transaction],
    book: CurrencyBook,
    today: date,
) -> dict[int, dict]:
    comparison = _compare_by(
        budget_expenses(budget, transactions, book, today),
        lambda txn: txn.date.year,
    )
    for bucket in comparison.values():
        bucket["monthly_average"] = bucket["total"] / MONTHS_PER_YEAR
    return comparison


def _compare_by(expenses: list[tuple[Transaction, Decimal]], key_fn) -> dict:
    buckets: dict = {}
    for txn, amount in expenses:
        bucket = buckets.setdefault(key_fn(txn), {"total": ZERO, "count": 0})
        bucket["total"] += amount
        bucket["count"] += 1
    for bucket in buckets.values():
        bucket["average"] = safe_average(bucket["total"], bucket["count"])
    return dict(sorted(buckets.items()))
