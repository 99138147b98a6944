from __future__ import annotations

from datetime import date
from typing import Iterable, Optional

import structlog
from sqlalchemy.engine import Engine

from pennywise import budget_engine, report_builder, storage
from pennywise.config import Settings, load_settings
from pennywise.errors import RecordNotFoundError, StaleBudgetError
from pennywise.observers import ObserverContext, TransactionObserver, run_observers
from pennywise.period_calculator import (
    end_date_for,
    is_time_frame_expired,
    next_renewal_for,
    periods_in_time_frame,
)
from pennywise.records import EARNING, EXPENSE, TRANSACTION_KINDS, Budget, Goal, Transaction

logger = structlog.get_logger(__name__)

TIME_FRAME_FIELDS = {"start_date", "time_frame", "time_frame_value", "time_frame_unit"}
RENEWAL_FIELDS = {"start_date", "frequency", "recurring"}


def generate_expenses_report(
    engine: Engine,
    owner_id: int,
    report_id: int,
    settings: Optional[Settings] = None,
) -> dict:
    return _generate_report(engine, owner_id, report_id, EXPENSE, settings or load_settings())


def generate_earning_report(
    engine: Engine,
    owner_id: int,
    report_id: int,
    settings: Optional[Settings] = None,
) -> dict:
    return _generate_report(engine, owner_id, report_id, EARNING, settings or load_settings())


def renew_due_budgets(
    engine: Engine,
    owner_id: int,
    today: date,
    fallback_code: str = "USD",
) -> list[Budget]:
    """Renew every due recurring budget of ``owner_id``.

    Each budget is saved with an optimistic version check. A budget renewed by
    someone else in the meantime is skipped.
    """
    with engine.begin() as conn:
        book = storage.load_currency_book(conn, fallback_code)
        budgets = storage.load_budgets(conn, owner_id)
        expenses = storage.load_transactions(conn, owner_id, kinds=(EXPENSE,))

    renewed = []
    for budget in budgets:
        expected_version = budget.version
        repairs = []
        if not budget_engine.renew_budget(budget, expenses, book, today, repairs):
            continue
        try:
            with engine.begin() as conn:
                storage.save_budget(conn, budget, expected_version)
                storage.apply_currency_repairs(conn, repairs)
        except StaleBudgetError:
            logger.warning(
                "budget_renewal_conflict",
                budget_id=budget.id,
                expected_version=expected_version,
            )
            continue
        renewed.append(budget)

    logger.info("budgets_renewed", owner_id=owner_id, count=len(renewed))
    return renewed


def update_budget(
    engine: Engine,
    owner_id: int,
    budget_id: int,
    changes: dict,
    expected_version: Optional[int] = None,
    fallback_code: str = "USD",
) -> Budget:
    unknown = set(changes) - set(storage.BUDGET_STATE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown budget fields: {', '.join(sorted(unknown))}.")

    with engine.begin() as conn:
        budget = storage.load_budget(conn, owner_id, budget_id)
        if budget is None:
            raise RecordNotFoundError(f"Budget {budget_id} not found.")
        version = budget.version if expected_version is None else expected_version

        for name, value in changes.items():
            setattr(budget, name, value)
        if budget.time_frame and TIME_FRAME_FIELDS & set(changes):
            budget.overall_end_date = end_date_for(
                budget.start_date, budget.time_frame, budget.time_frame_value, budget.time_frame_unit
            )
        if budget.recurring and RENEWAL_FIELDS & set(changes):
            budget.end_date, budget.next_renewal_date = next_renewal_for(budget.start_date, budget.frequency)

        book = storage.load_currency_book(conn, fallback_code)
        owner_currency = storage.load_owner_currency(conn, owner_id, book)
        budget_engine.follow_owner_currency(budget, changes.keys(), owner_currency, book)
        storage.save_budget(conn, budget, version)

    logger.info("budget_updated", budget_id=budget.id, fields=sorted(changes), version=budget.version)
    return budget


def budget_overview(
    engine: Engine,
    owner_id: int,
    budget_id: int,
    today: date,
    fallback_code: str = "USD",
) -> dict:
    with engine.begin() as conn:
        budget = storage.load_budget(conn, owner_id, budget_id)
        if budget is None:
            raise RecordNotFoundError(f"Budget {budget_id} not found.")
        book = storage.load_currency_book(conn, fallback_code)
        expenses = storage.load_transactions(conn, owner_id, kinds=(EXPENSE,))

        repairs = []
        currency = budget_engine.budget_currency(budget, book, repairs)
        utilization = budget_engine.budget_utilization(budget, expenses, book, today, repairs)
        storage.apply_currency_repairs(conn, repairs)

    overview = {
        "id": budget.id,
        "name": budget.name,
        "currency": currency.code,
        "amount": budget.amount,
        "category_id": budget.category_id,
        "start_date": budget.start_date,
        "end_date": budget.end_date,
        "recurring": budget.recurring,
        "frequency": budget.frequency,
        "rollover_enabled": budget.rollover_enabled,
        "rollover_amount": budget.rollover_amount,
        "rollover_cap": budget.rollover_cap,
        "next_renewal_date": budget.next_renewal_date,
        "period": budget.period,
        "time_frame": budget.time_frame,
        "overall_end_date": budget.overall_end_date,
        "periods_in_time_frame": periods_in_time_frame(
            budget.start_date, budget.overall_end_date, budget.period
        ),
        "time_frame_expired": is_time_frame_expired(budget.overall_end_date, today),
        "version": budget.version,
        "utilization": utilization,
        "variance": budget_engine.variance_analysis(budget, expenses, book, today),
        "monthly_comparison": budget_engine.monthly_comparison(budget, expenses, book, today),
        "yearly_comparison": {
            str(year): bucket
            for year, bucket in budget_engine.yearly_comparison(budget, expenses, book, today).items()
        },
    }
    return report_builder.present(overview, currency)


def check_budget_limits(
    engine: Engine,
    owner_id: int,
    today: date,
    fallback_code: str = "USD",
) -> dict:
    with engine.begin() as conn:
        book = storage.load_currency_book(conn, fallback_code)
        budgets = storage.load_budgets(conn, owner_id)
        expenses = storage.load_transactions(conn, owner_id, kinds=(EXPENSE,))
        repairs = []
        status = budget_engine.budget_limit_status(budgets, expenses, book, today, repairs)
        storage.apply_currency_repairs(conn, repairs)

    logger.info(
        "budget_limits_checked",
        owner_id=owner_id,
        exceeded_count=len(status["exceeded"]),
        warning_count=len(status["warning"]),
    )
    return {
        level: [report_builder.present(entry, book.by_code(entry["currency"])) for entry in entries]
        for level, entries in status.items()
    }

def record_transaction(
    engine: Engine,
    owner_id: int,
    kind: str,
    values: dict,
    observers: Optional[Iterable[TransactionObserver]] = None,
    fallback_code: str = "USD",
) -> tuple[Transaction, list[Goal]]:
    """Persist an expense or earning, then run the post-persist observers."""
    if kind not in TRANSACTION_KINDS:
        raise ValueError(f"Unsupported transaction kind: {kind}.")

    with engine.begin() as conn:
        if not storage.user_exists(conn, owner_id):
            raise RecordNotFoundError(f"User {owner_id} not found.")
        book = storage.load_currency_book(conn, fallback_code)
        row = dict(values, user_id=owner_id)
        if row.get("currency_id") is None:
            row["currency_id"] = storage.load_owner_currency(conn, owner_id, book).id
        else:
            book.get(row["currency_id"])

        record = storage.insert_transaction(conn, kind, row)
        context = ObserverContext(
            owner_id=owner_id,
            book=book,
            load_goals=lambda user_id, category_id: storage.load_goals_for_category(conn, user_id, category_id),
            load_category_transactions=lambda user_id, subcategory_id: storage.load_transactions(
                conn, user_id, kinds=(EXPENSE,), subcategory_id=subcategory_id
            ),
            save_goal_status=lambda goal: storage.save_goal_status(conn, goal),
        )
        run_observers(record, context, observers)
        storage.apply_currency_repairs(conn, context.repairs)

    logger.info("transaction_recorded", kind=kind, record_id=record.id, owner_id=owner_id)
    return record, context.changed_goals


def _generate_report(engine: Engine, owner_id: int, report_id: int, kind: str, settings: Settings) -> dict:
    with engine.begin() as conn:
        report = storage.load_report(conn, kind, owner_id, report_id)
    if report is None:
        raise RecordNotFoundError(f"Report {report_id} not found.")

    start_date, end_date = report["start_date"], report["end_date"]
    history_months = settings.history_months
    if kind == EARNING:
        history_months = max(history_months, report_builder.DEFAULT_GROWTH_MONTHS)
    snapshot = storage.load_report_snapshot(
        engine,
        owner_id,
        kind,
        start_date,
        end_date,
        history_months,
        settings.default_currency,
    )

    if kind == EXPENSE:
        result = report_builder.build_expense_report(
            snapshot, start_date, end_date, settings.forecast_months, settings.history_months
        )
    else:
        result = report_builder.build_earning_report(
            snapshot, start_date, end_date, settings.forecast_months, settings.history_months
        )

    with engine.begin() as conn:
        storage.apply_currency_repairs(conn, result.repairs)
        storage.save_report_data(conn, kind, report_id, result.data)

    logger.info(
        "report_generated",
        kind=kind,
        report_id=report_id,
        owner_id=owner_id,
        repairs=len(result.repairs),
    )
    return result.data
