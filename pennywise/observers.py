"""Post-persist hooks for recorded transactions.

The service layer calls :func:`run_observers` after a transaction row is
written. Observers receive the persisted record plus a context object giving
them explicit access to what they need; nothing here reads ambient state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable, Optional, Protocol

import structlog

from pennywise.currency_conversion import (
    CurrencyBook,
    CurrencyRepair,
    convert_or_original,
    resolve_record_currency,
)
from pennywise.records import Goal, Transaction

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
ACTIVE = "active"
COMPLETED = "completed"


@dataclass
class ObserverContext:
    owner_id: int
    book: CurrencyBook
    load_goals: Callable[[int, int], list[Goal]]
    load_category_transactions: Callable[[int, int], list[Transaction]]
    save_goal_status: Callable[[Goal], None]
    changed_goals: list[Goal] = field(default_factory=list)
    repairs: list[CurrencyRepair] = field(default_factory=list)


class TransactionObserver(Protocol):
    def __call__(self, record: Transaction, context: ObserverContext) -> None:
        ...


def goal_progress(
    goal: Goal,
    linked: Iterable[Transaction],
    book: CurrencyBook,
    repairs: Optional[list[CurrencyRepair]] = None,
) -> Decimal:
    """Direct contributions plus transactions booked against the goal's category."""
    target, repair = resolve_record_currency(book, goal.currency_id, record_kind="goal", record_id=goal.id)
    if repair is not None:
        goal.currency_id = repair.currency_id
        if repairs is not None:
            repairs.append(repair)
    total = goal.current_amount
    for txn in linked:
        source, repair = resolve_record_currency(book, txn.currency_id, record_kind=txn.kind, record_id=txn.id)
        if repair is not None and repairs is not None:
            repairs.append(repair)
        total += convert_or_original(txn.amount, source, target, record_kind=txn.kind, record_id=txn.id)
    return total


def refresh_goal_status(goal: Goal, progress: Decimal) -> bool:
    if goal.status == ACTIVE and progress >= goal.target_amount:
        goal.status = COMPLETED
        return True
    if goal.status == COMPLETED and progress < goal.target_amount:
        goal.status = ACTIVE
        return True
    return False


class GoalStatusObserver:
    """Completes or re-opens goals linked to the record's subcategory."""

    def __call__(self, record: Transaction, context: ObserverContext) -> None:
        if record.subcategory_id is None:
            return
        linked = context.load_category_transactions(context.owner_id, record.subcategory_id)
        for goal in context.load_goals(context.owner_id, record.subcategory_id):
            progress = goal_progress(goal, linked, context.book, context.repairs)
            if refresh_goal_status(goal, progress):
                context.save_goal_status(goal)
                context.changed_goals.append(goal)
                logger.info(
                    "goal_status_changed",
                    goal_id=goal.id,
                    status=goal.status,
                    progress=str(progress),
                    target=str(goal.target_amount),
                )


DEFAULT_OBSERVERS: tuple[TransactionObserver, ...] = (GoalStatusObserver(),)


def run_observers(
    record: Transaction,
    context: ObserverContext,
    observers: Optional[Iterable[TransactionObserver]] = None,
) -> ObserverContext:
    for observer in DEFAULT_OBSERVERS if observers is None else observers:
        observer(record, context)
    return context
