from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Optional

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from pennywise.currency_conversion import Currency, CurrencyBook, CurrencyRepair, currencies_from_rows
from pennywise.errors import StaleBudgetError
from pennywise.records import EARNING, EXPENSE, Budget, Goal, Lookups, Transaction
from pennywise.report_builder import ReportSnapshot, history_start

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")

metadata = MetaData()

currencies = Table(
    "currencies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(3), unique=True, nullable=False),
    Column("name", String(100)),
    Column("symbol", String(10)),
    Column("exchange_rate", Numeric(18, 6)),
    Column("decimal_places", Integer, nullable=False, server_default="2"),
    Column("is_default", Boolean, nullable=False, server_default="0"),
)

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("currency_id", Integer, ForeignKey("currencies.id")),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("kind", String(20), nullable=False, server_default=EXPENSE),
)

subcategories = Table(
    "subcategories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("category_id", Integer, ForeignKey("categories.id"), nullable=False),
    Column("name", String(255), nullable=False),
)

payment_methods = Table(
    "payment_methods",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
)

tags = Table(
    "tags",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("color", String(20)),
)

expenses = Table(
    "expenses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("amount", Numeric(14, 4), nullable=False),
    Column("currency_id", Integer, ForeignKey("currencies.id")),
    Column("date", Date, nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id")),
    Column("subcategory_id", Integer, ForeignKey("subcategories.id")),
    Column("payment_method_id", Integer, ForeignKey("payment_methods.id")),
    Column("recurring", Boolean),
    Column("description", String(500)),
)

expense_tags = Table(
    "expense_tags",
    metadata,
    Column("expense_id", Integer, ForeignKey("expenses.id"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)

earnings = Table(
    "earnings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("amount", Numeric(14, 4), nullable=False),
    Column("currency_id", Integer, ForeignKey("currencies.id")),
    Column("date", Date, nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id")),
    Column("subcategory_id", Integer, ForeignKey("subcategories.id")),
    Column("payment_method_id", Integer, ForeignKey("payment_methods.id")),
    Column("recurring", Boolean),
    Column("source", String(255)),
    Column("description", String(500)),
)

budgets = Table(
    "budgets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False, server_default=""),
    Column("amount", Numeric(14, 4), nullable=False),
    Column("currency_id", Integer, ForeignKey("currencies.id")),
    Column("category_id", Integer, ForeignKey("categories.id")),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date),
    Column("recurring", Boolean, nullable=False, server_default="0"),
    Column("frequency", String(20)),
    Column("rollover_enabled", Boolean, nullable=False, server_default="0"),
    Column("rollover_amount", Numeric(14, 4), nullable=False, server_default="0"),
    Column("rollover_cap", Numeric(14, 4), nullable=False, server_default="0"),
    Column("next_renewal_date", Date),
    Column("period", String(20)),
    Column("time_frame", String(20)),
    Column("time_frame_value", Integer),
    Column("time_frame_unit", String(10)),
    Column("overall_end_date", Date),
    Column("version", Integer, nullable=False, server_default="1"),
)

goals = Table(
    "goals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False, server_default=""),
    Column("target_amount", Numeric(14, 4), nullable=False),
    Column("current_amount", Numeric(14, 4), nullable=False, server_default="0"),
    Column("currency_id", Integer, ForeignKey("currencies.id")),
    Column("category_id", Integer, ForeignKey("subcategories.id")),
    Column("status", String(20), nullable=False, server_default="active"),
)

expenses_reports = Table(
    "expenses_reports",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("title", String(255)),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date, nullable=False),
    Column("report_data", JSON),
    Column("generated_at", DateTime),
)

earning_reports = Table(
    "earning_reports",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("title", String(255)),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date, nullable=False),
    Column("report_data", JSON),
    Column("generated_at", DateTime),
)

TRANSACTION_TABLES = {EXPENSE: expenses, EARNING: earnings}
REPORT_TABLES = {EXPENSE: expenses_reports, EARNING: earning_reports}
REPAIRABLE_TABLES = {EXPENSE: expenses, EARNING: earnings, "budget": budgets, "goal": goals}
BUDGET_STATE_FIELDS = (
    "name",
    "amount",
    "currency_id",
    "category_id",
    "start_date",
    "end_date",
    "recurring",
    "frequency",
    "rollover_enabled",
    "rollover_amount",
    "rollover_cap",
    "next_renewal_date",
    "period",
    "time_frame",
    "time_frame_value",
    "time_frame_unit",
    "overall_end_date",
)


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, connect_args=connect_args, **kwargs)


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)


def load_currency_book(conn: Connection, fallback_code: str = "USD") -> CurrencyBook:
    rows = conn.execute(select(currencies)).mappings().all()
    return CurrencyBook(currencies_from_rows(rows), fallback_code=fallback_code)


def load_owner_currency(conn: Connection, owner_id: int, book: CurrencyBook) -> Currency:
    currency_id = conn.execute(
        select(users.c.currency_id).where(users.c.id == owner_id)
    ).scalar_one_or_none()
    if currency_id is not None:
        try:
            return book.get(currency_id)
        except LookupError:
            logger.warning("owner_currency_unknown", owner_id=owner_id, currency_id=currency_id)
    return book.default


def user_exists(conn: Connection, owner_id: int) -> bool:
    return conn.execute(select(users.c.id).where(users.c.id == owner_id)).first() is not None


def load_transactions(
    conn: Connection,
    owner_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    kinds: Iterable[str] = (EXPENSE, EARNING),
    subcategory_id: Optional[int] = None,
) -> list[Transaction]:
    loaded: list[Transaction] = []
    for kind in kinds:
        table = TRANSACTION_TABLES[kind]
        stmt = select(table).where(table.c.user_id == owner_id)
        if start_date is not None:
            stmt = stmt.where(table.c.date >= start_date)
        if end_date is not None:
            stmt = stmt.where(table.c.date <= end_date)
        if subcategory_id is not None:
            stmt = stmt.where(table.c.subcategory_id == subcategory_id)
        rows = conn.execute(stmt.order_by(table.c.date, table.c.id)).mappings().all()
        tag_index = _load_tag_index(conn, [row["id"] for row in rows]) if kind == EXPENSE else {}
        loaded.extend(_transaction_from_row(kind, row, tag_index.get(row["id"], ())) for row in rows)
    return loaded


def load_budgets(conn: Connection, owner_id: int) -> list[Budget]:
    rows = conn.execute(
        select(budgets).where(budgets.c.user_id == owner_id).order_by(budgets.c.id)
    ).mappings().all()
    return [_budget_from_row(row) for row in rows]


def load_budget(conn: Connection, owner_id: int, budget_id: int) -> Optional[Budget]:
    row = conn.execute(
        select(budgets).where(budgets.c.id == budget_id, budgets.c.user_id == owner_id)
    ).mappings().first()
    return _budget_from_row(row) if row else None


def load_lookups(conn: Connection, owner_id: int, kind: str) -> Lookups:
    category_rows = conn.execute(
        select(categories.c.id, categories.c.name).where(
            categories.c.user_id == owner_id, categories.c.kind == kind
        )
    ).all()
    category_ids = [row.id for row in category_rows]
    subcategory_rows = conn.execute(
        select(subcategories.c.id, subcategories.c.name, subcategories.c.category_id).where(
            subcategories.c.category_id.in_(category_ids)
        )
    ).all() if category_ids else []
    method_rows = conn.execute(
        select(payment_methods.c.id, payment_methods.c.name).where(payment_methods.c.user_id == owner_id)
    ).all()
    tag_rows = conn.execute(
        select(tags.c.id, tags.c.name, tags.c.color).where(tags.c.user_id == owner_id)
    ).all()
    return Lookups(
        categories={row.id: row.name for row in category_rows},
        subcategories={row.id: row.name for row in subcategory_rows},
        subcategory_parents={row.id: row.category_id for row in subcategory_rows},
        payment_methods={row.id: row.name for row in method_rows},
        tags={row.id: row.name for row in tag_rows},
        tag_colors={row.id: row.color for row in tag_rows},
    )


def load_report_snapshot(
    engine: Engine,
    owner_id: int,
    kind: str,
    start_date: date,
    end_date: date,
    history_months: int,
    fallback_code: str = "USD",
) -> ReportSnapshot:
    """Read everything a report needs inside a single transaction."""
    window_start = min(start_date, history_start(end_date, history_months))
    with engine.begin() as conn:
        book = load_currency_book(conn, fallback_code)
        return ReportSnapshot(
            owner_id=owner_id,
            book=book,
            owner_currency=load_owner_currency(conn, owner_id, book),
            transactions=tuple(load_transactions(conn, owner_id, window_start, end_date)),
            budgets=tuple(load_budgets(conn, owner_id)) if kind == EXPENSE else (),
            lookups=load_lookups(conn, owner_id, kind),
        )


def apply_currency_repairs(conn: Connection, repairs: Iterable[CurrencyRepair]) -> int:
    applied = 0
    for repair in {(r.record_kind, r.record_id): r for r in repairs}.values():
        table = REPAIRABLE_TABLES.get(repair.record_kind)
        if table is None:
            continue
        result = conn.execute(
            update(table)
            .where(table.c.id == repair.record_id)
            .values(currency_id=repair.currency_id)
        )
        applied += result.rowcount or 0
    if applied:
        logger.info("currency_repairs_applied", count=applied)
    return applied


def save_budget(conn: Connection, budget: Budget, expected_version: int) -> None:
    """Write the budget only if nobody else saved it since ``expected_version``."""
    values = {name: getattr(budget, name) for name in BUDGET_STATE_FIELDS}
    result = conn.execute(
        update(budgets)
        .where(
            budgets.c.id == budget.id,
            budgets.c.user_id == budget.user_id,
            budgets.c.version == expected_version,
        )
        .values(**values, version=expected_version + 1)
    )
    if result.rowcount != 1:
        raise StaleBudgetError(budget.id, expected_version)
    budget.version = expected_version + 1


def load_report(conn: Connection, kind: str, owner_id: int, report_id: int) -> Optional[Mapping]:
    table = REPORT_TABLES[kind]
    return conn.execute(
        select(table).where(table.c.id == report_id, table.c.user_id == owner_id)
    ).mappings().first()


def save_report_data(conn: Connection, kind: str, report_id: int, data: dict) -> None:
    table = REPORT_TABLES[kind]
    conn.execute(
        update(table)
        .where(table.c.id == report_id)
        .values(report_data=data, generated_at=func.now())
    )


def insert_transaction(conn: Connection, kind: str, values: dict) -> Transaction:
    table = TRANSACTION_TABLES[kind]
    tag_ids = tuple(values.pop("tag_ids", ()) or ())
    new_id = conn.execute(insert(table).values(**values)).inserted_primary_key[0]
    if tag_ids and kind == EXPENSE:
        conn.execute(insert(expense_tags), [{"expense_id": new_id, "tag_id": tag_id} for tag_id in tag_ids])
    row = conn.execute(select(table).where(table.c.id == new_id)).mappings().one()
    return _transaction_from_row(kind, row, tag_ids)


def load_goals_for_category(conn: Connection, owner_id: int, category_id: int) -> list[Goal]:
    rows = conn.execute(
        select(goals).where(goals.c.user_id == owner_id, goals.c.category_id == category_id)
    ).mappings().all()
    return [
        Goal(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            target_amount=_decimal(row["target_amount"]),
            current_amount=_decimal(row["current_amount"]),
            currency_id=row["currency_id"],
            category_id=row["category_id"],
            status=row["status"],
        )
        for row in rows
    ]


def save_goal_status(conn: Connection, goal: Goal) -> None:
    conn.execute(update(goals).where(goals.c.id == goal.id).values(status=goal.status))


def _load_tag_index(conn: Connection, expense_ids: list[int]) -> dict[int, tuple[int, ...]]:
    if not expense_ids:
        return {}
    index: dict[int, list[int]] = defaultdict(list)
    rows = conn.execute(
        select(expense_tags.c.expense_id, expense_tags.c.tag_id)
        .where(expense_tags.c.expense_id.in_(expense_ids))
        .order_by(expense_tags.c.tag_id)
    ).all()
    for row in rows:
        index[row.expense_id].append(row.tag_id)
    return {expense_id: tuple(tag_ids) for expense_id, tag_ids in index.items()}


def _transaction_from_row(kind: str, row: Mapping, tag_ids: Iterable[int]) -> Transaction:
    return Transaction(
        id=row["id"],
        user_id=row["user_id"],
        kind=kind,
        amount=_decimal(row["amount"]),
        date=row["date"],
        currency_id=row["currency_id"],
        category_id=row["category_id"],
        subcategory_id=row["subcategory_id"],
        payment_method_id=row["payment_method_id"],
        tag_ids=tuple(tag_ids),
        recurring=row["recurring"],
        source=row.get("source"),
    )


def _budget_from_row(row: Mapping) -> Budget:
    return Budget(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"] or "",
        amount=_decimal(row["amount"]),
        currency_id=row["currency_id"],
        category_id=row["category_id"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        recurring=bool(row["recurring"]),
        frequency=row["frequency"],
        rollover_enabled=bool(row["rollover_enabled"]),
        rollover_amount=_decimal(row["rollover_amount"]),
        rollover_cap=_decimal(row["rollover_cap"]),
        next_renewal_date=row["next_renewal_date"],
        period=row["period"],
        time_frame=row["time_frame"],
        time_frame_value=row["time_frame_value"],
        time_frame_unit=row["time_frame_unit"],
        overall_end_date=row["overall_end_date"],
        version=row["version"],
    )


def _decimal(value) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))
