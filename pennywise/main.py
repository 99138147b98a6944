from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal

from fastapi import FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import select

from pennywise import services, storage
from pennywise.config import load_settings
from pennywise.errors import (
    InvalidPeriodConfiguration,
    MissingCurrencyError,
    RecordNotFoundError,
    StaleBudgetError,
)
from pennywise.log import configure_logging
from pennywise.period_calculator import validate_frequency, validate_period, validate_time_frame
from pennywise.records import EARNING, EXPENSE

REQUIRED_BUDGET_FIELDS = ("name", "amount", "start_date", "recurring", "rollover_enabled", "rollover_cap")

settings = load_settings()

engine = storage.build_engine(settings.database_url)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    storage.init_db(engine)
    yield


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class BudgetUpdatePayload(BaseModel):
    name: str | None = None
    amount: Decimal | None = None
    currency_id: int | None = None
    category_id: int | None = None
    start_date: date | None = None
    end_date: date | None = None
    recurring: bool | None = None
    frequency: str | None = None
    rollover_enabled: bool | None = None
    rollover_cap: Decimal | None = None
    period: str | None = None
    time_frame: str | None = None
    time_frame_value: int | None = None
    time_frame_unit: str | None = None
    version: int | None = None


class TransactionPayload(BaseModel):
    amount: Decimal
    date: date
    currency_id: int | None = None
    category_id: int | None = None
    subcategory_id: int | None = None
    payment_method_id: int | None = None
    recurring: bool | None = None
    description: str | None = None
    source: str | None = None
    tag_ids: list[int] = []


class GoalStatusResponse(BaseModel):
    id: int
    status: str


class TransactionResponse(BaseModel):
    id: int
    kind: str
    amount: Decimal
    date: date
    currency_id: int | None = None
    category_id: int | None = None
    subcategory_id: int | None = None
    changed_goals: list[GoalStatusResponse] = []


class RenewalResponse(BaseModel):
    renewed: list[int]
    count: int


def get_user_id(x_user_id: str | None = Header(None)) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(storage.users.c.id).where(storage.users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def validate_budget_changes(changes: dict) -> dict:
    cleared = [field for field in REQUIRED_BUDGET_FIELDS if field in changes and changes[field] is None]
    if cleared:
        raise ValueError(f"{', '.join(cleared)} cannot be null.")
    if changes.get("frequency") is not None:
        changes["frequency"] = validate_frequency(changes["frequency"])
    if changes.get("period") is not None:
        changes["period"] = validate_period(changes["period"])
    if changes.get("time_frame") is not None:
        changes["time_frame"] = validate_time_frame(
            changes["time_frame"],
            changes.get("time_frame_value"),
            changes.get("time_frame_unit"),
        )
    if changes.get("time_frame_unit") is not None:
        changes["time_frame_unit"] = changes["time_frame_unit"].strip().lower()
    for field in ("amount", "rollover_cap"):
        if changes.get(field) is not None and changes[field] < 0:
            raise ValueError(f"{field} must be zero or positive.")
    if changes.get("start_date") and changes.get("end_date") and changes["end_date"] < changes["start_date"]:
        raise ValueError("end_date must be on or after start_date.")
    return changes


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/reports/expenses/{report_id}/generate")
def generate_expenses_report(
    report_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    try:
        return services.generate_expenses_report(engine, user_id, report_id, settings)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Report not found.") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/reports/earnings/{report_id}/generate")
def generate_earning_report(
    report_id: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    try:
        return services.generate_earning_report(engine, user_id, report_id, settings)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Report not found.") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/budgets/limits")
def check_budget_limits(
    today: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    return services.check_budget_limits(engine, user_id, today or date.today(), settings.default_currency)


@app.get("/budgets/{budget_id}")
def get_budget(
    budget_id: int,
    today: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    try:
        return services.budget_overview(
            engine, user_id, budget_id, today or date.today(), settings.default_currency
        )
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Budget not found.") from exc


@app.put("/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    payload: BudgetUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    changes = payload.model_dump(exclude_unset=True)
    expected_version = changes.pop("version", None)
    try:
        changes = validate_budget_changes(changes)
    except (InvalidPeriodConfiguration, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        services.update_budget(
            engine, user_id, budget_id, changes, expected_version, settings.default_currency
        )
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Budget not found.") from exc
    except StaleBudgetError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return services.budget_overview(
        engine, user_id, budget_id, date.today(), settings.default_currency
    )


@app.post("/budgets/renew", response_model=RenewalResponse)
def renew_budgets(
    today: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> RenewalResponse:
    user_id = get_user_id(x_user_id)
    renewed = services.renew_due_budgets(
        engine, user_id, today or date.today(), settings.default_currency
    )
    return RenewalResponse(renewed=[budget.id for budget in renewed], count=len(renewed))


@app.post("/expenses", response_model=TransactionResponse)
def create_expense(
    payload: TransactionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    values = payload.model_dump(exclude={"source"})
    return record_transaction(user_id, EXPENSE, values)


@app.post("/earnings", response_model=TransactionResponse)
def create_earning(
    payload: TransactionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    values = payload.model_dump(exclude={"tag_ids"})
    return record_transaction(user_id, EARNING, values)


def record_transaction(user_id: int, kind: str, values: dict) -> TransactionResponse:
    if values["amount"] <= 0:
        raise HTTPException(status_code=400, detail="Amount must be positive.")
    try:
        record, changed_goals = services.record_transaction(
            engine, user_id, kind, values, fallback_code=settings.default_currency
        )
    except MissingCurrencyError as exc:
        raise HTTPException(status_code=400, detail="Currency not found.") from exc
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="User not found.") from exc
    return TransactionResponse(
        id=record.id,
        kind=record.kind,
        amount=record.amount,
        date=record.date,
        currency_id=record.currency_id,
        category_id=record.category_id,
        subcategory_id=record.subcategory_id,
        changed_goals=[GoalStatusResponse(id=goal.id, status=goal.status) for goal in changed_goals],
    )
