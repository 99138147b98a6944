from decimal import Decimal

from sqlalchemy import insert

from pennywise import storage
from pennywise.records import EARNING, EXPENSE


def seed(engine) -> None:
    with engine.begin() as conn:
        conn.execute(
            insert(storage.currencies),
            [
                {"id": 1, "code": "USD", "exchange_rate": Decimal("1"), "decimal_places": 2, "is_default": True},
                {"id": 2, "code": "EUR", "exchange_rate": Decimal("1.25"), "decimal_places": 2, "is_default": False},
            ],
        )
        conn.execute(
            insert(storage.users),
            [
                {"id": 1, "email": "ada@example.com", "currency_id": 1},
                {"id": 2, "email": "bob@example.com", "currency_id": 2},
            ],
        )
        conn.execute(
            insert(storage.categories),
            [
                {"id": 1, "user_id": 1, "name": "Food", "kind": EXPENSE},
                {"id": 2, "user_id": 1, "name": "Salary", "kind": EARNING},
                {"id": 3, "user_id": 1, "name": "Savings", "kind": EXPENSE},
            ],
        )
        conn.execute(insert(storage.subcategories), [{"id": 30, "category_id": 3, "name": "Holiday fund"}])
        conn.execute(insert(storage.tags), [{"id": 1, "user_id": 1, "name": "Weekend", "color": "#123456"}])


def make_engine():
    engine = storage.build_engine("sqlite://")
    storage.init_db(engine)
    seed(engine)
    return engine
