from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

ZERO = Decimal("0")

EXPENSE = "expense"
EARNING = "earning"
TRANSACTION_KINDS = {EXPENSE, EARNING}


@dataclass(frozen=True)
class Transaction:
    id: int
    user_id: int
    kind: str
    amount: Decimal
    date: date
    currency_id: Optional[int] = None
    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    payment_method_id: Optional[int] = None
    tag_ids: tuple[int, ...] = ()
    recurring: Optional[bool] = None
    source: Optional[str] = None


@dataclass
class Budget:
    id: int
    user_id: int
    amount: Decimal
    start_date: date
    currency_id: Optional[int] = None
    name: str = ""
    end_date: Optional[date] = None
    category_id: Optional[int] = None
    recurring: bool = False
    frequency: Optional[str] = "monthly"
    rollover_enabled: bool = False
    rollover_amount: Decimal = ZERO
    rollover_cap: Decimal = ZERO
    next_renewal_date: Optional[date] = None
    period: Optional[str] = "monthly"
    time_frame: Optional[str] = None
    time_frame_value: Optional[int] = None
    time_frame_unit: Optional[str] = None
    overall_end_date: Optional[date] = None
    version: int = 1


@dataclass
class Goal:
    id: int
    user_id: int
    target_amount: Decimal
    current_amount: Decimal = ZERO
    name: str = ""
    currency_id: Optional[int] = None
    category_id: Optional[int] = None
    status: str = "active"


@dataclass(frozen=True)
class Lookups:
    """Display names for the ids carried by transactions."""

    categories: dict[int, str] = field(default_factory=dict)
    subcategories: dict[int, str] = field(default_factory=dict)
    subcategory_parents: dict[int, int] = field(default_factory=dict)
    payment_methods: dict[int, str] = field(default_factory=dict)
    tags: dict[int, str] = field(default_factory=dict)
    tag_colors: dict[int, Optional[str]] = field(default_factory=dict)
