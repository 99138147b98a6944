from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping, Optional

import structlog

from pennywise.errors import ConversionFailure, MissingCurrencyError

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
FALLBACK_DEFAULT_CODES = ("EUR", "USD")


@dataclass(frozen=True)
class Currency:
    """A currency with its rate expressed in the default (base) currency.

    ``exchange_rate`` is the base-currency value of one unit, so the default
    currency itself carries a rate of 1.
    """

    id: int
    code: str
    exchange_rate: Optional[Decimal] = Decimal("1")
    decimal_places: int = 2
    is_default: bool = False
    symbol: str = ""


@dataclass(frozen=True)
class CurrencyRepair:
    record_kind: str
    record_id: int
    currency_id: int


class CurrencyBook:
    def __init__(self, currencies: Iterable[Currency], fallback_code: str = "USD") -> None:
        self._by_id: dict[int, Currency] = {currency.id: currency for currency in currencies}
        self._fallback_code = fallback_code
        self._default: Optional[Currency] = None

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self):
        return iter(self._by_id.values())

    @property
    def default(self) -> Currency:
        if self._default is None:
            self._default = self._find_default()
        return self._default

    def get(self, currency_id: Optional[int]) -> Currency:
        if currency_id is None:
            raise MissingCurrencyError("Record has no currency reference.")
        try:
            return self._by_id[currency_id]
        except KeyError as exc:
            raise MissingCurrencyError(f"Unknown currency id: {currency_id}") from exc

    def by_code(self, code: str) -> Currency:
        normalized = normalize_currency(code)
        for currency in self._by_id.values():
            if currency.code == normalized:
                return currency
        raise MissingCurrencyError(f"Unknown currency code: {normalized}")

    def _find_default(self) -> Currency:
        flagged = [currency for currency in self._by_id.values() if currency.is_default]
        if flagged:
            return min(flagged, key=lambda currency: currency.id)
        for code in (self._fallback_code, *FALLBACK_DEFAULT_CODES):
            for currency in self._by_id.values():
                if currency.code == code:
                    return currency
        if self._by_id:
            return self._by_id[min(self._by_id)]
        raise MissingCurrencyError("No currencies are configured.")


def convert(
    amount: Decimal | int | float | str,
    source: Currency,
    target: Currency,
) -> Decimal:
    """Convert an amount between two currencies at full precision."""
    coerced_amount = _coerce_amount(amount)
    if source.code == target.code:
        return coerced_amount

    source_rate = _usable_rate(source)
    target_rate = _usable_rate(target)
    return coerced_amount * (source_rate / target_rate)


def resolve_record_currency(
    book: CurrencyBook,
    currency_id: Optional[int],
    *,
    record_kind: str,
    record_id: int,
) -> tuple[Currency, Optional[CurrencyRepair]]:
    """Return the record's currency, substituting the default when it is missing.

    The substitution is reported as a repair so the caller can write the
    deduced currency back onto the record.
    """
    try:
        return book.get(currency_id), None
    except MissingCurrencyError:
        default = book.default
        logger.warning(
            "currency_substituted",
            record_kind=record_kind,
            record_id=record_id,
            original_currency_id=currency_id,
            currency_id=default.id,
            currency=default.code,
        )
        return default, CurrencyRepair(
            record_kind=record_kind,
            record_id=record_id,
            currency_id=default.id,
        )


def convert_or_original(
    amount: Decimal | int | float | str,
    source: Currency,
    target: Currency,
    *,
    record_kind: str = "record",
    record_id: Optional[int] = None,
) -> Decimal:
    try:
        converted = convert(amount, source, target)
    except ConversionFailure as exc:
        logger.error(
            "currency_conversion_failed",
            record_kind=record_kind,
            record_id=record_id,
            from_currency=source.code,
            to_currency=target.code,
            error=str(exc),
        )
        return _coerce_amount(amount)
    if source.code != target.code:
        logger.debug(
            "currency_converted",
            record_kind=record_kind,
            record_id=record_id,
            from_currency=source.code,
            to_currency=target.code,
            original_amount=str(amount),
            converted_amount=str(converted),
        )
    return converted


def to_display(amount: Decimal | int | float | str, currency: Currency) -> Decimal:
    places = max(int(currency.decimal_places), 0)
    quantum = Decimal(1).scaleb(-places)
    return _coerce_amount(amount).quantize(quantum, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal | int | float | str, currency: Currency, template: str = "{symbol} {amount}") -> str:
    display = to_display(amount, currency)
    formatted = f"{display:,.{max(int(currency.decimal_places), 0)}f}"
    return template.replace("{symbol}", currency.symbol or currency.code).replace("{amount}", formatted)


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def currencies_from_rows(rows: Iterable[Mapping]) -> list[Currency]:
    return [
        Currency(
            id=row["id"],
            code=normalize_currency(row["code"]),
            exchange_rate=None if row["exchange_rate"] is None else _coerce_amount(row["exchange_rate"]),
            decimal_places=row["decimal_places"] if row["decimal_places"] is not None else 2,
            is_default=bool(row["is_default"]),
            symbol=row.get("symbol") or "",
        )
        for row in rows
    ]


def _usable_rate(currency: Currency) -> Decimal:
    if currency.exchange_rate is None:
        raise ConversionFailure(f"Missing exchange rate for {currency.code}.")
    rate = _coerce_amount(currency.exchange_rate)
    if rate == ZERO:
        raise ConversionFailure(f"Zero exchange rate for {currency.code}.")
    return rate


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
