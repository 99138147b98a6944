import unittest
from decimal import Decimal

from pennywise.currency_conversion import (
    Currency,
    CurrencyBook,
    convert,
    convert_or_original,
    format_amount,
    normalize_currency,
    resolve_record_currency,
    to_display,
)
from pennywise.errors import ConversionFailure, MissingCurrencyError

USD = Currency(id=1, code="USD", exchange_rate=Decimal("1"), is_default=True, symbol="$")
EUR = Currency(id=2, code="EUR", exchange_rate=Decimal("1.25"), symbol="€")
JPY = Currency(id=3, code="JPY", exchange_rate=Decimal("0.0067"), decimal_places=0, symbol="¥")
XXX = Currency(id=4, code="XXX", exchange_rate=None)
ZZZ = Currency(id=5, code="ZZZ", exchange_rate=Decimal("0"))


class ConvertTests(unittest.TestCase):
    def test_same_currency_returns_amount_unchanged(self) -> None:
        for amount in (Decimal("0"), Decimal("12.3456789"), Decimal("-4.5")):
            self.assertEqual(convert(amount, EUR, EUR), amount)

    def test_same_currency_skips_rate_validation(self) -> None:
        self.assertEqual(convert(Decimal("10"), XXX, XXX), Decimal("10"))

    def test_converts_through_base_rates(self) -> None:
        self.assertEqual(convert(Decimal("100"), EUR, USD), Decimal("125.00"))
        self.assertEqual(convert(Decimal("125"), USD, EUR), Decimal("100"))

    def test_round_trip_within_tolerance(self) -> None:
        amount = Decimal("1234.56")
        for first, second in ((USD, EUR), (EUR, JPY), (JPY, USD)):
            back = convert(convert(amount, first, second), second, first)
            self.assertLess(abs(back - amount), Decimal("0.0001"))

    def test_accepts_plain_numbers(self) -> None:
        self.assertEqual(convert("10", EUR, USD), Decimal("12.50"))

    def test_missing_rate_raises(self) -> None:
        with self.assertRaises(ConversionFailure):
            convert(Decimal("10"), XXX, USD)

    def test_zero_rate_raises(self) -> None:
        with self.assertRaises(ConversionFailure):
            convert(Decimal("10"), USD, ZZZ)

    def test_convert_or_original_keeps_amount_on_failure(self) -> None:
        result = convert_or_original(Decimal("42"), XXX, USD, record_kind="expense", record_id=9)
        self.assertEqual(result, Decimal("42"))


class CurrencyBookTests(unittest.TestCase):
    def test_flagged_default_wins(self) -> None:
        book = CurrencyBook([EUR, USD])
        self.assertEqual(book.default, USD)

    def test_fallback_order_without_flag(self) -> None:
        plain_usd = Currency(id=1, code="USD")
        book = CurrencyBook([plain_usd, EUR, JPY], fallback_code="JPY")
        self.assertEqual(book.default, JPY)
        book = CurrencyBook([plain_usd, EUR], fallback_code="GBP")
        self.assertEqual(book.default, EUR)
        book = CurrencyBook([Currency(id=7, code="CHF"), Currency(id=3, code="SEK")])
        self.assertEqual(book.default.code, "SEK")

    def test_empty_book_has_no_default(self) -> None:
        with self.assertRaises(MissingCurrencyError):
            CurrencyBook([]).default

    def test_get_rejects_missing_and_unknown(self) -> None:
        book = CurrencyBook([USD, EUR])
        with self.assertRaises(MissingCurrencyError):
            book.get(None)
        with self.assertRaises(MissingCurrencyError):
            book.get(99)
        self.assertEqual(book.by_code("eur"), EUR)

    def test_resolve_substitutes_default_and_reports_repair(self) -> None:
        book = CurrencyBook([USD, EUR])
        currency, repair = resolve_record_currency(book, None, record_kind="expense", record_id=3)
        self.assertEqual(currency, USD)
        self.assertEqual(repair.record_kind, "expense")
        self.assertEqual(repair.record_id, 3)
        self.assertEqual(repair.currency_id, USD.id)

    def test_resolve_known_currency_has_no_repair(self) -> None:
        book = CurrencyBook([USD, EUR])
        currency, repair = resolve_record_currency(book, EUR.id, record_kind="budget", record_id=1)
        self.assertEqual(currency, EUR)
        self.assertIsNone(repair)


class DisplayTests(unittest.TestCase):
    def test_to_display_uses_currency_places(self) -> None:
        self.assertEqual(to_display(Decimal("10.005"), USD), Decimal("10.01"))
        self.assertEqual(to_display(Decimal("1499.5"), JPY), Decimal("1500"))

    def test_format_amount(self) -> None:
        self.assertEqual(format_amount(Decimal("1234.5"), USD), "$ 1,234.50")
        self.assertEqual(format_amount(Decimal("10"), Currency(id=9, code="GBP")), "GBP 10.00")

    def test_normalize_currency(self) -> None:
        self.assertEqual(normalize_currency(" usd "), "USD")
        with self.assertRaises(ValueError):
            normalize_currency("US")


if __name__ == "__main__":
    unittest.main()
