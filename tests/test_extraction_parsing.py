from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from statement_pipeline.extraction_parsing import parse_ai_response
from statement_pipeline.models import ParsedTransactions, ParseFailure, TransactionCandidate

FENCED_MAKRO = """Here are the transactions I found:

```json
[
  {"date": "2025-05-12", "merchant": "Makro", "description": "MAKRO INDEPENDENCIA", "amount": 195.50, "currency": "PEN"}
]
```
"""


def _ok(content: str, **kw) -> ParsedTransactions:
    result = parse_ai_response(content, **kw)
    assert isinstance(result, ParsedTransactions), result
    return result


def test_fenced_block_is_parsed() -> None:
    result = _ok(FENCED_MAKRO)
    assert result.skipped == 0
    [tx] = result.transactions
    assert tx == TransactionCandidate(
        date=dt.date(2025, 5, 12),
        merchant="Makro",
        description="MAKRO INDEPENDENCIA",
        amount=Decimal("195.5"),
        currency="PEN",
    )


def test_prose_around_bare_array_uses_bracket_slice() -> None:
    content = (
        'Sure! [{"date": "2025-06-01", "merchant": "Uber", "description": "UBER TRIP", '
        '"amount": "12.90", "currency": "usd"}] Let me know if you need more.'
    )
    [tx] = _ok(content).transactions
    assert tx.merchant == "Uber"
    assert tx.amount == Decimal("12.90")
    assert tx.currency == "USD"


def test_empty_array_is_success() -> None:
    result = _ok("[]")
    assert result.transactions == ()
    assert result.ok is True


@pytest.mark.parametrize(
    ("content", "reason"),
    [
        ("I could not find any transactions in this statement.", "No JSON array found in AI response"),
        ("", "No JSON array found in AI response"),
        ('{"transactions": 1}', "No JSON array found in AI response"),
    ],
)
def test_no_array_is_failure(content: str, reason: str) -> None:
    result = parse_ai_response(content)
    assert isinstance(result, ParseFailure)
    assert result.reason == reason
    assert result.ok is False


def test_broken_json_is_failure() -> None:
    result = parse_ai_response('[{"merchant": "Wong", "amount": 10,]')
    assert isinstance(result, ParseFailure)
    assert result.reason.startswith("Invalid JSON in AI response")


def test_field_fallbacks() -> None:
    content = """[
      {"amount": "S/ -1,234.50"},
      {"merchant": "  ", "description": "Cargo mensual", "amount": null, "currency": "soles", "date": "12/05"},
      {"merchant": "Plaza Vea", "amount": "abc", "date": "2025-07-04T10:11:12Z"}
    ]"""
    first, second, third = _ok(content).transactions

    assert first.merchant == "Unknown"
    assert first.description == ""
    assert first.amount == Decimal("1234.50")
    assert first.currency == "PEN"
    assert first.date is None

    assert second.merchant == "Unknown"
    assert second.description == "Cargo mensual"
    assert second.amount == Decimal("0")
    assert second.currency == "PEN"
    assert second.date is None

    assert third.description == "Plaza Vea"
    assert third.amount == Decimal("0")
    assert third.date == dt.date(2025, 7, 4)


def test_default_currency_override() -> None:
    [tx] = _ok('[{"merchant": "Amazon", "amount": 20}]', default_currency="usd").transactions
    assert tx.currency == "USD"


def test_default_currency_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STATEMENT_PIPELINE_DEFAULT_CURRENCY", "eur")
    [tx] = _ok('[{"merchant": "Zara", "amount": 20}]').transactions
    assert tx.currency == "EUR"


def test_non_object_elements_are_skipped() -> None:
    result = _ok('[1, "two", null, ["x"], {"merchant": "Tambo", "amount": 3.5}]')
    assert result.skipped == 4
    [tx] = result.transactions
    assert tx.merchant == "Tambo"
    assert tx.amount == Decimal("3.5")


def test_unusable_amounts_fall_back_to_zero() -> None:
    content = """[
      {"merchant": "A", "amount": NaN},
      {"merchant": "B", "amount": 1e400},
      {"merchant": "C", "amount": "4557 8800 1234 5678 120.00"},
      {"merchant": "D", "amount": "1234567890123456789012345"},
      {"merchant": "E", "amount": 999999999999.99}
    ]"""
    result = _ok(content)

    assert result.skipped == 0
    amounts = [tx.amount for tx in result.transactions]
    assert amounts == [Decimal("0")] * 4 + [Decimal("999999999999.99")]
