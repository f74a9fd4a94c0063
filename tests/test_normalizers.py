from __future__ import annotations

import pytest

from statement_pipeline.normalizers import build_search_text, normalize_text


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("UBER   TRIP\t123", "uber trip 123"),
        ("01/15 STARBUCKS LIMA", "starbucks lima"),
        ("2025-01-15 Netflix.com", "netflix.com"),
        ("[TRX] Rappi*Restaurantes", "rappi*restaurantes"),
        ("*DEBIT* Spotify", "spotify"),
        ("*credit* refund", "refund"),
        ("PURCHASE Amazon Mktp", "amazon mktp"),
        ("Compra  Plaza Vea", "plaza vea"),
        ("  Café Tostado  ", "cafe tostado"),
    ],
)
def test_normalize_text_examples(raw: str, expected: str) -> None:
    assert normalize_text(raw) == expected


def test_normalize_text_empty_and_none() -> None:
    assert normalize_text(None) == ""
    assert normalize_text("") == ""
    assert normalize_text("   \n\t ") == ""


def test_accent_variants_normalize_identically() -> None:
    variants = ["café", "cafe", "CAFÉ", "Café", "  CAFÉ "]
    assert {normalize_text(v) for v in variants} == {"cafe"}


@pytest.mark.parametrize(
    "raw",
    [
        "01/15 COMPRA 2025-01-15 [TRX] *DEBIT* Uber",
        "compra compra   purchase tienda",
        "01/15   01/16 Wong",
        "  ÁÉÍÓÚ ñandú  ",
        "[trx]*debit*compra x",
        "12/31",
        "",
    ],
)
def test_normalize_text_is_idempotent(raw: str) -> None:
    once = normalize_text(raw)
    assert normalize_text(once) == once


def test_stacked_prefixes_are_all_removed() -> None:
    assert normalize_text("01/15 COMPRA 2025-01-15 [TRX] *DEBIT* Uber") == "uber"


def test_prefix_only_matches_at_start() -> None:
    assert normalize_text("Wong compra 01/15 ") == "wong compra 01/15"


def test_build_search_text_joins_description_and_merchant() -> None:
    assert build_search_text("UBER EATS ORDER", "Uber Eats") == "uber eats order uber eats"
    assert build_search_text("STARBUCKS COFFEE", None) == "starbucks coffee"
    assert build_search_text(None, "Makro") == "makro"
    assert build_search_text(None, None) == ""
