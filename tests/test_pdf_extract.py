from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

import statement_pipeline.pdf_extract as pdf_mod
from statement_pipeline.pdf_extract import (
    PasswordCheck,
    PdfErrorKind,
    PdfExtraction,
    PdfExtractionFailure,
    check_password,
    clean_extracted_text,
    extract_pdf_text,
)
from tests.helpers.pdfs import make_pdf

STATEMENT_TEXT = "ESTADO DE CUENTA\n12/05   MAKRO INDEPENDENCIA     195.50\n"


@pytest.fixture
def pdftotext_calls(monkeypatch: pytest.MonkeyPatch) -> list[list[str]]:
    """Replace the pdftotext subprocess with a recorder that returns fixed text."""

    calls: list[list[str]] = []

    def _fake_run(binary: str, pdf_path: Path, *, password_args: list[str]) -> str:
        assert pdf_path.read_bytes().startswith(b"%PDF-")
        calls.append(list(password_args))
        return STATEMENT_TEXT

    monkeypatch.setattr(pdf_mod, "_resolve_pdftotext", lambda: "/usr/bin/pdftotext")
    monkeypatch.setattr(pdf_mod, "_run_pdftotext", _fake_run)
    return calls


def test_non_pdf_bytes_rejected_before_any_work(monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(*_a, **_kw):
        raise AssertionError("no parsing or extraction may happen for non-PDF input")

    monkeypatch.setattr(pdf_mod, "PdfReader", _boom)
    monkeypatch.setattr(pdf_mod, "_run_pdftotext", _boom)
    monkeypatch.setattr(pdf_mod, "_resolve_pdftotext", _boom)

    result = extract_pdf_text(b"PK\x03\x04 this is a zip file")
    assert isinstance(result, PdfExtractionFailure)
    assert result.kind is PdfErrorKind.NOT_A_PDF
    assert extract_pdf_text(b"").kind is PdfErrorKind.NOT_A_PDF


def test_plain_pdf_extracts_cleaned_text(pdftotext_calls: list[list[str]]) -> None:
    result = extract_pdf_text(make_pdf())
    assert isinstance(result, PdfExtraction)
    assert result.text == "ESTADO DE CUENTA\n12/05 MAKRO INDEPENDENCIA 195.50"
    assert result.encrypted is False
    assert pdftotext_calls == [[]]


def test_encrypted_pdf_three_distinct_outcomes(pdftotext_calls: list[list[str]]) -> None:
    data = make_pdf(user_password="s3cret", owner_password="owner-pass")

    no_pw = extract_pdf_text(data)
    assert isinstance(no_pw, PdfExtractionFailure)
    assert no_pw.kind is PdfErrorKind.NEEDS_PASSWORD
    # Fails before spending any extraction effort.
    assert pdftotext_calls == []

    right = extract_pdf_text(data, "s3cret")
    assert isinstance(right, PdfExtraction)
    assert right.encrypted is True
    assert "MAKRO INDEPENDENCIA" in right.text
    assert pdftotext_calls == [["-upw", "s3cret"]]

    wrong = extract_pdf_text(data, "nope")
    assert isinstance(wrong, PdfExtractionFailure)
    assert wrong.kind is PdfErrorKind.INCORRECT_PASSWORD
    assert len(pdftotext_calls) == 1


def test_owner_password_is_passed_as_owner(pdftotext_calls: list[list[str]]) -> None:
    data = make_pdf(user_password="s3cret", owner_password="owner-pass")
    assert check_password(data, "owner-pass") is PasswordCheck.OWNER_PASSWORD
    assert isinstance(extract_pdf_text(data, "owner-pass"), PdfExtraction)
    assert pdftotext_calls == [["-opw", "owner-pass"]]


def test_empty_user_password_opens_without_one(pdftotext_calls: list[list[str]]) -> None:
    data = make_pdf(owner_password="owner-pass")
    assert check_password(data, None) is PasswordCheck.USER_PASSWORD
    result = extract_pdf_text(data)
    assert isinstance(result, PdfExtraction)
    assert pdftotext_calls == [[]]


def test_check_password_on_unencrypted_pdf() -> None:
    assert check_password(make_pdf(), None) is PasswordCheck.NOT_ENCRYPTED
    assert check_password(make_pdf(), "ignored") is PasswordCheck.NOT_ENCRYPTED


def test_blank_output_is_unreadable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pdf_mod, "_resolve_pdftotext", lambda: "/usr/bin/pdftotext")
    monkeypatch.setattr(pdf_mod, "_run_pdftotext", lambda *_a, **_kw: " \n\f\n  \x0c ")
    result = extract_pdf_text(make_pdf())
    assert isinstance(result, PdfExtractionFailure)
    assert result.kind is PdfErrorKind.UNREADABLE


def test_pdftotext_error_is_unreadable(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(*_a, **_kw):
        raise subprocess.CalledProcessError(1, ["pdftotext"], stderr=b"Syntax Error: broken xref")

    monkeypatch.setattr(pdf_mod, "_resolve_pdftotext", lambda: "/usr/bin/pdftotext")
    monkeypatch.setattr(pdf_mod, "_run_pdftotext", _fail)
    assert extract_pdf_text(make_pdf()).kind is PdfErrorKind.UNREADABLE


def test_missing_tool_is_tool_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pdf_mod, "_resolve_pdftotext", lambda: None)
    result = extract_pdf_text(make_pdf())
    assert isinstance(result, PdfExtractionFailure)
    assert result.kind is PdfErrorKind.TOOL_UNAVAILABLE


def test_structural_load_error_is_unreadable(monkeypatch: pytest.MonkeyPatch) -> None:
    from pypdf.errors import PdfReadError

    def _broken(*_a, **_kw):
        raise PdfReadError("startxref not found")

    monkeypatch.setattr(pdf_mod, "PdfReader", _broken)
    result = extract_pdf_text(b"%PDF-1.7\n%garbage with no objects")
    assert isinstance(result, PdfExtractionFailure)
    assert result.kind is PdfErrorKind.UNREADABLE


def test_clean_extracted_text_rules() -> None:
    raw = (
        "  Header   line  \r\n"
        "\n\n\n\n"
        "Total .......... 120.00\n"
        "- - - - - - -\n"
        "ok\x00\x07 text\tkept\n"
    )
    assert clean_extracted_text(raw) == "Header line\n\nTotal  120.00\n\nok text\tkept"


def test_clean_keeps_short_punctuation_runs() -> None:
    assert clean_extracted_text("A...B  ***C") == "A...B ***C"
