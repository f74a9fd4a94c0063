"""PDF statement text extraction.

The extractor turns raw upload bytes (plus an optional password) into cleaned
plain text, or into a typed :class:`PdfExtractionFailure`. Failures are values,
not exceptions, so the upload-time caller can prompt for a password without
ever enqueuing a job.

Pipeline
--------
1. Reject bytes without a ``%PDF-`` header before any parsing.
2. Load the document structure with :mod:`pypdf` and detect encryption.
3. Check the password with a fresh reader, independent of extraction. The
   outcome distinguishes "needs password", "incorrect password" and
   "accepted (as user or owner password)".
4. Run ``pdftotext -layout -enc UTF-8`` on a temporary copy of the file.
5. Clean the output (see :func:`clean_extracted_text`); empty means
   ``unreadable``.
"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from enum import StrEnum
from io import BytesIO
from pathlib import Path
from typing import TypeAlias

from pypdf import PdfReader
from pypdf import PasswordType
from pypdf.errors import PdfReadError

from .logging_setup import get_logger

PDF_MAGIC = b"%PDF-"

_DEFAULT_BINARY = "pdftotext"
_DEFAULT_TIMEOUT_SEC = 60.0

_logger = get_logger("statement_pipeline.pdf_extract")


class PdfErrorKind(StrEnum):
    NOT_A_PDF = "not_a_pdf"
    NEEDS_PASSWORD = "needs_password"
    INCORRECT_PASSWORD = "incorrect_password"
    UNREADABLE = "unreadable"
    TOOL_UNAVAILABLE = "tool_unavailable"
    # Raised by the upload service, never by the extractor itself.
    FILE_TOO_LARGE = "file_too_large"


_MESSAGES: dict[PdfErrorKind, str] = {
    PdfErrorKind.NOT_A_PDF: "The file is not a PDF document.",
    PdfErrorKind.NEEDS_PASSWORD: "This PDF is password-protected. Please provide the password.",
    PdfErrorKind.INCORRECT_PASSWORD: "The password provided for this PDF is incorrect.",
    PdfErrorKind.UNREADABLE: "Could not extract any text from this PDF.",
    PdfErrorKind.TOOL_UNAVAILABLE: "PDF text extraction is not available on this server.",
    PdfErrorKind.FILE_TOO_LARGE: "The file exceeds the maximum allowed size.",
}


@dataclass(frozen=True, slots=True)
class PdfExtraction:
    text: str
    encrypted: bool = False

    ok = True


@dataclass(frozen=True, slots=True)
class PdfExtractionFailure:
    kind: PdfErrorKind
    message: str

    ok = False

    @classmethod
    def of(cls, kind: PdfErrorKind, message: str | None = None) -> PdfExtractionFailure:
        return cls(kind=kind, message=message or _MESSAGES[kind])


PdfResult: TypeAlias = PdfExtraction | PdfExtractionFailure


class PasswordCheck(StrEnum):
    NOT_ENCRYPTED = "not_encrypted"
    NEEDS_PASSWORD = "needs_password"
    INCORRECT_PASSWORD = "incorrect_password"
    USER_PASSWORD = "user_password"
    OWNER_PASSWORD = "owner_password"


# ---------------------------------------------------------------------------
# Text cleaning
# ---------------------------------------------------------------------------

_MULTI_SPACE_RE = re.compile(r" {2,}")
_BLANK_RUN_RE = re.compile(r"\n{3,}")
# Four or more of the same non-word, non-space char, optionally space-separated.
_OCR_ARTIFACT_RE = re.compile(r"([^\w\s])(?:[ \t]*\1){3,}")
# Control characters except tab (\x09), newline (\x0A) and carriage return (\x0D).
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")


def clean_extracted_text(raw: str) -> str:
    """Normalize ``pdftotext`` output for the AI extractor."""

    text = raw.replace("\r\n", "\n").replace("\f", "\n")
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = _MULTI_SPACE_RE.sub(" ", text)
    text = _BLANK_RUN_RE.sub("\n\n", text)
    text = _OCR_ARTIFACT_RE.sub("", text)
    text = _CONTROL_RE.sub("", text)
    return text.strip()


# ---------------------------------------------------------------------------
# Encryption and password handling (pypdf)
# ---------------------------------------------------------------------------


def is_pdf(data: bytes) -> bool:
    return data[: len(PDF_MAGIC)] == PDF_MAGIC


def is_encrypted(data: bytes) -> bool:
    """Structural load without decryption. Raises ``PdfReadError`` when malformed."""

    return PdfReader(BytesIO(data)).is_encrypted


def check_password(data: bytes, password: str | None) -> PasswordCheck:
    """Validate ``password`` against ``data`` without extracting any text.

    With no password, documents that open with an empty user password
    (owner-restricted only) are accepted.
    """

    reader = PdfReader(BytesIO(data))
    if not reader.is_encrypted:
        return PasswordCheck.NOT_ENCRYPTED

    if not password:
        outcome = reader.decrypt("")
        if outcome == PasswordType.NOT_DECRYPTED:
            return PasswordCheck.NEEDS_PASSWORD
        return PasswordCheck.USER_PASSWORD

    outcome = reader.decrypt(password)
    if outcome == PasswordType.OWNER_PASSWORD:
        return PasswordCheck.OWNER_PASSWORD
    if outcome == PasswordType.USER_PASSWORD:
        return PasswordCheck.USER_PASSWORD
    return PasswordCheck.INCORRECT_PASSWORD


# ---------------------------------------------------------------------------
# Text extraction (pdftotext)
# ---------------------------------------------------------------------------


def _resolve_pdftotext() -> str | None:
    binary = os.getenv("STATEMENT_PIPELINE_PDFTOTEXT") or _DEFAULT_BINARY
    return shutil.which(binary)


def _timeout_seconds() -> float:
    raw = os.getenv("STATEMENT_PIPELINE_PDF_TIMEOUT")
    if not raw:
        return _DEFAULT_TIMEOUT_SEC
    try:
        return max(1.0, float(raw))
    except ValueError:
        return _DEFAULT_TIMEOUT_SEC


def _run_pdftotext(binary: str, pdf_path: Path, *, password_args: list[str]) -> str:
    """Return layout-preserving UTF-8 text; raise ``CalledProcessError`` on failure."""

    proc = subprocess.run(
        [binary, "-layout", "-enc", "UTF-8", *password_args, str(pdf_path), "-"],
        capture_output=True,
        check=True,
        timeout=_timeout_seconds(),
    )
    return proc.stdout.decode("utf-8", errors="replace")


def _password_args(check: PasswordCheck, password: str | None) -> list[str]:
    if not password:
        return []
    if check is PasswordCheck.OWNER_PASSWORD:
        return ["-opw", password]
    if check is PasswordCheck.USER_PASSWORD:
        return ["-upw", password]
    return []


def extract_pdf_text(data: bytes, password: str | None = None) -> PdfResult:
    """Extract cleaned text from ``data`` or return a typed failure."""

    if not is_pdf(data):
        return PdfExtractionFailure.of(PdfErrorKind.NOT_A_PDF)

    try:
        encrypted = is_encrypted(data)
        if encrypted and not password:
            # Documents with an empty user password still open without one.
            check = check_password(data, None)
            if check is PasswordCheck.NEEDS_PASSWORD:
                _logger.info("pdf_extract:needs_password bytes=%d", len(data))
                return PdfExtractionFailure.of(PdfErrorKind.NEEDS_PASSWORD)
        else:
            check = check_password(data, password)
    except PdfReadError as e:
        _logger.warning("pdf_extract:unreadable stage=load err=%s", e)
        return PdfExtractionFailure.of(PdfErrorKind.UNREADABLE)
    except (ValueError, KeyError, IndexError, TypeError) as e:
        # Malformed object streams surface as plain Python errors from pypdf.
        _logger.warning("pdf_extract:unreadable stage=load err=%s", type(e).__name__)
        return PdfExtractionFailure.of(PdfErrorKind.UNREADABLE)

    if check is PasswordCheck.INCORRECT_PASSWORD:
        _logger.info("pdf_extract:incorrect_password bytes=%d", len(data))
        return PdfExtractionFailure.of(PdfErrorKind.INCORRECT_PASSWORD)

    binary = _resolve_pdftotext()
    if binary is None:
        _logger.error("pdf_extract:tool_unavailable binary=pdftotext")
        return PdfExtractionFailure.of(PdfErrorKind.TOOL_UNAVAILABLE)

    with tempfile.TemporaryDirectory(prefix="statement-pdf-") as tmp:
        pdf_path = Path(tmp) / "statement.pdf"
        pdf_path.write_bytes(data)
        try:
            raw = _run_pdftotext(binary, pdf_path, password_args=_password_args(check, password))
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b"").decode("utf-8", errors="replace")
            if "password" in stderr.lower():
                return PdfExtractionFailure.of(PdfErrorKind.INCORRECT_PASSWORD)
            _logger.warning("pdf_extract:unreadable stage=pdftotext rc=%s", e.returncode)
            return PdfExtractionFailure.of(PdfErrorKind.UNREADABLE)
        except subprocess.TimeoutExpired:
            _logger.warning("pdf_extract:unreadable stage=pdftotext reason=timeout")
            return PdfExtractionFailure.of(PdfErrorKind.UNREADABLE)
        except FileNotFoundError:
            return PdfExtractionFailure.of(PdfErrorKind.TOOL_UNAVAILABLE)

    text = clean_extracted_text(raw)
    if not text:
        return PdfExtractionFailure.of(PdfErrorKind.UNREADABLE)

    _logger.info(
        "pdf_extract:done bytes=%d chars=%d encrypted=%s", len(data), len(text), encrypted
    )
    return PdfExtraction(text=text, encrypted=encrypted)


__all__ = [
    "PDF_MAGIC",
    "PasswordCheck",
    "PdfErrorKind",
    "PdfExtraction",
    "PdfExtractionFailure",
    "PdfResult",
    "check_password",
    "clean_extracted_text",
    "extract_pdf_text",
    "is_encrypted",
    "is_pdf",
]
