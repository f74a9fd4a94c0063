"""Text normalization for keyword matching.

``normalize_text`` canonicalizes merchant/description strings so that keyword
rules match regardless of case, accents, statement-specific prefixes and
spacing. It is pure and total: ``None`` and ``""`` both normalize to ``""``,
and ``normalize_text(normalize_text(s)) == normalize_text(s)`` for all ``s``.
"""

from __future__ import annotations

import re
import unicodedata

# Leading artifacts that banks prepend to descriptions. Applied after
# lowercasing, repeatedly, so stacked prefixes ("01/15 compra ...") all go.
_PREFIX_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\d{2}/\d{2}\s+"),
    re.compile(r"^\d{4}-\d{2}-\d{2}\s+"),
    re.compile(r"^\[trx\]\s*"),
    re.compile(r"^\*debit\*\s*"),
    re.compile(r"^\*credit\*\s*"),
    re.compile(r"^purchase\s+"),
    re.compile(r"^compra\s+"),
)
_WS_RE = re.compile(r"\s+")


def _strip_accents(s: str) -> str:
    decomposed = unicodedata.normalize("NFD", s)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _strip_prefixes(s: str) -> str:
    while True:
        before = s
        for pat in _PREFIX_PATTERNS:
            s = pat.sub("", s, count=1).lstrip()
        if s == before:
            return s


def normalize_text(text: str | None) -> str:
    """Return the canonical matching form of ``text``."""

    if not text:
        return ""
    s = _strip_accents(text.lower()).strip()
    s = _strip_prefixes(s)
    return _WS_RE.sub(" ", s).strip()


def build_search_text(description: str | None, merchant: str | None = None) -> str:
    """Normalized description and merchant joined by one space."""

    parts = [normalize_text(description), normalize_text(merchant)]
    return " ".join(p for p in parts if p).strip()


__all__ = ["build_search_text", "normalize_text"]
