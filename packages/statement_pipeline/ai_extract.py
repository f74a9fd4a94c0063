"""AI transaction extraction via the OpenAI Responses API.

Public API:
    - :func:`request_completion`: one extraction call with bounded retries.
    - :func:`extract_transactions`: prompt, call, and parse into candidates.

No side effects occur at import time (no client creation, no environment
reads).
"""

from __future__ import annotations

import os
import random
import time
from typing import Any

from openai import OpenAI

from . import prompting
from .errors import AIRequestError, InvalidAIResponseError
from .extraction_parsing import parse_ai_response
from .logging_setup import get_logger
from .models import Completion, ParseFailure, TransactionCandidate

# ---- Tunables (private) ------------------------------------------------------

_DEFAULT_MODEL: str = "gpt-4o"
_TEMPERATURE: float = 0.1
_MAX_OUTPUT_TOKENS: int = 8000
_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

_logger = get_logger("statement_pipeline.ai_extract")


def _model_name() -> str:
    return os.getenv("STATEMENT_PIPELINE_MODEL") or _DEFAULT_MODEL


def _create_client() -> OpenAI:
    return OpenAI()


def _response_text(resp: Any) -> str | None:
    """Prefer ``resp.output_text``; fall back to ``resp.output[0].content[0].text``."""

    text: str | None = getattr(resp, "output_text", None)
    if text:
        return text
    try:
        first = resp.output[0] if getattr(resp, "output", None) else None
        content = getattr(first, "content", None)
        if content:
            txt_obj = getattr(content[0], "text", None)
            if isinstance(txt_obj, str):
                return txt_obj
            maybe_val = getattr(txt_obj, "value", None)
            if isinstance(maybe_val, str):
                return maybe_val
    except (AttributeError, IndexError, TypeError):
        return None
    return None


def _total_tokens(resp: Any) -> int:
    usage = getattr(resp, "usage", None)
    total = getattr(usage, "total_tokens", None)
    return total if isinstance(total, int) else 0


def _is_retryable(exc: BaseException) -> bool:
    """Return True only for HTTP 429 and 5xx errors."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    if attempt_no - 1 < len(_BACKOFF_SCHEDULE_SEC):
        base = _BACKOFF_SCHEDULE_SEC[attempt_no - 1]
    else:
        base = _BACKOFF_SCHEDULE_SEC[-1]
    jitter = base * _JITTER_PCT
    delay = base + random.uniform(-jitter, jitter)
    time.sleep(max(0.0, delay))


def request_completion(prompt: str) -> Completion:
    """Send ``prompt`` as a single-shot request and return text plus token usage.

    Raises
    ------
    InvalidAIResponseError
        The model returned no text.
    AIRequestError
        The call failed terminally (non-retryable error or attempts exhausted).
    """

    model = _model_name()
    client = _create_client()
    attempt = 1
    while True:
        t0 = time.perf_counter()
        try:
            resp = client.responses.create(
                model=model,
                input=prompt,
                temperature=_TEMPERATURE,
                max_output_tokens=_MAX_OUTPUT_TOKENS,
            )
        except Exception as e:  # noqa: BLE001 - classified below
            dt_ms = (time.perf_counter() - t0) * 1000.0
            if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                _logger.error(
                    "ai_extract:request_failed_terminal model=%s latency_ms=%.2f error=%s attempt=%d",
                    model,
                    dt_ms,
                    e.__class__.__name__,
                    attempt,
                )
                raise AIRequestError(f"AI extraction request failed: {e}") from e
            _logger.warning(
                "ai_extract:request_retry model=%s latency_ms=%.2f error=%s attempt=%d",
                model,
                dt_ms,
                e.__class__.__name__,
                attempt,
            )
            _sleep_backoff(attempt)
            attempt += 1
            continue

        text = (_response_text(resp) or "").strip()
        if not text:
            raise InvalidAIResponseError("Empty response from model")
        completion = Completion(text=text, total_tokens=_total_tokens(resp))
        _logger.info(
            "ai_extract:request_done model=%s latency_ms=%.2f tokens=%d",
            model,
            (time.perf_counter() - t0) * 1000.0,
            completion.total_tokens,
        )
        return completion


def extract_transactions(
    statement_text: str, *, default_currency: str | None = None
) -> tuple[list[TransactionCandidate], int]:
    """Return ``(candidates, total_tokens)`` for ``statement_text``.

    Raises :class:`InvalidAIResponseError` when the output holds no parseable
    JSON array.
    """

    completion = request_completion(prompting.build_extraction_prompt(statement_text))
    result = parse_ai_response(completion.text, default_currency=default_currency)
    if isinstance(result, ParseFailure):
        _logger.error("ai_extract:invalid_response reason=%s", result.reason)
        raise InvalidAIResponseError(result.reason)
    _logger.info(
        "ai_extract:parsed transactions=%d skipped=%d",
        len(result.transactions),
        result.skipped,
    )
    return list(result.transactions), completion.total_tokens


__all__ = ["extract_transactions", "request_completion"]
