"""Test helpers to stub the OpenAI Responses client used by ai_extract.py.

Each stub is scripted with a list of outcomes, one per ``responses.create``
call: a string becomes ``output_text``; an exception instance is raised.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class APIStatusErrorStub(Exception):
    """Carries ``status_code`` like ``openai.APIStatusError``."""

    def __init__(self, status_code: int, message: str = "stubbed API error") -> None:
        super().__init__(message)
        self.status_code = status_code


class _Usage:
    def __init__(self, total_tokens: int) -> None:
        self.total_tokens = total_tokens


class _Resp:
    def __init__(self, text: str, total_tokens: int) -> None:
        self.output_text = text
        self.output: list[Any] = []
        self.usage = _Usage(total_tokens)


class OpenAIStub:
    """Minimal stub matching the ``openai.OpenAI`` shape used by ``ai_extract``.

    Parameters
    ----------
    outcomes:
        Consumed in order; the last one repeats when calls outnumber it.
    total_tokens:
        Reported on every successful response.
    """

    def __init__(self, outcomes: Sequence[str | BaseException], *, total_tokens: int = 123) -> None:
        if not outcomes:
            raise ValueError("OpenAIStub needs at least one outcome")
        self._outcomes = list(outcomes)
        self._total_tokens = total_tokens
        self.calls: list[dict[str, Any]] = []

        class _Responses:
            def __init__(self, outer: OpenAIStub) -> None:
                self._outer = outer

            def create(self, **kwargs: Any) -> _Resp:
                outer = self._outer
                outer.calls.append(kwargs)
                idx = min(len(outer.calls), len(outer._outcomes)) - 1
                outcome = outer._outcomes[idx]
                if isinstance(outcome, BaseException):
                    raise outcome
                return _Resp(outcome, outer._total_tokens)

        self.responses = _Responses(self)


def install_openai_stub(monkeypatch, stub: OpenAIStub) -> OpenAIStub:
    """Route ``ai_extract._create_client`` to ``stub``."""

    import statement_pipeline.ai_extract as ai_mod

    monkeypatch.setattr(ai_mod, "_create_client", lambda: stub)
    return stub
