"""Named events and the job-queue transport client.

Payloads are pydantic models serialized with camelCase keys, which is the
wire shape workers and other producers agree on:

- ``statement/process`` -> ``{statementId, userId, cardId, fileName, extractedText}``
- ``transactions/categorize-by-keyword`` -> ``{userId, keywordId, keyword, categoryId}``
- ``transactions/reassign-keyword`` ->
  ``{userId, keywordId, keyword, oldCategoryId, newCategoryId}``

:class:`HttpEventSender` posts to an Inngest-compatible event endpoint using
the standard library. A missing event key, an authorization rejection or a
connection failure raises :class:`TransportUnavailableError`; callers use that
type (not the error text) to decide on inline execution.
"""

from __future__ import annotations

import http.client
import json
import os
import urllib.error
import urllib.request
from collections.abc import Mapping
from typing import Any, ClassVar, Protocol

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .errors import EventSendError, TransportUnavailableError
from .logging_setup import get_logger

STATEMENT_PROCESS = "statement/process"
CATEGORIZE_BY_KEYWORD = "transactions/categorize-by-keyword"
REASSIGN_KEYWORD = "transactions/reassign-keyword"

DEFAULT_BASE_URL = "https://inn.gs"

_logger = get_logger("statement_pipeline.events")


class EventPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    event_name: ClassVar[str]

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class StatementProcessEvent(EventPayload):
    event_name: ClassVar[str] = STATEMENT_PROCESS

    statement_id: str
    user_id: str
    card_id: str
    file_name: str
    extracted_text: str


class CategorizeByKeywordEvent(EventPayload):
    event_name: ClassVar[str] = CATEGORIZE_BY_KEYWORD

    user_id: str
    keyword_id: str
    keyword: str
    category_id: str


class ReassignKeywordEvent(EventPayload):
    event_name: ClassVar[str] = REASSIGN_KEYWORD

    user_id: str
    keyword_id: str
    keyword: str
    old_category_id: str | None = None
    new_category_id: str


EVENT_PAYLOADS: dict[str, type[EventPayload]] = {
    cls.event_name: cls
    for cls in (StatementProcessEvent, CategorizeByKeywordEvent, ReassignKeywordEvent)
}


def parse_event(name: str, data: Mapping[str, Any]) -> EventPayload:
    """Validate wire ``data`` for event ``name``. Unknown names raise ``KeyError``."""

    return EVENT_PAYLOADS[name].model_validate(dict(data))


class EventSender(Protocol):
    def send(self, name: str, data: Mapping[str, Any]) -> list[str]:
        """Enqueue one event; return transport-assigned ids."""
        ...


class HttpEventSender:
    """POST events to ``{base_url}/e/{event_key}``.

    ``event_key`` and ``base_url`` default to ``INNGEST_EVENT_KEY`` and
    ``INNGEST_BASE_URL``, read when :meth:`send` is called.
    """

    def __init__(
        self,
        *,
        event_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._event_key = event_key
        self._base_url = base_url
        self._timeout = timeout

    def _endpoint(self) -> str:
        key = self._event_key or os.getenv("INNGEST_EVENT_KEY")
        if not key:
            raise TransportUnavailableError("Event key is not configured")
        base = (self._base_url or os.getenv("INNGEST_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        return f"{base}/e/{key}"

    def send(self, name: str, data: Mapping[str, Any]) -> list[str]:
        url = self._endpoint()
        body = json.dumps({"name": name, "data": dict(data)}).encode("utf-8")

        try:
            req = urllib.request.Request(url, data=body, method="POST")
            req.add_header("Content-Type", "application/json")
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            try:
                err_body = e.read().decode("utf-8", errors="replace")
            except OSError:
                err_body = ""
            if e.code in (401, 403):
                raise TransportUnavailableError(
                    f"Event API rejected credentials: {e.code} {e.reason}"
                ) from e
            raise EventSendError(f"Event API error: {e.code} {e.reason}: {err_body}") from e
        except (urllib.error.URLError, TimeoutError, ConnectionError) as e:
            raise TransportUnavailableError(f"Event API unreachable: {e}") from e
        except (ValueError, http.client.HTTPException) as e:
            # Malformed base URL or a truncated response.
            raise EventSendError(f"Event API request failed: {e!r}") from e

        try:
            decoded = json.loads(raw.decode("utf-8")) if raw else {}
        except ValueError as e:
            raise EventSendError("Event API returned a non-JSON body") from e
        ids = decoded.get("ids") if isinstance(decoded, dict) else None
        _logger.info("events:sent name=%s ids=%s", name, ids)
        return [str(i) for i in ids] if isinstance(ids, list) else []


__all__ = [
    "CATEGORIZE_BY_KEYWORD",
    "EVENT_PAYLOADS",
    "REASSIGN_KEYWORD",
    "STATEMENT_PROCESS",
    "CategorizeByKeywordEvent",
    "EventPayload",
    "EventSender",
    "HttpEventSender",
    "ReassignKeywordEvent",
    "StatementProcessEvent",
    "parse_event",
]
