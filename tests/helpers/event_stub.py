"""Event sender doubles for dispatch and submission tests."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from statement_pipeline.errors import EventSendError, TransportUnavailableError


class RecordingSender:
    """Accepts every event and remembers it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []

    def send(self, name: str, data: Mapping[str, Any]) -> list[str]:
        self.sent.append((name, dict(data)))
        return [f"evt-{len(self.sent)}"]


class UnavailableSender:
    """Behaves like a transport with no event key configured."""

    def send(self, name: str, data: Mapping[str, Any]) -> list[str]:
        raise TransportUnavailableError("Event key is not configured")


class BrokenSender:
    """Fails with a non-transport error."""

    def send(self, name: str, data: Mapping[str, Any]) -> list[str]:
        raise EventSendError("Event API error: 500 Internal Server Error")
