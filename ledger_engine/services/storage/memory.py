"""
In-memory storage backends.

Used by tests and by the `memory` backend setting. Values are deep
copied on the way in and out so callers can never mutate what is
"stored" without a save.
"""

import copy
from typing import Any, Optional
from uuid import UUID

from ledger_engine.models.audit import AuditEvent
from ledger_engine.services.storage.interface import (
    AuditStorageInterface,
    KeyValueStoreInterface,
)


class InMemoryKeyValueStore(KeyValueStoreInterface):

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    def load(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def save(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def keys(self) -> list[str]:
        return list(self._data)


class InMemoryAuditStorage(AuditStorageInterface):

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
