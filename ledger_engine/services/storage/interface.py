"""
Abstract Storage Interface

DESIGN DECISION: The engine's only contract with persistence is a
key-value store: "load returns the last saved value or a default; save
replaces the value for a key". This allows us to:
1. Keep the ledger in a JSON file or in Google Sheets
2. Use in-memory storage for testing
3. Keep engine logic decoupled from storage implementation

There are no transactions and no partial writes. Values are plain
JSON-compatible data (lists of dicts).
"""

from abc import ABC, abstractmethod
from typing import Any
from uuid import UUID

from ledger_engine.models.audit import AuditEvent


class KeyValueStoreInterface(ABC):
    """
    Abstract interface for the ledger's key-value persistence.

    Any storage implementation (JSON file, Google Sheets, etc.)
    must implement these methods.
    """

    @abstractmethod
    def load(self, key: str, default: Any = None) -> Any:
        """
        Load the value stored under a key.

        Args:
            key: Store key (e.g. 'transactions')
            default: Returned when nothing was ever saved under the key

        Returns:
            The last saved value, or `default`

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    def save(self, key: str, value: Any) -> None:
        """
        Replace the value stored under a key.

        Args:
            key: Store key
            value: JSON-compatible value

        Raises:
            StorageError: If the write fails
        """
        pass

    def keys(self) -> list[str]:
        """Keys currently holding a value. Optional for backends."""
        return []


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one import flow).

        Args:
            correlation_id: The correlation identifier

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Args:
            limit: Maximum number of events to return

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
