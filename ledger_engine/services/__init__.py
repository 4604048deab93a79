"""Services package."""

from ledger_engine.services.storage import (
    STATE_KEYS,
    AuditStorageInterface,
    ConnectionError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsKeyValueStore,
    InMemoryAuditStorage,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStoreInterface,
    LedgerRepository,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Storage services
    "STATE_KEYS",
    "AuditStorageInterface",
    "ConnectionError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsKeyValueStore",
    "InMemoryAuditStorage",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStoreInterface",
    "LedgerRepository",
    "NotFoundError",
    "StorageError",
]
