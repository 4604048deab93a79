"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The ledger lives in a key-value store: in memory, in a JSON file or in
Google Sheets.
"""

from ledger_engine.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    KeyValueStoreInterface,
    NotFoundError,
    StorageError,
)
from ledger_engine.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryKeyValueStore,
)
from ledger_engine.services.storage.json_file import JsonFileKeyValueStore
from ledger_engine.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsKeyValueStore,
)
from ledger_engine.services.storage.repository import STATE_KEYS, LedgerRepository

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "KeyValueStoreInterface",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryKeyValueStore",
    # JSON file implementation
    "JsonFileKeyValueStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsKeyValueStore",
    # Repository
    "STATE_KEYS",
    "LedgerRepository",
]
