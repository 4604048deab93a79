"""
Ledger Repository

Maps a LedgerState to the key-value store. Each top-level collection
lives under its own key; loading a key that was never saved yields an
empty collection.
"""

from typing import Optional

import structlog
from pydantic import ValidationError

from ledger_engine.models.state import LedgerState
from ledger_engine.services.storage.interface import (
    KeyValueStoreInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)

STATE_KEYS = (
    "accounts",
    "categories",
    "transactions",
    "loans",
    "policies",
    "bills",
    "rules",
    "statements",
)


class LedgerRepository:
    """Loads and saves the whole ledger state."""

    def __init__(self, store: KeyValueStoreInterface):
        self._store = store

    @property
    def store(self) -> KeyValueStoreInterface:
        return self._store

    def load_state(self) -> LedgerState:
        raw = {key: self._store.load(key, []) for key in STATE_KEYS}
        try:
            return LedgerState.model_validate(raw)
        except ValidationError as e:
            raise StorageError(f"Stored ledger data is invalid: {e}")

    def save_state(
        self,
        state: LedgerState,
        previous: Optional[LedgerState] = None,
    ) -> list[str]:
        """
        Write the state and return the keys that were written.

        When `previous` is given only the collections that differ from it
        are written.
        """
        new_data = state.model_dump(mode="json")
        old_data = previous.model_dump(mode="json") if previous is not None else None

        written = []
        for key in STATE_KEYS:
            if old_data is not None and old_data[key] == new_data[key]:
                continue
            self._store.save(key, new_data[key])
            written.append(key)

        logger.debug("ledger_state_saved", keys=written)
        return written
