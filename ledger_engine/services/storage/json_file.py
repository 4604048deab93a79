"""
JSON file storage.

The whole store is one JSON document mapping keys to values. Every
save rewrites the document through a temporary file and an atomic
rename, so a crash mid-write leaves the previous version intact.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union

import structlog

from ledger_engine.services.storage.interface import (
    KeyValueStoreInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)


class JsonFileKeyValueStore(KeyValueStoreInterface):
    """Key-value store backed by a single JSON document on disk."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read ledger file {self._path}: {e}")
        if not isinstance(data, dict):
            raise StorageError(f"Ledger file {self._path} does not hold a JSON object")
        return data

    def load(self, key: str, default: Any = None) -> Any:
        return self._read_all().get(key, default)

    def save(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False, indent=2, default=str)
            os.replace(tmp_name, self._path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"Failed to write ledger file {self._path}: {e}")
        logger.debug("json_store_saved", key=key, path=str(self._path))

    def keys(self) -> list[str]:
        return list(self._read_all())
