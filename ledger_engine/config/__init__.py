"""Configuration package."""

from ledger_engine.config.settings import (
    AppSettings,
    EngineSettings,
    GoogleSheetsSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "EngineSettings",
    "GoogleSheetsSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
