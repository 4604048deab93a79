"""
Configuration Management for the Ledger Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Engine functions stay pure and receive these values as explicit
arguments; only the orchestrator reads settings.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Tunable defaults for the obligation generator and rate solver."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    fixed_expense_due_day: int = Field(
        default=10,
        ge=1,
        le=31,
        description="Day of month used for fixed-expense estimates"
    )
    variable_expense_due_day: int = Field(
        default=25,
        ge=1,
        le=31,
        description="Day of month used for variable-expense estimates"
    )

    # Newton-Raphson solver
    solver_initial_guess: float = Field(
        default=0.01,
        gt=0.0,
        description="Initial monthly rate guess"
    )
    solver_max_iterations: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Hard cap on solver iterations"
    )
    solver_tolerance: float = Field(
        default=1e-7,
        gt=0.0,
        description="Convergence tolerance on NPV"
    )

    # Alerts
    commitment_alert_ratio: Decimal = Field(
        default=Decimal("0.5"),
        ge=0,
        description="Fixed expenses / income ratio that raises an alert"
    )


class StorageSettings(BaseSettings):
    """Which key-value backend holds the ledger."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORAGE_",
        extra="ignore"
    )

    backend: str = Field(
        default="json_file",
        pattern="^(memory|json_file|google_sheets)$",
        description="Storage backend"
    )
    json_path: str = Field(
        default="ledger.json",
        description="Path of the JSON document used by the json_file backend"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    store_sheet_name: str = Field(
        default="LedgerStore",
        description="Name of the sheet holding key/value rows"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Statement upload limits
    max_statement_size_mb: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum statement file size in MB"
    )
    supported_statement_formats: str = Field(
        default="csv,txt,tsv,ofx",
        description="Comma-separated list of accepted statement extensions"
    )

    # Validation thresholds
    max_transaction_amount: Decimal = Field(
        default=Decimal("1000000"),
        description="Maximum reasonable statement line amount (sanity check)"
    )
    future_date_tolerance_days: int = Field(
        default=3,
        description="How many days in the future a statement line can be"
    )
    default_currency: str = Field(
        default="BRL",
        min_length=3,
        max_length=3,
    )

    @property
    def supported_formats_list(self) -> list[str]:
        """Get supported formats as a list."""
        return [fmt.strip().lower() for fmt in self.supported_statement_formats.split(",")]

    @property
    def max_statement_size_bytes(self) -> int:
        """Get max statement size in bytes."""
        return self.max_statement_size_mb * 1024 * 1024


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def engine(self) -> EngineSettings:
        return EngineSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Google Sheets is only checked when it is the selected backend.
    """
    results = {}

    settings = get_settings()

    try:
        _ = settings.engine
        results["engine"] = True
    except Exception as e:
        results["engine"] = False
        results["engine_error"] = str(e)

    try:
        storage = settings.storage
        results["storage"] = True
    except Exception as e:
        storage = None
        results["storage"] = False
        results["storage_error"] = str(e)

    if storage is not None and storage.backend == "google_sheets":
        try:
            _ = settings.google_sheets
            results["google_sheets"] = True
        except Exception as e:
            results["google_sheets"] = False
            results["google_sheets_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
