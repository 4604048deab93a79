"""Validation package."""

from ledger_engine.validation.validator import StagedTransactionValidator

__all__ = ["StagedTransactionValidator"]
