"""Report query package."""

from ledger_engine.queries.reports import (
    ReportError,
    balance_sheet,
    financial_alerts,
    income_statement,
)

__all__ = ["ReportError", "balance_sheet", "financial_alerts", "income_statement"]
