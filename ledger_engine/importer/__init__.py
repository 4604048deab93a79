"""Statement importer package."""

from ledger_engine.importer.duplicates import (
    DUPLICATE_AMOUNT_TOLERANCE,
    DUPLICATE_DATE_TOLERANCE_DAYS,
    flag_duplicates,
)
from ledger_engine.importer.parsers import (
    StatementParseError,
    detect_format,
    normalize_amount,
    parse_delimited,
    parse_ofx,
    parse_statement,
)
from ledger_engine.importer.rules import apply_rules, rule_from_transaction
from ledger_engine.importer.statements import (
    build_ledger_transactions,
    commit_statement,
    create_rule_from_transaction,
    discard_statement,
    import_statement,
    review_staged_transactions,
    statement_date_range,
)

__all__ = [
    "DUPLICATE_AMOUNT_TOLERANCE",
    "DUPLICATE_DATE_TOLERANCE_DAYS",
    "flag_duplicates",
    "StatementParseError",
    "detect_format",
    "normalize_amount",
    "parse_delimited",
    "parse_ofx",
    "parse_statement",
    "apply_rules",
    "rule_from_transaction",
    "build_ledger_transactions",
    "commit_statement",
    "create_rule_from_transaction",
    "discard_statement",
    "import_statement",
    "review_staged_transactions",
    "statement_date_range",
]
