"""Statement staging lifecycle: import, review, commit, discard.

Each command takes the current LedgerState and returns a CommandResult
carrying the replacement state. Staged lines never touch the ledger
until the reviewed statement passes validation and is committed.
"""

from collections.abc import Iterable
from datetime import date
from typing import Optional

import structlog

from ledger_engine.importer.duplicates import flag_duplicates
from ledger_engine.importer.parsers import StatementParseError, detect_format, parse_statement
from ledger_engine.importer.rules import apply_rules, rule_from_transaction
from ledger_engine.models.ledger import (
    Flow,
    OperationType,
    Transaction,
    TransactionLinks,
    TransactionMeta,
    TransactionSource,
    new_id,
)
from ledger_engine.models.state import CommandResult, LedgerState
from ledger_engine.models.statement import (
    ImportedStatement,
    ImportedTransaction,
    StatementFormat,
    StatementStatus,
)
from ledger_engine.validation import StagedTransactionValidator


logger = structlog.get_logger(__name__)

INVESTMENT_OPERATIONS = (OperationType.DEPOSIT, OperationType.WITHDRAWAL, OperationType.YIELD)
LOAN_OPERATIONS = (OperationType.LOAN_PAYMENT, OperationType.LOAN_DISBURSEMENT)


def statement_date_range(
    lines: Iterable[ImportedTransaction],
) -> tuple[Optional[date], Optional[date]]:
    dates = [line.date for line in lines]
    if not dates:
        return None, None
    return min(dates), max(dates)


def _replace_statement(state: LedgerState, statement: ImportedStatement) -> list[ImportedStatement]:
    return [statement if s.id == statement.id else s for s in state.statements]


# =============================================================================
# IMPORT
# =============================================================================

def import_statement(
    state: LedgerState,
    content: str,
    account_id: str,
    file_name: str = "",
    format: Optional[StatementFormat] = None,
) -> CommandResult:
    """
    Parse a statement, classify it with the stored rules and flag
    likely duplicates. The result is a pending statement for review.
    """
    if state.account(account_id) is None:
        return CommandResult.failure("account_unresolved", f"Account {account_id} not found")

    statement_format = format or detect_format(content)
    try:
        lines = parse_statement(content, statement_format, account_id)
    except StatementParseError as e:
        logger.info("statement_parse_failed", file_name=file_name, error=str(e))
        return CommandResult.failure("parse_error", str(e), file_name=file_name)

    lines = apply_rules(lines, state.rules)
    lines = flag_duplicates(lines, state.transactions, account_id)
    date_from, date_to = statement_date_range(lines)

    statement = ImportedStatement(
        account_id=account_id,
        file_name=file_name,
        format=statement_format,
        date_from=date_from,
        date_to=date_to,
        raw_transactions=lines,
    )
    duplicate_count = sum(1 for line in lines if line.is_potential_duplicate)
    new_state = state.model_copy(update={"statements": state.statements + [statement]})

    logger.info(
        "statement_staged",
        statement_id=statement.id,
        lines=len(lines),
        duplicates=duplicate_count,
    )
    return CommandResult.ok(
        new_state,
        message=f"{len(lines)} transactions ready for review",
        entity_id=statement.id,
        transaction_count=len(lines),
        duplicate_count=duplicate_count,
    )


# =============================================================================
# REVIEW
# =============================================================================

def review_staged_transactions(
    state: LedgerState,
    statement_id: str,
    reviewed: Iterable[ImportedTransaction],
) -> CommandResult:
    """
    Replace staged lines with the reviewer's edits (matched by id) and
    recompute duplicate flags against the current ledger.
    """
    statement = state.statement(statement_id)
    if statement is None:
        return CommandResult.failure("not_found", f"Statement {statement_id} not found")
    if statement.status != StatementStatus.PENDING:
        return CommandResult.failure("already_committed", "Statement was already committed")

    edits = {line.id: line for line in reviewed}
    known_ids = {line.id for line in statement.raw_transactions}
    unknown = set(edits) - known_ids
    if unknown:
        return CommandResult.failure(
            "unknown_lines",
            f"Lines not in statement: {', '.join(sorted(unknown))}",
        )

    lines = [edits.get(line.id, line) for line in statement.raw_transactions]
    lines = flag_duplicates(lines, state.transactions, statement.account_id)
    date_from, date_to = statement_date_range(lines)
    updated = statement.model_copy(update={
        "raw_transactions": lines,
        "date_from": date_from,
        "date_to": date_to,
    })

    new_state = state.model_copy(update={"statements": _replace_statement(state, updated)})
    return CommandResult.ok(
        new_state,
        message="Review saved",
        entity_id=statement_id,
        reviewed_count=len(edits),
    )


def create_rule_from_transaction(
    state: LedgerState,
    statement_id: str,
    transaction_id: str,
    pattern: Optional[str] = None,
    apply_to_statement: bool = True,
) -> CommandResult:
    """
    Store a rule built from a reviewed line and, optionally, apply the
    rule set again to the statement's other lines.
    """
    statement = state.statement(statement_id)
    if statement is None:
        return CommandResult.failure("not_found", f"Statement {statement_id} not found")
    line = next((t for t in statement.raw_transactions if t.id == transaction_id), None)
    if line is None:
        return CommandResult.failure("not_found", f"Line {transaction_id} not found")
    if not (pattern or line.original_description).strip():
        return CommandResult.failure("invalid_pattern", "A rule needs a non-empty pattern")

    rule = rule_from_transaction(line, pattern)
    rules = state.rules + [rule]
    update = {"rules": rules}

    if apply_to_statement and statement.status == StatementStatus.PENDING:
        others = [t for t in statement.raw_transactions if t.id != transaction_id]
        reclassified = {t.id: t for t in apply_rules(others, rules)}
        lines = [reclassified.get(t.id, t) for t in statement.raw_transactions]
        update["statements"] = _replace_statement(
            state, statement.model_copy(update={"raw_transactions": lines})
        )

    new_state = state.model_copy(update=update)
    return CommandResult.ok(new_state, message="Rule created", entity_id=rule.id, pattern=rule.pattern)


# =============================================================================
# COMMIT / DISCARD
# =============================================================================

def build_ledger_transactions(statement: ImportedStatement) -> list[Transaction]:
    """
    Ledger transactions for the statement's non-ignored lines.

    Transfers become a transfer_out/transfer_in pair sharing one
    transfer_group_id, the second leg on the destination account.
    """
    built = []
    for line in statement.raw_transactions:
        if line.ignored:
            continue

        account_id = line.account_id or statement.account_id
        outflow = line.is_outflow
        amount = abs(line.amount)
        meta = TransactionMeta(source=TransactionSource.IMPORT)

        if line.operation_type == OperationType.TRANSFER and line.destination_account_id:
            group_id = new_id()
            built.append(Transaction(
                date=line.date,
                account_id=account_id,
                flow=Flow.TRANSFER_OUT if outflow else Flow.TRANSFER_IN,
                operation_type=OperationType.TRANSFER,
                amount=amount,
                category_id=line.category_id,
                description=line.description,
                links=TransactionLinks(transfer_group_id=group_id),
                conciliated=True,
                meta=meta,
            ))
            built.append(Transaction(
                date=line.date,
                account_id=line.destination_account_id,
                flow=Flow.TRANSFER_IN if outflow else Flow.TRANSFER_OUT,
                operation_type=OperationType.TRANSFER,
                amount=amount,
                category_id=line.category_id,
                description=line.description,
                links=TransactionLinks(transfer_group_id=group_id),
                conciliated=True,
                meta=meta,
            ))
            continue

        links = TransactionLinks()
        if line.operation_type in LOAN_OPERATIONS:
            links = TransactionLinks(loan_id=line.temp_loan_id)
        elif line.operation_type in INVESTMENT_OPERATIONS:
            links = TransactionLinks(investment_id=line.temp_investment_id)

        built.append(Transaction(
            date=line.date,
            account_id=account_id,
            flow=Flow.OUT if outflow else Flow.IN,
            operation_type=line.operation_type,
            amount=amount,
            category_id=line.category_id,
            description=line.description,
            links=links,
            conciliated=True,
            meta=meta,
        ))
    return built


def commit_statement(
    state: LedgerState,
    statement_id: str,
    validator: Optional[StagedTransactionValidator] = None,
    today: Optional[date] = None,
) -> CommandResult:
    """Validate the reviewed statement and append its lines to the ledger."""
    statement = state.statement(statement_id)
    if statement is None:
        return CommandResult.failure("not_found", f"Statement {statement_id} not found")

    validator = validator or StagedTransactionValidator()
    result = validator.validate(statement, state, today)
    if not result.can_commit:
        return CommandResult.failure(
            "validation_failed",
            validator.get_user_friendly_summary(result),
            validation=result.model_dump(mode="json"),
        )

    new_transactions = build_ledger_transactions(statement)
    committed = statement.model_copy(update={"status": StatementStatus.CONTABILIZED})
    new_state = state.model_copy(update={
        "transactions": state.transactions + new_transactions,
        "statements": _replace_statement(state, committed),
    })

    logger.info("statement_committed", statement_id=statement_id, count=len(new_transactions))
    return CommandResult.ok(
        new_state,
        message=f"{len(new_transactions)} transactions added",
        entity_id=statement_id,
        transaction_count=len(new_transactions),
        transaction_ids=[t.id for t in new_transactions],
        warnings=result.warnings,
    )


def discard_statement(state: LedgerState, statement_id: str) -> CommandResult:
    """Drop a pending statement without touching the ledger."""
    statement = state.statement(statement_id)
    if statement is None:
        return CommandResult.failure("not_found", f"Statement {statement_id} not found")
    if statement.status != StatementStatus.PENDING:
        return CommandResult.failure(
            "already_committed", "Committed statements cannot be discarded"
        )
    new_state = state.model_copy(update={
        "statements": [s for s in state.statements if s.id != statement_id],
    })
    return CommandResult.ok(new_state, message="Statement discarded", entity_id=statement_id)
