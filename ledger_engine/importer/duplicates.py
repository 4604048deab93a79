"""Duplicate detection between staged lines and the ledger.

A staged line is a likely duplicate of a ledger transaction when both
sit on the same account, move money in the same direction, differ by at
most one cent and are at most one day apart. Opening-balance entries are
never matched. Matches are only annotated; the reviewer decides.
"""

from collections.abc import Iterable
from decimal import Decimal

from ledger_engine.models.ledger import OperationType, Transaction
from ledger_engine.models.statement import ImportedTransaction


DUPLICATE_DATE_TOLERANCE_DAYS = 1
DUPLICATE_AMOUNT_TOLERANCE = Decimal("0.01")


def is_duplicate(staged: ImportedTransaction, tx: Transaction, account_id: str) -> bool:
    if tx.account_id != account_id:
        return False
    if tx.operation_type == OperationType.INITIAL_BALANCE:
        return False
    # Negative staged amounts leave the account
    if staged.is_outflow == tx.is_inflow:
        return False
    if abs(abs(staged.amount) - tx.amount) > DUPLICATE_AMOUNT_TOLERANCE:
        return False
    return abs((staged.date - tx.date).days) <= DUPLICATE_DATE_TOLERANCE_DAYS


def flag_duplicates(
    staged: Iterable[ImportedTransaction],
    ledger: Iterable[Transaction],
    account_id: str = "",
) -> list[ImportedTransaction]:
    """
    Copies of the staged lines with duplicate flags recomputed.

    `account_id` applies to lines that do not carry their own.
    """
    ledger = list(ledger)
    result = []
    for line in staged:
        line_account = line.account_id or account_id
        match = next((tx for tx in ledger if is_duplicate(line, tx, line_account)), None)
        result.append(line.model_copy(update={
            "is_potential_duplicate": match is not None,
            "duplicate_of_tx_id": match.id if match is not None else None,
        }))
    return result
