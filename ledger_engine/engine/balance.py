"""
Balance Engine

An account's balance is never stored: it is folded from the account's
opening balance and its transactions up to the requested date.

Sign convention:
- Ordinary accounts: in/transfer_in add, out/transfer_out subtract.
- Credit cards: inverted. A purchase (out) increases what is owed, a
  payment (in) decreases it.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from ledger_engine.models.ledger import Account, OperationType, Transaction


logger = structlog.get_logger(__name__)

# "No date" means every transaction ever recorded
OPEN_ENDED_DATE = date(9999, 12, 31)


def _fold(account: Account, transactions: Iterable[Transaction], as_of: date) -> Decimal:
    relevant = sorted(
        (
            t for t in transactions
            if t.account_id == account.id
            and t.date <= as_of
            and t.operation_type != OperationType.INITIAL_BALANCE
        ),
        key=lambda t: t.date,
    )

    balance = Decimal(account.initial_balance)
    for tx in relevant:
        delta = tx.signed_amount()
        if account.is_liability:
            delta = -delta
        balance += delta
    return balance


def balance_as_of(
    account_id: str,
    as_of: Optional[date],
    transactions: Iterable[Transaction],
    accounts: Iterable[Account],
) -> Decimal:
    """
    Balance of one account at the end of `as_of`.

    An unknown account yields 0 so dashboards keep rendering.
    """
    account = next((a for a in accounts if a.id == account_id), None)
    if account is None:
        logger.warning("balance_unknown_account", account_id=account_id)
        return Decimal("0")
    return _fold(account, transactions, as_of or OPEN_ENDED_DATE)


def balances_as_of(
    accounts: Iterable[Account],
    transactions: Iterable[Transaction],
    as_of: Optional[date] = None,
) -> dict[str, Decimal]:
    """Balance of every account, keyed by account id."""
    transactions = list(transactions)
    target = as_of or OPEN_ENDED_DATE
    return {account.id: _fold(account, transactions, target) for account in accounts}
