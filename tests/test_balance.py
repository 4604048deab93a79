"""
Tests for balance derivation.
"""

from datetime import date
from decimal import Decimal

from ledger_engine.engine.balance import balance_as_of, balances_as_of
from ledger_engine.models import Flow, OperationType


class TestBalanceAsOf:
    """Balances are folded from the opening balance and the ledger."""

    def test_no_transactions_returns_initial_balance(self, checking):
        """An untouched account holds its opening balance."""
        assert balance_as_of(checking.id, date(2024, 1, 1), [], [checking]) == Decimal("1000.00")

    def test_folds_transactions_up_to_date(self, checking, make_tx):
        """Only transactions on or before the date count."""
        transactions = [
            make_tx(date(2024, 5, 5), "5000", flow=Flow.IN, operation_type=OperationType.INCOME),
            make_tx(date(2024, 5, 10), "200"),
            make_tx(date(2024, 6, 1), "50"),
        ]
        assert balance_as_of(checking.id, date(2024, 5, 4), transactions, [checking]) == Decimal("1000.00")
        assert balance_as_of(checking.id, date(2024, 5, 5), transactions, [checking]) == Decimal("6000.00")
        assert balance_as_of(checking.id, date(2024, 5, 31), transactions, [checking]) == Decimal("5800.00")

    def test_none_date_includes_everything(self, checking, make_tx):
        """Without a date every transaction is folded."""
        transactions = [make_tx(date(2030, 1, 1), "100")]
        assert balance_as_of(checking.id, None, transactions, [checking]) == Decimal("900.00")

    def test_transfers_move_money_between_accounts(self, checking, savings, make_tx):
        """Both legs of a transfer are applied to their own account."""
        transactions = [
            make_tx(date(2024, 5, 1), "300", flow=Flow.TRANSFER_OUT, operation_type=OperationType.TRANSFER),
            make_tx(
                date(2024, 5, 1), "300", flow=Flow.TRANSFER_IN,
                operation_type=OperationType.TRANSFER, account_id=savings.id,
            ),
        ]
        balances = balances_as_of([checking, savings], transactions, date(2024, 5, 31))
        assert balances[checking.id] == Decimal("700.00")
        assert balances[savings.id] == Decimal("300")

    def test_credit_card_sign_is_inverted(self, credit_card, make_tx):
        """Purchases increase what is owed, payments reduce it."""
        transactions = [
            make_tx(date(2024, 5, 2), "300", account_id=credit_card.id),
            make_tx(
                date(2024, 5, 20), "100", flow=Flow.IN,
                operation_type=OperationType.TRANSFER, account_id=credit_card.id,
            ),
        ]
        assert balance_as_of(credit_card.id, date(2024, 5, 10), transactions, [credit_card]) == Decimal("300")
        assert balance_as_of(credit_card.id, date(2024, 5, 31), transactions, [credit_card]) == Decimal("200")

    def test_initial_balance_transactions_are_skipped(self, checking, make_tx):
        """The opening balance is not counted twice."""
        transactions = [
            make_tx(
                date(2024, 1, 1), "1000", flow=Flow.IN,
                operation_type=OperationType.INITIAL_BALANCE,
            ),
        ]
        assert balance_as_of(checking.id, date(2024, 12, 31), transactions, [checking]) == Decimal("1000.00")

    def test_unknown_account_is_zero(self, checking):
        """An unknown account degrades to zero instead of failing."""
        assert balance_as_of("missing", date(2024, 1, 1), [], [checking]) == Decimal("0")

    def test_other_accounts_are_ignored(self, checking, make_tx):
        """Transactions of other accounts never leak into a balance."""
        transactions = [make_tx(date(2024, 5, 1), "999", account_id="acc-other")]
        assert balance_as_of(checking.id, date(2024, 5, 31), transactions, [checking]) == Decimal("1000.00")
