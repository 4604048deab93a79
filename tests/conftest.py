"""
Shared fixtures for the ledger engine tests.

The ledger used across tests:
- a checking account opened with R$ 1.000,00 and a credit card
- salary (income), rent (fixed) and groceries (variable) categories
- a 12-installment loan of 12.000 at 2% a month starting 2024-01-15
- a 4-installment vehicle policy covering 2024-03-01 to 2025-03-01
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_engine.models import (
    Account,
    AccountType,
    Category,
    CategoryNature,
    Flow,
    InsurancePolicy,
    LedgerState,
    Loan,
    OperationType,
    Transaction,
)
from ledger_engine.services.storage import InMemoryKeyValueStore, LedgerRepository


@pytest.fixture
def checking() -> Account:
    return Account(
        id="acc-checking",
        name="Checking",
        account_type=AccountType.CHECKING,
        initial_balance=Decimal("1000.00"),
    )


@pytest.fixture
def credit_card() -> Account:
    return Account(
        id="acc-card",
        name="Visa",
        account_type=AccountType.CREDIT_CARD,
    )


@pytest.fixture
def savings() -> Account:
    return Account(
        id="acc-savings",
        name="Savings",
        account_type=AccountType.SAVINGS,
    )


@pytest.fixture
def categories() -> list[Category]:
    return [
        Category(id="cat-salary", label="Salary", nature=CategoryNature.INCOME),
        Category(id="cat-rent", label="Rent", nature=CategoryNature.FIXED_EXPENSE),
        Category(id="cat-groceries", label="Groceries", nature=CategoryNature.VARIABLE_EXPENSE),
    ]


@pytest.fixture
def loan() -> Loan:
    return Loan(
        id="loan-car",
        description="Car loan",
        total_principal=Decimal("12000.00"),
        installment_amount=Decimal("1117.23"),
        monthly_rate=Decimal("0.02"),
        term_months=12,
        start_date=date(2024, 1, 15),
        linked_account_id="acc-checking",
    )


@pytest.fixture
def policy() -> InsurancePolicy:
    return InsurancePolicy.with_installments(
        id="pol-car",
        vehicle_id="ABC1D23",
        insurer="Porto",
        total_premium=Decimal("1200.00"),
        number_of_installments=4,
        coverage_start=date(2024, 3, 1),
        coverage_end=date(2025, 3, 1),
        linked_account_id="acc-checking",
    )


@pytest.fixture
def state(checking, credit_card, savings, categories, loan, policy) -> LedgerState:
    return LedgerState(
        accounts=[checking, credit_card, savings],
        categories=categories,
        loans=[loan],
        policies=[policy],
    )


@pytest.fixture
def make_tx():
    """Factory for ledger transactions with sensible defaults."""
    def _make(
        day: date,
        amount: str,
        flow: Flow = Flow.OUT,
        account_id: str = "acc-checking",
        operation_type: OperationType = OperationType.EXPENSE,
        **fields,
    ) -> Transaction:
        return Transaction(
            date=day,
            account_id=account_id,
            flow=flow,
            operation_type=operation_type,
            amount=Decimal(amount),
            **fields,
        )
    return _make


@pytest.fixture
def repository(state) -> LedgerRepository:
    repo = LedgerRepository(InMemoryKeyValueStore())
    repo.save_state(state)
    return repo
