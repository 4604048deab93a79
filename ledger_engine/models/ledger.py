"""
Core Ledger Models

Accounts, categories and the transaction log. Everything else in the
engine is derived from these records.

DESIGN DECISION: Amounts are Decimal and always non-negative on a
Transaction. Direction lives in `flow`, never in the sign of the amount.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    """Random identifier for user-created records."""
    return uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Supported account kinds."""
    CHECKING = "checking"
    SAVINGS = "savings"
    FIXED_INCOME = "fixed-income"
    CRYPTO = "crypto"
    EMERGENCY_FUND = "emergency-fund"
    GOAL = "goal"
    CREDIT_CARD = "credit-card"  # Liability: balance is what is owed


class Flow(str, Enum):
    """Direction of money relative to the account."""
    IN = "in"
    OUT = "out"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"

    @property
    def is_inflow(self) -> bool:
        return self in (Flow.IN, Flow.TRANSFER_IN)


class OperationType(str, Enum):
    """What a transaction means, independently of its direction."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    DEPOSIT = "deposit"                  # Money moved into an investment
    WITHDRAWAL = "withdrawal"            # Money redeemed from an investment
    LOAN_PAYMENT = "loan_payment"
    LOAN_DISBURSEMENT = "loan_disbursement"
    VEHICLE = "vehicle"
    YIELD = "yield"
    INITIAL_BALANCE = "initial_balance"


class CategoryNature(str, Enum):
    """How a category behaves in reports and in the bills view."""
    INCOME = "income"
    FIXED_EXPENSE = "fixed_expense"
    VARIABLE_EXPENSE = "variable_expense"


class TransactionSource(str, Enum):
    """Who created a transaction."""
    MANUAL = "manual"
    BILL_TRACKER = "bill_tracker"
    IMPORT = "import"


# =============================================================================
# ACCOUNTS AND CATEGORIES
# =============================================================================

class Account(BaseModel):
    """
    A place where money lives.

    `initial_balance` is the opening balance recorded at creation.
    It is never mutated afterwards and anchors every balance query.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=200)
    account_type: AccountType = AccountType.CHECKING
    initial_balance: Decimal = Field(default=Decimal("0"))
    currency: str = Field(default="BRL", min_length=3, max_length=3)

    @property
    def is_liability(self) -> bool:
        return self.account_type == AccountType.CREDIT_CARD


class Category(BaseModel):
    """Spending/income category."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    label: str = Field(..., min_length=1, max_length=100)
    nature: CategoryNature = CategoryNature.VARIABLE_EXPENSE


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionLinks(BaseModel):
    """
    References from a transaction to the entities it settles.

    Loan payments carry `loan_id` + `parcela_id`; insurance payments
    carry the policy id in `vehicle_transaction_id` + `parcela_id`.
    """

    loan_id: Optional[str] = None
    parcela_id: Optional[int] = Field(default=None, ge=1)
    investment_id: Optional[str] = None
    transfer_group_id: Optional[str] = None
    vehicle_transaction_id: Optional[str] = None
    bill_id: Optional[str] = None


class TransactionMeta(BaseModel):
    source: TransactionSource = TransactionSource.MANUAL
    created_at: datetime = Field(default_factory=utc_now)


class Transaction(BaseModel):
    """
    One entry of the ledger.

    Immutable once created except for categorization, description
    and the `conciliated` flag. Edits go through `model_copy`.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    date: date
    account_id: str = Field(..., min_length=1)
    flow: Flow
    operation_type: OperationType
    amount: Decimal = Field(..., ge=0)
    category_id: Optional[str] = None
    description: str = Field(default="", max_length=500)
    links: TransactionLinks = Field(default_factory=TransactionLinks)
    conciliated: bool = False
    meta: TransactionMeta = Field(default_factory=TransactionMeta)

    @property
    def is_inflow(self) -> bool:
        return self.flow.is_inflow

    def signed_amount(self) -> Decimal:
        """Amount with the sign an ordinary account would apply."""
        return self.amount if self.is_inflow else -self.amount
