"""Report models: balance sheet, income statement and alerts."""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class AccountBalance(BaseModel):
    account_id: str
    name: str
    account_type: str
    balance: Decimal


class BalanceSheet(BaseModel):
    """
    Point-in-time position.

    Credit-card balances are owed amounts and are reported as
    liabilities, never netted against cash.
    """

    as_of: date
    accounts: list[AccountBalance] = Field(default_factory=list)
    cash_and_investments: Decimal = Decimal("0")
    prepaid_insurance: Decimal = Decimal("0")
    credit_card_debt: Decimal = Decimal("0")
    loan_debt: Decimal = Decimal("0")
    insurance_payable: Decimal = Decimal("0")

    @property
    def total_assets(self) -> Decimal:
        return self.cash_and_investments + self.prepaid_insurance

    @property
    def total_liabilities(self) -> Decimal:
        return self.credit_card_debt + self.loan_debt + self.insurance_payable

    @property
    def net_worth(self) -> Decimal:
        return self.total_assets - self.total_liabilities


class IncomeStatement(BaseModel):
    """Accrual-flavoured result for a period."""

    period_start: date
    period_end: date
    income_by_category: dict[str, Decimal] = Field(default_factory=dict)
    fixed_by_category: dict[str, Decimal] = Field(default_factory=dict)
    variable_by_category: dict[str, Decimal] = Field(default_factory=dict)
    accrued_insurance: Decimal = Decimal("0")
    loan_interest: Decimal = Decimal("0")

    @property
    def total_income(self) -> Decimal:
        return sum(self.income_by_category.values(), Decimal("0"))

    @property
    def total_fixed(self) -> Decimal:
        return sum(self.fixed_by_category.values(), Decimal("0")) + self.accrued_insurance

    @property
    def total_variable(self) -> Decimal:
        return sum(self.variable_by_category.values(), Decimal("0"))

    @property
    def net_result(self) -> Decimal:
        return self.total_income - self.total_fixed - self.total_variable - self.loan_interest


class FinancialAlert(BaseModel):
    """Dashboard alert. Ids are deterministic so dismissals stick."""

    id: str
    level: str = Field(..., pattern="^(info|warning|danger|success)$")
    message: str
    detail: Optional[str] = None
    due_date: Optional[date] = None
