"""
Obligation Models

Loans, insurance policies and the Bill, the materialized monthly
obligation shown in the bills view.

DESIGN DECISION: A Bill's origin is a closed discriminated union
(`source.kind`). Consumers branch on the concrete source class and
raise on anything else, so a new obligation kind cannot be silently
ignored.
"""

from datetime import date
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ledger_engine.models.ledger import new_id


CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    """Round half-up to cents. Used by every monetary computation."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# =============================================================================
# LOANS
# =============================================================================

class LoanStatus(str, Enum):
    ACTIVE = "active"
    PAID_OFF = "paid_off"
    PENDING_SETUP = "pending_setup"  # Terms not confirmed yet


class Loan(BaseModel):
    """
    A fixed-installment (PRICE) loan.

    Financial terms are immutable while active; reconfiguring a loan
    puts it back to pending_setup. How many installments are paid is
    never stored here, it is derived from linked transactions.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    description: str = Field(default="", max_length=200)
    total_principal: Decimal = Field(..., ge=0)
    installment_amount: Decimal = Field(..., ge=0)
    monthly_rate: Decimal = Field(
        ...,
        ge=0,
        description="Monthly rate as a fraction (0.02 = 2% a month)"
    )
    term_months: int = Field(..., ge=0)
    start_date: date
    status: LoanStatus = LoanStatus.ACTIVE
    linked_account_id: Optional[str] = None
    category_id: Optional[str] = None

    def reconfigure(self, **terms) -> "Loan":
        """Return a copy with new financial terms, back in pending_setup."""
        return self.model_copy(update={**terms, "status": LoanStatus.PENDING_SETUP})


class AmortizationItem(BaseModel):
    """One row of a PRICE schedule."""

    installment_number: int = Field(..., ge=1)
    interest: Decimal
    principal_portion: Decimal
    remaining_balance: Decimal

    @property
    def payment(self) -> Decimal:
        return self.interest + self.principal_portion


# =============================================================================
# INSURANCE
# =============================================================================

class InsuranceInstallment(BaseModel):
    number: int = Field(..., ge=1)
    due_date: date
    amount: Decimal = Field(..., ge=0)
    paid: bool = False
    transaction_id: Optional[str] = None


class InsurancePolicy(BaseModel):
    """
    A vehicle insurance policy paid in installments.

    The premium is expensed straight-line over the coverage window,
    independently of when installments are paid.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    vehicle_id: str = Field(..., min_length=1)
    insurer: str = Field(default="", max_length=200)
    policy_number: str = Field(default="", max_length=100)
    total_premium: Decimal = Field(..., ge=0)
    number_of_installments: int = Field(..., ge=1)
    coverage_start: date
    coverage_end: date
    linked_account_id: Optional[str] = None
    category_id: Optional[str] = None
    installments: list[InsuranceInstallment] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_coverage(self) -> 'InsurancePolicy':
        if self.coverage_end < self.coverage_start:
            raise ValueError("Coverage end cannot be before coverage start")
        return self

    @property
    def coverage_days(self) -> int:
        return (self.coverage_end - self.coverage_start).days

    @classmethod
    def with_installments(cls, **fields) -> "InsurancePolicy":
        """
        Build a policy and its installment plan.

        Installment i (1-based) is due i-1 months after coverage start;
        each is the premium split evenly and truncated to cents, and the
        last one absorbs the rounding so the plan sums to the premium.
        """
        policy = cls(**fields)
        count = policy.number_of_installments
        premium = round_money(policy.total_premium)
        amount = (premium / count).quantize(CENT, rounding=ROUND_DOWN)
        installments = [
            InsuranceInstallment(
                number=i + 1,
                due_date=policy.coverage_start + relativedelta(months=i),
                amount=amount if i < count - 1 else premium - amount * (count - 1),
            )
            for i in range(count)
        ]
        return policy.model_copy(update={"installments": installments})

    def installment(self, number: int) -> Optional[InsuranceInstallment]:
        for item in self.installments:
            if item.number == number:
                return item
        return None


class AccrualResult(BaseModel):
    """Balance-sheet view of a policy at a date."""

    policy_id: str
    as_of: date
    unexpensed: Decimal = Field(..., ge=0, description="Prepaid asset not yet expensed")
    unpaid: Decimal = Field(..., ge=0, description="Premium liability not yet paid")


class PendingInstallment(BaseModel):
    """An unpaid insurance installment, for payment selection."""

    policy_id: str
    vehicle_id: str
    number: int
    of_total: int
    due_date: date
    amount: Decimal
    days_until_due: int

    @property
    def is_overdue(self) -> bool:
        return self.days_until_due < 0


# =============================================================================
# BILLS
# =============================================================================

class BillSourceType(str, Enum):
    LOAN_INSTALLMENT = "loan_installment"
    INSURANCE_INSTALLMENT = "insurance_installment"
    FIXED_EXPENSE = "fixed_expense"
    VARIABLE_EXPENSE = "variable_expense"
    AD_HOC = "ad_hoc"


class LoanInstallmentSource(BaseModel):
    kind: Literal["loan_installment"] = "loan_installment"
    loan_id: str
    installment_number: int = Field(..., ge=1)


class InsuranceInstallmentSource(BaseModel):
    kind: Literal["insurance_installment"] = "insurance_installment"
    policy_id: str
    installment_number: int = Field(..., ge=1)


class FixedExpenseSource(BaseModel):
    kind: Literal["fixed_expense"] = "fixed_expense"
    category_id: str


class VariableExpenseSource(BaseModel):
    kind: Literal["variable_expense"] = "variable_expense"
    category_id: str


class AdHocSource(BaseModel):
    """User-entered bill; purchase installments share a series id."""
    kind: Literal["ad_hoc"] = "ad_hoc"
    series_id: Optional[str] = None
    series_number: Optional[int] = Field(default=None, ge=1)


BillSource = Annotated[
    Union[
        LoanInstallmentSource,
        InsuranceInstallmentSource,
        FixedExpenseSource,
        VariableExpenseSource,
        AdHocSource,
    ],
    Field(discriminator="kind"),
]


class Bill(BaseModel):
    """
    A materialized obligation for one month.

    Ad-hoc bills are persisted in full. Generated bills are derived on
    every view; only their delta (exclusion, amount, account, payment
    link) is persisted, under the same deterministic id.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    description: str = Field(default="", max_length=300)
    due_date: date
    expected_amount: Decimal = Field(..., ge=0)
    is_paid: bool = False
    payment_date: Optional[date] = None
    transaction_id: Optional[str] = None
    source: BillSource = Field(default_factory=AdHocSource)
    suggested_account_id: Optional[str] = None
    suggested_category_id: Optional[str] = None
    is_excluded: bool = False
    created_by_payment: bool = Field(
        default=False,
        description="Record exists only to hold a payment link; dropped on unpay"
    )

    @property
    def source_type(self) -> BillSourceType:
        return BillSourceType(self.source.kind)

    @property
    def source_ref(self) -> Optional[str]:
        source = self.source
        if isinstance(source, LoanInstallmentSource):
            return source.loan_id
        if isinstance(source, InsuranceInstallmentSource):
            return source.policy_id
        if isinstance(source, (FixedExpenseSource, VariableExpenseSource)):
            return source.category_id
        if isinstance(source, AdHocSource):
            return source.series_id
        raise TypeError(f"Unknown bill source: {source!r}")

    @property
    def parcela_number(self) -> Optional[int]:
        source = self.source
        if isinstance(source, (LoanInstallmentSource, InsuranceInstallmentSource)):
            return source.installment_number
        if isinstance(source, AdHocSource):
            return source.series_number
        return None

    @property
    def is_ad_hoc(self) -> bool:
        return isinstance(self.source, AdHocSource)


class MonthTotals(BaseModel):
    total_paid: Decimal = Decimal("0")
    total_unpaid: Decimal = Decimal("0")
    paid_count: int = 0
    unpaid_count: int = 0
