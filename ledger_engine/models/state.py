"""
Ledger State

The single explicit snapshot every engine function reads. Commands
never mutate a state in place: they build a new one and hand it back
inside a CommandResult, and the caller swaps it in with one write.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from ledger_engine.models.ledger import Account, Category, Transaction
from ledger_engine.models.obligations import Bill, InsurancePolicy, Loan
from ledger_engine.models.statement import ImportedStatement, StandardizationRule


class LedgerState(BaseModel):
    """Everything the engine knows, as plain data."""

    accounts: list[Account] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    loans: list[Loan] = Field(default_factory=list)
    policies: list[InsurancePolicy] = Field(default_factory=list)
    bills: list[Bill] = Field(
        default_factory=list,
        description="Ad-hoc bills and persisted overrides of generated bills"
    )
    rules: list[StandardizationRule] = Field(default_factory=list)
    statements: list[ImportedStatement] = Field(default_factory=list)

    def account(self, account_id: Optional[str]) -> Optional[Account]:
        if account_id is None:
            return None
        return next((a for a in self.accounts if a.id == account_id), None)

    def category(self, category_id: Optional[str]) -> Optional[Category]:
        if category_id is None:
            return None
        return next((c for c in self.categories if c.id == category_id), None)

    def transaction(self, transaction_id: Optional[str]) -> Optional[Transaction]:
        if transaction_id is None:
            return None
        return next((t for t in self.transactions if t.id == transaction_id), None)

    def loan(self, loan_id: Optional[str]) -> Optional[Loan]:
        return next((loan for loan in self.loans if loan.id == loan_id), None)

    def policy(self, policy_id: Optional[str]) -> Optional[InsurancePolicy]:
        return next((p for p in self.policies if p.id == policy_id), None)

    def bill(self, bill_id: str) -> Optional[Bill]:
        return next((b for b in self.bills if b.id == bill_id), None)

    def statement(self, statement_id: str) -> Optional[ImportedStatement]:
        return next((s for s in self.statements if s.id == statement_id), None)


class CommandResult(BaseModel):
    """
    Outcome of a state-changing command.

    On failure `state` is None and nothing must be written: validation
    problems are reported here instead of being raised to the UI.
    """

    success: bool
    state: Optional[LedgerState] = None
    error_code: Optional[str] = None
    message: str = ""
    entity_id: Optional[str] = Field(
        default=None,
        description="Id of the main record the command created or touched"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        state: LedgerState,
        message: str = "",
        entity_id: Optional[str] = None,
        **details: Any,
    ) -> "CommandResult":
        return cls(
            success=True,
            state=state,
            message=message,
            entity_id=entity_id,
            details=details,
        )

    @classmethod
    def failure(cls, error_code: str, message: str, **details: Any) -> "CommandResult":
        return cls(
            success=False,
            error_code=error_code,
            message=message,
            details=details,
        )
