"""
Data Models Package

This package contains all Pydantic models used by the ledger engine.
All data flowing through the engine must conform to these schemas.
"""

from ledger_engine.models.ledger import (
    Account,
    AccountType,
    Category,
    CategoryNature,
    Flow,
    OperationType,
    Transaction,
    TransactionLinks,
    TransactionMeta,
    TransactionSource,
    new_id,
    utc_now,
)
from ledger_engine.models.obligations import (
    AccrualResult,
    AdHocSource,
    AmortizationItem,
    Bill,
    BillSource,
    BillSourceType,
    FixedExpenseSource,
    InsuranceInstallment,
    InsuranceInstallmentSource,
    InsurancePolicy,
    Loan,
    LoanInstallmentSource,
    LoanStatus,
    MonthTotals,
    PendingInstallment,
    VariableExpenseSource,
    round_money,
)
from ledger_engine.models.statement import (
    ImportedStatement,
    ImportedTransaction,
    StandardizationRule,
    StatementFormat,
    StatementStatus,
    ValidationIssue,
    ValidationResult,
    VehicleOperation,
)
from ledger_engine.models.state import CommandResult, LedgerState
from ledger_engine.models.reports import (
    AccountBalance,
    BalanceSheet,
    FinancialAlert,
    IncomeStatement,
)
from ledger_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountType",
    "Category",
    "CategoryNature",
    "Flow",
    "OperationType",
    "Transaction",
    "TransactionLinks",
    "TransactionMeta",
    "TransactionSource",
    "new_id",
    "utc_now",
    # Obligation models
    "AccrualResult",
    "AdHocSource",
    "AmortizationItem",
    "Bill",
    "BillSource",
    "BillSourceType",
    "FixedExpenseSource",
    "InsuranceInstallment",
    "InsuranceInstallmentSource",
    "InsurancePolicy",
    "Loan",
    "LoanInstallmentSource",
    "LoanStatus",
    "MonthTotals",
    "PendingInstallment",
    "VariableExpenseSource",
    "round_money",
    # Statement models
    "ImportedStatement",
    "ImportedTransaction",
    "StandardizationRule",
    "StatementFormat",
    "StatementStatus",
    "ValidationIssue",
    "ValidationResult",
    "VehicleOperation",
    # State
    "CommandResult",
    "LedgerState",
    # Reports
    "AccountBalance",
    "BalanceSheet",
    "FinancialAlert",
    "IncomeStatement",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
