"""
Two-Stage Validation of Reviewed Statements

DESIGN DECISION: A statement is validated in two distinct stages
before its lines are committed to the ledger:

STAGE 1 - SCHEMA VALIDATION:
- The statement is still pending and has lines to commit
- Every line resolves to an existing account
- Amounts are non-zero, opening balances are not importable
- Transfers name a valid destination account

STAGE 2 - SEMANTIC VALIDATION:
- Referenced categories and loans exist
- Future date detection
- Absurd amount detection
- Direction/type mismatches and unresolved duplicates

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for human review. Only errors block the commit.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from ledger_engine.config import AppSettings, get_settings
from ledger_engine.models.ledger import OperationType
from ledger_engine.models.state import LedgerState
from ledger_engine.models.statement import (
    ImportedStatement,
    ImportedTransaction,
    StatementStatus,
    ValidationIssue,
    ValidationResult,
)


LOAN_OPERATIONS = (OperationType.LOAN_PAYMENT, OperationType.LOAN_DISBURSEMENT)
INVESTMENT_OPERATIONS = (OperationType.DEPOSIT, OperationType.WITHDRAWAL)


class StagedTransactionValidator:
    """
    Validates a reviewed statement through a two-stage pipeline.

    Stage 1: Schema validation (structure of each line)
    Stage 2: Semantic validation (only runs when stage 1 passes)
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    def _validate_schema(
        self,
        statement: ImportedStatement,
        state: LedgerState,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if statement.status != StatementStatus.PENDING:
            issues.append(ValidationIssue(
                field="status",
                issue_type="invalid_value",
                message="Statement was already committed",
                severity="error",
            ))

        lines = [t for t in statement.raw_transactions if not t.ignored]
        if not lines:
            issues.append(ValidationIssue(
                field="raw_transactions",
                issue_type="empty",
                message="No transactions left to commit",
                severity="error",
                suggested_fix="Un-ignore at least one line or discard the statement",
            ))

        for line in lines:
            account_id = line.account_id or statement.account_id
            if state.account(account_id) is None:
                issues.append(ValidationIssue(
                    field="account_id",
                    issue_type="missing",
                    message=f"Account {account_id} does not exist",
                    severity="error",
                    transaction_id=line.id,
                ))

            if line.amount == 0:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message=f"'{line.original_description}' has a zero amount",
                    severity="error",
                    transaction_id=line.id,
                    suggested_fix="Ignore this line",
                ))

            if line.operation_type == OperationType.INITIAL_BALANCE:
                issues.append(ValidationIssue(
                    field="operation_type",
                    issue_type="invalid_value",
                    message="Opening balances cannot be imported",
                    severity="error",
                    transaction_id=line.id,
                ))

            if line.operation_type == OperationType.TRANSFER:
                issues.extend(self._check_transfer(line, account_id, state))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _check_transfer(
        self,
        line: ImportedTransaction,
        account_id: str,
        state: LedgerState,
    ) -> list[ValidationIssue]:
        if not line.destination_account_id:
            return [ValidationIssue(
                field="destination_account_id",
                issue_type="missing",
                message=f"Transfer '{line.original_description}' has no destination account",
                severity="error",
                transaction_id=line.id,
                suggested_fix="Choose the account on the other side of the transfer",
            )]
        if line.destination_account_id == account_id:
            return [ValidationIssue(
                field="destination_account_id",
                issue_type="invalid_value",
                message="Transfer destination is the statement's own account",
                severity="error",
                transaction_id=line.id,
            )]
        if state.account(line.destination_account_id) is None:
            return [ValidationIssue(
                field="destination_account_id",
                issue_type="invalid_value",
                message=f"Destination account {line.destination_account_id} does not exist",
                severity="error",
                transaction_id=line.id,
            )]
        return []

    def _validate_semantic(
        self,
        statement: ImportedStatement,
        state: LedgerState,
        today: date,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        max_future_date = today + timedelta(days=self._settings.future_date_tolerance_days)
        max_amount = Decimal(str(self._settings.max_transaction_amount))

        for line in statement.raw_transactions:
            if line.ignored:
                continue

            if line.category_id and state.category(line.category_id) is None:
                issues.append(ValidationIssue(
                    field="category_id",
                    issue_type="invalid_value",
                    message=f"Category {line.category_id} does not exist",
                    severity="error",
                    transaction_id=line.id,
                ))

            if line.operation_type in LOAN_OPERATIONS:
                if not line.temp_loan_id:
                    issues.append(ValidationIssue(
                        field="temp_loan_id",
                        issue_type="missing",
                        message=f"'{line.original_description}' is not linked to a loan",
                        severity="warning",
                        transaction_id=line.id,
                    ))
                elif state.loan(line.temp_loan_id) is None:
                    issues.append(ValidationIssue(
                        field="temp_loan_id",
                        issue_type="invalid_value",
                        message=f"Loan {line.temp_loan_id} does not exist",
                        severity="error",
                        transaction_id=line.id,
                    ))

            if line.operation_type in INVESTMENT_OPERATIONS and not line.temp_investment_id:
                issues.append(ValidationIssue(
                    field="temp_investment_id",
                    issue_type="missing",
                    message=f"'{line.original_description}' is not linked to an investment",
                    severity="warning",
                    transaction_id=line.id,
                ))

            if line.operation_type == OperationType.VEHICLE and line.temp_vehicle_operation is None:
                issues.append(ValidationIssue(
                    field="temp_vehicle_operation",
                    issue_type="missing",
                    message=f"'{line.original_description}' has no vehicle operation",
                    severity="warning",
                    transaction_id=line.id,
                ))

            if line.date > max_future_date:
                issues.append(ValidationIssue(
                    field="date",
                    issue_type="future_date",
                    message=f"Date ({line.date}) is in the future",
                    severity="warning",
                    transaction_id=line.id,
                    suggested_fix="Please verify the date is correct",
                ))

            if abs(line.amount) > max_amount:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="suspicious_value",
                    message=f"Amount (R$ {abs(line.amount):,.2f}) seems unusually high",
                    severity="warning",
                    transaction_id=line.id,
                    suggested_fix="Please verify this amount is correct",
                ))

            if (
                (line.operation_type == OperationType.INCOME and line.is_outflow)
                or (line.operation_type == OperationType.EXPENSE and not line.is_outflow)
            ):
                issues.append(ValidationIssue(
                    field="operation_type",
                    issue_type="inconsistent",
                    message=(
                        f"'{line.original_description}' is marked {line.operation_type.value} "
                        f"but money moves the other way"
                    ),
                    severity="warning",
                    transaction_id=line.id,
                ))

            if line.is_potential_duplicate:
                issues.append(ValidationIssue(
                    field="duplicate",
                    issue_type="potential_duplicate",
                    message=f"'{line.original_description}' may already be in the ledger",
                    severity="warning",
                    transaction_id=line.id,
                    suggested_fix="Ignore the line if it is a duplicate",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(
        self,
        statement: ImportedStatement,
        state: LedgerState,
        today: Optional[date] = None,
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []
        warnings = []

        # Stage 1: Schema validation
        schema_valid, schema_issues = self._validate_schema(statement, state)
        all_issues.extend(schema_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(
                statement, state, today or date.today()
            )
            all_issues.extend(semantic_issues)

        for issue in all_issues:
            if issue.severity == "warning":
                warnings.append(issue.message)

        is_valid = schema_valid and semantic_valid

        return ValidationResult(
            statement_id=statement.id,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=is_valid,
            can_commit=is_valid,
            issues=all_issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed! The statement can be committed."

        lines = []

        if result.has_errors:
            lines.append("❌ Some lines cannot be committed:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        lines.append("")
        if result.can_commit:
            lines.append("You can still commit, but please review carefully.")
        else:
            lines.append("Please fix the issues above before committing.")

        return "\n".join(lines)
