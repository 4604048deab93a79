"""
Main Orchestrator for the Ledger Engine

This module ties together all the components and defines the
caller-facing flows for:
1. Bills (month view → pay / unpay / edit)
2. Statement import (parse → classify → flag duplicates → review → commit)
3. Ledger queries (balances, schedules, accrual, reports)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Engine functions are pure; only this module reads settings and storage
- A command computes the whole replacement state before the first write
- A failed command never writes anything
- Every command outcome is audited

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID

import structlog

from ledger_engine.audit import AuditLogger, create_correlation_id
from ledger_engine.config import AppSettings, EngineSettings, get_settings
from ledger_engine.engine.accrual import accrual as policy_accrual
from ledger_engine.engine.accrual import pending_installments
from ledger_engine.engine.amortization import schedule, solve_monthly_rate
from ledger_engine.engine.balance import balance_as_of, balances_as_of
from ledger_engine.engine.obligations import (
    bills_for_month,
    external_paid_expenses,
    month_totals,
)
from ledger_engine.engine.payments import (
    add_ad_hoc_bill,
    add_purchase_installments,
    delete_bill,
    pay_bill,
    unpay_bill,
    update_bill,
)
from ledger_engine.importer import statements as statement_commands
from ledger_engine.models.audit import AuditEventType
from ledger_engine.models.ledger import Transaction
from ledger_engine.models.obligations import (
    AccrualResult,
    AmortizationItem,
    Bill,
    MonthTotals,
    PendingInstallment,
)
from ledger_engine.models.reports import BalanceSheet, FinancialAlert, IncomeStatement
from ledger_engine.models.state import CommandResult, LedgerState
from ledger_engine.models.statement import (
    ImportedTransaction,
    StatementFormat,
    ValidationResult,
)
from ledger_engine.queries import balance_sheet, financial_alerts, income_statement
from ledger_engine.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsKeyValueStore,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStoreInterface,
    LedgerRepository,
    StorageError,
)
from ledger_engine.validation import StagedTransactionValidator


logger = structlog.get_logger(__name__)


class _StateFlow:
    """
    Shared load → compute → save sequence of the command flows.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repository = repository
        self._audit_logger = audit_logger or AuditLogger()

    def _load(self) -> LedgerState:
        return self._repository.load_state()

    def _run(
        self,
        command: Callable[[LedgerState], CommandResult],
        reject_event: AuditEventType,
        entity_type: str,
        entity_id: Optional[str],
        correlation_id: UUID,
    ) -> CommandResult:
        """
        Run a pure command against the stored state and write its
        replacement state once, only on success.
        """
        try:
            before = self._load()
        except StorageError as e:
            self._audit_logger.log_error(
                error_type="load_failed",
                error_message=str(e),
                details={"entity_type": entity_type, "entity_id": entity_id},
                correlation_id=correlation_id,
            )
            return CommandResult.failure("storage_error", f"Could not load the ledger: {e}")

        result = command(before)

        if not result.success or result.state is None:
            self._audit_logger.log_command_rejected(
                event_type=reject_event,
                entity_type=entity_type,
                entity_id=entity_id,
                error_code=result.error_code or "rejected",
                message=result.message,
                correlation_id=correlation_id,
            )
            return result

        try:
            keys = self._repository.save_state(result.state, previous=before)
        except StorageError as e:
            self._audit_logger.log_save_failed(
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return CommandResult.failure("storage_error", f"Could not save the ledger: {e}")

        self._audit_logger.log_state_saved(keys=keys, correlation_id=correlation_id)
        return result


# =============================================================================
# BILLS
# =============================================================================

class BillsFlow(_StateFlow):
    """
    Orchestrates the monthly bills view.

    Flow:
    1. View → templates + persisted overrides + ledger payments
    2. Pay → one transaction, installment marker, persisted bill
    3. Unpay → the same three steps reversed

    The view is recomputed from the stored state on every call.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        audit_logger: Optional[AuditLogger] = None,
        engine_settings: Optional[EngineSettings] = None,
    ):
        super().__init__(repository, audit_logger)
        self._engine_settings = engine_settings or get_settings().engine

    def bills_for_month(self, month: date, include_templates: bool = True) -> list[Bill]:
        return bills_for_month(
            self._load(),
            month,
            include_templates=include_templates,
            fixed_due_day=self._engine_settings.fixed_expense_due_day,
            variable_due_day=self._engine_settings.variable_expense_due_day,
        )

    def month_totals(self, month: date) -> MonthTotals:
        return month_totals(self.bills_for_month(month))

    def external_paid_expenses(self, month: date) -> list[Transaction]:
        return external_paid_expenses(self._load(), month)

    def pay_bill(
        self,
        bill: Bill,
        payment_date: Optional[date] = None,
        account_id: Optional[str] = None,
        amount: Optional[Decimal] = None,
        category_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> CommandResult:
        """
        Confirm the payment of a bill.

        Rejected before any write when the account cannot be resolved.
        """
        correlation_id = correlation_id or create_correlation_id()
        result = self._run(
            lambda state: pay_bill(
                state,
                bill,
                payment_date or date.today(),
                account_id=account_id,
                amount=amount,
                category_id=category_id,
            ),
            AuditEventType.PAYMENT_REJECTED,
            "bill",
            bill.id,
            correlation_id,
        )
        if result.success:
            self._audit_logger.log_bill_paid(
                bill_id=bill.id,
                transaction_id=result.details["transaction_id"],
                amount=result.details["amount"],
                correlation_id=correlation_id,
            )
        return result

    def unpay_bill(
        self,
        bill: Bill,
        correlation_id: Optional[UUID] = None,
    ) -> CommandResult:
        correlation_id = correlation_id or create_correlation_id()
        result = self._run(
            lambda state: unpay_bill(state, bill),
            AuditEventType.PAYMENT_REJECTED,
            "bill",
            bill.id,
            correlation_id,
        )
        if result.success:
            self._audit_logger.log_bill_unpaid(
                bill_id=bill.id,
                transaction_id=result.details.get("removed_transaction_id"),
                correlation_id=correlation_id,
            )
        return result

    def update_bill(
        self,
        bill: Bill,
        correlation_id: Optional[UUID] = None,
        **changes: Any,
    ) -> CommandResult:
        correlation_id = correlation_id or create_correlation_id()
        result = self._run(
            lambda state: update_bill(state, bill, **changes),
            AuditEventType.BILL_UPDATED,
            "bill",
            bill.id,
            correlation_id,
        )
        if result.success:
            self._audit_logger.log_bill_changed(
                event_type=AuditEventType.BILL_UPDATED,
                bill_id=bill.id,
                changes=result.details.get("changes", {}),
                correlation_id=correlation_id,
            )
        return result

    def add_ad_hoc_bill(
        self,
        description: str,
        due_date: date,
        expected_amount: Decimal,
        suggested_account_id: Optional[str] = None,
        suggested_category_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> CommandResult:
        correlation_id = correlation_id or create_correlation_id()
        result = self._run(
            lambda state: add_ad_hoc_bill(
                state,
                description,
                due_date,
                expected_amount,
                suggested_account_id,
                suggested_category_id,
            ),
            AuditEventType.BILL_CREATED,
            "bill",
            None,
            correlation_id,
        )
        if result.success:
            self._audit_logger.log_bill_changed(
                event_type=AuditEventType.BILL_CREATED,
                bill_id=result.entity_id,
                changes={"description": description, "amount": str(expected_amount)},
                correlation_id=correlation_id,
            )
        return result

    def delete_bill(
        self,
        bill_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> CommandResult:
        correlation_id = correlation_id or create_correlation_id()
        result = self._run(
            lambda state: delete_bill(state, bill_id),
            AuditEventType.BILL_DELETED,
            "bill",
            bill_id,
            correlation_id,
        )
        if result.success:
            self._audit_logger.log_bill_changed(
                event_type=AuditEventType.BILL_DELETED,
                bill_id=bill_id,
                changes={},
                correlation_id=correlation_id,
            )
        return result

    def add_purchase_installments(
        self,
        description: str,
        total_amount: Decimal,
        installments: int,
        first_due_date: date,
        suggested_account_id: Optional[str] = None,
        suggested_category_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> CommandResult:
        correlation_id = correlation_id or create_correlation_id()
        result = self._run(
            lambda state: add_purchase_installments(
                state,
                description,
                total_amount,
                installments,
                first_due_date,
                suggested_account_id,
                suggested_category_id,
            ),
            AuditEventType.BILL_CREATED,
            "bill",
            None,
            correlation_id,
        )
        if result.success:
            for bill_id in result.details.get("bill_ids", []):
                self._audit_logger.log_bill_changed(
                    event_type=AuditEventType.BILL_CREATED,
                    bill_id=bill_id,
                    changes={"series_id": result.entity_id},
                    correlation_id=correlation_id,
                )
        return result


# =============================================================================
# STATEMENT IMPORT
# =============================================================================

class StatementImportFlow(_StateFlow):
    """
    Orchestrates the statement import flow.

    Flow:
    1. Import → parse, apply rules, flag duplicates (staged only)
    2. Review → user edits lines, ignores duplicates (PAUSE)
    3. Validate → two-stage validation
    4. Commit → lines become ledger transactions

    Nothing reaches the ledger without the explicit commit.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[StagedTransactionValidator] = None,
        app_settings: Optional[AppSettings] = None,
    ):
        super().__init__(repository, audit_logger)
        self._app_settings = app_settings or get_settings().app
        self._validator = validator or StagedTransactionValidator(self._app_settings)

    def _check_file(self, content: str, file_name: str) -> Optional[CommandResult]:
        if len(content.encode("utf-8")) > self._app_settings.max_statement_size_bytes:
            return CommandResult.failure(
                "file_too_large",
                f"Statement exceeds {self._app_settings.max_statement_size_mb} MB",
            )
        if "." in file_name:
            extension = file_name.rsplit(".", 1)[1].lower()
            if extension not in self._app_settings.supported_formats_list:
                return CommandResult.failure(
                    "unsupported_format",
                    f"Unsupported statement file type: .{extension}",
                )
        return None

    def import_statement(
        self,
        content: str,
        account_id: str,
        file_name: str = "",
        format: Optional[StatementFormat] = None,
        correlation_id: Optional[UUID] = None,
    ) -> CommandResult:
        correlation_id = correlation_id or create_correlation_id()

        rejected = self._check_file(content, file_name)
        if rejected is not None:
            self._audit_logger.log_command_rejected(
                event_type=AuditEventType.STATEMENT_IMPORT_FAILED,
                entity_type="statement",
                entity_id=None,
                error_code=rejected.error_code,
                message=rejected.message,
                correlation_id=correlation_id,
            )
            return rejected

        result = self._run(
            lambda state: statement_commands.import_statement(
                state, content, account_id, file_name, format
            ),
            AuditEventType.STATEMENT_IMPORT_FAILED,
            "statement",
            None,
            correlation_id,
        )
        if result.success:
            self._audit_logger.log_statement_imported(
                statement_id=result.entity_id,
                file_name=file_name,
                transaction_count=result.details["transaction_count"],
                duplicate_count=result.details["duplicate_count"],
                correlation_id=correlation_id,
            )
        return result

    def review_staged_transactions(
        self,
        statement_id: str,
        reviewed: list[ImportedTransaction],
        correlation_id: Optional[UUID] = None,
    ) -> CommandResult:
        correlation_id = correlation_id or create_correlation_id()
        return self._run(
            lambda state: statement_commands.review_staged_transactions(
                state, statement_id, reviewed
            ),
            AuditEventType.STATEMENT_VALIDATION_FAILED,
            "statement",
            statement_id,
            correlation_id,
        )

    def validate_statement(self, statement_id: str, today: Optional[date] = None) -> Optional[ValidationResult]:
        state = self._load()
        statement = state.statement(statement_id)
        if statement is None:
            return None
        return self._validator.validate(statement, state, today)

    def commit_statement(
        self,
        statement_id: str,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> CommandResult:
        """
        Commit a reviewed statement.

        CRITICAL: This is called ONLY after the user reviewed the lines.
        """
        correlation_id = correlation_id or create_correlation_id()
        result = self._run(
            lambda state: statement_commands.commit_statement(
                state, statement_id, self._validator, today
            ),
            AuditEventType.STATEMENT_VALIDATION_FAILED,
            "statement",
            statement_id,
            correlation_id,
        )
        if result.success:
            self._audit_logger.log_statement_committed(
                statement_id=statement_id,
                transaction_count=result.details["transaction_count"],
                correlation_id=correlation_id,
            )
        elif result.error_code == "validation_failed":
            self._audit_logger.log_statement_validation_failed(
                statement_id=statement_id,
                issues=result.details.get("validation", {}).get("issues", []),
                correlation_id=correlation_id,
            )
        return result

    def discard_statement(
        self,
        statement_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> CommandResult:
        correlation_id = correlation_id or create_correlation_id()
        result = self._run(
            lambda state: statement_commands.discard_statement(state, statement_id),
            AuditEventType.STATEMENT_DISCARDED,
            "statement",
            statement_id,
            correlation_id,
        )
        if result.success:
            self._audit_logger.log_statement_discarded(
                statement_id=statement_id,
                correlation_id=correlation_id,
            )
        return result

    def create_rule_from_transaction(
        self,
        statement_id: str,
        transaction_id: str,
        pattern: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> CommandResult:
        correlation_id = correlation_id or create_correlation_id()
        result = self._run(
            lambda state: statement_commands.create_rule_from_transaction(
                state, statement_id, transaction_id, pattern
            ),
            AuditEventType.RULE_CREATED,
            "rule",
            None,
            correlation_id,
        )
        if result.success:
            self._audit_logger.log_rule_created(
                rule_id=result.entity_id,
                pattern=result.details["pattern"],
                correlation_id=correlation_id,
            )
        return result


# =============================================================================
# QUERIES
# =============================================================================

class LedgerQueryFlow:
    """
    Read-only questions over the stored ledger.

    GUARANTEES:
    - Only returns values derived from stored data
    - Unknown ids degrade to empty/zero results, never to an exception
    """

    def __init__(
        self,
        repository: LedgerRepository,
        audit_logger: Optional[AuditLogger] = None,
        engine_settings: Optional[EngineSettings] = None,
    ):
        self._repository = repository
        self._audit_logger = audit_logger or AuditLogger()
        self._engine_settings = engine_settings or get_settings().engine

    def _load(self) -> LedgerState:
        return self._repository.load_state()

    def balance_as_of(self, account_id: str, as_of: Optional[date] = None) -> Decimal:
        state = self._load()
        return balance_as_of(account_id, as_of, state.transactions, state.accounts)

    def balances(self, as_of: Optional[date] = None) -> dict[str, Decimal]:
        state = self._load()
        return balances_as_of(state.accounts, state.transactions, as_of)

    def schedule(self, loan_id: str) -> list[AmortizationItem]:
        loan = self._load().loan(loan_id)
        if loan is None:
            logger.warning("schedule_unknown_loan", loan_id=loan_id)
            return []
        return schedule(loan)

    def solve_monthly_rate(
        self,
        principal: Decimal,
        payment: Decimal,
        periods: int,
    ) -> Optional[float]:
        """Monthly rate as a fraction, or None when it cannot be solved."""
        rate = solve_monthly_rate(
            float(principal),
            float(payment),
            periods,
            initial_guess=self._engine_settings.solver_initial_guess,
            max_iterations=self._engine_settings.solver_max_iterations,
            tolerance=self._engine_settings.solver_tolerance,
        )
        if rate is None:
            self._audit_logger.log_rate_solve_failed(
                principal=str(principal),
                payment=str(payment),
                periods=periods,
            )
        return rate

    def accrual(self, policy_id: str, as_of: date) -> Optional[AccrualResult]:
        state = self._load()
        policy = state.policy(policy_id)
        if policy is None:
            logger.warning("accrual_unknown_policy", policy_id=policy_id)
            return None
        return policy_accrual(policy, as_of, state.transactions)

    def pending_installments(self, today: Optional[date] = None) -> list[PendingInstallment]:
        state = self._load()
        return pending_installments(
            state.policies, today or date.today(), state.transactions
        )

    def balance_sheet(self, as_of: Optional[date] = None) -> BalanceSheet:
        return balance_sheet(self._load(), as_of or date.today())

    def income_statement(self, start: date, end: date) -> IncomeStatement:
        return income_statement(self._load(), start, end)

    def financial_alerts(self, today: Optional[date] = None) -> list[FinancialAlert]:
        return financial_alerts(
            self._load(),
            today or date.today(),
            commitment_ratio=self._engine_settings.commitment_alert_ratio,
        )


# =============================================================================
# FACTORY
# =============================================================================

def _create_store(
    use_storage: bool,
) -> tuple[KeyValueStoreInterface, Optional[GoogleSheetsAuditStorage]]:
    if not use_storage:
        return InMemoryKeyValueStore(), None

    storage_settings = get_settings().storage
    if storage_settings.backend == "memory":
        return InMemoryKeyValueStore(), None
    if storage_settings.backend == "json_file":
        return JsonFileKeyValueStore(storage_settings.json_path), None

    try:
        sheets_client = GoogleSheetsClient()
        return GoogleSheetsKeyValueStore(sheets_client), GoogleSheetsAuditStorage(sheets_client)
    except Exception as e:
        # Storage not configured - continue in memory
        logger.warning("storage_not_configured", backend=storage_settings.backend, error=str(e))
        return InMemoryKeyValueStore(), None


def create_app_components(
    use_storage: bool = True,
) -> tuple[BillsFlow, StatementImportFlow, LedgerQueryFlow, LedgerRepository]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use the configured storage backend.
                    Set to False for an in-memory ledger (testing).

    Returns:
        (bills_flow, import_flow, query_flow, repository)
    """
    settings = get_settings()
    store, audit_storage = _create_store(use_storage)

    repository = LedgerRepository(store)
    audit_logger = AuditLogger(audit_storage)

    bills_flow = BillsFlow(
        repository=repository,
        audit_logger=audit_logger,
        engine_settings=settings.engine,
    )
    import_flow = StatementImportFlow(
        repository=repository,
        audit_logger=audit_logger,
        app_settings=settings.app,
    )
    query_flow = LedgerQueryFlow(
        repository=repository,
        audit_logger=audit_logger,
        engine_settings=settings.engine,
    )

    return bills_flow, import_flow, query_flow, repository
