"""
Integration tests for the flows, with in-memory storage.
"""

import pytest
from datetime import date
from decimal import Decimal

from ledger_engine.audit import AuditLogger
from ledger_engine.models.audit import AuditEventType
from ledger_engine.orchestrator import (
    BillsFlow,
    LedgerQueryFlow,
    StatementImportFlow,
    create_app_components,
)
from ledger_engine.services.storage import (
    InMemoryAuditStorage,
    InMemoryKeyValueStore,
    LedgerRepository,
    StorageError,
)


MARCH = date(2024, 3, 1)

CSV_STATEMENT = (
    "date,description,amount\n"
    "2024-05-05,SALARY ACME,5000.00\n"
    "2024-05-10,SUPERMARKET,-150.00\n"
)


class FailingStore(InMemoryKeyValueStore):
    """Store whose writes fail once armed."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    def save(self, key, value):
        if self.fail_writes:
            raise StorageError("disk full")
        super().save(key, value)


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def bills_flow(repository, audit_logger) -> BillsFlow:
    return BillsFlow(repository, audit_logger)


@pytest.fixture
def import_flow(repository, audit_logger) -> StatementImportFlow:
    return StatementImportFlow(repository, audit_logger)


@pytest.fixture
def query_flow(repository, audit_logger) -> LedgerQueryFlow:
    return LedgerQueryFlow(repository, audit_logger)


def _event_types(audit_storage):
    return [e.event_type for e in audit_storage.events]


def _bill(flow, bill_id, month=MARCH):
    return next(b for b in flow.bills_for_month(month) if b.id == bill_id)


class TestBillsFlow:

    def test_pay_is_saved_and_audited(self, bills_flow, repository, audit_storage):
        bill = _bill(bills_flow, "loan_loan-car_2_202403")
        result = bills_flow.pay_bill(bill, payment_date=date(2024, 3, 15))

        assert result.success
        stored = repository.load_state()
        assert len(stored.transactions) == 1
        assert _bill(bills_flow, bill.id).is_paid is True

        events = audit_storage.events
        assert [e.event_type for e in events] == [AuditEventType.STATE_SAVED, AuditEventType.BILL_PAID]
        assert events[0].correlation_id == events[1].correlation_id
        assert "transactions" in events[0].details["keys"]

    def test_rejected_payment_writes_nothing(self, bills_flow, repository, audit_storage):
        bill = _bill(bills_flow, "fixed_cat-rent_202403")
        before = repository.load_state().model_dump()

        result = bills_flow.pay_bill(bill, payment_date=date(2024, 3, 10))

        assert result.error_code == "account_unresolved"
        assert repository.load_state().model_dump() == before
        assert _event_types(audit_storage) == [AuditEventType.PAYMENT_REJECTED]
        assert audit_storage.events[0].error_code == "account_unresolved"

    def test_unpay(self, bills_flow, audit_storage):
        bill = _bill(bills_flow, "seguro_pol-car_1_202403")
        bills_flow.pay_bill(bill, payment_date=date(2024, 3, 1))
        result = bills_flow.unpay_bill(_bill(bills_flow, bill.id))

        assert result.success
        assert _bill(bills_flow, bill.id).is_paid is False
        assert AuditEventType.BILL_UNPAID in _event_types(audit_storage)

    def test_edit_and_totals(self, bills_flow):
        bill = _bill(bills_flow, "fixed_cat-rent_202403")
        bills_flow.update_bill(bill, expected_amount=Decimal("1500"))
        totals = bills_flow.month_totals(MARCH)
        assert totals.total_unpaid == Decimal("1500.00") + Decimal("1117.23") + Decimal("300.00")
        assert totals.unpaid_count == 4

    def test_ad_hoc_lifecycle(self, bills_flow, audit_storage):
        created = bills_flow.add_ad_hoc_bill("IPVA", date(2024, 3, 20), Decimal("850"), "acc-checking")
        assert any(b.id == created.entity_id for b in bills_flow.bills_for_month(MARCH))

        deleted = bills_flow.delete_bill(created.entity_id)
        assert deleted.success
        assert all(b.id != created.entity_id for b in bills_flow.bills_for_month(MARCH))
        assert AuditEventType.BILL_DELETED in _event_types(audit_storage)

    def test_purchase_installments(self, bills_flow):
        result = bills_flow.add_purchase_installments("TV", Decimal("900"), 3, date(2024, 3, 5))
        assert result.success
        april = [b for b in bills_flow.bills_for_month(date(2024, 4, 1)) if b.is_ad_hoc]
        assert [b.expected_amount for b in april] == [Decimal("300.00")]

    def test_save_failure_is_reported(self, state, audit_storage, audit_logger):
        store = FailingStore()
        repository = LedgerRepository(store)
        repository.save_state(state)
        store.fail_writes = True
        flow = BillsFlow(repository, audit_logger)

        bill = _bill(flow, "loan_loan-car_2_202403")
        result = flow.pay_bill(bill, payment_date=date(2024, 3, 15))

        assert result.success is False
        assert result.error_code == "storage_error"
        assert repository.load_state().transactions == []
        assert AuditEventType.SAVE_FAILED in _event_types(audit_storage)

    def test_unreadable_ledger_is_reported(self, audit_storage, audit_logger):
        repository = LedgerRepository(InMemoryKeyValueStore({"accounts": [{"id": "a"}]}))
        flow = BillsFlow(repository, audit_logger)

        result = flow.delete_bill("adhoc-1")

        assert result.error_code == "storage_error"
        assert _event_types(audit_storage) == [AuditEventType.SYSTEM_ERROR]


class TestStatementImportFlow:

    def test_import_and_commit(self, import_flow, repository, audit_storage):
        imported = import_flow.import_statement(CSV_STATEMENT, "acc-checking", "may.csv")
        assert imported.success
        assert repository.load_state().transactions == []

        validation = import_flow.validate_statement(imported.entity_id, today=date(2024, 5, 31))
        assert validation.can_commit is True

        committed = import_flow.commit_statement(imported.entity_id, today=date(2024, 5, 31))
        assert committed.success
        assert len(repository.load_state().transactions) == 2

        types = _event_types(audit_storage)
        assert AuditEventType.STATEMENT_IMPORTED in types
        assert AuditEventType.DUPLICATES_FLAGGED in types
        assert AuditEventType.STATEMENT_COMMITTED in types

    def test_unsupported_file_type(self, import_flow, audit_storage):
        result = import_flow.import_statement(CSV_STATEMENT, "acc-checking", "statement.pdf")
        assert result.error_code == "unsupported_format"
        assert _event_types(audit_storage) == [AuditEventType.STATEMENT_IMPORT_FAILED]

    def test_parse_error_is_audited(self, import_flow, audit_storage):
        result = import_flow.import_statement("nothing to see", "acc-checking", "x.csv")
        assert result.error_code == "parse_error"
        assert _event_types(audit_storage) == [AuditEventType.STATEMENT_IMPORT_FAILED]

    def test_validation_failure_is_audited(self, import_flow, repository, audit_storage):
        imported = import_flow.import_statement(CSV_STATEMENT, "acc-checking")
        statement = repository.load_state().statement(imported.entity_id)
        ignored = [line.model_copy(update={"ignored": True}) for line in statement.raw_transactions]
        import_flow.review_staged_transactions(imported.entity_id, ignored)

        result = import_flow.commit_statement(imported.entity_id, today=date(2024, 5, 31))

        assert result.error_code == "validation_failed"
        assert repository.load_state().transactions == []
        assert AuditEventType.STATEMENT_VALIDATION_FAILED in _event_types(audit_storage)

    def test_rule_and_discard(self, import_flow, repository, audit_storage):
        imported = import_flow.import_statement(CSV_STATEMENT, "acc-checking")
        statement = repository.load_state().statement(imported.entity_id)
        line = statement.raw_transactions[1]

        rule = import_flow.create_rule_from_transaction(imported.entity_id, line.id, pattern="supermarket")
        assert rule.success
        assert repository.load_state().rules[0].pattern == "supermarket"

        discarded = import_flow.discard_statement(imported.entity_id)
        assert discarded.success
        assert repository.load_state().statements == []
        assert AuditEventType.RULE_CREATED in _event_types(audit_storage)
        assert AuditEventType.STATEMENT_DISCARDED in _event_types(audit_storage)

    def test_validate_unknown_statement(self, import_flow):
        assert import_flow.validate_statement("missing") is None


class TestLedgerQueryFlow:

    def test_balances(self, query_flow):
        assert query_flow.balance_as_of("acc-checking", date(2024, 3, 31)) == Decimal("1000.00")
        assert query_flow.balances(date(2024, 3, 31))["acc-card"] == Decimal("0")

    def test_schedule(self, query_flow):
        assert len(query_flow.schedule("loan-car")) == 12
        assert query_flow.schedule("missing") == []

    def test_rate_solver_failure_is_audited(self, query_flow, audit_storage):
        assert query_flow.solve_monthly_rate(Decimal("12000"), Decimal("500"), 12) is None
        assert _event_types(audit_storage) == [AuditEventType.RATE_SOLVE_FAILED]

    def test_rate_solver(self, query_flow):
        rate = query_flow.solve_monthly_rate(Decimal("12000"), Decimal("1134.72"), 12)
        assert rate == pytest.approx(0.02, abs=1e-4)

    def test_accrual_and_pending(self, query_flow):
        assert query_flow.accrual("pol-car", date(2024, 3, 1)).unexpensed == Decimal("1200.00")
        assert query_flow.accrual("missing", date(2024, 3, 1)) is None
        assert len(query_flow.pending_installments(date(2024, 3, 1))) == 4

    def test_reports(self, query_flow):
        assert query_flow.balance_sheet(date(2024, 3, 31)).loan_debt == Decimal("12000.00")
        report = query_flow.income_statement(date(2024, 3, 1), date(2024, 3, 31))
        assert report.loan_interest == Decimal("222.46")
        ids = [a.id for a in query_flow.financial_alerts(date(2024, 3, 20))]
        assert "next-installment:loan-car:1" in ids


class TestFactory:

    def test_in_memory_components(self):
        bills_flow, import_flow, query_flow, repository = create_app_components(use_storage=False)
        assert isinstance(repository.store, InMemoryKeyValueStore)
        assert bills_flow.bills_for_month(MARCH) == []
        assert query_flow.balances() == {}
