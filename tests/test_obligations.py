"""
Tests for the monthly bills view.

The view must be idempotent: computing it twice over the same state
yields the same bills with the same ids.
"""

from datetime import date
from decimal import Decimal

from ledger_engine.engine.obligations import (
    apply_overrides,
    bills_for_month,
    external_paid_expenses,
    generate_templates,
    month_totals,
)
from ledger_engine.engine.payments import pay_bill, update_bill
from ledger_engine.models import (
    Bill,
    BillSourceType,
    Flow,
    LoanStatus,
    OperationType,
    TransactionLinks,
    TransactionMeta,
    TransactionSource,
)


MARCH = date(2024, 3, 1)


def _by_id(bills):
    return {b.id: b for b in bills}


class TestTemplates:
    """Bills generated from loans, policies and categories."""

    def test_month_view_sources(self, state):
        """March holds loan installment 2, policy installment 1 and category bills."""
        bills = _by_id(bills_for_month(state, MARCH))
        assert set(bills) == {
            "loan_loan-car_2_202403",
            "seguro_pol-car_1_202403",
            "fixed_cat-rent_202403",
            "variable_cat-groceries_202403",
        }

    def test_loan_bill(self, state):
        bill = _by_id(bills_for_month(state, MARCH))["loan_loan-car_2_202403"]
        assert bill.source_type == BillSourceType.LOAN_INSTALLMENT
        assert bill.parcela_number == 2
        assert bill.due_date == date(2024, 3, 15)
        assert bill.expected_amount == Decimal("1117.23")
        assert bill.suggested_account_id == "acc-checking"
        assert bill.description == "Car loan (2/12)"

    def test_category_bills_use_default_due_days(self, state):
        """Fixed expenses fall on day 10, variable ones on day 25."""
        bills = _by_id(bills_for_month(state, MARCH))
        assert bills["fixed_cat-rent_202403"].due_date == date(2024, 3, 10)
        assert bills["variable_cat-groceries_202403"].due_date == date(2024, 3, 25)

    def test_due_day_clamped_to_month_end(self, state):
        """A due day past the month's end falls on its last day."""
        bills = _by_id(bills_for_month(state, date(2024, 2, 1), variable_due_day=31))
        assert bills["variable_cat-groceries_202402"].due_date == date(2024, 2, 29)

    def test_category_estimate_from_prior_month(self, state, make_tx):
        """Category bills estimate from last month's spending."""
        state = state.model_copy(update={"transactions": [
            make_tx(date(2024, 2, 3), "80.00", category_id="cat-groceries"),
            make_tx(date(2024, 2, 17), "45.50", category_id="cat-groceries"),
            make_tx(date(2024, 3, 2), "999.00", category_id="cat-groceries"),
        ]})
        bill = _by_id(bills_for_month(state, MARCH))["variable_cat-groceries_202403"]
        assert bill.expected_amount == Decimal("125.50")

    def test_only_active_loans_generate(self, state):
        """Loans in setup or paid off produce no bills."""
        loans = [state.loans[0].model_copy(update={"status": LoanStatus.PENDING_SETUP})]
        state = state.model_copy(update={"loans": loans})
        assert "loan_loan-car_2_202403" not in _by_id(bills_for_month(state, MARCH))

    def test_view_is_idempotent(self, state):
        """Two computations over the same state are identical."""
        first = [b.model_dump() for b in bills_for_month(state, MARCH)]
        second = [b.model_dump() for b in bills_for_month(state, MARCH)]
        assert first == second

    def test_any_day_of_month_gives_same_view(self, state):
        first = [b.id for b in bills_for_month(state, date(2024, 3, 1))]
        later = [b.id for b in bills_for_month(state, date(2024, 3, 27))]
        assert first == later

    def test_sorted_by_due_date(self, state):
        due_dates = [b.due_date for b in bills_for_month(state, MARCH)]
        assert due_dates == sorted(due_dates)


class TestPaidState:
    """Paid state is derived from the ledger."""

    def test_ledger_payment_marks_bill_paid(self, state, make_tx):
        """A linked loan payment pays the generated bill."""
        tx = make_tx(
            date(2024, 3, 14), "1117.23",
            operation_type=OperationType.LOAN_PAYMENT,
            links=TransactionLinks(loan_id="loan-car", parcela_id=2),
        )
        state = state.model_copy(update={"transactions": [tx]})
        bill = _by_id(bills_for_month(state, MARCH))["loan_loan-car_2_202403"]
        assert bill.is_paid is True
        assert bill.transaction_id == tx.id
        assert bill.payment_date == date(2024, 3, 14)

    def test_stale_paid_flag_is_ignored(self, state):
        """An override claiming payment without a ledger transaction stays unpaid."""
        generated = generate_templates(state, MARCH)
        base = generated["fixed_cat-rent_202403"]
        stale = base.model_copy(update={
            "is_paid": True,
            "transaction_id": "tx-deleted",
            "payment_date": date(2024, 3, 10),
        })
        merged = apply_overrides(generated, {stale.id: stale}, state.transactions)
        assert merged[stale.id].is_paid is False
        assert merged[stale.id].transaction_id is None


class TestOverrides:
    """Persisted user edits win over generated values."""

    def test_amount_override(self, state):
        bill = _by_id(bills_for_month(state, MARCH))["fixed_cat-rent_202403"]
        result = update_bill(state, bill, expected_amount=Decimal("1500"))
        assert result.success
        updated = _by_id(bills_for_month(result.state, MARCH))["fixed_cat-rent_202403"]
        assert updated.expected_amount == Decimal("1500.00")

    def test_excluded_bill_is_hidden(self, state):
        bill = _by_id(bills_for_month(state, MARCH))["seguro_pol-car_1_202403"]
        result = update_bill(state, bill, is_excluded=True)
        assert "seguro_pol-car_1_202403" not in _by_id(bills_for_month(result.state, MARCH))

    def test_paid_then_excluded_stays_visible(self, state):
        """Exclusion never hides a bill that is already paid."""
        bill = _by_id(bills_for_month(state, MARCH))["fixed_cat-rent_202403"]
        paid = pay_bill(state, bill, date(2024, 3, 10), account_id="acc-checking", amount=Decimal("1500"))
        paid_bill = _by_id(bills_for_month(paid.state, MARCH))[bill.id]

        excluded = update_bill(paid.state, paid_bill, is_excluded=True)

        shown = _by_id(bills_for_month(excluded.state, MARCH))
        assert bill.id in shown
        assert shown[bill.id].is_paid is True
        assert shown[bill.id].is_excluded is True

    def test_payment_recorded_on_override_is_honoured(self, state, make_tx):
        """An override pointing at an existing ledger transaction marks the bill paid."""
        tx = make_tx(date(2024, 3, 9), "1450.00", category_id="cat-rent")
        base = _by_id(bills_for_month(state, MARCH))["fixed_cat-rent_202403"]
        override = base.model_copy(update={
            "is_paid": True,
            "transaction_id": tx.id,
            "payment_date": date(2024, 3, 10),
        })
        state = state.model_copy(update={"transactions": [tx], "bills": [override]})

        bill = _by_id(bills_for_month(state, MARCH))[base.id]
        assert bill.is_paid is True
        assert bill.transaction_id == tx.id
        assert bill.payment_date == date(2024, 3, 9)

    def test_override_only_affects_its_month(self, state):
        bill = _by_id(bills_for_month(state, MARCH))["fixed_cat-rent_202403"]
        result = update_bill(state, bill, expected_amount=Decimal("1500"))
        april = _by_id(bills_for_month(result.state, date(2024, 4, 1)))
        assert april["fixed_cat-rent_202404"].expected_amount == Decimal("0.00")

    def test_lightweight_view(self, state):
        """Without templates only ad-hoc and paid bills are returned."""
        bill = _by_id(bills_for_month(state, MARCH))["fixed_cat-rent_202403"]
        paid = pay_bill(state, bill, date(2024, 3, 10), account_id="acc-checking", amount=Decimal("1500"))
        light = bills_for_month(paid.state, MARCH, include_templates=False)
        assert [b.id for b in light] == ["fixed_cat-rent_202403"]
        assert light[0].is_paid is True

    def test_paid_orphan_stays_visible(self, state):
        """A paid bill stays visible after its template stops being generated."""
        bill = _by_id(bills_for_month(state, MARCH))["loan_loan-car_2_202403"]
        paid = pay_bill(state, bill, date(2024, 3, 15))
        loans = [paid.state.loans[0].model_copy(update={"status": LoanStatus.PENDING_SETUP})]
        reconfigured = paid.state.model_copy(update={"loans": loans})
        bills = _by_id(bills_for_month(reconfigured, MARCH))
        assert bills["loan_loan-car_2_202403"].is_paid is True


class TestMonthSummaries:

    def test_month_totals(self):
        bills = [
            Bill(due_date=MARCH, expected_amount=Decimal("100"), is_paid=True),
            Bill(due_date=MARCH, expected_amount=Decimal("50")),
            Bill(due_date=MARCH, expected_amount=Decimal("70"), is_excluded=True),
        ]
        totals = month_totals(bills)
        assert totals.total_paid == Decimal("100")
        assert totals.total_unpaid == Decimal("50")
        assert (totals.paid_count, totals.unpaid_count) == (1, 1)

    def test_external_paid_expenses(self, state, make_tx):
        """Manual spending counts; bill payments and income do not."""
        manual = make_tx(date(2024, 3, 5), "40.00")
        state = state.model_copy(update={"transactions": [
            manual,
            make_tx(date(2024, 3, 6), "10.00", links=TransactionLinks(bill_id="b1")),
            make_tx(date(2024, 3, 7), "5000", flow=Flow.IN, operation_type=OperationType.INCOME),
            make_tx(
                date(2024, 3, 8), "20.00",
                meta=TransactionMeta(source=TransactionSource.IMPORT),
            ),
            make_tx(date(2024, 4, 1), "30.00"),
        ]})
        assert [t.id for t in external_paid_expenses(state, MARCH)] == [manual.id]
