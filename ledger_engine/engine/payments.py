"""
Bill Payment Protocol

Paying a bill means, as one state replacement:
1. One new ledger transaction (source = bill_tracker)
2. The loan or insurance installment marked through its own setter
3. The bill persisted with its payment link

Unpaying reverses the same three steps.

DESIGN DECISION: Every check runs before the new state is built. A
payment that cannot be resolved (no account, unknown loan, already
paid) returns a failed CommandResult and the input state is untouched.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog
from dateutil.relativedelta import relativedelta

from ledger_engine.engine.accrual import mark_installment_paid, unmark_installment_paid
from ledger_engine.engine.amortization import sync_loan_status
from ledger_engine.engine.obligations import find_payment_transaction
from ledger_engine.models.ledger import (
    Flow,
    OperationType,
    Transaction,
    TransactionLinks,
    TransactionMeta,
    TransactionSource,
    new_id,
)
from ledger_engine.models.obligations import (
    AdHocSource,
    Bill,
    BillSource,
    FixedExpenseSource,
    InsuranceInstallmentSource,
    LoanInstallmentSource,
    VariableExpenseSource,
    round_money,
)
from ledger_engine.models.state import CommandResult, LedgerState


logger = structlog.get_logger(__name__)

# Fields a user may change on a bill through update_bill
EDITABLE_FIELDS = frozenset({
    "description",
    "due_date",
    "expected_amount",
    "is_excluded",
    "suggested_account_id",
    "suggested_category_id",
})

# Generated bills keep their computed due date and description
AD_HOC_ONLY_FIELDS = frozenset({"description", "due_date"})


class PaymentError(Exception):
    """A bill command that must be rejected before any mutation."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


# =============================================================================
# HELPERS
# =============================================================================

def operation_type_for(source: BillSource) -> OperationType:
    """Ledger operation type of a payment, by bill origin."""
    if isinstance(source, LoanInstallmentSource):
        return OperationType.LOAN_PAYMENT
    if isinstance(source, (
        InsuranceInstallmentSource,
        FixedExpenseSource,
        VariableExpenseSource,
        AdHocSource,
    )):
        return OperationType.EXPENSE
    raise TypeError(f"Unknown bill source: {source!r}")


def _links_for(bill: Bill) -> TransactionLinks:
    source = bill.source
    if isinstance(source, LoanInstallmentSource):
        return TransactionLinks(
            loan_id=source.loan_id,
            parcela_id=source.installment_number,
            bill_id=bill.id,
        )
    if isinstance(source, InsuranceInstallmentSource):
        return TransactionLinks(
            vehicle_transaction_id=source.policy_id,
            parcela_id=source.installment_number,
            bill_id=bill.id,
        )
    if isinstance(source, (FixedExpenseSource, VariableExpenseSource, AdHocSource)):
        return TransactionLinks(bill_id=bill.id)
    raise TypeError(f"Unknown bill source: {source!r}")


def _upsert_bill(bills: list[Bill], bill: Bill) -> list[Bill]:
    replaced = False
    result = []
    for existing in bills:
        if existing.id == bill.id:
            result.append(bill)
            replaced = True
        else:
            result.append(existing)
    if not replaced:
        result.append(bill)
    return result


def _check_source_exists(state: LedgerState, bill: Bill) -> None:
    source = bill.source
    if isinstance(source, LoanInstallmentSource):
        if state.loan(source.loan_id) is None:
            raise PaymentError("source_not_found", f"Loan {source.loan_id} not found")
    elif isinstance(source, InsuranceInstallmentSource):
        policy = state.policy(source.policy_id)
        if policy is None:
            raise PaymentError("source_not_found", f"Policy {source.policy_id} not found")
        if policy.installment(source.installment_number) is None:
            raise PaymentError(
                "source_not_found",
                f"Policy {source.policy_id} has no installment {source.installment_number}",
            )


def _apply_markers(
    state: LedgerState,
    bill: Bill,
    transactions: list[Transaction],
    transaction_id: Optional[str],
) -> dict[str, Any]:
    """New loans/policies after the payment set changed."""
    update: dict[str, Any] = {}
    source = bill.source
    if isinstance(source, LoanInstallmentSource):
        update["loans"] = [
            sync_loan_status(loan, transactions) if loan.id == source.loan_id else loan
            for loan in state.loans
        ]
    elif isinstance(source, InsuranceInstallmentSource):
        policies = []
        for policy in state.policies:
            if policy.id == source.policy_id:
                if transaction_id is None:
                    policy = unmark_installment_paid(
                        policy, source.installment_number
                    )
                else:
                    policy = mark_installment_paid(
                        policy, source.installment_number, transaction_id
                    )
            policies.append(policy)
        update["policies"] = policies
    return update


# =============================================================================
# PAY / UNPAY
# =============================================================================

def pay_bill(
    state: LedgerState,
    bill: Bill,
    payment_date: date,
    account_id: Optional[str] = None,
    amount: Optional[Decimal] = None,
    category_id: Optional[str] = None,
) -> CommandResult:
    """
    Record the payment of a bill.

    Account, amount and category default to the bill's suggestions.
    """
    try:
        if bill.is_paid or find_payment_transaction(bill, state.transactions) is not None:
            raise PaymentError("already_paid", f"Bill {bill.id} is already paid")

        account = state.account(account_id or bill.suggested_account_id)
        if account is None:
            raise PaymentError(
                "account_unresolved",
                f"No account to pay bill {bill.id} from",
            )

        paid_amount = round_money(amount if amount is not None else bill.expected_amount)
        if paid_amount <= 0:
            raise PaymentError("invalid_amount", "Payment amount must be positive")

        _check_source_exists(state, bill)
    except PaymentError as e:
        logger.info("bill_payment_rejected", bill_id=bill.id, code=e.code)
        return CommandResult.failure(e.code, str(e), bill_id=bill.id)

    tx = Transaction(
        date=payment_date,
        account_id=account.id,
        flow=Flow.OUT,
        operation_type=operation_type_for(bill.source),
        amount=paid_amount,
        category_id=category_id or bill.suggested_category_id,
        description=bill.description,
        links=_links_for(bill),
        meta=TransactionMeta(source=TransactionSource.BILL_TRACKER),
    )
    transactions = state.transactions + [tx]

    payment_fields = {
        "is_paid": True,
        "payment_date": payment_date,
        "transaction_id": tx.id,
    }
    existing = state.bill(bill.id)
    if existing is not None:
        persisted = existing.model_copy(update=payment_fields)
    else:
        persisted = bill.model_copy(update={**payment_fields, "created_by_payment": True})

    update = {
        "transactions": transactions,
        "bills": _upsert_bill(state.bills, persisted),
        **_apply_markers(state, bill, transactions, tx.id),
    }
    new_state = state.model_copy(update=update)

    logger.info("bill_paid", bill_id=bill.id, transaction_id=tx.id, amount=str(paid_amount))
    return CommandResult.ok(
        new_state,
        message="Bill paid",
        entity_id=tx.id,
        bill_id=bill.id,
        transaction_id=tx.id,
        amount=str(paid_amount),
    )


def unpay_bill(state: LedgerState, bill: Bill) -> CommandResult:
    """Reverse a payment: drop its transaction and every marker it set."""
    tx = find_payment_transaction(bill, state.transactions)
    if tx is None:
        return CommandResult.failure(
            "not_paid", f"Bill {bill.id} has no payment in the ledger", bill_id=bill.id
        )

    transactions = [t for t in state.transactions if t.id != tx.id]

    # The record goes back to what it was before the payment
    existing = state.bill(bill.id)
    if existing is None or existing.created_by_payment:
        bills = [b for b in state.bills if b.id != bill.id]
    else:
        bills = _upsert_bill(state.bills, existing.model_copy(update={
            "is_paid": False,
            "payment_date": None,
            "transaction_id": None,
        }))

    update = {
        "transactions": transactions,
        "bills": bills,
        **_apply_markers(state, bill, transactions, None),
    }
    new_state = state.model_copy(update=update)

    logger.info("bill_unpaid", bill_id=bill.id, transaction_id=tx.id)
    return CommandResult.ok(
        new_state,
        message="Payment reversed",
        entity_id=bill.id,
        removed_transaction_id=tx.id,
    )


# =============================================================================
# BILL EDITING
# =============================================================================

def add_ad_hoc_bill(
    state: LedgerState,
    description: str,
    due_date: date,
    expected_amount: Decimal,
    suggested_account_id: Optional[str] = None,
    suggested_category_id: Optional[str] = None,
) -> CommandResult:
    if suggested_account_id and state.account(suggested_account_id) is None:
        return CommandResult.failure(
            "account_unresolved", f"Account {suggested_account_id} not found"
        )
    bill = Bill(
        description=description,
        due_date=due_date,
        expected_amount=round_money(expected_amount),
        source=AdHocSource(),
        suggested_account_id=suggested_account_id,
        suggested_category_id=suggested_category_id,
    )
    new_state = state.model_copy(update={"bills": state.bills + [bill]})
    return CommandResult.ok(new_state, message="Bill created", entity_id=bill.id)


def update_bill(state: LedgerState, bill: Bill, **changes: Any) -> CommandResult:
    """
    Persist a user edit of a bill.

    For generated bills this stores the override delta under the
    bill's deterministic id.
    """
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        return CommandResult.failure(
            "invalid_field", f"Fields cannot be edited: {', '.join(sorted(unknown))}"
        )
    if not bill.is_ad_hoc and set(changes) & AD_HOC_ONLY_FIELDS:
        return CommandResult.failure(
            "invalid_field", "Only ad-hoc bills can change description or due date"
        )
    account_id = changes.get("suggested_account_id")
    if account_id and state.account(account_id) is None:
        return CommandResult.failure("account_unresolved", f"Account {account_id} not found")
    if "expected_amount" in changes:
        try:
            amount = Decimal(str(changes["expected_amount"]))
        except InvalidOperation:
            return CommandResult.failure(
                "invalid_amount", f"Not a valid amount: {changes['expected_amount']!r}"
            )
        if not amount.is_finite() or amount < 0:
            return CommandResult.failure("invalid_amount", "Amount must be a non-negative number")
        changes["expected_amount"] = round_money(amount)

    # Payment fields are never written from the view
    base = state.bill(bill.id) or bill.model_copy(update={
        "is_paid": False,
        "payment_date": None,
        "transaction_id": None,
    })
    # A user edit turns a payment-only record into a real override
    updated = base.model_copy(update={**changes, "created_by_payment": False})
    new_state = state.model_copy(update={"bills": _upsert_bill(state.bills, updated)})
    return CommandResult.ok(
        new_state,
        message="Bill updated",
        entity_id=bill.id,
        changes={k: str(v) for k, v in changes.items()},
    )


def delete_bill(state: LedgerState, bill_id: str) -> CommandResult:
    """Delete an ad-hoc bill. Generated bills are hidden by exclusion instead."""
    bill = state.bill(bill_id)
    if bill is None:
        return CommandResult.failure("not_found", f"Bill {bill_id} not found")
    if not bill.is_ad_hoc:
        return CommandResult.failure(
            "not_ad_hoc", "Generated bills cannot be deleted; exclude them instead"
        )
    if find_payment_transaction(bill, state.transactions) is not None:
        return CommandResult.failure("bill_paid", "Unpay the bill before deleting it")

    new_state = state.model_copy(update={
        "bills": [b for b in state.bills if b.id != bill_id],
    })
    return CommandResult.ok(new_state, message="Bill deleted", entity_id=bill_id)


def purchase_installment_bills(
    description: str,
    total_amount: Decimal,
    installments: int,
    first_due_date: date,
    suggested_account_id: Optional[str] = None,
    suggested_category_id: Optional[str] = None,
) -> list[Bill]:
    """
    Split a purchase into monthly ad-hoc bills sharing a series id.

    Each bill is the total split evenly; the last one absorbs rounding
    so the series sums to exactly the total.
    """
    if installments < 1:
        raise ValueError("installments must be at least 1")
    total = round_money(total_amount)
    amount = round_money(total / installments)
    series_id = new_id()

    bills = []
    for number in range(1, installments + 1):
        value = amount if number < installments else total - amount * (installments - 1)
        bills.append(Bill(
            description=f"{description} ({number}/{installments})",
            due_date=first_due_date + relativedelta(months=number - 1),
            expected_amount=value,
            source=AdHocSource(series_id=series_id, series_number=number),
            suggested_account_id=suggested_account_id,
            suggested_category_id=suggested_category_id,
        ))
    return bills


def add_purchase_installments(
    state: LedgerState,
    description: str,
    total_amount: Decimal,
    installments: int,
    first_due_date: date,
    suggested_account_id: Optional[str] = None,
    suggested_category_id: Optional[str] = None,
) -> CommandResult:
    if installments < 1:
        return CommandResult.failure("invalid_installments", "At least one installment is required")
    if Decimal(total_amount) <= 0:
        return CommandResult.failure("invalid_amount", "Purchase total must be positive")
    if suggested_account_id and state.account(suggested_account_id) is None:
        return CommandResult.failure(
            "account_unresolved", f"Account {suggested_account_id} not found"
        )
    bills = purchase_installment_bills(
        description,
        total_amount,
        installments,
        first_due_date,
        suggested_account_id,
        suggested_category_id,
    )
    new_state = state.model_copy(update={"bills": state.bills + bills})
    return CommandResult.ok(
        new_state,
        message=f"{installments} installments created",
        entity_id=bills[0].source.series_id,
        bill_ids=[b.id for b in bills],
    )
