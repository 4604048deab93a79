"""
Accrual Engine

Straight-line recognition of insurance premiums. The premium becomes
expense day by day across the coverage window, independently of when
the installments are actually paid:

- unexpensed: prepaid asset, what is left to recognize
- unpaid: premium liability, what is left to pay

The liability side is driven by payments linked in the ledger, never
by the installment `paid` flags.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from ledger_engine.models.ledger import Transaction
from ledger_engine.models.obligations import (
    AccrualResult,
    InsurancePolicy,
    PendingInstallment,
    round_money,
)


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


def linked_payments(
    policy: InsurancePolicy,
    transactions: Iterable[Transaction],
) -> list[Transaction]:
    """Ledger transactions that pay this policy."""
    installment_tx_ids = {i.transaction_id for i in policy.installments if i.transaction_id}
    return [
        t for t in transactions
        if t.links.vehicle_transaction_id == policy.id or t.id in installment_tx_ids
    ]


def find_installment_payment(
    policy: InsurancePolicy,
    installment_number: int,
    transactions: Iterable[Transaction],
) -> Optional[Transaction]:
    """Payment of one installment, found by linkage or by the recorded id."""
    transactions = list(transactions)
    for t in transactions:
        if t.links.vehicle_transaction_id == policy.id and t.links.parcela_id == installment_number:
            return t
    installment = policy.installment(installment_number)
    if installment is not None and installment.transaction_id:
        return next((t for t in transactions if t.id == installment.transaction_id), None)
    return None


def accrued_to_date(policy: InsurancePolicy, as_of: date) -> Decimal:
    """Premium recognized as expense before `as_of` (unrounded)."""
    days = policy.coverage_days
    if days <= 0:
        return ZERO
    elapsed = min(max((as_of - policy.coverage_start).days, 0), days)
    return Decimal(policy.total_premium) * elapsed / days


def accrual(
    policy: InsurancePolicy,
    as_of: date,
    transactions: Iterable[Transaction] = (),
) -> AccrualResult:
    premium = Decimal(policy.total_premium)

    if policy.coverage_days <= 0 or as_of < policy.coverage_start or as_of >= policy.coverage_end:
        unexpensed = ZERO
    else:
        accrued = min(premium, accrued_to_date(policy, as_of))
        unexpensed = round_money(max(ZERO, premium - accrued))

    paid = sum(
        (t.amount for t in linked_payments(policy, transactions) if t.date <= as_of),
        ZERO,
    )
    unpaid = round_money(max(ZERO, premium - paid))

    return AccrualResult(
        policy_id=policy.id,
        as_of=as_of,
        unexpensed=unexpensed,
        unpaid=unpaid,
    )


def expense_for_period(policy: InsurancePolicy, start: date, end: date) -> Decimal:
    """Premium recognized in the inclusive window [start, end]."""
    if end < start:
        return ZERO
    recognized = accrued_to_date(policy, end + timedelta(days=1)) - accrued_to_date(policy, start)
    return round_money(recognized)


# =============================================================================
# INSTALLMENT SETTERS
# =============================================================================

def mark_installment_paid(
    policy: InsurancePolicy,
    installment_number: int,
    transaction_id: str,
) -> InsurancePolicy:
    """Copy of the policy with one installment marked paid."""
    if policy.installment(installment_number) is None:
        raise ValueError(
            f"Policy {policy.id} has no installment {installment_number}"
        )
    installments = [
        item.model_copy(update={"paid": True, "transaction_id": transaction_id})
        if item.number == installment_number else item
        for item in policy.installments
    ]
    return policy.model_copy(update={"installments": installments})


def unmark_installment_paid(policy: InsurancePolicy, installment_number: int) -> InsurancePolicy:
    installments = [
        item.model_copy(update={"paid": False, "transaction_id": None})
        if item.number == installment_number else item
        for item in policy.installments
    ]
    return policy.model_copy(update={"installments": installments})


def pending_installments(
    policies: Iterable[InsurancePolicy],
    today: date,
    transactions: Optional[Iterable[Transaction]] = None,
) -> list[PendingInstallment]:
    """
    Unpaid installments across all policies, soonest first.

    With `transactions`, paid state comes from the ledger; without it
    the installment flags are used.
    """
    transactions = list(transactions) if transactions is not None else None
    pending = []
    for policy in policies:
        for item in policy.installments:
            if transactions is None:
                is_paid = item.paid
            else:
                is_paid = find_installment_payment(policy, item.number, transactions) is not None
            if is_paid:
                continue
            pending.append(PendingInstallment(
                policy_id=policy.id,
                vehicle_id=policy.vehicle_id,
                number=item.number,
                of_total=len(policy.installments),
                due_date=item.due_date,
                amount=item.amount,
                days_until_due=(item.due_date - today).days,
            ))
    pending.sort(key=lambda p: (p.due_date, p.policy_id, p.number))
    return pending
