"""Standardization rules for staged statement lines.

A rule matches when its pattern is a substring of the bank description,
ignoring case. Rules are tried in list order and the first match wins.
"""

import unicodedata
from collections.abc import Iterable
from typing import Optional

from ledger_engine.models.ledger import OperationType
from ledger_engine.models.statement import ImportedTransaction, StandardizationRule


DESCRIPTION_PLACEHOLDER = "{description}"


def _match_key(value: Optional[str]) -> str:
    if value is None:
        return ""
    s = unicodedata.normalize("NFKC", value).strip()
    # Collapse internal whitespace and case-fold
    return " ".join(s.split()).casefold()


def matching_rule(
    transaction: ImportedTransaction,
    rules: Iterable[StandardizationRule],
) -> Optional[StandardizationRule]:
    text = _match_key(transaction.original_description or transaction.description)
    for rule in rules:
        pattern = _match_key(rule.pattern)
        if pattern and pattern in text:
            return rule
    return None


def render_description(rule: StandardizationRule, original: str) -> str:
    if not rule.description_template:
        return original
    return rule.description_template.replace(DESCRIPTION_PLACEHOLDER, original)


def apply_rule(transaction: ImportedTransaction, rule: StandardizationRule) -> ImportedTransaction:
    update = {
        "operation_type": rule.operation_type,
        "description": render_description(rule, transaction.original_description),
    }
    if rule.category_id is not None:
        update["category_id"] = rule.category_id
    if rule.operation_type == OperationType.TRANSFER:
        # A transfer carries no investment, loan or vehicle linkage
        update.update({
            "temp_investment_id": None,
            "temp_loan_id": None,
            "temp_vehicle_operation": None,
        })
    return transaction.model_copy(update=update)


def apply_rules(
    transactions: Iterable[ImportedTransaction],
    rules: Iterable[StandardizationRule],
) -> list[ImportedTransaction]:
    """Copies of the transactions with the first matching rule applied."""
    rules = list(rules)
    result = []
    for tx in transactions:
        rule = matching_rule(tx, rules)
        result.append(apply_rule(tx, rule) if rule is not None else tx)
    return result


def rule_from_transaction(
    transaction: ImportedTransaction,
    pattern: Optional[str] = None,
) -> StandardizationRule:
    """
    A rule reproducing the reviewer's classification of a line.

    The pattern defaults to the bank description; the reviewed
    description becomes the template only when it was changed.
    """
    template = (
        transaction.description
        if transaction.description and transaction.description != transaction.original_description
        else ""
    )
    return StandardizationRule(
        pattern=pattern or transaction.original_description,
        category_id=transaction.category_id,
        operation_type=transaction.operation_type,
        description_template=template,
    )
