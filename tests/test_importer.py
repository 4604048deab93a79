"""
Tests for statement import: parsing, rules, duplicate detection and
the staging lifecycle.
"""

import pytest
from datetime import date
from decimal import Decimal

from ledger_engine.importer.duplicates import flag_duplicates
from ledger_engine.importer.parsers import (
    StatementParseError,
    detect_format,
    detect_separator,
    normalize_amount,
    normalize_date,
    parse_delimited,
    parse_ofx,
    parse_statement,
)
from ledger_engine.importer.rules import apply_rules, rule_from_transaction
from ledger_engine.importer.statements import (
    build_ledger_transactions,
    commit_statement,
    create_rule_from_transaction,
    discard_statement,
    import_statement,
    review_staged_transactions,
)
from ledger_engine.models import (
    Flow,
    ImportedTransaction,
    OperationType,
    StandardizationRule,
    StatementFormat,
    StatementStatus,
    TransactionSource,
)


CSV_STATEMENT = (
    "Data;Descrição;Valor\n"
    "05/05/2024;SALARIO ACME;5.000,00\n"
    "10/05/2024;PIX  MERCADO   BOM;-150,00\n"
    "12/05/2024;NETFLIX.COM;-39,90\n"
)

OFX_STATEMENT = """OFXHEADER:100
<OFX><BANKMSGSRSV1><STMTTRNRS><STMTRS><BANKTRANLIST>
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>20240510120000[-3:BRT]
<TRNAMT>-150.00
<MEMO>PIX MERCADO BOM
</STMTTRN>
<STMTTRN>
<TRNTYPE>CREDIT
<DTPOSTED>20240505
<TRNAMT>5000.00
<NAME>SALARIO ACME
</STMTTRN>
</BANKTRANLIST></STMTRS></STMTTRNRS></BANKMSGSRSV1></OFX>
"""


def _staged(day, amount, description="LINE", **fields):
    return ImportedTransaction(
        date=day,
        amount=Decimal(amount),
        original_description=description,
        description=description,
        operation_type=OperationType.EXPENSE if Decimal(amount) < 0 else OperationType.INCOME,
        **fields,
    )


class TestNormalization:
    """Field-level parsing."""

    @pytest.mark.parametrize("text,expected", [
        ("1.234,56", Decimal("1234.56")),
        ("-150,00", Decimal("-150.00")),
        ("1,234.56", Decimal("1234.56")),
        ("R$ 39,90", Decimal("39.90")),
        ("(20.00)", Decimal("-20.00")),
        ("75.10-", Decimal("-75.10")),
        ("1.000.000", Decimal("1000000")),
        ("1.234", Decimal("1234")),
        ("-2.500", Decimal("-2500")),
        ("12.5", Decimal("12.5")),
    ])
    def test_normalize_amount(self, text, expected):
        assert normalize_amount(text) == expected

    @pytest.mark.parametrize("text", ["", "abc", "1,2,3", None])
    def test_normalize_amount_rejects(self, text):
        with pytest.raises(ValueError):
            normalize_amount(text)

    def test_normalize_date_formats(self):
        assert normalize_date("05/05/2024") == date(2024, 5, 5)
        assert normalize_date("2024-05-05") == date(2024, 5, 5)
        assert normalize_date("31/02/2024") is None
        assert normalize_date("  ") is None

    def test_detect_separator(self):
        assert detect_separator("Data;Descricao;Valor") == ";"
        assert detect_separator("date\tdescription\tamount") == "\t"
        assert detect_separator("date,description,amount") == ","
        with pytest.raises(StatementParseError):
            detect_separator("no separators here")


class TestParsers:
    """Whole-file parsing."""

    def test_parse_delimited(self):
        """Accented headers, Brazilian amounts and messy spacing are handled."""
        lines = parse_delimited(CSV_STATEMENT, account_id="acc-checking")
        assert len(lines) == 3
        assert lines[0].amount == Decimal("5000.00")
        assert lines[0].operation_type == OperationType.INCOME
        assert lines[1].amount == Decimal("-150.00")
        assert lines[1].operation_type == OperationType.EXPENSE
        assert lines[1].original_description == "PIX MERCADO BOM"
        assert lines[1].account_id == "acc-checking"

    def test_unreadable_rows_are_skipped(self):
        content = "date,description,amount\n2024-05-01,OK,10.00\nnot-a-date,BAD,1\n2024-05-02,BAD,abc\n"
        lines = parse_delimited(content)
        assert [line.original_description for line in lines] == ["OK"]

    def test_missing_columns(self):
        with pytest.raises(StatementParseError, match="amount"):
            parse_delimited("date;description\n2024-05-01;X\n")

    def test_no_readable_rows(self):
        with pytest.raises(StatementParseError):
            parse_delimited("date;description;amount\nfoo;bar;baz\n")

    def test_empty_file(self):
        with pytest.raises(StatementParseError):
            parse_delimited("\n\n")

    def test_parse_ofx(self):
        """MEMO is preferred, NAME is the fallback."""
        lines = parse_ofx(OFX_STATEMENT)
        assert [(line.date, line.amount) for line in lines] == [
            (date(2024, 5, 10), Decimal("-150.00")),
            (date(2024, 5, 5), Decimal("5000.00")),
        ]
        assert lines[0].original_description == "PIX MERCADO BOM"
        assert lines[1].original_description == "SALARIO ACME"

    def test_detect_format(self):
        assert detect_format(OFX_STATEMENT) == StatementFormat.OFX
        assert detect_format(CSV_STATEMENT) == StatementFormat.DELIMITED
        assert len(parse_statement(OFX_STATEMENT)) == 2


class TestRules:
    """Standardization rules."""

    def test_first_matching_rule_wins(self):
        rules = [
            StandardizationRule(
                pattern="mercado", category_id="cat-groceries",
                operation_type=OperationType.EXPENSE,
                description_template="Groceries: {description}",
            ),
            StandardizationRule(pattern="pix", operation_type=OperationType.TRANSFER),
        ]
        line = _staged(date(2024, 5, 10), "-150", "PIX MERCADO BOM")
        [result] = apply_rules([line], rules)
        assert result.category_id == "cat-groceries"
        assert result.description == "Groceries: PIX MERCADO BOM"

    def test_no_match_leaves_line(self):
        line = _staged(date(2024, 5, 10), "-39.90", "NETFLIX.COM")
        rules = [StandardizationRule(pattern="spotify", operation_type=OperationType.EXPENSE)]
        assert apply_rules([line], rules) == [line]

    def test_transfer_rule_clears_linkage(self):
        line = _staged(date(2024, 5, 10), "-500", "TED INVEST", temp_investment_id="inv-1")
        rule = StandardizationRule(pattern="ted", operation_type=OperationType.TRANSFER)
        [result] = apply_rules([line], [rule])
        assert result.operation_type == OperationType.TRANSFER
        assert result.temp_investment_id is None

    def test_rule_without_category_keeps_existing(self):
        line = _staged(date(2024, 5, 10), "-10", "UBER TRIP", category_id="cat-transport")
        rule = StandardizationRule(pattern="uber", operation_type=OperationType.EXPENSE)
        [result] = apply_rules([line], [rule])
        assert result.category_id == "cat-transport"

    def test_rule_from_transaction(self):
        line = _staged(date(2024, 5, 12), "-39.90", "NETFLIX.COM").model_copy(update={
            "description": "Netflix",
            "category_id": "cat-fun",
        })
        rule = rule_from_transaction(line)
        assert rule.pattern == "NETFLIX.COM"
        assert rule.description_template == "Netflix"
        assert rule.category_id == "cat-fun"


class TestDuplicates:
    """Duplicate annotation against the ledger."""

    def test_one_day_apart_same_amount(self, make_tx):
        ledger = [make_tx(date(2024, 5, 10), "150.00")]
        [line] = flag_duplicates([_staged(date(2024, 5, 11), "-150.00")], ledger, "acc-checking")
        assert line.is_potential_duplicate is True
        assert line.duplicate_of_tx_id == ledger[0].id

    def test_amount_tolerance_boundary(self, make_tx):
        """One cent apart still flags, two cents do not."""
        ledger = [make_tx(date(2024, 5, 10), "150.00")]
        [near] = flag_duplicates([_staged(date(2024, 5, 10), "-150.01")], ledger, "acc-checking")
        [far] = flag_duplicates([_staged(date(2024, 5, 10), "-150.02")], ledger, "acc-checking")
        assert near.is_potential_duplicate is True
        assert far.is_potential_duplicate is False

    def test_two_days_apart(self, make_tx):
        ledger = [make_tx(date(2024, 5, 10), "150.00")]
        [line] = flag_duplicates([_staged(date(2024, 5, 12), "-150.00")], ledger, "acc-checking")
        assert line.is_potential_duplicate is False

    def test_direction_and_account_must_match(self, make_tx):
        ledger = [
            make_tx(date(2024, 5, 10), "150.00", flow=Flow.IN, operation_type=OperationType.INCOME),
            make_tx(date(2024, 5, 10), "150.00", account_id="acc-card"),
        ]
        [line] = flag_duplicates([_staged(date(2024, 5, 10), "-150.00")], ledger, "acc-checking")
        assert line.is_potential_duplicate is False

    def test_opening_balance_never_matches(self, make_tx):
        """An opening-balance entry with the same account, amount and date is ignored."""
        ledger = [make_tx(
            date(2024, 5, 10), "150.00",
            flow=Flow.IN, operation_type=OperationType.INITIAL_BALANCE,
        )]
        [line] = flag_duplicates([_staged(date(2024, 5, 10), "150.00")], ledger, "acc-checking")
        assert line.is_potential_duplicate is False

        regular = [ledger[0].model_copy(update={"operation_type": OperationType.INCOME})]
        [line] = flag_duplicates([_staged(date(2024, 5, 10), "150.00")], regular, "acc-checking")
        assert line.is_potential_duplicate is True

    def test_flags_are_recomputed(self):
        line = _staged(date(2024, 5, 10), "-150.00", is_potential_duplicate=True, duplicate_of_tx_id="gone")
        [result] = flag_duplicates([line], [], "acc-checking")
        assert result.is_potential_duplicate is False
        assert result.duplicate_of_tx_id is None


class TestStatementLifecycle:
    """Import, review, commit and discard."""

    def test_import_stages_without_touching_ledger(self, state):
        result = import_statement(state, CSV_STATEMENT, "acc-checking", "maio.csv")
        assert result.success
        assert result.details["transaction_count"] == 3
        assert result.state.transactions == []
        statement = result.state.statement(result.entity_id)
        assert statement.status == StatementStatus.PENDING
        assert (statement.date_from, statement.date_to) == (date(2024, 5, 5), date(2024, 5, 12))

    def test_import_applies_rules_and_flags(self, state, make_tx):
        state = state.model_copy(update={
            "transactions": [make_tx(date(2024, 5, 10), "150.00")],
            "rules": [StandardizationRule(
                pattern="netflix", category_id="cat-groceries", operation_type=OperationType.EXPENSE,
            )],
        })
        result = import_statement(state, CSV_STATEMENT, "acc-checking")
        lines = result.state.statement(result.entity_id).raw_transactions
        assert result.details["duplicate_count"] == 1
        assert lines[1].is_potential_duplicate is True
        assert lines[2].category_id == "cat-groceries"

    def test_import_unknown_account(self, state):
        assert import_statement(state, CSV_STATEMENT, "acc-missing").error_code == "account_unresolved"

    def test_import_parse_error(self, state):
        result = import_statement(state, "garbage", "acc-checking")
        assert result.error_code == "parse_error"
        assert result.state is None

    def test_commit_appends_transactions(self, state):
        imported = import_statement(state, CSV_STATEMENT, "acc-checking")
        result = commit_statement(imported.state, imported.entity_id, today=date(2024, 5, 31))

        assert result.success
        assert result.details["transaction_count"] == 3
        txs = result.state.transactions
        assert [t.flow for t in txs] == [Flow.IN, Flow.OUT, Flow.OUT]
        assert all(t.amount > 0 for t in txs)
        assert all(t.meta.source == TransactionSource.IMPORT and t.conciliated for t in txs)
        assert result.state.statement(imported.entity_id).status == StatementStatus.CONTABILIZED

    def test_review_ignore_and_transfer(self, state):
        """Ignored lines are skipped, transfers become a linked pair."""
        imported = import_statement(state, CSV_STATEMENT, "acc-checking")
        lines = imported.state.statement(imported.entity_id).raw_transactions
        reviewed = [
            lines[1].model_copy(update={
                "operation_type": OperationType.TRANSFER,
                "destination_account_id": "acc-savings",
            }),
            lines[2].model_copy(update={"ignored": True}),
        ]
        review = review_staged_transactions(imported.state, imported.entity_id, reviewed)
        result = commit_statement(review.state, imported.entity_id, today=date(2024, 5, 31))

        txs = result.state.transactions
        assert len(txs) == 3
        pair = [t for t in txs if t.operation_type == OperationType.TRANSFER]
        assert {(t.account_id, t.flow) for t in pair} == {
            ("acc-checking", Flow.TRANSFER_OUT),
            ("acc-savings", Flow.TRANSFER_IN),
        }
        assert pair[0].links.transfer_group_id == pair[1].links.transfer_group_id

    def test_review_unknown_line(self, state):
        imported = import_statement(state, CSV_STATEMENT, "acc-checking")
        stranger = _staged(date(2024, 5, 1), "-1")
        result = review_staged_transactions(imported.state, imported.entity_id, [stranger])
        assert result.error_code == "unknown_lines"

    def test_commit_blocked_by_validation(self, state):
        """A transfer without destination blocks the commit."""
        imported = import_statement(state, CSV_STATEMENT, "acc-checking")
        line = imported.state.statement(imported.entity_id).raw_transactions[1]
        review = review_staged_transactions(
            imported.state, imported.entity_id,
            [line.model_copy(update={"operation_type": OperationType.TRANSFER})],
        )
        result = commit_statement(review.state, imported.entity_id, today=date(2024, 5, 31))
        assert result.error_code == "validation_failed"
        assert result.details["validation"]["can_commit"] is False

    def test_commit_twice_rejected(self, state):
        imported = import_statement(state, CSV_STATEMENT, "acc-checking")
        committed = commit_statement(imported.state, imported.entity_id, today=date(2024, 5, 31))
        again = commit_statement(committed.state, imported.entity_id, today=date(2024, 5, 31))
        assert again.success is False
        assert len(committed.state.transactions) == 3

    def test_discard(self, state):
        imported = import_statement(state, CSV_STATEMENT, "acc-checking")
        result = discard_statement(imported.state, imported.entity_id)
        assert result.state.statements == []
        assert result.state.transactions == []

    def test_discard_committed_rejected(self, state):
        imported = import_statement(state, CSV_STATEMENT, "acc-checking")
        committed = commit_statement(imported.state, imported.entity_id, today=date(2024, 5, 31))
        assert discard_statement(committed.state, imported.entity_id).error_code == "already_committed"

    def test_create_rule_reclassifies_statement(self, state):
        content = CSV_STATEMENT + "20/05/2024;NETFLIX.COM;-39,90\n"
        imported = import_statement(state, content, "acc-checking")
        statement_id = imported.entity_id
        first = imported.state.statement(statement_id).raw_transactions[2]
        review = review_staged_transactions(
            imported.state, statement_id,
            [first.model_copy(update={"category_id": "cat-groceries", "description": "Netflix"})],
        )
        result = create_rule_from_transaction(review.state, statement_id, first.id)

        assert result.success
        assert result.state.rules[0].pattern == "NETFLIX.COM"
        last = result.state.statement(statement_id).raw_transactions[3]
        assert last.category_id == "cat-groceries"
        assert last.description == "Netflix"

    def test_build_ledger_links_loans(self, state):
        imported = import_statement(state, CSV_STATEMENT, "acc-checking")
        statement = imported.state.statement(imported.entity_id)
        line = statement.raw_transactions[1].model_copy(update={
            "operation_type": OperationType.LOAN_PAYMENT,
            "temp_loan_id": "loan-car",
        })
        statement = statement.model_copy(update={"raw_transactions": [line]})
        [tx] = build_ledger_transactions(statement)
        assert tx.links.loan_id == "loan-car"
        assert tx.flow == Flow.OUT
