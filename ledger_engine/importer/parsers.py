"""Parsers mapping bank exports to staged ImportedTransaction records.

Two input shapes are understood:

- Delimited text with a header row. The separator (tab, semicolon or
  comma) is detected from the header. Columns are matched ignoring case
  and accents: ``data``/``date``, ``valor``/``amount`` and
  ``descricao``/``description``/``historico``/``memo``.
- OFX-like tag exports: ``<STMTTRN>`` blocks carrying ``DTPOSTED``
  (``YYYYMMDD...``), ``TRNAMT`` and ``MEMO`` (``NAME`` as fallback).

Amounts keep the bank's sign. Negative lines default to ``expense``,
the rest to ``income``. Rows that cannot be read are skipped; a file
that yields no rows at all is an error.
"""

import csv
import io
import re
import unicodedata
from collections.abc import Iterable, Iterator
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog

from ledger_engine.models.ledger import OperationType
from ledger_engine.models.statement import ImportedTransaction, StatementFormat


logger = structlog.get_logger(__name__)

SEPARATORS = ("\t", ";", ",")

DATE_COLUMNS = frozenset({"data", "date", "data lancamento", "data movimento"})
AMOUNT_COLUMNS = frozenset({"valor", "amount", "valor (r$)", "value"})
DESCRIPTION_COLUMNS = frozenset({"descricao", "description", "historico", "memo", "lancamento"})

DATE_FORMATS = ("%d/%m/%Y", "%Y-%m-%d", "%d/%m/%y", "%d-%m-%Y", "%d.%m.%Y")

# "1.234" style amounts: thousands separator, no decimal part
THOUSANDS_ONLY = re.compile(r"\d{1,3}\.\d{3}")

_STMTTRN_RE = re.compile(
    r"<STMTTRN>(.*?)(?=</STMTTRN>|<STMTTRN>|</BANKTRANLIST>|\Z)",
    re.IGNORECASE | re.DOTALL,
)


class StatementParseError(ValueError):
    """The statement cannot be imported at all."""


# =============================================================================
# FIELD NORMALIZATION
# =============================================================================

def _clean_text(value: Optional[str]) -> str:
    if value is None:
        return ""
    # Collapse internal newlines and runs of whitespace
    return re.sub(r"\s+", " ", value.replace("\r", " ").replace("\n", " ")).strip()


def normalize_header(value: str) -> str:
    """Header key without accents, case or surrounding quotes."""
    decomposed = unicodedata.normalize("NFKD", value.replace("\ufeff", ""))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _clean_text(stripped).strip("\"'").casefold()


def normalize_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def normalize_amount(value: Optional[str]) -> Decimal:
    """
    Parse Brazilian (``1.234,56``) or plain (``1234.56``, ``1,234.56``)
    notation. Sign may be a leading or trailing ``-`` or parentheses.

    A lone dot followed by exactly three digits (``1.234``) is read as a
    thousands separator: bank amounts never carry three decimals.

    Raises ValueError when the text is not a number.
    """
    if value is None:
        raise ValueError("empty amount")
    s = value.strip().replace("R$", "").replace(" ", "").replace("\u00a0", "")
    if not s:
        raise ValueError("empty amount")

    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative, s = True, s[1:-1]
    if s.endswith("-"):
        negative, s = True, s[:-1]
    if s.startswith("-"):
        negative, s = True, s[1:]
    elif s.startswith("+"):
        s = s[1:]

    if "," in s and "." in s:
        # Whichever comes last is the decimal separator
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        if s.count(",") > 1:
            raise ValueError(f"ambiguous amount: {value!r}")
        s = s.replace(",", ".")
    elif s.count(".") > 1 or THOUSANDS_ONLY.fullmatch(s):
        s = s.replace(".", "")

    try:
        amount = Decimal(s)
    except InvalidOperation:
        raise ValueError(f"not an amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"not an amount: {value!r}")
    return -amount if negative else amount


def default_operation_type(amount: Decimal) -> OperationType:
    return OperationType.EXPENSE if amount < 0 else OperationType.INCOME


def _staged(
    account_id: Optional[str],
    posted: date,
    amount: Decimal,
    description: str,
) -> ImportedTransaction:
    return ImportedTransaction(
        account_id=account_id,
        date=posted,
        amount=amount,
        original_description=description,
        description=description,
        operation_type=default_operation_type(amount),
    )


# =============================================================================
# DELIMITED TEXT
# =============================================================================

def detect_separator(header_line: str) -> str:
    """Separator occurring most often in the header; tab wins ties."""
    counts = {sep: header_line.count(sep) for sep in SEPARATORS}
    best = max(SEPARATORS, key=lambda sep: counts[sep])
    if counts[best] == 0:
        raise StatementParseError("Could not detect a column separator in the header row")
    return best


def _find_column(headers: list[str], accepted: Iterable[str]) -> Optional[int]:
    accepted = set(accepted)
    for idx, header in enumerate(headers):
        if header in accepted:
            return idx
    return None


def _iter_delimited_rows(content: str) -> Iterator[list[str]]:
    lines = [line for line in content.splitlines() if line.strip()]
    if not lines:
        raise StatementParseError("Statement file is empty")
    separator = detect_separator(lines[0])
    yield from csv.reader(io.StringIO("\n".join(lines)), delimiter=separator)


def parse_delimited(content: str, account_id: Optional[str] = None) -> list[ImportedTransaction]:
    rows = _iter_delimited_rows(content)
    headers = [normalize_header(h) for h in next(rows)]

    date_idx = _find_column(headers, DATE_COLUMNS)
    amount_idx = _find_column(headers, AMOUNT_COLUMNS)
    description_idx = _find_column(headers, DESCRIPTION_COLUMNS)

    missing = [
        name for name, idx in (
            ("date", date_idx),
            ("amount", amount_idx),
            ("description", description_idx),
        )
        if idx is None
    ]
    if missing:
        raise StatementParseError(
            f"Missing required columns: {', '.join(missing)} (found: {', '.join(headers)})"
        )

    parsed = []
    skipped = 0
    for line_no, row in enumerate(rows, start=2):
        if len(row) <= max(date_idx, amount_idx, description_idx):
            skipped += 1
            continue
        posted = normalize_date(row[date_idx])
        try:
            amount = normalize_amount(row[amount_idx])
        except ValueError:
            amount = None
        if posted is None or amount is None:
            logger.debug("statement_row_skipped", line=line_no)
            skipped += 1
            continue
        parsed.append(_staged(account_id, posted, amount, _clean_text(row[description_idx])))

    if not parsed:
        raise StatementParseError("No transactions could be read from the statement")
    if skipped:
        logger.info("statement_rows_skipped", skipped=skipped, parsed=len(parsed))
    return parsed


# =============================================================================
# OFX-LIKE TAGS
# =============================================================================

def _tag_value(block: str, tag: str) -> Optional[str]:
    match = re.search(rf"<{tag}>([^<\r\n]*)", block, re.IGNORECASE)
    if match is None:
        return None
    value = match.group(1).strip()
    return value or None


def _ofx_date(value: Optional[str]) -> Optional[date]:
    # DTPOSTED is YYYYMMDD optionally followed by time and zone
    if value is None or len(value) < 8 or not value[:8].isdigit():
        return None
    try:
        return datetime.strptime(value[:8], "%Y%m%d").date()
    except ValueError:
        return None


def parse_ofx(content: str, account_id: Optional[str] = None) -> list[ImportedTransaction]:
    blocks = _STMTTRN_RE.findall(content)
    if not blocks:
        raise StatementParseError("No <STMTTRN> blocks found in the statement")

    parsed = []
    for block in blocks:
        posted = _ofx_date(_tag_value(block, "DTPOSTED"))
        try:
            amount = normalize_amount(_tag_value(block, "TRNAMT"))
        except ValueError:
            amount = None
        if posted is None or amount is None:
            logger.debug("statement_block_skipped")
            continue
        description = _tag_value(block, "MEMO") or _tag_value(block, "NAME") or ""
        parsed.append(_staged(account_id, posted, amount, _clean_text(description)))

    if not parsed:
        raise StatementParseError("No transactions could be read from the statement")
    return parsed


# =============================================================================
# ENTRY POINT
# =============================================================================

def detect_format(content: str) -> StatementFormat:
    if re.search(r"<STMTTRN>", content, re.IGNORECASE):
        return StatementFormat.OFX
    return StatementFormat.DELIMITED


def parse_statement(
    content: str,
    format: Optional[StatementFormat] = None,
    account_id: Optional[str] = None,
) -> list[ImportedTransaction]:
    """Parse a statement file's text; the format is detected when not given."""
    statement_format = format or detect_format(content)
    if statement_format == StatementFormat.OFX:
        return parse_ofx(content, account_id)
    if statement_format == StatementFormat.DELIMITED:
        return parse_delimited(content, account_id)
    raise StatementParseError(f"Unsupported statement format: {statement_format}")
