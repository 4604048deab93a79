"""
Statement Import Models

Staging records for bank statements. A staged transaction is PROPOSED
data: it only reaches the ledger after the user reviews and commits
the statement.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ledger_engine.models.ledger import OperationType, new_id, utc_now


class StatementFormat(str, Enum):
    DELIMITED = "delimited"  # CSV / TSV with a header row
    OFX = "ofx"              # <STMTTRN> tag blocks


class StatementStatus(str, Enum):
    PENDING = "pending"
    CONTABILIZED = "contabilized"


class VehicleOperation(str, Enum):
    PURCHASE = "purchase"
    SALE = "sale"


class ImportedTransaction(BaseModel):
    """
    One parsed statement line.

    `amount` keeps the sign from the bank file: negative is money
    leaving the account.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    account_id: Optional[str] = None
    date: date
    amount: Decimal
    original_description: str = ""
    description: str = ""
    operation_type: OperationType
    category_id: Optional[str] = None

    # Duplicate annotation (reviewer decides)
    is_potential_duplicate: bool = False
    duplicate_of_tx_id: Optional[str] = None

    # Linkage chosen during review
    destination_account_id: Optional[str] = None
    temp_loan_id: Optional[str] = None
    temp_investment_id: Optional[str] = None
    temp_vehicle_operation: Optional[VehicleOperation] = None

    ignored: bool = Field(
        default=False,
        description="Reviewer chose not to commit this line"
    )

    @property
    def is_outflow(self) -> bool:
        return self.amount < 0


class ImportedStatement(BaseModel):
    """A statement file waiting for review, or already committed."""

    id: str = Field(default_factory=new_id)
    account_id: str = Field(..., min_length=1)
    file_name: str = Field(default="", max_length=255)
    format: StatementFormat = StatementFormat.DELIMITED
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    imported_at: datetime = Field(default_factory=utc_now)
    status: StatementStatus = StatementStatus.PENDING
    raw_transactions: list[ImportedTransaction] = Field(default_factory=list)


class StandardizationRule(BaseModel):
    """
    Pattern rule applied to imported lines.

    `pattern` is a case-insensitive substring of the bank description.
    `description_template` may contain `{description}`, replaced with
    the original bank text.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    pattern: str = Field(..., min_length=1, max_length=200)
    category_id: Optional[str] = None
    operation_type: OperationType
    description_template: str = Field(default="", max_length=300)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    transaction_id: Optional[str] = Field(
        default=None,
        description="Staged transaction the issue belongs to"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation of a reviewed statement.

    Stage 1: Schema validation (required values per line)
    Stage 2: Semantic validation (linkage and sanity checks)
    """

    statement_id: str
    validated_at: datetime = Field(default_factory=utc_now)

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool
    can_commit: bool = Field(
        ...,
        description="No blocking errors; the statement may be committed"
    )

    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
