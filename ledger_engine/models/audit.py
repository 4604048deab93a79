"""
Audit Models for the Ledger Engine

Every state-changing command is logged for audit purposes.
This provides:
1. Complete traceability of payments and imports
2. Debugging information when a command is rejected
3. Ability to reconstruct how the ledger got to its current state

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ledger_engine.models.ledger import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each caller-facing command has its own success/failure events.
    """
    # Bills
    BILL_PAID = "bill_paid"
    BILL_UNPAID = "bill_unpaid"
    PAYMENT_REJECTED = "payment_rejected"
    BILL_UPDATED = "bill_updated"
    BILL_CREATED = "bill_created"
    BILL_DELETED = "bill_deleted"

    # Statement import
    STATEMENT_IMPORTED = "statement_imported"
    STATEMENT_IMPORT_FAILED = "statement_import_failed"
    DUPLICATES_FLAGGED = "duplicates_flagged"
    STATEMENT_VALIDATION_FAILED = "statement_validation_failed"
    STATEMENT_COMMITTED = "statement_committed"
    STATEMENT_DISCARDED = "statement_discarded"
    RULE_CREATED = "rule_created"

    # Calculations
    RATE_SOLVE_FAILED = "rate_solve_failed"

    # Persistence
    STATE_SAVED = "state_saved"
    SAVE_FAILED = "save_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every command outcome creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'bill', 'statement', 'loan')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., import then commit)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.bill_paid(bill_id, transaction_id, amount, correlation_id)
        event = AuditEventBuilder.statement_committed(statement_id, count, correlation_id)
    """

    @staticmethod
    def bill_paid(
        bill_id: str,
        transaction_id: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_PAID,
            entity_type="bill",
            entity_id=bill_id,
            correlation_id=correlation_id,
            description=f"Bill paid: R$ {amount}",
            details={
                "transaction_id": transaction_id,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def bill_unpaid(
        bill_id: str,
        transaction_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_UNPAID,
            entity_type="bill",
            entity_id=bill_id,
            correlation_id=correlation_id,
            description="Bill payment reversed",
            details={
                "removed_transaction_id": transaction_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def command_rejected(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Optional[str],
        error_code: str,
        message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Command rejected: {error_code}",
            error_code=error_code,
            error_message=message,
        )

    @staticmethod
    def bill_changed(
        event_type: AuditEventType,
        bill_id: str,
        changes: dict,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="bill",
            entity_id=bill_id,
            correlation_id=correlation_id,
            description=f"Bill {event_type.value.replace('bill_', '')}",
            details=changes,
            is_user_action=True,
        )

    @staticmethod
    def statement_imported(
        statement_id: str,
        file_name: str,
        transaction_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_IMPORTED,
            entity_type="statement",
            entity_id=statement_id,
            correlation_id=correlation_id,
            description=f"Statement imported: {file_name} ({transaction_count} lines)",
            details={
                "file_name": file_name,
                "transaction_count": transaction_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def duplicates_flagged(
        statement_id: str,
        duplicate_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATES_FLAGGED,
            severity=AuditSeverity.WARNING if duplicate_count else AuditSeverity.INFO,
            entity_type="statement",
            entity_id=statement_id,
            correlation_id=correlation_id,
            description=f"{duplicate_count} potential duplicates flagged",
            details={
                "duplicate_count": duplicate_count,
            },
        )

    @staticmethod
    def statement_validation_failed(
        statement_id: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="statement",
            entity_id=statement_id,
            correlation_id=correlation_id,
            description=f"Statement validation failed with {len(issues)} issues",
            details={
                "issues": issues,
            },
        )

    @staticmethod
    def statement_committed(
        statement_id: str,
        transaction_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_COMMITTED,
            entity_type="statement",
            entity_id=statement_id,
            correlation_id=correlation_id,
            description=f"Statement committed: {transaction_count} transactions added",
            details={
                "transaction_count": transaction_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def statement_discarded(
        statement_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_DISCARDED,
            entity_type="statement",
            entity_id=statement_id,
            correlation_id=correlation_id,
            description="Statement discarded without committing",
            is_user_action=True,
        )

    @staticmethod
    def rule_created(
        rule_id: str,
        pattern: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_CREATED,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Standardization rule created for '{pattern}'",
            details={"pattern": pattern},
            is_user_action=True,
        )

    @staticmethod
    def rate_solve_failed(
        principal: str,
        payment: str,
        periods: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATE_SOLVE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="loan",
            description="Monthly rate could not be solved",
            details={
                "principal": principal,
                "payment": payment,
                "periods": periods,
            },
        )

    @staticmethod
    def state_saved(
        keys: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATE_SAVED,
            severity=AuditSeverity.DEBUG,
            entity_type="ledger",
            correlation_id=correlation_id,
            description=f"Ledger state saved ({len(keys)} keys)",
            details={"keys": keys},
        )

    @staticmethod
    def save_failed(
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="ledger",
            correlation_id=correlation_id,
            description="Ledger state could not be saved",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
