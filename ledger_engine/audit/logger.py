"""
Audit Logger

DESIGN DECISION: Every state-changing command is logged.
This provides:
1. Complete traceability
2. Debugging capability
3. User can see the history of payments and imports

The audit logger:
- Is synchronous, like the rest of the engine
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger_engine.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from ledger_engine.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit storage backend (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("ledger_engine.audit")

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return self._storage.append_event(event)
            except Exception as e:
                # Audit persistence must never break the command itself
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def log_bill_paid(
        self,
        bill_id: str,
        transaction_id: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        """Log a confirmed bill payment."""
        self.log(AuditEventBuilder.bill_paid(
            bill_id=bill_id,
            transaction_id=transaction_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    def log_bill_unpaid(
        self,
        bill_id: str,
        transaction_id: Optional[str],
        correlation_id: UUID,
    ) -> None:
        """Log a reversed bill payment."""
        self.log(AuditEventBuilder.bill_unpaid(
            bill_id=bill_id,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))

    def log_bill_changed(
        self,
        event_type: AuditEventType,
        bill_id: str,
        changes: dict,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.bill_changed(
            event_type=event_type,
            bill_id=bill_id,
            changes=changes,
            correlation_id=correlation_id,
        ))

    def log_command_rejected(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Optional[str],
        error_code: str,
        message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a command that was refused before touching state."""
        self.log(AuditEventBuilder.command_rejected(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            error_code=error_code,
            message=message,
            correlation_id=correlation_id,
        ))

    def log_statement_imported(
        self,
        statement_id: str,
        file_name: str,
        transaction_count: int,
        duplicate_count: int,
        correlation_id: UUID,
    ) -> None:
        """Log a parsed statement and its duplicate scan."""
        self.log(AuditEventBuilder.statement_imported(
            statement_id=statement_id,
            file_name=file_name,
            transaction_count=transaction_count,
            correlation_id=correlation_id,
        ))
        self.log(AuditEventBuilder.duplicates_flagged(
            statement_id=statement_id,
            duplicate_count=duplicate_count,
            correlation_id=correlation_id,
        ))

    def log_statement_validation_failed(
        self,
        statement_id: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.statement_validation_failed(
            statement_id=statement_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    def log_statement_committed(
        self,
        statement_id: str,
        transaction_count: int,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.statement_committed(
            statement_id=statement_id,
            transaction_count=transaction_count,
            correlation_id=correlation_id,
        ))

    def log_statement_discarded(
        self,
        statement_id: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.statement_discarded(
            statement_id=statement_id,
            correlation_id=correlation_id,
        ))

    def log_rule_created(
        self,
        rule_id: str,
        pattern: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.rule_created(
            rule_id=rule_id,
            pattern=pattern,
            correlation_id=correlation_id,
        ))

    def log_rate_solve_failed(
        self,
        principal: str,
        payment: str,
        periods: int,
    ) -> None:
        self.log(AuditEventBuilder.rate_solve_failed(
            principal=principal,
            payment=payment,
            periods=periods,
        ))

    def log_state_saved(
        self,
        keys: list[str],
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.state_saved(
            keys=keys,
            correlation_id=correlation_id,
        ))

    def log_save_failed(
        self,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.save_failed(
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a statement import).
    Pass it through all subsequent operations.
    """
    return uuid4()
