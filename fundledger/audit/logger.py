"""
Audit Logger

DESIGN DECISION: Every mutation of the ledger is logged.
This provides:
1. Complete traceability of every fund movement
2. Debugging capability
3. The treasurer can see the history of the books
4. Accountability per tenant

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from fundledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from fundledger.models.results import ValidationIssue
from fundledger.services.storage import AuditStorageInterface


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


def configure_logging(level: str) -> None:
    """Set the minimum level of the package's local logs (LEDGER_LOG_LEVEL)."""
    logging.getLogger("fundledger").setLevel(level)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit store (for persistence and treasurer visibility)
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
        self._logger = structlog.get_logger(__name__)

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_validation_failed(
        self,
        operation: str,
        issues: list[ValidationIssue],
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log rejected input."""
        event = AuditEventBuilder.validation_failed(
            operation=operation,
            issues=[issue.model_dump() for issue in issues],
            user_id=user_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_consistency_warning(
        self,
        message: str,
        user_id: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log data that is suspicious but not fatal, e.g. negative unallocated funds."""
        event = AuditEventBuilder.consistency_warning(
            message=message,
            user_id=user_id,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
        user_id: Optional[str] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
            user_id=user_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new service call.
    Pass it through all subsequent operations.
    """
    return uuid4()
