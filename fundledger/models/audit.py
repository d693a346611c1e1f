"""
Audit Models for Fund Ledger

Every mutation of the ledger is logged for audit purposes.
This provides:
1. Complete traceability of all operations
2. Debugging information when things go wrong
3. Accountability for every fund movement
4. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from fundledger.models.ledger import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Plain record maintenance (funds, income sources, sponsors, ...)
    RECORD_CREATED = "record_created"
    RECORD_UPDATED = "record_updated"
    RECORD_DELETED = "record_deleted"

    # Percentage rules
    RULE_CREATED = "rule_created"
    RULES_REPLACED = "rules_replaced"

    # Distribution
    RECEIPT_DISTRIBUTED = "receipt_distributed"
    BATCH_DISTRIBUTED = "batch_distributed"
    BATCH_SKIPPED = "batch_skipped"
    DISTRIBUTION_HISTORY_DELETED = "distribution_history_deleted"

    # Money movement
    TRANSFER_CREATED = "transfer_created"
    COST_CREATED = "cost_created"
    COST_UPDATED = "cost_updated"
    COST_REJECTED = "cost_rejected"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    CONSISTENCY_WARNING = "consistency_warning"
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
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
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

    # Tenant
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the records the event touched"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'fund', 'cost', 'distribution_history')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one service call)"
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

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.record_created("fund", fund.id, user_id, correlation_id)
        event = AuditEventBuilder.cost_rejected(fund_id, available, requested, ...)
    """

    @staticmethod
    def record_created(
        entity_type: str,
        entity_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_CREATED,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.replace('_', ' ').capitalize()} created",
        )

    @staticmethod
    def record_updated(
        entity_type: str,
        entity_id: UUID,
        user_id: str,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_UPDATED,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.replace('_', ' ').capitalize()} updated",
            details={"changed_fields": changed_fields},
        )

    @staticmethod
    def record_deleted(
        entity_type: str,
        entity_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
        cascaded: Optional[dict[str, int]] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_DELETED,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.replace('_', ' ').capitalize()} deleted",
            details={"cascaded": cascaded or {}},
        )

    @staticmethod
    def rule_created(
        rule_id: UUID,
        income_source_id: UUID,
        fund_id: UUID,
        percentage: Decimal,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_CREATED,
            user_id=user_id,
            entity_type="income_source_fund_distribution",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Distribution rule created: {percentage}% to fund",
            details={
                "income_source_id": str(income_source_id),
                "fund_id": str(fund_id),
                "percentage": str(percentage),
            },
        )

    @staticmethod
    def rules_replaced(
        income_source_id: UUID,
        rule_count: int,
        total_percentage: Decimal,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULES_REPLACED,
            user_id=user_id,
            entity_type="income_source",
            entity_id=income_source_id,
            correlation_id=correlation_id,
            description=f"Distribution rules replaced: {rule_count} rules, {total_percentage}% total",
            details={
                "rule_count": rule_count,
                "total_percentage": str(total_percentage),
            },
        )

    @staticmethod
    def receipt_distributed(
        receipt_id: UUID,
        amount_distributed: Decimal,
        fund_count: int,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_DISTRIBUTED,
            user_id=user_id,
            entity_type="receipt",
            entity_id=receipt_id,
            correlation_id=correlation_id,
            description=f"Receipt distributed to {fund_count} funds",
            details={
                "amount_distributed": str(amount_distributed),
                "fund_count": fund_count,
            },
        )

    @staticmethod
    def batch_distributed(
        history_id: UUID,
        total_amount: Decimal,
        receipt_count: int,
        fund_count: int,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_DISTRIBUTED,
            user_id=user_id,
            entity_type="distribution_history",
            entity_id=history_id,
            correlation_id=correlation_id,
            description=(
                f"Distributed {total_amount} from {receipt_count} receipts "
                f"to {fund_count} funds"
            ),
            details={
                "total_amount": str(total_amount),
                "receipt_count": receipt_count,
                "fund_count": fund_count,
            },
        )

    @staticmethod
    def batch_skipped(
        reason: str,
        unallocated: Decimal,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_SKIPPED,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Distribution batch skipped: {reason}",
            details={"unallocated": str(unallocated)},
        )

    @staticmethod
    def history_deleted(
        history_id: UUID,
        removed_distributions: int,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DISTRIBUTION_HISTORY_DELETED,
            user_id=user_id,
            entity_type="distribution_history",
            entity_id=history_id,
            correlation_id=correlation_id,
            description=(
                f"Distribution batch reversed, {removed_distributions} "
                "fund distributions removed"
            ),
            details={"removed_distributions": removed_distributions},
        )

    @staticmethod
    def transfer_created(
        transfer_id: UUID,
        from_fund_id: UUID,
        to_fund_id: UUID,
        amount: Decimal,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_CREATED,
            user_id=user_id,
            entity_type="fund_transfer",
            entity_id=transfer_id,
            correlation_id=correlation_id,
            description=f"Transferred {amount} between funds",
            details={
                "from_fund_id": str(from_fund_id),
                "to_fund_id": str(to_fund_id),
                "amount": str(amount),
            },
        )

    @staticmethod
    def cost_saved(
        cost_id: UUID,
        fund_id: UUID,
        amount: Decimal,
        balance_after: Decimal,
        user_id: str,
        is_update: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.COST_UPDATED if is_update else AuditEventType.COST_CREATED
            ),
            user_id=user_id,
            entity_type="cost",
            entity_id=cost_id,
            correlation_id=correlation_id,
            description=f"Cost of {amount} {'updated' if is_update else 'recorded'}",
            details={
                "fund_id": str(fund_id),
                "amount": str(amount),
                "balance_after": str(balance_after),
            },
        )

    @staticmethod
    def cost_rejected(
        fund_id: UUID,
        fund_name: str,
        available: Decimal,
        requested: Decimal,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COST_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="fund",
            entity_id=fund_id,
            correlation_id=correlation_id,
            description=f"Cost rejected: insufficient balance in {fund_name}",
            details={
                "available": str(available),
                "requested": str(requested),
            },
        )

    @staticmethod
    def validation_failed(
        operation: str,
        issues: list[dict],
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected with {len(issues)} issues",
            details={
                "operation": operation,
                "issues": issues,
            },
        )

    @staticmethod
    def consistency_warning(
        message: str,
        user_id: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONSISTENCY_WARNING,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description=message,
            details=details or {},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
        user_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
