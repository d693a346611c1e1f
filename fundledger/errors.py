"""
Domain exceptions.

Raised by the engines, caught at the service boundary and turned into
typed OperationResult failures. None of them is a server fault.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from fundledger.models.results import ValidationIssue, ValidationResult


class LedgerError(Exception):
    """Base exception for domain failures."""
    pass


class ValidationError(LedgerError):
    """Malformed input: bad percentage, same-fund transfer, missing field."""

    def __init__(self, result: ValidationResult, message: Optional[str] = None):
        self.result = result
        super().__init__(
            message
            or "; ".join(i.message for i in result.issues if i.severity == "error")
            or "Validation failed"
        )

    @property
    def issues(self) -> list[ValidationIssue]:
        return self.result.issues

    @classmethod
    def single(
        cls,
        subject: str,
        field: str,
        issue_type: str,
        message: str,
        suggested_fix: Optional[str] = None,
    ) -> "ValidationError":
        return cls(ValidationResult(
            subject=subject,
            issues=[ValidationIssue(
                field=field,
                issue_type=issue_type,
                message=message,
                severity="error",
                suggested_fix=suggested_fix,
            )],
        ))


class InsufficientFundsError(LedgerError):
    """A cost would take a fund's computed balance below zero."""

    def __init__(
        self,
        fund_id: UUID,
        fund_name: str,
        available: Decimal,
        requested: Decimal,
    ):
        self.fund_id = fund_id
        self.fund_name = fund_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient funds in '{fund_name}': "
            f"available {available}, requested {requested}"
        )


class NotFoundError(LedgerError):
    """
    The record does not exist for this user.

    Raised the same way whether the id is unknown or owned by another
    tenant, so error messages never reveal foreign rows.
    """

    def __init__(self, entity: str, entity_id: UUID):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.replace('_', ' ').capitalize()} not found: {entity_id}")
