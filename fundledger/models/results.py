"""
Validation and operation result models.

DESIGN DECISION: Domain failures are values, not crashes.
The service facade turns every validation, not-found and insufficient-funds
failure into an OperationResult with a typed ErrorDetail, so a presentation
layer can render a precise message without parsing exception text.
"""

from datetime import datetime
from typing import Any, Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field

from fundledger.models.ledger import utcnow

T = TypeVar("T")


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'out_of_range', 'duplicate')"
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
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """Outcome of validating one piece of input."""

    validated_at: datetime = Field(default_factory=utcnow)
    subject: str = Field(
        ...,
        description="What was validated (e.g., 'fund_transfer')"
    )
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]


class ErrorDetail(BaseModel):
    """Typed failure returned to the caller."""

    error_type: str = Field(
        ...,
        pattern="^(validation_error|insufficient_funds|not_found|internal_error)$",
    )
    message: str
    issues: list[ValidationIssue] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)


class OperationResult(BaseModel, Generic[T]):
    """
    Result of one service operation.

    On success `value` holds the operation's return value. On failure
    `error` says what went wrong; `value` is None.
    `warnings` carries non-fatal consistency warnings in both cases.
    """

    success: bool
    value: Optional[T] = None
    error: Optional[ErrorDetail] = None
    warnings: list[str] = Field(default_factory=list)
    correlation_id: Optional[UUID] = None

    @classmethod
    def ok(
        cls,
        value: Any = None,
        warnings: Optional[list[str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> "OperationResult":
        return cls(
            success=True,
            value=value,
            warnings=warnings or [],
            correlation_id=correlation_id,
        )

    @classmethod
    def fail(
        cls,
        error: ErrorDetail,
        warnings: Optional[list[str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> "OperationResult":
        return cls(
            success=False,
            error=error,
            warnings=warnings or [],
            correlation_id=correlation_id,
        )

    def unwrap(self) -> T:
        """Return the value, or raise RuntimeError describing the failure."""
        if not self.success:
            message = self.error.message if self.error else "operation failed"
            raise RuntimeError(message)
        return self.value
