"""
Ledger Input Validation

DESIGN DECISION: Validation happens in two layers:

SHAPE VALIDATION (pydantic models):
- Type checking
- Required field presence
- String lengths

BUSINESS VALIDATION (this module):
- Positive amounts with at most two decimal places
- Percentage bounds and rule-set totals
- Same-fund transfers
- Date range consistency

The validator is pure: it never reads storage. Callers pass in whatever
existing state a check needs (e.g. the income source's current rules).

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; the engines raise ValidationError when any issue is an
error, and warnings travel back to the caller in OperationResult.warnings.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from fundledger.errors import ValidationError
from fundledger.models.ledger import (
    FundDistributionRule,
    FundTransferCreate,
    IncomeSourceFundDistribution,
)
from fundledger.models.results import ValidationIssue, ValidationResult
from fundledger.money import HUNDRED, ZERO, decimal_places, sum_amounts


class LedgerValidator:
    """Business-rule checks for ledger input."""

    # -------------------------------------------------------------------------
    # Building blocks
    # -------------------------------------------------------------------------

    def _check_amount(self, field: str, amount: Decimal) -> list[ValidationIssue]:
        issues = []
        if amount <= ZERO:
            issues.append(ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
                suggested_fix="Enter a positive amount",
            ))
        elif decimal_places(amount) > 2:
            issues.append(ValidationIssue(
                field=field,
                issue_type="invalid_precision",
                message=f"Amount {amount} has more than two decimal places",
                severity="error",
                suggested_fix="Round the amount to cents",
            ))
        return issues

    def _check_percentage(self, field: str, percentage: Decimal) -> list[ValidationIssue]:
        issues = []
        if percentage <= ZERO or percentage > HUNDRED:
            issues.append(ValidationIssue(
                field=field,
                issue_type="out_of_range",
                message=f"Percentage must be greater than 0 and at most 100, got {percentage}",
                severity="error",
                suggested_fix="Use a percentage between 0.01 and 100",
            ))
        elif decimal_places(percentage) > 2:
            issues.append(ValidationIssue(
                field=field,
                issue_type="invalid_precision",
                message=f"Percentage {percentage} has more than two decimal places",
                severity="error",
            ))
        return issues

    def _check_not_future(self, field: str, value: date) -> list[ValidationIssue]:
        if value > date.today():
            return [ValidationIssue(
                field=field,
                issue_type="future_date",
                message=f"Date ({value}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            )]
        return []

    # -------------------------------------------------------------------------
    # Money movements
    # -------------------------------------------------------------------------

    def validate_receipt(self, amount: Decimal, receipt_date: Optional[date] = None) -> ValidationResult:
        issues = self._check_amount("amount", amount)
        if receipt_date:
            issues.extend(self._check_not_future("receipt_date", receipt_date))
        return ValidationResult(subject="receipt", issues=issues)

    def validate_receipt_item(self, amount: Decimal) -> ValidationResult:
        return ValidationResult(subject="receipt_item", issues=self._check_amount("amount", amount))

    def validate_cost(self, total_amount: Decimal, cost_date: Optional[date] = None) -> ValidationResult:
        issues = self._check_amount("total_amount", total_amount)
        if cost_date:
            issues.extend(self._check_not_future("cost_date", cost_date))
        return ValidationResult(subject="cost", issues=issues)

    def validate_manual_distribution(
        self,
        amount: Decimal,
        percentage: Optional[Decimal] = None,
    ) -> ValidationResult:
        issues = self._check_amount("amount", amount)
        if percentage is not None:
            issues.extend(self._check_percentage("percentage", percentage))
        return ValidationResult(subject="manual_fund_distribution", issues=issues)

    def validate_transfer(self, transfer: FundTransferCreate) -> ValidationResult:
        """
        Check a transfer request.

        Balances are deliberately not checked here: transfers may take a
        fund negative. Only costs are guarded.
        """
        issues = self._check_amount("amount", transfer.amount)
        if transfer.from_fund_id == transfer.to_fund_id:
            issues.append(ValidationIssue(
                field="to_fund_id",
                issue_type="same_fund",
                message="Cannot transfer money from a fund to itself",
                severity="error",
                suggested_fix="Choose two different funds",
            ))
        return ValidationResult(subject="fund_transfer", issues=issues)

    # -------------------------------------------------------------------------
    # Percentage rules
    # -------------------------------------------------------------------------

    def validate_rule(
        self,
        fund_id: UUID,
        percentage: Decimal,
        existing_rules: Iterable[IncomeSourceFundDistribution],
    ) -> ValidationResult:
        """
        Check one new rule against the income source's current rules.

        Rejects an out-of-range percentage, a second rule for the same
        fund, and a rule that would push the source's total above 100.
        """
        existing_rules = list(existing_rules)
        issues = self._check_percentage("percentage", percentage)

        if any(rule.fund_id == fund_id for rule in existing_rules):
            issues.append(ValidationIssue(
                field="fund_id",
                issue_type="duplicate",
                message="This fund already has a distribution rule for the income source",
                severity="error",
                suggested_fix="Edit the existing rule instead",
            ))

        if not issues:
            current_total = sum_amounts(rule.percentage for rule in existing_rules)
            if current_total + percentage > HUNDRED:
                issues.append(ValidationIssue(
                    field="percentage",
                    issue_type="total_exceeded",
                    message=(
                        f"Total percentage would be {current_total + percentage}%, "
                        f"only {HUNDRED - current_total}% is left"
                    ),
                    severity="error",
                    suggested_fix=f"Use at most {HUNDRED - current_total}%",
                ))

        return ValidationResult(subject="income_source_fund_distribution", issues=issues)

    def validate_rule_set(self, rules: list[FundDistributionRule]) -> ValidationResult:
        """Check a complete rule set that will replace an income source's rules."""
        issues = []
        seen: set[UUID] = set()

        for index, rule in enumerate(rules):
            issues.extend(self._check_percentage(f"rules[{index}].percentage", rule.percentage))
            if rule.fund_id in seen:
                issues.append(ValidationIssue(
                    field=f"rules[{index}].fund_id",
                    issue_type="duplicate",
                    message="A fund can appear only once per income source",
                    severity="error",
                    suggested_fix="Merge the duplicate rows into one",
                ))
            seen.add(rule.fund_id)

        total = sum_amounts(rule.percentage for rule in rules)
        if total > HUNDRED:
            issues.append(ValidationIssue(
                field="rules",
                issue_type="total_exceeded",
                message=f"Percentages add up to {total}%, which is more than 100%",
                severity="error",
                suggested_fix="Lower some percentages",
            ))
        elif rules and total < HUNDRED:
            issues.append(ValidationIssue(
                field="rules",
                issue_type="partial_allocation",
                message=f"Only {total}% of each receipt will be distributed",
                severity="info",
            ))

        return ValidationResult(subject="income_source_fund_distributions", issues=issues)

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    def validate_date_range(
        self,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> ValidationResult:
        issues = []
        if date_from and date_to and date_to < date_from:
            issues.append(ValidationIssue(
                field="date_to",
                issue_type="inconsistent",
                message="End date is before start date",
                severity="error",
                suggested_fix="Swap the two dates",
            ))
        return ValidationResult(subject="report_period", issues=issues)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def ensure_valid(result: ValidationResult) -> ValidationResult:
        """Raise ValidationError if the result has any error-level issue."""
        if result.has_errors:
            raise ValidationError(result)
        return result

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to the treasurer.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed."

        lines = []

        if result.has_errors:
            lines.append("❌ Please fix the following:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
