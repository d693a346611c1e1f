"""Tests for the LedgerValidator business rules."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import USER
from fundledger.errors import ValidationError
from fundledger.models import (
    FundDistributionRule,
    FundTransferCreate,
    IncomeSourceFundDistribution,
)
from fundledger.validation import LedgerValidator


@pytest.fixture
def validator():
    return LedgerValidator()


def _existing(*percentages):
    source_id = uuid4()
    return [
        IncomeSourceFundDistribution(
            user_id=USER, income_source_id=source_id, fund_id=uuid4(), percentage=Decimal(p),
        )
        for p in percentages
    ]


class TestAmounts:
    @pytest.mark.parametrize("amount,issue_type", [
        ("0", "invalid_value"),
        ("-0.01", "invalid_value"),
        ("10.001", "invalid_precision"),
    ])
    def test_rejected(self, validator, amount, issue_type):
        result = validator.validate_receipt(Decimal(amount))
        assert result.has_errors
        assert [i.issue_type for i in result.issues] == [issue_type]

    @pytest.mark.parametrize("amount", ["0.01", "10", "10.50", "10.500"])
    def test_accepted(self, validator, amount):
        assert validator.validate_cost(Decimal(amount)).is_valid

    def test_future_date_is_only_a_warning(self, validator):
        result = validator.validate_cost(Decimal("5"), date.today() + timedelta(days=3))
        assert result.is_valid
        assert len(result.warnings) == 1
        assert result.issues[0].field == "cost_date"

    def test_manual_distribution_percentage_is_optional(self, validator):
        assert validator.validate_manual_distribution(Decimal("5")).is_valid
        result = validator.validate_manual_distribution(Decimal("5"), Decimal("150"))
        assert result.issues[0].issue_type == "out_of_range"


class TestTransfer:
    def test_same_fund(self, validator):
        fund_id = uuid4()
        result = validator.validate_transfer(
            FundTransferCreate(from_fund_id=fund_id, to_fund_id=fund_id, amount=Decimal("5"))
        )
        assert [i.issue_type for i in result.issues] == ["same_fund"]

    def test_all_issues_reported_together(self, validator):
        fund_id = uuid4()
        result = validator.validate_transfer(
            FundTransferCreate(from_fund_id=fund_id, to_fund_id=fund_id, amount=Decimal("0"))
        )
        assert result.error_count == 2


class TestRule:
    @pytest.mark.parametrize("percentage,issue_type", [
        ("0", "out_of_range"),
        ("100.01", "out_of_range"),
        ("33.333", "invalid_precision"),
    ])
    def test_percentage_bounds(self, validator, percentage, issue_type):
        result = validator.validate_rule(uuid4(), Decimal(percentage), [])
        assert [i.issue_type for i in result.issues] == [issue_type]

    def test_remaining_share_fits(self, validator):
        assert validator.validate_rule(uuid4(), Decimal("40"), _existing("25", "35")).is_valid

    def test_total_exceeded_suggests_remainder(self, validator):
        result = validator.validate_rule(uuid4(), Decimal("40.01"), _existing("25", "35"))
        [issue] = result.issues
        assert issue.issue_type == "total_exceeded"
        assert issue.suggested_fix == "Use at most 40%"

    def test_duplicate_fund(self, validator):
        existing = _existing("10")
        result = validator.validate_rule(existing[0].fund_id, Decimal("5"), existing)
        assert [i.issue_type for i in result.issues] == ["duplicate"]


class TestRuleSet:
    def test_partial_allocation_is_informational(self, validator):
        result = validator.validate_rule_set([
            FundDistributionRule(fund_id=uuid4(), percentage=Decimal("30")),
            FundDistributionRule(fund_id=uuid4(), percentage=Decimal("30")),
        ])
        assert result.is_valid
        assert result.warnings == []
        assert result.issues[0].issue_type == "partial_allocation"

    def test_empty_set_is_valid(self, validator):
        result = validator.validate_rule_set([])
        assert result.is_valid
        assert result.issues == []

    def test_fields_point_at_the_bad_row(self, validator):
        fund_id = uuid4()
        result = validator.validate_rule_set([
            FundDistributionRule(fund_id=fund_id, percentage=Decimal("50")),
            FundDistributionRule(fund_id=fund_id, percentage=Decimal("0")),
        ])
        errors = {i.field for i in result.issues if i.severity == "error"}
        assert errors == {"rules[1].percentage", "rules[1].fund_id"}

    def test_over_100(self, validator):
        result = validator.validate_rule_set([
            FundDistributionRule(fund_id=uuid4(), percentage=Decimal("70")),
            FundDistributionRule(fund_id=uuid4(), percentage=Decimal("30.01")),
        ])
        assert [i.issue_type for i in result.issues] == ["total_exceeded"]


class TestHelpers:
    def test_ensure_valid_raises_with_issues(self, validator):
        result = validator.validate_date_range(date(2024, 2, 1), date(2024, 1, 1))
        with pytest.raises(ValidationError, match="End date is before start date") as exc:
            LedgerValidator.ensure_valid(result)
        assert exc.value.issues[0].issue_type == "inconsistent"

    def test_open_ranges_are_valid(self, validator):
        assert validator.validate_date_range(None, date(2024, 1, 1)).is_valid
        assert validator.validate_date_range(date(2024, 1, 1), date(2024, 1, 1)).is_valid

    def test_summary_all_clear(self, validator):
        summary = validator.get_user_friendly_summary(validator.validate_receipt(Decimal("5")))
        assert summary == "✅ All checks passed."

    def test_summary_lists_errors_with_fixes(self, validator):
        summary = validator.get_user_friendly_summary(validator.validate_receipt(Decimal("0")))
        assert "❌ Please fix the following:" in summary
        assert "Amount must be greater than zero" in summary
        assert "💡 Enter a positive amount" in summary

    def test_summary_lists_warnings(self, validator):
        result = validator.validate_receipt(Decimal("5"), date.today() + timedelta(days=1))
        summary = validator.get_user_friendly_summary(result)
        assert summary.startswith("⚠️ Please verify the following:")
