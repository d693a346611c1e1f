"""Tests for the dashboard and the range reports."""

from datetime import date
from decimal import Decimal

import pytest

from conftest import OTHER_USER, USER
from fundledger.models import (
    CostCreate,
    ExpenseCategoryCreate,
    FundUpdate,
    ManualFundDistributionCreate,
    SponsorCreate,
)


@pytest.fixture
def make_cost(run, service):
    def _make(fund, amount, cost_date=date(2024, 2, 1), category=None, description="Supplies"):
        return run(service.create_cost(
            CostCreate(
                cost_date=cost_date,
                fund_id=fund.id,
                total_amount=Decimal(amount),
                description=description,
                category_id=category.id if category else None,
            ),
            USER,
        )).unwrap()
    return _make


@pytest.fixture
def make_sponsor(run, service):
    def _make(name, phone=""):
        return run(service.create_sponsor(SponsorCreate(name=name, phone=phone), USER)).unwrap()
    return _make


class TestDashboard:
    def test_stats(self, run, service, make_fund, make_source, make_receipt, make_cost, make_sponsor):
        reserve = make_fund("Reserve", "100")
        old = make_fund("Old", "0")
        run(service.update_fund(old.id, FundUpdate(is_active=False), USER)).unwrap()
        make_sponsor("Acme")
        make_receipt("500")
        make_receipt("250.50")
        make_cost(reserve, "60")

        stats = run(service.get_dashboard_stats(USER))

        assert stats.total_receipts == Decimal("750.50")
        assert stats.total_costs == Decimal("60")
        assert stats.net_balance == Decimal("690.50")
        assert stats.active_sponsors == 1
        assert stats.active_funds == 1
        assert stats.unallocated_funds == Decimal("750.50")

    def test_empty_tenant(self, run, service, make_receipt):
        make_receipt("999", user_id=OTHER_USER)
        stats = run(service.get_dashboard_stats(USER))
        assert stats.total_receipts == Decimal("0")
        assert stats.net_balance == Decimal("0")

    def test_recent_activity_newest_first(self, run, service, make_receipt):
        receipts = [make_receipt(str(amount)) for amount in (1, 2, 3)]

        activity = run(service.get_recent_activity(USER, limit=2))

        assert [r.id for r in activity.recent_receipts] == [receipts[2].id, receipts[1].id]
        assert activity.recent_costs == []


class TestFundBalanceReport:
    def test_opening_income_expenses(self, run, service, make_fund, make_source, make_receipt, make_cost):
        reserve = make_fund("Reserve", "1000")
        dues = make_source("Dues", rules=[(reserve, "40")])
        make_receipt("500", source=dues, receipt_date=date(2024, 1, 10))
        run(service.distribute_unallocated_funds(USER)).unwrap()
        make_cost(reserve, "50", cost_date=date(2024, 2, 5))
        run(service.create_manual_fund_distribution(
            ManualFundDistributionCreate(
                fund_id=reserve.id, amount=Decimal("25"), distribution_date=date(2024, 2, 10),
            ),
            USER,
        )).unwrap()

        result = run(service.get_fund_balance_report(USER, date(2024, 2, 1), date(2024, 2, 28)))

        assert result.success
        [row] = result.value
        assert row.fund_name == "Reserve"
        assert row.opening_balance == Decimal("1200.00")
        assert row.income == Decimal("25")
        assert row.expenses == Decimal("50")
        assert row.closing_balance == Decimal("1175.00")

    def test_without_range_closing_matches_balance(self, run, service, make_fund, make_cost):
        reserve = make_fund("Reserve", "80")
        make_cost(reserve, "30")

        [row] = run(service.get_fund_balance_report(USER)).value

        assert row.opening_balance == Decimal("80")
        assert row.closing_balance == run(service.get_fund_balance(reserve.id, USER)).value

    def test_movements_after_range_are_ignored(self, run, service, make_fund, make_cost):
        reserve = make_fund("Reserve", "80")
        make_cost(reserve, "30", cost_date=date(2024, 3, 1))

        [row] = run(service.get_fund_balance_report(USER, date(2024, 1, 1), date(2024, 1, 31))).value

        assert row.expenses == Decimal("0")
        assert row.closing_balance == Decimal("80")

    def test_inverted_range_rejected(self, run, service):
        result = run(service.get_fund_balance_report(USER, date(2024, 3, 1), date(2024, 1, 1)))
        assert result.success is False
        assert result.error.error_type == "validation_error"
        assert result.error.issues[0].field == "date_to"


class TestExpenseReport:
    def test_grouped_by_category(self, run, service, make_fund, make_cost):
        reserve = make_fund("Reserve", "1000")
        utilities = run(service.create_expense_category(ExpenseCategoryCreate(name="Utilities"), USER)).unwrap()
        make_cost(reserve, "60", category=utilities, description="Electricity")
        make_cost(reserve, "40", category=utilities, description="Water")
        make_cost(reserve, "50", description="Misc")

        [first, second] = run(service.get_expense_report(USER)).value

        assert first.category_name == "Utilities"
        assert first.category_id == utilities.id
        assert first.total == Decimal("100")
        assert first.share_of_total == Decimal("66.67")
        assert sorted(line.share_of_category for line in first.expenses) == [Decimal("40.00"), Decimal("60.00")]
        assert second.category_name == "Uncategorized"
        assert second.category_id is None
        assert second.share_of_total == Decimal("33.33")

    def test_date_range(self, run, service, make_fund, make_cost):
        reserve = make_fund("Reserve", "1000")
        make_cost(reserve, "10", cost_date=date(2024, 1, 5))
        make_cost(reserve, "20", cost_date=date(2024, 2, 5))

        report = run(service.get_expense_report(USER, date_from=date(2024, 2, 1))).value

        assert [r.total for r in report] == [Decimal("20")]

    def test_no_costs(self, run, service):
        assert run(service.get_expense_report(USER)).value == []


class TestSponsorReport:
    def test_largest_donor_first(self, run, service, make_receipt, make_sponsor):
        acme = make_sponsor("Acme", phone="555-0100")
        beta = make_sponsor("Beta")
        make_sponsor("Silent")
        make_receipt("100", sponsor=acme)
        make_receipt("50", sponsor=acme)
        make_receipt("500", sponsor=beta)

        rows = run(service.get_sponsor_report(USER)).value

        assert [(r.sponsor_name, r.total_amount, r.donations_count) for r in rows] == [
            ("Beta", Decimal("500"), 1),
            ("Acme", Decimal("150"), 2),
        ]
        assert rows[1].phone == "555-0100"

    def test_range_excludes_older_receipts(self, run, service, make_receipt, make_sponsor):
        acme = make_sponsor("Acme")
        make_receipt("100", sponsor=acme, receipt_date=date(2023, 12, 31))

        assert run(service.get_sponsor_report(USER, date_from=date(2024, 1, 1))).value == []
