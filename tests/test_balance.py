"""Tests for the balance fold and the BalanceCalculator."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import OTHER_USER, USER
from fundledger.engine import BalanceCalculator, compute_fund_balance
from fundledger.errors import NotFoundError
from fundledger.models import (
    Cost,
    Fund,
    FundDistribution,
    FundTransfer,
    ManualFundDistribution,
    Receipt,
)


def _fund(initial="0"):
    return Fund(user_id=USER, name="Reserve", initial_balance=Decimal(initial))


class TestComputeFundBalance:
    """The balance is a pure fold over the fund's transactions."""

    @pytest.mark.parametrize("initial,dist,manual,t_in,t_out,costs,expected", [
        ("0", [], [], [], [], [], "0"),
        ("1000", ["200"], [], [], [], [], "1200"),
        ("0", ["10", "20.50"], ["5"], [], [], ["15.25"], "20.25"),
        ("100", [], [], ["30"], ["50"], [], "80"),
        ("0", [], [], [], ["40"], [], "-40"),
        ("50", ["25"], ["25"], ["10"], ["10"], ["100"], "0"),
    ])
    def test_fold(self, initial, dist, manual, t_in, t_out, costs, expected):
        fund = _fund(initial)
        other = uuid4()
        distributions = [
            FundDistribution(user_id=USER, receipt_id=uuid4(), fund_id=fund.id,
                             amount=Decimal(a), percentage=Decimal("10"))
            for a in dist
        ]
        manual_rows = [
            ManualFundDistribution(user_id=USER, fund_id=fund.id, amount=Decimal(a),
                                   distribution_date=date(2024, 1, 1))
            for a in manual
        ]
        transfers = [
            FundTransfer(user_id=USER, from_fund_id=other, to_fund_id=fund.id, amount=Decimal(a))
            for a in t_in
        ] + [
            FundTransfer(user_id=USER, from_fund_id=fund.id, to_fund_id=other, amount=Decimal(a))
            for a in t_out
        ]
        cost_rows = [
            Cost(user_id=USER, cost_date=date(2024, 1, 1), fund_id=fund.id,
                 total_amount=Decimal(a), description="Repair")
            for a in costs
        ]

        balance = compute_fund_balance(fund, distributions, manual_rows, transfers, cost_rows)
        assert balance == Decimal(expected)

    def test_rows_of_other_funds_are_ignored(self):
        """Test that the fold only counts rows touching the fund."""
        fund = _fund("10")
        stranger = uuid4()
        rows = [FundDistribution(user_id=USER, receipt_id=uuid4(), fund_id=stranger,
                                 amount=Decimal("99"), percentage=Decimal("50"))]
        costs = [Cost(user_id=USER, cost_date=date(2024, 1, 1), fund_id=stranger,
                      total_amount=Decimal("5"), description="Other fund")]
        assert compute_fund_balance(fund, rows, [], [], costs) == Decimal("10")


class TestBalanceCalculator:
    """Tests against in-memory storage."""

    def test_unknown_fund_raises(self, run, storage):
        calculator = BalanceCalculator(storage)
        with pytest.raises(NotFoundError):
            run(calculator.get_fund_balance(uuid4(), USER))

    def test_foreign_fund_looks_missing(self, run, storage):
        """Test that another tenant's fund is indistinguishable from a missing one."""
        fund = run(storage.save_fund(Fund(user_id=OTHER_USER, name="Theirs")))
        calculator = BalanceCalculator(storage)
        with pytest.raises(NotFoundError):
            run(calculator.get_fund_balance(fund.id, USER))

    def test_funds_with_balances_ordered_by_creation(self, run, storage):
        first = Fund(user_id=USER, name="B first", initial_balance=Decimal("1"))
        second = Fund(user_id=USER, name="A second", initial_balance=Decimal("2"))
        # Same timestamp: the id breaks the tie
        second = second.model_copy(update={"created_at": first.created_at})
        run(storage.save_fund(second))
        run(storage.save_fund(first))

        funds = run(BalanceCalculator(storage).get_funds_with_balances(USER))
        expected = sorted([first, second], key=lambda f: str(f.id))
        assert [f.id for f in funds] == [f.id for f in expected]
        assert {f.name: f.balance for f in funds} == {"B first": Decimal("1"), "A second": Decimal("2")}

    def test_unallocated_funds(self, run, storage):
        """receipts - fund distributions - manual distributions"""
        fund = run(storage.save_fund(_fund()))
        receipt = run(storage.save_receipt(Receipt(
            user_id=USER, receipt_date=date(2024, 1, 1), description="Dues", amount=Decimal("500"),
        )))
        run(storage.save_fund_distributions([FundDistribution(
            user_id=USER, receipt_id=receipt.id, fund_id=fund.id,
            amount=Decimal("200"), percentage=Decimal("40"),
        )]))
        run(storage.save_manual_distribution(ManualFundDistribution(
            user_id=USER, fund_id=fund.id, amount=Decimal("50"), distribution_date=date(2024, 1, 2),
        )))

        assert run(BalanceCalculator(storage).get_unallocated_funds(USER)) == Decimal("250")

    def test_negative_unallocated_is_returned_not_raised(self, run, storage):
        fund = run(storage.save_fund(_fund()))
        run(storage.save_manual_distribution(ManualFundDistribution(
            user_id=USER, fund_id=fund.id, amount=Decimal("75"), distribution_date=date(2024, 1, 2),
        )))

        assert run(BalanceCalculator(storage).get_unallocated_funds(USER)) == Decimal("-75")
