"""Balance, distribution and cost-guard engines."""

from fundledger.engine.balance import BalanceCalculator, compute_fund_balance
from fundledger.engine.distribution import BatchOutcome, DistributionEngine
from fundledger.engine.guard import CostGuard

__all__ = [
    "BalanceCalculator",
    "BatchOutcome",
    "CostGuard",
    "DistributionEngine",
    "compute_fund_balance",
]
