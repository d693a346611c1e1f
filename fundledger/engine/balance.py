"""
Balance Computation Engine

CRITICAL: Balances are never stored. A fund's balance is a pure fold over
its transaction log, recomputed on every read:

    initial_balance
    + fund distributions
    + manual distributions
    + transfers in - transfers out
    - costs

No caching: a cached balance can go stale the moment another write lands,
and the cost guard must always see the current figure.
"""

from decimal import Decimal
from typing import Iterable
from uuid import UUID

import structlog

from fundledger.errors import NotFoundError
from fundledger.models.ledger import (
    Cost,
    Fund,
    FundDistribution,
    FundTransfer,
    FundWithBalance,
    ManualFundDistribution,
)
from fundledger.money import ZERO, sum_amounts
from fundledger.services.storage import LedgerStorageInterface

logger = structlog.get_logger(__name__)


def compute_fund_balance(
    fund: Fund,
    distributions: Iterable[FundDistribution],
    manual_distributions: Iterable[ManualFundDistribution],
    transfers: Iterable[FundTransfer],
    costs: Iterable[Cost],
) -> Decimal:
    """
    Fold a fund's transactions into its balance.

    The iterables may hold rows of other funds; only rows that touch
    `fund` are counted.
    """
    fund_id = fund.id
    balance = fund.initial_balance or ZERO
    balance += sum_amounts(d.amount for d in distributions if d.fund_id == fund_id)
    balance += sum_amounts(m.amount for m in manual_distributions if m.fund_id == fund_id)

    transfers = list(transfers)
    balance += sum_amounts(t.amount for t in transfers if t.to_fund_id == fund_id)
    balance -= sum_amounts(t.amount for t in transfers if t.from_fund_id == fund_id)

    balance -= sum_amounts(c.total_amount for c in costs if c.fund_id == fund_id)
    return balance


class BalanceCalculator:
    """Reads transactions from storage and applies the fold."""

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    async def get_fund_balance(self, fund_id: UUID, user_id: str) -> Decimal:
        """
        Current balance of one fund.

        Raises:
            NotFoundError: If the fund does not exist for user_id
        """
        fund = await self._storage.get_fund(fund_id, user_id)
        if fund is None:
            raise NotFoundError("fund", fund_id)

        return compute_fund_balance(
            fund,
            await self._storage.list_fund_distributions(user_id, fund_id=fund_id),
            await self._storage.list_manual_distributions(user_id, fund_id=fund_id),
            await self._storage.list_transfers(user_id, fund_id=fund_id),
            await self._storage.list_costs(user_id, fund_id=fund_id),
        )

    async def get_funds_with_balances(self, user_id: str) -> list[FundWithBalance]:
        """
        Every fund of the user with its balance attached.

        Ordered by creation time, then id, so the order is stable across
        calls even when two funds share a timestamp.
        """
        funds = await self._storage.list_funds(user_id)
        distributions = await self._storage.list_fund_distributions(user_id)
        manual = await self._storage.list_manual_distributions(user_id)
        transfers = await self._storage.list_transfers(user_id)
        costs = await self._storage.list_costs(user_id)

        funds.sort(key=lambda f: (f.created_at, str(f.id)))
        return [
            FundWithBalance(
                **fund.model_dump(),
                balance=compute_fund_balance(fund, distributions, manual, transfers, costs),
            )
            for fund in funds
        ]

    async def get_unallocated_funds(self, user_id: str) -> Decimal:
        """
        Money received but not yet routed to any fund.

        receipts - fund distributions - manual distributions

        A negative result means more was credited to funds than was ever
        received (e.g. large manual distributions). It is returned as is.
        """
        receipts = await self._storage.list_receipts(user_id)
        distributions = await self._storage.list_fund_distributions(user_id)
        manual = await self._storage.list_manual_distributions(user_id)

        unallocated = (
            sum_amounts(r.amount for r in receipts)
            - sum_amounts(d.amount for d in distributions)
            - sum_amounts(m.amount for m in manual)
        )

        if unallocated < ZERO:
            logger.warning(
                "negative_unallocated_funds",
                user_id=user_id,
                unallocated=str(unallocated),
            )

        return unallocated
