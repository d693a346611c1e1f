"""
Cost-vs-Balance Guard

The only place overdraft is actively prevented. Transfers and
distributions may take a fund negative; a cost may not.

The check reads the balance and the caller then writes the cost, so the
two must run under the tenant's lock (see FundLedgerService).
"""

from decimal import Decimal
from uuid import UUID

from fundledger.engine.balance import BalanceCalculator
from fundledger.errors import InsufficientFundsError, NotFoundError
from fundledger.models.ledger import Cost, Fund
from fundledger.services.storage import LedgerStorageInterface


class CostGuard:
    def __init__(self, storage: LedgerStorageInterface, balance: BalanceCalculator):
        self._storage = storage
        self._balance = balance

    async def _fund(self, fund_id: UUID, user_id: str) -> Fund:
        fund = await self._storage.get_fund(fund_id, user_id)
        if fund is None:
            raise NotFoundError("fund", fund_id)
        return fund

    async def check_cost(self, fund_id: UUID, amount: Decimal, user_id: str) -> Decimal:
        """
        Verify the fund can pay `amount`.

        Returns:
            The fund's balance after the cost

        Raises:
            NotFoundError: If the fund is not the user's
            InsufficientFundsError: If balance < amount
        """
        fund = await self._fund(fund_id, user_id)
        available = await self._balance.get_fund_balance(fund_id, user_id)
        if available < amount:
            raise InsufficientFundsError(fund.id, fund.name, available, amount)
        return available - amount

    async def check_cost_update(
        self,
        existing: Cost,
        fund_id: UUID,
        amount: Decimal,
        user_id: str,
    ) -> Decimal:
        """
        Verify an edited cost still fits.

        When the cost stays on the same fund its old amount is added back
        first, so lowering a cost never fails.
        """
        fund = await self._fund(fund_id, user_id)
        available = await self._balance.get_fund_balance(fund_id, user_id)
        if existing.fund_id == fund_id:
            available += existing.total_amount
        if available < amount:
            raise InsufficientFundsError(fund.id, fund.name, available, amount)
        return available - amount
