"""
Distribution Engine

Applies percentage rules to receipts and keeps the distribution history.

Two entry points move money from "unallocated" into funds:

1. distribute_for_receipt: (re)distributes one receipt. Any rows the
   receipt already has are removed first, so calling it twice leaves the
   same rows as calling it once.

2. distribute_unallocated_funds: one batch over every receipt that has no
   distribution rows yet. All FundDistribution rows are written first,
   then one DistributionHistory entry summarizing the batch per fund.

DESIGN DECISION: A receipt counts as "undistributed" only when it has zero
FundDistribution rows. A receipt whose rules summed to less than 100% is
partially distributed and is NOT revisited by later batches; the
remainder stays unallocated until the receipt is redistributed on its own.

Rows written by a batch carry the batch's id (distribution_batch_id), which
is what deleting a history entry uses to find them. Rows written before
batch ids existed are matched by creation time instead.
"""

from datetime import timedelta
from decimal import Decimal
from typing import NamedTuple, Optional
from uuid import UUID, uuid4

import structlog

from fundledger.engine.balance import BalanceCalculator
from fundledger.errors import NotFoundError
from fundledger.models.ledger import (
    DistributionHistory,
    DistributionHistoryItem,
    FundDistribution,
    FundDistributionRule,
    IncomeSourceFundDistribution,
    IncomeSourceFundDistributionCreate,
    utcnow,
)
from fundledger.money import ZERO, percentage_of, share_percentage, sum_amounts
from fundledger.services.storage import LedgerStorageInterface
from fundledger.validation import LedgerValidator

logger = structlog.get_logger(__name__)

DEFAULT_HISTORY_MATCH_WINDOW = timedelta(seconds=5)


class BatchOutcome(NamedTuple):
    """What one distribute_unallocated_funds run did."""
    history: Optional[DistributionHistory]
    unallocated_before: Decimal
    receipt_count: int


class DistributionEngine:
    """
    Routes receipts to funds according to the income source's rules.

    Args:
        storage: Ledger storage
        balance: Balance calculator used for the unallocated check
        validator: Rule validator
        history_match_window: Tolerance for matching untagged rows to a
            history entry by creation time
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        balance: Optional[BalanceCalculator] = None,
        validator: Optional[LedgerValidator] = None,
        history_match_window: timedelta = DEFAULT_HISTORY_MATCH_WINDOW,
    ):
        self._storage = storage
        self._balance = balance or BalanceCalculator(storage)
        self._validator = validator or LedgerValidator()
        self._history_match_window = history_match_window

    # -------------------------------------------------------------------------
    # Single receipt
    # -------------------------------------------------------------------------

    @staticmethod
    def plan_receipt_distribution(
        receipt_id: UUID,
        amount: Decimal,
        rules: list[IncomeSourceFundDistribution],
        user_id: str,
        batch_id: Optional[UUID] = None,
    ) -> list[FundDistribution]:
        """
        Build (but do not save) the rows for one receipt.

        One row per rule, amount = receipt amount * percentage / 100 rounded
        half up to cents. The rules are not required to sum to 100.
        """
        created_at = utcnow()
        return [
            FundDistribution(
                user_id=user_id,
                receipt_id=receipt_id,
                fund_id=rule.fund_id,
                amount=percentage_of(amount, rule.percentage),
                percentage=rule.percentage,
                distribution_batch_id=batch_id,
                created_at=created_at,
            )
            for rule in rules
        ]

    async def distribute_for_receipt(
        self,
        receipt_id: UUID,
        amount: Decimal,
        income_source_id: Optional[UUID],
        user_id: str,
    ) -> list[FundDistribution]:
        """
        Replace a receipt's distribution rows with freshly computed ones.

        Returns:
            The new rows. Empty when the receipt has no income source or the
            source has no rules; the receipt then stays undistributed.
        """
        existing = await self._storage.list_fund_distributions(user_id, receipt_id=receipt_id)
        if existing:
            await self._storage.delete_fund_distributions([d.id for d in existing], user_id)

        if income_source_id is None:
            return []

        rules = await self._storage.list_rules(user_id, income_source_id=income_source_id)
        rows = self.plan_receipt_distribution(receipt_id, amount, rules, user_id)
        if rows:
            await self._storage.save_fund_distributions(rows)

        logger.info(
            "receipt_distributed",
            user_id=user_id,
            receipt_id=str(receipt_id),
            removed=len(existing),
            created=len(rows),
        )
        return rows

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    async def run_batch(self, user_id: str) -> BatchOutcome:
        """
        Distribute every undistributed receipt and record the batch.

        No history is written when there is nothing to distribute: either
        unallocated funds are not positive, or no undistributed receipt has
        an income source with rules.

        Raises:
            StorageError: If a write fails. Rows this batch already wrote
                are removed before the error propagates.
        """
        unallocated = await self._balance.get_unallocated_funds(user_id)
        if unallocated <= ZERO:
            return BatchOutcome(None, unallocated, 0)

        receipts = await self._storage.list_receipts(user_id)
        distributed_receipts = {
            d.receipt_id for d in await self._storage.list_fund_distributions(user_id)
        }
        rules_by_source: dict[UUID, list[IncomeSourceFundDistribution]] = {}
        for rule in await self._storage.list_rules(user_id):
            rules_by_source.setdefault(rule.income_source_id, []).append(rule)

        batch_id = uuid4()
        planned: list[list[FundDistribution]] = []
        for receipt in sorted(receipts, key=lambda r: (r.receipt_date, r.created_at)):
            if receipt.id in distributed_receipts or receipt.income_source_id is None:
                continue
            rows = self.plan_receipt_distribution(
                receipt.id,
                receipt.amount,
                rules_by_source.get(receipt.income_source_id, []),
                user_id,
                batch_id=batch_id,
            )
            if rows:
                planned.append(rows)

        if not planned:
            return BatchOutcome(None, unallocated, 0)

        # Per-fund totals across the whole batch
        fund_totals: dict[UUID, Decimal] = {}
        for rows in planned:
            for row in rows:
                fund_totals[row.fund_id] = fund_totals.get(row.fund_id, ZERO) + row.amount
        total = sum_amounts(fund_totals.values())

        history = DistributionHistory(
            id=batch_id,
            user_id=user_id,
            total_amount=total,
            distribution_date=planned[0][0].created_at,
        )
        history.items = [
            DistributionHistoryItem(
                user_id=user_id,
                history_id=history.id,
                fund_id=fund_id,
                amount=amount,
                percentage=share_percentage(amount, total),
            )
            for fund_id, amount in fund_totals.items()
        ]

        written: list[UUID] = []
        try:
            for rows in planned:
                await self._storage.save_fund_distributions(rows)
                written.extend(row.id for row in rows)
            await self._storage.save_distribution_history(history)
        except Exception:
            logger.error(
                "distribution_batch_failed",
                user_id=user_id,
                batch_id=str(batch_id),
                rolled_back=len(written),
            )
            if written:
                await self._storage.delete_fund_distributions(written, user_id)
            raise

        logger.info(
            "distribution_batch_completed",
            user_id=user_id,
            batch_id=str(batch_id),
            total=str(total),
            receipts=len(planned),
            funds=len(fund_totals),
        )
        return BatchOutcome(history, unallocated, len(planned))

    async def distribute_unallocated_funds(self, user_id: str) -> Optional[DistributionHistory]:
        """Run a batch; returns its history entry, or None if it was a no-op."""
        return (await self.run_batch(user_id)).history

    async def delete_distribution_history(
        self,
        history_id: UUID,
        user_id: str,
    ) -> Optional[int]:
        """
        Reverse a batch: delete its history entry, items and distribution rows.

        Rows are found by their batch id. Only when no row carries the id
        (history written before batch ids existed) are untagged rows created
        within the match window of the distribution date removed instead.
        That fallback is best effort: it may miss rows or catch rows of a
        single-receipt distribution made at the same moment.

        Returns:
            None if the history does not exist for user_id, otherwise the
            number of distribution rows removed (0 is suspicious but legal)
        """
        history = await self._storage.get_distribution_history(history_id, user_id)
        if history is None:
            return None

        rows = await self._storage.list_fund_distributions(user_id)
        matched = [d for d in rows if d.distribution_batch_id == history.id]
        if not matched:
            matched = [
                d for d in rows
                if d.distribution_batch_id is None
                and abs(d.created_at - history.distribution_date) <= self._history_match_window
            ]

        removed = 0
        if matched:
            removed = await self._storage.delete_fund_distributions(
                [d.id for d in matched],
                user_id,
            )
        await self._storage.delete_distribution_history(history.id, user_id)

        logger.info(
            "distribution_history_deleted",
            user_id=user_id,
            history_id=str(history_id),
            removed=removed,
        )
        return removed

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    async def _require_source(self, income_source_id: UUID, user_id: str) -> None:
        if await self._storage.get_income_source(income_source_id, user_id) is None:
            raise NotFoundError("income_source", income_source_id)

    async def _require_fund(self, fund_id: UUID, user_id: str) -> None:
        if await self._storage.get_fund(fund_id, user_id) is None:
            raise NotFoundError("fund", fund_id)

    async def create_rule(
        self,
        rule: IncomeSourceFundDistributionCreate,
        user_id: str,
    ) -> IncomeSourceFundDistribution:
        """
        Add one percentage rule to an income source.

        Raises:
            NotFoundError: If the income source or fund is not the user's
            ValidationError: If the percentage is out of range, the fund
                already has a rule, or the total would exceed 100
        """
        await self._require_source(rule.income_source_id, user_id)
        await self._require_fund(rule.fund_id, user_id)

        existing = await self._storage.list_rules(user_id, income_source_id=rule.income_source_id)
        self._validator.ensure_valid(
            self._validator.validate_rule(rule.fund_id, rule.percentage, existing)
        )

        return await self._storage.save_rule(IncomeSourceFundDistribution(
            user_id=user_id,
            income_source_id=rule.income_source_id,
            fund_id=rule.fund_id,
            percentage=rule.percentage,
        ))

    async def replace_rules(
        self,
        income_source_id: UUID,
        rules: list[FundDistributionRule],
        user_id: str,
    ) -> list[IncomeSourceFundDistribution]:
        """
        Replace every rule of an income source with `rules`.

        The whole set is validated before anything is deleted, so a bad
        set leaves the current rules untouched.
        """
        await self._require_source(income_source_id, user_id)
        for rule in rules:
            await self._require_fund(rule.fund_id, user_id)
        self._validator.ensure_valid(self._validator.validate_rule_set(rules))

        await self._storage.delete_rules(income_source_id, user_id)
        saved = []
        for rule in rules:
            saved.append(await self._storage.save_rule(IncomeSourceFundDistribution(
                user_id=user_id,
                income_source_id=income_source_id,
                fund_id=rule.fund_id,
                percentage=rule.percentage,
            )))
        return saved

    async def delete_rules(self, income_source_id: UUID, user_id: str) -> int:
        await self._require_source(income_source_id, user_id)
        return await self._storage.delete_rules(income_source_id, user_id)
