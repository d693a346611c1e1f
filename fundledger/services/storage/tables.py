"""
Table-backed storage base.

Both backends keep each entity in a flat "table" of rows (a dict in
memory, a worksheet in Google Sheets) and filter in Python, so the
interface methods are written once here against four primitives:

    _insert(table, records)      append new rows
    _load(table, user_id)        all rows of one tenant, in insertion order
    _replace(table, record)      overwrite the row with record.id
    _remove(table, ids, user_id) delete rows by id

TRADEOFF: Every query is a scan of one tenant's rows. That is fine at
the expected scale (one organization, thousands of rows).
"""

from abc import abstractmethod
from datetime import date
from typing import NamedTuple, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

from fundledger.models.ledger import (
    Cost,
    DistributionHistory,
    DistributionHistoryItem,
    ExpenseCategory,
    Fund,
    FundDistribution,
    FundTransfer,
    IncomeSource,
    IncomeSourceFundDistribution,
    ManualFundDistribution,
    Receipt,
    ReceiptItem,
    Sponsor,
    utcnow,
)
from fundledger.services.storage.interface import (
    LedgerStorageInterface,
    RecordNotFoundError,
)

RecordT = TypeVar("RecordT", bound=BaseModel)


class TableSpec(NamedTuple):
    """How one entity is laid out as rows."""
    name: str
    model: type[BaseModel]
    # Model fields that are not stored as columns
    exclude: frozenset[str] = frozenset()

    @property
    def columns(self) -> list[str]:
        return [name for name in self.model.model_fields if name not in self.exclude]


FUNDS = TableSpec("funds", Fund)
INCOME_SOURCES = TableSpec("income_sources", IncomeSource)
RULES = TableSpec("income_source_fund_distributions", IncomeSourceFundDistribution)
RECEIPTS = TableSpec("receipts", Receipt)
RECEIPT_ITEMS = TableSpec("receipt_items", ReceiptItem)
SPONSORS = TableSpec("sponsors", Sponsor)
TRANSFERS = TableSpec("fund_transfers", FundTransfer)
MANUAL_DISTRIBUTIONS = TableSpec("manual_fund_distributions", ManualFundDistribution)
FUND_DISTRIBUTIONS = TableSpec("fund_distributions", FundDistribution)
HISTORIES = TableSpec("distribution_history", DistributionHistory, frozenset({"items"}))
HISTORY_ITEMS = TableSpec(
    "distribution_history_items",
    DistributionHistoryItem,
    frozenset({"fund_name"}),
)
COSTS = TableSpec("costs", Cost)
EXPENSE_CATEGORIES = TableSpec("expense_categories", ExpenseCategory)

ALL_TABLES = [
    FUNDS,
    INCOME_SOURCES,
    RULES,
    RECEIPTS,
    RECEIPT_ITEMS,
    SPONSORS,
    TRANSFERS,
    MANUAL_DISTRIBUTIONS,
    FUND_DISTRIBUTIONS,
    HISTORIES,
    HISTORY_ITEMS,
    COSTS,
    EXPENSE_CATEGORIES,
]


def _matches_search(text: Optional[str], search: Optional[str]) -> bool:
    if not search:
        return True
    return search.lower() in (text or "").lower()


class TableLedgerStorage(LedgerStorageInterface):
    """LedgerStorageInterface implemented over the four table primitives."""

    # -------------------------------------------------------------------------
    # Primitives
    # -------------------------------------------------------------------------

    @abstractmethod
    async def _insert(self, table: TableSpec, records: list[BaseModel]) -> None:
        """Append rows. Raises DuplicateError when an id already exists."""
        pass

    @abstractmethod
    async def _load(self, table: TableSpec, user_id: str) -> list[BaseModel]:
        pass

    @abstractmethod
    async def _replace(self, table: TableSpec, record: BaseModel) -> bool:
        """Overwrite the row with the same id and owner. False if missing."""
        pass

    @abstractmethod
    async def _remove(self, table: TableSpec, ids: set[UUID], user_id: str) -> int:
        pass

    # -------------------------------------------------------------------------
    # Generic helpers
    # -------------------------------------------------------------------------

    async def _save(self, table: TableSpec, record: RecordT) -> RecordT:
        await self._insert(table, [record])
        return record

    async def _get(self, table: TableSpec, record_id: UUID, user_id: str):
        for record in await self._load(table, user_id):
            if record.id == record_id:
                return record
        return None

    async def _update(self, table: TableSpec, record: RecordT) -> RecordT:
        if "updated_at" in table.model.model_fields:
            record = record.model_copy(update={"updated_at": utcnow()})
        if not await self._replace(table, record):
            raise RecordNotFoundError(f"{table.name} row not found: {record.id}")
        return record

    async def _delete(self, table: TableSpec, record_id: UUID, user_id: str) -> bool:
        return await self._remove(table, {record_id}, user_id) > 0

    # -------------------------------------------------------------------------
    # Funds
    # -------------------------------------------------------------------------

    async def save_fund(self, fund: Fund) -> Fund:
        return await self._save(FUNDS, fund)

    async def get_fund(self, fund_id: UUID, user_id: str) -> Optional[Fund]:
        return await self._get(FUNDS, fund_id, user_id)

    async def list_funds(self, user_id: str) -> list[Fund]:
        return await self._load(FUNDS, user_id)

    async def update_fund(self, fund: Fund) -> Fund:
        return await self._update(FUNDS, fund)

    async def delete_fund(self, fund_id: UUID, user_id: str) -> bool:
        return await self._delete(FUNDS, fund_id, user_id)

    # -------------------------------------------------------------------------
    # Income sources and rules
    # -------------------------------------------------------------------------

    async def save_income_source(self, income_source: IncomeSource) -> IncomeSource:
        return await self._save(INCOME_SOURCES, income_source)

    async def get_income_source(
        self,
        income_source_id: UUID,
        user_id: str,
    ) -> Optional[IncomeSource]:
        return await self._get(INCOME_SOURCES, income_source_id, user_id)

    async def list_income_sources(self, user_id: str) -> list[IncomeSource]:
        return await self._load(INCOME_SOURCES, user_id)

    async def update_income_source(self, income_source: IncomeSource) -> IncomeSource:
        return await self._update(INCOME_SOURCES, income_source)

    async def delete_income_source(self, income_source_id: UUID, user_id: str) -> bool:
        return await self._delete(INCOME_SOURCES, income_source_id, user_id)

    async def save_rule(
        self,
        rule: IncomeSourceFundDistribution,
    ) -> IncomeSourceFundDistribution:
        return await self._save(RULES, rule)

    async def list_rules(
        self,
        user_id: str,
        income_source_id: Optional[UUID] = None,
        fund_id: Optional[UUID] = None,
    ) -> list[IncomeSourceFundDistribution]:
        return [
            rule for rule in await self._load(RULES, user_id)
            if (income_source_id is None or rule.income_source_id == income_source_id)
            and (fund_id is None or rule.fund_id == fund_id)
        ]

    async def delete_rules(self, income_source_id: UUID, user_id: str) -> int:
        rules = await self.list_rules(user_id, income_source_id=income_source_id)
        if not rules:
            return 0
        return await self._remove(RULES, {rule.id for rule in rules}, user_id)

    # -------------------------------------------------------------------------
    # Receipts and sponsors
    # -------------------------------------------------------------------------

    async def save_receipt(self, receipt: Receipt) -> Receipt:
        return await self._save(RECEIPTS, receipt)

    async def get_receipt(self, receipt_id: UUID, user_id: str) -> Optional[Receipt]:
        return await self._get(RECEIPTS, receipt_id, user_id)

    async def list_receipts(
        self,
        user_id: str,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        income_source_id: Optional[UUID] = None,
        sponsor_id: Optional[UUID] = None,
    ) -> list[Receipt]:
        receipts = []
        for receipt in await self._load(RECEIPTS, user_id):
            if not _matches_search(receipt.description, search):
                continue
            if date_from and receipt.receipt_date < date_from:
                continue
            if date_to and receipt.receipt_date > date_to:
                continue
            if income_source_id and receipt.income_source_id != income_source_id:
                continue
            if sponsor_id and receipt.sponsor_id != sponsor_id:
                continue
            receipts.append(receipt)

        # Sort by date descending (newest first)
        receipts.sort(key=lambda r: r.receipt_date, reverse=True)
        return receipts

    async def update_receipt(self, receipt: Receipt) -> Receipt:
        return await self._update(RECEIPTS, receipt)

    async def delete_receipt(self, receipt_id: UUID, user_id: str) -> bool:
        return await self._delete(RECEIPTS, receipt_id, user_id)

    async def save_receipt_item(self, item: ReceiptItem) -> ReceiptItem:
        return await self._save(RECEIPT_ITEMS, item)

    async def list_receipt_items(
        self,
        user_id: str,
        receipt_id: Optional[UUID] = None,
        sponsor_id: Optional[UUID] = None,
    ) -> list[ReceiptItem]:
        return [
            item for item in await self._load(RECEIPT_ITEMS, user_id)
            if (receipt_id is None or item.receipt_id == receipt_id)
            and (sponsor_id is None or item.sponsor_id == sponsor_id)
        ]

    async def update_receipt_item(self, item: ReceiptItem) -> ReceiptItem:
        return await self._update(RECEIPT_ITEMS, item)

    async def delete_receipt_items(self, receipt_id: UUID, user_id: str) -> int:
        items = await self.list_receipt_items(user_id, receipt_id=receipt_id)
        if not items:
            return 0
        return await self._remove(RECEIPT_ITEMS, {item.id for item in items}, user_id)

    async def save_sponsor(self, sponsor: Sponsor) -> Sponsor:
        return await self._save(SPONSORS, sponsor)

    async def get_sponsor(self, sponsor_id: UUID, user_id: str) -> Optional[Sponsor]:
        return await self._get(SPONSORS, sponsor_id, user_id)

    async def list_sponsors(self, user_id: str, search: Optional[str] = None) -> list[Sponsor]:
        return [
            sponsor for sponsor in await self._load(SPONSORS, user_id)
            if _matches_search(sponsor.name, search)
        ]

    async def update_sponsor(self, sponsor: Sponsor) -> Sponsor:
        return await self._update(SPONSORS, sponsor)

    async def delete_sponsor(self, sponsor_id: UUID, user_id: str) -> bool:
        return await self._delete(SPONSORS, sponsor_id, user_id)

    # -------------------------------------------------------------------------
    # Transfers and manual distributions
    # -------------------------------------------------------------------------

    async def save_transfer(self, transfer: FundTransfer) -> FundTransfer:
        return await self._save(TRANSFERS, transfer)

    async def get_transfer(self, transfer_id: UUID, user_id: str) -> Optional[FundTransfer]:
        return await self._get(TRANSFERS, transfer_id, user_id)

    async def list_transfers(
        self,
        user_id: str,
        fund_id: Optional[UUID] = None,
    ) -> list[FundTransfer]:
        transfers = [
            transfer for transfer in await self._load(TRANSFERS, user_id)
            if fund_id is None or fund_id in (transfer.from_fund_id, transfer.to_fund_id)
        ]
        transfers.sort(key=lambda t: t.created_at, reverse=True)
        return transfers

    async def delete_transfer(self, transfer_id: UUID, user_id: str) -> bool:
        return await self._delete(TRANSFERS, transfer_id, user_id)

    async def save_manual_distribution(
        self,
        distribution: ManualFundDistribution,
    ) -> ManualFundDistribution:
        return await self._save(MANUAL_DISTRIBUTIONS, distribution)

    async def get_manual_distribution(
        self,
        distribution_id: UUID,
        user_id: str,
    ) -> Optional[ManualFundDistribution]:
        return await self._get(MANUAL_DISTRIBUTIONS, distribution_id, user_id)

    async def list_manual_distributions(
        self,
        user_id: str,
        fund_id: Optional[UUID] = None,
    ) -> list[ManualFundDistribution]:
        distributions = [
            d for d in await self._load(MANUAL_DISTRIBUTIONS, user_id)
            if fund_id is None or d.fund_id == fund_id
        ]
        distributions.sort(key=lambda d: d.distribution_date, reverse=True)
        return distributions

    async def delete_manual_distribution(self, distribution_id: UUID, user_id: str) -> bool:
        return await self._delete(MANUAL_DISTRIBUTIONS, distribution_id, user_id)

    # -------------------------------------------------------------------------
    # Fund distributions and history
    # -------------------------------------------------------------------------

    async def save_fund_distributions(
        self,
        distributions: list[FundDistribution],
    ) -> list[FundDistribution]:
        if distributions:
            await self._insert(FUND_DISTRIBUTIONS, list(distributions))
        return distributions

    async def list_fund_distributions(
        self,
        user_id: str,
        receipt_id: Optional[UUID] = None,
        fund_id: Optional[UUID] = None,
    ) -> list[FundDistribution]:
        return [
            d for d in await self._load(FUND_DISTRIBUTIONS, user_id)
            if (receipt_id is None or d.receipt_id == receipt_id)
            and (fund_id is None or d.fund_id == fund_id)
        ]

    async def delete_fund_distributions(self, distribution_ids: list[UUID], user_id: str) -> int:
        if not distribution_ids:
            return 0
        return await self._remove(FUND_DISTRIBUTIONS, set(distribution_ids), user_id)

    async def save_distribution_history(
        self,
        history: DistributionHistory,
    ) -> DistributionHistory:
        # Items first so a reader never sees a history row without them
        if history.items:
            await self._insert(HISTORY_ITEMS, list(history.items))
        await self._insert(HISTORIES, [history.model_copy(update={"items": []})])
        return history

    async def _attach_items(
        self,
        histories: list[DistributionHistory],
        user_id: str,
    ) -> list[DistributionHistory]:
        items_by_history: dict[UUID, list[DistributionHistoryItem]] = {}
        for item in await self._load(HISTORY_ITEMS, user_id):
            items_by_history.setdefault(item.history_id, []).append(item)
        return [
            h.model_copy(update={"items": items_by_history.get(h.id, [])})
            for h in histories
        ]

    async def get_distribution_history(
        self,
        history_id: UUID,
        user_id: str,
    ) -> Optional[DistributionHistory]:
        history = await self._get(HISTORIES, history_id, user_id)
        if history is None:
            return None
        return (await self._attach_items([history], user_id))[0]

    async def list_distribution_histories(self, user_id: str) -> list[DistributionHistory]:
        histories = await self._load(HISTORIES, user_id)
        histories.sort(key=lambda h: h.distribution_date, reverse=True)
        return await self._attach_items(histories, user_id)

    async def delete_distribution_history(self, history_id: UUID, user_id: str) -> bool:
        item_ids = {
            item.id for item in await self._load(HISTORY_ITEMS, user_id)
            if item.history_id == history_id
        }
        if not await self._delete(HISTORIES, history_id, user_id):
            return False
        if item_ids:
            await self._remove(HISTORY_ITEMS, item_ids, user_id)
        return True

    # -------------------------------------------------------------------------
    # Costs and categories
    # -------------------------------------------------------------------------

    async def save_cost(self, cost: Cost) -> Cost:
        return await self._save(COSTS, cost)

    async def get_cost(self, cost_id: UUID, user_id: str) -> Optional[Cost]:
        return await self._get(COSTS, cost_id, user_id)

    async def list_costs(
        self,
        user_id: str,
        fund_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Cost]:
        costs = []
        for cost in await self._load(COSTS, user_id):
            if fund_id and cost.fund_id != fund_id:
                continue
            if category_id and cost.category_id != category_id:
                continue
            if not _matches_search(cost.description, search):
                continue
            if date_from and cost.cost_date < date_from:
                continue
            if date_to and cost.cost_date > date_to:
                continue
            costs.append(cost)

        costs.sort(key=lambda c: c.cost_date, reverse=True)
        return costs

    async def update_cost(self, cost: Cost) -> Cost:
        return await self._update(COSTS, cost)

    async def delete_cost(self, cost_id: UUID, user_id: str) -> bool:
        return await self._delete(COSTS, cost_id, user_id)

    async def save_expense_category(self, category: ExpenseCategory) -> ExpenseCategory:
        return await self._save(EXPENSE_CATEGORIES, category)

    async def get_expense_category(
        self,
        category_id: UUID,
        user_id: str,
    ) -> Optional[ExpenseCategory]:
        return await self._get(EXPENSE_CATEGORIES, category_id, user_id)

    async def list_expense_categories(self, user_id: str) -> list[ExpenseCategory]:
        return await self._load(EXPENSE_CATEGORIES, user_id)

    async def update_expense_category(self, category: ExpenseCategory) -> ExpenseCategory:
        return await self._update(EXPENSE_CATEGORIES, category)

    async def delete_expense_category(self, category_id: UUID, user_id: str) -> bool:
        return await self._delete(EXPENSE_CATEGORIES, category_id, user_id)
