"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a relational database later
2. Use in-memory storage for testing
3. Inject storage into the engines instead of sharing global state
4. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Every read takes the owning user_id; implementations MUST filter by it so
one tenant can never read another tenant's rows.

Cascades (receipt -> fund distributions and items, income source -> rules,
history -> items) are the caller's job. The store only deletes what it is asked to.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional
from uuid import UUID

from fundledger.models.audit import AuditEvent
from fundledger.models.ledger import (
    Cost,
    DistributionHistory,
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
)


class FundStorageInterface(ABC):
    """Fund Ledger Store: fund records and their static attributes."""

    @abstractmethod
    async def save_fund(self, fund: Fund) -> Fund:
        """
        Save a new fund.

        Raises:
            DuplicateError: If a fund with the same id exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_fund(self, fund_id: UUID, user_id: str) -> Optional[Fund]:
        """
        Retrieve a fund by its ID.

        Returns:
            The fund if it exists and belongs to user_id, None otherwise
        """
        pass

    @abstractmethod
    async def list_funds(self, user_id: str) -> list[Fund]:
        """List the user's funds in creation order."""
        pass

    @abstractmethod
    async def update_fund(self, fund: Fund) -> Fund:
        """
        Replace a stored fund with `fund`.

        Raises:
            RecordNotFoundError: If the fund doesn't exist for fund.user_id
        """
        pass

    @abstractmethod
    async def delete_fund(self, fund_id: UUID, user_id: str) -> bool:
        pass


class IncomeStorageInterface(ABC):
    """
    Income Attribution Store: income sources, their percentage rules,
    receipts and the sponsors receipts come from.
    """

    @abstractmethod
    async def save_income_source(self, income_source: IncomeSource) -> IncomeSource:
        pass

    @abstractmethod
    async def get_income_source(
        self,
        income_source_id: UUID,
        user_id: str,
    ) -> Optional[IncomeSource]:
        pass

    @abstractmethod
    async def list_income_sources(self, user_id: str) -> list[IncomeSource]:
        pass

    @abstractmethod
    async def update_income_source(self, income_source: IncomeSource) -> IncomeSource:
        pass

    @abstractmethod
    async def delete_income_source(self, income_source_id: UUID, user_id: str) -> bool:
        pass

    @abstractmethod
    async def save_rule(
        self,
        rule: IncomeSourceFundDistribution,
    ) -> IncomeSourceFundDistribution:
        """Save one percentage rule."""
        pass

    @abstractmethod
    async def list_rules(
        self,
        user_id: str,
        income_source_id: Optional[UUID] = None,
        fund_id: Optional[UUID] = None,
    ) -> list[IncomeSourceFundDistribution]:
        """
        List percentage rules.

        Args:
            user_id: Owner of the rules
            income_source_id: Only rules of this income source
            fund_id: Only rules routing to this fund

        Returns:
            Matching rules in creation order
        """
        pass

    @abstractmethod
    async def delete_rules(self, income_source_id: UUID, user_id: str) -> int:
        """
        Delete every rule of an income source.

        Returns:
            Number of rules deleted
        """
        pass

    @abstractmethod
    async def save_receipt(self, receipt: Receipt) -> Receipt:
        pass

    @abstractmethod
    async def get_receipt(self, receipt_id: UUID, user_id: str) -> Optional[Receipt]:
        pass

    @abstractmethod
    async def list_receipts(
        self,
        user_id: str,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        income_source_id: Optional[UUID] = None,
        sponsor_id: Optional[UUID] = None,
    ) -> list[Receipt]:
        """
        List receipts with optional filters.

        Args:
            user_id: Owner of the receipts
            search: Case-insensitive substring of the description
            date_from: Receipts dated on or after this date
            date_to: Receipts dated on or before this date
            income_source_id: Only receipts of this income source
            sponsor_id: Only receipts from this sponsor

        Returns:
            Matching receipts, newest receipt_date first
        """
        pass

    @abstractmethod
    async def update_receipt(self, receipt: Receipt) -> Receipt:
        pass

    @abstractmethod
    async def delete_receipt(self, receipt_id: UUID, user_id: str) -> bool:
        pass

    @abstractmethod
    async def save_receipt_item(self, item: ReceiptItem) -> ReceiptItem:
        pass

    @abstractmethod
    async def list_receipt_items(
        self,
        user_id: str,
        receipt_id: Optional[UUID] = None,
        sponsor_id: Optional[UUID] = None,
    ) -> list[ReceiptItem]:
        """List receipt items in insertion order, optionally by receipt or sponsor."""
        pass

    @abstractmethod
    async def update_receipt_item(self, item: ReceiptItem) -> ReceiptItem:
        pass

    @abstractmethod
    async def delete_receipt_items(self, receipt_id: UUID, user_id: str) -> int:
        """
        Delete every item of a receipt.

        Returns:
            Number of items deleted
        """
        pass

    @abstractmethod
    async def save_sponsor(self, sponsor: Sponsor) -> Sponsor:
        pass

    @abstractmethod
    async def get_sponsor(self, sponsor_id: UUID, user_id: str) -> Optional[Sponsor]:
        pass

    @abstractmethod
    async def list_sponsors(self, user_id: str, search: Optional[str] = None) -> list[Sponsor]:
        pass

    @abstractmethod
    async def update_sponsor(self, sponsor: Sponsor) -> Sponsor:
        pass

    @abstractmethod
    async def delete_sponsor(self, sponsor_id: UUID, user_id: str) -> bool:
        pass


class TransferStorageInterface(ABC):
    """Transfer Store: fund-to-fund transfers and manual fund credits."""

    @abstractmethod
    async def save_transfer(self, transfer: FundTransfer) -> FundTransfer:
        pass

    @abstractmethod
    async def get_transfer(self, transfer_id: UUID, user_id: str) -> Optional[FundTransfer]:
        pass

    @abstractmethod
    async def list_transfers(
        self,
        user_id: str,
        fund_id: Optional[UUID] = None,
    ) -> list[FundTransfer]:
        """
        List transfers, newest first.

        Args:
            fund_id: Only transfers into or out of this fund
        """
        pass

    @abstractmethod
    async def delete_transfer(self, transfer_id: UUID, user_id: str) -> bool:
        pass

    @abstractmethod
    async def save_manual_distribution(
        self,
        distribution: ManualFundDistribution,
    ) -> ManualFundDistribution:
        pass

    @abstractmethod
    async def get_manual_distribution(
        self,
        distribution_id: UUID,
        user_id: str,
    ) -> Optional[ManualFundDistribution]:
        pass

    @abstractmethod
    async def list_manual_distributions(
        self,
        user_id: str,
        fund_id: Optional[UUID] = None,
    ) -> list[ManualFundDistribution]:
        pass

    @abstractmethod
    async def delete_manual_distribution(self, distribution_id: UUID, user_id: str) -> bool:
        pass


class DistributionStorageInterface(ABC):
    """FundDistribution rows and the distribution history audit trail."""

    @abstractmethod
    async def save_fund_distributions(
        self,
        distributions: list[FundDistribution],
    ) -> list[FundDistribution]:
        """
        Save several fund distribution rows.

        Raises:
            StorageError: If any row fails to save. Rows saved before the
                failure are NOT removed; callers that need all-or-nothing
                clean up themselves.
        """
        pass

    @abstractmethod
    async def list_fund_distributions(
        self,
        user_id: str,
        receipt_id: Optional[UUID] = None,
        fund_id: Optional[UUID] = None,
    ) -> list[FundDistribution]:
        pass

    @abstractmethod
    async def delete_fund_distributions(self, distribution_ids: list[UUID], user_id: str) -> int:
        """
        Delete fund distribution rows by id.

        Returns:
            Number of rows deleted
        """
        pass

    @abstractmethod
    async def save_distribution_history(
        self,
        history: DistributionHistory,
    ) -> DistributionHistory:
        """Save a history entry together with its items."""
        pass

    @abstractmethod
    async def get_distribution_history(
        self,
        history_id: UUID,
        user_id: str,
    ) -> Optional[DistributionHistory]:
        """Retrieve a history entry with its items attached."""
        pass

    @abstractmethod
    async def list_distribution_histories(self, user_id: str) -> list[DistributionHistory]:
        """List history entries with items attached, newest first."""
        pass

    @abstractmethod
    async def delete_distribution_history(self, history_id: UUID, user_id: str) -> bool:
        """Delete a history entry and its items."""
        pass


class CostStorageInterface(ABC):
    """Costs and the expense categories they are filed under."""

    @abstractmethod
    async def save_cost(self, cost: Cost) -> Cost:
        pass

    @abstractmethod
    async def get_cost(self, cost_id: UUID, user_id: str) -> Optional[Cost]:
        pass

    @abstractmethod
    async def list_costs(
        self,
        user_id: str,
        fund_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Cost]:
        """
        List costs with optional filters.

        Returns:
            Matching costs, newest cost_date first
        """
        pass

    @abstractmethod
    async def update_cost(self, cost: Cost) -> Cost:
        pass

    @abstractmethod
    async def delete_cost(self, cost_id: UUID, user_id: str) -> bool:
        pass

    @abstractmethod
    async def save_expense_category(self, category: ExpenseCategory) -> ExpenseCategory:
        pass

    @abstractmethod
    async def get_expense_category(
        self,
        category_id: UUID,
        user_id: str,
    ) -> Optional[ExpenseCategory]:
        pass

    @abstractmethod
    async def list_expense_categories(self, user_id: str) -> list[ExpenseCategory]:
        pass

    @abstractmethod
    async def update_expense_category(self, category: ExpenseCategory) -> ExpenseCategory:
        pass

    @abstractmethod
    async def delete_expense_category(self, category_id: UUID, user_id: str) -> bool:
        pass


class LedgerStorageInterface(
    FundStorageInterface,
    IncomeStorageInterface,
    TransferStorageInterface,
    DistributionStorageInterface,
    CostStorageInterface,
):
    """
    Everything the engines need from persistence.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """
    pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one service call).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Args:
            user_id: Only events of this user (all users when None)
            limit: Maximum number of events to return

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class RecordNotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
