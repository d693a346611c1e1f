"""
Report models.

These are read-only views computed from the ledger; nothing here is
persisted.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from fundledger.models.ledger import Cost, Receipt, utcnow


class DashboardStats(BaseModel):
    """Headline numbers for the dashboard."""

    total_receipts: Decimal
    total_costs: Decimal
    net_balance: Decimal
    active_sponsors: int = Field(ge=0)
    active_funds: int = Field(ge=0)
    unallocated_funds: Decimal


class RecentActivity(BaseModel):
    recent_receipts: list[Receipt] = Field(default_factory=list)
    recent_costs: list[Cost] = Field(default_factory=list)


class FundBalanceReportRow(BaseModel):
    """
    Movement of one fund over a date range.

    closing_balance == opening_balance + income - expenses
    """

    fund_id: UUID
    fund_name: str
    opening_balance: Decimal
    income: Decimal
    expenses: Decimal
    closing_balance: Decimal


class ExpenseReportLine(BaseModel):
    cost_id: UUID
    cost_date: date
    description: str
    fund_id: UUID
    amount: Decimal
    share_of_category: Decimal = Field(
        ...,
        description="Percentage of the category total"
    )


class ExpenseCategoryReport(BaseModel):
    category_id: Optional[UUID] = None
    category_name: str
    total: Decimal
    share_of_total: Decimal = Field(
        ...,
        description="Percentage of all expenses in the range"
    )
    expenses: list[ExpenseReportLine] = Field(default_factory=list)


class SponsorReportRow(BaseModel):
    sponsor_id: UUID
    sponsor_name: str
    phone: str
    total_amount: Decimal
    donations_count: int = Field(ge=0)


class ReportPeriod(BaseModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    generated_at: datetime = Field(default_factory=utcnow)
