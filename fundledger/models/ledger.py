"""
Core Ledger Models for Fund Ledger

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Keep money in Decimal, never float
3. Be serializable for storage and logging
4. Carry the owning user on every record (tenant partition key)

DESIGN DECISION: Stored records and caller input are separate models.
Stored records (Fund, Receipt, ...) hold the invariants of persisted data.
Input models (FundCreate, ReceiptCreate, ...) only check shapes; the
business rules (percent bounds, same-fund transfers, positive amounts) are
checked by the LedgerValidator so callers get field-level issues instead of
a constructor exception.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time used for every timestamp."""
    return datetime.now(timezone.utc)


# =============================================================================
# FUND LEDGER STORE
# =============================================================================

class Fund(BaseModel):
    """
    A named bucket of money.

    CRITICAL: There is no balance field. The balance is always derived
    from the transaction log by the BalanceCalculator.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Fund name"
    )
    description: Optional[str] = Field(default=None, max_length=500)
    initial_balance: Decimal = Field(
        default=Decimal("0"),
        decimal_places=2,
        description="Opening balance the fold starts from"
    )
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class FundWithBalance(Fund):
    """A fund with its derived balance attached, for presentation."""

    balance: Decimal


class FundCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    initial_balance: Decimal = Decimal("0")
    is_active: bool = True


class FundUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    initial_balance: Optional[Decimal] = None
    is_active: Optional[bool] = None


# =============================================================================
# INCOME ATTRIBUTION STORE
# =============================================================================

class IncomeSource(BaseModel):
    """A named channel of income, e.g. "Membership Dues"."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class IncomeSourceCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True


class IncomeSourceUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None


class IncomeSourceFundDistribution(BaseModel):
    """
    A percentage routing rule: `percentage` percent of every receipt of
    the income source goes to the fund.

    The rules of one source may sum to less than 100; the remainder stays
    unallocated. They may never sum to more than 100.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    income_source_id: UUID
    fund_id: UUID
    percentage: Decimal = Field(
        ...,
        gt=0,
        le=100,
        decimal_places=2,
        description="Share of each receipt routed to the fund"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class IncomeSourceFundDistributionWithFund(IncomeSourceFundDistribution):
    fund_name: str


class FundDistributionRule(BaseModel):
    """One (fund, percentage) pair of a rule set being saved."""

    fund_id: UUID
    percentage: Decimal


class IncomeSourceFundDistributionCreate(FundDistributionRule):
    income_source_id: UUID


class Sponsor(BaseModel):
    """A person or organization that donates money."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(default="", max_length=50)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SponsorCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(default="", max_length=50)
    is_active: bool = True


class SponsorUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    is_active: Optional[bool] = None


class Receipt(BaseModel):
    """
    A recorded inflow of money.

    Receipts are distributed to funds only on demand. Editing the amount or
    income source of a distributed receipt triggers a redistribution that
    first deletes the receipt's previous FundDistribution rows.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    receipt_date: date
    description: str = Field(..., min_length=1, max_length=500)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    income_source_id: Optional[UUID] = None
    sponsor_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ReceiptCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    receipt_date: date
    description: str = Field(..., min_length=1, max_length=500)
    amount: Decimal
    income_source_id: Optional[UUID] = None
    sponsor_id: Optional[UUID] = None


class ReceiptUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    receipt_date: Optional[date] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    amount: Optional[Decimal] = None
    income_source_id: Optional[UUID] = None
    sponsor_id: Optional[UUID] = None


class ReceiptItem(BaseModel):
    """
    One sponsor's share of a receipt.

    Items break a receipt down by contributor; they do not change the
    receipt's amount or its distribution. sponsor_id is cleared when the
    sponsor is deleted.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    receipt_id: UUID
    sponsor_id: Optional[UUID] = None
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    comment: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ReceiptItemWithSponsor(ReceiptItem):
    sponsor_name: str


class ReceiptItemCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    sponsor_id: UUID
    amount: Decimal
    comment: Optional[str] = Field(default=None, max_length=500)


# =============================================================================
# DISTRIBUTIONS
# =============================================================================

class FundDistribution(BaseModel):
    """
    The part of one receipt routed to one fund.

    Created only by the DistributionEngine. `percentage` is a snapshot of
    the rule at distribution time, so later rule edits do not rewrite
    history. `distribution_batch_id` links rows created by a batch to
    their DistributionHistory entry.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    receipt_id: UUID
    fund_id: UUID
    amount: Decimal = Field(..., decimal_places=2)
    percentage: Decimal
    distribution_batch_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)


class FundDistributionWithFund(FundDistribution):
    fund_name: str


class ManualFundDistribution(BaseModel):
    """An operator-entered credit to a fund, independent of any receipt."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    fund_id: UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    percentage: Optional[Decimal] = None
    description: Optional[str] = Field(default=None, max_length=500)
    distribution_date: date
    created_at: datetime = Field(default_factory=utcnow)


class ManualFundDistributionCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    fund_id: UUID
    amount: Decimal
    percentage: Optional[Decimal] = None
    description: Optional[str] = Field(default=None, max_length=500)
    distribution_date: date = Field(default_factory=date.today)


class DistributionHistoryItem(BaseModel):
    """
    One fund's share of a distribution batch.

    `percentage` is the fund's share of *this batch*, not a rule
    percentage: a fund may collect from several income sources at
    different rates within one batch.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    history_id: UUID
    fund_id: UUID
    amount: Decimal = Field(..., decimal_places=2)
    percentage: Decimal
    fund_name: Optional[str] = None


class DistributionHistory(BaseModel):
    """
    Immutable audit record of one "distribute all unallocated funds" run.

    Deleted only as a unit, together with its items and the
    FundDistribution rows the batch created.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    total_amount: Decimal = Field(..., decimal_places=2)
    distribution_date: datetime = Field(default_factory=utcnow)
    items: list[DistributionHistoryItem] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# TRANSFER STORE
# =============================================================================

class FundTransfer(BaseModel):
    """A direct movement of money from one fund to another."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    from_fund_id: UUID
    to_fund_id: UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def validate_distinct_funds(self) -> 'FundTransfer':
        if self.from_fund_id == self.to_fund_id:
            raise ValueError("Cannot transfer money from a fund to itself")
        return self


class FundTransferWithFunds(FundTransfer):
    from_fund_name: str
    to_fund_name: str


class FundTransferCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    from_fund_id: UUID
    to_fund_id: UUID
    amount: Decimal
    description: Optional[str] = Field(default=None, max_length=500)


# =============================================================================
# COSTS
# =============================================================================

class ExpenseCategory(BaseModel):
    """Grouping for costs, used by the expense report."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ExpenseCategoryCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True


class ExpenseCategoryUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None


class Cost(BaseModel):
    """
    Money spent from a fund.

    CRITICAL: A cost can only be created when the fund's computed balance
    covers it. This is the one place overdraft is actively prevented.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    cost_date: date
    fund_id: UUID
    total_amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=500)
    category_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class CostCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    cost_date: date
    fund_id: UUID
    total_amount: Decimal
    description: str = Field(..., min_length=1, max_length=500)
    category_id: Optional[UUID] = None


class CostUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    cost_date: Optional[date] = None
    fund_id: Optional[UUID] = None
    total_amount: Optional[Decimal] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    category_id: Optional[UUID] = None
