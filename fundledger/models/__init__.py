"""
Data Models Package

This package contains all Pydantic models used in the Fund Ledger system.
All data flowing through the system must conform to these schemas.
"""

from fundledger.models.ledger import (
    Cost,
    CostCreate,
    CostUpdate,
    DistributionHistory,
    DistributionHistoryItem,
    ExpenseCategory,
    ExpenseCategoryCreate,
    ExpenseCategoryUpdate,
    Fund,
    FundCreate,
    FundDistribution,
    FundDistributionRule,
    FundDistributionWithFund,
    FundTransfer,
    FundTransferCreate,
    FundTransferWithFunds,
    FundUpdate,
    FundWithBalance,
    IncomeSource,
    IncomeSourceCreate,
    IncomeSourceFundDistribution,
    IncomeSourceFundDistributionCreate,
    IncomeSourceFundDistributionWithFund,
    IncomeSourceUpdate,
    ManualFundDistribution,
    ManualFundDistributionCreate,
    Receipt,
    ReceiptCreate,
    ReceiptItem,
    ReceiptItemCreate,
    ReceiptItemWithSponsor,
    ReceiptUpdate,
    Sponsor,
    SponsorCreate,
    SponsorUpdate,
    utcnow,
)
from fundledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from fundledger.models.results import (
    ErrorDetail,
    OperationResult,
    ValidationIssue,
    ValidationResult,
)
from fundledger.models.reports import (
    DashboardStats,
    ExpenseCategoryReport,
    ExpenseReportLine,
    FundBalanceReportRow,
    RecentActivity,
    ReportPeriod,
    SponsorReportRow,
)

__all__ = [
    # Ledger models
    "Cost",
    "CostCreate",
    "CostUpdate",
    "DistributionHistory",
    "DistributionHistoryItem",
    "ExpenseCategory",
    "ExpenseCategoryCreate",
    "ExpenseCategoryUpdate",
    "Fund",
    "FundCreate",
    "FundDistribution",
    "FundDistributionRule",
    "FundDistributionWithFund",
    "FundTransfer",
    "FundTransferCreate",
    "FundTransferWithFunds",
    "FundUpdate",
    "FundWithBalance",
    "IncomeSource",
    "IncomeSourceCreate",
    "IncomeSourceFundDistribution",
    "IncomeSourceFundDistributionCreate",
    "IncomeSourceFundDistributionWithFund",
    "IncomeSourceUpdate",
    "ManualFundDistribution",
    "ManualFundDistributionCreate",
    "Receipt",
    "ReceiptCreate",
    "ReceiptItem",
    "ReceiptItemCreate",
    "ReceiptItemWithSponsor",
    "ReceiptUpdate",
    "Sponsor",
    "SponsorCreate",
    "SponsorUpdate",
    "utcnow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Results
    "ErrorDetail",
    "OperationResult",
    "ValidationIssue",
    "ValidationResult",
    # Reports
    "DashboardStats",
    "ExpenseCategoryReport",
    "ExpenseReportLine",
    "FundBalanceReportRow",
    "RecentActivity",
    "ReportPeriod",
    "SponsorReportRow",
]
