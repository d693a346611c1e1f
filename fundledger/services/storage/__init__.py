"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Ships an in-memory backend and a Google Sheets backend; both are swappable
behind the same interface.
"""

from fundledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    CostStorageInterface,
    DistributionStorageInterface,
    DuplicateError,
    FundStorageInterface,
    IncomeStorageInterface,
    LedgerStorageInterface,
    RecordNotFoundError,
    StorageError,
    TransferStorageInterface,
)
from fundledger.services.storage.tables import TableLedgerStorage
from fundledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
)
from fundledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "CostStorageInterface",
    "DistributionStorageInterface",
    "FundStorageInterface",
    "IncomeStorageInterface",
    "LedgerStorageInterface",
    "TransferStorageInterface",
    "TableLedgerStorage",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "RecordNotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
]
