"""
Shared fixtures.

Storage and service calls are coroutines; tests drive them with the `run`
fixture (asyncio.run) so no async test plugin is needed.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from fundledger.audit import AuditLogger
from fundledger.config import LedgerSettings
from fundledger.models import (
    FundCreate,
    IncomeSourceCreate,
    IncomeSourceFundDistributionCreate,
    ReceiptCreate,
)
from fundledger.orchestrator import FundLedgerService
from fundledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage

USER = "treasurer-1"
OTHER_USER = "treasurer-2"


@pytest.fixture
def run():
    return asyncio.run


@pytest.fixture
def settings():
    return LedgerSettings(_env_file=None, history_match_window_seconds=5.0)


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def service(storage, audit_storage, settings):
    return FundLedgerService(
        storage=storage,
        audit_logger=AuditLogger(audit_storage),
        settings=settings,
    )


@pytest.fixture
def make_fund(run, service):
    """Create a fund for USER and return it."""
    def _make(name: str = "Reserve", initial_balance: str = "0", user_id: str = USER):
        return run(service.create_fund(
            FundCreate(name=name, initial_balance=Decimal(initial_balance)),
            user_id,
        )).unwrap()
    return _make


@pytest.fixture
def make_source(run, service):
    """Create an income source with (fund, percentage) rules."""
    def _make(name: str = "Membership Dues", rules=(), user_id: str = USER):
        source = run(service.create_income_source(IncomeSourceCreate(name=name), user_id)).unwrap()
        for fund, percentage in rules:
            run(service.create_income_source_fund_distribution(
                IncomeSourceFundDistributionCreate(
                    income_source_id=source.id,
                    fund_id=fund.id,
                    percentage=Decimal(percentage),
                ),
                user_id,
            )).unwrap()
        return source
    return _make


@pytest.fixture
def make_receipt(run, service):
    def _make(
        amount: str,
        source=None,
        receipt_date: date = date(2024, 1, 10),
        description: str = "Monthly dues",
        sponsor=None,
        user_id: str = USER,
    ):
        return run(service.create_receipt(
            ReceiptCreate(
                receipt_date=receipt_date,
                description=description,
                amount=Decimal(amount),
                income_source_id=source.id if source else None,
                sponsor_id=sponsor.id if sponsor else None,
            ),
            user_id,
        )).unwrap()
    return _make
