"""Integration tests for FundLedgerService over in-memory storage."""

import asyncio
import logging
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import OTHER_USER, USER
from fundledger.audit import AuditLogger
from fundledger.config import get_settings
from fundledger.models import (
    CostCreate,
    ExpenseCategoryCreate,
    FundCreate,
    FundTransferCreate,
    FundUpdate,
    IncomeSourceUpdate,
    ManualFundDistributionCreate,
    ReceiptCreate,
    ReceiptItemCreate,
    ReceiptUpdate,
    SponsorCreate,
    SponsorUpdate,
)
from fundledger.orchestrator import FundLedgerService, create_app_components
from fundledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage


class YieldingStorage(InMemoryLedgerStorage):
    """Gives control back to the event loop between reading and writing."""

    async def list_costs(self, user_id, **filters):
        await asyncio.sleep(0)
        return await super().list_costs(user_id, **filters)

    async def save_cost(self, cost):
        await asyncio.sleep(0)
        return await super().save_cost(cost)


class BrokenTransferStorage(InMemoryLedgerStorage):
    async def save_transfer(self, transfer):
        raise RuntimeError("socket closed by 10.0.0.7:443")


def _service(storage, audit_storage, settings):
    return FundLedgerService(storage, AuditLogger(audit_storage), settings=settings)


class TestFunds:
    def test_create_and_get(self, run, service, audit_storage):
        created = run(service.create_fund(
            FundCreate(name=" Reserve ", initial_balance=Decimal("10")),
            USER,
        ))
        assert created.success
        assert created.correlation_id is not None
        assert created.value.name == "Reserve"

        fetched = run(service.get_fund(created.value.id, USER)).unwrap()
        assert fetched.id == created.value.id
        assert audit_storage.events[-1].correlation_id == created.correlation_id

    def test_update_reports_changed_fields(self, run, service, audit_storage, make_fund):
        fund = make_fund("Reserve")

        updated = run(service.update_fund(fund.id, FundUpdate(name="Building", is_active=True), USER)).unwrap()

        assert updated.name == "Building"
        assert updated.updated_at >= fund.updated_at
        assert audit_storage.events[-1].details == {"changed_fields": ["name"]}

    def test_update_revalidates_merged_record(self, run, service, make_fund):
        """Stored-model constraints still hold after an edit."""
        fund = make_fund("Reserve")
        result = run(service.update_fund(fund.id, FundUpdate(initial_balance=Decimal("1.234")), USER))
        assert result.error.error_type == "validation_error"
        assert run(service.get_fund(fund.id, USER)).value.initial_balance == Decimal("0")

    def test_delete_unused_fund(self, run, service, make_fund):
        fund = make_fund("Reserve")
        assert run(service.delete_fund(fund.id, USER)).value is True
        assert run(service.list_funds(USER)) == []

    def test_delete_fund_in_use(self, run, service, make_fund, make_source):
        fund = make_fund("Reserve")
        make_source("Dues", rules=[(fund, "10")])

        result = run(service.delete_fund(fund.id, USER))

        assert result.error.error_type == "validation_error"
        assert result.error.issues[0].issue_type == "in_use"
        assert run(service.get_fund(fund.id, USER)).success


class TestTransfers:
    def test_symmetric_movement(self, run, service, make_fund):
        reserve = make_fund("Reserve", "100")
        building = make_fund("Building", "0")
        outreach = make_fund("Outreach", "25")

        transfer = run(service.create_fund_transfer(
            FundTransferCreate(from_fund_id=reserve.id, to_fund_id=building.id, amount=Decimal("30")),
            USER,
        )).unwrap()

        assert run(service.get_fund_balance(reserve.id, USER)).value == Decimal("70")
        assert run(service.get_fund_balance(building.id, USER)).value == Decimal("30")
        assert run(service.get_fund_balance(outreach.id, USER)).value == Decimal("25")
        [listed] = run(service.list_fund_transfers(USER))
        assert (listed.id, listed.from_fund_name, listed.to_fund_name) == (transfer.id, "Reserve", "Building")

    def test_transfer_may_overdraw(self, run, service, make_fund):
        """Only costs are guarded; a transfer can take a fund negative."""
        reserve = make_fund("Reserve", "10")
        building = make_fund("Building")

        result = run(service.create_fund_transfer(
            FundTransferCreate(from_fund_id=reserve.id, to_fund_id=building.id, amount=Decimal("25")),
            USER,
        ))

        assert result.success
        assert run(service.get_fund_balance(reserve.id, USER)).value == Decimal("-15")

    def test_same_fund_rejected(self, run, service, make_fund):
        reserve = make_fund("Reserve", "10")

        result = run(service.create_fund_transfer(
            FundTransferCreate(from_fund_id=reserve.id, to_fund_id=reserve.id, amount=Decimal("5")),
            USER,
        ))

        assert result.error.error_type == "validation_error"
        assert result.error.issues[0].issue_type == "same_fund"
        assert result.error.issues[0].field == "to_fund_id"
        assert run(service.list_fund_transfers(USER)) == []

    def test_delete_restores_balances(self, run, service, make_fund):
        reserve = make_fund("Reserve", "100")
        building = make_fund("Building")
        transfer = run(service.create_fund_transfer(
            FundTransferCreate(from_fund_id=reserve.id, to_fund_id=building.id, amount=Decimal("30")),
            USER,
        )).unwrap()

        assert run(service.delete_fund_transfer(transfer.id, USER)).value is True
        assert run(service.get_fund_balance(reserve.id, USER)).value == Decimal("100")


class TestManualDistributions:
    def test_credit_and_warning(self, run, service, make_fund, make_receipt):
        reserve = make_fund("Reserve")
        make_receipt("20")

        result = run(service.create_manual_fund_distribution(
            ManualFundDistributionCreate(fund_id=reserve.id, amount=Decimal("50")), USER,
        ))

        assert result.success
        assert result.warnings == ["Unallocated funds are now negative (-30)"]
        assert run(service.get_fund_balance(reserve.id, USER)).value == Decimal("50")
        assert len(run(service.list_manual_fund_distributions(USER, fund_id=reserve.id))) == 1

    def test_delete(self, run, service, make_fund):
        reserve = make_fund("Reserve")
        manual = run(service.create_manual_fund_distribution(
            ManualFundDistributionCreate(fund_id=reserve.id, amount=Decimal("5")), USER,
        )).unwrap()

        assert run(service.delete_manual_fund_distribution(manual.id, USER)).value is True
        assert run(service.delete_manual_fund_distribution(manual.id, USER)).error.error_type == "not_found"


class TestReceiptsAndSponsors:
    def test_future_date_is_a_warning(self, run, service):
        result = run(service.create_receipt(
            ReceiptCreate(receipt_date=date(2999, 1, 1), description="Pledge", amount=Decimal("10")),
            USER,
        ))
        assert result.success
        assert len(result.warnings) == 1

    def test_unknown_income_source(self, run, service):
        result = run(service.create_receipt(
            ReceiptCreate(
                receipt_date=date(2024, 1, 1), description="Dues",
                amount=Decimal("10"), income_source_id=uuid4(),
            ),
            USER,
        ))
        assert result.error.error_type == "not_found"
        assert result.error.details["entity"] == "income_source"

    def test_list_filters(self, run, service, make_receipt, make_source):
        dues = make_source("Dues")
        make_receipt("10", source=dues, receipt_date=date(2024, 1, 1), description="January dues")
        make_receipt("20", receipt_date=date(2024, 2, 1), description="Bake sale")

        assert [r.amount for r in run(service.list_receipts(USER, search="BAKE"))] == [Decimal("20")]
        assert [r.amount for r in run(service.list_receipts(USER, income_source_id=dues.id))] == [Decimal("10")]
        assert [r.amount for r in run(service.list_receipts(USER, date_to=date(2024, 1, 31)))] == [Decimal("10")]
        # newest first
        assert [r.amount for r in run(service.list_receipts(USER))] == [Decimal("20"), Decimal("10")]

    def test_delete_receipt_cascades(self, run, service, audit_storage, make_fund, make_source, make_receipt):
        reserve = make_fund("Reserve")
        dues = make_source("Dues", rules=[(reserve, "40")])
        receipt = make_receipt("500", source=dues)
        sponsor = run(service.create_sponsor(SponsorCreate(name="Acme Corp"), USER)).unwrap()
        run(service.create_receipt_item(
            receipt.id, ReceiptItemCreate(sponsor_id=sponsor.id, amount=Decimal("500")), USER,
        )).unwrap()
        run(service.distribute_receipt(receipt.id, USER)).unwrap()

        assert run(service.delete_receipt(receipt.id, USER)).value is True

        assert run(service.get_fund_distributions_by_receipt(receipt.id, USER)) == []
        assert run(service.list_receipt_items(receipt.id, USER)) == []
        assert run(service.get_fund_balance(reserve.id, USER)).value == Decimal("0")
        assert audit_storage.events[-1].details == {
            "cascaded": {"fund_distributions": 1, "receipt_items": 1},
        }

    def test_sponsor_lifecycle(self, run, service, audit_storage, make_receipt):
        sponsor = run(service.create_sponsor(SponsorCreate(name="Acme Corp", phone="555"), USER)).unwrap()
        run(service.update_sponsor(sponsor.id, SponsorUpdate(phone="556"), USER)).unwrap()
        assert [s.phone for s in run(service.list_sponsors(USER, search="acme"))] == ["556"]

        receipt = make_receipt("10", sponsor=sponsor)
        assert run(service.delete_sponsor(sponsor.id, USER)).value is True

        kept = run(service.get_receipt(receipt.id, USER)).unwrap()
        assert kept.sponsor_id is None
        assert kept.amount == Decimal("10")
        assert run(service.list_sponsors(USER)) == []
        assert audit_storage.events[-1].details == {
            "cascaded": {"receipts_unlinked": 1, "receipt_items_unlinked": 0},
        }

    def test_edit_receipt_of_deleted_income_source(self, run, service, make_source, make_receipt):
        dues = make_source("Dues")
        receipt = make_receipt("50", source=dues)
        run(service.delete_income_source(dues.id, USER)).unwrap()

        result = run(service.update_receipt(receipt.id, ReceiptUpdate(description="Corrected"), USER))

        assert result.success
        assert result.value.description == "Corrected"
        assert result.value.income_source_id == dues.id

    def test_edit_pointing_at_missing_income_source(self, run, service, make_receipt):
        receipt = make_receipt("50")
        result = run(service.update_receipt(receipt.id, ReceiptUpdate(income_source_id=uuid4()), USER))
        assert result.error.error_type == "not_found"

    def test_delete_income_source_cascades_rules(self, run, service, audit_storage, make_fund, make_source):
        reserve = make_fund("Reserve")
        dues = make_source("Dues", rules=[(reserve, "40")])
        run(service.update_income_source(dues.id, IncomeSourceUpdate(description="Yearly"), USER)).unwrap()

        assert run(service.delete_income_source(dues.id, USER)).value is True

        assert run(service.list_income_sources(USER)) == []
        assert audit_storage.events[-1].details == {"cascaded": {"income_source_fund_distributions": 1}}
        # the fund is no longer referenced
        assert run(service.delete_fund(reserve.id, USER)).success

    def test_changing_income_source_redistributes(self, run, service, make_fund, make_source, make_receipt):
        reserve = make_fund("Reserve")
        building = make_fund("Building")
        dues = make_source("Dues", rules=[(reserve, "40")])
        donations = make_source("Donations", rules=[(building, "100")])
        receipt = make_receipt("50", source=dues)
        run(service.distribute_receipt(receipt.id, USER)).unwrap()

        run(service.update_receipt(receipt.id, ReceiptUpdate(income_source_id=donations.id), USER)).unwrap()

        rows = run(service.get_fund_distributions_by_receipt(receipt.id, USER))
        assert [(r.fund_name, r.amount) for r in rows] == [("Building", Decimal("50.00"))]


class TestReceiptItems:
    @pytest.fixture
    def sponsors(self, run, service):
        return [
            run(service.create_sponsor(SponsorCreate(name=name), USER)).unwrap()
            for name in ("Acme Corp", "Globex")
        ]

    def test_items_carry_sponsor_names(self, run, service, make_receipt, sponsors):
        receipt = make_receipt("150")
        acme, globex = sponsors
        run(service.create_receipt_item(
            receipt.id, ReceiptItemCreate(sponsor_id=acme.id, amount=Decimal("100"), comment="Gala"), USER,
        )).unwrap()
        run(service.create_receipt_item(
            receipt.id, ReceiptItemCreate(sponsor_id=globex.id, amount=Decimal("50")), USER,
        )).unwrap()

        items = run(service.list_receipt_items(receipt.id, USER))

        assert [(i.sponsor_name, i.amount, i.comment) for i in items] == [
            ("Acme Corp", Decimal("100"), "Gala"),
            ("Globex", Decimal("50"), None),
        ]
        # the receipt itself is unchanged
        assert run(service.get_receipt(receipt.id, USER)).value.amount == Decimal("150")

    def test_deleted_sponsor_shows_as_unknown(self, run, service, make_receipt, sponsors):
        receipt = make_receipt("100")
        acme = sponsors[0]
        run(service.create_receipt_item(
            receipt.id, ReceiptItemCreate(sponsor_id=acme.id, amount=Decimal("100")), USER,
        )).unwrap()

        run(service.delete_sponsor(acme.id, USER)).unwrap()

        [item] = run(service.list_receipt_items(receipt.id, USER))
        assert item.sponsor_id is None
        assert item.sponsor_name == "Unknown Sponsor"

    @pytest.mark.parametrize("amount", ["0", "-5", "1.001"])
    def test_invalid_amount(self, run, service, make_receipt, sponsors, amount):
        receipt = make_receipt("100")
        result = run(service.create_receipt_item(
            receipt.id, ReceiptItemCreate(sponsor_id=sponsors[0].id, amount=Decimal(amount)), USER,
        ))
        assert result.error.error_type == "validation_error"

    def test_unknown_receipt_or_sponsor(self, run, service, make_receipt, sponsors):
        receipt = make_receipt("100")
        missing_receipt = run(service.create_receipt_item(
            uuid4(), ReceiptItemCreate(sponsor_id=sponsors[0].id, amount=Decimal("5")), USER,
        ))
        missing_sponsor = run(service.create_receipt_item(
            receipt.id, ReceiptItemCreate(sponsor_id=uuid4(), amount=Decimal("5")), USER,
        ))

        assert missing_receipt.error.details["entity"] == "receipt"
        assert missing_sponsor.error.details["entity"] == "sponsor"

    def test_delete_items_keeps_other_receipts(self, run, service, audit_storage, make_receipt, sponsors):
        first = make_receipt("100")
        second = make_receipt("40")
        for receipt in (first, first, second):
            run(service.create_receipt_item(
                receipt.id, ReceiptItemCreate(sponsor_id=sponsors[0].id, amount=Decimal("20")), USER,
            )).unwrap()

        result = run(service.delete_receipt_items(first.id, USER))

        assert result.value == 2
        assert run(service.list_receipt_items(first.id, USER)) == []
        assert len(run(service.list_receipt_items(second.id, USER))) == 1
        events = run(audit_storage.get_events_by_correlation_id(result.correlation_id))
        assert [e.entity_type for e in events] == ["receipt_item", "receipt_item"]

    def test_items_are_per_tenant(self, run, service, make_receipt, sponsors):
        receipt = make_receipt("100")
        run(service.create_receipt_item(
            receipt.id, ReceiptItemCreate(sponsor_id=sponsors[0].id, amount=Decimal("100")), USER,
        )).unwrap()

        assert run(service.list_receipt_items(receipt.id, OTHER_USER)) == []
        assert run(service.delete_receipt_items(receipt.id, OTHER_USER)).error.error_type == "not_found"


class TestExpenseCategories:
    def test_category_in_use(self, run, service, make_fund):
        reserve = make_fund("Reserve", "100")
        category = run(service.create_expense_category(ExpenseCategoryCreate(name="Utilities"), USER)).unwrap()
        run(service.create_cost(CostCreate(
            cost_date=date(2024, 1, 1), fund_id=reserve.id, total_amount=Decimal("10"),
            description="Power", category_id=category.id,
        ), USER)).unwrap()

        result = run(service.delete_expense_category(category.id, USER))

        assert result.error.issues[0].issue_type == "in_use"
        assert [c.name for c in run(service.list_expense_categories(USER))] == ["Utilities"]


class TestTenantIsolation:
    def test_foreign_records_look_missing(self, run, service, make_fund, make_receipt):
        theirs = make_fund("Theirs", "100", user_id=OTHER_USER)
        receipt = make_receipt("10", user_id=OTHER_USER)
        mine = make_fund("Mine", "100")

        assert run(service.get_fund(theirs.id, USER)).error.error_type == "not_found"
        assert [f.name for f in run(service.list_funds(USER))] == ["Mine"]
        assert run(service.get_receipt(receipt.id, USER)).error.error_type == "not_found"
        assert run(service.delete_receipt(receipt.id, USER)).error.error_type == "not_found"
        assert run(service.get_unallocated_funds(USER)) == Decimal("0")

        result = run(service.create_fund_transfer(
            FundTransferCreate(from_fund_id=theirs.id, to_fund_id=mine.id, amount=Decimal("50")),
            USER,
        ))
        assert result.error.error_type == "not_found"
        assert run(service.get_fund_balance(theirs.id, OTHER_USER)).value == Decimal("100")

    def test_audit_trail_is_per_user(self, run, service, make_fund):
        make_fund("Mine")
        make_fund("Theirs", user_id=OTHER_USER)

        trail = run(service.get_audit_trail(USER))

        assert trail and all(e.user_id == USER for e in trail)


class TestInternalErrors:
    def test_details_stay_server_side(self, run, audit_storage, settings, make_fund):
        service = _service(BrokenTransferStorage(), audit_storage, settings)
        a = run(service.create_fund(
            FundCreate(name="A"), USER,
        )).unwrap()
        b = run(service.create_fund(
            FundCreate(name="B"), USER,
        )).unwrap()

        result = run(service.create_fund_transfer(
            FundTransferCreate(from_fund_id=a.id, to_fund_id=b.id, amount=Decimal("5")), USER,
        ))

        assert result.error.error_type == "internal_error"
        assert result.error.message == "Could not complete create fund transfer. Please try again."
        assert "10.0.0.7" not in result.error.message
        event = audit_storage.events[-1]
        assert event.event_type.value == "system_error"
        assert event.correlation_id == result.correlation_id
        assert "10.0.0.7" in event.error_message


class TestConcurrency:
    def test_costs_never_overdraw(self, run, audit_storage, settings):
        """Concurrent costs against one fund are serialized by the tenant lock."""
        storage = YieldingStorage()
        service = _service(storage, audit_storage, settings)

        async def scenario():
            fund = (await service.create_fund(FundCreate(name="Reserve", initial_balance=Decimal("100")), USER)).unwrap()
            results = await asyncio.gather(*[
                service.create_cost(
                    CostCreate(cost_date=date(2024, 1, 1), fund_id=fund.id,
                               total_amount=Decimal("30"), description=f"Cost {i}"),
                    USER,
                )
                for i in range(5)
            ])
            balance = (await service.get_fund_balance(fund.id, USER)).unwrap()
            return results, balance

        results, balance = run(scenario())

        assert sum(r.success for r in results) == 3
        assert {r.error.error_type for r in results if not r.success} == {"insufficient_funds"}
        assert balance == Decimal("10")


class TestCreateAppComponents:
    @pytest.fixture(autouse=True)
    def clean_settings(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)
        monkeypatch.delenv("LEDGER_LOG_LEVEL", raising=False)
        package_logger = logging.getLogger("fundledger")
        level = package_logger.level
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()
        package_logger.setLevel(level)

    def test_memory_backend(self, run):
        service, storage, audit_storage = create_app_components("memory")
        assert isinstance(storage, InMemoryLedgerStorage)
        assert isinstance(audit_storage, InMemoryAuditStorage)
        assert isinstance(service, FundLedgerService)

    def test_unconfigured_sheets_falls_back_to_memory(self):
        _, storage, audit_storage = create_app_components("google_sheets")
        assert isinstance(storage, InMemoryLedgerStorage)
        assert isinstance(audit_storage, InMemoryAuditStorage)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_app_components("postgres")

    def test_log_level_setting_is_applied(self, monkeypatch):
        monkeypatch.setenv("LEDGER_LOG_LEVEL", "ERROR")
        get_settings.cache_clear()

        create_app_components("memory")

        child = logging.getLogger("fundledger.orchestrator")
        assert not child.isEnabledFor(logging.WARNING)
        assert child.isEnabledFor(logging.ERROR)
