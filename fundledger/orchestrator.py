"""
Main Orchestrator for Fund Ledger

This module ties together all the components and exposes every ledger
operation to a presentation layer through one object, FundLedgerService.

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every mutation of a tenant runs under that tenant's lock, so the cost
  guard's check-then-write and a distribution batch never interleave with
  another write of the same tenant
- Domain failures come back as typed OperationResult failures, never as
  exceptions
- Unexpected failures are logged with full detail server-side and returned
  without internals
- Every mutation is audited under one correlation id per call

Reads take no lock; they see whatever the storage holds at that moment.
"""

import asyncio
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from fundledger.audit import AuditLogger, configure_logging, create_correlation_id
from fundledger.config import LedgerSettings, get_settings
from fundledger.engine import BalanceCalculator, CostGuard, DistributionEngine
from fundledger.errors import (
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from fundledger.models.audit import AuditEvent, AuditEventBuilder
from fundledger.models.ledger import (
    Cost,
    CostCreate,
    CostUpdate,
    DistributionHistory,
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
)
from fundledger.models.reports import (
    DashboardStats,
    ExpenseCategoryReport,
    FundBalanceReportRow,
    RecentActivity,
    SponsorReportRow,
)
from fundledger.models.results import (
    ErrorDetail,
    OperationResult,
    ValidationIssue,
    ValidationResult,
)
from fundledger.money import ZERO, sum_amounts
from fundledger.queries import ReportBuilder
from fundledger.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
)
from fundledger.validation import LedgerValidator

logger = structlog.get_logger(__name__)

# An action receives the call's correlation id and a list it may append
# non-fatal warnings to
Action = Callable[[UUID, list[str]], Awaitable[Any]]


def _pydantic_issues(error: PydanticValidationError) -> list[ValidationIssue]:
    return [
        ValidationIssue(
            field=".".join(str(part) for part in item["loc"]) or "input",
            issue_type=item["type"],
            message=item["msg"],
            severity="error",
        )
        for item in error.errors()
    ]


def _apply_update(record: BaseModel, changes: BaseModel) -> tuple[BaseModel, list[str]]:
    """
    Merge the fields set on an *Update model into a stored record.

    The merged record is re-validated, so stored-model constraints
    (lengths, decimal places) hold after the edit.
    """
    updates = changes.model_dump(exclude_unset=True)
    merged = type(record).model_validate({**record.model_dump(), **updates})
    changed = [name for name in updates if getattr(record, name) != getattr(merged, name)]
    return merged, changed


class FundLedgerService:
    """
    The ledger's public surface.

    Mutations return OperationResult. Plain listings return their value
    directly since they cannot fail on bad input.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        settings = settings or get_settings().ledger
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or LedgerValidator()
        self._balance = BalanceCalculator(storage)
        self._distribution = DistributionEngine(
            storage,
            balance=self._balance,
            validator=self._validator,
            history_match_window=timedelta(seconds=settings.history_match_window_seconds),
        )
        self._guard = CostGuard(storage, self._balance)
        self._reports = ReportBuilder(storage, self._balance)
        self._recent_activity_limit = settings.recent_activity_limit
        # One lock per tenant for the life of the service; never pruned, the
        # tenant count is small and bounded
        self._locks: dict[str, asyncio.Lock] = {}

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _lock(self, user_id: str) -> asyncio.Lock:
        return self._locks.setdefault(user_id, asyncio.Lock())

    async def _execute(
        self,
        operation: str,
        user_id: str,
        action: Action,
        mutating: bool = True,
    ) -> OperationResult:
        """Run one operation and turn its outcome into an OperationResult."""
        correlation_id = create_correlation_id()
        warnings: list[str] = []

        try:
            if mutating:
                async with self._lock(user_id):
                    value = await action(correlation_id, warnings)
            else:
                value = await action(correlation_id, warnings)
            return OperationResult.ok(value, warnings=warnings, correlation_id=correlation_id)

        except (ValidationError, PydanticValidationError) as e:
            issues = e.issues if isinstance(e, ValidationError) else _pydantic_issues(e)
            message = str(e) if isinstance(e, ValidationError) else "; ".join(i.message for i in issues)
            logger.info("operation_rejected", operation=operation, user_id=user_id, reason=message)
            await self._audit.log_validation_failed(operation, issues, user_id, correlation_id)
            return OperationResult.fail(
                ErrorDetail(error_type="validation_error", message=message, issues=issues),
                warnings=warnings,
                correlation_id=correlation_id,
            )

        except InsufficientFundsError as e:
            logger.info("operation_rejected", operation=operation, user_id=user_id, reason=str(e))
            await self._audit.log(AuditEventBuilder.cost_rejected(
                fund_id=e.fund_id,
                fund_name=e.fund_name,
                available=e.available,
                requested=e.requested,
                user_id=user_id,
                correlation_id=correlation_id,
            ))
            return OperationResult.fail(
                ErrorDetail(
                    error_type="insufficient_funds",
                    message=str(e),
                    details={
                        "fund_id": str(e.fund_id),
                        "fund_name": e.fund_name,
                        "available": str(e.available),
                        "requested": str(e.requested),
                    },
                ),
                warnings=warnings,
                correlation_id=correlation_id,
            )

        except NotFoundError as e:
            logger.info("operation_rejected", operation=operation, user_id=user_id, reason=str(e))
            return OperationResult.fail(
                ErrorDetail(
                    error_type="not_found",
                    message=str(e),
                    details={"entity": e.entity, "entity_id": str(e.entity_id)},
                ),
                warnings=warnings,
                correlation_id=correlation_id,
            )

        except Exception as e:
            logger.exception(
                "operation_failed",
                operation=operation,
                user_id=user_id,
                correlation_id=str(correlation_id),
            )
            await self._audit.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": operation},
                correlation_id=correlation_id,
                user_id=user_id,
            )
            return OperationResult.fail(
                ErrorDetail(
                    error_type="internal_error",
                    message=f"Could not complete {operation.replace('_', ' ')}. Please try again.",
                ),
                warnings=warnings,
                correlation_id=correlation_id,
            )

    async def _warn(
        self,
        warnings: list[str],
        message: str,
        user_id: str,
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> None:
        warnings.append(message)
        await self._audit.log_consistency_warning(message, user_id, details, correlation_id)

    def _check(self, result: ValidationResult, warnings: list[str]) -> None:
        LedgerValidator.ensure_valid(result)
        warnings.extend(result.warnings)

    async def _require(self, getter, entity: str, record_id: UUID, user_id: str):
        record = await getter(record_id, user_id)
        if record is None:
            raise NotFoundError(entity, record_id)
        return record

    async def _fund_names(self, user_id: str) -> dict[UUID, str]:
        return {f.id: f.name for f in await self._storage.list_funds(user_id)}

    async def _audit_created(self, entity: str, record_id: UUID, user_id: str, correlation_id: UUID) -> None:
        await self._audit.log(AuditEventBuilder.record_created(entity, record_id, user_id, correlation_id))

    async def _audit_updated(
        self,
        entity: str,
        record_id: UUID,
        changed: list[str],
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self._audit.log(AuditEventBuilder.record_updated(
            entity, record_id, user_id, changed, correlation_id,
        ))

    async def _audit_deleted(
        self,
        entity: str,
        record_id: UUID,
        user_id: str,
        correlation_id: UUID,
        cascaded: Optional[dict[str, int]] = None,
    ) -> None:
        await self._audit.log(AuditEventBuilder.record_deleted(
            entity, record_id, user_id, correlation_id, cascaded,
        ))

    # -------------------------------------------------------------------------
    # Funds and balances
    # -------------------------------------------------------------------------

    async def create_fund(self, data: FundCreate, user_id: str) -> OperationResult[Fund]:
        async def action(correlation_id: UUID, warnings: list[str]) -> Fund:
            fund = await self._storage.save_fund(Fund(user_id=user_id, **data.model_dump()))
            await self._audit_created("fund", fund.id, user_id, correlation_id)
            return fund

        return await self._execute("create_fund", user_id, action)

    async def get_fund(self, fund_id: UUID, user_id: str) -> OperationResult[Fund]:
        async def action(correlation_id: UUID, warnings: list[str]) -> Fund:
            return await self._require(self._storage.get_fund, "fund", fund_id, user_id)

        return await self._execute("get_fund", user_id, action, mutating=False)

    async def list_funds(self, user_id: str) -> list[Fund]:
        return await self._storage.list_funds(user_id)

    async def update_fund(self, fund_id: UUID, data: FundUpdate, user_id: str) -> OperationResult[Fund]:
        async def action(correlation_id: UUID, warnings: list[str]) -> Fund:
            fund = await self._require(self._storage.get_fund, "fund", fund_id, user_id)
            fund, changed = _apply_update(fund, data)
            fund = await self._storage.update_fund(fund)
            await self._audit_updated("fund", fund.id, changed, user_id, correlation_id)
            return fund

        return await self._execute("update_fund", user_id, action)

    async def delete_fund(self, fund_id: UUID, user_id: str) -> OperationResult[bool]:
        """
        Delete a fund that nothing references.

        A fund with transactions or rules cannot be deleted, since its
        money would silently vanish from the books. Deactivate it instead.
        """
        async def action(correlation_id: UUID, warnings: list[str]) -> bool:
            await self._require(self._storage.get_fund, "fund", fund_id, user_id)
            references = {
                "fund_distributions": len(await self._storage.list_fund_distributions(user_id, fund_id=fund_id)),
                "manual_fund_distributions": len(await self._storage.list_manual_distributions(user_id, fund_id=fund_id)),
                "fund_transfers": len(await self._storage.list_transfers(user_id, fund_id=fund_id)),
                "costs": len(await self._storage.list_costs(user_id, fund_id=fund_id)),
                "income_source_fund_distributions": len(await self._storage.list_rules(user_id, fund_id=fund_id)),
            }
            in_use = {name: count for name, count in references.items() if count}
            if in_use:
                raise ValidationError.single(
                    subject="fund",
                    field="fund_id",
                    issue_type="in_use",
                    message=f"Fund is still referenced by {sum(in_use.values())} records",
                    suggested_fix="Deactivate the fund instead of deleting it",
                )

            deleted = await self._storage.delete_fund(fund_id, user_id)
            await self._audit_deleted("fund", fund_id, user_id, correlation_id)
            return deleted

        return await self._execute("delete_fund", user_id, action)

    async def get_funds_with_balances(self, user_id: str) -> list[FundWithBalance]:
        return await self._balance.get_funds_with_balances(user_id)

    async def get_fund_balance(self, fund_id: UUID, user_id: str) -> OperationResult[Decimal]:
        async def action(correlation_id: UUID, warnings: list[str]) -> Decimal:
            return await self._balance.get_fund_balance(fund_id, user_id)

        return await self._execute("get_fund_balance", user_id, action, mutating=False)

    async def get_unallocated_funds(self, user_id: str) -> Decimal:
        return await self._balance.get_unallocated_funds(user_id)

    # -------------------------------------------------------------------------
    # Income sources and rules
    # -------------------------------------------------------------------------

    async def create_income_source(
        self,
        data: IncomeSourceCreate,
        user_id: str,
    ) -> OperationResult[IncomeSource]:
        async def action(correlation_id: UUID, warnings: list[str]) -> IncomeSource:
            source = await self._storage.save_income_source(
                IncomeSource(user_id=user_id, **data.model_dump())
            )
            await self._audit_created("income_source", source.id, user_id, correlation_id)
            return source

        return await self._execute("create_income_source", user_id, action)

    async def get_income_source(
        self,
        income_source_id: UUID,
        user_id: str,
    ) -> OperationResult[IncomeSource]:
        async def action(correlation_id: UUID, warnings: list[str]) -> IncomeSource:
            return await self._require(
                self._storage.get_income_source, "income_source", income_source_id, user_id,
            )

        return await self._execute("get_income_source", user_id, action, mutating=False)

    async def list_income_sources(self, user_id: str) -> list[IncomeSource]:
        return await self._storage.list_income_sources(user_id)

    async def update_income_source(
        self,
        income_source_id: UUID,
        data: IncomeSourceUpdate,
        user_id: str,
    ) -> OperationResult[IncomeSource]:
        async def action(correlation_id: UUID, warnings: list[str]) -> IncomeSource:
            source = await self._require(
                self._storage.get_income_source, "income_source", income_source_id, user_id,
            )
            source, changed = _apply_update(source, data)
            source = await self._storage.update_income_source(source)
            await self._audit_updated("income_source", source.id, changed, user_id, correlation_id)
            return source

        return await self._execute("update_income_source", user_id, action)

    async def delete_income_source(
        self,
        income_source_id: UUID,
        user_id: str,
    ) -> OperationResult[bool]:
        """Delete an income source together with its percentage rules."""
        async def action(correlation_id: UUID, warnings: list[str]) -> bool:
            await self._require(
                self._storage.get_income_source, "income_source", income_source_id, user_id,
            )
            removed_rules = await self._storage.delete_rules(income_source_id, user_id)
            deleted = await self._storage.delete_income_source(income_source_id, user_id)
            await self._audit_deleted(
                "income_source", income_source_id, user_id, correlation_id,
                cascaded={"income_source_fund_distributions": removed_rules},
            )
            return deleted

        return await self._execute("delete_income_source", user_id, action)

    async def create_income_source_fund_distribution(
        self,
        rule: IncomeSourceFundDistributionCreate,
        user_id: str,
    ) -> OperationResult[IncomeSourceFundDistribution]:
        async def action(correlation_id: UUID, warnings: list[str]) -> IncomeSourceFundDistribution:
            saved = await self._distribution.create_rule(rule, user_id)
            await self._audit.log(AuditEventBuilder.rule_created(
                rule_id=saved.id,
                income_source_id=saved.income_source_id,
                fund_id=saved.fund_id,
                percentage=saved.percentage,
                user_id=user_id,
                correlation_id=correlation_id,
            ))
            return saved

        return await self._execute("create_income_source_fund_distribution", user_id, action)

    async def get_income_source_fund_distributions(
        self,
        income_source_id: UUID,
        user_id: str,
    ) -> list[IncomeSourceFundDistributionWithFund]:
        """The source's rules annotated with fund names."""
        names = await self._fund_names(user_id)
        return [
            IncomeSourceFundDistributionWithFund(
                **rule.model_dump(),
                fund_name=names.get(rule.fund_id, ""),
            )
            for rule in await self._storage.list_rules(user_id, income_source_id=income_source_id)
        ]

    async def replace_income_source_fund_distributions(
        self,
        income_source_id: UUID,
        rules: list[FundDistributionRule],
        user_id: str,
    ) -> OperationResult[list[IncomeSourceFundDistribution]]:
        """Save the complete rule table of an income source in one step."""
        async def action(correlation_id: UUID, warnings: list[str]) -> list[IncomeSourceFundDistribution]:
            saved = await self._distribution.replace_rules(income_source_id, rules, user_id)
            await self._audit.log(AuditEventBuilder.rules_replaced(
                income_source_id=income_source_id,
                rule_count=len(saved),
                total_percentage=sum_amounts(r.percentage for r in saved),
                user_id=user_id,
                correlation_id=correlation_id,
            ))
            return saved

        return await self._execute("replace_income_source_fund_distributions", user_id, action)

    async def delete_income_source_fund_distributions(
        self,
        income_source_id: UUID,
        user_id: str,
    ) -> OperationResult[int]:
        async def action(correlation_id: UUID, warnings: list[str]) -> int:
            removed = await self._distribution.delete_rules(income_source_id, user_id)
            await self._audit.log(AuditEventBuilder.rules_replaced(
                income_source_id=income_source_id,
                rule_count=0,
                total_percentage=ZERO,
                user_id=user_id,
                correlation_id=correlation_id,
            ))
            return removed

        return await self._execute("delete_income_source_fund_distributions", user_id, action)

    # -------------------------------------------------------------------------
    # Sponsors
    # -------------------------------------------------------------------------

    async def create_sponsor(self, data: SponsorCreate, user_id: str) -> OperationResult[Sponsor]:
        async def action(correlation_id: UUID, warnings: list[str]) -> Sponsor:
            sponsor = await self._storage.save_sponsor(Sponsor(user_id=user_id, **data.model_dump()))
            await self._audit_created("sponsor", sponsor.id, user_id, correlation_id)
            return sponsor

        return await self._execute("create_sponsor", user_id, action)

    async def get_sponsor(self, sponsor_id: UUID, user_id: str) -> OperationResult[Sponsor]:
        async def action(correlation_id: UUID, warnings: list[str]) -> Sponsor:
            return await self._require(self._storage.get_sponsor, "sponsor", sponsor_id, user_id)

        return await self._execute("get_sponsor", user_id, action, mutating=False)

    async def list_sponsors(self, user_id: str, search: Optional[str] = None) -> list[Sponsor]:
        return await self._storage.list_sponsors(user_id, search=search)

    async def update_sponsor(
        self,
        sponsor_id: UUID,
        data: SponsorUpdate,
        user_id: str,
    ) -> OperationResult[Sponsor]:
        async def action(correlation_id: UUID, warnings: list[str]) -> Sponsor:
            sponsor = await self._require(self._storage.get_sponsor, "sponsor", sponsor_id, user_id)
            sponsor, changed = _apply_update(sponsor, data)
            sponsor = await self._storage.update_sponsor(sponsor)
            await self._audit_updated("sponsor", sponsor.id, changed, user_id, correlation_id)
            return sponsor

        return await self._execute("update_sponsor", user_id, action)

    async def delete_sponsor(self, sponsor_id: UUID, user_id: str) -> OperationResult[bool]:
        """
        Delete a sponsor.

        Receipts and receipt items that named the sponsor keep their amounts
        and lose the link.
        """
        async def action(correlation_id: UUID, warnings: list[str]) -> bool:
            await self._require(self._storage.get_sponsor, "sponsor", sponsor_id, user_id)
            receipts = await self._storage.list_receipts(user_id, sponsor_id=sponsor_id)
            for receipt in receipts:
                await self._storage.update_receipt(receipt.model_copy(update={"sponsor_id": None}))
            items = await self._storage.list_receipt_items(user_id, sponsor_id=sponsor_id)
            for item in items:
                await self._storage.update_receipt_item(item.model_copy(update={"sponsor_id": None}))
            deleted = await self._storage.delete_sponsor(sponsor_id, user_id)
            await self._audit_deleted(
                "sponsor", sponsor_id, user_id, correlation_id,
                cascaded={"receipts_unlinked": len(receipts), "receipt_items_unlinked": len(items)},
            )
            return deleted

        return await self._execute("delete_sponsor", user_id, action)

    # -------------------------------------------------------------------------
    # Receipts
    # -------------------------------------------------------------------------

    async def _check_receipt_links(
        self,
        income_source_id: Optional[UUID],
        sponsor_id: Optional[UUID],
        user_id: str,
    ) -> None:
        if income_source_id:
            await self._require(
                self._storage.get_income_source, "income_source", income_source_id, user_id,
            )
        if sponsor_id:
            await self._require(self._storage.get_sponsor, "sponsor", sponsor_id, user_id)

    async def create_receipt(self, data: ReceiptCreate, user_id: str) -> OperationResult[Receipt]:
        """
        Record income.

        The receipt is not distributed here; use distribute_receipt or a
        distribute_unallocated_funds batch.
        """
        async def action(correlation_id: UUID, warnings: list[str]) -> Receipt:
            self._check(self._validator.validate_receipt(data.amount, data.receipt_date), warnings)
            await self._check_receipt_links(data.income_source_id, data.sponsor_id, user_id)
            receipt = await self._storage.save_receipt(Receipt(user_id=user_id, **data.model_dump()))
            await self._audit_created("receipt", receipt.id, user_id, correlation_id)
            return receipt

        return await self._execute("create_receipt", user_id, action)

    async def get_receipt(self, receipt_id: UUID, user_id: str) -> OperationResult[Receipt]:
        async def action(correlation_id: UUID, warnings: list[str]) -> Receipt:
            return await self._require(self._storage.get_receipt, "receipt", receipt_id, user_id)

        return await self._execute("get_receipt", user_id, action, mutating=False)

    async def list_receipts(
        self,
        user_id: str,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        income_source_id: Optional[UUID] = None,
        sponsor_id: Optional[UUID] = None,
    ) -> list[Receipt]:
        return await self._storage.list_receipts(
            user_id,
            search=search,
            date_from=date_from,
            date_to=date_to,
            income_source_id=income_source_id,
            sponsor_id=sponsor_id,
        )

    async def update_receipt(
        self,
        receipt_id: UUID,
        data: ReceiptUpdate,
        user_id: str,
    ) -> OperationResult[Receipt]:
        """
        Edit a receipt.

        If the receipt was already distributed and its amount or income
        source changes, it is redistributed under the current rules.
        """
        async def action(correlation_id: UUID, warnings: list[str]) -> Receipt:
            current = await self._require(self._storage.get_receipt, "receipt", receipt_id, user_id)
            receipt, changed = _apply_update(current, data)
            self._check(self._validator.validate_receipt(receipt.amount), warnings)
            # Only links the edit touches are checked; an income source deleted
            # since the receipt was recorded leaves a dangling id
            await self._check_receipt_links(
                receipt.income_source_id if "income_source_id" in changed else None,
                receipt.sponsor_id if "sponsor_id" in changed else None,
                user_id,
            )
            receipt = await self._storage.update_receipt(receipt)
            await self._audit_updated("receipt", receipt.id, changed, user_id, correlation_id)

            if {"amount", "income_source_id"} & set(changed):
                existing = await self._storage.list_fund_distributions(user_id, receipt_id=receipt.id)
                if existing:
                    await self._redistribute(receipt, user_id, correlation_id)
            return receipt

        return await self._execute("update_receipt", user_id, action)

    async def _redistribute(self, receipt: Receipt, user_id: str, correlation_id: UUID) -> list[FundDistribution]:
        rows = await self._distribution.distribute_for_receipt(
            receipt.id, receipt.amount, receipt.income_source_id, user_id,
        )
        await self._audit.log(AuditEventBuilder.receipt_distributed(
            receipt_id=receipt.id,
            amount_distributed=sum_amounts(r.amount for r in rows),
            fund_count=len(rows),
            user_id=user_id,
            correlation_id=correlation_id,
        ))
        return rows

    async def delete_receipt(self, receipt_id: UUID, user_id: str) -> OperationResult[bool]:
        """Delete a receipt together with its fund distributions and items."""
        async def action(correlation_id: UUID, warnings: list[str]) -> bool:
            await self._require(self._storage.get_receipt, "receipt", receipt_id, user_id)
            rows = await self._storage.list_fund_distributions(user_id, receipt_id=receipt_id)
            removed = await self._storage.delete_fund_distributions([r.id for r in rows], user_id)
            items_removed = await self._storage.delete_receipt_items(receipt_id, user_id)
            deleted = await self._storage.delete_receipt(receipt_id, user_id)
            await self._audit_deleted(
                "receipt", receipt_id, user_id, correlation_id,
                cascaded={"fund_distributions": removed, "receipt_items": items_removed},
            )
            return deleted

        return await self._execute("delete_receipt", user_id, action)

    # -------------------------------------------------------------------------
    # Receipt items
    # -------------------------------------------------------------------------

    async def create_receipt_item(
        self,
        receipt_id: UUID,
        data: ReceiptItemCreate,
        user_id: str,
    ) -> OperationResult[ReceiptItem]:
        async def action(correlation_id: UUID, warnings: list[str]) -> ReceiptItem:
            await self._require(self._storage.get_receipt, "receipt", receipt_id, user_id)
            self._check(self._validator.validate_receipt_item(data.amount), warnings)
            await self._require(self._storage.get_sponsor, "sponsor", data.sponsor_id, user_id)
            item = await self._storage.save_receipt_item(
                ReceiptItem(user_id=user_id, receipt_id=receipt_id, **data.model_dump())
            )
            await self._audit_created("receipt_item", item.id, user_id, correlation_id)
            return item

        return await self._execute("create_receipt_item", user_id, action)

    async def list_receipt_items(self, receipt_id: UUID, user_id: str) -> list[ReceiptItemWithSponsor]:
        sponsors = {s.id: s.name for s in await self._storage.list_sponsors(user_id)}
        return [
            ReceiptItemWithSponsor(
                **item.model_dump(),
                sponsor_name=sponsors.get(item.sponsor_id, "Unknown Sponsor"),
            )
            for item in await self._storage.list_receipt_items(user_id, receipt_id=receipt_id)
        ]

    async def delete_receipt_items(self, receipt_id: UUID, user_id: str) -> OperationResult[int]:
        async def action(correlation_id: UUID, warnings: list[str]) -> int:
            await self._require(self._storage.get_receipt, "receipt", receipt_id, user_id)
            items = await self._storage.list_receipt_items(user_id, receipt_id=receipt_id)
            removed = await self._storage.delete_receipt_items(receipt_id, user_id)
            for item in items:
                await self._audit_deleted("receipt_item", item.id, user_id, correlation_id)
            return removed

        return await self._execute("delete_receipt_items", user_id, action)

    # -------------------------------------------------------------------------
    # Distribution
    # -------------------------------------------------------------------------

    async def distribute_receipt(
        self,
        receipt_id: UUID,
        user_id: str,
    ) -> OperationResult[list[FundDistribution]]:
        """(Re)distribute one receipt by its income source's current rules."""
        async def action(correlation_id: UUID, warnings: list[str]) -> list[FundDistribution]:
            receipt = await self._require(self._storage.get_receipt, "receipt", receipt_id, user_id)
            rows = await self._redistribute(receipt, user_id, correlation_id)
            if not rows:
                warnings.append("Receipt has no distribution rules and stays unallocated")
            return rows

        return await self._execute("distribute_receipt", user_id, action)

    async def get_fund_distributions_by_receipt(
        self,
        receipt_id: UUID,
        user_id: str,
    ) -> list[FundDistributionWithFund]:
        names = await self._fund_names(user_id)
        return [
            FundDistributionWithFund(**row.model_dump(), fund_name=names.get(row.fund_id, ""))
            for row in await self._storage.list_fund_distributions(user_id, receipt_id=receipt_id)
        ]

    async def distribute_unallocated_funds(
        self,
        user_id: str,
    ) -> OperationResult[Optional[DistributionHistory]]:
        """
        Distribute every receipt that has no distribution rows yet.

        Succeeds with None when there was nothing to distribute.
        """
        async def action(correlation_id: UUID, warnings: list[str]) -> Optional[DistributionHistory]:
            outcome = await self._distribution.run_batch(user_id)
            history = outcome.history

            if history is None:
                if outcome.unallocated_before < ZERO:
                    await self._warn(
                        warnings,
                        f"Unallocated funds are negative ({outcome.unallocated_before})",
                        user_id,
                        correlation_id,
                        {"unallocated": str(outcome.unallocated_before)},
                    )
                reason = (
                    "no unallocated funds"
                    if outcome.unallocated_before <= ZERO
                    else "no undistributed receipt has distribution rules"
                )
                await self._audit.log(AuditEventBuilder.batch_skipped(
                    reason=reason,
                    unallocated=outcome.unallocated_before,
                    user_id=user_id,
                    correlation_id=correlation_id,
                ))
                return None

            await self._audit.log(AuditEventBuilder.batch_distributed(
                history_id=history.id,
                total_amount=history.total_amount,
                receipt_count=outcome.receipt_count,
                fund_count=len(history.items),
                user_id=user_id,
                correlation_id=correlation_id,
            ))
            names = await self._fund_names(user_id)
            for item in history.items:
                item.fund_name = names.get(item.fund_id)
            return history

        return await self._execute("distribute_unallocated_funds", user_id, action)

    async def get_distribution_history_with_items(self, user_id: str) -> list[DistributionHistory]:
        """Every batch of the user, newest first, items annotated with fund names."""
        names = await self._fund_names(user_id)
        histories = await self._storage.list_distribution_histories(user_id)
        for history in histories:
            for item in history.items:
                item.fund_name = names.get(item.fund_id)
        return histories

    async def delete_distribution_history(
        self,
        history_id: UUID,
        user_id: str,
    ) -> OperationResult[bool]:
        """
        Reverse a distribution batch.

        Removes the history entry, its items and the fund distributions the
        batch created, which puts that money back into unallocated funds.
        Batches recorded before rows carried a batch id are matched by time
        and the reversal is best effort; a reversal that finds no rows is
        reported as a warning.

        Value is False when the history does not exist for the user.
        """
        async def action(correlation_id: UUID, warnings: list[str]) -> bool:
            removed = await self._distribution.delete_distribution_history(history_id, user_id)
            if removed is None:
                return False
            if removed == 0:
                await self._warn(
                    warnings,
                    "No fund distributions matched the deleted history entry",
                    user_id,
                    correlation_id,
                    {"history_id": str(history_id)},
                )
            await self._audit.log(AuditEventBuilder.history_deleted(
                history_id=history_id,
                removed_distributions=removed,
                user_id=user_id,
                correlation_id=correlation_id,
            ))
            return True

        return await self._execute("delete_distribution_history", user_id, action)

    # -------------------------------------------------------------------------
    # Manual distributions and transfers
    # -------------------------------------------------------------------------

    async def create_manual_fund_distribution(
        self,
        data: ManualFundDistributionCreate,
        user_id: str,
    ) -> OperationResult[ManualFundDistribution]:
        async def action(correlation_id: UUID, warnings: list[str]) -> ManualFundDistribution:
            self._check(
                self._validator.validate_manual_distribution(data.amount, data.percentage),
                warnings,
            )
            await self._require(self._storage.get_fund, "fund", data.fund_id, user_id)
            distribution = await self._storage.save_manual_distribution(
                ManualFundDistribution(user_id=user_id, **data.model_dump())
            )
            await self._audit_created("manual_fund_distribution", distribution.id, user_id, correlation_id)

            unallocated = await self._balance.get_unallocated_funds(user_id)
            if unallocated < ZERO:
                await self._warn(
                    warnings,
                    f"Unallocated funds are now negative ({unallocated})",
                    user_id,
                    correlation_id,
                    {"unallocated": str(unallocated)},
                )
            return distribution

        return await self._execute("create_manual_fund_distribution", user_id, action)

    async def list_manual_fund_distributions(
        self,
        user_id: str,
        fund_id: Optional[UUID] = None,
    ) -> list[ManualFundDistribution]:
        return await self._storage.list_manual_distributions(user_id, fund_id=fund_id)

    async def delete_manual_fund_distribution(
        self,
        distribution_id: UUID,
        user_id: str,
    ) -> OperationResult[bool]:
        async def action(correlation_id: UUID, warnings: list[str]) -> bool:
            await self._require(
                self._storage.get_manual_distribution, "manual_fund_distribution", distribution_id, user_id,
            )
            deleted = await self._storage.delete_manual_distribution(distribution_id, user_id)
            await self._audit_deleted("manual_fund_distribution", distribution_id, user_id, correlation_id)
            return deleted

        return await self._execute("delete_manual_fund_distribution", user_id, action)

    async def create_fund_transfer(
        self,
        transfer: FundTransferCreate,
        user_id: str,
    ) -> OperationResult[FundTransfer]:
        """
        Move money between two funds of the user.

        The source fund's balance is not checked; a transfer may take it
        negative.
        """
        async def action(correlation_id: UUID, warnings: list[str]) -> FundTransfer:
            self._check(self._validator.validate_transfer(transfer), warnings)
            await self._require(self._storage.get_fund, "fund", transfer.from_fund_id, user_id)
            await self._require(self._storage.get_fund, "fund", transfer.to_fund_id, user_id)
            saved = await self._storage.save_transfer(
                FundTransfer(user_id=user_id, **transfer.model_dump())
            )
            await self._audit.log(AuditEventBuilder.transfer_created(
                transfer_id=saved.id,
                from_fund_id=saved.from_fund_id,
                to_fund_id=saved.to_fund_id,
                amount=saved.amount,
                user_id=user_id,
                correlation_id=correlation_id,
            ))
            return saved

        return await self._execute("create_fund_transfer", user_id, action)

    async def list_fund_transfers(
        self,
        user_id: str,
        fund_id: Optional[UUID] = None,
    ) -> list[FundTransferWithFunds]:
        names = await self._fund_names(user_id)
        return [
            FundTransferWithFunds(
                **t.model_dump(),
                from_fund_name=names.get(t.from_fund_id, ""),
                to_fund_name=names.get(t.to_fund_id, ""),
            )
            for t in await self._storage.list_transfers(user_id, fund_id=fund_id)
        ]

    async def delete_fund_transfer(self, transfer_id: UUID, user_id: str) -> OperationResult[bool]:
        async def action(correlation_id: UUID, warnings: list[str]) -> bool:
            await self._require(self._storage.get_transfer, "fund_transfer", transfer_id, user_id)
            deleted = await self._storage.delete_transfer(transfer_id, user_id)
            await self._audit_deleted("fund_transfer", transfer_id, user_id, correlation_id)
            return deleted

        return await self._execute("delete_fund_transfer", user_id, action)

    # -------------------------------------------------------------------------
    # Expense categories and costs
    # -------------------------------------------------------------------------

    async def create_expense_category(
        self,
        data: ExpenseCategoryCreate,
        user_id: str,
    ) -> OperationResult[ExpenseCategory]:
        async def action(correlation_id: UUID, warnings: list[str]) -> ExpenseCategory:
            category = await self._storage.save_expense_category(
                ExpenseCategory(user_id=user_id, **data.model_dump())
            )
            await self._audit_created("expense_category", category.id, user_id, correlation_id)
            return category

        return await self._execute("create_expense_category", user_id, action)

    async def list_expense_categories(self, user_id: str) -> list[ExpenseCategory]:
        return await self._storage.list_expense_categories(user_id)

    async def update_expense_category(
        self,
        category_id: UUID,
        data: ExpenseCategoryUpdate,
        user_id: str,
    ) -> OperationResult[ExpenseCategory]:
        async def action(correlation_id: UUID, warnings: list[str]) -> ExpenseCategory:
            category = await self._require(
                self._storage.get_expense_category, "expense_category", category_id, user_id,
            )
            category, changed = _apply_update(category, data)
            category = await self._storage.update_expense_category(category)
            await self._audit_updated("expense_category", category.id, changed, user_id, correlation_id)
            return category

        return await self._execute("update_expense_category", user_id, action)

    async def delete_expense_category(self, category_id: UUID, user_id: str) -> OperationResult[bool]:
        async def action(correlation_id: UUID, warnings: list[str]) -> bool:
            await self._require(
                self._storage.get_expense_category, "expense_category", category_id, user_id,
            )
            costs = await self._storage.list_costs(user_id, category_id=category_id)
            if costs:
                raise ValidationError.single(
                    subject="expense_category",
                    field="category_id",
                    issue_type="in_use",
                    message=f"Category is used by {len(costs)} costs",
                    suggested_fix="Deactivate the category instead of deleting it",
                )
            deleted = await self._storage.delete_expense_category(category_id, user_id)
            await self._audit_deleted("expense_category", category_id, user_id, correlation_id)
            return deleted

        return await self._execute("delete_expense_category", user_id, action)

    async def create_cost(self, cost: CostCreate, user_id: str) -> OperationResult[Cost]:
        """
        Record money spent from a fund.

        Rejected with insufficient_funds when the fund's current balance
        does not cover the amount.
        """
        async def action(correlation_id: UUID, warnings: list[str]) -> Cost:
            self._check(self._validator.validate_cost(cost.total_amount, cost.cost_date), warnings)
            if cost.category_id:
                await self._require(
                    self._storage.get_expense_category, "expense_category", cost.category_id, user_id,
                )
            balance_after = await self._guard.check_cost(cost.fund_id, cost.total_amount, user_id)
            saved = await self._storage.save_cost(Cost(user_id=user_id, **cost.model_dump()))
            await self._audit.log(AuditEventBuilder.cost_saved(
                cost_id=saved.id,
                fund_id=saved.fund_id,
                amount=saved.total_amount,
                balance_after=balance_after,
                user_id=user_id,
                correlation_id=correlation_id,
            ))
            return saved

        return await self._execute("create_cost", user_id, action)

    async def get_cost(self, cost_id: UUID, user_id: str) -> OperationResult[Cost]:
        async def action(correlation_id: UUID, warnings: list[str]) -> Cost:
            return await self._require(self._storage.get_cost, "cost", cost_id, user_id)

        return await self._execute("get_cost", user_id, action, mutating=False)

    async def list_costs(
        self,
        user_id: str,
        fund_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Cost]:
        return await self._storage.list_costs(
            user_id,
            fund_id=fund_id,
            category_id=category_id,
            search=search,
            date_from=date_from,
            date_to=date_to,
        )

    async def update_cost(self, cost_id: UUID, data: CostUpdate, user_id: str) -> OperationResult[Cost]:
        async def action(correlation_id: UUID, warnings: list[str]) -> Cost:
            current = await self._require(self._storage.get_cost, "cost", cost_id, user_id)
            cost, changed = _apply_update(current, data)
            self._check(self._validator.validate_cost(cost.total_amount), warnings)
            if cost.category_id:
                await self._require(
                    self._storage.get_expense_category, "expense_category", cost.category_id, user_id,
                )
            balance_after = await self._guard.check_cost_update(
                current, cost.fund_id, cost.total_amount, user_id,
            )
            cost = await self._storage.update_cost(cost)
            await self._audit.log(AuditEventBuilder.cost_saved(
                cost_id=cost.id,
                fund_id=cost.fund_id,
                amount=cost.total_amount,
                balance_after=balance_after,
                user_id=user_id,
                is_update=True,
                correlation_id=correlation_id,
            ))
            return cost

        return await self._execute("update_cost", user_id, action)

    async def delete_cost(self, cost_id: UUID, user_id: str) -> OperationResult[bool]:
        async def action(correlation_id: UUID, warnings: list[str]) -> bool:
            await self._require(self._storage.get_cost, "cost", cost_id, user_id)
            deleted = await self._storage.delete_cost(cost_id, user_id)
            await self._audit_deleted("cost", cost_id, user_id, correlation_id)
            return deleted

        return await self._execute("delete_cost", user_id, action)

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    async def get_dashboard_stats(self, user_id: str) -> DashboardStats:
        return await self._reports.get_dashboard_stats(user_id)

    async def get_recent_activity(self, user_id: str, limit: Optional[int] = None) -> RecentActivity:
        return await self._reports.get_recent_activity(user_id, limit or self._recent_activity_limit)

    async def get_fund_balance_report(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> OperationResult[list[FundBalanceReportRow]]:
        async def action(correlation_id: UUID, warnings: list[str]) -> list[FundBalanceReportRow]:
            self._check(self._validator.validate_date_range(date_from, date_to), warnings)
            return await self._reports.get_fund_balance_report(user_id, date_from, date_to)

        return await self._execute("get_fund_balance_report", user_id, action, mutating=False)

    async def get_expense_report(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> OperationResult[list[ExpenseCategoryReport]]:
        async def action(correlation_id: UUID, warnings: list[str]) -> list[ExpenseCategoryReport]:
            self._check(self._validator.validate_date_range(date_from, date_to), warnings)
            return await self._reports.get_expense_report(user_id, date_from, date_to)

        return await self._execute("get_expense_report", user_id, action, mutating=False)

    async def get_sponsor_report(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> OperationResult[list[SponsorReportRow]]:
        async def action(correlation_id: UUID, warnings: list[str]) -> list[SponsorReportRow]:
            self._check(self._validator.validate_date_range(date_from, date_to), warnings)
            return await self._reports.get_sponsor_report(user_id, date_from, date_to)

        return await self._execute("get_sponsor_report", user_id, action, mutating=False)

    async def get_audit_trail(self, user_id: str, limit: int = 100) -> list[AuditEvent]:
        """Most recent audit events of the user, newest first."""
        storage = self._audit.storage
        if storage is None:
            return []
        return await storage.get_recent_events(user_id=user_id, limit=limit)


def create_app_components(
    backend: Optional[str] = None,
) -> tuple[FundLedgerService, LedgerStorageInterface, AuditStorageInterface]:
    """
    Factory function to create all application components.

    Args:
        backend: "memory" or "google_sheets". Defaults to the
                 LEDGER_STORAGE_BACKEND setting.

    Returns:
        (service, ledger_storage, audit_storage)

    Falls back to in-memory storage (with a warning) when Google Sheets is
    requested but not configured.
    """
    settings = get_settings().ledger
    configure_logging(settings.log_level)
    backend = backend or settings.storage_backend

    storage: Optional[LedgerStorageInterface] = None
    audit_storage: Optional[AuditStorageInterface] = None

    if backend == "google_sheets":
        try:
            sheets_client = GoogleSheetsClient()
            storage = GoogleSheetsLedgerStorage(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("google_sheets_not_configured", error=str(e))
    elif backend != "memory":
        raise ValueError(f"Unknown storage backend: {backend}")

    if storage is None:
        storage = InMemoryLedgerStorage()
        audit_storage = InMemoryAuditStorage()

    service = FundLedgerService(
        storage=storage,
        audit_logger=AuditLogger(audit_storage),
        settings=settings,
    )
    return service, storage, audit_storage
