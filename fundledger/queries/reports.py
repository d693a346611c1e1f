"""
Report Builder

DESIGN DECISION: Reports are DETERMINISTIC reads over stored data.
Nothing is estimated or cached; every figure is summed from the rows the
storage returns for the tenant at the time of the call.

All reports accept an optional inclusive date range. Transactions are
placed in time as follows:
- fund distributions: the date of the receipt they came from
- manual distributions: their distribution_date
- transfers: the day they were created
- receipts and costs: their own date
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fundledger.engine.balance import BalanceCalculator
from fundledger.models.reports import (
    DashboardStats,
    ExpenseCategoryReport,
    ExpenseReportLine,
    FundBalanceReportRow,
    RecentActivity,
    SponsorReportRow,
)
from fundledger.money import ZERO, share_percentage, sum_amounts
from fundledger.services.storage import LedgerStorageInterface

UNCATEGORIZED = "Uncategorized"


def _in_range(value: date, date_from: Optional[date], date_to: Optional[date]) -> bool:
    if date_from and value < date_from:
        return False
    if date_to and value > date_to:
        return False
    return True


def _before(value: date, date_from: Optional[date]) -> bool:
    return date_from is not None and value < date_from


class ReportBuilder:
    """Builds the dashboard and report views for one tenant."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        balance: Optional[BalanceCalculator] = None,
    ):
        self._storage = storage
        self._balance = balance or BalanceCalculator(storage)

    async def get_dashboard_stats(self, user_id: str) -> DashboardStats:
        receipts = await self._storage.list_receipts(user_id)
        costs = await self._storage.list_costs(user_id)
        sponsors = await self._storage.list_sponsors(user_id)
        funds = await self._storage.list_funds(user_id)

        total_receipts = sum_amounts(r.amount for r in receipts)
        total_costs = sum_amounts(c.total_amount for c in costs)

        return DashboardStats(
            total_receipts=total_receipts,
            total_costs=total_costs,
            net_balance=total_receipts - total_costs,
            active_sponsors=sum(1 for s in sponsors if s.is_active),
            active_funds=sum(1 for f in funds if f.is_active),
            unallocated_funds=await self._balance.get_unallocated_funds(user_id),
        )

    async def get_recent_activity(self, user_id: str, limit: int = 10) -> RecentActivity:
        """The newest receipts and costs by creation time."""
        receipts = await self._storage.list_receipts(user_id)
        costs = await self._storage.list_costs(user_id)

        receipts.sort(key=lambda r: r.created_at, reverse=True)
        costs.sort(key=lambda c: c.created_at, reverse=True)

        return RecentActivity(
            recent_receipts=receipts[:limit],
            recent_costs=costs[:limit],
        )

    async def get_fund_balance_report(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[FundBalanceReportRow]:
        """
        Per fund: opening balance, income, expenses and closing balance.

        The opening balance is the fund's state before date_from (its
        initial balance when there is no date_from). Movements after
        date_to are ignored.
        """
        funds = await self._storage.list_funds(user_id)
        receipt_dates = {r.id: r.receipt_date for r in await self._storage.list_receipts(user_id)}
        distributions = await self._storage.list_fund_distributions(user_id)
        manual = await self._storage.list_manual_distributions(user_id)
        transfers = await self._storage.list_transfers(user_id)
        costs = await self._storage.list_costs(user_id)

        # (fund_id, date, signed amount) for every movement
        movements: list[tuple[UUID, date, Decimal]] = []
        for d in distributions:
            movements.append((d.fund_id, receipt_dates.get(d.receipt_id, d.created_at.date()), d.amount))
        for m in manual:
            movements.append((m.fund_id, m.distribution_date, m.amount))
        for t in transfers:
            movements.append((t.to_fund_id, t.created_at.date(), t.amount))
            movements.append((t.from_fund_id, t.created_at.date(), -t.amount))
        for c in costs:
            movements.append((c.fund_id, c.cost_date, -c.total_amount))

        rows = []
        for fund in sorted(funds, key=lambda f: (f.created_at, str(f.id))):
            opening = fund.initial_balance or ZERO
            income = ZERO
            expenses = ZERO
            for fund_id, moved_on, amount in movements:
                if fund_id != fund.id:
                    continue
                if _before(moved_on, date_from):
                    opening += amount
                elif _in_range(moved_on, date_from, date_to):
                    if amount >= ZERO:
                        income += amount
                    else:
                        expenses -= amount

            rows.append(FundBalanceReportRow(
                fund_id=fund.id,
                fund_name=fund.name,
                opening_balance=opening,
                income=income,
                expenses=expenses,
                closing_balance=opening + income - expenses,
            ))
        return rows

    async def get_expense_report(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[ExpenseCategoryReport]:
        """Costs in range grouped by category, largest category first."""
        costs = await self._storage.list_costs(user_id, date_from=date_from, date_to=date_to)
        categories = {c.id: c.name for c in await self._storage.list_expense_categories(user_id)}

        grouped: dict[Optional[UUID], list] = {}
        for cost in costs:
            # Costs filed under a deleted category count as uncategorized
            key = cost.category_id if cost.category_id in categories else None
            grouped.setdefault(key, []).append(cost)

        overall = sum_amounts(c.total_amount for c in costs)
        reports = []
        for category_id, category_costs in grouped.items():
            total = sum_amounts(c.total_amount for c in category_costs)
            reports.append(ExpenseCategoryReport(
                category_id=category_id,
                category_name=categories[category_id] if category_id else UNCATEGORIZED,
                total=total,
                share_of_total=share_percentage(total, overall),
                expenses=[
                    ExpenseReportLine(
                        cost_id=c.id,
                        cost_date=c.cost_date,
                        description=c.description,
                        fund_id=c.fund_id,
                        amount=c.total_amount,
                        share_of_category=share_percentage(c.total_amount, total),
                    )
                    for c in category_costs
                ],
            ))

        reports.sort(key=lambda r: r.total, reverse=True)
        return reports

    async def get_sponsor_report(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[SponsorReportRow]:
        """Sponsors who gave in range, with totals, largest donor first."""
        sponsors = await self._storage.list_sponsors(user_id)
        receipts = await self._storage.list_receipts(user_id, date_from=date_from, date_to=date_to)

        rows = []
        for sponsor in sponsors:
            given = [r.amount for r in receipts if r.sponsor_id == sponsor.id]
            if not given:
                continue
            rows.append(SponsorReportRow(
                sponsor_id=sponsor.id,
                sponsor_name=sponsor.name,
                phone=sponsor.phone,
                total_amount=sum_amounts(given),
                donations_count=len(given),
            ))

        rows.sort(key=lambda r: r.total_amount, reverse=True)
        return rows
