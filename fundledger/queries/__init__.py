"""Report queries package."""

from fundledger.queries.reports import ReportBuilder

__all__ = ["ReportBuilder"]
