"""Validation package."""

from fundledger.validation.validator import LedgerValidator

__all__ = ["LedgerValidator"]
