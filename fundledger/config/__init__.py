"""Configuration package."""

from fundledger.config.settings import (
    GoogleSheetsSettings,
    LedgerSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "GoogleSheetsSettings",
    "LedgerSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
