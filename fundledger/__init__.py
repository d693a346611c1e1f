"""
Fund Ledger - Source Package

Multi-tenant fund accounting for small organizations: receipts arrive
through income sources, percentage rules route them into funds, costs are
spent from funds, and every balance is derived from the transaction log.

DESIGN PRINCIPLES:
1. Balances are computed, never stored
2. Money is Decimal end to end
3. Every mutation is auditable
4. Storage layer is swappable
5. Tenants never see each other's rows
"""

__version__ = "1.0.0"
__author__ = "Fund Ledger Team"
