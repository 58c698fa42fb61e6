"""
Split Ledger - Source Package

A shared-expense ledger: who paid, who owes, and how to settle up.

DESIGN PRINCIPLES:
1. Money is Decimal, never float
2. Every expense balances exactly: payments == splits == total
3. Validate everything before the first write; write in one transaction
4. No silent corrections
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Split Ledger Team"
