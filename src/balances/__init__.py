"""Balances and debt simplification."""

from src.balances.balance_service import BalanceService
from src.balances.engine import aggregate_lines, simplify_debts

__all__ = ["BalanceService", "aggregate_lines", "simplify_debts"]
