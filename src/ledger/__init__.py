"""Ledger core: group and friend expenses, settlements."""

from src.ledger.access import AccessGuard, build_lines, resolve_currency
from src.ledger.expense_service import ExpenseService
from src.ledger.friend_expense_service import FriendExpenseService
from src.ledger.settlement_service import (
    FriendSettlementService,
    SettlementService,
    parse_status,
)

__all__ = [
    "AccessGuard",
    "build_lines",
    "resolve_currency",
    "ExpenseService",
    "FriendExpenseService",
    "SettlementService",
    "FriendSettlementService",
    "parse_status",
]
