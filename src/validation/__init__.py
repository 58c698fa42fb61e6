"""Ledger validation package."""

from src.validation.validator import (
    LedgerValidator,
    ValidatedExpense,
    ValidatedPayment,
    ValidatedSplit,
)

__all__ = [
    "LedgerValidator",
    "ValidatedExpense",
    "ValidatedPayment",
    "ValidatedSplit",
]
