"""
Storage Services Package

Provides abstract interfaces and the concrete implementation for ledger storage.
Currently implements SQLite (aiosqlite) as the backend, but designed to be swappable.
"""

from src.services.storage.interface import (
    ActivityStorageInterface,
    DirectoryStorageInterface,
    DuplicateError,
    ExpenseQuery,
    ExpenseStorageInterface,
    IdentityStorageInterface,
    LedgerStorage,
    RecurringStorageInterface,
    SettlementStorageInterface,
    StorageConnectionError,
    StorageError,
    TransactionalStorage,
)
from src.services.storage.schema import init_schema
from src.services.storage.sqlite import SQLiteLedgerStorage

__all__ = [
    # Interfaces
    "ActivityStorageInterface",
    "DirectoryStorageInterface",
    "ExpenseQuery",
    "ExpenseStorageInterface",
    "IdentityStorageInterface",
    "LedgerStorage",
    "RecurringStorageInterface",
    "SettlementStorageInterface",
    "TransactionalStorage",
    # Exceptions
    "DuplicateError",
    "StorageConnectionError",
    "StorageError",
    # SQLite implementation
    "SQLiteLedgerStorage",
    "init_schema",
]
