"""Services package."""

from src.services.storage import (
    ActivityStorageInterface,
    DirectoryStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    IdentityStorageInterface,
    LedgerStorage,
    RecurringStorageInterface,
    SettlementStorageInterface,
    SQLiteLedgerStorage,
    StorageConnectionError,
    StorageError,
)

__all__ = [
    "ActivityStorageInterface",
    "DirectoryStorageInterface",
    "DuplicateError",
    "ExpenseStorageInterface",
    "IdentityStorageInterface",
    "LedgerStorage",
    "RecurringStorageInterface",
    "SettlementStorageInterface",
    "SQLiteLedgerStorage",
    "StorageConnectionError",
    "StorageError",
]
