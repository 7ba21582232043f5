"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the document
store. Ships an in-memory backend and a Google Sheets backend, designed to
be swappable.
"""

from household_expenses.services.storage.interface import (
    AuditStorageInterface,
    ChangeCallback,
    ConcurrentModificationError,
    ConnectionError,
    DocumentNotFoundError,
    DuplicateError,
    ExpenseStorageInterface,
    HouseholdStorageInterface,
    MemberStorageInterface,
    StorageError,
    Unsubscribe,
)
from household_expenses.services.storage.memory import InMemoryStorage
from household_expenses.services.storage.notifier import ChangeNotifier
from household_expenses.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ExpenseStorageInterface",
    "HouseholdStorageInterface",
    "MemberStorageInterface",
    "ChangeCallback",
    "Unsubscribe",
    # Exceptions
    "ConcurrentModificationError",
    "ConnectionError",
    "DocumentNotFoundError",
    "DuplicateError",
    "StorageError",
    # Implementations
    "ChangeNotifier",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsStorage",
    "InMemoryStorage",
]
