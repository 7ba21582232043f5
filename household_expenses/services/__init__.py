"""Services package."""

from household_expenses.services.receipts import (
    CloudinaryReceiptStorage,
    InvalidReceiptError,
    ReceiptError,
    ReceiptStorageInterface,
    ReceiptUploadError,
)
from household_expenses.services.storage import (
    AuditStorageInterface,
    ChangeNotifier,
    ConcurrentModificationError,
    ConnectionError,
    DocumentNotFoundError,
    DuplicateError,
    ExpenseStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsStorage,
    HouseholdStorageInterface,
    InMemoryStorage,
    MemberStorageInterface,
    StorageError,
)

__all__ = [
    # Receipt services
    "CloudinaryReceiptStorage",
    "InvalidReceiptError",
    "ReceiptError",
    "ReceiptStorageInterface",
    "ReceiptUploadError",
    # Storage services
    "AuditStorageInterface",
    "ChangeNotifier",
    "ConcurrentModificationError",
    "ConnectionError",
    "DocumentNotFoundError",
    "DuplicateError",
    "ExpenseStorageInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsStorage",
    "HouseholdStorageInterface",
    "InMemoryStorage",
    "MemberStorageInterface",
    "StorageError",
]
