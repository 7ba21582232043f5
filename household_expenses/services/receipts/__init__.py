"""Receipt storage services package."""

from household_expenses.services.receipts.cloudinary_service import (
    CloudinaryReceiptStorage,
    InvalidReceiptError,
    ProgressCallback,
    ReceiptError,
    ReceiptStorageInterface,
    ReceiptUploadError,
    receipt_path,
)

__all__ = [
    "CloudinaryReceiptStorage",
    "InvalidReceiptError",
    "ProgressCallback",
    "ReceiptError",
    "ReceiptStorageInterface",
    "ReceiptUploadError",
    "receipt_path",
]
