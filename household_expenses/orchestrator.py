"""
Application Wiring for Household Expenses

This module builds the services a front end talks to:
1. MembershipManager (household and member transitions)
2. ExpenseService (feed, receipts, settlement and stats)

DESIGN DECISION: Every backend is optional at wiring time.
- No Google credentials: documents live in process memory
- No Cloudinary credentials: expenses are saved without receipts
- Audit events are always logged locally; they are persisted only when
  the Sheets backend is available

Both services share one store instance so that feed subscribers see
membership notes and expenses through the same notifier.
"""

from typing import Optional, Union

import structlog

from household_expenses.audit import AuditLogger
from household_expenses.config import get_settings
from household_expenses.expenses import ExpenseService
from household_expenses.membership import MembershipManager
from household_expenses.services.receipts import (
    CloudinaryReceiptStorage,
    ReceiptStorageInterface,
)
from household_expenses.services.storage import (
    ChangeNotifier,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsStorage,
    InMemoryStorage,
)


logger = structlog.get_logger(__name__)


def _receipt_storage() -> Optional[ReceiptStorageInterface]:
    try:
        return CloudinaryReceiptStorage()
    except Exception as e:
        # Cloudinary not configured - expenses are saved without receipts
        logger.warning("receipt_storage_unavailable", error=str(e))
        return None


def create_app_components(
    use_storage: bool = True,
) -> tuple[MembershipManager, ExpenseService, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for testing without storage.

    Returns:
        (membership_manager, expense_service, sheets_client)
    """
    notifier = ChangeNotifier()
    sheets_client = None
    store: Union[GoogleSheetsStorage, InMemoryStorage]

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            store = GoogleSheetsStorage(sheets_client, notifier)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("document_store_unavailable", error=str(e))
            sheets_client = None
            store = InMemoryStorage(notifier)
            audit_logger = AuditLogger()  # Local-only logging
    else:
        store = InMemoryStorage(notifier)
        audit_logger = AuditLogger()  # Local-only logging

    membership = MembershipManager(
        members=store,
        households=store,
        expenses=store,
        audit_logger=audit_logger,
        settings=get_settings().app,
    )

    expenses = ExpenseService(
        members=store,
        households=store,
        expenses=store,
        receipts=_receipt_storage(),
        audit_logger=audit_logger,
    )

    return membership, expenses, sheets_client
