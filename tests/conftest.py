"""
Shared fixtures.

Everything runs against InMemoryStorage; no test talks to Google Sheets
or Cloudinary.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio

from household_expenses.audit import AuditLogger
from household_expenses.config import AppSettings, get_settings
from household_expenses.expenses import ExpenseService
from household_expenses.membership import MembershipManager
from household_expenses.models import Expense, Member, Principal
from household_expenses.services.receipts import (
    ReceiptStorageInterface,
    ReceiptUploadError,
    receipt_path,
)
from household_expenses.services.storage import InMemoryStorage


class FakeReceiptStorage(ReceiptStorageInterface):
    """Records uploads instead of sending them anywhere."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: list[tuple[str, str, bytes]] = []

    async def upload_receipt(self, household_id, filename, data, on_progress=None):
        if on_progress:
            on_progress(0.0)
        if self.fail:
            raise ReceiptUploadError("Cloudinary error: connection reset")
        self.uploads.append((household_id, filename, data))
        if on_progress:
            on_progress(100.0)
        path = receipt_path(household_id, filename, now_ms=1700000000000)
        return f"https://res.cloudinary.com/demo/image/upload/receipts/{path}"


def make_expense(
    user_id: Optional[str],
    user_name: str,
    amount: str,
    household_id: str = "household_1",
    when: datetime = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc),
    **kwargs,
) -> Expense:
    return Expense(
        user_id=user_id,
        user_name=user_name,
        household_id=household_id,
        amount=Decimal(amount),
        timestamp=when,
        **kwargs,
    )


@pytest.fixture
def app_settings():
    return AppSettings(
        join_code_length=6,
        join_code_max_attempts=10,
        membership_retry_attempts=3,
    )


@pytest.fixture
def store():
    return InMemoryStorage()


@pytest.fixture
def audit_logger(store):
    return AuditLogger(store)


@pytest.fixture
def manager(store, audit_logger, app_settings):
    return MembershipManager(store, store, store, audit_logger, app_settings)


@pytest.fixture
def receipts():
    return FakeReceiptStorage()


@pytest.fixture
def expense_service(store, audit_logger, receipts):
    return ExpenseService(store, store, store, receipts=receipts, audit_logger=audit_logger)


@pytest.fixture
def cloudinary_env(monkeypatch):
    """Cloudinary settings without real credentials."""
    monkeypatch.setenv("CLOUDINARY_CLOUD_NAME", "demo")
    monkeypatch.setenv("CLOUDINARY_API_KEY", "key")
    monkeypatch.setenv("CLOUDINARY_API_SECRET", "secret")
    monkeypatch.setenv("MAX_RECEIPT_SIZE_MB", "1")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


async def register(manager: MembershipManager, member_id: str, name: str) -> Member:
    return await manager.ensure_member(Principal(
        id=member_id,
        email=f"{member_id}@example.com",
        display_name=name,
    ))


@pytest_asyncio.fixture
async def alice(manager):
    return await register(manager, "alice", "Alice")


@pytest_asyncio.fixture
async def bob(manager):
    return await register(manager, "bob", "Bob")


@pytest_asyncio.fixture
async def carol(manager):
    return await register(manager, "carol", "Carol")


@pytest_asyncio.fixture
async def household(manager, alice):
    """Alice's household, Alice as admin and only member."""
    return await manager.create_household(alice, "Flat 4B")
