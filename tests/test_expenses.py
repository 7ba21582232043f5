"""Tests for the expense service."""

from decimal import Decimal

import pytest

from conftest import FakeReceiptStorage
from household_expenses.errors import (
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from household_expenses.expenses import ExpenseService, ReceiptFile, parse_amount
from household_expenses.models import AuditEventType, current_month
from household_expenses.services.storage import StorageError


class TestParseAmount:
    """Tests for user-entered amounts."""

    @pytest.mark.parametrize("raw,expected", [
        ("12.5", Decimal("12.50")),
        (" 3 ", Decimal("3.00")),
        (7, Decimal("7.00")),
        ("0.005", Decimal("0.01")),
    ])
    def test_valid_amounts(self, raw, expected):
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize("raw", ["", "abc", "-1", "NaN", "Infinity", "1" * 30, "1e40"])
    def test_invalid_amounts(self, raw):
        with pytest.raises(ValidationError):
            parse_amount(raw)


class TestAddExpense:
    """Tests for recording expenses."""

    @pytest.mark.asyncio
    async def test_add_expense(self, expense_service, store, alice, household):
        expense = await expense_service.add_expense(alice, "12.50", note="  Milk ")

        assert expense.user_id == "alice"
        assert expense.user_name == "Alice"
        assert expense.household_id == household.id
        assert expense.amount == Decimal("12.50")
        assert expense.note == "Milk"
        assert expense.month == current_month()
        assert store.transactions[expense.id]["amount"] == 12.5

    @pytest.mark.asyncio
    async def test_requires_household(self, expense_service, bob):
        with pytest.raises(ConflictError):
            await expense_service.add_expense(bob, "5")

    @pytest.mark.asyncio
    async def test_bad_amount_saves_nothing(self, expense_service, store, alice, household):
        with pytest.raises(ValidationError):
            await expense_service.add_expense(alice, "twelve")
        assert store.transactions == {}

    @pytest.mark.asyncio
    async def test_huge_amount_rejected(self, expense_service, store, alice, household):
        with pytest.raises(ValidationError, match="too large"):
            await expense_service.add_expense(alice, "1e40")
        assert store.transactions == {}

    @pytest.mark.asyncio
    async def test_receipt_uploaded_with_progress(self, expense_service, receipts, alice, household):
        progress = []
        expense = await expense_service.add_expense(
            alice,
            "20",
            receipt=ReceiptFile(filename="till slip.jpg", data=b"jpeg-bytes"),
            on_progress=progress.append,
        )

        assert expense.receipt_url.endswith(f"{household.id}/1700000000000_till_slip")
        assert receipts.uploads == [(household.id, "till slip.jpg", b"jpeg-bytes")]
        assert progress == [0.0, 100.0]

    @pytest.mark.asyncio
    async def test_failed_receipt_still_saves_expense(self, store, audit_logger, alice, household):
        service = ExpenseService(
            store, store, store,
            receipts=FakeReceiptStorage(fail=True),
            audit_logger=audit_logger,
        )

        expense = await service.add_expense(
            alice, "20", receipt=ReceiptFile(filename="r.png", data=b"png")
        )

        assert expense.receipt_url is None
        assert expense.id in store.transactions
        types = [e.event_type for e in store.audit_events]
        assert AuditEventType.RECEIPT_UPLOAD_FAILED in types
        assert AuditEventType.EXPENSE_ADDED in types

    @pytest.mark.asyncio
    async def test_receipt_without_storage_configured(self, store, alice, household):
        service = ExpenseService(store, store, store)
        expense = await service.add_expense(
            alice, "4", receipt=ReceiptFile(filename="r.png", data=b"png")
        )
        assert expense.receipt_url is None

    @pytest.mark.asyncio
    async def test_month_is_fixed_at_creation(self, expense_service, store, alice, household):
        expense = await expense_service.add_expense(alice, "1")
        store.transactions[expense.id]["timestamp"] = "1999-01-01T00:00:00Z"

        reread = await store.get_expense(expense.id)
        assert reread.month == expense.month


class TestAdminEdits:
    """Tests for admin update and delete."""

    @pytest.mark.asyncio
    async def test_update_amount_and_note(self, expense_service, manager, alice, household, bob):
        await manager.join_household(bob, household.code)
        expense = await expense_service.add_expense(bob, "10", note="Eggs")

        updated = await expense_service.update_expense(alice, expense.id, amount="11.25", note="Eggs x12")

        assert updated.amount == Decimal("11.25")
        assert updated.note == "Eggs x12"
        assert updated.user_id == "bob"
        assert updated.timestamp == expense.timestamp

    @pytest.mark.asyncio
    async def test_update_keeps_unspecified_fields(self, expense_service, alice, household):
        expense = await expense_service.add_expense(alice, "10", note="Eggs")
        updated = await expense_service.update_expense(alice, expense.id, amount="9")
        assert updated.note == "Eggs"

    @pytest.mark.asyncio
    async def test_non_admin_cannot_edit(self, expense_service, manager, alice, household, bob):
        await manager.join_household(bob, household.code)
        expense = await expense_service.add_expense(alice, "10")

        with pytest.raises(AuthorizationError):
            await expense_service.update_expense(bob, expense.id, amount="1")
        with pytest.raises(AuthorizationError):
            await expense_service.delete_expense(bob, expense.id)

    @pytest.mark.asyncio
    async def test_other_household_expense_not_found(self, expense_service, manager, alice, household, bob):
        await manager.create_household(bob, "Bob's place")
        theirs = await expense_service.add_expense(bob, "10")

        with pytest.raises(NotFoundError):
            await expense_service.delete_expense(alice, theirs.id)

    @pytest.mark.asyncio
    async def test_system_notes_cannot_be_edited(self, expense_service, manager, store, alice, household, bob):
        await manager.join_household(bob, household.code)
        note = next(e for e in await store.list_expenses(household.id) if e.is_system)

        with pytest.raises(ConflictError):
            await expense_service.update_expense(alice, note.id, note="edited")

    @pytest.mark.asyncio
    async def test_delete(self, expense_service, store, alice, household):
        expense = await expense_service.add_expense(alice, "10")
        await expense_service.delete_expense(alice, expense.id)
        assert await store.get_expense(expense.id) is None


class TestFeed:
    """Tests for listing, live updates and settlement."""

    @pytest.mark.asyncio
    async def test_list_newest_first(self, expense_service, alice, household):
        first = await expense_service.add_expense(alice, "1")
        second = await expense_service.add_expense(alice, "2")

        feed = await expense_service.list_expenses(alice)
        assert {e.id for e in feed} == {first.id, second.id}
        assert feed[0].timestamp >= feed[1].timestamp

    @pytest.mark.asyncio
    async def test_list_without_household(self, expense_service, bob):
        assert await expense_service.list_expenses(bob) == []

    @pytest.mark.asyncio
    async def test_store_failure_is_audited(self, expense_service, store, alice, household, monkeypatch):
        async def broken_list(household_id, month=None):
            raise StorageError("read timed out")

        monkeypatch.setattr(store, "list_expenses", broken_list)

        with pytest.raises(ExternalServiceError) as exc_info:
            await expense_service.list_expenses(alice)

        assert exc_info.value.message == "document store error: read timed out"
        event_types = [e.event_type for e in store.audit_events]
        assert AuditEventType.EXTERNAL_SERVICE_ERROR in event_types

    @pytest.mark.asyncio
    async def test_subscribe_delivers_changes(self, expense_service, alice, household):
        feeds = []
        unsubscribe = await expense_service.subscribe(alice, feeds.append)
        assert feeds == [[]]

        await expense_service.add_expense(alice, "5")
        assert len(feeds) == 2
        assert len(feeds[-1]) == 1

        unsubscribe()
        await expense_service.add_expense(alice, "6")
        assert len(feeds) == 2

    @pytest.mark.asyncio
    async def test_subscriber_sees_membership_notes(self, expense_service, manager, alice, household, bob):
        feeds = []
        await expense_service.subscribe(alice, feeds.append)

        await manager.join_household(bob, household.code)

        assert [e.note for e in feeds[-1]] == ["Bob joined the household"]

    @pytest.mark.asyncio
    async def test_settle_current_month(self, expense_service, manager, alice, household, bob):
        await manager.join_household(bob, household.code)
        await expense_service.add_expense(alice, "30")
        await expense_service.add_expense(bob, "10")

        result = await expense_service.settle(alice)

        assert result.period == current_month()
        assert result.participant_count == 2
        assert result.for_member("bob").should_pay == pytest.approx(10.0)
        assert result.for_member("alice").should_receive == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_stats(self, expense_service, manager, alice, household, bob):
        await manager.join_household(bob, household.code)
        await expense_service.add_expense(alice, "30")
        await expense_service.add_expense(bob, "10")

        stats = await expense_service.stats(bob)
        assert stats.member_month_total == pytest.approx(10.0)
        assert stats.household_month_total == pytest.approx(40.0)
        assert stats.this_week_total == pytest.approx(40.0)
