"""
Tests for Household Expenses

Test strategy:
1. Unit tests for individual components (models, calculator)
2. Flow tests for membership and expenses against in-memory storage
3. No real API calls in tests (fakes and monkeypatching)
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from household_expenses.models import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    Expense,
    ExpenseType,
    Household,
    Member,
    month_key,
)


class TestMemberModel:
    """Tests for the member document model."""

    def test_member_defaults(self):
        """A new member is active, not an admin, and has no household."""
        member = Member(id="u1", email="A@Example.com")
        assert member.name == "User"
        assert member.email == "a@example.com"
        assert member.is_active is True
        assert member.is_admin is False
        assert member.has_household is False

    def test_member_document_uses_camel_case(self):
        """Test the users document field names."""
        member = Member(id="u1", email="a@example.com", name="Ann", household_id="h1", is_admin=True)
        doc = member.to_document()
        assert doc["householdId"] == "h1"
        assert doc["isAdmin"] is True
        assert doc["isActive"] is True

    def test_missing_is_active_reads_as_active(self):
        """Documents written before the flag existed count as active."""
        member = Member.from_document({"id": "u1", "email": "a@example.com", "name": "Ann"})
        assert member.is_active is True
        assert member.household_id is None


class TestHouseholdModel:
    """Tests for household invariants."""

    def test_household_creation(self):
        household = Household(name="  Flat 4B ", code="AB12CD", admin="u1", members=["u1"])
        assert household.name == "Flat 4B"
        assert household.id.startswith("household_")

    def test_admin_must_be_member(self):
        """Test that the admin has to be listed in members."""
        with pytest.raises(ValueError):
            Household(name="Flat", code="AB12CD", admin="u2", members=["u1"])

    def test_members_must_be_unique(self):
        with pytest.raises(ValueError):
            Household(name="Flat", code="AB12CD", admin="u1", members=["u1", "u1"])

    def test_empty_household_is_invalid(self):
        with pytest.raises(ValueError):
            Household(name="Flat", code="AB12CD", admin="u1", members=[])

    def test_lowercase_code_rejected(self):
        with pytest.raises(ValueError):
            Household(name="Flat", code="ab12cd", admin="u1", members=["u1"])

    def test_legacy_admin_id_field(self):
        """Older documents stored the admin as `adminId`."""
        household = Household.from_document({
            "id": "h1",
            "name": "Flat",
            "code": "AB12CD",
            "adminId": "u1",
            "members": ["u1", "u2"],
        })
        assert household.admin == "u1"
        assert household.members == ["u1", "u2"]


class TestExpenseModel:
    """Tests for feed entries."""

    def test_month_derived_from_timestamp(self):
        expense = Expense(
            user_id="u1",
            user_name="Ann",
            household_id="h1",
            amount=Decimal("12.50"),
            timestamp=datetime(2024, 3, 31, 23, 30, tzinfo=timezone.utc),
        )
        assert expense.month == "2024-03"

    def test_month_key_uses_utc(self):
        """An instant late on the 31st west of UTC is already next month."""
        from datetime import timedelta
        pacific = timezone(timedelta(hours=-8))
        assert month_key(datetime(2024, 3, 31, 20, 0, tzinfo=pacific)) == "2024-04"

    def test_stored_month_is_not_recomputed(self):
        """A stored month wins over the timestamp."""
        expense = Expense.from_document("e1", {
            "userId": "u1",
            "userName": "Ann",
            "householdId": "h1",
            "amount": 10,
            "timestamp": "2024-04-01T00:30:00Z",
            "month": "2024-03",
        })
        assert expense.month == "2024-03"

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            Expense(user_id="u1", user_name="Ann", household_id="h1", amount=Decimal("-1"))

    def test_system_note(self):
        note = Expense.system_note("h1", "Ann joined the household")
        assert note.is_system
        assert note.amount == Decimal("0")
        assert note.user_id is None
        assert note.user_name == "System"
        assert "userId" not in note.to_document()

    def test_system_entry_with_amount_rejected(self):
        with pytest.raises(ValueError):
            Expense(
                user_name="System",
                household_id="h1",
                amount=Decimal("5"),
                type=ExpenseType.SYSTEM,
            )

    def test_missing_type_reads_as_expense(self):
        expense = Expense.from_document("e1", {
            "userId": "u1",
            "userName": "Ann",
            "householdId": "h1",
            "amount": 19.99,
            "timestamp": "2024-05-01T10:00:00Z",
        })
        assert expense.type == ExpenseType.EXPENSE
        assert expense.amount == Decimal("19.99")
        assert expense.month == "2024-05"

    def test_document_round_trip(self):
        expense = Expense(
            user_id="u1",
            user_name="Ann",
            household_id="h1",
            amount=Decimal("3.10"),
            note="Bread",
            receipt_url="https://example.com/r.jpg",
        )
        restored = Expense.from_document(expense.id, expense.to_document())
        assert restored == expense


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.MEMBER_JOINED,
            description="Bob joined the household",
        )
        assert event.event_id is not None
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.HOUSEHOLD_CREATED,
            household_id="h1",
            description="Household created: Flat",
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "household_created"
        assert log_dict["household_id"] == "h1"

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.EXPENSE_ADDED,
            description="Expense added: 12.50",
            details={"amount": "12.50"},
        )
        row = event.to_sheets_row()
        assert len(row) == 12
        assert row[2] == "expense_added"
        assert json.loads(row[10]) == {"amount": "12.50"}

    def test_builder_household_deleted_is_warning(self):
        event = AuditEventBuilder.household_deleted(
            household_id="h1",
            actor_id="u1",
            expenses_deleted=4,
            members_released=2,
            correlation_id=uuid4(),
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.details == {"expenses_deleted": 4, "members_released": 2}

    def test_builder_expense_changed_description(self):
        event = AuditEventBuilder.expense_changed(
            event_type=AuditEventType.EXPENSE_UPDATED,
            household_id="h1",
            actor_id="u1",
            expense_id="e1",
            amount="7.00",
            correlation_id=uuid4(),
        )
        assert event.description == "Expense updated: 7.00"
        assert event.entity_type == "expense"
