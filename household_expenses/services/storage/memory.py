"""
In-Memory Storage Implementation

Keeps every collection as a dict of documents, exactly as the document
store would hold them, so model conversion is exercised on every read
and write. Used by the test suite and for local runs without Google
credentials.

Each call is a single step on the event loop with no await in between
its read and write, so conditional writes here are truly atomic.
"""

import copy
from typing import Optional

from household_expenses.models.audit import AuditEvent
from household_expenses.models.household import Expense, Household, Member
from household_expenses.services.storage.interface import (
    AuditStorageInterface,
    ChangeCallback,
    ConcurrentModificationError,
    DocumentNotFoundError,
    DuplicateError,
    ExpenseStorageInterface,
    HouseholdStorageInterface,
    MemberStorageInterface,
    Unsubscribe,
)
from household_expenses.services.storage.notifier import ChangeNotifier


class InMemoryStorage(
    MemberStorageInterface,
    HouseholdStorageInterface,
    ExpenseStorageInterface,
    AuditStorageInterface,
):
    """All four stores backed by process-local dicts."""

    def __init__(self, notifier: Optional[ChangeNotifier] = None):
        self.users: dict[str, dict] = {}
        self.households: dict[str, dict] = {}
        self.transactions: dict[str, dict] = {}
        self.audit_events: list[AuditEvent] = []
        self._notifier = notifier or ChangeNotifier()

    # -------------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------------

    async def get_member(self, member_id: str) -> Optional[Member]:
        doc = self.users.get(member_id)
        return Member.from_document(copy.deepcopy(doc)) if doc else None

    async def find_member_by_email(self, email: str) -> Optional[Member]:
        for doc in self.users.values():
            if doc.get("email") == email:
                return Member.from_document(copy.deepcopy(doc))
        return None

    async def list_members(self, member_ids: list[str]) -> list[Member]:
        return [
            Member.from_document(copy.deepcopy(self.users[member_id]))
            for member_id in member_ids
            if member_id in self.users
        ]

    async def save_member(self, member: Member) -> bool:
        self.users[member.id] = member.to_document()
        return True

    # -------------------------------------------------------------------------
    # Households
    # -------------------------------------------------------------------------

    async def get_household(self, household_id: str) -> Optional[Household]:
        doc = self.households.get(household_id)
        return Household.from_document(copy.deepcopy(doc)) if doc else None

    async def find_household_by_code(self, code: str) -> Optional[Household]:
        for doc in self.households.values():
            if doc.get("code") == code:
                return Household.from_document(copy.deepcopy(doc))
        return None

    async def create_household(self, household: Household) -> bool:
        if household.id in self.households:
            raise DuplicateError(f"Household already exists: {household.id}")
        if any(doc.get("code") == household.code for doc in self.households.values()):
            raise DuplicateError(f"Join code already in use: {household.code}")
        self.households[household.id] = household.to_document()
        return True

    async def replace_household(
        self,
        household: Household,
        expected: Household,
    ) -> bool:
        current = self.households.get(household.id)
        if current is None:
            raise ConcurrentModificationError(f"Household no longer exists: {household.id}")
        if current["members"] != expected.members or current["admin"] != expected.admin:
            raise ConcurrentModificationError(f"Household changed concurrently: {household.id}")
        self.households[household.id] = household.to_document()
        return True

    async def delete_household(self, household_id: str) -> bool:
        return self.households.pop(household_id, None) is not None

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def save_expense(self, expense: Expense) -> bool:
        self.transactions[expense.id] = expense.to_document()
        await self._notifier.notify(expense.household_id)
        return True

    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        doc = self.transactions.get(expense_id)
        return Expense.from_document(expense_id, copy.deepcopy(doc)) if doc else None

    async def update_expense(self, expense: Expense) -> bool:
        if expense.id not in self.transactions:
            raise DocumentNotFoundError(f"Expense not found: {expense.id}")
        self.transactions[expense.id] = expense.to_document()
        await self._notifier.notify(expense.household_id)
        return True

    async def delete_expense(self, expense_id: str) -> bool:
        doc = self.transactions.pop(expense_id, None)
        if doc is None:
            return False
        await self._notifier.notify(doc["householdId"])
        return True

    async def list_expenses(
        self,
        household_id: str,
        month: Optional[str] = None,
    ) -> list[Expense]:
        expenses = [
            Expense.from_document(doc_id, copy.deepcopy(doc))
            for doc_id, doc in self.transactions.items()
            if doc["householdId"] == household_id
            and (month is None or doc.get("month") == month)
        ]
        expenses.sort(key=lambda e: e.timestamp, reverse=True)
        return expenses

    async def delete_expenses_for_household(self, household_id: str) -> list[Expense]:
        deleted = await self.list_expenses(household_id)
        for expense in deleted:
            self.transactions.pop(expense.id, None)
        if deleted:
            await self._notifier.notify(household_id)
        return deleted

    def subscribe_expenses(
        self,
        household_id: str,
        callback: ChangeCallback,
    ) -> Unsubscribe:
        return self._notifier.subscribe(household_id, callback)

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    async def append_event(self, event: AuditEvent) -> bool:
        self.audit_events.append(event)
        return True

    async def get_recent_events(
        self,
        household_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = [
            e for e in self.audit_events
            if household_id is None or e.household_id == household_id
        ]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
