"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the document store.
This allows us to:
1. Swap Google Sheets for a real document database later
2. Use in-memory storage for testing
3. Keep membership and settlement logic decoupled from storage

The interface mirrors what a document store gives us: get by id, query by
equality with ordering, create, field-level update, delete, and a live
subscription to a household's expenses. Households additionally support a
conditional write so concurrent membership changes cannot overwrite each
other.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Union

from household_expenses.models.audit import AuditEvent
from household_expenses.models.household import Expense, Household, Member


ChangeCallback = Callable[[str], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


class MemberStorageInterface(ABC):
    """Storage for `users` documents."""

    @abstractmethod
    async def get_member(self, member_id: str) -> Optional[Member]:
        """Return the member, or None if there is no such document."""
        pass

    @abstractmethod
    async def find_member_by_email(self, email: str) -> Optional[Member]:
        """Exact (already normalized) email match."""
        pass

    @abstractmethod
    async def list_members(self, member_ids: list[str]) -> list[Member]:
        """
        Fetch several members at once.

        Returns members in the order of `member_ids`, skipping ids with
        no document.
        """
        pass

    @abstractmethod
    async def save_member(self, member: Member) -> bool:
        """
        Create or fully replace a member document.

        Raises:
            StorageError: If the write fails
        """
        pass


class HouseholdStorageInterface(ABC):
    """Storage for `households` documents."""

    @abstractmethod
    async def get_household(self, household_id: str) -> Optional[Household]:
        pass

    @abstractmethod
    async def find_household_by_code(self, code: str) -> Optional[Household]:
        """Exact join-code match."""
        pass

    @abstractmethod
    async def create_household(self, household: Household) -> bool:
        """
        Create a household document.

        Raises:
            DuplicateError: If the id or join code is already taken
        """
        pass

    @abstractmethod
    async def replace_household(
        self,
        household: Household,
        expected: Household,
    ) -> bool:
        """
        Conditionally overwrite a household.

        The write only happens if the stored `members` and `admin` still
        equal those of `expected` (compare-and-swap).

        Raises:
            ConcurrentModificationError: If the stored document changed
                or no longer exists
        """
        pass

    @abstractmethod
    async def delete_household(self, household_id: str) -> bool:
        """Delete a household. Returns False if it did not exist."""
        pass


class ExpenseStorageInterface(ABC):
    """Storage for `transactions` documents."""

    @abstractmethod
    async def save_expense(self, expense: Expense) -> bool:
        """
        Create an expense document (or restore a deleted one).

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        pass

    @abstractmethod
    async def update_expense(self, expense: Expense) -> bool:
        """
        Overwrite an existing expense.

        Raises:
            DocumentNotFoundError: If the expense doesn't exist
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: str) -> bool:
        """Delete an expense. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def list_expenses(
        self,
        household_id: str,
        month: Optional[str] = None,
    ) -> list[Expense]:
        """
        List a household's expenses, newest first.

        Args:
            household_id: Household to list
            month: Only entries stored with this `YYYY-MM` bucket
        """
        pass

    @abstractmethod
    async def delete_expenses_for_household(self, household_id: str) -> list[Expense]:
        """
        Delete every expense of a household.

        Returns the deleted expenses so a failed transition can put
        them back.
        """
        pass

    @abstractmethod
    def subscribe_expenses(
        self,
        household_id: str,
        callback: ChangeCallback,
    ) -> Unsubscribe:
        """
        Register a callback fired with the household id whenever one of
        its expenses is created, changed or deleted.

        Returns a callable that removes the subscription.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Returns True if logged successfully."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        household_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events (newest first), optionally for one household."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DocumentNotFoundError(StorageError):
    """Document not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate document."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class ConcurrentModificationError(StorageError):
    """A conditional write lost a race with another writer."""
    pass
