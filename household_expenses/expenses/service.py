"""
Expense Service

Adds, edits, deletes and lists a household's expenses, and feeds the
settlement calculator with the current month.

DESIGN DECISION: A receipt never blocks an expense. The receipt is
uploaded first; if that fails the failure is logged and audited and the
expense is saved without a receipt URL.

Author, household and timestamp are fixed at creation. An admin edit
touches amount and note only.
"""

import inspect
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Awaitable, Callable, Optional, Union

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict, Field

from household_expenses.audit import AuditLogger, create_correlation_id
from household_expenses.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from household_expenses.membership.manager import store_errors
from household_expenses.models.audit import AuditEventType
from household_expenses.models.household import Expense, Household, Member, current_month
from household_expenses.models.settlement import MonthlyStats, SettlementResult
from household_expenses.services.receipts import (
    ProgressCallback,
    ReceiptError,
    ReceiptStorageInterface,
)
from household_expenses.services.storage import (
    ExpenseStorageInterface,
    HouseholdStorageInterface,
    MemberStorageInterface,
    Unsubscribe,
)
from household_expenses.settlement import compute_settlement, summarize_month


logger = structlog.get_logger(__name__)

FeedCallback = Callable[[list[Expense]], Union[None, Awaitable[None]]]


class ReceiptFile(BaseModel):
    """A receipt image picked by the member, not yet uploaded."""
    model_config = ConfigDict(str_strip_whitespace=True)

    filename: str = Field(default="receipt", min_length=1)
    data: bytes
    content_type: Optional[str] = None


def parse_amount(value: Union[str, int, float, Decimal]) -> Decimal:
    """
    Parse a user-entered amount into a two-place Decimal.

    Raises:
        ValidationError: Non-numeric, non-finite, negative or too large input
    """
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Please enter a valid amount")

    if not amount.is_finite():
        raise ValidationError("Please enter a valid amount")
    if amount < 0:
        raise ValidationError("Amount cannot be negative")

    try:
        return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # More digits than the decimal context holds
        raise ValidationError("Amount is too large")


def _clean_note(note: Optional[str]) -> Optional[str]:
    note = (note or "").strip()
    return note or None


class ExpenseService:
    """
    Expense operations on behalf of an explicitly passed member.

    Usage:
        service = ExpenseService(store, store, store, receipts=receipts)
        expense = await service.add_expense(member, "12.50", note="Milk")
        result = await service.settle(member)
    """

    def __init__(
        self,
        members: MemberStorageInterface,
        households: HouseholdStorageInterface,
        expenses: ExpenseStorageInterface,
        receipts: Optional[ReceiptStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._members = members
        self._households = households
        self._expenses = expenses
        self._receipts = receipts
        self._audit = audit_logger or AuditLogger()

    async def _housed_member(self, member: Member) -> Member:
        """Fresh copy of `member`, who must belong to a household."""
        async with store_errors(self._audit):
            current = await self._members.get_member(member.id)
        if current is None:
            raise NotFoundError(f"Member not found: {member.id}")
        if not current.household_id:
            raise ConflictError("You need to join a household first")
        return current

    async def _household_of(self, member: Member) -> str:
        return (await self._housed_member(member)).household_id

    async def _admin_household(self, admin: Member) -> Household:
        household_id = await self._household_of(admin)
        async with store_errors(self._audit):
            household = await self._households.get_household(household_id)
        if household is None or household.admin != admin.id:
            raise AuthorizationError("Only the household admin can do this")
        return household

    async def _household_expense(self, household: Household, expense_id: str) -> Expense:
        async with store_errors(self._audit):
            expense = await self._expenses.get_expense(expense_id)
        if expense is None or expense.household_id != household.id:
            raise NotFoundError("Expense not found")
        return expense

    # =========================================================================
    # WRITES
    # =========================================================================

    async def add_expense(
        self,
        member: Member,
        amount: Union[str, int, float, Decimal],
        note: Optional[str] = None,
        receipt: Optional[ReceiptFile] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Expense:
        """
        Record an expense paid by `member`.

        Raises:
            ValidationError: Bad amount or note
            ConflictError: Member has no household
        """
        author = await self._housed_member(member)
        household_id = author.household_id
        value = parse_amount(amount)
        correlation_id = create_correlation_id()

        receipt_url = None
        if receipt is not None:
            receipt_url = await self._upload_receipt(
                household_id, author.id, receipt, on_progress, correlation_id
            )

        try:
            expense = Expense(
                user_id=author.id,
                user_name=author.name,
                household_id=household_id,
                amount=value,
                note=_clean_note(note),
                receipt_url=receipt_url,
            )
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid expense: {e.errors()[0]['msg']}")

        async with store_errors(self._audit):
            await self._expenses.save_expense(expense)

        logger.info(
            "expense_added",
            household_id=household_id,
            expense_id=expense.id,
            has_receipt=receipt_url is not None,
        )
        await self._audit.log_expense_change(
            event_type=AuditEventType.EXPENSE_ADDED,
            household_id=household_id,
            actor_id=author.id,
            expense_id=expense.id,
            amount=str(expense.amount),
            correlation_id=correlation_id,
        )
        return expense

    async def _upload_receipt(
        self,
        household_id: str,
        actor_id: str,
        receipt: ReceiptFile,
        on_progress: Optional[ProgressCallback],
        correlation_id,
    ) -> Optional[str]:
        """Upload a receipt, or return None if it could not be stored."""
        if self._receipts is None:
            error = "Receipt storage is not configured"
        else:
            try:
                return await self._receipts.upload_receipt(
                    household_id, receipt.filename, receipt.data, on_progress
                )
            except ReceiptError as e:
                error = str(e)

        logger.warning(
            "receipt_upload_failed",
            household_id=household_id,
            filename=receipt.filename,
            error=error,
        )
        await self._audit.log_receipt_upload_failed(
            household_id=household_id,
            actor_id=actor_id,
            filename=receipt.filename,
            error_message=error,
            correlation_id=correlation_id,
        )
        return None

    async def update_expense(
        self,
        admin: Member,
        expense_id: str,
        amount: Optional[Union[str, int, float, Decimal]] = None,
        note: Optional[str] = None,
    ) -> Expense:
        """
        Admin edit of an expense's amount and/or note.

        Pass `note=""` to clear the note; `None` leaves it unchanged.
        """
        household = await self._admin_household(admin)
        expense = await self._household_expense(household, expense_id)
        if expense.is_system:
            raise ConflictError("Membership notes cannot be edited")

        changes = {}
        if amount is not None:
            changes["amount"] = parse_amount(amount)
        if note is not None:
            changes["note"] = _clean_note(note)
            if changes["note"] and len(changes["note"]) > 1000:
                raise ValidationError("Note is too long (max 1000 characters)")
        if not changes:
            return expense

        updated = expense.model_copy(update=changes)
        async with store_errors(self._audit):
            await self._expenses.update_expense(updated)

        await self._audit.log_expense_change(
            event_type=AuditEventType.EXPENSE_UPDATED,
            household_id=household.id,
            actor_id=admin.id,
            expense_id=expense.id,
            amount=str(updated.amount),
            correlation_id=create_correlation_id(),
        )
        return updated

    async def delete_expense(self, admin: Member, expense_id: str) -> None:
        """Admin delete of any entry in the household feed."""
        household = await self._admin_household(admin)
        expense = await self._household_expense(household, expense_id)

        async with store_errors(self._audit):
            await self._expenses.delete_expense(expense.id)

        await self._audit.log_expense_change(
            event_type=AuditEventType.EXPENSE_DELETED,
            household_id=household.id,
            actor_id=admin.id,
            expense_id=expense.id,
            amount=str(expense.amount),
            correlation_id=create_correlation_id(),
        )

    # =========================================================================
    # READS
    # =========================================================================

    async def list_expenses(self, member: Member, month: Optional[str] = None) -> list[Expense]:
        """The member's household feed, newest first. Empty without a household."""
        async with store_errors(self._audit):
            current = await self._members.get_member(member.id)
            if current is None or not current.household_id:
                return []
            return await self._expenses.list_expenses(current.household_id, month)

    async def subscribe(self, member: Member, callback: FeedCallback) -> Unsubscribe:
        """
        Deliver the household feed to `callback` now and after every change.

        Returns a callable that stops the deliveries.
        """
        household_id = await self._household_of(member)

        async def on_change(changed_household_id: str) -> None:
            feed = await self._expenses.list_expenses(changed_household_id)
            result = callback(feed)
            if inspect.isawaitable(result):
                await result

        unsubscribe = self._expenses.subscribe_expenses(household_id, on_change)
        async with store_errors(self._audit):
            await on_change(household_id)
        return unsubscribe

    async def settle(self, member: Member, period: Optional[str] = None) -> SettlementResult:
        """Settlement of the member's household for a month (default: current)."""
        household_id = await self._household_of(member)
        period = period or current_month()

        async with store_errors(self._audit):
            household = await self._households.get_household(household_id)
            if household is None:
                raise NotFoundError("Household not found")
            members = await self._members.list_members(household.members)
            expenses = await self._expenses.list_expenses(household_id, period)

        return compute_settlement(expenses, members, period)

    async def stats(
        self,
        member: Member,
        period: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> MonthlyStats:
        """Dashboard numbers for the member's household."""
        household_id = await self._household_of(member)
        async with store_errors(self._audit):
            expenses = await self._expenses.list_expenses(household_id)
        return summarize_month(expenses, member.id, period, now)
