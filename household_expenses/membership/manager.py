"""
Membership Manager

Executes every transition on a household's member set: create, join by
code, invite by email, leave, remove, delete and the admin's active toggle.

DESIGN DECISION: A transition touches several documents (the household,
one or more member documents, a system note in the feed). To keep them
from being observed half-applied:
1. Transitions on one household run one at a time (per-household lock)
2. The household document is written with compare-and-swap on its
   (members, admin) pair, so a writer outside this process cannot be
   silently overwritten; a lost race is retried from a fresh read
3. Every applied write records how to undo itself. If a later write
   fails, the undo steps run in reverse and the caller gets
   ExternalServiceError

The acting member is always passed in explicitly. There is no ambient
"current user".

Emptying policy: whenever a transition leaves a household with no
members (leave or remove), the household and all of its expenses are
deleted.
"""

import asyncio
import secrets
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from household_expenses.audit import AuditLogger, create_correlation_id
from household_expenses.config import AppSettings, get_settings
from household_expenses.errors import (
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from household_expenses.models.audit import AuditEventType
from household_expenses.models.household import (
    JOIN_CODE_ALPHABET,
    NAME_MAX_LENGTH,
    Expense,
    Household,
    Member,
    Principal,
)
from household_expenses.services.storage import (
    ConcurrentModificationError,
    DuplicateError,
    ExpenseStorageInterface,
    HouseholdStorageInterface,
    MemberStorageInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)

STORE_SERVICE = "document store"

UndoStep = Callable[[], Awaitable[object]]


def _display_name(display_name: Optional[str]) -> str:
    name = (display_name or "").strip()[:NAME_MAX_LENGTH].strip()
    return name or "User"


def generate_join_code(length: int = 6) -> str:
    """Draw `length` characters uniformly from A-Z0-9."""
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(length))


@asynccontextmanager
async def store_errors(audit_logger: Optional[AuditLogger] = None):
    """Surface storage failures as ExternalServiceError, auditing each one."""
    try:
        yield
    except ConcurrentModificationError:
        raise
    except StorageError as e:
        logger.error("store_error", error=str(e))
        if audit_logger is not None:
            await audit_logger.log_external_service_error(STORE_SERVICE, str(e))
        raise ExternalServiceError(STORE_SERVICE, str(e)) from e


class Transition:
    """Undo log for one multi-document membership change."""

    def __init__(self, operation: str):
        self.operation = operation
        self._undo: list[UndoStep] = []

    def on_rollback(self, step: UndoStep) -> None:
        self._undo.append(step)

    async def rollback(self) -> int:
        """Run the undo steps newest first. Returns how many succeeded."""
        undone = 0
        while self._undo:
            step = self._undo.pop()
            try:
                await step()
                undone += 1
            except Exception as e:
                logger.error(
                    "rollback_step_failed",
                    operation=self.operation,
                    error=str(e),
                )
        return undone


class MembershipManager:
    """
    Membership transitions over injected stores.

    Usage:
        manager = MembershipManager(store, store, store, audit_logger)
        member = await manager.ensure_member(principal)
        household = await manager.create_household(member, "Flat 4B")
    """

    def __init__(
        self,
        members: MemberStorageInterface,
        households: HouseholdStorageInterface,
        expenses: ExpenseStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._members = members
        self._households = households
        self._expenses = expenses
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().app
        self._locks: dict[str, asyncio.Lock] = {}

    # =========================================================================
    # PLUMBING
    # =========================================================================

    def _lock(self, household_id: str) -> asyncio.Lock:
        return self._locks.setdefault(household_id, asyncio.Lock())

    def _forget_lock(self, household_id: str) -> None:
        """Drop the lock of a household that no longer exists."""
        lock = self._locks.get(household_id)
        if lock is not None and not lock.locked():
            del self._locks[household_id]

    async def _apply(
        self,
        operation: str,
        household_id: Optional[str],
        actor_id: str,
        correlation_id: UUID,
        body: Callable[[Transition], Awaitable],
    ):
        """
        Run a transition body, retrying lost compare-and-swap races.

        The body is called with a fresh Transition on every attempt and
        must re-read whatever state it depends on.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.membership_retry_attempts),
            wait=wait_exponential(multiplier=0.05, max=1),
            retry=retry_if_exception_type(ConcurrentModificationError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    transition = Transition(operation)
                    try:
                        return await body(transition)
                    except ConcurrentModificationError:
                        await transition.rollback()
                        logger.warning(
                            "membership_write_conflict",
                            operation=operation,
                            household_id=household_id,
                            attempt=attempt.retry_state.attempt_number,
                        )
                        raise
                    except StorageError as e:
                        undone = await transition.rollback()
                        await self._audit.log_rollback(
                            operation=operation,
                            household_id=household_id,
                            actor_id=actor_id,
                            error_message=str(e),
                            undone_steps=undone,
                            correlation_id=correlation_id,
                        )
                        raise ExternalServiceError(STORE_SERVICE, str(e)) from e
                    except Exception:
                        await transition.rollback()
                        raise
        except ConcurrentModificationError as e:
            raise ConflictError(
                "The household was changed by someone else at the same time. "
                "Please try again."
            ) from e

    async def _load_member(self, member_id: str) -> Member:
        member = await self._members.get_member(member_id)
        if member is None:
            raise NotFoundError(f"Member not found: {member_id}")
        return member

    async def _require_admin(self, actor_id: str) -> Household:
        """The household `actor_id` administers, or AuthorizationError."""
        actor = await self._load_member(actor_id)
        household = None
        if actor.household_id:
            household = await self._households.get_household(actor.household_id)
        if household is None or household.admin != actor.id:
            raise AuthorizationError("Only the household admin can do this")
        return household

    async def _reload_as_admin(self, household_id: str, actor_id: str) -> Household:
        household = await self._households.get_household(household_id)
        if household is None or household.admin != actor_id:
            raise AuthorizationError("Only the household admin can do this")
        return household

    def _system_note(self, household_id: str, message: str) -> Expense:
        return Expense.system_note(
            household_id,
            message,
            author_name=self._settings.system_author_name,
        )

    # -------------------------------------------------------------------------
    # Undoable writes
    # -------------------------------------------------------------------------

    async def _write_member(self, transition: Transition, before: Member, after: Member) -> None:
        await self._members.save_member(after)
        transition.on_rollback(lambda: self._members.save_member(before))

    async def _swap_household(self, transition: Transition, before: Household, after: Household) -> None:
        await self._households.replace_household(after, expected=before)
        transition.on_rollback(
            lambda: self._households.replace_household(before, expected=after)
        )

    async def _post_note(self, transition: Transition, household_id: str, message: str) -> Expense:
        note = self._system_note(household_id, message)
        await self._expenses.save_expense(note)
        transition.on_rollback(lambda: self._expenses.delete_expense(note.id))
        return note

    async def _release(
        self,
        transition: Transition,
        member: Member,
        household_id: str,
        reactivate: bool = True,
    ) -> None:
        """Clear a member's association with `household_id`, if they still have it."""
        if member.household_id != household_id:
            return
        changes = {"household_id": None, "is_admin": False}
        if reactivate:
            changes["is_active"] = True
        released = member.model_copy(update=changes)
        await self._write_member(transition, member, released)

    async def _dissolve(
        self,
        transition: Transition,
        household: Household,
        member_ids: list[str],
        reactivate: bool = True,
    ) -> tuple[int, int]:
        """
        Delete a household, its expenses, and every listed member's association.

        Leaving resets the leaver's active flag; an admin delete leaves
        each member's flag as it was.

        Returns (expenses deleted, members released).
        """
        deleted = await self._expenses.delete_expenses_for_household(household.id)

        async def restore_expenses():
            for expense in deleted:
                await self._expenses.save_expense(expense)

        transition.on_rollback(restore_expenses)

        await self._households.delete_household(household.id)
        transition.on_rollback(lambda: self._households.create_household(household))

        released = 0
        for member in await self._members.list_members(member_ids):
            if member.household_id == household.id:
                await self._release(transition, member, household.id, reactivate)
                released += 1

        return len(deleted), released

    # =========================================================================
    # MEMBER BOOTSTRAP
    # =========================================================================

    async def ensure_member(self, principal: Principal) -> Member:
        """
        Get the member document for an authenticated principal, creating it
        on first sign-in. Display names longer than the member name limit
        are cut to fit.
        """
        async with store_errors(self._audit):
            member = await self._members.get_member(principal.id)
            if member is not None:
                return member

            member = Member(
                id=principal.id,
                email=principal.email,
                name=_display_name(principal.display_name),
            )
            await self._members.save_member(member)

        await self._audit.log_membership_change(
            event_type=AuditEventType.MEMBER_REGISTERED,
            household_id=None,
            actor_id=member.id,
            member_id=member.id,
            description=f"Member registered: {member.name}",
            correlation_id=create_correlation_id(),
        )
        return member

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_household(self, founder: Member, name: str) -> Household:
        """
        Create a household with `founder` as its only member and admin.

        Raises:
            ValidationError: If the name is blank or too long
            ConflictError: If the founder already has a household, or no
                unused join code could be drawn
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Household name is required")
        if len(name) > NAME_MAX_LENGTH:
            raise ValidationError(
                f"Household name is too long (max {NAME_MAX_LENGTH} characters)"
            )

        correlation_id = create_correlation_id()

        async with store_errors(self._audit):
            current = await self._load_member(founder.id)
        if current.household_id:
            raise ConflictError("You already belong to a household. Leave it first.")

        async def body(transition: Transition) -> Household:
            household = await self._insert_with_unique_code(founder.id, name)
            transition.on_rollback(lambda: self._households.delete_household(household.id))

            await self._write_member(
                transition,
                current,
                current.model_copy(update={
                    "household_id": household.id,
                    "is_admin": True,
                    "is_active": True,
                }),
            )
            return household

        household = await self._apply("create_household", None, founder.id, correlation_id, body)

        logger.info("household_created", household_id=household.id, code=household.code)
        await self._audit.log_household_created(
            household_id=household.id,
            actor_id=founder.id,
            name=household.name,
            correlation_id=correlation_id,
        )
        return household

    async def _insert_with_unique_code(self, founder_id: str, name: str) -> Household:
        attempts = self._settings.join_code_max_attempts
        for _ in range(attempts):
            code = generate_join_code(self._settings.join_code_length)
            if await self._households.find_household_by_code(code) is not None:
                logger.debug("join_code_collision", code=code)
                continue

            household = Household(name=name, code=code, admin=founder_id, members=[founder_id])
            try:
                await self._households.create_household(household)
            except DuplicateError:
                logger.debug("join_code_collision", code=code)
                continue
            return household

        raise ConflictError(
            f"Could not generate a unique join code after {attempts} attempts"
        )

    # =========================================================================
    # JOIN / INVITE
    # =========================================================================

    async def join_household(self, member: Member, code: str) -> Household:
        """
        Join the household whose join code matches `code`.

        A member still listed in the household but with no association
        (for example after a failed leave) is re-admitted as a rejoin.

        Raises:
            NotFoundError: No household has that code
            ConflictError: Already a member, or a member of another household
        """
        code = (code or "").strip().upper()
        if not code:
            raise ValidationError("Join code is required")

        async with store_errors(self._audit):
            household = await self._households.find_household_by_code(code)
        if household is None:
            raise NotFoundError("Invalid invite code")

        correlation_id = create_correlation_id()
        async with self._lock(household.id):
            return await self._apply(
                "join_household",
                household.id,
                member.id,
                correlation_id,
                lambda t: self._admit(t, member.id, household.id, member.id, correlation_id),
            )

    async def invite_by_email(self, admin: Member, email: str) -> Household:
        """
        Add the member registered under `email` to the admin's household.

        Raises:
            AuthorizationError: Caller is not the household admin
            NotFoundError: No member has that email
            ConflictError: That member already belongs to a household
        """
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("Email is required")

        async with store_errors(self._audit):
            household = await self._require_admin(admin.id)
            invitee = await self._members.find_member_by_email(email)
        if invitee is None:
            raise NotFoundError(f"No user found with email: {email}")
        if invitee.household_id:
            raise ConflictError(f"{invitee.name} already belongs to a household")

        correlation_id = create_correlation_id()

        async def body(transition: Transition) -> Household:
            await self._reload_as_admin(household.id, admin.id)
            return await self._admit(
                transition, invitee.id, household.id, admin.id, correlation_id,
                invited=True,
            )

        async with self._lock(household.id):
            return await self._apply("invite_by_email", household.id, admin.id, correlation_id, body)

    async def _admit(
        self,
        transition: Transition,
        member_id: str,
        household_id: str,
        actor_id: str,
        correlation_id: UUID,
        invited: bool = False,
    ) -> Household:
        household = await self._households.get_household(household_id)
        if household is None:
            raise NotFoundError("Invalid invite code")
        member = await self._load_member(member_id)

        if member.id in household.members:
            if member.household_id:
                raise ConflictError("You are already a member of this household")
            rejoining = True
            updated = household
        else:
            if member.household_id:
                raise ConflictError("You already belong to another household")
            rejoining = False
            updated = household.model_copy(update={"members": household.members + [member.id]})
            await self._swap_household(transition, household, updated)

        await self._write_member(
            transition,
            member,
            member.model_copy(update={
                "household_id": household.id,
                "is_admin": False,
                "is_active": True,
            }),
        )

        verb = "rejoined" if rejoining else "joined"
        await self._post_note(transition, household.id, f"{member.name} {verb} the household")

        if rejoining:
            event_type = AuditEventType.MEMBER_REJOINED
        elif invited:
            event_type = AuditEventType.MEMBER_INVITED
        else:
            event_type = AuditEventType.MEMBER_JOINED
        await self._audit.log_membership_change(
            event_type=event_type,
            household_id=household.id,
            actor_id=actor_id,
            member_id=member.id,
            description=f"{member.name} {verb} the household",
            correlation_id=correlation_id,
        )
        return updated

    # =========================================================================
    # LEAVE / REMOVE
    # =========================================================================

    async def leave_household(self, member: Member) -> Optional[Household]:
        """
        Leave the member's household.

        Returns the updated household, or None if leaving emptied it and
        it was deleted along with its expenses.
        """
        async with store_errors(self._audit):
            current = await self._load_member(member.id)
        if not current.household_id:
            raise ConflictError("You are not in a household")

        household_id = current.household_id
        correlation_id = create_correlation_id()

        async def body(transition: Transition) -> Optional[Household]:
            leaver = await self._load_member(member.id)
            household = await self._households.get_household(household_id)
            if household is None or leaver.id not in household.members:
                # Stale association with a household that no longer lists us
                await self._release(transition, leaver, household_id)
                return None

            return await self._drop_member(
                transition, household, leaver, member.id, correlation_id,
                event_type=AuditEventType.MEMBER_LEFT,
                message=f"{leaver.name} left the household",
            )

        async with self._lock(household_id):
            updated = await self._apply("leave_household", household_id, member.id, correlation_id, body)
        if updated is None:
            self._forget_lock(household_id)
        return updated

    async def remove_member(self, admin: Member, target_id: str) -> Optional[Household]:
        """
        Remove another member from the admin's household.

        Raises:
            AuthorizationError: Caller is not the household admin
            ConflictError: Admin targeted themselves
            NotFoundError: Target is not in the household
        """
        async with store_errors(self._audit):
            household = await self._require_admin(admin.id)
        if target_id == admin.id:
            raise ConflictError("You cannot remove yourself. Leave the household instead.")

        correlation_id = create_correlation_id()

        async def body(transition: Transition) -> Optional[Household]:
            current = await self._reload_as_admin(household.id, admin.id)
            if target_id not in current.members:
                raise NotFoundError("That member is not in your household")

            target = await self._members.get_member(target_id)
            if target is None:
                # Listed but no document: drop the dangling id
                target = Member(id=target_id)

            return await self._drop_member(
                transition, current, target, admin.id, correlation_id,
                event_type=AuditEventType.MEMBER_REMOVED,
                message=f"{target.name} was removed from the household",
            )

        async with self._lock(household.id):
            updated = await self._apply("remove_member", household.id, admin.id, correlation_id, body)
        if updated is None:
            self._forget_lock(household.id)
        return updated

    async def _drop_member(
        self,
        transition: Transition,
        household: Household,
        member: Member,
        actor_id: str,
        correlation_id: UUID,
        event_type: AuditEventType,
        message: str,
    ) -> Optional[Household]:
        """Take `member` out of `household`, deleting the household if it empties."""
        remaining = [m for m in household.members if m != member.id]

        if not remaining:
            expenses_deleted, released = await self._dissolve(
                transition, household, [member.id]
            )
            logger.info("household_emptied", household_id=household.id)
            await self._audit.log_household_deleted(
                household_id=household.id,
                actor_id=actor_id,
                expenses_deleted=expenses_deleted,
                members_released=released,
                correlation_id=correlation_id,
            )
            return None

        new_admin = household.admin if household.admin != member.id else remaining[0]
        updated = household.model_copy(update={"members": remaining, "admin": new_admin})
        await self._swap_household(transition, household, updated)

        if new_admin != household.admin:
            successor = await self._members.get_member(new_admin)
            if successor is not None:
                await self._write_member(
                    transition, successor, successor.model_copy(update={"is_admin": True})
                )

        await self._release(transition, member, household.id)
        await self._post_note(transition, household.id, message)

        await self._audit.log_membership_change(
            event_type=event_type,
            household_id=household.id,
            actor_id=actor_id,
            member_id=member.id,
            description=message,
            correlation_id=correlation_id,
        )
        if new_admin != household.admin:
            await self._audit.log_membership_change(
                event_type=AuditEventType.ADMIN_REASSIGNED,
                household_id=household.id,
                actor_id=actor_id,
                member_id=new_admin,
                description=f"Admin passed to {new_admin}",
                correlation_id=correlation_id,
                details={"previous_admin": household.admin},
            )
        return updated

    # =========================================================================
    # ADMIN ACTIONS
    # =========================================================================

    async def delete_household(self, admin: Member) -> None:
        """Delete the admin's household, its expenses, and every member's association."""
        async with store_errors(self._audit):
            household = await self._require_admin(admin.id)

        correlation_id = create_correlation_id()

        async def body(transition: Transition) -> tuple[int, int]:
            current = await self._reload_as_admin(household.id, admin.id)
            return await self._dissolve(
                transition, current, current.members, reactivate=False
            )

        async with self._lock(household.id):
            expenses_deleted, released = await self._apply(
                "delete_household", household.id, admin.id, correlation_id, body
            )
        self._forget_lock(household.id)

        logger.info("household_deleted", household_id=household.id)
        await self._audit.log_household_deleted(
            household_id=household.id,
            actor_id=admin.id,
            expenses_deleted=expenses_deleted,
            members_released=released,
            correlation_id=correlation_id,
        )

    async def toggle_member_active(self, admin: Member, target_id: str) -> Member:
        """Flip a household member's active flag. Membership and admin role are untouched."""
        async with store_errors(self._audit):
            household = await self._require_admin(admin.id)

        correlation_id = create_correlation_id()

        async def body(transition: Transition) -> Member:
            current = await self._reload_as_admin(household.id, admin.id)
            target = await self._members.get_member(target_id)
            if target is None or target_id not in current.members or target.household_id != current.id:
                raise NotFoundError("That member is not in your household")

            toggled = target.model_copy(update={"is_active": not target.is_active})
            await self._write_member(transition, target, toggled)
            return toggled

        async with self._lock(household.id):
            toggled = await self._apply(
                "toggle_member_active", household.id, admin.id, correlation_id, body
            )

        await self._audit.log_membership_change(
            event_type=AuditEventType.MEMBER_STATUS_TOGGLED,
            household_id=household.id,
            actor_id=admin.id,
            member_id=toggled.id,
            description=f"{toggled.name} is now {'active' if toggled.is_active else 'inactive'}",
            correlation_id=correlation_id,
            details={"is_active": toggled.is_active},
        )
        return toggled
