"""
Core Data Models for Household Expenses

These models define the strict schemas for members, households and
expenses. They are designed to:
1. Enforce the household invariants at construction time
2. Provide clear validation error messages
3. Round-trip the document shapes the store holds, field for field

DESIGN DECISION: Documents in the store use camelCase keys
(`householdId`, `isAdmin`, `receiptUrl`). Python code uses snake_case and
converts at the edge with to_document()/from_document().
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


JOIN_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
SYSTEM_AUTHOR_NAME = "System"
NAME_MAX_LENGTH = 100


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def month_key(timestamp: datetime) -> str:
    """
    Month bucket (`YYYY-MM`) of an instant, taken in UTC.

    Naive datetimes are treated as already being UTC.
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).strftime("%Y-%m")


def current_month() -> str:
    return month_key(utcnow())


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# ENUMS
# =============================================================================

class ExpenseType(str, Enum):
    """
    Kind of feed entry.

    SYSTEM entries record membership events. They always carry a zero
    amount and never count towards settlement.
    """
    EXPENSE = "expense"
    SYSTEM = "system"


# =============================================================================
# IDENTITY
# =============================================================================

class Principal(BaseModel):
    """The authenticated caller, as supplied by the identity provider."""
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(..., min_length=1)
    email: str = ""
    display_name: Optional[str] = None


class Member(BaseModel):
    """
    A person using the app (a `users` document).

    A member belongs to at most one household at a time. The household
    references members by id; the member only stores `household_id`.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    email: str = ""
    name: str = Field(default="User", min_length=1, max_length=NAME_MAX_LENGTH)
    household_id: Optional[str] = None
    is_admin: bool = False
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()

    @property
    def has_household(self) -> bool:
        return bool(self.household_id)

    def to_document(self) -> dict[str, Any]:
        """Convert to the `users` document shape."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "householdId": self.household_id,
            "isAdmin": self.is_admin,
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
        }

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "Member":
        return cls(
            id=data["id"],
            email=data.get("email") or "",
            name=data.get("name") or "User",
            household_id=data.get("householdId") or None,
            is_admin=bool(data.get("isAdmin", False)),
            # Missing isActive means the member was never deactivated
            is_active=data.get("isActive") is not False,
            created_at=data.get("createdAt") or utcnow(),
        )


# =============================================================================
# HOUSEHOLD
# =============================================================================

class Household(BaseModel):
    """
    A group of members sharing expenses.

    INVARIANTS:
    - `members` holds no duplicate ids and keeps insertion order
    - `admin` is always one of `members`
    - a household with no members does not exist (it is deleted)
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=lambda: f"household_{uuid4().hex}")
    name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    code: str = Field(..., pattern=r"^[A-Z0-9]+$")
    admin: str = Field(..., min_length=1)
    members: list[str] = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator('members')
    @classmethod
    def validate_unique_members(cls, v: list[str]) -> list[str]:
        if len(set(v)) != len(v):
            raise ValueError("Household members must be unique")
        return v

    @model_validator(mode='after')
    def validate_admin_is_member(self) -> 'Household':
        if self.admin not in self.members:
            raise ValueError("Household admin must be one of its members")
        return self

    def to_document(self) -> dict[str, Any]:
        """Convert to the `households` document shape."""
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "admin": self.admin,
            "members": list(self.members),
            "createdAt": _iso(self.created_at),
        }

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "Household":
        return cls(
            id=data["id"],
            name=data["name"],
            code=data["code"],
            # Older documents used `adminId`
            admin=data.get("admin") or data.get("adminId"),
            members=list(data.get("members") or []),
            created_at=data.get("createdAt") or utcnow(),
        )


# =============================================================================
# EXPENSE
# =============================================================================

class Expense(BaseModel):
    """
    One feed entry (a `transactions` document).

    `user_name` is a snapshot of the author's display name at creation
    time and is never re-resolved. `month` is derived from `timestamp`
    when the expense is created and stored, so later clock or timezone
    changes cannot move an expense to another month.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    user_id: Optional[str] = None
    user_name: str = Field(..., min_length=1)
    household_id: str = Field(..., min_length=1)
    amount: Annotated[
        Decimal,
        Field(ge=0, decimal_places=2, description="Amount in household currency")
    ]
    note: Optional[str] = Field(default=None, max_length=1000)
    receipt_url: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    month: str = Field(default="", pattern=r"^(\d{4}-\d{2})?$")
    type: ExpenseType = ExpenseType.EXPENSE

    @model_validator(mode='after')
    def validate_entry(self) -> 'Expense':
        if not self.month:
            self.month = month_key(self.timestamp)

        if self.type == ExpenseType.SYSTEM:
            if self.amount != 0:
                raise ValueError("System entries must have a zero amount")
            if self.user_id is not None:
                raise ValueError("System entries have no author")

        return self

    @property
    def is_system(self) -> bool:
        return self.type == ExpenseType.SYSTEM

    @classmethod
    def system_note(
        cls,
        household_id: str,
        message: str,
        author_name: str = SYSTEM_AUTHOR_NAME,
        timestamp: Optional[datetime] = None,
    ) -> "Expense":
        """Build the informational entry recorded for a membership event."""
        return cls(
            household_id=household_id,
            user_name=author_name,
            amount=Decimal("0"),
            note=message,
            timestamp=timestamp or utcnow(),
            type=ExpenseType.SYSTEM,
        )

    def to_document(self) -> dict[str, Any]:
        """Convert to the `transactions` document shape (id is the doc key)."""
        doc: dict[str, Any] = {
            "userName": self.user_name,
            "householdId": self.household_id,
            "amount": float(self.amount),
            "note": self.note,
            "receiptUrl": self.receipt_url,
            "timestamp": _iso(self.timestamp),
            "month": self.month,
            "type": self.type.value,
        }
        if self.user_id is not None:
            doc["userId"] = self.user_id
        return doc

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "Expense":
        return cls(
            id=doc_id,
            user_id=data.get("userId") or None,
            user_name=data.get("userName") or SYSTEM_AUTHOR_NAME,
            household_id=data["householdId"],
            # Stored as a float; go through str to keep the written digits
            amount=Decimal(str(data.get("amount", 0))).quantize(Decimal("0.01")),
            note=data.get("note") or None,
            receipt_url=data.get("receiptUrl") or None,
            timestamp=data["timestamp"],
            month=data.get("month") or "",
            type=ExpenseType(data.get("type") or ExpenseType.EXPENSE.value),
        )
