"""
Data Models Package

This package contains all Pydantic models used in Household Expenses.
All data flowing through the system must conform to these schemas.
"""

from household_expenses.models.household import (
    JOIN_CODE_ALPHABET,
    SYSTEM_AUTHOR_NAME,
    Expense,
    ExpenseType,
    Household,
    Member,
    Principal,
    current_month,
    month_key,
    utcnow,
)
from household_expenses.models.settlement import (
    MonthlyStats,
    Settlement,
    SettlementResult,
    Transfer,
)
from household_expenses.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Household models
    "JOIN_CODE_ALPHABET",
    "SYSTEM_AUTHOR_NAME",
    "Expense",
    "ExpenseType",
    "Household",
    "Member",
    "Principal",
    "current_month",
    "month_key",
    "utcnow",
    # Settlement models
    "MonthlyStats",
    "Settlement",
    "SettlementResult",
    "Transfer",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
