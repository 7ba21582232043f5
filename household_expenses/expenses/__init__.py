"""Expense feed operations."""

from household_expenses.expenses.service import (
    ExpenseService,
    ReceiptFile,
    parse_amount,
)

__all__ = ["ExpenseService", "ReceiptFile", "parse_amount"]
