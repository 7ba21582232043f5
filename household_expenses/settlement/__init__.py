"""Settlement calculation package."""

from household_expenses.settlement.calculator import (
    compute_settlement,
    suggest_transfers,
    summarize_month,
)

__all__ = ["compute_settlement", "suggest_transfers", "summarize_month"]
