"""Household membership transitions."""

from household_expenses.membership.manager import (
    MembershipManager,
    Transition,
    generate_join_code,
)

__all__ = ["MembershipManager", "Transition", "generate_join_code"]
