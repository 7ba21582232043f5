"""
Household Expenses - Source Package

A shared-expense tracker for households: members join by invite code,
log expenses with optional receipts, and see who owes whom each month.

DESIGN PRINCIPLES:
1. Settlement math is a pure function over stored expenses
2. Membership changes are all-or-nothing
3. Every membership change leaves a system note in the feed
4. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Expenses Team"
