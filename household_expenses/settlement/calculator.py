"""
Settlement Calculator

DESIGN DECISION: Settlement is a PURE function of the expenses and members
passed in. No storage access, no clock, no shared state. It is cheap enough
to run on every feed update and safe to run concurrently.

Buckets are keyed by member id, not display name, so two members sharing a
name stay separate and a renamed member's spend stays in one bucket. The
display name is looked up from the current member list and only falls back
to the expense's stored `user_name` for former members.

Amounts are summed as floats at full precision. Only the display helpers
round to cents.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from household_expenses.models.household import Expense, Member, current_month, utcnow
from household_expenses.models.settlement import (
    MonthlyStats,
    Settlement,
    SettlementResult,
    Transfer,
)


# Below a cent is noise from float division
TRANSFER_EPSILON = 0.005


def _countable(expenses: Iterable[Expense], period: str) -> list[Expense]:
    """Expenses of the period that take part in settlement math."""
    return [e for e in expenses if e.month == period and not e.is_system]


def compute_settlement(
    expenses: Iterable[Expense],
    members: Iterable[Member],
    period: str,
) -> SettlementResult:
    """
    Work out who owes whom for one month.

    Every member passed in gets a bucket, even with no spend. Authors who
    are no longer members still get a bucket so their historical spend
    counts. Legacy entries without an author id are matched to a current
    member by display name when that name is unambiguous.

    Args:
        expenses: Household expenses (any months, system notes allowed)
        members: Current household members
        period: Month key (`YYYY-MM`)

    Returns:
        SettlementResult sorted by amount to receive, largest first
    """
    totals: dict[str, float] = {}
    names: dict[str, str] = {}
    member_ids: dict[str, Optional[str]] = {}

    name_counts: dict[str, int] = {}
    for member in members:
        if member.id in totals:
            continue
        totals[member.id] = 0.0
        names[member.id] = member.name
        member_ids[member.id] = member.id
        name_counts[member.name] = name_counts.get(member.name, 0) + 1

    unique_names = {
        names[key]: key for key in totals if name_counts[names[key]] == 1
    }

    for expense in _countable(expenses, period):
        if expense.user_id:
            key = expense.user_id
        else:
            key = unique_names.get(expense.user_name, expense.user_name)

        if key not in totals:
            totals[key] = 0.0
            names[key] = expense.user_name
            member_ids[key] = expense.user_id
        totals[key] += float(expense.amount)

    total_expense = sum(totals.values())
    participant_count = len(totals)
    fair_share = total_expense / participant_count if participant_count else 0.0

    settlements = [
        Settlement(
            key=key,
            member_id=member_ids[key],
            name=names[key],
            spent=spent,
            fair_share=fair_share,
            difference=spent - fair_share,
            should_pay=max(0.0, fair_share - spent),
            should_receive=max(0.0, spent - fair_share),
        )
        for key, spent in totals.items()
    ]
    # sorted() is stable, so ties keep bucket order
    settlements = sorted(settlements, key=lambda s: s.should_receive, reverse=True)

    return SettlementResult(
        period=period,
        total_expense=total_expense,
        participant_count=participant_count,
        fair_share=fair_share,
        settlements=settlements,
    )


def suggest_transfers(result: SettlementResult) -> list[Transfer]:
    """
    Pair payers with receivers, largest amounts first.

    A simple greedy pairing: it clears every balance but makes no claim
    to use the fewest payments.
    """
    payers = [
        [s.key, s.name, s.should_pay]
        for s in result.settlements if s.should_pay > TRANSFER_EPSILON
    ]
    receivers = [
        [s.key, s.name, s.should_receive]
        for s in result.settlements if s.should_receive > TRANSFER_EPSILON
    ]
    payers.sort(key=lambda p: p[2], reverse=True)
    receivers.sort(key=lambda r: r[2], reverse=True)

    transfers = []
    i = j = 0
    while i < len(payers) and j < len(receivers):
        payer, receiver = payers[i], receivers[j]
        amount = min(payer[2], receiver[2])

        if amount > TRANSFER_EPSILON:
            transfers.append(Transfer(
                from_key=payer[0],
                from_name=payer[1],
                to_key=receiver[0],
                to_name=receiver[1],
                amount=amount,
            ))

        payer[2] -= amount
        receiver[2] -= amount
        if payer[2] <= TRANSFER_EPSILON:
            i += 1
        if receiver[2] <= TRANSFER_EPSILON:
            j += 1

    return transfers


def summarize_month(
    expenses: Iterable[Expense],
    member_id: Optional[str] = None,
    period: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MonthlyStats:
    """
    Dashboard numbers for a household feed.

    Args:
        expenses: Household expenses
        member_id: Member whose own month total to report
        period: Month key, defaults to the current month
        now: Reference instant for the 7-day window, defaults to now (UTC)
    """
    now = now or utcnow()
    period = period or current_month()
    week_ago = now - timedelta(days=7)

    expenses = [e for e in expenses if not e.is_system]
    in_period = [e for e in expenses if e.month == period]

    breakdown: dict[str, float] = {}
    for expense in in_period:
        breakdown[expense.user_name] = breakdown.get(expense.user_name, 0.0) + float(expense.amount)

    return MonthlyStats(
        period=period,
        this_week_total=sum(float(e.amount) for e in expenses if e.timestamp >= week_ago),
        member_month_total=sum(
            float(e.amount) for e in in_period if member_id and e.user_id == member_id
        ),
        household_month_total=sum(float(e.amount) for e in in_period),
        expense_count=len(in_period),
        breakdown=breakdown,
    )
