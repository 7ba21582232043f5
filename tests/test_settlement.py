"""Tests for the settlement calculator."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_expense
from household_expenses.models import Expense, Member
from household_expenses.settlement import (
    compute_settlement,
    suggest_transfers,
    summarize_month,
)


PERIOD = "2024-05"


def members(*pairs):
    return [Member(id=member_id, name=name) for member_id, name in pairs]


class TestComputeSettlement:
    """Tests for per-member totals and balances."""

    def test_two_members_uneven_spend(self):
        """A spends 30, B spends 10: fair share 20, B pays 10, A receives 10."""
        expenses = [
            make_expense("a", "A", "30.00"),
            make_expense("b", "B", "10.00"),
        ]
        result = compute_settlement(expenses, members(("a", "A"), ("b", "B")), PERIOD)

        assert result.total_expense == pytest.approx(40.0)
        assert result.participant_count == 2
        assert result.fair_share == pytest.approx(20.0)

        a, b = result.for_member("a"), result.for_member("b")
        assert a.should_receive == pytest.approx(10.0)
        assert a.should_pay == 0
        assert b.should_pay == pytest.approx(10.0)
        assert b.should_receive == 0
        assert result.settlements[0].member_id == "a"

    def test_pay_and_receive_balance(self):
        expenses = [
            make_expense("a", "A", "10.01"),
            make_expense("b", "B", "33.33"),
            make_expense("c", "C", "0.07"),
            make_expense("a", "A", "19.99"),
        ]
        result = compute_settlement(
            expenses, members(("a", "A"), ("b", "B"), ("c", "C"), ("d", "D")), PERIOD
        )
        assert abs(result.total_to_pay - result.total_to_receive) < 1e-9
        for s in result.settlements:
            assert s.should_pay == 0 or s.should_receive == 0

    def test_no_participants(self):
        """Nothing to split: zero fair share and no division error."""
        result = compute_settlement([], [], PERIOD)
        assert result.fair_share == 0
        assert result.participant_count == 0
        assert result.settlements == []

    def test_member_without_spend_gets_bucket(self):
        result = compute_settlement(
            [make_expense("a", "A", "30.00")],
            members(("a", "A"), ("b", "B"), ("c", "C")),
            PERIOD,
        )
        c = result.for_member("c")
        assert c.spent == 0
        assert c.should_pay == pytest.approx(10.0)

    def test_system_entries_ignored(self):
        note = Expense.system_note(
            "household_1",
            "B joined the household",
            timestamp=datetime(2024, 5, 2, tzinfo=timezone.utc),
        )
        result = compute_settlement(
            [make_expense("a", "A", "20.00"), note],
            members(("a", "A"), ("b", "B")),
            PERIOD,
        )
        assert result.total_expense == pytest.approx(20.0)
        assert result.participant_count == 2

    def test_other_months_ignored(self):
        april = make_expense("a", "A", "99.00", when=datetime(2024, 4, 30, 23, 0, tzinfo=timezone.utc))
        result = compute_settlement(
            [april, make_expense("b", "B", "10.00")],
            members(("a", "A"), ("b", "B")),
            PERIOD,
        )
        assert result.total_expense == pytest.approx(10.0)

    def test_same_name_members_stay_separate(self):
        """Two members both called Sam are two buckets."""
        result = compute_settlement(
            [make_expense("s1", "Sam", "40.00"), make_expense("s2", "Sam", "0.00")],
            members(("s1", "Sam"), ("s2", "Sam")),
            PERIOD,
        )
        assert result.participant_count == 2
        assert result.for_member("s1").should_receive == pytest.approx(20.0)
        assert result.for_member("s2").should_pay == pytest.approx(20.0)

    def test_renamed_member_uses_current_name(self):
        result = compute_settlement(
            [make_expense("a", "Old Name", "10.00")],
            members(("a", "New Name")),
            PERIOD,
        )
        assert result.participant_count == 1
        assert result.settlements[0].name == "New Name"

    def test_former_member_spend_is_kept(self):
        """Spend by someone who has since left still counts."""
        result = compute_settlement(
            [make_expense("a", "A", "30.00"), make_expense("gone", "Gina", "30.00")],
            members(("a", "A"), ("b", "B")),
            PERIOD,
        )
        assert result.participant_count == 3
        assert result.fair_share == pytest.approx(20.0)
        gina = result.for_member("gone")
        assert gina.name == "Gina"
        assert gina.should_receive == pytest.approx(10.0)

    def test_legacy_entry_without_author_id(self):
        """Entries without a user id are matched to a member by name."""
        legacy = Expense.from_document("old", {
            "userName": "A",
            "householdId": "household_1",
            "amount": 30,
            "timestamp": "2024-05-03T09:00:00Z",
        })
        result = compute_settlement(
            [legacy, make_expense("b", "B", "10.00")],
            members(("a", "A"), ("b", "B")),
            PERIOD,
        )
        assert result.participant_count == 2
        assert result.for_member("a").spent == pytest.approx(30.0)

    def test_ties_keep_member_order(self):
        result = compute_settlement(
            [],
            members(("x", "X"), ("y", "Y"), ("z", "Z")),
            PERIOD,
        )
        assert [s.key for s in result.settlements] == ["x", "y", "z"]

    def test_display_rounds_to_cents(self):
        result = compute_settlement(
            [make_expense("a", "A", "10.00")],
            members(("a", "A"), ("b", "B"), ("c", "C")),
            PERIOD,
        )
        assert result.fair_share == pytest.approx(10 / 3)
        display = result.to_display_dict()
        assert display["fair_share"] == 3.33
        assert display["settlements"][0]["should_receive"] == 6.67


class TestSuggestTransfers:
    """Tests for the greedy payer/receiver pairing."""

    def test_single_transfer(self):
        result = compute_settlement(
            [make_expense("a", "A", "30.00"), make_expense("b", "B", "10.00")],
            members(("a", "A"), ("b", "B")),
            PERIOD,
        )
        transfers = suggest_transfers(result)
        assert len(transfers) == 1
        assert transfers[0].from_key == "b"
        assert transfers[0].to_key == "a"
        assert transfers[0].amount == pytest.approx(10.0)

    def test_transfers_clear_all_balances(self):
        result = compute_settlement(
            [make_expense("a", "A", "60.00"), make_expense("b", "B", "30.00")],
            members(("a", "A"), ("b", "B"), ("c", "C"), ("d", "D")),
            PERIOD,
        )
        transfers = suggest_transfers(result)
        assert sum(t.amount for t in transfers) == pytest.approx(result.total_to_pay)

        received: dict[str, float] = {}
        for t in transfers:
            received[t.to_key] = received.get(t.to_key, 0.0) + t.amount
        assert received["a"] == pytest.approx(37.5)
        assert received["b"] == pytest.approx(7.5)

    def test_even_split_needs_no_transfers(self):
        result = compute_settlement(
            [make_expense("a", "A", "10.00"), make_expense("b", "B", "10.00")],
            members(("a", "A"), ("b", "B")),
            PERIOD,
        )
        assert suggest_transfers(result) == []


class TestSummarizeMonth:
    """Tests for dashboard numbers."""

    def test_monthly_stats(self):
        now = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)
        expenses = [
            make_expense("a", "A", "10.00", when=now - timedelta(days=1)),
            make_expense("b", "B", "5.00", when=now - timedelta(days=3)),
            make_expense("a", "A", "20.00", when=now - timedelta(days=10)),
            make_expense("a", "A", "99.00", when=datetime(2024, 4, 28, tzinfo=timezone.utc)),
            Expense.system_note("household_1", "B joined the household", timestamp=now),
        ]
        stats = summarize_month(expenses, member_id="a", period=PERIOD, now=now)

        assert stats.this_week_total == pytest.approx(15.0)
        assert stats.member_month_total == pytest.approx(30.0)
        assert stats.household_month_total == pytest.approx(35.0)
        assert stats.expense_count == 3
        assert stats.breakdown == pytest.approx({"A": 30.0, "B": 5.0})

    def test_empty_feed(self):
        stats = summarize_month([], member_id="a", period=PERIOD)
        assert stats.household_month_total == 0
        assert stats.breakdown == {}
