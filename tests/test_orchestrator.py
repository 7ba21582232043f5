"""Tests for application wiring."""

import pytest

from household_expenses.config import get_settings
from household_expenses.models import Principal
from household_expenses.orchestrator import create_app_components


@pytest.fixture
def bare_env(monkeypatch):
    """No Google or Cloudinary configuration."""
    for name in (
        "GOOGLE_SHEETS_CREDENTIALS_PATH",
        "GOOGLE_SHEETS_SPREADSHEET_ID",
        "CLOUDINARY_CLOUD_NAME",
        "CLOUDINARY_API_KEY",
        "CLOUDINARY_API_SECRET",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_falls_back_without_google_settings(self, bare_env):
        membership, expenses, sheets_client = create_app_components(use_storage=True)
        assert sheets_client is None
        assert membership is not None
        assert expenses is not None

    @pytest.mark.asyncio
    async def test_end_to_end_in_memory(self, bare_env):
        membership, expenses, _ = create_app_components(use_storage=False)

        ann = await membership.ensure_member(Principal(id="ann", email="ann@example.com", display_name="Ann"))
        ben = await membership.ensure_member(Principal(id="ben", email="ben@example.com", display_name="Ben"))
        household = await membership.create_household(ann, "Flat")
        await membership.join_household(ben, household.code)

        await expenses.add_expense(ann, "30")
        await expenses.add_expense(ben, "10")

        feed = await expenses.list_expenses(ben)
        assert len(feed) == 3  # two expenses and the join note

        result = await expenses.settle(ben)
        assert result.for_member("ben").should_pay == pytest.approx(10.0)
