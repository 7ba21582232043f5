"""
Settlement Models

Derived, never persisted. These describe where each participant stands
for one month: what they spent, what their fair share was, and how much
they should pay in or receive back.
"""

from typing import Optional

from pydantic import BaseModel, Field


class Settlement(BaseModel):
    """
    One participant's standing for a period.

    At most one of `should_pay` / `should_receive` is non-zero.
    Both are zero when the participant spent exactly their fair share.
    """

    key: str = Field(
        ...,
        description="Bucket key: member id, or author name for legacy entries"
    )
    member_id: Optional[str] = None
    name: str
    spent: float = Field(ge=0)
    fair_share: float = Field(ge=0)
    difference: float
    should_pay: float = Field(ge=0)
    should_receive: float = Field(ge=0)

    def to_display_dict(self) -> dict:
        """Currency-rounded view for presentation."""
        return {
            "member_id": self.member_id,
            "name": self.name,
            "spent": round(self.spent, 2),
            "fair_share": round(self.fair_share, 2),
            "difference": round(self.difference, 2),
            "should_pay": round(self.should_pay, 2),
            "should_receive": round(self.should_receive, 2),
        }


class SettlementResult(BaseModel):
    """Settlement for every participant of a household in one month."""

    period: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    total_expense: float = Field(ge=0)
    participant_count: int = Field(ge=0)
    fair_share: float = Field(ge=0)
    settlements: list[Settlement] = Field(default_factory=list)

    @property
    def total_to_pay(self) -> float:
        return sum(s.should_pay for s in self.settlements)

    @property
    def total_to_receive(self) -> float:
        return sum(s.should_receive for s in self.settlements)

    def for_member(self, member_id: str) -> Optional[Settlement]:
        for settlement in self.settlements:
            if settlement.member_id == member_id:
                return settlement
        return None

    def to_display_dict(self) -> dict:
        return {
            "period": self.period,
            "total_expense": round(self.total_expense, 2),
            "participant_count": self.participant_count,
            "fair_share": round(self.fair_share, 2),
            "settlements": [s.to_display_dict() for s in self.settlements],
        }


class Transfer(BaseModel):
    """A suggested payment from one participant to another."""

    from_key: str
    from_name: str
    to_key: str
    to_name: str
    amount: float = Field(gt=0)


class MonthlyStats(BaseModel):
    """Headline numbers for a member's dashboard."""

    period: str
    this_week_total: float = 0.0
    member_month_total: float = 0.0
    household_month_total: float = 0.0
    expense_count: int = 0
    breakdown: dict[str, float] = Field(
        default_factory=dict,
        description="Display name -> amount spent this period"
    )
