from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from listings_api.services.subscriptions import SlotSummary


class SlotDoNotRenewRequest(BaseModel):
    do_not_renew: bool


class SlotOut(BaseModel):
    slot_id: str
    listing_id: str
    host_id: str
    plan_id: str
    activated_at: datetime
    expires_at: datetime
    review_compensation_days: int
    do_not_renew: bool
    is_past_due: bool
    display_status: Literal["AUTO_RENEWS", "EXPIRES", "PAST_DUE", "EXPIRING_SOON"]
    days_remaining: int

    @classmethod
    def from_summary(cls, summary: SlotSummary) -> "SlotOut":
        slot = summary.slot
        return cls(
            slot_id=slot.slot_id,
            listing_id=slot.listing_id,
            host_id=slot.host_id,
            plan_id=slot.plan_id,
            activated_at=slot.activated_at,
            expires_at=slot.expires_at,
            review_compensation_days=slot.review_compensation_days,
            do_not_renew=slot.do_not_renew,
            is_past_due=slot.is_past_due,
            display_status=summary.display_status,
            days_remaining=summary.days_remaining,
        )
