from __future__ import annotations

import calendar
import logging
import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Literal
from uuid import uuid4

from listings_api.services.feature_flags import FeatureFlags, get_feature_flags
from listings_api.services.repository import (
    ListingRecord,
    PostgresRepository,
    SlotRecord,
    SubscriptionRecord,
    get_repository,
)

logger = logging.getLogger(__name__)

BILLING_PERIOD_MONTHS = {
    "MONTHLY": 1,
    "QUARTERLY": 3,
    "SEMI_ANNUAL": 6,
    "YEARLY": 12,
}
MAX_REVIEW_COMPENSATION_DAYS = 60
EXPIRING_SOON_DAYS = 7
PUBLISHABLE_STATUSES = {"ACTIVE", "TRIALING"}

SlotDisplayStatus = Literal["AUTO_RENEWS", "EXPIRES", "PAST_DUE", "EXPIRING_SOON"]


@dataclass(slots=True)
class PublishEligibility:
    can_publish: bool
    subscription: SubscriptionRecord | None = None
    reason: str | None = None
    available_tokens: int = 0


@dataclass(slots=True)
class SlotSummary:
    slot: SlotRecord
    display_status: SlotDisplayStatus
    days_remaining: int


def add_billing_period(start: datetime, billing_period: str) -> datetime:
    """Add a billing period using calendar months, clamping to the last day of short months."""
    months = BILLING_PERIOD_MONTHS.get(billing_period, 1)
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def review_compensation_days(created_at: datetime | None, first_review_completed_at: datetime | None) -> int:
    if created_at is None or first_review_completed_at is None:
        return 0
    waited = (first_review_completed_at - created_at) / timedelta(days=1)
    return min(max(0, math.ceil(waited)), MAX_REVIEW_COMPENSATION_DAYS)


def end_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.max, tzinfo=moment.tzinfo or timezone.utc)


def compute_slot_expiry(
    *,
    now: datetime,
    subscription: SubscriptionRecord,
    compensation_days: int,
) -> datetime:
    if subscription.status == "TRIALING" and subscription.trial_end is not None:
        return subscription.trial_end
    expiry = add_billing_period(now, subscription.billing_period) + timedelta(days=compensation_days)
    return end_of_day(expiry)


def days_remaining(expires_at: datetime, now: datetime) -> int:
    return max(0, math.ceil((expires_at - now) / timedelta(days=1)))


def slot_display_status(slot: SlotRecord, *, cancel_at_period_end: bool, now: datetime) -> SlotDisplayStatus:
    if slot.is_past_due:
        return "PAST_DUE"
    ending = slot.do_not_renew or cancel_at_period_end
    if ending and math.ceil((slot.expires_at - now) / timedelta(days=1)) <= EXPIRING_SOON_DAYS:
        return "EXPIRING_SOON"
    if ending:
        return "EXPIRES"
    return "AUTO_RENEWS"


class SubscriptionService:
    def __init__(self, repository: PostgresRepository, feature_flags: FeatureFlags) -> None:
        self.repository = repository
        self.feature_flags = feature_flags

    async def can_host_publish_listing(self, host_id: str) -> PublishEligibility:
        subscription = await self.repository.get_host_subscription(host_id)
        if subscription is None:
            return PublishEligibility(can_publish=False, reason="NO_SUBSCRIPTION")

        if subscription.status not in PUBLISHABLE_STATUSES:
            reason = {
                "PAST_DUE": "SUBSCRIPTION_PAST_DUE",
                "CANCELLED": "SUBSCRIPTION_CANCELLED",
                "EXPIRED": "SUBSCRIPTION_EXPIRED",
            }.get(subscription.status, "SUBSCRIPTION_INACTIVE")
            return PublishEligibility(can_publish=False, subscription=subscription, reason=reason)

        used = await self.repository.count_host_slots(host_id)
        available = max(0, subscription.total_tokens - used)
        if available == 0:
            return PublishEligibility(
                can_publish=False,
                subscription=subscription,
                reason="NO_TOKENS_AVAILABLE",
            )
        return PublishEligibility(can_publish=True, subscription=subscription, available_tokens=available)

    async def build_advertising_slot(
        self,
        *,
        listing: ListingRecord,
        subscription: SubscriptionRecord,
        now: datetime,
        first_review_completed_at: datetime | None = None,
    ) -> SlotRecord:
        """Build the slot a listing will occupy, with its expiry computed from the subscription."""
        trialing = subscription.status == "TRIALING" and subscription.trial_end is not None
        compensation = 0
        if not trialing and await self.feature_flags.review_compensation_enabled():
            compensation = review_compensation_days(
                listing.created_at,
                first_review_completed_at or listing.first_review_completed_at,
            )
        expires_at = compute_slot_expiry(now=now, subscription=subscription, compensation_days=compensation)
        logger.info(
            "slot expiry computed listing_id=%s billing_period=%s compensation_days=%s expires_at=%s",
            listing.listing_id,
            subscription.billing_period,
            compensation,
            expires_at.isoformat(),
        )
        return SlotRecord(
            slot_id=f"slot_{uuid4()}",
            listing_id=listing.listing_id,
            host_id=listing.host_id,
            plan_id=subscription.plan_id,
            activated_at=now,
            expires_at=expires_at,
            review_compensation_days=compensation,
            created_at=now,
            updated_at=now,
        )

    async def create_advertising_slot(
        self,
        *,
        listing: ListingRecord,
        subscription: SubscriptionRecord,
        now: datetime,
    ) -> SlotRecord:
        slot = await self.build_advertising_slot(listing=listing, subscription=subscription, now=now)
        return await self.repository.create_slot(slot)

    async def get_slot_by_listing_id(self, listing_id: str) -> SlotRecord | None:
        return await self.repository.get_slot_by_listing_id(listing_id)

    async def set_slot_do_not_renew(self, listing_id: str, slot_id: str, do_not_renew: bool) -> SlotRecord:
        return await self.repository.set_slot_do_not_renew(listing_id, slot_id, do_not_renew)

    async def describe_slot(self, slot: SlotRecord, *, now: datetime) -> SlotSummary:
        subscription = await self.repository.get_host_subscription(slot.host_id)
        cancel_at_period_end = bool(subscription and subscription.cancel_at_period_end)
        return SlotSummary(
            slot=slot,
            display_status=slot_display_status(slot, cancel_at_period_end=cancel_at_period_end, now=now),
            days_remaining=days_remaining(slot.expires_at, now),
        )


@lru_cache
def get_subscription_service() -> SubscriptionService:
    return SubscriptionService(get_repository(), get_feature_flags())
