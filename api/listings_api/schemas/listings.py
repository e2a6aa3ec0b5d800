from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from listings_api.services.repository import ListingRecord

ListingStatusOut = Literal[
    "DRAFT",
    "IN_REVIEW",
    "REVIEWING",
    "LOCKED",
    "APPROVED",
    "REJECTED",
    "ONLINE",
    "OFFLINE",
    "ARCHIVED",
]


class ApproveListingRequest(BaseModel):
    listing_verified: bool = False


class ListingOut(BaseModel):
    listing_id: str
    host_id: str
    listing_name: str
    status: ListingStatusOut
    listing_verified: bool
    active_slot_id: str | None = None
    slot_expires_at: datetime | None = None
    slot_do_not_renew: bool = False
    approved_at: datetime | None = None
    first_review_completed_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: ListingRecord) -> "ListingOut":
        return cls(
            listing_id=record.listing_id,
            host_id=record.host_id,
            listing_name=record.listing_name,
            status=record.status,
            listing_verified=record.listing_verified,
            active_slot_id=record.active_slot_id,
            slot_expires_at=record.slot_expires_at,
            slot_do_not_renew=record.slot_do_not_renew,
            approved_at=record.approved_at,
            first_review_completed_at=record.first_review_completed_at,
            updated_at=record.updated_at,
        )


class ApproveListingOut(BaseModel):
    listing: ListingOut
    published: bool
    slot_id: str | None = None
    slot_expires_at: datetime | None = None
    fallback_reason: str | None = None
