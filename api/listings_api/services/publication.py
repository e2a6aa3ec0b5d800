from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from opentelemetry import trace

from listings_api.core.config import get_settings
from listings_api.services.feature_flags import FeatureFlags, get_feature_flags
from listings_api.services.lifecycle import ListingEvent, ListingStatus, next_status
from listings_api.services.locations import (
    FanOutReport,
    LocationResolutionError,
    ResolvedLocations,
    adjust_location_counters,
    resolve_listing_locations,
    retirement_location_ids,
)
from listings_api.services.notifications import (
    NotificationClient,
    get_notification_client,
    host_display_name,
    normalize_language,
)
from listings_api.services.projections import ProjectionError, build_media_rows, build_public_listing_rows
from listings_api.services.repository import (
    HostRecord,
    ListingRecord,
    PostgresRepository,
    RepositoryNotFoundError,
    RepositoryValidationError,
    SlotRecord,
    SubscriptionRecord,
    get_repository,
)
from listings_api.services.subscriptions import SubscriptionService, get_subscription_service

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class PublishRejection:
    reason: str


@dataclass(slots=True)
class PublishedListing:
    listing: ListingRecord
    slot: SlotRecord
    locations: ResolvedLocations
    projection_count: int
    media_count: int
    counters: FanOutReport


@dataclass(slots=True)
class ApprovalResult:
    listing: ListingRecord
    published: bool
    slot: SlotRecord | None = None
    fallback_reason: str | None = None
    counters: FanOutReport | None = None


@dataclass(slots=True)
class ExpiryResult:
    slot: SlotRecord
    listing: ListingRecord | None
    orphaned: bool = False
    resulting_status: str | None = None
    projections_deleted: int = 0
    media_deleted: int = 0
    counters: FanOutReport = field(default_factory=FanOutReport)


class PublicationService:
    def __init__(
        self,
        repository: PostgresRepository,
        subscriptions: SubscriptionService,
        feature_flags: FeatureFlags,
        notifier: NotificationClient,
        *,
        frontend_url: str,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.subscriptions = subscriptions
        self.feature_flags = feature_flags
        self.notifier = notifier
        self.frontend_url = frontend_url.rstrip("/")
        self.clock = clock

    async def approve(self, listing_id: str, *, listing_verified: bool) -> ApprovalResult:
        """Approve a listing under review, publishing it straight away when allowed.

        Publication is attempted only when auto-publish is on and the host's
        subscription has a free slot. Any publication failure falls back to a
        plain approval.
        """
        with tracer.start_as_current_span("publication.approve") as span:
            span.set_attribute("listing.id", listing_id)
            listing = await self._require_listing(listing_id)
            next_status(listing.status, ListingEvent.APPROVE)
            if not listing.has_location_data():
                raise RepositoryValidationError(
                    "listing has no location data; set coordinates or manual locations before approving"
                )

            now = self.clock()
            fallback_reason: str | None = None
            published: PublishedListing | None = None

            if await self.feature_flags.auto_publish_enabled():
                eligibility = await self.subscriptions.can_host_publish_listing(listing.host_id)
                if eligibility.can_publish and eligibility.subscription is not None:
                    try:
                        outcome = await self.publish(
                            listing,
                            subscription=eligibility.subscription,
                            listing_verified=listing_verified,
                            now=now,
                        )
                    except Exception as exc:
                        logger.exception("publish failed during approval listing_id=%s", listing_id)
                        fallback_reason = f"publish failed: {exc}"
                    else:
                        if isinstance(outcome, PublishRejection):
                            logger.warning(
                                "publish rejected during approval listing_id=%s reason=%s",
                                listing_id,
                                outcome.reason,
                            )
                            fallback_reason = outcome.reason
                        else:
                            published = outcome
                else:
                    fallback_reason = eligibility.reason
            else:
                fallback_reason = "auto publish disabled"

            if published is not None:
                span.set_attribute("listing.status", ListingStatus.ONLINE.value)
                await self._notify_host(published.listing, approved_only=False)
                return ApprovalResult(
                    listing=published.listing,
                    published=True,
                    slot=published.slot,
                    counters=published.counters,
                )

            approved = await self.repository.approve_listing(
                listing_id=listing_id,
                listing_verified=listing_verified,
                now=now,
            )
            span.set_attribute("listing.status", approved.status)
            await self._notify_host(approved, approved_only=True)
            return ApprovalResult(listing=approved, published=False, fallback_reason=fallback_reason)

    async def publish(
        self,
        listing: ListingRecord,
        *,
        subscription: SubscriptionRecord,
        listing_verified: bool,
        now: datetime,
    ) -> PublishedListing | PublishRejection:
        with tracer.start_as_current_span("publication.publish") as span:
            span.set_attribute("listing.id", listing.listing_id)
            next_status(listing.status, ListingEvent.APPROVE_AND_PUBLISH)

            images = await self.repository.list_ready_images(listing.listing_id)
            if not images:
                return PublishRejection("listing has no ready images")
            amenity_keys = await self.repository.list_amenity_keys(listing.listing_id)
            host = await self.repository.get_host(listing.host_id)
            if host is None:
                return PublishRejection(f"host {listing.host_id} not found")
            try:
                locations = await resolve_listing_locations(self.repository, listing)
                projections = build_public_listing_rows(
                    listing=listing,
                    host=host,
                    locations=locations,
                    images=images,
                    amenity_keys=amenity_keys,
                    listing_verified=listing_verified,
                    now=now,
                )
            except (LocationResolutionError, ProjectionError) as exc:
                return PublishRejection(str(exc))
            media = build_media_rows(listing_id=listing.listing_id, images=images, now=now)

            slot = await self.subscriptions.build_advertising_slot(
                listing=listing,
                subscription=subscription,
                now=now,
                first_review_completed_at=listing.first_review_completed_at or now,
            )
            updated = await self.repository.publish_listing(
                listing=listing,
                listing_verified=listing_verified,
                slot=slot,
                projections=projections,
                media=media,
                now=now,
            )

            counters = await adjust_location_counters(self.repository, locations.all_ids(), delta=1, now=now)
            if not counters.ok:
                logger.warning(
                    "location counter increments incomplete listing_id=%s failed=%s",
                    listing.listing_id,
                    [outcome.location_id for outcome in counters.failed],
                )
            logger.info(
                "listing published listing_id=%s slot_id=%s locations=%s",
                listing.listing_id,
                slot.slot_id,
                locations.all_ids(),
            )
            return PublishedListing(
                listing=updated,
                slot=slot,
                locations=locations,
                projection_count=len(projections),
                media_count=len(media),
                counters=counters,
            )

    async def unpublish(self, listing_id: str, *, host_id: str | None = None) -> ListingRecord:
        with tracer.start_as_current_span("publication.unpublish") as span:
            span.set_attribute("listing.id", listing_id)
            listing = await self._require_listing(listing_id)
            if host_id is not None and listing.host_id != host_id:
                raise RepositoryNotFoundError("listing not found")
            next_status(listing.status, ListingEvent.UNPUBLISH)

            location_ids = await retirement_location_ids(self.repository, listing)
            updated = await self.repository.unpublish_listing(
                listing_id=listing_id,
                location_ids=location_ids,
                now=self.clock(),
            )
            logger.info("listing unpublished listing_id=%s locations=%s", listing_id, location_ids)
            return updated

    async def expire_slot(self, slot: SlotRecord, *, listing: ListingRecord | None = None) -> ExpiryResult:
        """Retire an expired slot.

        Projections, counters and media are removed first as separate writes.
        The listing reset and slot deletion then commit together.
        """
        with tracer.start_as_current_span("slot_sweep.expire_slot") as span:
            span.set_attribute("slot.id", slot.slot_id)
            span.set_attribute("listing.id", slot.listing_id)
            now = self.clock()
            if listing is None:
                listing = await self.repository.get_listing(slot.listing_id)
            if listing is None:
                logger.info("deleting orphaned slot slot_id=%s listing_id=%s", slot.slot_id, slot.listing_id)
                await self.repository.delete_slot(slot)
                return ExpiryResult(slot=slot, listing=None, orphaned=True)

            location_ids = await retirement_location_ids(self.repository, listing)
            result = ExpiryResult(slot=slot, listing=listing)
            result.projections_deleted = await self.repository.delete_public_listings(listing_id=listing.listing_id)
            if listing.status == ListingStatus.ONLINE.value:
                result.counters = await adjust_location_counters(self.repository, location_ids, delta=-1, now=now)
            result.media_deleted = await self.repository.delete_public_media(listing_id=listing.listing_id)
            result.resulting_status = await self.repository.finalize_slot_expiry(slot=slot, now=now)
            logger.info(
                "slot expired slot_id=%s listing_id=%s status=%s",
                slot.slot_id,
                slot.listing_id,
                result.resulting_status,
            )
            return result

    async def _require_listing(self, listing_id: str) -> ListingRecord:
        listing = await self.repository.get_listing(listing_id)
        if listing is None:
            raise RepositoryNotFoundError("listing not found")
        return listing

    async def _notify_host(self, listing: ListingRecord, *, approved_only: bool) -> None:
        template = "listing_approved" if approved_only else "listing_published"
        try:
            host = await self.repository.get_host(listing.host_id)
            if host is None:
                logger.warning("skipping %s notification; host %s not found", template, listing.host_id)
                return
            variables = self._listing_variables(host, listing)
            language = normalize_language(host.preferred_language)
            await self.notifier.send_email(template, host.email, language, variables)
            if host.owner_user_sub:
                await self.notifier.send_push(host.owner_user_sub, template.upper(), language, variables)
        except Exception:
            logger.exception("failed to send %s notification listing_id=%s", template, listing.listing_id)

    def _listing_variables(self, host: HostRecord, listing: ListingRecord) -> dict[str, Any]:
        return {
            "name": host_display_name(host),
            "listingName": listing.listing_name,
            "listingId": listing.listing_id,
            "listingUrl": f"{self.frontend_url}/listings/{listing.listing_id}",
        }


@lru_cache
def get_publication_service() -> PublicationService:
    settings = get_settings()
    repository = get_repository()
    feature_flags = get_feature_flags()
    return PublicationService(
        repository,
        get_subscription_service(),
        feature_flags,
        get_notification_client(),
        frontend_url=settings.frontend_url,
    )
