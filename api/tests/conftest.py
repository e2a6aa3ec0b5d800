from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import pytest

from listings_api.services.feature_flags import (
    AUTO_PUBLISH_ENABLED,
    REVIEW_COMPENSATION_ENABLED,
    FeatureFlags,
)
from listings_api.services.lifecycle import ListingEvent, ListingStatus, allowed_sources, next_status
from listings_api.services.notifications import PushResult
from listings_api.services.publication import PublicationService
from listings_api.services.repository import (
    GeoRef,
    HostRecord,
    ImageRecord,
    ListingRecord,
    LocationRecord,
    MachineCredentialRecord,
    PublicListingRow,
    PublicMediaRow,
    RepositoryConflictError,
    RepositoryNotFoundError,
    SlotRecord,
    SubscriptionRecord,
)
from listings_api.services.subscriptions import SubscriptionService

T = TypeVar("T")

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)

_STATE_ATTRS = (
    "listings",
    "hosts",
    "subscriptions",
    "images",
    "amenities",
    "locations",
    "slots",
    "public_listings",
    "media",
    "flags",
)


class InjectedFailure(RuntimeError):
    """Raised by the fake repository at a configured checkpoint."""


class FakeRepository:
    """In-memory stand-in for ``PostgresRepository``.

    Transactional methods snapshot state and restore it when an error escapes,
    mirroring a rolled-back Postgres transaction.
    """

    def __init__(self) -> None:
        self.listings: dict[str, ListingRecord] = {}
        self.hosts: dict[str, HostRecord] = {}
        self.subscriptions: dict[str, SubscriptionRecord] = {}
        self.images: dict[str, list[ImageRecord]] = {}
        self.amenities: dict[str, list[str]] = {}
        self.locations: list[LocationRecord] = []
        self.slots: dict[str, SlotRecord] = {}
        self.public_listings: dict[tuple[str, str], PublicListingRow] = {}
        self.media: dict[tuple[str, int], PublicMediaRow] = {}
        self.flags: dict[str, bool] = {}
        self.credentials: dict[str, list[MachineCredentialRecord]] = {}
        self.fail_at: dict[str, Exception] = {}
        self.flag_reads = 0
        self.closed = False

    # --- seeding helpers -----------------------------------------------------

    def add_host(self, host_id: str = "host-1", **overrides: Any) -> HostRecord:
        fields: dict[str, Any] = {
            "host_id": host_id,
            "email": f"{host_id}@example.com",
            "host_type": "INDIVIDUAL",
            "status": "VERIFIED",
            "preferred_language": "en",
            "owner_user_sub": f"sub-{host_id}",
            "forename": "Ana",
            "surname": "Petrovic",
        }
        fields.update(overrides)
        host = HostRecord(**fields)
        self.hosts[host_id] = host
        return host

    def add_subscription(self, host_id: str = "host-1", **overrides: Any) -> SubscriptionRecord:
        fields: dict[str, Any] = {
            "host_id": host_id,
            "plan_id": "plan-basic",
            "status": "ACTIVE",
            "total_tokens": 2,
            "billing_period": "MONTHLY",
        }
        fields.update(overrides)
        subscription = SubscriptionRecord(**fields)
        self.subscriptions[host_id] = subscription
        return subscription

    def add_location(
        self,
        location_id: str,
        name: str,
        location_type: str = "PLACE",
        listings_count: int = 0,
        **overrides: Any,
    ) -> LocationRecord:
        location = LocationRecord(
            location_id=location_id,
            name=name,
            location_type=location_type,
            listings_count=listings_count,
            **overrides,
        )
        self.locations.append(location)
        return location

    def add_listing(
        self,
        listing_id: str = "L1",
        host_id: str = "host-1",
        status: str = ListingStatus.IN_REVIEW.value,
        *,
        place: str | None = "place-1",
        locality: str | None = "locality-1",
        country: str | None = "country-rs",
        **overrides: Any,
    ) -> ListingRecord:
        geocode: dict[str, GeoRef] = {}
        if place:
            geocode["place"] = GeoRef(id=place, name="Zlatibor")
        if locality:
            geocode["locality"] = GeoRef(id=locality, name="Cajetina")
        if country:
            geocode["country"] = GeoRef(id=country, name="Serbia")
        fields: dict[str, Any] = {
            "listing_id": listing_id,
            "host_id": host_id,
            "listing_name": f"Cabin {listing_id}",
            "status": status,
            "description": "A quiet wooden cabin with a view over the valley.",
            "property_type": "CABIN",
            "geocode": geocode,
            "latitude": 43.72,
            "longitude": 19.69,
            "max_guests": 4,
            "bedrooms": 2,
            "beds": 3,
            "bathrooms": 1,
            "created_at": NOW - timedelta(days=5),
            "submitted_at": NOW - timedelta(days=4),
        }
        fields.update(overrides)
        listing = ListingRecord(**fields)
        self.listings[listing_id] = listing
        return listing

    def add_images(self, listing_id: str = "L1", count: int = 2, *, with_primary: bool = True) -> list[ImageRecord]:
        images = [
            ImageRecord(
                image_id=f"{listing_id}-img-{index}",
                listing_id=listing_id,
                display_order=index,
                is_primary=with_primary and index == 0,
                full_url=f"https://cdn.example.com/{listing_id}/{index}.jpg",
                thumbnail_url=f"https://cdn.example.com/{listing_id}/{index}-thumb.jpg",
            )
            for index in range(count)
        ]
        self.images[listing_id] = images
        return images

    def add_slot(self, listing_id: str = "L1", host_id: str = "host-1", **overrides: Any) -> SlotRecord:
        fields: dict[str, Any] = {
            "slot_id": f"slot-{listing_id}",
            "listing_id": listing_id,
            "host_id": host_id,
            "plan_id": "plan-basic",
            "activated_at": NOW - timedelta(days=30),
            "expires_at": NOW - timedelta(days=1),
        }
        fields.update(overrides)
        slot = SlotRecord(**fields)
        self.slots[listing_id] = slot
        listing = self.listings.get(listing_id)
        if listing is not None:
            listing.active_slot_id = slot.slot_id
            listing.slot_expires_at = slot.expires_at
        return slot

    def counts(self, location_id: str) -> list[int]:
        return [location.listings_count for location in self.locations if location.location_id == location_id]

    def projections_for(self, listing_id: str) -> list[PublicListingRow]:
        return [row for (_, owner), row in self.public_listings.items() if owner == listing_id]

    def media_for(self, listing_id: str) -> list[PublicMediaRow]:
        rows = [row for (owner, _), row in self.media.items() if owner == listing_id]
        return sorted(rows, key=lambda row: row.image_index)

    # --- repository surface --------------------------------------------------

    async def close(self) -> None:
        self.closed = True

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        return list(self.credentials.get(module_id, []))

    async def get_feature_flag(self, name: str) -> bool | None:
        self.flag_reads += 1
        self._checkpoint("get_feature_flag")
        return self.flags.get(name)

    async def get_listing(self, listing_id: str) -> ListingRecord | None:
        self._checkpoint("get_listing")
        listing = self.listings.get(listing_id)
        return copy.deepcopy(listing) if listing else None

    async def get_host(self, host_id: str) -> HostRecord | None:
        self._checkpoint("get_host")
        return self.hosts.get(host_id)

    async def list_ready_images(self, listing_id: str) -> list[ImageRecord]:
        return list(self.images.get(listing_id, []))

    async def list_amenity_keys(self, listing_id: str) -> list[str]:
        return list(self.amenities.get(listing_id, []))

    async def get_location(self, location_id: str) -> LocationRecord | None:
        for location in self.locations:
            if location.location_id == location_id:
                return location
        return None

    async def get_host_subscription(self, host_id: str) -> SubscriptionRecord | None:
        return self.subscriptions.get(host_id)

    async def count_host_slots(self, host_id: str) -> int:
        return sum(1 for slot in self.slots.values() if slot.host_id == host_id)

    async def create_slot(self, slot: SlotRecord) -> SlotRecord:
        return await self._transact(lambda: self._insert_slot(slot))

    async def get_slot_by_listing_id(self, listing_id: str) -> SlotRecord | None:
        return self.slots.get(listing_id)

    async def delete_slot(self, slot: SlotRecord) -> None:
        self._checkpoint("delete_slot")
        current = self.slots.get(slot.listing_id)
        if current is not None and current.slot_id == slot.slot_id:
            del self.slots[slot.listing_id]

    async def list_slots_expiring_between(self, start: datetime, end: datetime) -> list[SlotRecord]:
        self._checkpoint("list_slots_expiring_between")
        rows = [slot for slot in self.slots.values() if start <= slot.expires_at <= end]
        return sorted(rows, key=lambda slot: (slot.expires_at, slot.listing_id))

    async def list_slots_expired_before(self, before: datetime) -> list[SlotRecord]:
        self._checkpoint("list_slots_expired_before")
        rows = [slot for slot in self.slots.values() if slot.expires_at <= before]
        return sorted(rows, key=lambda slot: (slot.expires_at, slot.listing_id))

    async def set_slot_do_not_renew(self, listing_id: str, slot_id: str, do_not_renew: bool) -> SlotRecord:
        async def operation() -> SlotRecord:
            slot = self.slots.get(listing_id)
            if slot is None or slot.slot_id != slot_id:
                raise RepositoryNotFoundError("advertising slot not found")
            slot.do_not_renew = do_not_renew
            listing = self.listings.get(listing_id)
            if listing is not None and listing.active_slot_id == slot_id:
                listing.slot_do_not_renew = do_not_renew
            return slot

        return await self._transact(operation)

    async def approve_listing(self, *, listing_id: str, listing_verified: bool, now: datetime) -> ListingRecord:
        async def operation() -> ListingRecord:
            listing = self._require(listing_id)
            target = next_status(listing.status, ListingEvent.APPROVE)
            listing.status = target.value
            listing.listing_verified = listing_verified
            listing.approved_at = now
            if listing.first_review_completed_at is None:
                listing.first_review_completed_at = now
            listing.updated_at = now
            return copy.deepcopy(listing)

        return await self._transact(operation)

    async def publish_listing(
        self,
        *,
        listing: ListingRecord,
        listing_verified: bool,
        slot: SlotRecord,
        projections: Sequence[PublicListingRow],
        media: Sequence[PublicMediaRow],
        now: datetime,
    ) -> ListingRecord:
        async def operation() -> ListingRecord:
            await self._insert_slot(slot)
            self._checkpoint("publish_listing.after_slot")
            for row in projections:
                self.public_listings.setdefault((row.location_id, row.listing_id), row)
            for key in [key for key in self.media if key[0] == listing.listing_id]:
                del self.media[key]
            for item in media:
                self.media[(item.listing_id, item.image_index)] = item
            self._checkpoint("publish_listing.before_flip")

            stored = self._require(listing.listing_id)
            sources = {status.value for status in allowed_sources(ListingEvent.APPROVE_AND_PUBLISH)}
            if stored.status not in sources:
                next_status(stored.status, ListingEvent.APPROVE_AND_PUBLISH)
            if stored.active_slot_id is not None:
                raise RepositoryConflictError("listing already holds an advertising slot")
            stored.status = ListingStatus.ONLINE.value
            stored.listing_verified = listing_verified
            stored.approved_at = now
            if stored.first_review_completed_at is None:
                stored.first_review_completed_at = now
            stored.active_slot_id = slot.slot_id
            stored.slot_expires_at = slot.expires_at
            stored.slot_do_not_renew = False
            stored.updated_at = now
            return copy.deepcopy(stored)

        return await self._transact(operation)

    async def unpublish_listing(self, *, listing_id: str, location_ids: Sequence[str], now: datetime) -> ListingRecord:
        async def operation() -> ListingRecord:
            listing = self._require(listing_id)
            target = next_status(listing.status, ListingEvent.UNPUBLISH)
            listing.status = target.value
            listing.active_slot_id = None
            listing.slot_expires_at = None
            listing.slot_do_not_renew = False
            listing.updated_at = now
            for key in [key for key in self.public_listings if key[1] == listing_id]:
                del self.public_listings[key]
            for key in [key for key in self.media if key[0] == listing_id]:
                del self.media[key]
            self.slots.pop(listing_id, None)
            self._checkpoint("unpublish_listing.before_counters")
            for location in self.locations:
                if location.location_id in location_ids:
                    location.listings_count = max(location.listings_count - 1, 0)
            return copy.deepcopy(listing)

        return await self._transact(operation)

    async def finalize_slot_expiry(self, *, slot: SlotRecord, now: datetime) -> str | None:
        async def operation() -> str | None:
            self._checkpoint("finalize_slot_expiry")
            listing = self.listings.get(slot.listing_id)
            resulting_status: str | None = None
            if listing is not None:
                resulting_status = listing.status
                if listing.status == ListingStatus.ONLINE.value:
                    resulting_status = next_status(listing.status, ListingEvent.EXPIRE).value
                listing.status = resulting_status
                listing.active_slot_id = None
                listing.slot_expires_at = None
                listing.slot_do_not_renew = False
                listing.updated_at = now
            current = self.slots.get(slot.listing_id)
            if current is not None and current.slot_id == slot.slot_id:
                del self.slots[slot.listing_id]
            return resulting_status

        return await self._transact(operation)

    async def delete_public_listings(self, *, listing_id: str) -> int:
        self._checkpoint("delete_public_listings")
        keys = [key for key in self.public_listings if key[1] == listing_id]
        for key in keys:
            del self.public_listings[key]
        return len(keys)

    async def delete_public_media(self, *, listing_id: str) -> int:
        self._checkpoint("delete_public_media")
        keys = [key for key in self.media if key[0] == listing_id]
        for key in keys:
            del self.media[key]
        return len(keys)

    async def adjust_location_count(self, *, location_id: str, delta: int, now: datetime) -> int:
        self._checkpoint(f"adjust_location_count:{location_id}")
        updated = 0
        for location in self.locations:
            if location.location_id == location_id:
                location.listings_count = max(location.listings_count + delta, 0)
                updated += 1
        return updated

    # --- internals -----------------------------------------------------------

    async def _insert_slot(self, slot: SlotRecord) -> SlotRecord:
        if slot.listing_id in self.slots:
            raise RepositoryConflictError(f"listing {slot.listing_id} already has an advertising slot")
        self.slots[slot.listing_id] = slot
        return slot

    def _require(self, listing_id: str) -> ListingRecord:
        listing = self.listings.get(listing_id)
        if listing is None:
            raise RepositoryNotFoundError("listing not found")
        return listing

    def _checkpoint(self, name: str) -> None:
        error = self.fail_at.get(name)
        if error is not None:
            raise error

    async def _transact(self, operation: Callable[[], Awaitable[T]]) -> T:
        snapshot = {name: copy.deepcopy(getattr(self, name)) for name in _STATE_ATTRS}
        try:
            return await operation()
        except Exception:
            for name, value in snapshot.items():
                setattr(self, name, value)
            raise


class FakeNotifier:
    def __init__(self) -> None:
        self.emails: list[dict[str, Any]] = []
        self.pushes: list[dict[str, Any]] = []
        self.failing_recipients: set[str] = set()

    async def send_email(self, template_name: str, recipient: str, language: str, variables: dict[str, Any]) -> None:
        if recipient in self.failing_recipients:
            raise RuntimeError(f"mail relay rejected {recipient}")
        self.emails.append(
            {"template": template_name, "recipient": recipient, "language": language, "variables": variables}
        )

    async def send_push(self, user_id: str, template_name: str, language: str, variables: dict[str, Any]) -> PushResult:
        self.pushes.append({"template": template_name, "user_id": user_id, "language": language, "variables": variables})
        return PushResult(sent=1)

    def templates(self) -> list[str]:
        return [email["template"] for email in self.emails]


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def fake_repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def feature_flags(fake_repository: FakeRepository) -> FeatureFlags:
    return FeatureFlags(
        fake_repository,
        ttl_seconds=300.0,
        defaults={AUTO_PUBLISH_ENABLED: True, REVIEW_COMPENSATION_ENABLED: False},
    )


@pytest.fixture
def subscription_service(fake_repository: FakeRepository, feature_flags: FeatureFlags) -> SubscriptionService:
    return SubscriptionService(fake_repository, feature_flags)


@pytest.fixture
def publication_service(
    fake_repository: FakeRepository,
    subscription_service: SubscriptionService,
    feature_flags: FeatureFlags,
    notifier: FakeNotifier,
    clock: FixedClock,
) -> PublicationService:
    return PublicationService(
        fake_repository,
        subscription_service,
        feature_flags,
        notifier,
        frontend_url="https://app.example.com",
        clock=clock,
    )


@pytest.fixture
def publishable_world(fake_repository: FakeRepository) -> FakeRepository:
    """Host with a free slot and an IN_REVIEW listing geocoded to a place with three name variants."""
    fake_repository.add_host()
    fake_repository.add_subscription()
    fake_repository.add_location("country-rs", "Serbia", "COUNTRY", listings_count=10)
    fake_repository.add_location("place-1", "Zlatibor", listings_count=3)
    fake_repository.add_location("place-1", "Златибор", listings_count=3)
    fake_repository.add_location("place-1", "Zlatibor Mountain", listings_count=3)
    fake_repository.add_location("locality-1", "Cajetina", "LOCALITY", listings_count=1, parent_place_id="place-1")
    fake_repository.add_listing()
    fake_repository.add_images()
    fake_repository.amenities["L1"] = ["WIFI", "PARKING"]
    return fake_repository
