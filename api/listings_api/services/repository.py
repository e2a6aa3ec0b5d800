from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any, TypeVar

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from listings_api.core.config import get_settings
from listings_api.services.lifecycle import (
    ListingEvent,
    ListingStatus,
    allowed_sources,
    next_status,
)
from listings_api.services.retry import TransientRetriesExhaustedError, retry_transient

T = TypeVar("T")


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when a write would violate a uniqueness or concurrency invariant."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


class RepositoryTransientError(RepositoryError):
    """Raised when a transactional write still conflicts after all retries."""


@dataclass(slots=True)
class MachineCredentialRecord:
    module_db_id: str
    module_id: str
    scopes: list[str]
    key_hash: str


@dataclass(slots=True)
class GeoRef:
    id: str
    name: str | None = None


@dataclass(slots=True)
class ListingRecord:
    listing_id: str
    host_id: str
    listing_name: str
    status: str
    description: str = ""
    property_type: str | None = None
    listing_verified: bool = False
    geocode: dict[str, GeoRef] = field(default_factory=dict)
    manual_location_ids: list[str] = field(default_factory=list)
    latitude: float | None = None
    longitude: float | None = None
    country_code: str | None = None
    max_guests: int | None = None
    bedrooms: int | None = None
    beds: int | None = None
    bathrooms: int | None = None
    pets_allowed: bool = False
    parking_type: str | None = None
    check_in_type: str | None = None
    active_slot_id: str | None = None
    slot_expires_at: datetime | None = None
    slot_do_not_renew: bool = False
    created_at: datetime | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    first_review_completed_at: datetime | None = None
    updated_at: datetime | None = None

    def has_location_data(self) -> bool:
        place = self.geocode.get("place")
        return bool(place and place.id) or bool(self.manual_location_ids)


@dataclass(slots=True)
class HostRecord:
    host_id: str
    email: str
    host_type: str = "INDIVIDUAL"
    status: str | None = None
    preferred_language: str | None = None
    owner_user_sub: str | None = None
    forename: str | None = None
    surname: str | None = None
    legal_name: str | None = None
    display_name: str | None = None
    business_name: str | None = None

    @property
    def is_verified(self) -> bool:
        return self.status == "VERIFIED"


@dataclass(slots=True)
class ImageRecord:
    image_id: str
    listing_id: str
    display_order: int
    is_primary: bool
    full_url: str | None
    thumbnail_url: str | None
    caption: str | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class LocationRecord:
    location_id: str
    name: str
    location_type: str
    parent_place_id: str | None = None
    region_name: str | None = None
    country_name: str | None = None
    listings_count: int = 0


@dataclass(slots=True)
class SubscriptionRecord:
    host_id: str
    plan_id: str
    status: str
    total_tokens: int
    billing_period: str = "MONTHLY"
    price_id: str | None = None
    trial_end: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False


@dataclass(slots=True)
class SlotRecord:
    slot_id: str
    listing_id: str
    host_id: str
    plan_id: str
    activated_at: datetime
    expires_at: datetime
    review_compensation_days: int = 0
    do_not_renew: bool = False
    is_past_due: bool = False
    marked_for_immediate_expiry: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class PublicListingRow:
    location_id: str
    listing_id: str
    host_id: str
    location_type: str
    name: str
    short_description: str
    place_name: str | None
    region_name: str | None
    locality_name: str | None
    max_guests: int | None
    bedrooms: int | None
    beds: int | None
    bathrooms: int | None
    thumbnail_url: str
    latitude: float | None
    longitude: float | None
    pets_allowed: bool
    has_wifi: bool
    has_air_conditioning: bool
    has_parking: bool
    has_gym: bool
    has_pool: bool
    has_workspace: bool
    parking_type: str | None
    check_in_type: str | None
    property_type: str | None
    host_verified: bool
    listing_verified: bool
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class PublicMediaRow:
    listing_id: str
    image_index: int
    url: str | None
    thumbnail_url: str | None
    caption: str | None
    is_cover_image: bool
    created_at: datetime


_LISTING_COLUMNS = """
  id as listing_id,
  host_id,
  listing_name,
  status,
  description,
  property_type,
  listing_verified,
  geocode,
  manual_location_ids,
  latitude,
  longitude,
  country_code,
  max_guests,
  bedrooms,
  beds,
  bathrooms,
  pets_allowed,
  parking_type,
  check_in_type,
  active_slot_id,
  slot_expires_at,
  slot_do_not_renew,
  created_at,
  submitted_at,
  approved_at,
  first_review_completed_at,
  updated_at
"""

_SLOT_COLUMNS = """
  slot_id,
  listing_id,
  host_id,
  plan_id,
  activated_at,
  expires_at,
  review_compensation_days,
  do_not_renew,
  is_past_due,
  marked_for_immediate_expiry,
  created_at,
  updated_at
"""

_PUBLIC_LISTING_FIELDS = (
    "location_id",
    "listing_id",
    "host_id",
    "location_type",
    "name",
    "short_description",
    "place_name",
    "region_name",
    "locality_name",
    "max_guests",
    "bedrooms",
    "beds",
    "bathrooms",
    "thumbnail_url",
    "latitude",
    "longitude",
    "pets_allowed",
    "has_wifi",
    "has_air_conditioning",
    "has_parking",
    "has_gym",
    "has_pool",
    "has_workspace",
    "parking_type",
    "check_in_type",
    "property_type",
    "host_verified",
    "listing_verified",
    "created_at",
    "updated_at",
)


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        transaction_max_attempts: int,
        transaction_retry_base_seconds: float,
        transaction_retry_max_seconds: float,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.transaction_max_attempts = max(1, transaction_max_attempts)
        self.transaction_retry_base_seconds = max(0.0, transaction_retry_base_seconds)
        self.transaction_retry_max_seconds = max(0.0, transaction_retry_max_seconds)
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              m.id::text as module_db_id,
              m.module_id,
              m.scopes,
              mc.key_hash
            from modules m
            join module_credentials mc on mc.module_id = m.id
            where m.module_id = $1
              and m.enabled = true
              and mc.is_active = true
              and mc.revoked_at is null
              and (mc.expires_at is null or mc.expires_at > now())
            """,
            module_id,
        )
        return [
            MachineCredentialRecord(
                module_db_id=row["module_db_id"],
                module_id=row["module_id"],
                scopes=list(row["scopes"] or []),
                key_hash=row["key_hash"],
            )
            for row in rows
        ]

    async def get_feature_flag(self, name: str) -> bool | None:
        pool = await self._get_pool()
        value = await pool.fetchval("select enabled from feature_flags where name = $1", name)
        if value is None:
            return None
        return bool(value)

    # --- readers -------------------------------------------------------------

    async def get_listing(self, listing_id: str) -> ListingRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"select {_LISTING_COLUMNS} from listings where id = $1 and is_deleted = false",
            listing_id,
        )
        return self._listing_row_to_record(row) if row else None

    async def get_host(self, host_id: str) -> HostRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              id as host_id,
              email,
              host_type,
              status,
              preferred_language,
              owner_user_sub,
              forename,
              surname,
              legal_name,
              display_name,
              business_name
            from hosts
            where id = $1
            """,
            host_id,
        )
        if not row:
            return None
        return HostRecord(**dict(row))

    async def list_ready_images(self, listing_id: str) -> list[ImageRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              image_id,
              listing_id,
              display_order,
              is_primary,
              full_url,
              thumbnail_url,
              caption,
              updated_at
            from listing_images
            where listing_id = $1
              and status = 'READY'
              and is_deleted = false
            order by display_order asc, image_id asc
            """,
            listing_id,
        )
        return [ImageRecord(**dict(row)) for row in rows]

    async def list_amenity_keys(self, listing_id: str) -> list[str]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            "select amenity_key from listing_amenities where listing_id = $1 order by amenity_key",
            listing_id,
        )
        return [row["amenity_key"] for row in rows]

    async def get_location(self, location_id: str) -> LocationRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              location_id,
              name,
              location_type,
              parent_place_id,
              region_name,
              country_name,
              listings_count
            from locations
            where location_id = $1
            order by created_at asc, name asc
            limit 1
            """,
            location_id,
        )
        if not row:
            return None
        return LocationRecord(**dict(row))

    async def get_host_subscription(self, host_id: str) -> SubscriptionRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              host_id,
              plan_id,
              status,
              total_tokens,
              billing_period,
              price_id,
              trial_end,
              current_period_end,
              cancel_at_period_end
            from host_subscriptions
            where host_id = $1
            """,
            host_id,
        )
        if not row:
            return None
        return SubscriptionRecord(**dict(row))

    async def count_host_slots(self, host_id: str) -> int:
        pool = await self._get_pool()
        value = await pool.fetchval("select count(*) from advertising_slots where host_id = $1", host_id)
        return int(value or 0)

    # --- slots ---------------------------------------------------------------

    async def create_slot(self, slot: SlotRecord) -> SlotRecord:
        async def operation(conn: asyncpg.Connection) -> SlotRecord:
            await self._insert_slot(conn, slot)
            return slot

        return await self._transact("create_slot", operation)

    async def get_slot_by_listing_id(self, listing_id: str) -> SlotRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"select {_SLOT_COLUMNS} from advertising_slots where listing_id = $1",
            listing_id,
        )
        return SlotRecord(**dict(row)) if row else None

    async def delete_slot(self, slot: SlotRecord) -> None:
        pool = await self._get_pool()
        await pool.execute(
            "delete from advertising_slots where listing_id = $1 and slot_id = $2",
            slot.listing_id,
            slot.slot_id,
        )

    async def list_slots_expiring_between(self, start: datetime, end: datetime) -> list[SlotRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {_SLOT_COLUMNS}
            from advertising_slots
            where expires_at >= $1 and expires_at <= $2
            order by expires_at asc, listing_id asc
            """,
            start,
            end,
        )
        return [SlotRecord(**dict(row)) for row in rows]

    async def list_slots_expired_before(self, before: datetime) -> list[SlotRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {_SLOT_COLUMNS}
            from advertising_slots
            where expires_at <= $1
            order by expires_at asc, listing_id asc
            """,
            before,
        )
        return [SlotRecord(**dict(row)) for row in rows]

    async def set_slot_do_not_renew(self, listing_id: str, slot_id: str, do_not_renew: bool) -> SlotRecord:
        async def operation(conn: asyncpg.Connection) -> SlotRecord:
            row = await conn.fetchrow(
                f"""
                update advertising_slots
                set do_not_renew = $3, updated_at = now()
                where listing_id = $1 and slot_id = $2
                returning {_SLOT_COLUMNS}
                """,
                listing_id,
                slot_id,
                do_not_renew,
            )
            if not row:
                raise RepositoryNotFoundError("advertising slot not found")
            await conn.execute(
                """
                update listings
                set slot_do_not_renew = $2, updated_at = now()
                where id = $1 and active_slot_id = $3
                """,
                listing_id,
                do_not_renew,
                slot_id,
            )
            return SlotRecord(**dict(row))

        return await self._transact("set_slot_do_not_renew", operation)

    # --- publication transitions ---------------------------------------------

    async def approve_listing(self, *, listing_id: str, listing_verified: bool, now: datetime) -> ListingRecord:
        sources = [status.value for status in allowed_sources(ListingEvent.APPROVE)]

        async def operation(conn: asyncpg.Connection) -> ListingRecord:
            row = await conn.fetchrow(
                f"""
                update listings
                set
                  status = $2,
                  listing_verified = $3,
                  approved_at = $4,
                  first_review_completed_at = coalesce(first_review_completed_at, $4),
                  updated_at = $4
                where id = $1 and is_deleted = false and status = any($5::text[])
                returning {_LISTING_COLUMNS}
                """,
                listing_id,
                ListingStatus.APPROVED.value,
                listing_verified,
                now,
                sources,
            )
            if not row:
                await self._raise_for_rejected_transition(conn, listing_id, ListingEvent.APPROVE)
            return self._listing_row_to_record(row)

        return await self._transact("approve_listing", operation)

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
        sources = [status.value for status in allowed_sources(ListingEvent.APPROVE_AND_PUBLISH)]

        async def operation(conn: asyncpg.Connection) -> ListingRecord:
            await self._insert_slot(conn, slot)

            if projections:
                columns = ", ".join(_PUBLIC_LISTING_FIELDS)
                placeholders = ", ".join(f"${index}" for index in range(1, len(_PUBLIC_LISTING_FIELDS) + 1))
                await conn.executemany(
                    f"""
                    insert into public_listings ({columns})
                    values ({placeholders})
                    on conflict (location_id, listing_id) do nothing
                    """,
                    [tuple(getattr(row, name) for name in _PUBLIC_LISTING_FIELDS) for row in projections],
                )

            await conn.execute("delete from public_listing_media where listing_id = $1", listing.listing_id)
            if media:
                await conn.executemany(
                    """
                    insert into public_listing_media (
                      listing_id,
                      image_index,
                      url,
                      thumbnail_url,
                      caption,
                      is_cover_image,
                      created_at
                    )
                    values ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    [
                        (
                            item.listing_id,
                            item.image_index,
                            item.url,
                            item.thumbnail_url,
                            item.caption,
                            item.is_cover_image,
                            item.created_at,
                        )
                        for item in media
                    ],
                )

            row = await conn.fetchrow(
                f"""
                update listings
                set
                  status = $2,
                  listing_verified = $3,
                  approved_at = $4,
                  first_review_completed_at = coalesce(first_review_completed_at, $4),
                  active_slot_id = $5,
                  slot_expires_at = $6,
                  slot_do_not_renew = false,
                  updated_at = $4
                where id = $1
                  and is_deleted = false
                  and status = any($7::text[])
                  and active_slot_id is null
                returning {_LISTING_COLUMNS}
                """,
                listing.listing_id,
                ListingStatus.ONLINE.value,
                listing_verified,
                now,
                slot.slot_id,
                slot.expires_at,
                sources,
            )
            if not row:
                await self._raise_for_rejected_transition(conn, listing.listing_id, ListingEvent.APPROVE_AND_PUBLISH)
                raise RepositoryConflictError("listing already holds an advertising slot")
            return self._listing_row_to_record(row)

        return await self._transact("publish_listing", operation)

    async def unpublish_listing(self, *, listing_id: str, location_ids: Sequence[str], now: datetime) -> ListingRecord:
        """Take an ONLINE listing offline in one transaction.

        Removes its projections, media and slot, clears the slot pointer and
        decrements every name variant of each location it was counted under.
        """
        sources = [status.value for status in allowed_sources(ListingEvent.UNPUBLISH)]

        async def operation(conn: asyncpg.Connection) -> ListingRecord:
            current = await conn.fetchrow(
                "select status from listings where id = $1 and is_deleted = false for update",
                listing_id,
            )
            if not current:
                raise RepositoryNotFoundError("listing not found")
            target = next_status(current["status"], ListingEvent.UNPUBLISH)

            row = await conn.fetchrow(
                f"""
                update listings
                set
                  status = $2,
                  active_slot_id = null,
                  slot_expires_at = null,
                  slot_do_not_renew = false,
                  updated_at = $3
                where id = $1 and status = any($4::text[])
                returning {_LISTING_COLUMNS}
                """,
                listing_id,
                target.value,
                now,
                sources,
            )
            if not row:
                await self._raise_for_rejected_transition(conn, listing_id, ListingEvent.UNPUBLISH)
                raise RepositoryConflictError("listing changed during unpublish")

            await conn.execute("delete from public_listings where listing_id = $1", listing_id)
            await conn.execute("delete from public_listing_media where listing_id = $1", listing_id)
            await conn.execute("delete from advertising_slots where listing_id = $1", listing_id)
            await conn.execute(
                """
                update locations
                set listings_count = greatest(listings_count - 1, 0), updated_at = $2
                where location_id = any($1::text[])
                """,
                list(location_ids),
                now,
            )
            return self._listing_row_to_record(row)

        return await self._transact("unpublish_listing", operation)

    async def finalize_slot_expiry(self, *, slot: SlotRecord, now: datetime) -> str | None:
        """Reset the listing that held ``slot`` and delete the slot in one transaction.

        Returns the listing's resulting status, or ``None`` when the listing no
        longer exists.
        """

        async def operation(conn: asyncpg.Connection) -> str | None:
            current = await conn.fetchrow(
                "select status, active_slot_id from listings where id = $1 for update",
                slot.listing_id,
            )
            resulting_status: str | None = None
            if current:
                resulting_status = current["status"]
                if current["status"] == ListingStatus.ONLINE.value:
                    resulting_status = next_status(current["status"], ListingEvent.EXPIRE).value
                await conn.execute(
                    """
                    update listings
                    set
                      status = $2,
                      active_slot_id = null,
                      slot_expires_at = null,
                      slot_do_not_renew = false,
                      updated_at = $3
                    where id = $1
                    """,
                    slot.listing_id,
                    resulting_status,
                    now,
                )
            await conn.execute(
                "delete from advertising_slots where listing_id = $1 and slot_id = $2",
                slot.listing_id,
                slot.slot_id,
            )
            return resulting_status

        return await self._transact("finalize_slot_expiry", operation)

    # --- projection and counter writes ----------------------------------------

    async def delete_public_listings(self, *, listing_id: str) -> int:
        """Remove every public projection of a listing, whichever location it was published under."""
        pool = await self._get_pool()
        result = await pool.execute("delete from public_listings where listing_id = $1", listing_id)
        return _affected_rows(result)

    async def delete_public_media(self, *, listing_id: str) -> int:
        pool = await self._get_pool()
        result = await pool.execute("delete from public_listing_media where listing_id = $1", listing_id)
        return _affected_rows(result)

    async def adjust_location_count(self, *, location_id: str, delta: int, now: datetime) -> int:
        """Apply ``delta`` to every name variant of a location; returns the number of variants touched."""
        pool = await self._get_pool()
        result = await pool.execute(
            """
            update locations
            set listings_count = greatest(listings_count + $2, 0), updated_at = $3
            where location_id = $1
            """,
            location_id,
            delta,
            now,
        )
        return _affected_rows(result)

    # --- internals -----------------------------------------------------------

    async def _insert_slot(self, conn: asyncpg.Connection, slot: SlotRecord) -> None:
        existing = await conn.fetchval(
            "select slot_id from advertising_slots where listing_id = $1",
            slot.listing_id,
        )
        if existing:
            raise RepositoryConflictError(f"listing {slot.listing_id} already has advertising slot {existing}")
        try:
            await conn.execute(
                """
                insert into advertising_slots (
                  slot_id,
                  listing_id,
                  host_id,
                  plan_id,
                  activated_at,
                  expires_at,
                  review_compensation_days,
                  do_not_renew,
                  is_past_due,
                  marked_for_immediate_expiry,
                  created_at,
                  updated_at
                )
                values ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $5, $5)
                """,
                slot.slot_id,
                slot.listing_id,
                slot.host_id,
                slot.plan_id,
                slot.activated_at,
                slot.expires_at,
                slot.review_compensation_days,
                slot.do_not_renew,
                slot.is_past_due,
                slot.marked_for_immediate_expiry,
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError(f"listing {slot.listing_id} already has an advertising slot") from exc

    async def _raise_for_rejected_transition(
        self,
        conn: asyncpg.Connection,
        listing_id: str,
        event: ListingEvent,
    ) -> None:
        current = await conn.fetchval(
            "select status from listings where id = $1 and is_deleted = false",
            listing_id,
        )
        if current is None:
            raise RepositoryNotFoundError("listing not found")
        next_status(current, event)

    async def _transact(self, label: str, operation: Callable[[asyncpg.Connection], Awaitable[T]]) -> T:
        pool = await self._get_pool()

        async def attempt() -> T:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    return await operation(conn)

        try:
            return await retry_transient(
                attempt,
                label=label,
                max_attempts=self.transaction_max_attempts,
                base_seconds=self.transaction_retry_base_seconds,
                max_seconds=self.transaction_retry_max_seconds,
            )
        except TransientRetriesExhaustedError as exc:
            raise RepositoryTransientError(str(exc)) from exc
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError(str(exc)) from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("LP_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @classmethod
    def _listing_row_to_record(cls, row: Any) -> ListingRecord:
        geocode_raw = cls._coerce_json_dict(row["geocode"])
        geocode: dict[str, GeoRef] = {}
        for level in ("place", "locality", "country", "region"):
            entry = geocode_raw.get(level)
            if isinstance(entry, dict) and isinstance(entry.get("id"), str) and entry["id"]:
                geocode[level] = GeoRef(id=entry["id"], name=entry.get("name"))

        return ListingRecord(
            listing_id=row["listing_id"],
            host_id=row["host_id"],
            listing_name=row["listing_name"],
            status=row["status"],
            description=row["description"] or "",
            property_type=row["property_type"],
            listing_verified=bool(row["listing_verified"]),
            geocode=geocode,
            manual_location_ids=[item for item in (row["manual_location_ids"] or []) if item],
            latitude=row["latitude"],
            longitude=row["longitude"],
            country_code=row["country_code"],
            max_guests=row["max_guests"],
            bedrooms=row["bedrooms"],
            beds=row["beds"],
            bathrooms=row["bathrooms"],
            pets_allowed=bool(row["pets_allowed"]),
            parking_type=row["parking_type"],
            check_in_type=row["check_in_type"],
            active_slot_id=row["active_slot_id"],
            slot_expires_at=row["slot_expires_at"],
            slot_do_not_renew=bool(row["slot_do_not_renew"]),
            created_at=row["created_at"],
            submitted_at=row["submitted_at"],
            approved_at=row["approved_at"],
            first_review_completed_at=row["first_review_completed_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return {}
        if isinstance(value, dict):
            return value
        return {}


def _affected_rows(status: str) -> int:
    # asyncpg returns command tags such as "DELETE 2" or "UPDATE 0".
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        transaction_max_attempts=settings.transaction_max_attempts,
        transaction_retry_base_seconds=settings.transaction_retry_base_seconds,
        transaction_retry_max_seconds=settings.transaction_retry_max_seconds,
    )
