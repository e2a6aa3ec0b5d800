from __future__ import annotations

from datetime import datetime

from listings_api.services.locations import ResolvedLocations
from listings_api.services.repository import (
    HostRecord,
    ImageRecord,
    ListingRecord,
    PublicListingRow,
    PublicMediaRow,
)

SHORT_DESCRIPTION_LENGTH = 100

AMENITY_FILTERS = {
    "WIFI": "has_wifi",
    "AIR_CONDITIONING": "has_air_conditioning",
    "PARKING": "has_parking",
    "GYM": "has_gym",
    "POOL": "has_pool",
    "WORKSPACE": "has_workspace",
}


class ProjectionError(Exception):
    """Raised when a listing cannot be projected for public browsing."""


def short_description(description: str | None) -> str:
    text = (description or "").strip()
    if len(text) <= SHORT_DESCRIPTION_LENGTH:
        return text
    return text[:SHORT_DESCRIPTION_LENGTH] + "..."


def select_primary_image(images: list[ImageRecord]) -> ImageRecord:
    primary = [image for image in images if image.is_primary]
    if len(primary) != 1:
        raise ProjectionError(f"expected exactly one primary image, found {len(primary)}")
    if not primary[0].thumbnail_url:
        raise ProjectionError("primary image has no thumbnail")
    return primary[0]


def amenity_filters(amenity_keys: list[str]) -> dict[str, bool]:
    keys = {key.upper() for key in amenity_keys}
    return {column: amenity in keys for amenity, column in AMENITY_FILTERS.items()}


def build_public_listing_rows(
    *,
    listing: ListingRecord,
    host: HostRecord,
    locations: ResolvedLocations,
    images: list[ImageRecord],
    amenity_keys: list[str],
    listing_verified: bool,
    now: datetime,
) -> list[PublicListingRow]:
    primary = select_primary_image(images)
    filters = amenity_filters(amenity_keys)

    place_ref = listing.geocode.get("place")
    locality_ref = listing.geocode.get("locality")
    region_ref = listing.geocode.get("region")
    place_name = (locations.place.name if locations.place else None) or (place_ref.name if place_ref else None)
    locality_name = (locations.locality.name if locations.locality else None) or (
        locality_ref.name if locality_ref else None
    )
    region_name = (locations.place.region_name if locations.place else None) or (
        region_ref.name if region_ref else None
    )

    rows: list[PublicListingRow] = []
    for location_id, location_type in locations.projection_ids():
        rows.append(
            PublicListingRow(
                location_id=location_id,
                listing_id=listing.listing_id,
                host_id=listing.host_id,
                location_type=location_type,
                name=listing.listing_name,
                short_description=short_description(listing.description),
                place_name=place_name,
                region_name=region_name,
                locality_name=locality_name,
                max_guests=listing.max_guests,
                bedrooms=listing.bedrooms,
                beds=listing.beds,
                bathrooms=listing.bathrooms,
                thumbnail_url=primary.thumbnail_url or "",
                latitude=listing.latitude,
                longitude=listing.longitude,
                pets_allowed=listing.pets_allowed,
                parking_type=listing.parking_type,
                check_in_type=listing.check_in_type,
                property_type=listing.property_type,
                host_verified=host.is_verified,
                listing_verified=listing_verified,
                created_at=now,
                updated_at=now,
                **filters,
            )
        )
    return rows


def build_media_rows(*, listing_id: str, images: list[ImageRecord], now: datetime) -> list[PublicMediaRow]:
    ordered = sorted(images, key=lambda image: (not image.is_primary, image.display_order, image.image_id))
    return [
        PublicMediaRow(
            listing_id=listing_id,
            image_index=index,
            url=image.full_url,
            thumbnail_url=image.thumbnail_url,
            caption=image.caption,
            is_cover_image=index == 0,
            created_at=now,
        )
        for index, image in enumerate(ordered)
    ]
