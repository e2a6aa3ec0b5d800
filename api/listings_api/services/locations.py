from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from listings_api.services.repository import ListingRecord, LocationRecord, PostgresRepository

logger = logging.getLogger(__name__)

LocationSource = Literal["geocoded", "manual"]


class LocationResolutionError(Exception):
    """Raised when a listing's location ids cannot be resolved."""


@dataclass(slots=True)
class ResolvedLocations:
    place_id: str
    source: LocationSource
    locality_id: str | None = None
    country_id: str | None = None
    place: LocationRecord | None = None
    locality: LocationRecord | None = None

    def all_ids(self) -> list[str]:
        """Every location id the listing is counted under, country first."""
        ordered = [self.country_id, self.place_id, self.locality_id]
        seen: list[str] = []
        for location_id in ordered:
            if location_id and location_id not in seen:
                seen.append(location_id)
        return seen

    def projection_ids(self) -> list[tuple[str, str]]:
        pairs = [(self.place_id, "PLACE")]
        if self.locality_id and self.locality_id != self.place_id:
            pairs.append((self.locality_id, "LOCALITY"))
        return pairs


@dataclass(slots=True)
class CounterOutcome:
    location_id: str
    variants_updated: int = 0
    error: str | None = None


@dataclass(slots=True)
class FanOutReport:
    succeeded: list[CounterOutcome] = field(default_factory=list)
    failed: list[CounterOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


async def resolve_listing_locations(repository: PostgresRepository, listing: ListingRecord) -> ResolvedLocations:
    """Resolve the place, locality and country a listing is published under.

    Geocoded listings carry ids directly. Manually located listings point at
    location rows; a locality is published under its parent place as well.
    """
    place_ref = listing.geocode.get("place")
    if place_ref is not None:
        locality_ref = listing.geocode.get("locality")
        country_ref = listing.geocode.get("country")
        place = await repository.get_location(place_ref.id)
        locality = await repository.get_location(locality_ref.id) if locality_ref else None
        return ResolvedLocations(
            place_id=place_ref.id,
            locality_id=locality_ref.id if locality_ref else None,
            country_id=country_ref.id if country_ref else None,
            source="geocoded",
            place=place,
            locality=locality,
        )

    if not listing.manual_location_ids:
        raise LocationResolutionError(f"listing {listing.listing_id} has no location data")

    first_id = listing.manual_location_ids[0]
    first = await repository.get_location(first_id)
    if first is None:
        raise LocationResolutionError(f"manual location {first_id} not found")

    place: LocationRecord | None = first
    locality: LocationRecord | None = None
    if first.location_type == "LOCALITY":
        if not first.parent_place_id:
            raise LocationResolutionError(f"locality {first_id} has no parent place")
        locality = first
        place = await repository.get_location(first.parent_place_id)
        if place is None:
            raise LocationResolutionError(f"parent place {first.parent_place_id} not found")

    country_id: str | None = None
    for location_id in listing.manual_location_ids[1:]:
        candidate = await repository.get_location(location_id)
        if candidate is not None and candidate.location_type == "COUNTRY":
            country_id = candidate.location_id
            break

    return ResolvedLocations(
        place_id=place.location_id,
        locality_id=locality.location_id if locality else None,
        country_id=country_id,
        source="manual",
        place=place,
        locality=locality,
    )


def stored_location_ids(listing: ListingRecord) -> list[str]:
    """Location ids recorded on the listing itself, without looking any of them up."""
    ids: list[str] = []
    for level in ("country", "place", "locality"):
        ref = listing.geocode.get(level)
        if ref is not None and ref.id and ref.id not in ids:
            ids.append(ref.id)
    for location_id in listing.manual_location_ids:
        if location_id and location_id not in ids:
            ids.append(location_id)
    return ids


async def retirement_location_ids(repository: PostgresRepository, listing: ListingRecord) -> list[str]:
    """Location ids a listing is taken off when it leaves ONLINE.

    A location row that no longer exists must not keep the listing public, so a
    failed resolution falls back to the ids stored on the listing.
    """
    if not listing.has_location_data():
        return []
    try:
        resolved = await resolve_listing_locations(repository, listing)
    except LocationResolutionError as exc:
        logger.warning(
            "location resolution failed; using stored ids listing_id=%s error=%s",
            listing.listing_id,
            exc,
        )
        return stored_location_ids(listing)
    return resolved.all_ids()


async def adjust_location_counters(
    repository: PostgresRepository,
    location_ids: list[str],
    *,
    delta: int,
    now: datetime,
) -> FanOutReport:
    """Apply ``delta`` to each location's counter in order, recording each outcome.

    A location without rows is not a failure; its outcome reports zero variants.
    """
    report = FanOutReport()
    for location_id in location_ids:
        try:
            updated = await repository.adjust_location_count(location_id=location_id, delta=delta, now=now)
        except Exception as exc:
            logger.exception("location counter update failed location_id=%s delta=%s", location_id, delta)
            report.failed.append(CounterOutcome(location_id=location_id, error=str(exc)))
            continue
        if updated == 0:
            logger.info("location counter skipped; no rows for location_id=%s", location_id)
        report.succeeded.append(CounterOutcome(location_id=location_id, variants_updated=updated))
    return report
