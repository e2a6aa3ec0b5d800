from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status as http_status

from listings_api.core.security import get_human_principal
from listings_api.schemas.listings import ListingOut
from listings_api.schemas.slots import SlotDoNotRenewRequest, SlotOut
from listings_api.services.lifecycle import InvalidStateTransitionError
from listings_api.services.publication import get_publication_service
from listings_api.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryTransientError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)
from listings_api.services.subscriptions import get_subscription_service

router = APIRouter()


def _authorize(principal, host_id: str, scopes: set[str]) -> None:
    try:
        principal.require_scopes(scopes)
        principal.require_host_access(host_id)
    except PermissionError as exc:
        raise HTTPException(status_code=http_status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


@router.post("/{host_id}/listings/{listing_id}/unpublish", response_model=ListingOut)
async def unpublish_listing(
    host_id: str,
    listing_id: str,
    principal=Depends(get_human_principal),
    publication=Depends(get_publication_service),
) -> ListingOut:
    _authorize(principal, host_id, {"listings:publish"})

    try:
        listing = await publication.unpublish(listing_id, host_id=host_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (InvalidStateTransitionError, RepositoryValidationError) as exc:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=http_status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryTransientError as exc:
        raise HTTPException(status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal error") from exc
    return ListingOut.from_record(listing)


@router.get("/{host_id}/listings/{listing_id}/slot", response_model=SlotOut)
async def get_listing_slot(
    host_id: str,
    listing_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    subscriptions=Depends(get_subscription_service),
) -> SlotOut:
    _authorize(principal, host_id, {"slots:read"})

    try:
        listing = await repository.get_listing(listing_id)
        if listing is None or listing.host_id != host_id:
            raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="listing not found")
        slot = await subscriptions.get_slot_by_listing_id(listing_id)
        if slot is None:
            raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="listing has no advertising slot")
        summary = await subscriptions.describe_slot(slot, now=datetime.now(timezone.utc))
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return SlotOut.from_summary(summary)


@router.put("/{host_id}/listings/{listing_id}/slot", response_model=SlotOut)
async def set_listing_slot_do_not_renew(
    host_id: str,
    listing_id: str,
    payload: SlotDoNotRenewRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    subscriptions=Depends(get_subscription_service),
) -> SlotOut:
    _authorize(principal, host_id, {"slots:write"})

    try:
        listing = await repository.get_listing(listing_id)
        if listing is None or listing.host_id != host_id:
            raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="listing not found")
        if not listing.active_slot_id:
            raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail="listing has no advertising slot")
        slot = await subscriptions.get_slot_by_listing_id(listing_id)
        if slot is None:
            raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail="listing has no advertising slot")
        if slot.host_id != host_id:
            raise HTTPException(status_code=http_status.HTTP_403_FORBIDDEN, detail="slot belongs to another host")
        updated = await subscriptions.set_slot_do_not_renew(listing_id, slot.slot_id, payload.do_not_renew)
        summary = await subscriptions.describe_slot(updated, now=datetime.now(timezone.utc))
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryTransientError as exc:
        raise HTTPException(status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal error") from exc
    return SlotOut.from_summary(summary)
