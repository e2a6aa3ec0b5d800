from fastapi import APIRouter, Depends, HTTPException, status as http_status

from listings_api.core.security import get_human_principal
from listings_api.schemas.listings import ApproveListingOut, ApproveListingRequest, ListingOut
from listings_api.services.lifecycle import InvalidStateTransitionError
from listings_api.services.publication import get_publication_service
from listings_api.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryTransientError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

router = APIRouter()


@router.put("/listings/{listing_id}/approve", response_model=ApproveListingOut)
async def approve_listing(
    listing_id: str,
    payload: ApproveListingRequest,
    principal=Depends(get_human_principal),
    publication=Depends(get_publication_service),
) -> ApproveListingOut:
    try:
        principal.require_scopes({"listings:approve"})
    except PermissionError as exc:
        raise HTTPException(status_code=http_status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        result = await publication.approve(listing_id, listing_verified=payload.listing_verified)
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

    return ApproveListingOut(
        listing=ListingOut.from_record(result.listing),
        published=result.published,
        slot_id=result.slot.slot_id if result.slot else None,
        slot_expires_at=result.slot.expires_at if result.slot else None,
        fallback_reason=result.fallback_reason,
    )
