from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status as http_status

from listings_api.core.security import get_machine_principal
from listings_api.schemas.sweeps import SweepOut, SweepRequest
from listings_api.services.expiry_sweep import get_expiry_sweep
from listings_api.services.repository import RepositoryUnavailableError

router = APIRouter()


@router.post("/slot-expiry", response_model=SweepOut)
async def run_slot_expiry_sweep(
    payload: SweepRequest,
    principal=Depends(get_machine_principal),
    sweep=Depends(get_expiry_sweep),
) -> SweepOut:
    try:
        principal.require_scopes({"slots:sweep"})
    except PermissionError as exc:
        raise HTTPException(status_code=http_status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        report = await sweep.run(payload.label)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return SweepOut(**asdict(report))
