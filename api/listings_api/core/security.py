import hashlib
import hmac
import logging
from collections.abc import Iterable
from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from listings_api.core.auth import Principal, PrincipalType
from listings_api.core.config import Settings, get_settings
from listings_api.services.repository import (
    MachineCredentialRecord,
    RepositoryUnavailableError,
    get_repository,
)

logger = logging.getLogger(__name__)

ROLE_SCOPES: dict[str, frozenset[str]] = {
    "user": frozenset(),
    "host": frozenset({"listings:read", "listings:publish", "slots:read", "slots:write"}),
    "admin": frozenset(
        {
            "listings:read",
            "listings:publish",
            "listings:approve",
            "slots:read",
            "slots:write",
        }
    ),
}

# Highest privilege wins when a user carries several roles.
ROLE_PRIORITY = ("admin", "host", "user")


async def get_machine_principal(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_module_id: str | None = Header(default=None, alias="X-Module-Id"),
) -> Principal:
    """Authenticate a scheduler module by its id and API key."""
    if not x_api_key or not x_module_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"scheduler auth requires X-Module-Id and {settings.api_key_header}",
        )

    try:
        credentials = await repository.get_machine_credentials(x_module_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    matched = _match_credential(credentials, x_api_key)
    if matched is None:
        logger.warning("rejected scheduler credentials module_id=%s", x_module_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid module credentials")

    return Principal(
        principal_type=PrincipalType.MACHINE,
        subject=matched.module_id,
        scopes=set(matched.scopes),
        actor_id=matched.module_db_id,
    )


async def get_human_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    token = _bearer_token(authorization)
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth is not configured",
        )

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    return principal_from_user(user)


def principal_from_user(user: dict[str, Any]) -> Principal:
    """Build a host or admin principal from a Supabase user document."""
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    role = _resolve_human_role(user)
    return Principal(
        principal_type=PrincipalType.HUMAN,
        subject=user_id,
        role=role,
        scopes=set(ROLE_SCOPES[role]),
        actor_id=user_id,
        host_id=_resolve_host_id(user),
    )


def _bearer_token(authorization: str | None) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="human auth requires bearer token")
    token = token.strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")
    return token


def _match_credential(credentials: Iterable[MachineCredentialRecord], api_key: str) -> MachineCredentialRecord | None:
    key_hash = hashlib.sha256(api_key.encode("utf-8")).hexdigest()
    for record in credentials:
        if hmac.compare_digest(record.key_hash, key_hash):
            return record
    return None


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"
    headers = {"Authorization": f"Bearer {token}", "apikey": supabase_anon_key}

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        logger.warning("supabase user lookup failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")
    if response.status_code != 200:
        logger.warning("supabase user lookup returned status=%s", response.status_code)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification failed",
        )
    return response.json()


def _resolve_human_role(user: dict[str, Any]) -> str:
    # Only app_metadata is trusted; user_metadata is writable by the user.
    app_metadata = user.get("app_metadata")
    if not isinstance(app_metadata, dict):
        return "user"

    claimed: set[str] = set()
    role = app_metadata.get("role")
    if isinstance(role, str):
        claimed.add(role)
    roles = app_metadata.get("roles")
    if isinstance(roles, list):
        claimed.update(item for item in roles if isinstance(item, str))

    return next((known for known in ROLE_PRIORITY if known in claimed), "user")


def _resolve_host_id(user: dict[str, Any]) -> str | None:
    app_metadata = user.get("app_metadata") or {}
    host_id = app_metadata.get("host_id") if isinstance(app_metadata, dict) else None
    return host_id if isinstance(host_id, str) and host_id else None
