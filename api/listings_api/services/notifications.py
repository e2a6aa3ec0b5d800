from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx

from listings_api.core.config import get_settings
from listings_api.services.repository import HostRecord

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = {"en", "sr"}
DEFAULT_LANGUAGE = "sr"


@dataclass(slots=True)
class PushResult:
    sent: int = 0
    failed: int = 0


def normalize_language(language: str | None) -> str:
    if not language:
        return DEFAULT_LANGUAGE
    primary = language.strip().lower().replace("_", "-").split("-", 1)[0]
    return primary if primary in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def host_display_name(host: HostRecord) -> str:
    if host.host_type == "INDIVIDUAL":
        full_name = " ".join(part for part in (host.forename, host.surname) if part)
        if full_name:
            return full_name
    for candidate in (host.legal_name, host.display_name, host.business_name):
        if candidate:
            return candidate
    return "Host"


class NotificationClient:
    """Client for the external notification service.

    Without a configured base URL every call is logged and skipped.
    """

    def __init__(
        self,
        base_url: str | None,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.headers = {"X-API-Key": api_key} if api_key else {}
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def send_email(
        self,
        template_name: str,
        recipient: str,
        language: str,
        variables: dict[str, Any],
    ) -> None:
        payload = {
            "template_name": template_name,
            "recipient": recipient,
            "language": normalize_language(language),
            "variables": variables,
        }
        if self.base_url is None:
            logger.info("notification service not configured; skipping email template=%s", template_name)
            return
        await self._post("/emails", payload)

    async def send_push(
        self,
        user_id: str,
        template_name: str,
        language: str,
        variables: dict[str, Any],
    ) -> PushResult:
        payload = {
            "user_id": user_id,
            "template_name": template_name,
            "language": normalize_language(language),
            "variables": variables,
        }
        if self.base_url is None:
            logger.info("notification service not configured; skipping push template=%s", template_name)
            return PushResult()
        body = await self._post("/push", payload)
        return PushResult(sent=int(body.get("sent", 0)), failed=int(body.get("failed", 0)))

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = await client.post(f"{self.base_url}{path}", json=payload, headers=self.headers)
            response.raise_for_status()
            if not response.content:
                return {}
            return response.json()


@lru_cache
def get_notification_client() -> NotificationClient:
    settings = get_settings()
    return NotificationClient(
        base_url=settings.notification_service_url,
        api_key=settings.notification_api_key,
        timeout_seconds=settings.notification_timeout_seconds,
    )
