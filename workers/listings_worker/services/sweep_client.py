from __future__ import annotations

from typing import Any

import httpx


class SweepClient:
    def __init__(
        self,
        base_url: str,
        module_id: str,
        api_key: str,
        timeout_seconds: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "X-Module-Id": module_id,
            "X-API-Key": api_key,
        }
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def trigger_sweep(self, label: str) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = await client.post(
                f"{self.base_url}/jobs/slot-expiry",
                json={"label": label},
                headers=self.headers,
            )
            response.raise_for_status()
            return response.json()

