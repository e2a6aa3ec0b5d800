from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from listings_worker.core.config import DailyJob
from listings_worker.main import build_schedule, run_due_jobs
from listings_worker.services.sweep_client import SweepClient

JOBS = [DailyJob(label="SLOT_EXPIRY", hour=1), DailyJob(label="EXPIRY_WARNING", hour=8)]


def _client(labels: list[str], *, fail_for: str | None = None) -> SweepClient:
    def handler(request: httpx.Request) -> httpx.Response:
        label = json.loads(request.content)["label"]
        labels.append(label)
        if label == fail_for:
            return httpx.Response(503, json={"detail": "database unavailable"})
        return httpx.Response(
            200,
            json={"label": label, "mode": "expiry", "slots_found": 0, "succeeded": [], "failed": [], "skipped": []},
        )

    return SweepClient("http://api.internal", "slot-sweeper", "key", transport=httpx.MockTransport(handler))


def test_only_due_jobs_are_triggered_and_rescheduled() -> None:
    start = datetime(2026, 3, 10, 0, 0, tzinfo=timezone.utc)
    schedule = build_schedule(JOBS, start, timezone.utc)
    labels: list[str] = []
    now = datetime(2026, 3, 10, 1, 0, 5, tzinfo=timezone.utc)

    completed = asyncio.run(run_due_jobs(_client(labels), schedule, JOBS, now=now, tz=timezone.utc))

    assert completed == ["SLOT_EXPIRY"]
    assert labels == ["SLOT_EXPIRY"]
    assert schedule["SLOT_EXPIRY"].due_at == datetime(2026, 3, 11, 1, 0, tzinfo=timezone.utc)
    assert schedule["EXPIRY_WARNING"].due_at == datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)


def test_failed_trigger_stays_due() -> None:
    start = datetime(2026, 3, 10, 0, 0, tzinfo=timezone.utc)
    schedule = build_schedule(JOBS, start, timezone.utc)
    labels: list[str] = []
    now = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(run_due_jobs(_client(labels, fail_for="EXPIRY_WARNING"), schedule, JOBS, now=now, tz=timezone.utc))

    assert labels == ["SLOT_EXPIRY", "EXPIRY_WARNING"]
    assert schedule["SLOT_EXPIRY"].due_at == datetime(2026, 3, 11, 1, 0, tzinfo=timezone.utc)
    assert schedule["EXPIRY_WARNING"].due_at == datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)
