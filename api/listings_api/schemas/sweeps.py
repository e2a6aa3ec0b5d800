from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class SweepRequest(BaseModel):
    label: str = Field(default="SLOT_EXPIRY", min_length=1, max_length=128)


class SlotOutcomeOut(BaseModel):
    slot_id: str
    listing_id: str
    host_id: str
    status: Literal["succeeded", "failed", "skipped"]
    detail: str | None = None


class SweepOut(BaseModel):
    label: str
    mode: Literal["warning", "expiry"]
    started_at: datetime
    slots_found: int
    succeeded: list[SlotOutcomeOut]
    failed: list[SlotOutcomeOut]
    skipped: list[SlotOutcomeOut]
    hosts_notified: int
    host_notification_failures: int
