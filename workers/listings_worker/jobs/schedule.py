from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo


@dataclass(slots=True)
class ScheduledRun:
    label: str
    due_at: datetime


def next_daily_run(now: datetime, *, hour: int, minute: int = 0, tz: tzinfo = timezone.utc) -> datetime:
    """Return the next instant strictly after ``now`` at ``hour:minute`` local time in ``tz``."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_now = now.astimezone(tz)
    candidate = datetime.combine(local_now.date(), time(hour=hour, minute=minute), tzinfo=tz)
    if candidate <= local_now:
        candidate = datetime.combine(local_now.date() + timedelta(days=1), time(hour=hour, minute=minute), tzinfo=tz)
    return candidate.astimezone(timezone.utc)


def due_runs(schedule: list[ScheduledRun], now: datetime) -> list[ScheduledRun]:
    return sorted((run for run in schedule if run.due_at <= now), key=lambda run: run.due_at)
