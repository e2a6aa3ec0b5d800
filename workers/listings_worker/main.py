from __future__ import annotations

import asyncio
from datetime import datetime, timezone, tzinfo
import logging
import random
from zoneinfo import ZoneInfo

from opentelemetry import trace

from listings_worker.core.config import DailyJob, get_settings
from listings_worker.core.telemetry import (
    annotate_sweep_span,
    configure_worker_logging,
    setup_worker_telemetry,
    shutdown_worker_telemetry,
)
from listings_worker.jobs.schedule import ScheduledRun, due_runs, next_daily_run
from listings_worker.services.sweep_client import SweepClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def build_schedule(jobs: list[DailyJob], now: datetime, tz: tzinfo) -> dict[str, ScheduledRun]:
    return {
        job.label: ScheduledRun(label=job.label, due_at=next_daily_run(now, hour=job.hour, minute=job.minute, tz=tz))
        for job in jobs
    }


async def run_due_jobs(
    client: SweepClient,
    schedule: dict[str, ScheduledRun],
    jobs: list[DailyJob],
    *,
    now: datetime,
    tz: tzinfo,
) -> list[str]:
    """Trigger every due sweep and reschedule it for its next day.

    A failed trigger raises before its run is rescheduled, so it stays due.
    """
    completed: list[str] = []
    by_label = {job.label: job for job in jobs}
    for run in due_runs(list(schedule.values()), now):
        with tracer.start_as_current_span("worker.slot_sweep") as span:
            span.set_attribute("sweep.label", run.label)
            report = await client.trigger_sweep(run.label)
            annotate_sweep_span(span, report)
            logger.info(
                "slot sweep completed label=%s found=%s succeeded=%s failed=%s skipped=%s",
                run.label,
                report.get("slots_found"),
                len(report.get("succeeded") or []),
                len(report.get("failed") or []),
                len(report.get("skipped") or []),
            )
        job = by_label[run.label]
        schedule[run.label] = ScheduledRun(
            label=run.label,
            due_at=next_daily_run(now, hour=job.hour, minute=job.minute, tz=tz),
        )
        completed.append(run.label)
    return completed


async def run_worker() -> None:
    settings = get_settings()
    configure_worker_logging(settings.log_level)
    telemetry_runtime = setup_worker_telemetry(settings)
    client = SweepClient(
        base_url=settings.api_base_url,
        module_id=settings.module_id,
        api_key=settings.api_key,
        timeout_seconds=settings.sweep_timeout_seconds,
    )
    tz = ZoneInfo(settings.schedule_timezone)
    jobs = settings.daily_jobs()
    schedule = build_schedule(jobs, datetime.now(timezone.utc), tz)
    for run in schedule.values():
        logger.info("scheduled %s at %s", run.label, run.due_at.isoformat())

    backoff = settings.poll_interval_seconds

    try:
        while True:
            try:
                with tracer.start_as_current_span("worker.poll_cycle"):
                    await run_due_jobs(client, schedule, jobs, now=datetime.now(timezone.utc), tz=tz)
                backoff = settings.poll_interval_seconds
                await asyncio.sleep(settings.poll_interval_seconds)
            except Exception as exc:  # pragma: no cover - bootstrap robustness
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        shutdown_worker_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
