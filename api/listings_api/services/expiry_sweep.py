from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo

from opentelemetry import trace

from listings_api.core.config import get_settings
from listings_api.services.lifecycle import SlotDisposition, classify_expired_slot, is_warning_label, warning_window
from listings_api.services.notifications import (
    NotificationClient,
    get_notification_client,
    host_display_name,
    normalize_language,
)
from listings_api.services.publication import PublicationService, get_publication_service, utc_now
from listings_api.services.repository import HostRecord, ListingRecord, PostgresRepository, SlotRecord, get_repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SweepMode = Literal["warning", "expiry"]
OutcomeStatus = Literal["succeeded", "failed", "skipped"]


@dataclass(slots=True)
class SlotOutcome:
    slot_id: str
    listing_id: str
    host_id: str
    status: OutcomeStatus
    detail: str | None = None


@dataclass(slots=True)
class SweepReport:
    label: str
    mode: SweepMode
    started_at: datetime
    slots_found: int = 0
    succeeded: list[SlotOutcome] = field(default_factory=list)
    failed: list[SlotOutcome] = field(default_factory=list)
    skipped: list[SlotOutcome] = field(default_factory=list)
    hosts_notified: int = 0
    host_notification_failures: int = 0


class ExpirySweep:
    def __init__(
        self,
        repository: PostgresRepository,
        publication: PublicationService,
        notifier: NotificationClient,
        *,
        warning_days: int = 7,
        timezone_name: str = "UTC",
        frontend_url: str = "",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.publication = publication
        self.notifier = notifier
        self.warning_days = warning_days
        self.tz = ZoneInfo(timezone_name)
        self.frontend_url = frontend_url.rstrip("/")
        self.clock = clock

    async def run(self, label: str, now: datetime | None = None) -> SweepReport:
        now = now or self.clock()
        mode: SweepMode = "warning" if is_warning_label(label) else "expiry"
        with tracer.start_as_current_span("slot_sweep.run") as span:
            span.set_attribute("sweep.label", label)
            span.set_attribute("sweep.mode", mode)
            report = SweepReport(label=label, mode=mode, started_at=now)
            if mode == "warning":
                await self._run_warning(report, now)
            else:
                await self._run_expiry(report, now)
            span.set_attribute("sweep.succeeded", len(report.succeeded))
            span.set_attribute("sweep.failed", len(report.failed))
            logger.info(
                "slot sweep finished label=%s mode=%s found=%s succeeded=%s failed=%s skipped=%s hosts_notified=%s",
                label,
                mode,
                report.slots_found,
                len(report.succeeded),
                len(report.failed),
                len(report.skipped),
                report.hosts_notified,
            )
            return report

    async def _run_warning(self, report: SweepReport, now: datetime) -> None:
        start, end = warning_window(now, days_ahead=self.warning_days, tz=self.tz)
        slots = await self.repository.list_slots_expiring_between(start, end)
        report.slots_found = len(slots)
        logger.info("expiry warning window start=%s end=%s slots=%s", start.isoformat(), end.isoformat(), len(slots))

        listing_names: dict[str, str] = {}
        for slot in slots:
            listing = await self._safe_get_listing(slot.listing_id)
            listing_names[slot.listing_id] = listing.listing_name if listing else slot.listing_id
            report.succeeded.append(
                SlotOutcome(slot_id=slot.slot_id, listing_id=slot.listing_id, host_id=slot.host_id, status="succeeded")
            )

        await self._notify_hosts(
            report,
            slots,
            listing_names,
            email_template="ads_expiring_soon",
            push_template="ADS_EXPIRING_SOON",
        )

    async def _run_expiry(self, report: SweepReport, now: datetime) -> None:
        slots = await self.repository.list_slots_expired_before(now)
        report.slots_found = len(slots)

        expired: list[SlotRecord] = []
        listing_names: dict[str, str] = {}
        for slot in slots:
            if classify_expired_slot(slot) is SlotDisposition.SKIP_GRACE:
                logger.info("slot in grace period; skipping slot_id=%s listing_id=%s", slot.slot_id, slot.listing_id)
                report.skipped.append(
                    SlotOutcome(
                        slot_id=slot.slot_id,
                        listing_id=slot.listing_id,
                        host_id=slot.host_id,
                        status="skipped",
                        detail="past due",
                    )
                )
                continue

            try:
                listing = await self.repository.get_listing(slot.listing_id)
                result = await self.publication.expire_slot(slot, listing=listing)
            except Exception as exc:
                logger.exception("slot expiry failed slot_id=%s listing_id=%s", slot.slot_id, slot.listing_id)
                report.failed.append(
                    SlotOutcome(
                        slot_id=slot.slot_id,
                        listing_id=slot.listing_id,
                        host_id=slot.host_id,
                        status="failed",
                        detail=str(exc),
                    )
                )
                continue

            report.succeeded.append(
                SlotOutcome(
                    slot_id=slot.slot_id,
                    listing_id=slot.listing_id,
                    host_id=slot.host_id,
                    status="succeeded",
                    detail="orphaned" if result.orphaned else result.resulting_status,
                )
            )
            if result.listing is not None:
                listing_names[slot.listing_id] = result.listing.listing_name
                expired.append(slot)

        await self._notify_hosts(
            report,
            expired,
            listing_names,
            email_template="ads_expired",
            push_template="ADS_EXPIRED",
        )

    async def _notify_hosts(
        self,
        report: SweepReport,
        slots: list[SlotRecord],
        listing_names: dict[str, str],
        *,
        email_template: str,
        push_template: str,
    ) -> None:
        by_host: dict[str, list[SlotRecord]] = {}
        for slot in slots:
            by_host.setdefault(slot.host_id, []).append(slot)

        hosts: dict[str, HostRecord | None] = {}
        for host_id, host_slots in by_host.items():
            try:
                if host_id not in hosts:
                    hosts[host_id] = await self.repository.get_host(host_id)
                host = hosts[host_id]
                if host is None:
                    logger.warning("skipping %s notification; host %s not found", email_template, host_id)
                    continue
                variables = {
                    "name": host_display_name(host),
                    "listings": [
                        {
                            "listingId": slot.listing_id,
                            "listingName": listing_names.get(slot.listing_id, slot.listing_id),
                            "expiresAt": slot.expires_at.isoformat(),
                        }
                        for slot in host_slots
                    ],
                    "listingCount": len(host_slots),
                    "dashboardUrl": f"{self.frontend_url}/host/listings",
                }
                language = normalize_language(host.preferred_language)
                await self.notifier.send_email(email_template, host.email, language, variables)
                if host.owner_user_sub:
                    await self.notifier.send_push(host.owner_user_sub, push_template, language, variables)
                report.hosts_notified += 1
            except Exception:
                report.host_notification_failures += 1
                logger.exception("failed to send %s notification host_id=%s", email_template, host_id)

    async def _safe_get_listing(self, listing_id: str) -> ListingRecord | None:
        try:
            return await self.repository.get_listing(listing_id)
        except Exception:
            logger.exception("listing lookup failed listing_id=%s", listing_id)
            return None


@lru_cache
def get_expiry_sweep() -> ExpirySweep:
    settings = get_settings()
    return ExpirySweep(
        get_repository(),
        get_publication_service(),
        get_notification_client(),
        warning_days=settings.expiry_warning_days,
        timezone_name=settings.sweep_timezone,
        frontend_url=settings.frontend_url,
    )
