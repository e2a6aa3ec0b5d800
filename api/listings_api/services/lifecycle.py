from __future__ import annotations

from datetime import datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any


class ListingStatus(str, Enum):
    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    REVIEWING = "REVIEWING"
    LOCKED = "LOCKED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    ARCHIVED = "ARCHIVED"


class ListingEvent(str, Enum):
    SUBMIT = "submit"
    START_REVIEW = "start_review"
    LOCK = "lock"
    APPROVE = "approve"
    APPROVE_AND_PUBLISH = "approve_and_publish"
    REJECT = "reject"
    UNPUBLISH = "unpublish"
    EXPIRE = "expire"
    ARCHIVE = "archive"


class SlotDisposition(str, Enum):
    EXPIRE = "expire"
    SKIP_GRACE = "skip_grace"


class InvalidStateTransitionError(Exception):
    """Raised when a listing's current status does not allow the requested event."""

    def __init__(self, current: str, event: ListingEvent, expected: tuple[ListingStatus, ...]) -> None:
        self.current = current
        self.event = event
        self.expected = expected
        expected_text = ", ".join(status.value for status in expected)
        super().__init__(
            f"Cannot {event.value.replace('_', ' ')} listing with status {current}. "
            f"Expected one of: {expected_text}."
        )


_REVIEW_STATES = (ListingStatus.IN_REVIEW, ListingStatus.REVIEWING, ListingStatus.LOCKED)

TRANSITIONS: dict[ListingEvent, tuple[tuple[ListingStatus, ...], ListingStatus]] = {
    ListingEvent.SUBMIT: ((ListingStatus.DRAFT, ListingStatus.REJECTED), ListingStatus.IN_REVIEW),
    ListingEvent.START_REVIEW: ((ListingStatus.IN_REVIEW,), ListingStatus.REVIEWING),
    ListingEvent.LOCK: ((ListingStatus.IN_REVIEW, ListingStatus.REVIEWING), ListingStatus.LOCKED),
    ListingEvent.APPROVE: (_REVIEW_STATES, ListingStatus.APPROVED),
    ListingEvent.APPROVE_AND_PUBLISH: (_REVIEW_STATES, ListingStatus.ONLINE),
    ListingEvent.REJECT: (_REVIEW_STATES, ListingStatus.REJECTED),
    ListingEvent.UNPUBLISH: ((ListingStatus.ONLINE,), ListingStatus.OFFLINE),
    ListingEvent.EXPIRE: ((ListingStatus.ONLINE,), ListingStatus.APPROVED),
    ListingEvent.ARCHIVE: (
        tuple(status for status in ListingStatus if status is not ListingStatus.ARCHIVED),
        ListingStatus.ARCHIVED,
    ),
}


def allowed_sources(event: ListingEvent) -> tuple[ListingStatus, ...]:
    return TRANSITIONS[event][0]


def next_status(current: str | ListingStatus, event: ListingEvent) -> ListingStatus:
    sources, target = TRANSITIONS[event]
    current_value = current.value if isinstance(current, ListingStatus) else str(current)
    if current_value not in {status.value for status in sources}:
        raise InvalidStateTransitionError(current_value, event, sources)
    return target


def classify_expired_slot(slot: Any) -> SlotDisposition:
    """Decide what the expiry sweep does with a slot whose lease has lapsed.

    A past-due slot stays in its grace period unless billing marked it for
    immediate expiry.
    """
    if getattr(slot, "marked_for_immediate_expiry", False):
        return SlotDisposition.EXPIRE
    if getattr(slot, "is_past_due", False):
        return SlotDisposition.SKIP_GRACE
    return SlotDisposition.EXPIRE


def warning_window(now: datetime, *, days_ahead: int, tz: tzinfo = timezone.utc) -> tuple[datetime, datetime]:
    """Return the first and last instant of the calendar day ``days_ahead`` days after ``now``."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    target_day = (now.astimezone(tz) + timedelta(days=days_ahead)).date()
    start = datetime.combine(target_day, time.min, tzinfo=tz)
    end = datetime.combine(target_day, time.max, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def is_warning_label(label: str | None) -> bool:
    if not label:
        return False
    return label == "EXPIRY_WARNING" or "warning" in label.lower()
