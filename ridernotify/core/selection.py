# ridernotify/core/selection.py
"""Target presets for bulk dispatch and the derived notification status."""
from __future__ import annotations

from datetime import date, timedelta
from typing import Callable, Iterable

from ridernotify.core.domain import (
    ACTIVE_STATUSES,
    Assignment,
    AssignmentStatus,
    NotificationStatus,
)

WEEK_DAYS = 7


def is_pending(a: Assignment) -> bool:
    """Has a rider, active status, and nothing sent on any channel yet."""
    return a.has_rider() and a.status in ACTIVE_STATUSES and not a.has_any_notification()


def is_assigned(a: Assignment) -> bool:
    return a.has_rider() and not a.is_terminal()


def _on_dates(start: date, end: date) -> Callable[[Assignment], bool]:
    def predicate(a: Assignment) -> bool:
        return (
            a.event_date is not None
            and start <= a.event_date <= end
            and is_assigned(a)
        )
    return predicate


def _preset(name: str, today: date) -> Callable[[Assignment], bool]:
    if name == "today":
        return _on_dates(today, today)
    if name == "week":
        return _on_dates(today, today + timedelta(days=WEEK_DAYS))
    if name == "pending":
        return is_pending
    if name == "assigned":
        return is_assigned
    raise KeyError(name)


PRESETS = ("today", "week", "pending", "assigned")


def select(assignments: Iterable[Assignment], preset: str, today: date) -> list[Assignment]:
    """
    Apply a named preset, keeping the incoming order.

    Raises KeyError for an unknown preset name.
    """
    predicate = _preset(preset.strip().lower(), today)
    return [a for a in assignments if predicate(a)]


def notification_status(a: Assignment) -> NotificationStatus:
    if a.sms_sent_at and a.email_sent_at:
        return NotificationStatus.BOTH_SENT
    if a.sms_sent_at:
        return NotificationStatus.SMS_SENT
    if a.email_sent_at:
        return NotificationStatus.EMAIL_SENT
    if a.notified_at:
        return NotificationStatus.NOTIFIED
    if a.has_rider() and a.status == AssignmentStatus.ASSIGNED:
        return NotificationStatus.PENDING
    return NotificationStatus.NO_RIDER
