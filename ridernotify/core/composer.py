# ridernotify/core/composer.py
"""
Message composition for assignment notifications.

Everything here is pure: the same AssignmentContext always yields the same
text, so a resend produces an identical message and tests need no network.
Optional fields that are missing are left out entirely.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from typing import Optional

from ridernotify.core.domain import Assignment, Intent, RequestDetails

SMS_HEADER = "🏍️ ESCORT ASSIGNMENT NOTIFICATION"
REPLY_KEYWORDS = "Reply CONFIRM, DECLINE or INFO"
COURTESY_MARKER = "⭐ COURTESY ⭐"
DEFAULT_SIGNATURE = "Rider Integration and Deployment Engine"

NO_ACTIVE_ASSIGNMENT = "You have no active escort assignment right now."
CONFIRM_ACK = "Thanks, your assignment is confirmed."
DECLINE_ACK = "Thanks, your assignment has been declined. Dispatch has been notified."


@dataclass(frozen=True)
class AssignmentContext:
    assignment: Assignment
    details: Optional[RequestDetails] = None
    co_riders: tuple[str, ...] = field(default_factory=tuple)
    public_base_url: Optional[str] = None
    signature: str = DEFAULT_SIGNATURE

    @property
    def deep_link(self) -> Optional[str]:
        if not self.public_base_url:
            return None
        return f"{self.public_base_url.rstrip('/')}/a/{self.assignment.id}"


def format_date(value: Optional[date]) -> str:
    """MM/DD/YYYY"""
    if value is None:
        return ""
    return value.strftime("%m/%d/%Y")


def format_time(value: Optional[time]) -> str:
    """h:mm AM/PM, no leading zero on the hour"""
    if value is None:
        return ""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def _time_range(a: Assignment) -> str:
    start = format_time(a.start_time)
    end = format_time(a.end_time)
    if start and end:
        return f"{start} - {end}"
    return start or end


def _notes(ctx: AssignmentContext) -> Optional[str]:
    """Request notes win over assignment notes."""
    if ctx.details and ctx.details.notes and ctx.details.notes.strip():
        return ctx.details.notes.strip()
    if ctx.assignment.notes and ctx.assignment.notes.strip():
        return ctx.assignment.notes.strip()
    return None


def compose_sms(ctx: AssignmentContext) -> str:
    a = ctx.assignment
    lines = [SMS_HEADER, "", f"Assignment: {a.id}"]
    if a.request_id:
        lines.append(f"Request: {a.request_id}")
    if a.event_date:
        lines.append(f"📅 Date: {format_date(a.event_date)}")
    time_range = _time_range(a)
    if time_range:
        lines.append(f"🕐 Time: {time_range}")
    if a.start_location:
        lines.append(f"📍 Start: {a.start_location}")
    if a.end_location:
        lines.append(f"🏁 End: {a.end_location}")
    if ctx.details and ctx.details.courtesy:
        lines.append(COURTESY_MARKER)

    lines.append("")
    lines.append(REPLY_KEYWORDS)
    if ctx.deep_link:
        lines.append(ctx.deep_link)
    return "\n".join(lines)


def compose_email(ctx: AssignmentContext) -> tuple[str, str]:
    """Return (subject, body)."""
    a = ctx.assignment
    details = ctx.details
    subject = f"Assignment {a.id} - {a.request_id}"

    lines = [SMS_HEADER, "", f"Assignment: {a.id}"]
    if a.request_id:
        lines.append(f"Request: {a.request_id}")
    if a.rider_name:
        lines.append(f"Rider: {a.rider_name}")
    lines.append("")

    if a.event_date:
        lines.append(f"📅 Date: {format_date(a.event_date)}")
    if a.start_time:
        lines.append(f"🕐 Start time: {format_time(a.start_time)}")
    if a.end_time:
        lines.append(f"🕐 End time: {format_time(a.end_time)}")
    if a.start_location:
        lines.append(f"📍 Start: {a.start_location}")
    if a.end_location:
        lines.append(f"🏁 End: {a.end_location}")

    if details:
        if details.request_type:
            lines.append(f"Type: {details.request_type}")
        if details.requester_name:
            lines.append(f"Requester: {details.requester_name}")
        if details.courtesy:
            lines.extend(["", COURTESY_MARKER])
        if details.special_requirements and details.special_requirements.strip():
            lines.extend(["", f"Special requirements: {details.special_requirements.strip()}"])

    notes = _notes(ctx)
    if notes:
        lines.extend(["", f"📝 Notes: {notes}"])

    if ctx.co_riders:
        lines.extend(["", "Also assigned:"])
        lines.extend(f"  - {name}" for name in ctx.co_riders)

    if ctx.deep_link:
        lines.extend(["", f"Details: {ctx.deep_link}"])

    lines.extend(["", "Reply to the SMS notification with CONFIRM, DECLINE or INFO."])
    lines.extend(["", f"-- {ctx.signature}"])
    return subject, "\n".join(lines)


def compose_ack(intent: Intent, ctx: Optional[AssignmentContext] = None) -> str:
    if intent == Intent.CONFIRM:
        text = CONFIRM_ACK
    elif intent == Intent.DECLINE:
        text = DECLINE_ACK
    else:
        raise ValueError(f"No acknowledgement for intent {intent.value}")

    if ctx is None:
        return text
    a = ctx.assignment
    when = " ".join(p for p in (format_date(a.event_date), format_time(a.start_time)) if p)
    reply = f"{text} Assignment: {a.id}"
    if when:
        reply += f" on {when}"
    return reply


def compose_info_reply(ctx: Optional[AssignmentContext]) -> str:
    if ctx is None:
        return NO_ACTIVE_ASSIGNMENT

    a = ctx.assignment
    lines = [f"Assignment {a.id} ({a.status.value})"]
    if a.request_id:
        lines.append(f"Request: {a.request_id}")
    if a.event_date:
        lines.append(f"Date: {format_date(a.event_date)}")
    time_range = _time_range(a)
    if time_range:
        lines.append(f"Time: {time_range}")
    if a.start_location:
        lines.append(f"Start: {a.start_location}")
    if a.end_location:
        lines.append(f"End: {a.end_location}")
    if ctx.details and ctx.details.courtesy:
        lines.append(COURTESY_MARKER)
    notes = _notes(ctx)
    if notes:
        lines.append(f"Notes: {notes}")
    if ctx.co_riders:
        lines.append("With: " + ", ".join(ctx.co_riders))
    if ctx.deep_link:
        lines.append(ctx.deep_link)
    return "\n".join(lines)
