# ridernotify/core/status_recorder.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from ridernotify.core.domain import (
    ALLOWED_TRANSITIONS,
    EMAIL_SENT_AT,
    NOTIFIED_AT,
    SMS_SENT_AT,
    STATUS,
    AssignmentStatus,
    Channel,
    RecordResult,
)
from ridernotify.core.ports import AssignmentStore, ReadCache
from ridernotify.infra.logging_config import get_logger
from ridernotify.infra.metrics import NotifyMetrics

logger = get_logger(__name__)

_CHANNEL_FIELDS = {
    Channel.SMS: SMS_SENT_AT,
    Channel.EMAIL: EMAIL_SENT_AT,
}


class StatusRecorder:
    """
    Writes notification outcomes and inbound status changes back to the
    assignment, one field at a time, addressed by assignment id.

    A missing assignment is a logged no-op, not an exception.  Every write
    that lands invalidates the read cache over the assignment collection.
    """

    def __init__(self, store: AssignmentStore, cache: Optional[ReadCache] = None):
        self._store = store
        self._cache = cache

    async def record(self, assignment_id: str, channel: Channel, timestamp: datetime) -> RecordResult:
        field = _CHANNEL_FIELDS.get(channel)
        if field is None:
            raise ValueError(f"record() takes SMS or Email, got {channel.value}")

        assignment = await self._store.get(assignment_id)
        if assignment is None:
            logger.warning(f"Cannot record {channel.value} send: assignment {assignment_id} not found")
            return RecordResult(assignment_id, updated=False, message="Assignment not found")

        written: list[str] = []
        if await self._store.set_field(assignment_id, field, timestamp):
            written.append(field)
        if assignment.notified_at is None and await self._store.set_field(assignment_id, NOTIFIED_AT, timestamp):
            written.append(NOTIFIED_AT)

        if not written:
            # Row vanished between the read and the write
            logger.warning(f"Assignment {assignment_id} disappeared before {field} could be written")
            return RecordResult(assignment_id, updated=False, message="Assignment not found")

        self._invalidate()
        return RecordResult(assignment_id, updated=True, fields=written, message=f"{channel.value} recorded")

    async def set_status(self, assignment_id: str, new_status: AssignmentStatus) -> RecordResult:
        assignment = await self._store.get(assignment_id)
        if assignment is None:
            logger.warning(f"Cannot set status {new_status.value}: assignment {assignment_id} not found")
            return RecordResult(assignment_id, updated=False, message="Assignment not found")

        current = assignment.status
        if current == new_status:
            return RecordResult(assignment_id, updated=False, message=f"Already {current.value}")

        if new_status not in ALLOWED_TRANSITIONS.get(current, frozenset()):
            logger.info(f"Refusing transition {current.value} -> {new_status.value} for {assignment_id}")
            return RecordResult(
                assignment_id,
                updated=False,
                message=f"Transition {current.value} -> {new_status.value} not allowed",
            )

        if not await self._store.set_field(assignment_id, STATUS, new_status.value):
            return RecordResult(assignment_id, updated=False, message="Assignment not found")

        self._invalidate()
        NotifyMetrics.status_transition(new_status.value)
        logger.info(f"Assignment {assignment_id}: {current.value} -> {new_status.value}")
        return RecordResult(assignment_id, updated=True, fields=[STATUS], message=new_status.value)

    def _invalidate(self) -> None:
        if self._cache is not None:
            self._cache.invalidate()
