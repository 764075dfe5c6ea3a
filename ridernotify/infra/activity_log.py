# ridernotify/infra/activity_log.py
"""
Activity narration for dispatch and inbound events.

Human-readable lines ("Bulk SMS: 4 sent, 1 failed", "GENERAL reply from
Alex needs follow-up") go to a dedicated logger named "activity" so they
can be routed to a separate sink via logging configuration.
"""
from __future__ import annotations

import logging
from typing import Any

_activity_logger = logging.getLogger("activity")


class LoggingActivityLog:
    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or _activity_logger

    def record(self, text: str, **fields: Any) -> None:
        """
        Record one activity line.

        Args:
            text: Human-readable narration
            fields: Structured context (assignment_id, rider, request_id ...)
        """
        context = {k: v for k, v in fields.items() if v is not None}
        self._logger.info(f"ACTIVITY: {text}", extra=context)


class MemoryActivityLog:
    """Keeps entries in a list (dev mode, tests)."""

    def __init__(self):
        self.entries: list[str] = []

    def record(self, text: str, **fields: Any) -> None:
        self.entries.append(text)
        _activity_logger.debug(f"ACTIVITY: {text}")
