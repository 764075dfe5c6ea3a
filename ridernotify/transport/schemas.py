# ridernotify/transport/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ridernotify.core.domain import (
    BatchResult,
    Channel,
    DeliveryResult,
    NotificationResult,
    NotificationStats,
)


def _parse_channel(value):
    if isinstance(value, Channel):
        return value
    return Channel.parse(value)


class DispatchIn(BaseModel):
    assignment_ids: Optional[list[str]] = Field(default=None, max_length=500)
    filter: Optional[str] = Field(default=None, max_length=32)
    channel: Channel = Channel.SMS

    @field_validator("channel", mode="before")
    @classmethod
    def parse_channel(cls, value):
        return _parse_channel(value)

    @model_validator(mode="after")
    def check_selector(self) -> "DispatchIn":
        if (self.assignment_ids is None) == (self.filter is None):
            raise ValueError("Provide exactly one of assignment_ids or filter")
        return self


class NotifyIn(BaseModel):
    channel: Channel = Channel.SMS

    @field_validator("channel", mode="before")
    @classmethod
    def parse_channel(cls, value):
        return _parse_channel(value)


class DeliveryOut(BaseModel):
    success: bool
    external_id: Optional[str] = None
    error_message: Optional[str] = None
    attempts: int = 0
    error_kind: Optional[str] = None

    @classmethod
    def from_result(cls, r: Optional[DeliveryResult]) -> Optional["DeliveryOut"]:
        if r is None:
            return None
        return cls(
            success=r.success,
            external_id=r.external_id,
            error_message=r.error_message,
            attempts=r.attempts,
            error_kind=r.error_kind.value if r.error_kind else None,
        )


class NotificationOut(BaseModel):
    assignment_id: str
    channel: str
    success: bool
    message: str
    sms: Optional[DeliveryOut] = None
    email: Optional[DeliveryOut] = None

    @classmethod
    def from_result(cls, r: NotificationResult) -> "NotificationOut":
        return cls(
            assignment_id=r.assignment_id,
            channel=r.channel.value,
            success=r.success,
            message=r.message,
            sms=DeliveryOut.from_result(r.sms),
            email=DeliveryOut.from_result(r.email),
        )


class BatchOut(BaseModel):
    label: str
    total_targets: int
    successful: int
    failed: int
    errors: list[str]
    message: str

    @classmethod
    def from_result(cls, r: BatchResult) -> "BatchOut":
        return cls(
            label=r.label,
            total_targets=r.total_targets,
            successful=r.successful,
            failed=r.failed,
            errors=list(r.errors),
            message=r.message,
        )


class StatsOut(BaseModel):
    total_eligible: int
    pending: int
    unnotified_assigned: int
    sms_today: int
    email_today: int
    generated_at: datetime

    @classmethod
    def from_stats(cls, s: NotificationStats, generated_at: datetime) -> "StatsOut":
        return cls(
            total_eligible=s.total_eligible,
            pending=s.pending,
            unnotified_assigned=s.unnotified_assigned,
            sms_today=s.sms_today,
            email_today=s.email_today,
            generated_at=generated_at,
        )
