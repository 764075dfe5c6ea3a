# ridernotify/core/engine_config.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ridernotify.core.composer import DEFAULT_SIGNATURE


@dataclass(frozen=True)
class EngineConfig:
    """The slice of Settings the engine needs, built once at startup."""
    pacing_block_size: int = 5
    pacing_pause_seconds: float = 1.0
    batch_error_sample_size: int = 10
    public_base_url: Optional[str] = None
    email_signature: str = DEFAULT_SIGNATURE

    @classmethod
    def from_settings(cls, settings) -> "EngineConfig":
        return cls(
            pacing_block_size=settings.pacing_block_size,
            pacing_pause_seconds=settings.pacing_pause_seconds,
            batch_error_sample_size=settings.batch_error_sample_size,
            public_base_url=settings.public_base_url,
            email_signature=settings.email_signature,
        )
