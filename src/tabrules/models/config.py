"""Configuration models for the rule engine."""

from __future__ import annotations

from pydantic import BaseModel, Field

# Default evaluation period of the scheduler.
DEFAULT_INTERVAL_SECONDS = 60.0

# Pre-existing inactive tabs are stamped this far in the past when first seen.
DEFAULT_BACKFILL_OFFSET_MS = 60_000


class EngineConfig(BaseModel):
    """Per-engine settings."""

    interval_seconds: float = Field(default=DEFAULT_INTERVAL_SECONDS, gt=0)
    backfill_offset_ms: int = Field(default=DEFAULT_BACKFILL_OFFSET_MS, ge=0)
    # When False, a cycle that starts while another is in flight is skipped.
    allow_overlapping_cycles: bool = False
