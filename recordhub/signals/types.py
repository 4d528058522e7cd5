"""Signal type definitions for augmentation progress reporting."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SignalType(str, Enum):
    """All signal types emitted during a batch augmentation."""

    BATCH_STARTED = "BATCH_STARTED"
    RECORD_PROCESSING = "RECORD_PROCESSING"
    RECORD_AUGMENTED = "RECORD_AUGMENTED"
    RECORD_SKIPPED = "RECORD_SKIPPED"
    MODEL_FALLBACK = "MODEL_FALLBACK"
    BATCH_COMPLETE = "BATCH_COMPLETE"
    BATCH_FAILED = "BATCH_FAILED"


class Signal(BaseModel):
    """An immutable progress event emitted during an augmentation job."""

    sequence: int = Field(description="Monotonic sequence number within the job")
    signal_type: SignalType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    job_id: str
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
