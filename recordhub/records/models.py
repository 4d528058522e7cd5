"""Record data models: imported fields plus system-managed augmentation state."""

from __future__ import annotations

import random
import string
import time
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from recordhub.records.lifecycle import AugmentationState

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_record_id() -> str:
    """Build an id from the current time in milliseconds and a random suffix."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"record_{int(time.time() * 1000)}_{suffix}"


class AugmentationData(BaseModel):
    """Outcome of one successful augmentation, applied to a record by the store."""

    result: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    custom_properties: dict[str, Any] = Field(default_factory=dict)


class Record(BaseModel):
    """A single imported business record.

    ``fields`` holds the imported columns in header order. Everything else is
    managed by the store:
    - ``id`` is assigned at insertion and never changes
    - ``custom_properties`` holds values researched by the AI backend
    - ``augmentation_results`` and ``last_augmented`` are set on augmentation
    """

    id: str = Field(default_factory=generate_record_id)
    fields: dict[str, str | int | float] = Field(default_factory=dict)
    custom_properties: dict[str, Any] = Field(default_factory=dict)
    augmentation_results: str | None = None
    last_augmented: datetime | None = None
    state: AugmentationState = AugmentationState.UNAUGMENTED

    @property
    def name(self) -> str:
        return str(self.fields.get("name", ""))

    @property
    def has_analysis(self) -> bool:
        return bool(self.augmentation_results)

    def value(self, key: str) -> Any:
        """Look up an imported field, falling back to a custom property."""
        if key in self.fields:
            return self.fields[key]
        return self.custom_properties.get(key)
