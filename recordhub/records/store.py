"""Record store: the single source of truth for imported records.

Holds the record collection, the derived schema of available fields, the
current selection, and the augmentation config. Every mutation is one
synchronous transition; callers never touch the underlying state directly.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any

from recordhub.config.settings import AugmentationConfig
from recordhub.records.lifecycle import AugmentationState, can_transition
from recordhub.records.models import AugmentationData, Record, generate_record_id
from recordhub.records.storage import BlobStorage
from recordhub.telemetry.errors import ErrorCode, LifecycleError, emit_structured_error

logger = logging.getLogger(__name__)

STORAGE_KEY = "record-store"
BLOB_VERSION = 1
LOCATION_HINTS = ("location", "city", "state", "country")


class RecordStore:
    """In-memory record table with derived schema, selection and config."""

    def __init__(
        self,
        storage: BlobStorage | None = None,
        storage_key: str = STORAGE_KEY,
        config: AugmentationConfig | None = None,
    ) -> None:
        self._storage = storage
        self._storage_key = storage_key

        self._records: dict[str, Record] = {}
        self._available_fields: list[str] = []
        self._selected: dict[str, None] = {}
        self._config = config or AugmentationConfig()

        self.hydrate()

    # --- Reads ---

    @property
    def records(self) -> list[Record]:
        return list(self._records.values())

    @property
    def available_fields(self) -> list[str]:
        return list(self._available_fields)

    @property
    def config(self) -> AugmentationConfig:
        return self._config

    @property
    def selected_ids(self) -> list[str]:
        return list(self._selected)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def get_record(self, record_id: str) -> Record | None:
        return self._records.get(record_id)

    def selected_records(self) -> list[Record]:
        """Selected records in collection order."""
        return [record for record in self._records.values() if record.id in self._selected]

    def augmented_records(self) -> list[Record]:
        return [record for record in self._records.values() if record.has_analysis]

    def unaugmented_records(self) -> list[Record]:
        return [record for record in self._records.values() if not record.has_analysis]

    def search(self, query: str) -> list[Record]:
        """Records whose name contains ``query``, ignoring case."""
        needle = query.lower()
        return [record for record in self._records.values() if needle in record.name.lower()]

    def field_counts(self, field: str) -> dict[str, int]:
        """Occurrences of each non-empty value of ``field``, in first-seen order."""
        counts: Counter[str] = Counter()
        for record in self._records.values():
            value = record.fields.get(field)
            if value:
                counts[str(value)] += 1
        return dict(counts)

    def location_field(self) -> str | None:
        """First schema field that looks like a location, if any."""
        for field in self._available_fields:
            lowered = field.lower()
            if any(hint in lowered for hint in LOCATION_HINTS):
                return field
        return None

    def stats(self) -> dict[str, Any]:
        """Collection totals plus the most common value of the location field."""
        location_field = self.location_field()
        top_location = None
        if location_field is not None:
            common = Counter(self.field_counts(location_field)).most_common(1)
            if common:
                top_location = {"value": common[0][0], "count": common[0][1]}
        augmented = len(self.augmented_records())
        return {
            "total": len(self._records),
            "augmented": augmented,
            "unaugmented": len(self._records) - augmented,
            "selected": len(self._selected),
            "location_field": location_field,
            "top_location": top_location,
        }

    # --- Collection transitions ---

    def add_records(self, batch: Iterable[Mapping[str, Any]]) -> list[Record]:
        """Append a batch, assigning ids and growing the schema."""
        new_records = self._normalize(batch, taken=set(self._records))
        for record in new_records:
            self._records[record.id] = record
        self._extend_schema(new_records)
        self._persist()
        logger.info("Added %d records (%d total)", len(new_records), len(self._records))
        return new_records

    def replace_all_records(self, batch: Iterable[Mapping[str, Any]]) -> list[Record]:
        """Discard everything and load ``batch`` as the new collection."""
        new_records = self._normalize(batch, taken=set())
        self._records = {record.id: record for record in new_records}
        self._selected.clear()
        self._available_fields = []
        self._extend_schema(new_records)
        self._persist()
        logger.info("Replaced collection with %d records", len(new_records))
        return new_records

    def delete_record(self, record_id: str) -> bool:
        """Remove one record. Returns False if it did not exist."""
        if self._records.pop(record_id, None) is None:
            return False
        self._selected.pop(record_id, None)
        self._persist()
        return True

    def delete_all_records(self) -> None:
        self._records.clear()
        self._selected.clear()
        self._available_fields = []
        self._persist()

    # --- Augmentation transitions ---

    def mark_processing(self, record_id: str) -> AugmentationState | None:
        """Move a record into PROCESSING. Returns its prior state."""
        record = self._records.get(record_id)
        if record is None:
            return None
        prior = record.state
        self._set_state(record, AugmentationState.PROCESSING)
        return prior

    def restore_state(self, record_id: str, state: AugmentationState) -> None:
        """Revert a record after a failed attempt."""
        record = self._records.get(record_id)
        if record is None:
            return
        if record.state != AugmentationState.PROCESSING:
            raise LifecycleError(
                f"Cannot restore {record_id}: not processing (state={record.state.value})"
            )
        record.state = state

    def update_record_augmentation(
        self, record_id: str, data: AugmentationData
    ) -> Record | None:
        """Apply augmentation results to an existing record; never creates one."""
        record = self._records.get(record_id)
        if record is None:
            return None
        if record.state != AugmentationState.PROCESSING:
            self._set_state(record, AugmentationState.PROCESSING)
        self._set_state(record, AugmentationState.AUGMENTED)
        record.augmentation_results = data.result
        record.last_augmented = data.timestamp
        record.custom_properties = {**record.custom_properties, **data.custom_properties}
        self._persist()
        return record

    def clear_record_augmentation(self, record_id: str) -> Record | None:
        record = self._records.get(record_id)
        if record is None:
            return None
        record.augmentation_results = None
        record.last_augmented = None
        record.custom_properties = {}
        record.state = AugmentationState.UNAUGMENTED
        self._persist()
        return record

    # --- Selection ---

    def select(self, record_ids: Iterable[str]) -> None:
        for record_id in record_ids:
            if record_id in self._records:
                self._selected[record_id] = None

    def deselect(self, record_ids: Iterable[str]) -> None:
        for record_id in record_ids:
            self._selected.pop(record_id, None)

    def toggle_selection(self, record_id: str) -> bool:
        """Flip one record's selection. Returns whether it is now selected."""
        if record_id in self._selected:
            del self._selected[record_id]
            return False
        if record_id not in self._records:
            return False
        self._selected[record_id] = None
        return True

    def select_all(self) -> None:
        self._selected = dict.fromkeys(self._records)

    def clear_selection(self) -> None:
        self._selected.clear()

    # --- Config ---

    def update_perplexity_config(
        self, partial: Mapping[str, Any] | None = None, **changes: Any
    ) -> AugmentationConfig:
        """Shallow-merge ``partial`` into the augmentation config.

        Keys that are not config options are ignored.
        """
        merged = {**(partial or {}), **changes}
        known = {key: value for key, value in merged.items() if key in AugmentationConfig.model_fields}
        self._config = AugmentationConfig.model_validate({**self._config.model_dump(), **known})
        self._persist()
        return self._config

    # --- Persistence ---

    def to_blob(self) -> dict[str, Any]:
        return {
            "version": BLOB_VERSION,
            "records": [record.model_dump(mode="json") for record in self._records.values()],
            "available_fields": list(self._available_fields),
            "config": self._config.model_dump(mode="json", exclude={"api_key"}),
        }

    def hydrate(self) -> None:
        """Load records, schema and config from storage, if any were saved.

        An unreadable or malformed blob is logged and the store starts empty.
        """
        if self._storage is None:
            return

        try:
            blob = self._storage.load(self._storage_key)
            if blob is None:
                return
            if not isinstance(blob, dict):
                raise ValueError(f"Stored blob is {type(blob).__name__}, expected an object")
            records = [Record.model_validate(item) for item in blob.get("records", [])]
            config = AugmentationConfig.model_validate(
                {**blob.get("config", {}), "api_key": self._config.api_key}
            )
            available_fields = [str(field) for field in blob.get("available_fields", [])]
        except (ValueError, TypeError) as exc:
            # ValidationError and JSONDecodeError are both ValueErrors
            emit_structured_error(
                logger,
                code=ErrorCode.STORAGE_LOAD_FAILED,
                message=str(exc),
                suppressed=True,
                details={"storage_key": self._storage_key},
            )
            return

        for record in records:
            if record.state == AugmentationState.PROCESSING:
                record.state = (
                    AugmentationState.AUGMENTED
                    if record.has_analysis
                    else AugmentationState.UNAUGMENTED
                )
        self._records = {record.id: record for record in records}
        self._available_fields = available_fields
        self._config = config
        logger.info("Hydrated %d records from storage", len(self._records))

    def _persist(self) -> None:
        if self._storage is None:
            return
        self._storage.save(self._storage_key, self.to_blob())

    # --- Helpers ---

    def _normalize(self, batch: Iterable[Mapping[str, Any]], taken: set[str]) -> list[Record]:
        records: list[Record] = []
        for item in batch:
            fields = {key: value for key, value in item.items() if key != "id"}
            record_id = str(item.get("id") or "")
            while not record_id or record_id in taken:
                record_id = generate_record_id()
            taken.add(record_id)
            records.append(Record(id=record_id, fields=fields))
        return records

    def _extend_schema(self, records: list[Record]) -> None:
        # Union across every record of the batch, in first-seen order.
        known = set(self._available_fields)
        for record in records:
            for key in record.fields:
                if key not in known:
                    known.add(key)
                    self._available_fields.append(key)

    @staticmethod
    def _set_state(record: Record, target: AugmentationState) -> None:
        if not can_transition(record.state, target):
            raise LifecycleError(
                f"Invalid transition for {record.id}: {record.state.value} -> {target.value}"
            )
        record.state = target
