"""Sequential batch augmentation of selected records.

Records are processed strictly one at a time, in collection order. The first
failure aborts the remainder of the batch: records already augmented keep
their results, the failing record reverts to its prior state, and the error
propagates to the caller.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

from pydantic import BaseModel

from recordhub.augmentation.client import ResearchClient
from recordhub.records.lifecycle import AugmentationState
from recordhub.records.models import AugmentationData
from recordhub.records.store import RecordStore
from recordhub.signals.emitter import SignalEmitter
from recordhub.signals.types import SignalType
from recordhub.telemetry.errors import ConfigError, ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class AugmentationOutcome(BaseModel):
    """One successfully augmented record, as reported back to the caller."""

    record_id: str
    record_name: str
    result: str
    timestamp: datetime
    model: str = ""


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:12]}"


class BatchAugmenter:
    """Runs one augmentation batch against the store."""

    def __init__(
        self,
        store: RecordStore,
        client: ResearchClient,
        signals: SignalEmitter | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._signals = signals or SignalEmitter(job_id=new_job_id())
        self._outcomes: list[AugmentationOutcome] = []
        self._current_record_id: str | None = None

    @property
    def job_id(self) -> str:
        return self._signals.job_id

    @property
    def signals(self) -> SignalEmitter:
        return self._signals

    @property
    def outcomes(self) -> list[AugmentationOutcome]:
        return list(self._outcomes)

    @property
    def current_record_id(self) -> str | None:
        return self._current_record_id

    async def run(self, record_ids: Sequence[str]) -> list[AugmentationOutcome]:
        """Augment ``record_ids`` in collection order, awaiting each in turn."""
        config = self._store.config
        if config.use_real_api and not config.api_key:
            raise ConfigError("API key is required for real Perplexity API calls")

        wanted = set(record_ids)
        queue = [record.id for record in self._store.records if record.id in wanted]
        start = time.monotonic()

        await self._signals.emit(
            SignalType.BATCH_STARTED,
            {"record_ids": queue, "use_real_api": config.use_real_api},
        )

        for record_id in queue:
            record = self._store.get_record(record_id)
            if record is None:
                # Deleted while an earlier record was in flight
                await self._signals.emit(SignalType.RECORD_SKIPPED, {"record_id": record_id})
                continue

            prior_state = self._store.mark_processing(record_id)
            self._current_record_id = record_id
            await self._signals.emit(
                SignalType.RECORD_PROCESSING,
                {"record_id": record_id, "record_name": record.name},
            )

            try:
                result = await self._client.research(record, self._store.config)
            except Exception as exc:
                current = self._store.get_record(record_id)
                # Cleared or deleted mid-request: leave the newer state alone
                if (
                    prior_state is not None
                    and current is not None
                    and current.state is AugmentationState.PROCESSING
                ):
                    self._store.restore_state(record_id, prior_state)
                self._current_record_id = None
                emit_structured_error(
                    logger,
                    code=ErrorCode.AUGMENTATION_FAILED,
                    message=str(exc),
                    suppressed=False,
                    job_id=self.job_id,
                    record_id=record_id,
                    details={"augmented_before_failure": len(self._outcomes)},
                )
                await self._signals.emit_batch_failed(
                    failure_reason=str(exc),
                    record_id=record_id,
                    augmented_before_failure=len(self._outcomes),
                )
                raise

            if result.used_fallback:
                await self._signals.emit(
                    SignalType.MODEL_FALLBACK, {"record_id": record_id, "model": result.model}
                )

            data = AugmentationData(
                result=result.text,
                timestamp=datetime.now(timezone.utc),
                custom_properties=result.custom_properties,
            )
            updated = self._store.update_record_augmentation(record_id, data)
            self._current_record_id = None
            if updated is None:
                await self._signals.emit(SignalType.RECORD_SKIPPED, {"record_id": record_id})
                continue

            self._outcomes.append(
                AugmentationOutcome(
                    record_id=record_id,
                    record_name=updated.name,
                    result=data.result,
                    timestamp=data.timestamp,
                    model=result.model,
                )
            )
            await self._signals.emit(
                SignalType.RECORD_AUGMENTED,
                {"record_id": record_id, "custom_properties": list(result.custom_properties)},
            )

        duration = round(time.monotonic() - start, 2)
        await self._signals.emit_batch_complete(len(self._outcomes), duration)
        logger.info(
            "Augmented %d of %d records in %.2fs", len(self._outcomes), len(queue), duration
        )
        return self.outcomes
