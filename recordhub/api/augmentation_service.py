"""Service layer for augmentation jobs: launch, track, and report."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

import httpx
from fastapi import HTTPException

from recordhub.augmentation.batch import BatchAugmenter, new_job_id
from recordhub.augmentation.client import ResearchClient, create_research_client
from recordhub.config.settings import AppSettings, AugmentationConfig
from recordhub.records.store import RecordStore
from recordhub.signals.emitter import SignalEmitter
from recordhub.telemetry.errors import ConfigError

logger = logging.getLogger(__name__)

ClientFactory = Callable[[AugmentationConfig], ResearchClient]


class JobEntry:
    def __init__(self, augmenter: BatchAugmenter, record_ids: list[str]) -> None:
        self.augmenter = augmenter
        self.record_ids = record_ids
        self.task: asyncio.Task[Any] | None = None
        self.status = "running"
        self.error: str | None = None
        self.started_at = datetime.now(timezone.utc)
        self.finished_at: datetime | None = None


class AugmentationService:
    """Runs at most one augmentation batch at a time and keeps recent results."""

    def __init__(
        self,
        store: RecordStore,
        settings: AppSettings,
        client_factory: ClientFactory | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_jobs: int = 50,
    ) -> None:
        self._store = store
        self._settings = settings
        self._client_factory = client_factory or (
            lambda config: create_research_client(
                config, settings.research, settings.simulation, transport=transport
            )
        )
        self._max_jobs = max_jobs
        self._jobs: dict[str, JobEntry] = {}

    @property
    def busy(self) -> bool:
        return any(entry.status == "running" for entry in self._jobs.values())

    def start(self, record_ids: Sequence[str]) -> JobEntry:
        """Launch a batch for ``record_ids`` as a background task."""
        if not record_ids:
            raise HTTPException(status_code=400, detail="No records selected")
        if self.busy:
            raise HTTPException(status_code=409, detail="An augmentation job is already running")

        config = self._store.config
        if config.use_real_api and not config.api_key:
            raise ConfigError("API key is required for real Perplexity API calls")

        job_id = new_job_id()
        ledger_path = None
        if self._settings.storage.enabled:
            ledger_path = self._settings.storage.data_dir / "jobs" / f"{job_id}.jsonl"
        augmenter = BatchAugmenter(
            self._store,
            self._client_factory(config),
            SignalEmitter(job_id=job_id, ledger_path=ledger_path),
        )
        entry = JobEntry(augmenter, list(record_ids))
        self._jobs[job_id] = entry

        async def run_task() -> None:
            try:
                await augmenter.run(entry.record_ids)
                entry.status = "complete"
            except Exception as exc:
                entry.status = "failed"
                entry.error = str(exc)
            finally:
                entry.finished_at = datetime.now(timezone.utc)
                entry.task = None

        entry.task = asyncio.create_task(run_task())
        self._evict_finished()
        logger.info("Started augmentation job %s for %d records", job_id, len(record_ids))
        return entry

    async def wait(self, job_id: str) -> None:
        entry = self._jobs.get(job_id)
        if entry is not None and entry.task is not None:
            await asyncio.shield(entry.task)

    def get_status(self, job_id: str) -> dict[str, Any]:
        entry = self._jobs.get(job_id)
        if entry is None:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        augmenter = entry.augmenter
        return {
            "job_id": job_id,
            "status": entry.status,
            "error": entry.error,
            "record_ids": entry.record_ids,
            "processing_record_id": augmenter.current_record_id,
            "results": [outcome.model_dump(mode="json") for outcome in augmenter.outcomes],
            "signals": [signal.model_dump(mode="json") for signal in augmenter.signals.signals],
            "started_at": entry.started_at.isoformat(),
            "finished_at": entry.finished_at.isoformat() if entry.finished_at else None,
        }

    def list_jobs(self) -> list[dict[str, Any]]:
        return [
            {"job_id": job_id, "status": entry.status, "records": len(entry.record_ids)}
            for job_id, entry in self._jobs.items()
        ]

    def _evict_finished(self) -> None:
        finished = [job_id for job_id, entry in self._jobs.items() if entry.status != "running"]
        excess = len(self._jobs) - self._max_jobs
        for job_id in finished[: max(excess, 0)]:
            del self._jobs[job_id]
