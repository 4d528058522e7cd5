"""Signal emitter for augmentation jobs.

Keeps the ordered progress history of one job, optionally appends it to a
JSONL ledger, and forwards each signal to subscribers.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from recordhub.signals.types import Signal, SignalType
from recordhub.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class SignalEmitter:
    """Emits, persists, and broadcasts signals for a single job.

    Signals are:
    - Immutable once emitted
    - Assigned monotonic sequence numbers
    - Appended to a JSONL ledger when one is configured
    - Forwarded to subscribers in emission order
    """

    def __init__(self, job_id: str, ledger_path: Path | None = None) -> None:
        self._job_id = job_id
        self._sequence = 0
        self._ledger_path = ledger_path
        self._subscribers: list[Callable[[Signal], Any]] = []
        self._signals: list[Signal] = []

        if self._ledger_path:
            self._ledger_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def job_id(self) -> str:
        return self._job_id

    @property
    def signals(self) -> list[Signal]:
        """Return all emitted signals (read-only copy)."""
        return list(self._signals)

    def subscribe(self, callback: Callable[[Signal], Any]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[Signal], Any]) -> None:
        self._subscribers = [s for s in self._subscribers if s is not callback]

    async def emit(self, signal_type: SignalType, payload: dict[str, Any] | None = None) -> Signal:
        """Emit a signal. This is the only way signals are created."""
        self._sequence += 1
        signal = Signal(
            sequence=self._sequence,
            signal_type=signal_type,
            timestamp=datetime.now(timezone.utc),
            job_id=self._job_id,
            payload=payload or {},
        )
        self._signals.append(signal)

        if self._ledger_path:
            self._persist(signal)

        await self._broadcast(signal)
        return signal

    def _persist(self, signal: Signal) -> None:
        with open(self._ledger_path, "a", encoding="utf-8") as f:
            f.write(signal.model_dump_json() + "\n")

    async def _broadcast(self, signal: Signal) -> None:
        for subscriber in self._subscribers:
            try:
                result = subscriber(signal)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                # Subscribers must not break the augmentation loop
                emit_structured_error(
                    logger,
                    code=ErrorCode.SIGNAL_SUBSCRIBER_FAILURE,
                    message=str(exc),
                    suppressed=True,
                    job_id=self._job_id,
                    details={"signal_type": signal.signal_type.value},
                )

    async def emit_batch_complete(self, augmented: int, duration_s: float) -> Signal:
        return await self.emit(
            SignalType.BATCH_COMPLETE,
            {"augmented_count": augmented, "duration_s": duration_s},
        )

    async def emit_batch_failed(
        self, failure_reason: str, record_id: str, augmented_before_failure: int
    ) -> Signal:
        return await self.emit(
            SignalType.BATCH_FAILED,
            {
                "failure_reason": failure_reason,
                "record_id": record_id,
                "augmented_before_failure": augmented_before_failure,
            },
        )

    @staticmethod
    def load_ledger(ledger_path: Path) -> list[Signal]:
        """Load all signals from a JSONL ledger file."""
        signals = []
        if ledger_path.exists():
            with open(ledger_path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line:
                        signals.append(Signal.model_validate_json(line))
        return signals
