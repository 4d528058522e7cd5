"""Error kinds and structured error telemetry helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any


class RecordHubError(Exception):
    """Base class for all recoverable RecordHub failures."""


class FormatError(RecordHubError):
    """Raised when CSV input is empty, malformed, or missing a required column."""


class NetworkError(RecordHubError):
    """Raised when the research backend is unreachable or rejects a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigError(RecordHubError):
    """Raised when augmentation is attempted without a required setting."""


class LifecycleError(RecordHubError):
    """Raised on an invalid augmentation state transition."""


class ErrorCode(str, Enum):
    """Canonical error codes for operational telemetry."""

    CSV_IMPORT_FAILED = "CSV_IMPORT_FAILED"
    STORAGE_LOAD_FAILED = "STORAGE_LOAD_FAILED"
    RESEARCH_REQUEST_FAILED = "RESEARCH_REQUEST_FAILED"
    RESEARCH_MODEL_FALLBACK = "RESEARCH_MODEL_FALLBACK"
    CUSTOM_PROPERTIES_PARSE_FAILED = "CUSTOM_PROPERTIES_PARSE_FAILED"
    AUGMENTATION_FAILED = "AUGMENTATION_FAILED"
    SIGNAL_SUBSCRIBER_FAILURE = "SIGNAL_SUBSCRIBER_FAILURE"


def emit_structured_error(
    logger: logging.Logger,
    *,
    code: ErrorCode,
    message: str,
    suppressed: bool,
    job_id: str | None = None,
    record_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a structured telemetry event via logging."""
    logger.error(
        "recordhub_error",
        extra={
            "error_code": code,
            "error_message": message,
            "suppressed": suppressed,
            "job_id": job_id,
            "record_id": record_id,
            "details": details or {},
        },
    )
