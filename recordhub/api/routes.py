"""REST API routes for RecordHub.

Provides endpoints for:
- Importing CSV text into the record store
- Browsing, searching and deleting records
- Collection statistics
- Managing the selection and augmentation config
- Running augmentation jobs and exporting CSV
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field, ValidationError

from recordhub.api.auth import require_api_auth
from recordhub.api.augmentation_service import AugmentationService
from recordhub.records.csv_parser import parse_csv
from recordhub.records.export import export_csv, export_filename
from recordhub.records.store import RecordStore
from recordhub.telemetry.errors import ConfigError, FormatError

router = APIRouter(dependencies=[Depends(require_api_auth)])


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_augmentation_service(request: Request) -> AugmentationService:
    return request.app.state.augmentation_service


# --- Request/Response Models ---


class ImportRequest(BaseModel):
    """CSV text to import."""

    csv_text: str
    mode: Literal["append", "replace"] = "append"


class ImportResponse(BaseModel):
    imported: int
    total: int
    available_fields: list[str]


class SelectionRequest(BaseModel):
    record_ids: list[str] = Field(default_factory=list)


class AugmentRequest(BaseModel):
    """Records to augment; defaults to the current selection."""

    record_ids: list[str] | None = None


def _config_view(store: RecordStore) -> dict[str, Any]:
    data = store.config.model_dump(mode="json")
    data["has_api_key"] = bool(data.pop("api_key"))
    return data


# --- Records ---


@router.post("/records/import", response_model=ImportResponse)
async def import_records(
    request: ImportRequest, store: RecordStore = Depends(get_store)
) -> ImportResponse:
    """Parse CSV text and add it to (or replace) the collection.

    Parsing happens before any store mutation, so a malformed file never
    leaves a partial import behind.
    """
    try:
        parsed = parse_csv(request.csv_text)
    except FormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if request.mode == "replace":
        added = store.replace_all_records(parsed)
    else:
        added = store.add_records(parsed)
    return ImportResponse(
        imported=len(added), total=len(store), available_fields=store.available_fields
    )


@router.get("/records")
async def list_records(
    q: str | None = Query(default=None, description="Case-insensitive name filter"),
    store: RecordStore = Depends(get_store),
) -> list[dict[str, Any]]:
    records = store.search(q) if q else store.records
    return [record.model_dump(mode="json") for record in records]


@router.get("/stats")
async def get_stats(store: RecordStore = Depends(get_store)) -> dict[str, Any]:
    """Collection counts and the most common location value."""
    return store.stats()


@router.get("/records/{record_id}")
async def get_record(record_id: str, store: RecordStore = Depends(get_store)) -> dict[str, Any]:
    record = store.get_record(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Record {record_id} not found")
    return record.model_dump(mode="json")


@router.delete("/records/{record_id}")
async def delete_record(record_id: str, store: RecordStore = Depends(get_store)) -> dict[str, str]:
    if not store.delete_record(record_id):
        raise HTTPException(status_code=404, detail=f"Record {record_id} not found")
    return {"record_id": record_id, "status": "deleted"}


@router.delete("/records")
async def delete_all_records(store: RecordStore = Depends(get_store)) -> dict[str, str]:
    store.delete_all_records()
    return {"status": "cleared"}


@router.delete("/records/{record_id}/augmentation")
async def clear_augmentation(
    record_id: str, store: RecordStore = Depends(get_store)
) -> dict[str, Any]:
    record = store.clear_record_augmentation(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Record {record_id} not found")
    return record.model_dump(mode="json")


@router.get("/schema")
async def get_schema(store: RecordStore = Depends(get_store)) -> dict[str, list[str]]:
    return {"available_fields": store.available_fields}


# --- Selection ---


@router.get("/selection")
async def get_selection(store: RecordStore = Depends(get_store)) -> dict[str, list[str]]:
    return {"record_ids": store.selected_ids}


@router.put("/selection")
async def replace_selection(
    request: SelectionRequest, store: RecordStore = Depends(get_store)
) -> dict[str, list[str]]:
    store.clear_selection()
    store.select(request.record_ids)
    return {"record_ids": store.selected_ids}


@router.post("/selection/all")
async def select_all(store: RecordStore = Depends(get_store)) -> dict[str, list[str]]:
    store.select_all()
    return {"record_ids": store.selected_ids}


@router.delete("/selection")
async def clear_selection(store: RecordStore = Depends(get_store)) -> dict[str, list[str]]:
    store.clear_selection()
    return {"record_ids": []}


# --- Config ---


@router.get("/config")
async def get_config(store: RecordStore = Depends(get_store)) -> dict[str, Any]:
    """Current augmentation config. The API key itself is never returned."""
    return _config_view(store)


@router.patch("/config")
async def update_config(
    partial: dict[str, Any], store: RecordStore = Depends(get_store)
) -> dict[str, Any]:
    try:
        store.update_perplexity_config(partial)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from exc
    return _config_view(store)


# --- Augmentation ---


@router.post("/augmentations")
async def start_augmentation(
    request: AugmentRequest,
    wait: bool = Query(default=False, description="Block until the job finishes"),
    store: RecordStore = Depends(get_store),
    service: AugmentationService = Depends(get_augmentation_service),
) -> dict[str, Any]:
    """Augment the given records (or the current selection), one at a time.

    The job runs in the background; poll GET /augmentations/{job_id}, or pass
    ``wait=true`` to receive the final status directly.
    """
    record_ids = request.record_ids if request.record_ids is not None else store.selected_ids
    try:
        entry = service.start(record_ids)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    job_id = entry.augmenter.job_id
    if wait:
        await service.wait(job_id)
    return service.get_status(job_id)


@router.get("/augmentations")
async def list_augmentations(
    service: AugmentationService = Depends(get_augmentation_service),
) -> list[dict[str, Any]]:
    return service.list_jobs()


@router.get("/augmentations/{job_id}")
async def get_augmentation(
    job_id: str, service: AugmentationService = Depends(get_augmentation_service)
) -> dict[str, Any]:
    return service.get_status(job_id)


# --- Export ---


@router.get("/export")
async def export_records(
    scope: Literal["selected", "all"] = Query(default="selected"),
    store: RecordStore = Depends(get_store),
) -> Response:
    """Download records as CSV with their augmentation results."""
    records = store.records if scope == "all" else store.selected_records()
    if not records:
        raise HTTPException(status_code=400, detail="No records to export")

    content = export_csv(records, store.available_fields)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )
