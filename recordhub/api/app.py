"""FastAPI application entry point for RecordHub."""

from __future__ import annotations

import logging

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from recordhub.api.augmentation_service import AugmentationService, ClientFactory
from recordhub.api.routes import router
from recordhub.config.settings import AppSettings
from recordhub.records.storage import BlobStorage, InMemoryStorage, JsonFileStorage
from recordhub.records.store import RecordStore

VERSION = "1.0.0"


def _build_storage(settings: AppSettings) -> BlobStorage:
    if settings.storage.enabled:
        return JsonFileStorage(settings.storage.data_dir)
    return InMemoryStorage()


def create_app(
    settings: AppSettings | None = None,
    client_factory: ClientFactory | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Factory function for creating the FastAPI application.

    The record store and augmentation service live on ``app.state`` and are
    handed to routes through dependencies.
    """
    settings = settings or AppSettings()
    logging.getLogger("recordhub").setLevel(settings.log_level.upper())

    store = RecordStore(
        storage=_build_storage(settings),
        storage_key=settings.storage.storage_key,
    )

    app = FastAPI(
        title="RecordHub",
        description="CSV record import, AI augmentation, and export",
        version=VERSION,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.augmentation_service = AugmentationService(
        store, settings, client_factory=client_factory, transport=transport
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": "recordhub", "version": VERSION}

    return app
