# app.py
# Description: FastAPI application factory for the catalog sync service.
#
# Imports
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI
from loguru import logger

from hive_sync import __version__
from hive_sync.Sync.Sync_Service import CatalogSyncService
from hive_sync.api import sync_endpoints
from hive_sync.config import load_settings
#
#######################################################################################################################
#
# Functions:

SYNC_ROUTE_PREFIX = "/businesses/{business_id}/sync"


def create_app(settings: Optional[Dict[str, Any]] = None,
               sync_service: Optional[CatalogSyncService] = None) -> FastAPI:
    """
    Builds the app. A ready `sync_service` (tests, embedding) is used as-is; otherwise one is
    opened from `settings` and closed on shutdown.
    """
    settings = settings if settings is not None else load_settings()
    owns_service = sync_service is None
    service = sync_service or CatalogSyncService.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Catalog sync service starting")
        yield
        if owns_service:
            service.close()
        logger.info("Catalog sync service stopped")

    app = FastAPI(title="Hive Catalog Sync", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.sync_service = service
    app.include_router(sync_endpoints.router, prefix=SYNC_ROUTE_PREFIX)

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok", "version": __version__}

    return app

#
# End of app.py
#######################################################################################################################
