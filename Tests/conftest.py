# Tests/conftest.py
#
# Shared fixtures: file-backed temporary databases (SQLite ':memory:' databases are per-thread,
# which the FastAPI TestClient would not share), a service factory and change builders.
#
# Imports
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import pytest

from hive_sync.DB.Catalog_DB import CatalogDatabase
from hive_sync.DB.Sync_State_DB import SyncStateDatabase
from hive_sync.Sync.Sync_Service import CatalogSyncService
from hive_sync.Sync.sync_schemas import SyncChange
from hive_sync.Utils.timestamps import utc_now
#
########################################################################################################################
#
# Fixtures:


@pytest.fixture
def catalog_db(tmp_path):
    db = CatalogDatabase(tmp_path / "catalog.db")
    yield db
    db.close_connection()


@pytest.fixture
def state_db(tmp_path):
    db = SyncStateDatabase(tmp_path / "sync_state.db")
    yield db
    db.close_connection()


@pytest.fixture
def service_factory(catalog_db, state_db):
    """Builds a CatalogSyncService over the test databases with overridable tunables."""
    def _create(**kwargs) -> CatalogSyncService:
        return CatalogSyncService(catalog_db, state_db, **kwargs)
    return _create


@pytest.fixture
def sync_service(service_factory):
    return service_factory()


def _later(seconds: float = 1.0) -> datetime:
    return utc_now() + timedelta(seconds=seconds)


@pytest.fixture
def make_change():
    """Factory for SyncChange objects; timestamps default to slightly in the future (never stale)."""
    def _make(entity_type: str, operation: str, entity_id: Optional[str] = None,
              payload: Optional[Dict[str, Any]] = None, client_timestamp: Optional[datetime] = None,
              sync_id: Optional[str] = None) -> SyncChange:
        return SyncChange(
            entity_type=entity_type,
            entity_id=entity_id or str(uuid.uuid4()),
            sync_id=sync_id or f"sync-{uuid.uuid4().hex[:8]}",
            operation=operation,
            payload=payload,
            client_timestamp=client_timestamp or _later(),
        )
    return _make


@pytest.fixture
def product_payload():
    def _payload(name: str = "Maasai Shuka", price: float = 1500.0, **extra) -> Dict[str, Any]:
        return {"name": name, "price": price, **extra}
    return _payload
