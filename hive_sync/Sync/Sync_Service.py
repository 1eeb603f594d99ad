# Sync_Service.py
#########################################
# Server-side facade over the sync core. One instance serves every request; it holds no
# per-request state, only the two stores and the tunables from the [sync] config section.
#
####
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from hive_sync.Constants import DEFAULT_PULL_PAGE_SIZE
from hive_sync.DB.Sync_State_DB import SyncStateDatabase
from hive_sync.Sync.change_applier import ChangeApplier
from hive_sync.Sync.conflict_resolution import ConflictResolver
from hive_sync.Sync.entity_store import EntityStore
from hive_sync.Sync.full_sync import FullSyncBootstrapper
from hive_sync.Sync.pull_builder import PullBuilder
from hive_sync.Sync.push_reconciler import PushReconciler
from hive_sync.Sync.sync_errors import InvalidSyncRequestError
from hive_sync.Sync.sync_schemas import (
    CheckpointResponse,
    FullSyncResponse,
    PullResponse,
    PushResponse,
    ResolveConflictResponse,
    SyncChange,
    SyncQueueRecordModel,
)
from hive_sync.Utils.timestamps import EPOCH, parse_timestamp


class CatalogSyncService:

    def __init__(self, store: EntityStore, state_db: SyncStateDatabase,
                 pull_page_size: int = DEFAULT_PULL_PAGE_SIZE, deletion_retention_days: int = 0,
                 audit_retention_days: int = 0):
        self.store = store
        self.state_db = state_db
        self.deletion_retention_days = deletion_retention_days
        self.audit_retention_days = audit_retention_days
        applier = ChangeApplier(store)
        self.push_reconciler = PushReconciler(applier, state_db)
        self.pull_builder = PullBuilder(store, state_db, page_size=pull_page_size,
                                        deletion_retention_days=deletion_retention_days)
        self.bootstrapper = FullSyncBootstrapper(store, state_db)
        self.resolver = ConflictResolver(applier, state_db)

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "CatalogSyncService":
        # Imported here so the sync core does not require the SQLite store
        from hive_sync.DB.Catalog_DB import CatalogDatabase

        database = settings.get('database', {})
        sync = settings.get('sync', {})
        store = CatalogDatabase(database['catalog_db_path'])
        state_db = SyncStateDatabase(database['sync_db_path'])
        logger.info(f"Sync service using catalog {store.db_path_str} and sync state {state_db.db_path_str}")
        return cls(store, state_db,
                   pull_page_size=sync.get('pull_page_size', DEFAULT_PULL_PAGE_SIZE),
                   deletion_retention_days=sync.get('deletion_retention_days', 0),
                   audit_retention_days=sync.get('audit_retention_days', 0))

    def push(self, user_id: str, business_id: str, device_id: str, changes: List[SyncChange]) -> PushResponse:
        return self.push_reconciler.push(user_id, business_id, device_id, changes)

    def pull(self, user_id: str, business_id: str, device_id: str, last_sync_at: Optional[datetime] = None,
             entity_types: Optional[List[str]] = None) -> PullResponse:
        return self.pull_builder.pull(user_id, business_id, device_id, last_sync_at, entity_types)

    def full_sync(self, user_id: str, business_id: str, device_id: str) -> FullSyncResponse:
        return self.bootstrapper.full_sync(user_id, business_id, device_id)

    def get_checkpoint(self, user_id: str, business_id: str, device_id: str) -> CheckpointResponse:
        """A device that never synced reads as the epoch."""
        if not device_id or not device_id.strip():
            raise InvalidSyncRequestError("deviceId is required")
        stored = self.state_db.get_checkpoint(user_id, business_id, device_id)
        return CheckpointResponse(last_sync_at=parse_timestamp(stored) if stored else EPOCH, device_id=device_id)

    def list_conflicts(self, user_id: str, business_id: str) -> List[SyncQueueRecordModel]:
        return self.resolver.list_conflicts(user_id, business_id)

    def resolve_conflict(self, business_id: str, conflict_id: str, resolution: str,
                         merged_data: Optional[Dict[str, Any]] = None) -> ResolveConflictResponse:
        return self.resolver.resolve(business_id, conflict_id, resolution, merged_data)

    def prune(self) -> Dict[str, int]:
        return self.state_db.prune_queue(audit_retention_days=self.audit_retention_days,
                                         deletion_retention_days=self.deletion_retention_days)

    def close(self):
        for db in (self.store, self.state_db):
            close = getattr(db, 'close_connection', None)
            if close:
                close()

#
# End of Sync_Service.py
#######################################################################################################################
