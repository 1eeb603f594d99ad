# hive_sync/Sync/conflict_resolution.py
# Description: Listing and resolving queued conflicts.
#
# A conflict record moves to `completed` exactly once. `keep_server` changes nothing in the
# catalog, `keep_client` re-applies the original change without the conflict check, and `merge`
# writes the caller's document.
#
# Imports
from typing import Any, Dict, List, Optional

from loguru import logger

from hive_sync.Constants import ConflictResolution, QueueStatus
from hive_sync.DB.SQLite_Base import InputError
from hive_sync.DB.Sync_State_DB import SyncStateDatabase
from hive_sync.Sync.change_applier import ChangeApplier
from hive_sync.Sync.sync_errors import ConflictAlreadyResolvedError, ConflictNotFoundError
from hive_sync.Sync.sync_schemas import ResolveConflictResponse, SyncChange, SyncQueueRecordModel
from hive_sync.Utils.timestamps import utc_now
#
#######################################################################################################################
#
# Classes:


class ConflictResolver:

    def __init__(self, applier: ChangeApplier, state_db: SyncStateDatabase):
        self.applier = applier
        self.state_db = state_db

    def list_conflicts(self, user_id: str, business_id: str) -> List[SyncQueueRecordModel]:
        records = self.state_db.list_conflicts(user_id, business_id)
        return [SyncQueueRecordModel.model_validate(record) for record in records]

    def resolve(self, business_id: str, conflict_id: str, resolution: str,
                merged_data: Optional[Dict[str, Any]] = None) -> ResolveConflictResponse:
        record = self.state_db.get_queue_record(conflict_id, business_id=business_id)
        if record is None:
            raise ConflictNotFoundError(conflict_id)
        if record['status'] != QueueStatus.CONFLICT.value:
            raise ConflictAlreadyResolvedError(conflict_id)
        resolution = ConflictResolution(resolution)
        if resolution is ConflictResolution.MERGE and merged_data is None:
            raise InputError("mergedData is required for a merge resolution")

        entity = None
        if resolution is ConflictResolution.KEEP_CLIENT:
            change = SyncChange(entity_type=record['entityType'], entity_id=record['entityId'],
                                sync_id=record['syncId'], operation=record['operation'],
                                payload=record['payload'], client_timestamp=record['clientTimestamp'])
            entity = self.applier.apply(business_id, change, if_unmodified_since=None)
        elif resolution is ConflictResolution.MERGE:
            entity = self.applier.upsert(business_id, record['entityType'], record['entityId'], merged_data,
                                         sync_id=record['syncId'])

        resolved_at = utc_now()
        if not self.state_db.mark_resolved(conflict_id, resolution.value, resolved_at):
            raise ConflictAlreadyResolvedError(conflict_id)
        logger.info(f"Resolved conflict {conflict_id} on {record['entityType']} {record['entityId']} "
                    f"with {resolution.value}")
        return ResolveConflictResponse(conflict_id=conflict_id, resolution=resolution.value,
                                       resolved_at=resolved_at, entity=entity)

#
# End of conflict_resolution.py
#######################################################################################################################
