# hive_sync/Sync/push_reconciler.py
# Description: Reconciles a batch of offline changes from one device against the catalog.
#
# Per change, in order: idempotent-replay check, conflict check, conditional apply, queue record.
# Batches are never all-or-nothing: a failing change yields a failed result and the batch goes on.
#
# Imports
from datetime import datetime
from typing import List, Optional

from loguru import logger

from hive_sync.Constants import QueueStatus
from hive_sync.DB.SQLite_Base import ConflictError
from hive_sync.DB.Sync_State_DB import SyncStateDatabase
from hive_sync.Sync.change_applier import ChangeApplier, get_handler
from hive_sync.Sync.conflict_detector import detect_conflict
from hive_sync.Sync.entity_store import Document
from hive_sync.Sync.sync_errors import InvalidSyncRequestError, UnsupportedEntityTypeError
from hive_sync.Sync.sync_schemas import PushResponse, SyncChange, SyncResult
from hive_sync.Utils.timestamps import ensure_utc, utc_now
#
#######################################################################################################################
#
# Classes:

CONFLICT_ERROR_MESSAGE = "Conflict detected"


class PushReconciler:

    def __init__(self, applier: ChangeApplier, state_db: SyncStateDatabase):
        self.applier = applier
        self.state_db = state_db

    def push(self, user_id: str, business_id: str, device_id: str, changes: List[SyncChange]) -> PushResponse:
        if not device_id or not device_id.strip():
            raise InvalidSyncRequestError("deviceId is required")

        server_time = utc_now()
        results = [self._process_change(user_id, business_id, device_id, change, server_time)
                   for change in changes]
        self.state_db.advance_checkpoint(user_id, business_id, device_id, server_time)

        applied = sum(1 for r in results if r.success)
        conflicts = sum(1 for r in results if r.conflict_data is not None)
        logger.info(f"Push from device {device_id} (business {business_id}): {len(results)} changes, "
                    f"{applied} applied, {conflicts} conflicts, {len(results) - applied - conflicts} failed")
        return PushResponse(results=results, server_timestamp=server_time)

    def _process_change(self, user_id: str, business_id: str, device_id: str, change: SyncChange,
                        server_time: datetime) -> SyncResult:
        try:
            handler = get_handler(change.entity_type)
        except UnsupportedEntityTypeError as e:
            logger.warning(f"Rejected change {change.entity_id} from device {device_id}: {e}")
            return self._failed(change, server_time, str(e))

        entity_type = handler.kind.value
        client_timestamp = ensure_utc(change.client_timestamp)
        try:
            duplicate = self.state_db.find_completed_duplicate(
                business_id=business_id, device_id=device_id, entity_type=entity_type,
                entity_id=change.entity_id, sync_id=change.sync_id, operation=change.operation,
                client_timestamp=client_timestamp)
            if duplicate:
                logger.debug(f"Change {change.entity_id}/{change.sync_id} already applied as {duplicate['id']}")
                return SyncResult(entity_id=change.entity_id, sync_id=change.sync_id, success=True,
                                  server_timestamp=server_time)

            check = detect_conflict(self.applier.fetch_current(entity_type, business_id, change.entity_id),
                                    client_timestamp)
            if check.conflict:
                return self._queue_conflict(user_id, business_id, device_id, entity_type, change,
                                            client_timestamp, check.server_document, server_time)
            try:
                self.applier.apply(business_id, change, if_unmodified_since=client_timestamp)
            except ConflictError:
                # Lost the race between the check and the conditional write
                current = self.applier.fetch_current(entity_type, business_id, change.entity_id)
                return self._queue_conflict(user_id, business_id, device_id, entity_type, change,
                                            client_timestamp, current, server_time)

            self.state_db.record_change(
                user_id=user_id, business_id=business_id, device_id=device_id, entity_type=entity_type,
                entity_id=change.entity_id, sync_id=change.sync_id, operation=change.operation,
                payload=change.payload, client_timestamp=client_timestamp, status=QueueStatus.COMPLETED.value,
                processed_at=utc_now())
            return SyncResult(entity_id=change.entity_id, sync_id=change.sync_id, success=True,
                              server_timestamp=server_time)
        except Exception as e:
            logger.opt(exception=e).error(
                f"Failed to apply {change.operation} of {entity_type} {change.entity_id} from device {device_id}")
            return self._failed(change, server_time, str(e))

    def _queue_conflict(self, user_id: str, business_id: str, device_id: str, entity_type: str,
                        change: SyncChange, client_timestamp: datetime, server_document: Optional[Document],
                        server_time: datetime) -> SyncResult:
        record = self.state_db.record_change(
            user_id=user_id, business_id=business_id, device_id=device_id, entity_type=entity_type,
            entity_id=change.entity_id, sync_id=change.sync_id, operation=change.operation,
            payload=change.payload, client_timestamp=client_timestamp, status=QueueStatus.CONFLICT.value,
            error_message=CONFLICT_ERROR_MESSAGE, processed_at=utc_now())
        logger.warning(f"Conflict on {entity_type} {change.entity_id} from device {device_id}: "
                       f"server copy newer than {client_timestamp.isoformat()} (queued as {record['id']})")
        return SyncResult(entity_id=change.entity_id, sync_id=change.sync_id, success=False,
                          server_timestamp=server_time, error=CONFLICT_ERROR_MESSAGE,
                          conflict_data=server_document or {})

    @staticmethod
    def _failed(change: SyncChange, server_time: datetime, message: str) -> SyncResult:
        return SyncResult(entity_id=change.entity_id, sync_id=change.sync_id, success=False,
                          server_timestamp=server_time, error=message)

#
# End of push_reconciler.py
#######################################################################################################################
