# Sync_State_DB.py
#########################################
# Sync_State_DB Library
# Persistence for the two tables the sync core owns: the sync queue (audit log, conflict
# queue and deletion feed in one) and the per-device checkpoints.
#
# Key Features:
# - Every pushed change leaves exactly one queue record, `completed` or `conflict`.
# - A `conflict` record changes once more, when it is resolved, and is immutable otherwise.
# - Completed `delete` records are the only memory of hard-deleted entities; the retention
#   window for them (`prune_queue`) bounds how stale a checkpoint may be before a device must
#   full-sync.
# - Checkpoints only move forward (upsert with MAX).
####
import json
import logging
import sqlite3
import uuid
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from hive_sync.Constants import ALL_ENTITY_TYPES, ConflictResolution, QueueStatus, SyncOperation
from hive_sync.DB.SQLite_Base import BaseSQLiteDatabase, DatabaseError, InputError
from hive_sync.Utils.timestamps import to_db_timestamp, utc_now

logger = logging.getLogger(__name__)

_QUEUE_FIELDS = {
    'id': 'id',
    'user_id': 'userId',
    'business_id': 'businessId',
    'device_id': 'deviceId',
    'entity_type': 'entityType',
    'entity_id': 'entityId',
    'sync_id': 'syncId',
    'operation': 'operation',
    'payload': 'payload',
    'client_timestamp': 'clientTimestamp',
    'status': 'status',
    'error_message': 'errorMessage',
    'resolution': 'resolution',
    'processed_at': 'processedAt',
    'resolved_at': 'resolvedAt',
    'created_at': 'createdAt',
}


def _type_name(entity_type: Union[str, Enum]) -> str:
    # str() of a str-mixin Enum is 'EntityKind.PRODUCT', not its value
    return entity_type.value if isinstance(entity_type, Enum) else str(entity_type)


class SyncStateDatabase(BaseSQLiteDatabase):
    _DB_LABEL = "SyncStateDatabase"
    _SCHEMA_VERSION_TABLE = "sync_schema_version"
    _CURRENT_SCHEMA_VERSION = 1
    _REQUIRED_TABLES = ['sync_queue', 'sync_checkpoints']

    _SCHEMA_SQL_V1 = """
    CREATE TABLE IF NOT EXISTS sync_queue (
        id TEXT PRIMARY KEY NOT NULL,
        user_id TEXT NOT NULL,
        business_id TEXT NOT NULL,
        device_id TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        sync_id TEXT,
        operation TEXT NOT NULL CHECK (operation IN ('create', 'update', 'delete')),
        payload TEXT,
        client_timestamp TEXT NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('completed', 'conflict')),
        error_message TEXT,
        resolution TEXT CHECK (resolution IS NULL OR resolution IN ('keep_server', 'keep_client', 'merge')),
        processed_at TEXT NOT NULL,
        resolved_at TEXT,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_sync_queue_business_type_processed
        ON sync_queue(business_id, entity_type, processed_at);
    CREATE INDEX IF NOT EXISTS idx_sync_queue_user_business_status
        ON sync_queue(user_id, business_id, status);
    CREATE INDEX IF NOT EXISTS idx_sync_queue_replay
        ON sync_queue(device_id, entity_type, entity_id, sync_id);

    CREATE TABLE IF NOT EXISTS sync_checkpoints (
        user_id TEXT NOT NULL,
        business_id TEXT NOT NULL,
        device_id TEXT NOT NULL,
        entity_type TEXT NOT NULL DEFAULT 'all',
        last_sync_at TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (user_id, business_id, device_id, entity_type)
    );
    """

    def __init__(self, db_path: Union[str, Path]):
        super().__init__(db_path)

    @staticmethod
    def _record_from_row(row: sqlite3.Row) -> Dict[str, Any]:
        record = {camel: row[column] for column, camel in _QUEUE_FIELDS.items()}
        if record['payload'] is not None:
            try:
                record['payload'] = json.loads(record['payload'])
            except json.JSONDecodeError:
                logger.warning(f"Queue record {record['id']} has an unreadable payload; returning it raw.")
        return record

    # --- Sync Queue ---
    def record_change(self, *, user_id: str, business_id: str, device_id: str, entity_type: str,
                      entity_id: str, operation: str, client_timestamp: datetime, status: str,
                      sync_id: Optional[str] = None, payload: Optional[Dict[str, Any]] = None,
                      error_message: Optional[str] = None,
                      processed_at: Optional[datetime] = None) -> Dict[str, Any]:
        """Appends one queue record and returns it."""
        status = QueueStatus(status).value
        operation = SyncOperation(operation).value
        if not device_id:
            raise InputError("device_id is required for a sync queue record.")
        now = utc_now()
        record_id = str(uuid.uuid4())
        params = (
            record_id, user_id, business_id, device_id, _type_name(entity_type), entity_id, sync_id, operation,
            json.dumps(payload) if payload is not None else None,
            to_db_timestamp(client_timestamp), status, error_message,
            to_db_timestamp(processed_at or now), to_db_timestamp(now),
        )
        query = """
            INSERT INTO sync_queue (id, user_id, business_id, device_id, entity_type, entity_id, sync_id,
                                    operation, payload, client_timestamp, status, error_message,
                                    processed_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        try:
            with self.transaction() as conn:
                conn.execute(query, params)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to record sync queue entry for {entity_type} {entity_id}: {e}") from e
        logger.debug(f"Recorded {status} {operation} of {entity_type} {entity_id} as queue record {record_id}")
        return self.get_queue_record(record_id)

    def get_queue_record(self, record_id: str, business_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        query = "SELECT * FROM sync_queue WHERE id = ?"
        params: tuple = (record_id,)
        if business_id is not None:
            query += " AND business_id = ?"
            params += (business_id,)
        row = self.execute_query(query, params).fetchone()
        return self._record_from_row(row) if row else None

    def find_completed_duplicate(self, *, business_id: str, device_id: str, entity_type: str, entity_id: str,
                                 sync_id: Optional[str], operation: str,
                                 client_timestamp: datetime) -> Optional[Dict[str, Any]]:
        """
        Looks up an already-applied record for the same change, so a retried push can be
        acknowledged without applying it twice.
        """
        cursor = self.execute_query(
            """
            SELECT * FROM sync_queue
            WHERE business_id = ? AND device_id = ? AND entity_type = ? AND entity_id = ?
              AND sync_id IS ? AND operation = ? AND client_timestamp = ? AND status = 'completed'
            ORDER BY processed_at ASC LIMIT 1
            """,
            (business_id, device_id, _type_name(entity_type), entity_id, sync_id, SyncOperation(operation).value,
             to_db_timestamp(client_timestamp)))
        row = cursor.fetchone()
        return self._record_from_row(row) if row else None

    def list_conflicts(self, user_id: str, business_id: str) -> List[Dict[str, Any]]:
        cursor = self.execute_query(
            "SELECT * FROM sync_queue WHERE user_id = ? AND business_id = ? AND status = 'conflict' "
            "ORDER BY processed_at ASC, id ASC",
            (user_id, business_id))
        return [self._record_from_row(row) for row in cursor.fetchall()]

    def mark_resolved(self, record_id: str, resolution: str, resolved_at: Optional[datetime] = None) -> bool:
        """
        Flips a `conflict` record to `completed`. Returns False when the record is no longer a
        conflict (another caller resolved it first).
        """
        resolution = ConflictResolution(resolution).value
        stamp = to_db_timestamp(resolved_at or utc_now())
        cursor = self.execute_query(
            "UPDATE sync_queue SET status = 'completed', resolution = ?, resolved_at = ?, processed_at = ? "
            "WHERE id = ? AND status = 'conflict'",
            (resolution, stamp, stamp, record_id), commit=True)
        return cursor.rowcount > 0

    def get_deletions_since(self, business_id: str, entity_types: Iterable[str], since: datetime,
                            limit: int) -> List[Dict[str, Any]]:
        """
        Completed deletes of the given (hard-deleted) entity types processed strictly after
        `since`, oldest first. Deletes a resolver rejected with keep_server or replaced with
        merge never happened and are left out.
        """
        types = [_type_name(t) for t in entity_types]
        if not types:
            return []
        placeholders = ','.join('?' * len(types))
        cursor = self.execute_query(
            f"""
            SELECT * FROM sync_queue
            WHERE business_id = ? AND entity_type IN ({placeholders}) AND operation = 'delete'
              AND status = 'completed' AND processed_at > ?
              AND (resolution IS NULL OR resolution = 'keep_client')
            ORDER BY processed_at ASC, entity_id ASC
            LIMIT ?
            """,
            (business_id, *types, to_db_timestamp(since), int(limit)))
        return [self._record_from_row(row) for row in cursor.fetchall()]

    def prune_queue(self, *, audit_retention_days: int = 0, deletion_retention_days: int = 0,
                    now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Removes old `completed` records. Deletes are kept for `deletion_retention_days`, every
        other operation for `audit_retention_days`; 0 keeps them forever. Conflicts are never
        pruned.
        """
        if audit_retention_days < 0 or deletion_retention_days < 0:
            raise InputError("Retention days cannot be negative.")
        now = now or utc_now()
        removed = {'audit': 0, 'deletions': 0}
        try:
            with self.transaction(immediate=True) as conn:
                if audit_retention_days:
                    horizon = to_db_timestamp(now - timedelta(days=audit_retention_days))
                    cursor = conn.execute(
                        "DELETE FROM sync_queue WHERE status = 'completed' AND operation != 'delete' "
                        "AND processed_at < ?", (horizon,))
                    removed['audit'] = cursor.rowcount
                if deletion_retention_days:
                    horizon = to_db_timestamp(now - timedelta(days=deletion_retention_days))
                    cursor = conn.execute(
                        "DELETE FROM sync_queue WHERE status = 'completed' AND operation = 'delete' "
                        "AND processed_at < ?", (horizon,))
                    removed['deletions'] = cursor.rowcount
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to prune sync queue: {e}") from e
        logger.info(f"Pruned sync queue: {removed['audit']} audit records, {removed['deletions']} delete records")
        return removed

    # --- Checkpoints ---
    def advance_checkpoint(self, user_id: str, business_id: str, device_id: str, timestamp: datetime,
                           entity_type: str = ALL_ENTITY_TYPES) -> str:
        """Moves the checkpoint to `timestamp` unless it is already later. Returns the stored value."""
        if not device_id:
            raise InputError("device_id is required to advance a checkpoint.")
        stamp = to_db_timestamp(timestamp)
        now = to_db_timestamp(utc_now())
        try:
            with self.transaction(immediate=True) as conn:
                conn.execute(
                    """
                    INSERT INTO sync_checkpoints (user_id, business_id, device_id, entity_type, last_sync_at,
                                                  created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, business_id, device_id, entity_type) DO UPDATE SET
                        last_sync_at = MAX(sync_checkpoints.last_sync_at, excluded.last_sync_at),
                        updated_at = excluded.updated_at
                    """,
                    (user_id, business_id, device_id, entity_type, stamp, now, now))
                row = conn.execute(
                    "SELECT last_sync_at FROM sync_checkpoints "
                    "WHERE user_id = ? AND business_id = ? AND device_id = ? AND entity_type = ?",
                    (user_id, business_id, device_id, entity_type)).fetchone()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to advance checkpoint for device {device_id}: {e}") from e
        logger.debug(f"Checkpoint for {user_id}/{business_id}/{device_id} is now {row['last_sync_at']}")
        return row['last_sync_at']

    def get_checkpoint(self, user_id: str, business_id: str, device_id: str,
                       entity_type: str = ALL_ENTITY_TYPES) -> Optional[str]:
        row = self.execute_query(
            "SELECT last_sync_at FROM sync_checkpoints "
            "WHERE user_id = ? AND business_id = ? AND device_id = ? AND entity_type = ?",
            (user_id, business_id, device_id, entity_type)).fetchone()
        return row['last_sync_at'] if row else None

#
# End of Sync_State_DB.py
#######################################################################################################################
