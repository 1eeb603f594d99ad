# hive_sync/Sync/pull_builder.py
# Description: Builds the incremental change feed for a device.
#
# Soft-deleted kinds are read from their live tables (a tombstoned row becomes a `delete`).
# Hard-deleted kinds leave nothing behind in the catalog, so their deletions are read from
# the completed `delete` records of the sync queue instead.
#
# Imports
from datetime import datetime, timedelta
from typing import List, Optional

from loguru import logger

from hive_sync.Constants import DEFAULT_PULL_PAGE_SIZE, DeletionPolicy, EntityKind, SyncOperation, parse_entity_kind
from hive_sync.DB.SQLite_Base import InputError
from hive_sync.DB.Sync_State_DB import SyncStateDatabase
from hive_sync.Sync.change_applier import HANDLERS
from hive_sync.Sync.entity_store import EntityStore
from hive_sync.Sync.sync_errors import InvalidSyncRequestError
from hive_sync.Sync.sync_schemas import PullResponse, PulledChange
from hive_sync.Utils.timestamps import EPOCH, ensure_utc, parse_timestamp, utc_now
#
#######################################################################################################################
#
# Classes:


class PullBuilder:

    def __init__(self, store: EntityStore, state_db: SyncStateDatabase,
                 page_size: int = DEFAULT_PULL_PAGE_SIZE, deletion_retention_days: int = 0):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.store = store
        self.state_db = state_db
        self.page_size = page_size
        self.deletion_retention_days = deletion_retention_days

    @staticmethod
    def _resolve_kinds(entity_types: Optional[List[str]]) -> List[EntityKind]:
        if not entity_types:
            return list(HANDLERS)
        kinds = []
        for name in entity_types:
            kind = parse_entity_kind(name)
            if kind is None:
                raise InputError(f"Unknown entity type: {name}")
            if kind not in kinds:
                kinds.append(kind)
        return kinds

    def _resolve_since(self, user_id: str, business_id: str, device_id: str,
                       last_sync_at: Optional[datetime]) -> datetime:
        if last_sync_at is not None:
            return ensure_utc(last_sync_at)
        stored = self.state_db.get_checkpoint(user_id, business_id, device_id)
        return parse_timestamp(stored) if stored else EPOCH

    def pull(self, user_id: str, business_id: str, device_id: str, last_sync_at: Optional[datetime] = None,
             entity_types: Optional[List[str]] = None) -> PullResponse:
        """
        Returns up to `page_size` changes with a timestamp strictly after the checkpoint,
        oldest first.

        When the page is complete, `serverTimestamp` is the instant the pull started. When it is
        truncated (`hasMore`), `serverTimestamp` is the timestamp of the last returned change, so
        resuming from it can never skip rows that did not fit.
        """
        if not device_id or not device_id.strip():
            raise InvalidSyncRequestError("deviceId is required")
        started = utc_now()
        kinds = self._resolve_kinds(entity_types)
        since = self._resolve_since(user_id, business_id, device_id, last_sync_at)

        if self.deletion_retention_days and since < started - timedelta(days=self.deletion_retention_days):
            logger.info(f"Device {device_id} checkpoint {since.isoformat()} predates the deletion retention "
                        f"window; full sync required")
            return PullResponse(changes=[], server_timestamp=started, has_more=False, full_sync_required=True)

        fetch_limit = self.page_size + 1
        candidates: List[PulledChange] = []
        for kind in kinds:
            handler = HANDLERS[kind]
            if handler.deletion_policy is not DeletionPolicy.SOFT:
                continue
            for document in handler.changed_since(self.store, business_id, since, fetch_limit):
                candidates.append(PulledChange(
                    entity_type=kind.value,
                    entity_id=document['id'],
                    sync_id=document.get('syncId'),
                    operation=SyncOperation.DELETE.value if document.get('deleted') else SyncOperation.UPDATE.value,
                    data=document,
                    server_timestamp=parse_timestamp(document.get('feedUpdatedAt') or document['updatedAt']),
                ))

        hard_kinds = [k.value for k in kinds if HANDLERS[k].deletion_policy is DeletionPolicy.HARD]
        for record in self.state_db.get_deletions_since(business_id, hard_kinds, since, fetch_limit):
            candidates.append(PulledChange(
                entity_type=record['entityType'],
                entity_id=record['entityId'],
                sync_id=record['syncId'],
                operation=SyncOperation.DELETE.value,
                data=None,
                server_timestamp=parse_timestamp(record['processedAt']),
            ))

        candidates.sort(key=lambda c: (c.server_timestamp, c.entity_type, c.entity_id))
        has_more = len(candidates) > self.page_size
        if has_more:
            page = candidates[:self.page_size]
            boundary = page[-1].server_timestamp
            if candidates[self.page_size].server_timestamp == boundary:
                # The next page resumes strictly after the boundary, so ties there must wait for it
                before_boundary = [c for c in page if c.server_timestamp < boundary]
                if before_boundary:
                    page = before_boundary
            next_checkpoint = page[-1].server_timestamp
        else:
            page = candidates
            next_checkpoint = started

        self.state_db.advance_checkpoint(user_id, business_id, device_id, next_checkpoint)
        logger.info(f"Pull for device {device_id} (business {business_id}) since {since.isoformat()}: "
                    f"{len(page)} changes, hasMore={has_more}")
        return PullResponse(changes=page, server_timestamp=next_checkpoint, has_more=has_more)

#
# End of pull_builder.py
#######################################################################################################################
