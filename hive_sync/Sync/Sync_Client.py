# Sync_Client.py
#########################################
# Device-side sync engine: keeps an outbox of offline catalog edits, pushes them to the sync
# service, pulls server changes into a local CatalogDatabase replica, and bootstraps with a
# full sync when the device has no usable checkpoint.
#
####
import json
import logging
import os
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from hive_sync.Constants import USER_ID_HEADER, SyncOperation, parse_entity_kind
from hive_sync.DB.Catalog_DB import CatalogDatabase
from hive_sync.DB.SQLite_Base import DatabaseError
from hive_sync.Sync.sync_errors import UnsupportedEntityTypeError
from hive_sync.Utils.timestamps import parse_timestamp, to_db_timestamp, utc_now
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)

SYNC_ROUTE = "/businesses/{business_id}/sync"
DEFAULT_PUSH_BATCH_SIZE = 50
DEFAULT_MAX_PULL_ROUNDS = 20
CONFLICT_ERROR_MESSAGE = "Conflict detected"


def coalesce_change(outbox: List[Dict[str, Any]], change: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Folds `change` into the outbox so it holds at most one pending change per entity.

    create + update -> create, update + update -> update (payloads merged, latest timestamp wins),
    anything + delete -> delete, and create + delete -> nothing (the server never saw it).
    Without this, the second of two offline edits would conflict with the first once both
    are pushed in the same batch.
    """
    key = (change['entityType'], change['entityId'])
    index = next((i for i, pending in enumerate(outbox)
                  if (pending['entityType'], pending['entityId']) == key), None)
    if index is None:
        return outbox + [change]

    pending = outbox[index]
    remaining = outbox[:index] + outbox[index + 1:]
    if change['operation'] == SyncOperation.DELETE.value:
        if pending['operation'] == SyncOperation.CREATE.value:
            return remaining
        return remaining + [change]
    if pending['operation'] == SyncOperation.DELETE.value:
        return remaining + [change]

    merged = dict(change)
    merged['operation'] = (SyncOperation.CREATE.value
                           if SyncOperation.CREATE.value in (pending['operation'], change['operation'])
                           else SyncOperation.UPDATE.value)
    merged['payload'] = {**(pending.get('payload') or {}), **(change.get('payload') or {})}
    merged['clientTimestamp'] = max(pending['clientTimestamp'], change['clientTimestamp'])
    # Keeps the pending change's position; later changes may depend on this entity
    return outbox[:index] + [merged] + outbox[index + 1:]


class ClientSyncEngine:
    """
    Manages the synchronization process for a device's local catalog replica
    with the central sync service.
    """

    def __init__(self, local_db: CatalogDatabase, server_api_url: str, business_id: str, device_id: str,
                 user_id: str, state_file: str, *, request_timeout: float = 30,
                 push_batch_size: int = DEFAULT_PUSH_BATCH_SIZE, max_pull_rounds: int = DEFAULT_MAX_PULL_ROUNDS):
        if not isinstance(local_db, CatalogDatabase):
            raise TypeError("local_db must be a valid CatalogDatabase object.")
        if not business_id or not device_id or not user_id:
            raise ValueError("business_id, device_id and user_id are required.")

        self.db = local_db
        self.server_api_url = server_api_url.rstrip('/')
        self.business_id = business_id
        self.device_id = device_id
        self.user_id = user_id
        self.state_file = state_file
        self.request_timeout = request_timeout
        self.push_batch_size = max(1, push_batch_size)
        self.max_pull_rounds = max(1, max_pull_rounds)

        # Persistent sync state
        self.last_sync_at: Optional[str] = None
        self.outbox: List[Dict[str, Any]] = []
        self._load_sync_state()

        logger.info(f"ClientSyncEngine initialized for device '{self.device_id}' (business {self.business_id}).")
        logger.info(f"  DB Path: {self.db.db_path_str}")
        logger.info(f"  Server URL: {self.server_api_url}")
        logger.info(f"  Initial State: Last Sync={self.last_sync_at}, Pending={len(self.outbox)}")

    @classmethod
    def from_settings(cls, settings: Dict[str, Any], local_db: CatalogDatabase) -> "ClientSyncEngine":
        client = settings.get('client', {})
        return cls(local_db, client['server_url'], client['business_id'], client['device_id'], client['user_id'],
                   client['state_file'], request_timeout=client.get('request_timeout', 30),
                   push_batch_size=client.get('push_batch_size', DEFAULT_PUSH_BATCH_SIZE),
                   max_pull_rounds=client.get('max_pull_rounds', DEFAULT_MAX_PULL_ROUNDS))

    # --- State Management ---

    def _load_sync_state(self):
        """Loads the checkpoint and outbox from the state file."""
        try:
            if os.path.exists(self.state_file):
                with open(self.state_file, 'r', encoding='utf-8') as f:
                    state = json.load(f)
                self.last_sync_at = state.get('last_sync_at')
                self.outbox = list(state.get('outbox', []))
                logger.debug(f"Loaded sync state from {self.state_file}")
            else:
                logger.info(f"State file {self.state_file} not found, starting from scratch.")
                self._save_sync_state()
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Error loading sync state from {self.state_file}: {e}. Starting from scratch.", exc_info=True)
            self.last_sync_at = None
            self.outbox = []
            self._save_sync_state()

    def _save_sync_state(self):
        state = {'last_sync_at': self.last_sync_at, 'outbox': self.outbox}
        try:
            os.makedirs(os.path.dirname(self.state_file) or '.', exist_ok=True)
            tmp_path = f"{self.state_file}.tmp"
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(state, f, indent=4)
            os.replace(tmp_path, self.state_file)
            logger.debug(f"Saved sync state to {self.state_file} ({len(self.outbox)} pending)")
        except IOError as e:
            logger.error(f"Error saving sync state to {self.state_file}: {e}", exc_info=True)

    # --- Outbox ---

    def queue_change(self, entity_type: str, entity_id: str, operation: str,
                     payload: Optional[Dict[str, Any]] = None, client_timestamp: Optional[datetime] = None,
                     sync_id: Optional[str] = None) -> Dict[str, Any]:
        """Records a local edit for the next push and returns the queued change."""
        kind = parse_entity_kind(entity_type)
        if kind is None:
            raise UnsupportedEntityTypeError(entity_type)
        change = {
            'entityType': kind.value,
            'entityId': entity_id,
            'syncId': sync_id or str(uuid.uuid4()),
            'operation': SyncOperation(operation).value,
            'payload': payload,
            'clientTimestamp': to_db_timestamp(client_timestamp or utc_now()),
        }
        self.outbox = coalesce_change(self.outbox, change)
        self._save_sync_state()
        return change

    @property
    def pending_changes(self) -> List[Dict[str, Any]]:
        return list(self.outbox)

    # --- HTTP ---

    def _url(self, path: str) -> str:
        return f"{self.server_api_url}{SYNC_ROUTE.format(business_id=self.business_id)}{path}"

    def _headers(self) -> Dict[str, str]:
        return {'Content-Type': 'application/json', 'Accept': 'application/json', USER_ID_HEADER: self.user_id}

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = requests.post(self._url(path), json=payload, headers=self._headers(), timeout=self.request_timeout)
        response.raise_for_status()
        return response.json()

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = requests.get(self._url(path), params=params, headers=self._headers(), timeout=self.request_timeout)
        response.raise_for_status()
        return response.json()

    # --- Core Sync Logic ---

    def run_sync_cycle(self) -> Dict[str, int]:
        """Pushes the outbox, then pulls (or full-syncs) remote changes. Returns counters for the cycle."""
        logger.info(f"Starting sync cycle [Device ID: {self.device_id}]...")
        report = {'pushed': 0, 'pulled': 0, 'conflicts': 0, 'failed': 0}
        try:
            self._push_local_changes(report)
            if self.last_sync_at is None:
                report['pulled'] += self.perform_full_sync()
            else:
                self._pull_and_apply_remote_changes(report)
        except requests.exceptions.RequestException as e:
            # The outbox and checkpoint are saved after every batch, so nothing acknowledged is lost
            logger.error(f"Network error during sync cycle: {e}")
        logger.info(f"Sync cycle finished: {report}. Last Sync={self.last_sync_at}, Pending={len(self.outbox)}")
        return report

    def _push_local_changes(self, report: Dict[str, int]):
        if not self.outbox:
            logger.info("No local changes to push.")
            return
        # Work on a snapshot; failed changes are carried into the next cycle
        pending = list(self.outbox)
        retained: List[Dict[str, Any]] = []
        for start in range(0, len(pending), self.push_batch_size):
            batch = pending[start:start + self.push_batch_size]
            logger.debug(f"Pushing {len(batch)} changes")
            data = self._post('/push', {'deviceId': self.device_id, 'changes': batch})
            results = data.get('results', [])
            for change, result in zip(batch, results):
                if result.get('success'):
                    report['pushed'] += 1
                elif result.get('conflictData') is not None or result.get('error') == CONFLICT_ERROR_MESSAGE:
                    # Queued server-side; resolved through the conflict endpoints, not by retrying
                    report['conflicts'] += 1
                    logger.warning(f"Conflict on {change['entityType']} {change['entityId']}; server copy kept pending resolution")
                else:
                    report['failed'] += 1
                    retained.append(change)
                    logger.error(f"Server rejected {change['operation']} of {change['entityType']} "
                                 f"{change['entityId']}: {result.get('error')}")
            retained.extend(batch[len(results):])
            self.outbox = retained + pending[start + len(batch):]
            self._save_sync_state()
        logger.info(f"Push finished: {report['pushed']} applied, {report['conflicts']} conflicts, {report['failed']} failed")

    def _pull_and_apply_remote_changes(self, report: Dict[str, int]):
        for _ in range(self.max_pull_rounds):
            data = self._post('/pull', {'deviceId': self.device_id, 'lastSyncAt': self.last_sync_at})
            if data.get('fullSyncRequired'):
                logger.info("Server requires a full sync for this device.")
                report['pulled'] += self.perform_full_sync()
                return
            changes = data.get('changes', [])
            report['pulled'] += self._apply_remote_changes(changes)
            self.last_sync_at = data['serverTimestamp']
            self._save_sync_state()
            if not data.get('hasMore'):
                return
        logger.warning(f"Stopped pulling after {self.max_pull_rounds} rounds; the rest follows next cycle.")

    def _apply_remote_changes(self, changes: List[Dict[str, Any]]) -> int:
        pending_keys = {(c['entityType'], c['entityId']) for c in self.outbox}
        applied = 0
        for change in changes:
            kind = parse_entity_kind(change.get('entityType'))
            if kind is None:
                logger.warning(f"Skipping pulled change for unknown entity type {change.get('entityType')}")
                continue
            if (kind.value, change['entityId']) in pending_keys:
                logger.debug(f"Skipping pulled {kind.value} {change['entityId']}: local edit still pending")
                continue
            try:
                if change['operation'] == SyncOperation.DELETE.value:
                    self.db.mirror_delete(kind, self.business_id, change['entityId'])
                else:
                    self.db.mirror_upsert(kind, self.business_id, change['data'])
                applied += 1
            except DatabaseError as e:
                logger.error(f"Failed to apply pulled {kind.value} {change['entityId']}: {e}", exc_info=True)
        return applied

    def perform_full_sync(self) -> int:
        """Replaces the local replica with the server's snapshot. Returns the number of entities received."""
        data = self._get('/full', params={'deviceId': self.device_id})
        products = data.get('products', [])
        categories = data.get('categories', [])
        self.db.mirror_replace_all(self.business_id, products, categories)
        self.last_sync_at = data['serverTimestamp']
        self._save_sync_state()
        logger.info(f"Full sync applied: {len(products)} products, {len(categories)} categories")
        return len(products) + len(categories)

    # --- Conflicts ---

    def list_conflicts(self) -> List[Dict[str, Any]]:
        return self._get('/conflicts')

    def resolve_conflict(self, conflict_id: str, resolution: str,
                         merged_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'resolution': resolution}
        if merged_data is not None:
            payload['mergedData'] = merged_data
        return self._post(f'/conflicts/{conflict_id}/resolve', payload)

    def server_checkpoint(self) -> Optional[datetime]:
        data = self._get('/checkpoint', params={'deviceId': self.device_id})
        return parse_timestamp(data['lastSyncAt']) if data.get('lastSyncAt') else None

#
# End of Sync_Client.py
#######################################################################################################################
