# hive_sync/Sync/sync_schemas.py
# Wire models for the sync protocol. Field names are snake_case in Python and camelCase on the wire.
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Enum-like Literals from the sync protocol
OperationType = Literal['create', 'update', 'delete']
QueueStatusType = Literal['completed', 'conflict']
ResolutionType = Literal['keep_server', 'keep_client', 'merge']


class SyncModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Push ---
class SyncChange(SyncModel):
    # Kept as a plain string so an unknown kind fails only its own change
    entity_type: str = Field(..., min_length=1)
    entity_id: str = Field(..., min_length=1)
    sync_id: Optional[str] = None
    operation: OperationType
    payload: Optional[Dict[str, Any]] = None
    client_timestamp: datetime


class SyncResult(SyncModel):
    entity_id: str
    sync_id: Optional[str] = None
    success: bool
    server_timestamp: datetime
    error: Optional[str] = None
    conflict_data: Optional[Dict[str, Any]] = None


class PushRequest(SyncModel):
    device_id: str = Field(..., min_length=1)
    changes: List[SyncChange] = Field(default_factory=list)


class PushResponse(SyncModel):
    results: List[SyncResult]
    server_timestamp: datetime


# --- Pull ---
class PullRequest(SyncModel):
    device_id: str = Field(..., min_length=1)
    last_sync_at: Optional[datetime] = None  # None: resume from the stored checkpoint
    entity_types: Optional[List[str]] = None


class PulledChange(SyncModel):
    entity_type: str
    entity_id: str
    sync_id: Optional[str] = None
    operation: OperationType
    data: Optional[Dict[str, Any]] = None
    server_timestamp: datetime


class PullResponse(SyncModel):
    changes: List[PulledChange]
    server_timestamp: datetime
    has_more: bool = False
    full_sync_required: bool = False


# --- Full sync / checkpoint ---
class FullSyncResponse(SyncModel):
    products: List[Dict[str, Any]]
    categories: List[Dict[str, Any]]
    server_timestamp: datetime


class CheckpointResponse(SyncModel):
    last_sync_at: datetime
    device_id: str


# --- Conflicts ---
class SyncQueueRecordModel(SyncModel):
    id: str
    user_id: str
    business_id: str
    device_id: str
    entity_type: str
    entity_id: str
    sync_id: Optional[str] = None
    operation: OperationType
    payload: Optional[Dict[str, Any]] = None
    client_timestamp: datetime
    status: QueueStatusType
    error_message: Optional[str] = None
    resolution: Optional[ResolutionType] = None
    processed_at: datetime
    resolved_at: Optional[datetime] = None
    created_at: datetime


class ResolveConflictRequest(SyncModel):
    resolution: ResolutionType
    merged_data: Optional[Dict[str, Any]] = None


class ResolveConflictResponse(SyncModel):
    message: str = "Conflict resolved"
    conflict_id: str
    resolution: ResolutionType
    resolved_at: datetime
    entity: Optional[Dict[str, Any]] = None

#
# End of hive_sync/Sync/sync_schemas.py
#######################################################################################################################
