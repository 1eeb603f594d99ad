# hive_sync/api/sync_endpoints.py
# Description: HTTP endpoints for catalog synchronization, scoped to one business.
#
# Imports
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from loguru import logger

from hive_sync.Constants import USER_ID_HEADER
from hive_sync.DB.SQLite_Base import DatabaseError, InputError, NotFoundError
from hive_sync.Sync.Sync_Service import CatalogSyncService
from hive_sync.Sync.sync_errors import (
    ConflictAlreadyResolvedError,
    ConflictNotFoundError,
    InvalidSyncRequestError,
)
from hive_sync.Sync.sync_schemas import (
    CheckpointResponse,
    FullSyncResponse,
    PullRequest,
    PullResponse,
    PushRequest,
    PushResponse,
    ResolveConflictRequest,
    ResolveConflictResponse,
    SyncQueueRecordModel,
)
#
#######################################################################################################################
#
# Dependencies:

router = APIRouter(tags=["sync"])


def get_sync_service(request: Request) -> CatalogSyncService:
    service = getattr(request.app.state, "sync_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Sync service unavailable")
    return service


def get_current_user_id(x_user_id: Optional[str] = Header(None, alias=USER_ID_HEADER)) -> str:
    """Identifies the acting user. Authentication itself happens in front of this service."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Missing {USER_ID_HEADER} header")
    return x_user_id.strip()


def _raise_http_error(e: Exception, action: str) -> NoReturn:
    if isinstance(e, (InvalidSyncRequestError, InputError)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    if isinstance(e, (ConflictNotFoundError, NotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    if isinstance(e, ConflictAlreadyResolvedError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    if isinstance(e, DatabaseError):
        logger.error(f"Database error during {action}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail=f"A database error occurred during {action}.") from e
    logger.opt(exception=e).error(f"Unexpected error during {action}")
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                        detail=f"An unexpected error occurred during {action}.") from e

#
#######################################################################################################################
#
# Endpoints:


@router.post("/push", response_model=PushResponse, summary="Push offline changes")
def push_changes(
        business_id: str,
        body: PushRequest,
        user_id: str = Depends(get_current_user_id),
        service: CatalogSyncService = Depends(get_sync_service),
):
    try:
        return service.push(user_id, business_id, body.device_id, body.changes)
    except Exception as e:
        _raise_http_error(e, "push")


@router.post("/pull", response_model=PullResponse, summary="Pull changes since a checkpoint")
def pull_changes(
        business_id: str,
        body: PullRequest,
        user_id: str = Depends(get_current_user_id),
        service: CatalogSyncService = Depends(get_sync_service),
):
    try:
        return service.pull(user_id, business_id, body.device_id, body.last_sync_at, body.entity_types)
    except Exception as e:
        _raise_http_error(e, "pull")


@router.get("/full", response_model=FullSyncResponse, summary="Full catalog snapshot")
def full_sync(
        business_id: str,
        device_id: str = Query(..., alias="deviceId", min_length=1),
        user_id: str = Depends(get_current_user_id),
        service: CatalogSyncService = Depends(get_sync_service),
):
    try:
        return service.full_sync(user_id, business_id, device_id)
    except Exception as e:
        _raise_http_error(e, "full sync")


@router.get("/checkpoint", response_model=CheckpointResponse, summary="Read a device checkpoint")
def get_checkpoint(
        business_id: str,
        device_id: str = Query(..., alias="deviceId", min_length=1),
        user_id: str = Depends(get_current_user_id),
        service: CatalogSyncService = Depends(get_sync_service),
):
    try:
        return service.get_checkpoint(user_id, business_id, device_id)
    except Exception as e:
        _raise_http_error(e, "checkpoint read")


@router.get("/conflicts", response_model=List[SyncQueueRecordModel], summary="List unresolved conflicts")
def list_conflicts(
        business_id: str,
        user_id: str = Depends(get_current_user_id),
        service: CatalogSyncService = Depends(get_sync_service),
):
    try:
        return service.list_conflicts(user_id, business_id)
    except Exception as e:
        _raise_http_error(e, "conflict listing")


@router.post("/conflicts/{conflict_id}/resolve", response_model=ResolveConflictResponse,
             summary="Resolve a queued conflict")
def resolve_conflict(
        business_id: str,
        conflict_id: str,
        body: ResolveConflictRequest,
        user_id: str = Depends(get_current_user_id),
        service: CatalogSyncService = Depends(get_sync_service),
):
    try:
        response = service.resolve_conflict(business_id, conflict_id, body.resolution, body.merged_data)
    except Exception as e:
        _raise_http_error(e, "conflict resolution")
    logger.info(f"User {user_id} resolved conflict {conflict_id} with {body.resolution}")
    return response

#
# End of sync_endpoints.py
#######################################################################################################################
