# hive_sync/Sync/sync_errors.py
#
#
#######################################################################################################################
#
# Classes:

class SyncError(Exception):
    """Base exception for sync-core errors."""
    pass


class UnsupportedEntityTypeError(SyncError):
    """Raised for an entity type outside the handler table. Fails one change, never the batch."""
    def __init__(self, entity_type: str):
        super().__init__(f"Unknown entity type: {entity_type}")
        self.entity_type = entity_type


class InvalidSyncRequestError(SyncError):
    """Raised for a request that is rejected before any change is processed (e.g. no device id)."""
    pass


class ConflictNotFoundError(SyncError):
    """Raised when a conflict id does not exist in the caller's business scope."""
    def __init__(self, conflict_id: str):
        super().__init__(f"Conflict not found: {conflict_id}")
        self.conflict_id = conflict_id


class ConflictAlreadyResolvedError(SyncError):
    """Raised when resolving a queue record that is no longer in conflict."""
    def __init__(self, conflict_id: str):
        super().__init__(f"Conflict already resolved: {conflict_id}")
        self.conflict_id = conflict_id

#
# End of hive_sync/Sync/sync_errors.py
#######################################################################################################################
