# Constants.py
# Description: Shared enums and constants for the catalog sync service.
#
# Imports
from enum import Enum
from typing import Optional
#
#######################################################################################################################
#
# Constants:

# Sentinel entity type for the device-wide checkpoint row
ALL_ENTITY_TYPES = "all"

DEFAULT_PULL_PAGE_SIZE = 100

USER_ID_HEADER = "X-User-ID"


class EntityKind(str, Enum):
    PRODUCT = "product"
    CATEGORY = "category"
    IMAGE = "image"


class DeletionPolicy(str, Enum):
    SOFT = "soft"  # row kept, `deleted` flag flipped; visible to live-table pulls
    HARD = "hard"  # row removed; only the sync_queue trail remembers it


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class QueueStatus(str, Enum):
    COMPLETED = "completed"
    CONFLICT = "conflict"


class ConflictResolution(str, Enum):
    KEEP_SERVER = "keep_server"
    KEEP_CLIENT = "keep_client"
    MERGE = "merge"


# Names used by older mobile builds
ENTITY_TYPE_ALIASES = {
    "product_category": EntityKind.CATEGORY,
    "product_image": EntityKind.IMAGE,
}


def parse_entity_kind(name: Optional[str]) -> Optional[EntityKind]:
    """Returns the EntityKind for a wire name (or alias), or None when unsupported."""
    if not name:
        return None
    normalized = name.strip().lower()
    if normalized in ENTITY_TYPE_ALIASES:
        return ENTITY_TYPE_ALIASES[normalized]
    try:
        return EntityKind(normalized)
    except ValueError:
        return None

#
# End of Constants.py
#######################################################################################################################
