# hive_sync/Sync/conflict_detector.py
# Description: Last-write-wins conflict check over entity metadata.
#
# Imports
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from hive_sync.Sync.entity_store import Document
from hive_sync.Utils.timestamps import ensure_utc, parse_timestamp
#
#######################################################################################################################
#
# Functions:


@dataclass(frozen=True)
class ConflictCheck:
    conflict: bool
    server_document: Optional[Document] = None
    server_updated_at: Optional[datetime] = None


def detect_conflict(server_document: Optional[Document], client_timestamp: datetime) -> ConflictCheck:
    """
    A change conflicts when the server copy was modified after the client made its edit.

    A missing entity never conflicts, and equal timestamps are not a conflict.
    """
    if server_document is None:
        return ConflictCheck(conflict=False)
    raw_updated_at = server_document.get('updatedAt')
    if not raw_updated_at:
        return ConflictCheck(conflict=False, server_document=server_document)
    server_updated_at = parse_timestamp(raw_updated_at)
    return ConflictCheck(
        conflict=server_updated_at > ensure_utc(client_timestamp),
        server_document=server_document,
        server_updated_at=server_updated_at,
    )

#
# End of conflict_detector.py
#######################################################################################################################
