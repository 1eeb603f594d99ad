# hive_sync/Sync/change_applier.py
# Description: Routes a change to the handler for its entity kind and performs the mutation.
#
# The handler table is closed: product, category and image. Each handler declares the kind's
# deletion policy, which the pull side uses to pick its change source.
#
# Imports
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from hive_sync.Constants import DeletionPolicy, EntityKind, SyncOperation, parse_entity_kind
from hive_sync.Sync.entity_store import Document, EntityStore
from hive_sync.Sync.sync_errors import UnsupportedEntityTypeError
from hive_sync.Sync.sync_schemas import SyncChange
from hive_sync.Utils.timestamps import utc_now
#
#######################################################################################################################
#
# Handler table:


@dataclass(frozen=True)
class EntityHandler:
    kind: EntityKind
    deletion_policy: DeletionPolicy
    fetch: Callable[[EntityStore, str, str], Optional[Document]]
    create: Callable[[EntityStore, str, str, Dict[str, Any], Optional[str]], Document]
    # (store, business_id, entity_id, fields, if_unmodified_since, restore)
    update: Callable[..., Document]
    # (store, business_id, entity_id, if_unmodified_since) -> the tombstoned document, or None once gone
    delete: Callable[..., Optional[Document]]
    # (store, business_id, since, limit); only used for SOFT kinds
    changed_since: Optional[Callable[[EntityStore, str, datetime, int], List[Document]]] = None


HANDLERS: Dict[EntityKind, EntityHandler] = {
    EntityKind.PRODUCT: EntityHandler(
        kind=EntityKind.PRODUCT,
        deletion_policy=DeletionPolicy.SOFT,
        fetch=lambda store, biz, eid: store.get_product(biz, eid),
        create=lambda store, biz, eid, fields, sync_id: store.create_product(biz, eid, fields, sync_id),
        update=lambda store, biz, eid, fields, since, restore: store.update_product(
            biz, eid, fields, if_unmodified_since=since, restore=restore),
        delete=lambda store, biz, eid, since: store.soft_delete_product(biz, eid, if_unmodified_since=since),
        changed_since=lambda store, biz, since, limit: store.get_products_changed_since(biz, since, limit),
    ),
    EntityKind.CATEGORY: EntityHandler(
        kind=EntityKind.CATEGORY,
        deletion_policy=DeletionPolicy.SOFT,
        fetch=lambda store, biz, eid: store.get_category(biz, eid),
        create=lambda store, biz, eid, fields, sync_id: store.create_category(biz, eid, fields, sync_id),
        update=lambda store, biz, eid, fields, since, restore: store.update_category(
            biz, eid, fields, if_unmodified_since=since, restore=restore),
        delete=lambda store, biz, eid, since: store.soft_delete_category(biz, eid, if_unmodified_since=since),
        changed_since=lambda store, biz, since, limit: store.get_categories_changed_since(biz, since, limit),
    ),
    EntityKind.IMAGE: EntityHandler(
        kind=EntityKind.IMAGE,
        deletion_policy=DeletionPolicy.HARD,
        fetch=lambda store, biz, eid: store.get_image(biz, eid),
        create=lambda store, biz, eid, fields, sync_id: store.create_image(biz, eid, fields, sync_id),
        update=lambda store, biz, eid, fields, since, restore: store.update_image(
            biz, eid, fields, if_unmodified_since=since),
        delete=lambda store, biz, eid, since: store.delete_image(biz, eid, if_unmodified_since=since),
    ),
}


def get_handler(entity_type: str) -> EntityHandler:
    kind = parse_entity_kind(entity_type)
    if kind is None:
        raise UnsupportedEntityTypeError(entity_type)
    return HANDLERS[kind]


def kinds_with_policy(policy: DeletionPolicy) -> List[EntityKind]:
    return [kind for kind, handler in HANDLERS.items() if handler.deletion_policy is policy]

#
#######################################################################################################################
#
# Classes:


class ChangeApplier:
    """Applies validated changes to the injected Entity Store."""

    def __init__(self, store: EntityStore):
        self.store = store

    def fetch_current(self, entity_type: str, business_id: str, entity_id: str) -> Optional[Document]:
        return get_handler(entity_type).fetch(self.store, business_id, entity_id)

    def apply(self, business_id: str, change: SyncChange, *,
              if_unmodified_since: Optional[datetime] = None) -> Optional[Document]:
        """
        Performs one change as one atomic store operation and returns the resulting document
        (None after an image delete).

        With `if_unmodified_since` the store only writes while its copy is not newer, raising
        ConflictError otherwise. A `create` for an id that already exists is routed to `update`
        and revives a soft-deleted row, so retried creates converge instead of failing.
        """
        handler = get_handler(change.entity_type)
        operation = SyncOperation(change.operation)
        payload = change.payload or {}

        if operation is SyncOperation.CREATE:
            if handler.fetch(self.store, business_id, change.entity_id) is not None:
                logger.info(f"{handler.kind.value} {change.entity_id} already exists; applying create as update")
                return handler.update(self.store, business_id, change.entity_id, payload, if_unmodified_since, True)
            return handler.create(self.store, business_id, change.entity_id, payload, change.sync_id)
        if operation is SyncOperation.UPDATE:
            return handler.update(self.store, business_id, change.entity_id, payload, if_unmodified_since, False)
        return handler.delete(self.store, business_id, change.entity_id, if_unmodified_since)

    def upsert(self, business_id: str, entity_type: str, entity_id: str, document: Dict[str, Any],
               sync_id: Optional[str] = None) -> Document:
        """Writes `document` unconditionally, creating the entity if needed."""
        change = SyncChange(entity_type=entity_type, entity_id=entity_id, sync_id=sync_id,
                            operation=SyncOperation.CREATE.value, payload=document,
                            client_timestamp=utc_now())
        return self.apply(business_id, change, if_unmodified_since=None)

#
# End of change_applier.py
#######################################################################################################################
