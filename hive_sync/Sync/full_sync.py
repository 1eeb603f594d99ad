# hive_sync/Sync/full_sync.py
# Description: Cold-start snapshot of a business's catalog for a new (or too stale) device.
#
# Imports
from loguru import logger

from hive_sync.DB.Sync_State_DB import SyncStateDatabase
from hive_sync.Sync.entity_store import EntityStore
from hive_sync.Sync.sync_errors import InvalidSyncRequestError
from hive_sync.Sync.sync_schemas import FullSyncResponse
from hive_sync.Utils.timestamps import utc_now
#
#######################################################################################################################
#
# Classes:


class FullSyncBootstrapper:

    def __init__(self, store: EntityStore, state_db: SyncStateDatabase):
        self.store = store
        self.state_db = state_db

    def full_sync(self, user_id: str, business_id: str, device_id: str) -> FullSyncResponse:
        """Returns every live product (with images) and category, unpaged, and moves the checkpoint."""
        if not device_id or not device_id.strip():
            raise InvalidSyncRequestError("deviceId is required")
        # Taken before reading: anything written during the read is re-sent by the next pull
        server_time = utc_now()
        products = self.store.get_active_products(business_id)
        categories = self.store.get_active_categories(business_id)
        self.state_db.advance_checkpoint(user_id, business_id, device_id, server_time)
        logger.info(f"Full sync for device {device_id} (business {business_id}): "
                    f"{len(products)} products, {len(categories)} categories")
        return FullSyncResponse(products=products, categories=categories, server_timestamp=server_time)

#
# End of full_sync.py
#######################################################################################################################
