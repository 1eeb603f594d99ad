# entity_store.py
# Description: Interface the sync core uses to reach the authoritative catalog.
#
# Documents exchanged through this interface are camelCase dicts carrying at least `id`,
# `updatedAt` (canonical UTC string) and `deleted`. Product documents embed their images.
#
# Imports
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional
#
#######################################################################################################################
#
# Classes:

Document = Dict[str, Any]


class EntityStore(ABC):
    """Typed create/read/update/delete operations over products, categories and images."""

    # --- Products (soft delete) ---
    @abstractmethod
    def get_product(self, business_id: str, product_id: str) -> Optional[Document]:
        """Returns the product (including soft-deleted ones) or None."""

    @abstractmethod
    def create_product(self, business_id: str, product_id: str, fields: Dict[str, Any],
                       sync_id: Optional[str] = None) -> Document:
        pass

    @abstractmethod
    def update_product(self, business_id: str, product_id: str, fields: Dict[str, Any], *,
                       if_unmodified_since: Optional[datetime] = None, restore: bool = False) -> Document:
        """
        Partial update. With `if_unmodified_since` the write only happens while the stored
        `updatedAt` is not newer than it; otherwise ConflictError is raised.
        """

    @abstractmethod
    def soft_delete_product(self, business_id: str, product_id: str, *,
                            if_unmodified_since: Optional[datetime] = None) -> Document:
        pass

    @abstractmethod
    def get_products_changed_since(self, business_id: str, since: datetime, limit: int) -> List[Document]:
        """
        Products whose feedUpdatedAt is strictly after `since`, soft-deleted included, oldest first.
        feedUpdatedAt moves with image writes as well; updatedAt only moves with product writes.
        """

    @abstractmethod
    def get_active_products(self, business_id: str) -> List[Document]:
        pass

    # --- Categories (soft delete) ---
    @abstractmethod
    def get_category(self, business_id: str, category_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    def create_category(self, business_id: str, category_id: str, fields: Dict[str, Any],
                        sync_id: Optional[str] = None) -> Document:
        pass

    @abstractmethod
    def update_category(self, business_id: str, category_id: str, fields: Dict[str, Any], *,
                        if_unmodified_since: Optional[datetime] = None, restore: bool = False) -> Document:
        pass

    @abstractmethod
    def soft_delete_category(self, business_id: str, category_id: str, *,
                             if_unmodified_since: Optional[datetime] = None) -> Document:
        pass

    @abstractmethod
    def get_categories_changed_since(self, business_id: str, since: datetime, limit: int) -> List[Document]:
        pass

    @abstractmethod
    def get_active_categories(self, business_id: str) -> List[Document]:
        pass

    # --- Images (hard delete) ---
    @abstractmethod
    def get_image(self, business_id: str, image_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    def create_image(self, business_id: str, image_id: str, fields: Dict[str, Any],
                     sync_id: Optional[str] = None) -> Document:
        pass

    @abstractmethod
    def update_image(self, business_id: str, image_id: str, fields: Dict[str, Any], *,
                     if_unmodified_since: Optional[datetime] = None) -> Document:
        pass

    @abstractmethod
    def delete_image(self, business_id: str, image_id: str, *,
                     if_unmodified_since: Optional[datetime] = None) -> None:
        pass

#
# End of entity_store.py
#######################################################################################################################
