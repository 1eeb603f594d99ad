# Catalog_DB.py
#########################################
# Catalog_DB Library
# SQLite-backed Entity Store for the catalog tables the sync service reconciles against:
# products, product categories and product images.
#
# Key Features:
# - Client-originated identity: rows are keyed by the id the device chose offline.
# - Conditional writes: updates and deletes accept `if_unmodified_since` and only touch the
#   row while its `updated_at` is not newer, so the conflict check and the write are one
#   atomic statement.
# - Soft Deletes for products and categories (`deleted=1`); images are hard-deleted.
# - Every image mutation bumps the parent product's `feed_updated_at` (never its `updated_at`,
#   which the conflict check reads), so image changes ride along with product pulls.
# - Mirror writes (`mirror_upsert`, `mirror_delete`) let a device keep a local replica that
#   carries the server's timestamps verbatim.
####
import json
import logging
import re
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from hive_sync.Constants import EntityKind
from hive_sync.DB.SQLite_Base import (
    BaseSQLiteDatabase,
    ConflictError,
    DatabaseError,
    InputError,
    NotFoundError,
)
from hive_sync.Sync.entity_store import Document, EntityStore
from hive_sync.Utils.timestamps import normalize_timestamp, to_db_timestamp, utc_now

logger = logging.getLogger(__name__)

# SQLite's default bound-parameter limit is 999 on older builds
_IN_CLAUSE_CHUNK = 500


def _snake_to_camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


def _camel_to_snake(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def slugify(text: str) -> str:
    slug = re.sub(r'[^a-z0-9]+', '-', text.strip().lower()).strip('-')
    return slug or 'item'


@dataclass(frozen=True)
class _TableSpec:
    table: str
    label: str
    writable: Tuple[str, ...]
    required_on_create: Tuple[str, ...] = ()
    json_columns: frozenset = frozenset()
    bool_columns: frozenset = frozenset()
    create_defaults: Dict[str, Any] = field(default_factory=dict)
    soft_delete: bool = True
    # Column the pull feed pages on; equals updated_at unless child rows also move it
    feed_column: str = 'updated_at'


_PRODUCTS = _TableSpec(
    table='products',
    label='Product',
    writable=('category_id', 'name', 'slug', 'description', 'short_description', 'price',
              'compare_at_price', 'cost_price', 'currency', 'sku', 'barcode', 'track_inventory',
              'quantity', 'low_stock_threshold', 'weight', 'weight_unit', 'status', 'is_featured',
              'attributes', 'tags'),
    required_on_create=('name', 'price'),
    json_columns=frozenset({'attributes', 'tags'}),
    bool_columns=frozenset({'track_inventory', 'is_featured', 'deleted'}),
    create_defaults={'attributes': {}, 'tags': []},
    feed_column='feed_updated_at',
)

_CATEGORIES = _TableSpec(
    table='categories',
    label='Category',
    writable=('name', 'slug', 'description', 'image_url', 'parent_id', 'level', 'sort_order', 'is_active'),
    required_on_create=('name',),
    bool_columns=frozenset({'is_active', 'deleted'}),
)

_IMAGES = _TableSpec(
    table='product_images',
    label='Image',
    writable=('product_id', 'url', 'thumbnail_url', 'alt_text', 'sort_order', 'is_primary', 'width',
              'height', 'file_size', 'mime_type', 'local_path', 'upload_status'),
    required_on_create=('product_id', 'url'),
    bool_columns=frozenset({'is_primary'}),
    # Binary upload happens out of band after the metadata syncs
    create_defaults={'upload_status': 'pending'},
    soft_delete=False,
)

_SPECS_BY_KIND = {
    EntityKind.PRODUCT: _PRODUCTS,
    EntityKind.CATEGORY: _CATEGORIES,
    EntityKind.IMAGE: _IMAGES,
}


class CatalogDatabase(BaseSQLiteDatabase, EntityStore):
    _DB_LABEL = "CatalogDatabase"
    _SCHEMA_VERSION_TABLE = "catalog_schema_version"
    _CURRENT_SCHEMA_VERSION = 1
    _REQUIRED_TABLES = ['products', 'categories', 'product_images']

    _SCHEMA_SQL_V1 = """
    CREATE TABLE IF NOT EXISTS categories (
        id TEXT PRIMARY KEY NOT NULL,
        business_id TEXT NOT NULL,
        name TEXT NOT NULL,
        slug TEXT NOT NULL,
        description TEXT,
        image_url TEXT,
        parent_id TEXT,
        level INTEGER NOT NULL DEFAULT 0,
        sort_order INTEGER NOT NULL DEFAULT 0,
        is_active BOOLEAN NOT NULL DEFAULT 1,
        sync_id TEXT,
        last_synced_at TEXT,
        deleted BOOLEAN NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (business_id, slug)
    );

    CREATE TABLE IF NOT EXISTS products (
        id TEXT PRIMARY KEY NOT NULL,
        business_id TEXT NOT NULL,
        category_id TEXT,
        name TEXT NOT NULL,
        slug TEXT NOT NULL,
        description TEXT,
        short_description TEXT,
        price REAL NOT NULL,
        compare_at_price REAL,
        cost_price REAL,
        currency TEXT NOT NULL DEFAULT 'KES',
        sku TEXT,
        barcode TEXT,
        track_inventory BOOLEAN NOT NULL DEFAULT 1,
        quantity INTEGER NOT NULL DEFAULT 0,
        low_stock_threshold INTEGER NOT NULL DEFAULT 5,
        weight REAL,
        weight_unit TEXT NOT NULL DEFAULT 'kg',
        status TEXT NOT NULL DEFAULT 'draft',
        is_featured BOOLEAN NOT NULL DEFAULT 0,
        attributes TEXT NOT NULL DEFAULT '{}',
        tags TEXT NOT NULL DEFAULT '[]',
        sync_id TEXT,
        last_synced_at TEXT,
        deleted BOOLEAN NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        feed_updated_at TEXT NOT NULL,
        UNIQUE (business_id, slug),
        UNIQUE (business_id, sku)
    );

    CREATE TABLE IF NOT EXISTS product_images (
        id TEXT PRIMARY KEY NOT NULL,
        business_id TEXT NOT NULL,
        product_id TEXT NOT NULL REFERENCES products(id) ON DELETE CASCADE,
        url TEXT NOT NULL,
        thumbnail_url TEXT,
        alt_text TEXT,
        sort_order INTEGER NOT NULL DEFAULT 0,
        is_primary BOOLEAN NOT NULL DEFAULT 0,
        width INTEGER,
        height INTEGER,
        file_size INTEGER,
        mime_type TEXT,
        local_path TEXT,
        upload_status TEXT NOT NULL DEFAULT 'completed',
        sync_id TEXT,
        last_synced_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_products_business_feed ON products(business_id, feed_updated_at);
    CREATE INDEX IF NOT EXISTS idx_products_sync_id ON products(sync_id);
    CREATE INDEX IF NOT EXISTS idx_categories_business_updated ON categories(business_id, updated_at);
    CREATE INDEX IF NOT EXISTS idx_product_images_product ON product_images(product_id);
    """

    def __init__(self, db_path: Union[str, Path]):
        super().__init__(db_path)

    # --- Field / Row Conversion ---
    def _normalize_fields(self, spec: _TableSpec, fields: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if fields is None:
            return {}
        if not isinstance(fields, dict):
            raise InputError(f"{spec.label} payload must be an object, got {type(fields).__name__}.")
        normalized = {}
        for key, value in fields.items():
            column = _camel_to_snake(key)
            if column in spec.writable:
                normalized[column] = value
            else:
                logger.debug(f"Ignoring unknown or read-only {spec.label} field '{key}'")
        return normalized

    @staticmethod
    def _encode_value(spec: _TableSpec, column: str, value: Any) -> Any:
        if column in spec.json_columns:
            return json.dumps(value if value is not None else spec.create_defaults.get(column), separators=(',', ':'))
        if column in spec.bool_columns:
            return None if value is None else (1 if value else 0)
        if isinstance(value, (dict, list)):
            raise InputError(f"{spec.label} field '{_snake_to_camel(column)}' does not accept structured values.")
        return value

    def _row_to_document(self, spec: _TableSpec, row: sqlite3.Row) -> Document:
        document = {}
        for column in row.keys():
            value = row[column]
            if column in spec.json_columns:
                value = json.loads(value) if value else spec.create_defaults.get(column)
            elif column in spec.bool_columns:
                value = None if value is None else bool(value)
            document[_snake_to_camel(column)] = value
        return document

    def _attach_images(self, products: List[Document]) -> List[Document]:
        if not products:
            return products
        by_product: Dict[str, List[Document]] = {p['id']: [] for p in products}
        ids = list(by_product)
        for start in range(0, len(ids), _IN_CLAUSE_CHUNK):
            chunk = ids[start:start + _IN_CLAUSE_CHUNK]
            placeholders = ','.join('?' * len(chunk))
            cursor = self.execute_query(
                f"SELECT * FROM product_images WHERE product_id IN ({placeholders}) "
                f"ORDER BY sort_order ASC, created_at ASC", tuple(chunk))
            for row in cursor.fetchall():
                by_product[row['product_id']].append(self._row_to_document(_IMAGES, row))
        for product in products:
            product['images'] = by_product[product['id']]
        return products

    # --- Generic Operations ---
    def _get(self, spec: _TableSpec, business_id: str, entity_id: str) -> Optional[Document]:
        cursor = self.execute_query(f"SELECT * FROM {spec.table} WHERE id = ? AND business_id = ?",
                                    (entity_id, business_id))
        row = cursor.fetchone()
        return self._row_to_document(spec, row) if row else None

    def _insert(self, conn: sqlite3.Connection, spec: _TableSpec, business_id: str, entity_id: str,
                fields: Optional[Dict[str, Any]], sync_id: Optional[str]) -> str:
        if not entity_id:
            raise InputError(f"{spec.label} id cannot be empty.")
        values = self._normalize_fields(spec, fields)
        for required in spec.required_on_create:
            if values.get(required) in (None, ''):
                raise InputError(f"{spec.label} '{entity_id}' requires field '{_snake_to_camel(required)}'.")
        for column, default in spec.create_defaults.items():
            values.setdefault(column, default)
        if 'slug' in spec.writable and not values.get('slug'):
            values['slug'] = f"{slugify(str(values['name']))}-{entity_id[:8]}"

        now = to_db_timestamp(utc_now())
        row = {column: self._encode_value(spec, column, value) for column, value in values.items()}
        row.update({'id': entity_id, 'business_id': business_id, 'sync_id': sync_id,
                    'last_synced_at': now, 'created_at': now, 'updated_at': now})
        row[spec.feed_column] = now
        columns = list(row)
        try:
            conn.execute(
                f"INSERT INTO {spec.table} ({', '.join(columns)}) VALUES ({', '.join('?' * len(columns))})",
                tuple(row[c] for c in columns))
        except sqlite3.IntegrityError as e:
            raise DatabaseError(f"Integrity constraint violation creating {spec.label} '{entity_id}': {e}") from e
        logger.debug(f"Inserted {spec.label} {entity_id} for business {business_id} at {now}")
        return now

    def _conditional_update(self, conn: sqlite3.Connection, spec: _TableSpec, business_id: str, entity_id: str,
                            values: Dict[str, Any], if_unmodified_since: Optional[datetime]) -> str:
        now = to_db_timestamp(utc_now())
        assignments = [f"{column} = ?" for column in values] + ["updated_at = ?", "last_synced_at = ?"]
        params: List[Any] = list(values.values()) + [now, now]
        if spec.feed_column != 'updated_at':
            assignments.append(f"{spec.feed_column} = ?")
            params.append(now)
        params += [entity_id, business_id]
        where = "id = ? AND business_id = ?"
        if if_unmodified_since is not None:
            where += " AND updated_at <= ?"
            params.append(to_db_timestamp(if_unmodified_since))
        try:
            cursor = conn.execute(f"UPDATE {spec.table} SET {', '.join(assignments)} WHERE {where}", tuple(params))
        except sqlite3.IntegrityError as e:
            raise DatabaseError(f"Integrity constraint violation updating {spec.label} '{entity_id}': {e}") from e
        if cursor.rowcount == 0:
            self._raise_missing_or_conflict(conn, spec, business_id, entity_id, if_unmodified_since)
        return now

    @staticmethod
    def _raise_missing_or_conflict(conn: sqlite3.Connection, spec: _TableSpec, business_id: str, entity_id: str,
                                   if_unmodified_since: Optional[datetime]):
        exists = conn.execute(f"SELECT 1 FROM {spec.table} WHERE id = ? AND business_id = ?",
                              (entity_id, business_id)).fetchone()
        if not exists:
            raise NotFoundError(f"{spec.label} not found: {entity_id}", entity=spec.label, identifier=entity_id)
        raise ConflictError(
            f"{spec.label} was modified after {to_db_timestamp(if_unmodified_since)}.",
            entity=spec.label, identifier=entity_id)

    def _create(self, spec: _TableSpec, business_id: str, entity_id: str, fields: Optional[Dict[str, Any]],
                sync_id: Optional[str]) -> Document:
        try:
            with self.transaction(immediate=True) as conn:
                self._insert(conn, spec, business_id, entity_id, fields, sync_id)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to create {spec.label} '{entity_id}': {e}") from e
        return self._get(spec, business_id, entity_id)

    def _update(self, spec: _TableSpec, business_id: str, entity_id: str, fields: Optional[Dict[str, Any]],
                if_unmodified_since: Optional[datetime], restore: bool = False) -> Document:
        values = {column: self._encode_value(spec, column, value)
                  for column, value in self._normalize_fields(spec, fields).items()}
        if restore and spec.soft_delete:
            values['deleted'] = 0
        try:
            with self.transaction(immediate=True) as conn:
                self._conditional_update(conn, spec, business_id, entity_id, values, if_unmodified_since)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to update {spec.label} '{entity_id}': {e}") from e
        return self._get(spec, business_id, entity_id)

    def _changed_since(self, spec: _TableSpec, business_id: str, since: datetime, limit: int) -> List[Document]:
        cursor = self.execute_query(
            f"SELECT * FROM {spec.table} WHERE business_id = ? AND {spec.feed_column} > ? "
            f"ORDER BY {spec.feed_column} ASC, id ASC LIMIT ?",
            (business_id, to_db_timestamp(since), int(limit)))
        return [self._row_to_document(spec, row) for row in cursor.fetchall()]

    def _active(self, spec: _TableSpec, business_id: str) -> List[Document]:
        cursor = self.execute_query(
            f"SELECT * FROM {spec.table} WHERE business_id = ? AND deleted = 0 ORDER BY created_at ASC, id ASC",
            (business_id,))
        return [self._row_to_document(spec, row) for row in cursor.fetchall()]

    # --- Products ---
    def get_product(self, business_id: str, product_id: str) -> Optional[Document]:
        product = self._get(_PRODUCTS, business_id, product_id)
        return self._attach_images([product])[0] if product else None

    def create_product(self, business_id: str, product_id: str, fields: Dict[str, Any],
                       sync_id: Optional[str] = None) -> Document:
        self._create(_PRODUCTS, business_id, product_id, fields, sync_id)
        return self.get_product(business_id, product_id)

    def update_product(self, business_id: str, product_id: str, fields: Dict[str, Any], *,
                       if_unmodified_since: Optional[datetime] = None, restore: bool = False) -> Document:
        self._update(_PRODUCTS, business_id, product_id, fields, if_unmodified_since, restore)
        return self.get_product(business_id, product_id)

    def soft_delete_product(self, business_id: str, product_id: str, *,
                            if_unmodified_since: Optional[datetime] = None) -> Document:
        try:
            with self.transaction(immediate=True) as conn:
                self._conditional_update(conn, _PRODUCTS, business_id, product_id, {'deleted': 1},
                                         if_unmodified_since)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to delete Product '{product_id}': {e}") from e
        logger.info(f"Soft-deleted product {product_id} (business {business_id})")
        return self.get_product(business_id, product_id)

    def get_products_changed_since(self, business_id: str, since: datetime, limit: int) -> List[Document]:
        return self._attach_images(self._changed_since(_PRODUCTS, business_id, since, limit))

    def get_active_products(self, business_id: str) -> List[Document]:
        return self._attach_images(self._active(_PRODUCTS, business_id))

    # --- Categories ---
    def get_category(self, business_id: str, category_id: str) -> Optional[Document]:
        return self._get(_CATEGORIES, business_id, category_id)

    def create_category(self, business_id: str, category_id: str, fields: Dict[str, Any],
                        sync_id: Optional[str] = None) -> Document:
        return self._create(_CATEGORIES, business_id, category_id, fields, sync_id)

    def update_category(self, business_id: str, category_id: str, fields: Dict[str, Any], *,
                        if_unmodified_since: Optional[datetime] = None, restore: bool = False) -> Document:
        return self._update(_CATEGORIES, business_id, category_id, fields, if_unmodified_since, restore)

    def soft_delete_category(self, business_id: str, category_id: str, *,
                             if_unmodified_since: Optional[datetime] = None) -> Document:
        try:
            with self.transaction(immediate=True) as conn:
                self._conditional_update(conn, _CATEGORIES, business_id, category_id, {'deleted': 1},
                                         if_unmodified_since)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to delete Category '{category_id}': {e}") from e
        logger.info(f"Soft-deleted category {category_id} (business {business_id})")
        return self.get_category(business_id, category_id)

    def get_categories_changed_since(self, business_id: str, since: datetime, limit: int) -> List[Document]:
        return self._changed_since(_CATEGORIES, business_id, since, limit)

    def get_active_categories(self, business_id: str) -> List[Document]:
        return self._active(_CATEGORIES, business_id)

    # --- Images ---
    @staticmethod
    def _touch_product(conn: sqlite3.Connection, product_id: str, timestamp: str):
        conn.execute("UPDATE products SET feed_updated_at = ? WHERE id = ?", (timestamp, product_id))

    def get_image(self, business_id: str, image_id: str) -> Optional[Document]:
        return self._get(_IMAGES, business_id, image_id)

    def create_image(self, business_id: str, image_id: str, fields: Dict[str, Any],
                     sync_id: Optional[str] = None) -> Document:
        values = self._normalize_fields(_IMAGES, fields)
        product_id = values.get('product_id')
        try:
            with self.transaction(immediate=True) as conn:
                parent = conn.execute(
                    "SELECT id FROM products WHERE id = ? AND business_id = ? AND deleted = 0",
                    (product_id, business_id)).fetchone() if product_id else None
                if product_id and not parent:
                    raise InputError(f"Image '{image_id}' references unknown product '{product_id}'.")
                now = self._insert(conn, _IMAGES, business_id, image_id, fields, sync_id)
                self._touch_product(conn, product_id, now)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to create Image '{image_id}': {e}") from e
        return self.get_image(business_id, image_id)

    def update_image(self, business_id: str, image_id: str, fields: Dict[str, Any], *,
                     if_unmodified_since: Optional[datetime] = None) -> Document:
        values = {column: self._encode_value(_IMAGES, column, value)
                  for column, value in self._normalize_fields(_IMAGES, fields).items()
                  if column != 'product_id'}  # images never move between products
        try:
            with self.transaction(immediate=True) as conn:
                now = self._conditional_update(conn, _IMAGES, business_id, image_id, values, if_unmodified_since)
                row = conn.execute("SELECT product_id FROM product_images WHERE id = ?", (image_id,)).fetchone()
                self._touch_product(conn, row['product_id'], now)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to update Image '{image_id}': {e}") from e
        return self.get_image(business_id, image_id)

    def delete_image(self, business_id: str, image_id: str, *,
                     if_unmodified_since: Optional[datetime] = None) -> None:
        try:
            with self.transaction(immediate=True) as conn:
                row = conn.execute("SELECT product_id FROM product_images WHERE id = ? AND business_id = ?",
                                   (image_id, business_id)).fetchone()
                where, params = "id = ? AND business_id = ?", [image_id, business_id]
                if if_unmodified_since is not None:
                    where += " AND updated_at <= ?"
                    params.append(to_db_timestamp(if_unmodified_since))
                cursor = conn.execute(f"DELETE FROM product_images WHERE {where}", tuple(params))
                if cursor.rowcount == 0:
                    self._raise_missing_or_conflict(conn, _IMAGES, business_id, image_id, if_unmodified_since)
                self._touch_product(conn, row['product_id'], to_db_timestamp(utc_now()))
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to delete Image '{image_id}': {e}") from e
        logger.info(f"Hard-deleted image {image_id} (business {business_id})")

    # --- Local Replica (mirror) Writes ---
    def mirror_upsert(self, kind: EntityKind, business_id: str, document: Document) -> None:
        """
        Writes a server document into this database as-is, keeping the server's timestamps.
        Used by devices to maintain their local replica from pulled changes.
        """
        spec = _SPECS_BY_KIND[EntityKind(kind)]
        if not document or not document.get('id') or not document.get('updatedAt'):
            raise InputError(f"Cannot mirror {spec.label}: document requires 'id' and 'updatedAt'.")
        try:
            with self.transaction(immediate=True) as conn:
                self._mirror_row(conn, spec, business_id, document)
                if spec is _PRODUCTS and 'images' in document:
                    image_ids = []
                    for image in document.get('images') or []:
                        self._mirror_row(conn, _IMAGES, business_id, {**image, 'productId': document['id']})
                        image_ids.append(image['id'])
                    placeholders = ','.join('?' * len(image_ids))
                    conn.execute(
                        "DELETE FROM product_images WHERE product_id = ?"
                        + (f" AND id NOT IN ({placeholders})" if image_ids else ""),
                        (document['id'], *image_ids))
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to mirror {spec.label} '{document.get('id')}': {e}") from e

    def _mirror_row(self, conn: sqlite3.Connection, spec: _TableSpec, business_id: str, document: Document):
        row = {}
        for column in spec.writable:
            key = _snake_to_camel(column)
            if key in document:
                row[column] = self._encode_value(spec, column, document[key])
        updated_at = normalize_timestamp(document['updatedAt'])
        row.update({
            'id': document['id'],
            'business_id': business_id,
            'sync_id': document.get('syncId'),
            'last_synced_at': to_db_timestamp(utc_now()),
            'created_at': normalize_timestamp(document.get('createdAt') or updated_at),
            'updated_at': updated_at,
        })
        if spec.feed_column != 'updated_at':
            row[spec.feed_column] = normalize_timestamp(document.get(_snake_to_camel(spec.feed_column)) or updated_at)
        if spec.soft_delete:
            row['deleted'] = 1 if document.get('deleted') else 0
        if 'slug' in spec.writable and not row.get('slug'):
            row['slug'] = f"{slugify(str(row.get('name') or ''))}-{document['id'][:8]}"
        columns = list(row)
        updates = ', '.join(f"{c} = excluded.{c}" for c in columns if c not in ('id', 'created_at'))
        conn.execute(
            f"INSERT INTO {spec.table} ({', '.join(columns)}) VALUES ({', '.join('?' * len(columns))}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            tuple(row[c] for c in columns))

    def mirror_delete(self, kind: EntityKind, business_id: str, entity_id: str) -> bool:
        spec = _SPECS_BY_KIND[EntityKind(kind)]
        cursor = self.execute_query(f"DELETE FROM {spec.table} WHERE id = ? AND business_id = ?",
                                    (entity_id, business_id), commit=True)
        return cursor.rowcount > 0

    def mirror_replace_all(self, business_id: str, products: Iterable[Document],
                           categories: Iterable[Document]) -> None:
        """Replaces the local replica of one business with a full-sync snapshot."""
        try:
            with self.transaction(immediate=True) as conn:
                conn.execute("DELETE FROM product_images WHERE business_id = ?", (business_id,))
                conn.execute("DELETE FROM products WHERE business_id = ?", (business_id,))
                conn.execute("DELETE FROM categories WHERE business_id = ?", (business_id,))
                for category in categories:
                    self._mirror_row(conn, _CATEGORIES, business_id, category)
                for product in products:
                    self._mirror_row(conn, _PRODUCTS, business_id, product)
                    for image in product.get('images') or []:
                        self._mirror_row(conn, _IMAGES, business_id, {**image, 'productId': product['id']})
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to replace local catalog for business {business_id}: {e}") from e

#
# End of Catalog_DB.py
#######################################################################################################################
