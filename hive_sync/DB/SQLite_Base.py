# SQLite_Base.py
#########################################
# SQLite_Base Library
# Shared connection handling, transaction management and schema versioning for the
# catalog (entity store) and sync-state databases.
#
# Key Features:
# - Instance-based: each database object connects to one SQLite file (or ':memory:').
# - Thread-Safety: connections are kept in thread-local storage.
# - Transaction Management: `transaction()` context manager, re-entrant for nested use.
# - Schema Versioning: each subclass owns its own version table so several stores may
#   share one database file.
####
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)


# --- Custom Exceptions ---
class DatabaseError(Exception):
    """Base exception for database related errors."""
    pass


class SchemaError(DatabaseError):
    """Exception for schema version mismatches or migration failures."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class NotFoundError(DatabaseError):
    """The addressed row does not exist (or is outside the caller's scope)."""

    def __init__(self, message="Record not found.", entity=None, identifier=None):
        super().__init__(message)
        self.entity = entity
        self.identifier = identifier


class ConflictError(DatabaseError):
    """Indicates a conflict due to concurrent modification (conditional write failed)."""

    def __init__(self, message="Conflict detected: Record modified concurrently.", entity=None, identifier=None):
        super().__init__(message)
        self.entity = entity
        self.identifier = identifier

    def __str__(self):
        base = super().__str__()
        details = []
        if self.entity:
            details.append(f"Entity: {self.entity}")
        if self.identifier:
            details.append(f"ID: {self.identifier}")
        return f"{base} ({', '.join(details)})" if details else base


class BaseSQLiteDatabase:
    """
    Base class for the service's SQLite stores.

    Subclasses provide `_DB_LABEL`, `_SCHEMA_VERSION_TABLE`, `_CURRENT_SCHEMA_VERSION`,
    `_SCHEMA_SQL_V1` and `_REQUIRED_TABLES`.
    """
    _DB_LABEL = "Database"
    _SCHEMA_VERSION_TABLE = "schema_version"
    _CURRENT_SCHEMA_VERSION = 1
    _SCHEMA_SQL_V1 = ""
    _REQUIRED_TABLES: List[str] = []

    def __init__(self, db_path: Union[str, Path]):
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(":memory:") if self.is_memory_db else Path(db_path).resolve()
        self.db_path_str = ':memory:' if self.is_memory_db else str(self.db_path)

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise DatabaseError(f"Failed to create database directory {self.db_path.parent}: {e}") from e

        logger.info(f"Initializing {self._DB_LABEL} for path: {self.db_path_str}")
        self._local = threading.local()

        try:
            self._initialize_schema()
        except (DatabaseError, sqlite3.Error) as e:
            logger.critical(f"FATAL: {self._DB_LABEL} initialization failed for {self.db_path_str}: {e}", exc_info=True)
            self.close_connection()
            raise DatabaseError(f"{self._DB_LABEL} initialization failed: {e}") from e

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            try:
                conn.execute("SELECT 1")
                return conn
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Thread-local connection to {self.db_path_str} was closed. Reopening.")
                self._local.conn = None

        try:
            conn = sqlite3.connect(
                self.db_path_str,
                check_same_thread=False,  # Required for threading.local
                timeout=10  # seconds
            )
            conn.row_factory = sqlite3.Row
            if not self.is_memory_db:
                conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA foreign_keys = ON;")
            self._local.conn = conn
            logger.debug(f"Opened SQLite connection to {self.db_path_str} [Thread: {threading.current_thread().name}]")
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to database at {self.db_path_str}: {e}", exc_info=True)
            self._local.conn = None
            raise DatabaseError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return conn

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def close_connection(self):
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        self._local.conn = None
        try:
            conn.close()
            logger.debug(f"Closed connection for thread {threading.current_thread().name}.")
        except sqlite3.Error as e:
            logger.warning(f"Error closing connection: {e}")

    # --- Query Execution ---
    def execute_query(self, query: str, params: tuple = None, *, commit: bool = False) -> sqlite3.Cursor:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            logger.debug(f"Executing Query: {query[:200]}... Params: {str(params)[:100]}...")
            cursor.execute(query, params or ())
            if commit:
                conn.commit()
            return cursor
        except sqlite3.IntegrityError as e:
            logger.error(f"Integrity error: {query[:200]}... Error: {e}")
            raise DatabaseError(f"Integrity constraint violation: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query failed: {query[:200]}... Error: {e}", exc_info=True)
            raise DatabaseError(f"Query execution failed: {e}") from e

    # --- Transaction Context ---
    @contextmanager
    def transaction(self, immediate: bool = False):
        """
        Yields the thread's connection inside a transaction. Nested use joins the outer
        transaction. `immediate=True` takes the write lock up front, which keeps a
        read-then-write sequence atomic against other writers.
        """
        conn = self.get_connection()
        in_outer = conn.in_transaction
        try:
            if not in_outer:
                conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            if not in_outer:
                conn.commit()
        except Exception as e:
            if not in_outer:
                logger.debug(f"Transaction failed, rolling back: {type(e).__name__} - {e}")
                try:
                    conn.rollback()
                except sqlite3.Error as rb_err:
                    logger.error(f"Rollback FAILED: {rb_err}", exc_info=True)
            raise

    # --- Schema Initialization and Migration ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            cursor = conn.execute(f"SELECT version FROM {self._SCHEMA_VERSION_TABLE} LIMIT 1")
            result = cursor.fetchone()
            return result['version'] if result else 0
        except sqlite3.Error as e:
            if "no such table" in str(e).lower():
                return 0
            raise DatabaseError(f"Could not determine schema version: {e}") from e

    def _apply_schema_v1(self, conn: sqlite3.Connection):
        logger.info(f"Applying initial {self._DB_LABEL} schema (Version 1) to DB: {self.db_path_str}...")
        script = f"""
            BEGIN;
            CREATE TABLE IF NOT EXISTS {self._SCHEMA_VERSION_TABLE} (version INTEGER PRIMARY KEY NOT NULL);
            INSERT OR IGNORE INTO {self._SCHEMA_VERSION_TABLE} (version) VALUES (0);
            {self._SCHEMA_SQL_V1}
            UPDATE {self._SCHEMA_VERSION_TABLE} SET version = 1 WHERE version = 0;
            COMMIT;
        """
        try:
            conn.executescript(script)
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.rollback()
            raise DatabaseError(f"DB schema V1 setup failed: {e}") from e

        existing = {row['name'] for row in
                    conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()}
        missing = set(self._REQUIRED_TABLES) - existing
        if missing:
            raise SchemaError(f"Validation Error: {self._DB_LABEL} missing tables: {sorted(missing)}")

    def _initialize_schema(self):
        conn = self.get_connection()
        current_db_version = self._get_db_version(conn)
        target_version = self._CURRENT_SCHEMA_VERSION
        logger.debug(f"Checking {self._DB_LABEL} schema. Current: {current_db_version}, Code supports: {target_version}")

        if current_db_version == target_version:
            return
        if current_db_version > target_version:
            raise SchemaError(
                f"DB schema version ({current_db_version}) is newer than supported ({target_version}).")
        if current_db_version == 0:
            self._apply_schema_v1(conn)
            final_db_version = self._get_db_version(conn)
            if final_db_version != target_version:
                raise SchemaError(
                    f"Schema migration applied, but final DB version is {final_db_version}, expected {target_version}.")
            logger.info(f"{self._DB_LABEL} schema initialized to version {target_version}.")
        else:
            raise SchemaError(
                f"Migration needed from {current_db_version} to {target_version}, but no path defined.")

#
# End of SQLite_Base.py
#######################################################################################################################
