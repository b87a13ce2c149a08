"""
Database module for the UV Feed application.

A small document store on top of SQLite:
- Named collections of JSON documents keyed by id
- Whole-document overwrite semantics (last writer wins)
- Thread-safe access through a single guarded connection
"""

import json
import sqlite3
import threading
import logging
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "uvfeed.db"
DEFAULT_BUSY_TIMEOUT = 5.0  # seconds


class StoreError(Exception):
    """Raised when the document store cannot be read or written."""
    pass


class Database:
    """
    SQLite-backed document store with thread-safe operations.

    Features:
    - WAL mode for concurrent reads during writes
    - Automatic schema initialization
    - Configurable busy timeout so a locked file cannot hang callers forever
    """

    def __init__(self, db_path: str = None, timeout: float = DEFAULT_BUSY_TIMEOUT) -> None:
        self._db_path = db_path or str(DEFAULT_DB_PATH)
        self._timeout = timeout
        self._lock = threading.Lock()
        self._conn = None
        try:
            self._connect()
            self._init_schema()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open document store at {self._db_path}: {e}") from e
        logger.info(f"Database initialized at {self._db_path}")

    def _connect(self) -> None:
        """Establish database connection with WAL mode."""
        self._conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
            isolation_level=None,
            timeout=self._timeout
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                )
            """)

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("Database connection is closed")
        return self._conn

    # =========================================================================
    # Document Operations
    # =========================================================================

    def set_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Create or fully overwrite a document."""
        payload = json.dumps(data, sort_keys=True)
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            try:
                self._require_connection().execute("""
                    INSERT INTO documents (collection, doc_id, data, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(collection, doc_id)
                    DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
                """, (collection, doc_id, payload, now))
            except sqlite3.Error as e:
                logger.error(f"Failed to write {collection}/{doc_id}: {e}")
                raise StoreError(f"Failed to write {collection}/{doc_id}: {e}") from e

    def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Get a single document, or None if it does not exist."""
        with self._lock:
            try:
                cursor = self._require_connection().execute("""
                    SELECT data FROM documents
                    WHERE collection = ? AND doc_id = ?
                """, (collection, doc_id))
                row = cursor.fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to read {collection}/{doc_id}: {e}") from e
        return self._decode(row["data"]) if row else None

    def list_documents(self, collection: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        List documents in a collection.

        Each entry carries the document id under ``"id"`` alongside its data.
        Order is by document id; callers must not rely on feed order.
        """
        query = "SELECT doc_id, data FROM documents WHERE collection = ? ORDER BY doc_id ASC"
        params: tuple = (collection,)
        if limit is not None:
            query += " LIMIT ?"
            params = (collection, max(limit, 0))

        with self._lock:
            try:
                rows = self._require_connection().execute(query, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to list {collection}: {e}") from e

        documents = []
        for row in rows:
            data = self._decode(row["data"])
            if data is None:
                logger.warning(f"Skipping undecodable document {collection}/{row['doc_id']}")
                continue
            documents.append({"id": row["doc_id"], **data})
        return documents

    def count_documents(self, collection: str) -> int:
        """Count documents in a collection."""
        with self._lock:
            try:
                cursor = self._require_connection().execute(
                    "SELECT COUNT(*) FROM documents WHERE collection = ?",
                    (collection,)
                )
                return cursor.fetchone()[0]
            except sqlite3.Error as e:
                raise StoreError(f"Failed to count {collection}: {e}") from e

    @staticmethod
    def _decode(raw: str) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    @property
    def path(self) -> str:
        return self._db_path

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                logger.info("Database connection closed")
