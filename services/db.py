"""
Hierarchical document store on SQLite.

Documents live at slash-separated paths with an even number of segments
(collection/doc/collection/doc...). Each document is a JSON object. Writes
can be grouped in a WriteBatch that commits atomically in one transaction and
refuses to grow past the configured operation ceiling.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional, Tuple

import config

logger = logging.getLogger(__name__)

# ====================================================================
# SQLITE HARDENING WITH WAL MODE + TIMEOUT + WRITE LOCK
# - WAL mode allows concurrent reads while serializing writes
# - 10s timeout prevents infinite hangs on database locks
# - _db_write_lock serializes every commit to prevent SQLITE_BUSY
# ====================================================================

_db_write_lock = Lock()
_db_timeout = 10  # seconds

DOCUMENTS_TABLE = "documents"


class StoreError(RuntimeError):
    """Raised for invalid paths, oversized batches and updates of missing documents."""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(data: Dict[str, Any]) -> str:
    return json.dumps(data, default=_json_default, sort_keys=True)


def split_path(path: str) -> Tuple[str, str]:
    """Return (collection_path, doc_id) for a document path."""
    segments = [seg for seg in (path or "").strip("/").split("/")]
    if not segments or any(not seg for seg in segments) or len(segments) % 2 != 0:
        raise StoreError(f"Invalid document path: {path!r}")
    return "/".join(segments[:-1]), segments[-1]


def _validate_collection(path: str) -> str:
    segments = [seg for seg in (path or "").strip("/").split("/")]
    if not segments or any(not seg for seg in segments) or len(segments) % 2 != 1:
        raise StoreError(f"Invalid collection path: {path!r}")
    return "/".join(segments)


def _validate_prefix(path: str) -> str:
    """Any non-empty path, document or collection."""
    segments = [seg for seg in (path or "").strip("/").split("/")]
    if not segments or any(not seg for seg in segments):
        raise StoreError(f"Invalid path prefix: {path!r}")
    return "/".join(segments)


class WriteBatch:
    """Collects set/update/delete operations and commits them atomically."""

    def __init__(self, store: "DocumentStore", max_operations: int):
        self._store = store
        self._max_operations = max_operations
        self._ops: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._ops)

    def _add(self, op: str, path: str, data: Optional[Dict[str, Any]]) -> "WriteBatch":
        if self._committed:
            raise StoreError("Batch already committed")
        if len(self._ops) >= self._max_operations:
            raise StoreError(f"Batch exceeds {self._max_operations} operations")
        split_path(path)
        self._ops.append((op, path, data))
        return self

    def set(self, path: str, data: Dict[str, Any]) -> "WriteBatch":
        return self._add("set", path, dict(data))

    def update(self, path: str, data: Dict[str, Any]) -> "WriteBatch":
        return self._add("update", path, dict(data))

    def delete(self, path: str) -> "WriteBatch":
        return self._add("delete", path, None)

    def commit(self) -> int:
        if self._committed:
            raise StoreError("Batch already committed")
        self._store._apply(self._ops)
        self._committed = True
        return len(self._ops)


class DocumentStore:
    def __init__(
        self,
        db_path: Path = config.INVENTORY_DB_PATH,
        *,
        max_batch_operations: int = config.STORE_MAX_BATCH_OPERATIONS,
    ):
        if max_batch_operations < 1:
            raise ValueError("max_batch_operations must be >= 1")
        self.db_path = Path(db_path)
        self.max_batch_operations = max_batch_operations
        self.ensure_schema()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for safe SQLite connection.
        - Enforces timeout to prevent infinite waits
        - Enables WAL mode for better concurrency
        - Ensures cleanup even on exception
        """
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=_db_timeout)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        except sqlite3.DatabaseError as e:
            logger.error(f"[DB] Database error on {self.db_path}: {e}", exc_info=True)
            raise
        finally:
            if conn:
                conn.close()

    def ensure_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with _db_write_lock, self.connection() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {DOCUMENTS_TABLE} (
                    path TEXT PRIMARY KEY,
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{DOCUMENTS_TABLE}_collection ON {DOCUMENTS_TABLE}(collection)"
            )
            conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{DOCUMENTS_TABLE}_doc_id ON {DOCUMENTS_TABLE}(doc_id)")
            conn.commit()

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------
    def get(self, path: str) -> Optional[Dict[str, Any]]:
        split_path(path)
        with self.connection() as conn:
            row = conn.execute(f"SELECT data FROM {DOCUMENTS_TABLE} WHERE path = ?", (path.strip("/"),)).fetchone()
        return json.loads(row["data"]) if row else None

    def exists(self, path: str) -> bool:
        return self.get(path) is not None

    def list_collection(self, collection: str, limit: Optional[int] = None) -> List[Tuple[str, Dict[str, Any]]]:
        """Return (doc_id, data) pairs of the direct children of a collection, ordered by id."""
        collection = _validate_collection(collection)
        sql = f"SELECT doc_id, data FROM {DOCUMENTS_TABLE} WHERE collection = ? ORDER BY doc_id"
        params: Tuple[Any, ...] = (collection,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (collection, int(limit))
        with self.connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [(row["doc_id"], json.loads(row["data"])) for row in rows]

    def find_by_doc_id(self, prefix: str, doc_id: str) -> List[Tuple[str, Dict[str, Any]]]:
        """Return (path, data) for every document named doc_id anywhere below prefix."""
        prefix = _validate_prefix(prefix)
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT path, data FROM {DOCUMENTS_TABLE}
                WHERE doc_id = ? AND collection LIKE ? ESCAPE '\\'
                """,
                (doc_id, f"{escaped}/%"),
            ).fetchall()
        return [(row["path"], json.loads(row["data"])) for row in rows]

    def has_any(self, prefix: str) -> bool:
        prefix = _validate_prefix(prefix)
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self.connection() as conn:
            row = conn.execute(
                f"SELECT 1 FROM {DOCUMENTS_TABLE} WHERE collection = ? OR collection LIKE ? ESCAPE '\\' LIMIT 1",
                (prefix, f"{escaped}/%"),
            ).fetchone()
        return row is not None

    # ------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------
    def batch(self) -> WriteBatch:
        return WriteBatch(self, self.max_batch_operations)

    def set(self, path: str, data: Dict[str, Any]) -> None:
        self.batch().set(path, data).commit()

    def update(self, path: str, data: Dict[str, Any]) -> None:
        self.batch().update(path, data).commit()

    def delete(self, path: str) -> None:
        self.batch().delete(path).commit()

    def _apply(self, ops: List[Tuple[str, str, Optional[Dict[str, Any]]]]) -> None:
        if not ops:
            return
        now_iso = _utc_now_iso()
        with _db_write_lock, self.connection() as conn:
            try:
                for op, path, data in ops:
                    collection, doc_id = split_path(path)
                    full_path = f"{collection}/{doc_id}"
                    if op == "set":
                        conn.execute(
                            f"""
                            INSERT INTO {DOCUMENTS_TABLE} (path, collection, doc_id, data, updated_at)
                            VALUES (?, ?, ?, ?, ?)
                            ON CONFLICT(path) DO UPDATE SET
                                data=excluded.data,
                                updated_at=excluded.updated_at
                            """,
                            (full_path, collection, doc_id, _dumps(data or {}), now_iso),
                        )
                    elif op == "update":
                        row = conn.execute(
                            f"SELECT data FROM {DOCUMENTS_TABLE} WHERE path = ?", (full_path,)
                        ).fetchone()
                        if row is None:
                            raise StoreError(f"No document to update: {full_path}")
                        merged = json.loads(row["data"])
                        merged.update(data or {})
                        conn.execute(
                            f"UPDATE {DOCUMENTS_TABLE} SET data = ?, updated_at = ? WHERE path = ?",
                            (_dumps(merged), now_iso, full_path),
                        )
                    elif op == "delete":
                        conn.execute(f"DELETE FROM {DOCUMENTS_TABLE} WHERE path = ?", (full_path,))
                    else:
                        raise StoreError(f"Unknown batch operation: {op}")
                conn.commit()
            except Exception as exc:
                conn.rollback()
                logger.error(f"[DB] Batch of {len(ops)} operations rolled back: {exc}", exc_info=True)
                raise
