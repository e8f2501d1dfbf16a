"""
Inventory Persistence Layer
===========================

Writes processed inventory snapshots into the document store and reads the
current view and snapshot history back for the dashboard.

Layout:
    inventory/current                         pointer doc
    inventory/snapshots                       pointer doc
    inventory/metadata                        aggregate counts
    inventory/current/items/<item_id>         current view (active + archived)
    inventory/snapshots/<ts>/summary          immutable snapshot summary
    inventory/snapshots/<ts>/items            snapshot item count
    inventory/snapshots/<ts>/items/data/<id>  immutable snapshot items
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import config
from services.async_utils import chunked
from services.db import DocumentStore
from services.inventory_processor import (
    extract_unique_categories,
    generate_inventory_summary,
    normalize_category,
    parse_number,
)
from services.inventory_reconciler import (
    CURRENT_ITEMS_COLLECTION,
    ITEM_ACTIVE,
    InventoryReconciler,
)

logger = logging.getLogger(__name__)

INVENTORY_ROOT = "inventory"
CURRENT_DOC = f"{INVENTORY_ROOT}/current"
SNAPSHOTS_DOC = f"{INVENTORY_ROOT}/snapshots"
METADATA_DOC = f"{INVENTORY_ROOT}/metadata"
CONNECTION_TEST_DOC = f"{INVENTORY_ROOT}/test/connection/test"

ISSUE_FLAGS = ("error", "warning")
LOW_STOCK_THRESHOLD = 10


class InventoryWriteError(RuntimeError):
    """Raised when a snapshot write is rejected or aborted."""


def _as_utc(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        candidate = value.strip()
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        dt = datetime.fromisoformat(candidate)
    else:
        raise InventoryWriteError(f"Invalid timestamp: {value!r}")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp_for_id(timestamp: Any) -> str:
    """2025-06-20T13:05:09.123+00:00 -> 2025-06-20T13-05-09 (UTC, seconds precision)."""
    dt = _as_utc(timestamp)
    return dt.strftime("%Y-%m-%dT%H-%M-%S")


def _is_valid_item_id(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip()) and "/" not in value


def empty_current_data(last_updated: Optional[str] = None) -> Dict[str, Any]:
    return {
        "items": [],
        "summary": {
            "total_items": 0,
            "total_value": 0.0,
            "categories": [],
            "low_stock_items": 0,
            "out_of_stock_items": 0,
            "negative_stock_items": 0,
            "items_with_issues": 0,
        },
        "last_updated": last_updated,
    }


class InventoryWriter:
    def __init__(
        self,
        store: DocumentStore,
        reconciler: Optional[InventoryReconciler] = None,
        *,
        chunk_size: int = config.INVENTORY_WRITE_CHUNK_SIZE,
        chunk_delay_seconds: float = config.INVENTORY_CHUNK_DELAY_MS / 1000.0,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        # Every item is written twice per chunk batch.
        if chunk_size * 2 > store.max_batch_operations:
            raise ValueError(
                f"chunk_size {chunk_size} needs {chunk_size * 2} operations per batch; "
                f"store allows {store.max_batch_operations}"
            )
        self.store = store
        if reconciler is None:
            # keep the margin proportional on stores with a small ceiling
            margin = min(config.STORE_BATCH_SAFETY_MARGIN, store.max_batch_operations // 10)
            reconciler = InventoryReconciler(store, max_batch_size=store.max_batch_operations, safety_margin=margin)
        self.reconciler = reconciler
        self.chunk_size = chunk_size
        self.chunk_delay_seconds = max(0.0, chunk_delay_seconds)

    # ------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------
    def write_snapshot(self, processed_data: Dict[str, Any]) -> Dict[str, Any]:
        started = time.perf_counter()
        items = processed_data.get("items")
        summary = dict(processed_data.get("summary") or {})

        try:
            if not isinstance(items, list):
                raise InventoryWriteError(f"Expected items list, got {type(items).__name__}")
            if not items:
                raise InventoryWriteError("No items to process")

            timestamp = _as_utc(summary.get("timestamp") or datetime.now(timezone.utc))
            snapshot_id = format_timestamp_for_id(timestamp)
            if not snapshot_id:
                raise InventoryWriteError(f"Invalid timestamp ID: {snapshot_id!r}")
            snapshot_root = f"{SNAPSHOTS_DOC}/{snapshot_id}"
            if self.store.exists(f"{snapshot_root}/summary"):
                raise InventoryWriteError(f"Snapshot {snapshot_id} already exists")

            timestamp_iso = timestamp.isoformat()
            categories = extract_unique_categories(items)
            logger.info(
                "[InventoryWriter] Writing snapshot %s: %d items, %d categories",
                snapshot_id,
                len(items),
                len(categories),
            )

            archived_ids = self.reconciler.reconcile(items, timestamp)

            previous = self.store.get(SNAPSHOTS_DOC) or {}
            pointers = self.store.batch()
            pointers.set(CURRENT_DOC, {"last_updated": timestamp_iso, "item_count": len(items), "status": "active"})
            pointers.set(
                SNAPSHOTS_DOC,
                {
                    "last_snapshot": timestamp_iso,
                    "last_snapshot_id": snapshot_id,
                    "total_snapshots": int(previous.get("total_snapshots") or 0) + 1,
                    "status": "active",
                },
            )
            pointers.set(
                METADATA_DOC,
                {
                    "last_updated": timestamp_iso,
                    "last_snapshot": timestamp_iso,
                    "total_item_count": len(items),
                    "archived_item_count": len(archived_ids),
                    "categories": categories,
                    "status_summary": summary.get("status_counts") or {},
                    "status": "active",
                },
            )
            pointers.commit()

            breakdown = generate_inventory_summary(items, timestamp)
            snapshot_summary = {
                **summary,
                "timestamp": timestamp_iso,
                "snapshot_id": snapshot_id,
                "total_items": len(items),
                "total_value": breakdown["total_value"],
                "status_counts": summary.get("status_counts") or breakdown["status_counts"],
                "category_breakdown": breakdown["category_breakdown"],
                "value_by_category": breakdown["value_by_category"],
                "categories": categories,
            }
            header = self.store.batch()
            header.set(f"{snapshot_root}/summary", snapshot_summary)
            header.set(
                f"{snapshot_root}/items",
                {"item_count": len(items), "timestamp": timestamp_iso, "status": "active"},
            )
            header.commit()

            chunks = chunked(items, self.chunk_size)
            logger.info(
                "[InventoryWriter] Processing %d items in %d batches of %d",
                len(items),
                len(chunks),
                self.chunk_size,
            )
            for index, chunk in enumerate(chunks, start=1):
                self._write_chunk(chunk, index, snapshot_root, timestamp_iso)
                logger.info("[InventoryWriter] Processed batch %d/%d (%d items)", index, len(chunks), len(chunk))
                if index < len(chunks) and self.chunk_delay_seconds:
                    time.sleep(self.chunk_delay_seconds)

            duration_ms = (time.perf_counter() - started) * 1000.0
            logger.info(
                "[InventoryWriter] Wrote snapshot %s: %d items in %d batches (%.0fms)",
                snapshot_id,
                len(items),
                len(chunks),
                duration_ms,
            )
            return {
                "success": True,
                "timestamp": timestamp_iso,
                "item_count": len(items),
                "snapshot_id": snapshot_id,
                "batch_count": len(chunks),
                "archived_count": len(archived_ids),
            }
        except Exception as exc:
            logger.error("[InventoryWriter] Failed to write inventory snapshot: %s", exc, exc_info=True)
            raise

    def _write_chunk(self, chunk: List[Dict[str, Any]], index: int, snapshot_root: str, timestamp_iso: str) -> None:
        invalid = [item for item in chunk if not _is_valid_item_id(item.get("item_id"))]
        if invalid:
            logger.error(
                "[InventoryWriter] Found %d items with invalid IDs in batch %d: %s",
                len(invalid),
                index,
                [{"item_id": item.get("item_id"), "sku": item.get("sku"), "name": item.get("name")} for item in invalid],
            )
            raise InventoryWriteError(f"Invalid item IDs found in batch {index}")

        batch = self.store.batch()
        for item in chunk:
            item_id = item.get("item_id")
            if not _is_valid_item_id(item_id):
                raise InventoryWriteError(f"Invalid item_id for item: {item!r}")
            document = {
                **item,
                "qty_on_hand": parse_number(item.get("qty_on_hand")),
                "qty_available": parse_number(item.get("qty_available")),
                "average_cost": parse_number(item.get("average_cost")),
                "cost_basis": parse_number(item.get("cost_basis")),
                "category": normalize_category(item.get("category")),
                "item_status": ITEM_ACTIVE,
                "last_updated": timestamp_iso,
            }
            document.pop("archived_at", None)
            batch.set(f"{snapshot_root}/items/data/{item_id}", document)
            batch.set(f"{CURRENT_ITEMS_COLLECTION}/{item_id}", document)
        batch.commit()

    # ------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------
    def read_current(self) -> Dict[str, Any]:
        """Active items from the current view with on-read dashboard totals."""
        if not self.store.has_any(CURRENT_ITEMS_COLLECTION):
            return empty_current_data()
        metadata = self.store.get(METADATA_DOC)
        if metadata is None:
            return empty_current_data()
        last_updated = metadata.get("last_updated")

        items: List[Dict[str, Any]] = []
        categories = set()
        total_value = 0.0
        low_stock = out_of_stock = negative_stock = with_issues = 0

        for doc_id, data in self.store.list_collection(CURRENT_ITEMS_COLLECTION):
            if data.get("item_status") != ITEM_ACTIVE:
                continue
            category = normalize_category(data.get("category"))
            categories.add(category)
            on_hand = parse_number(data.get("qty_on_hand"))
            available = parse_number(data.get("qty_available"))
            total_value += parse_number(data.get("cost_basis"))

            if on_hand < 0:
                negative_stock += 1
            if available <= 0:
                out_of_stock += 1
            elif available <= LOW_STOCK_THRESHOLD:
                low_stock += 1
            if data.get("status_flag") in ISSUE_FLAGS:
                with_issues += 1

            items.append({**data, "id": doc_id, "category": category})

        if not items:
            return empty_current_data(last_updated)

        return {
            "items": items,
            "summary": {
                "total_items": len(items),
                "total_value": total_value,
                "categories": sorted(categories),
                "low_stock_items": low_stock,
                "out_of_stock_items": out_of_stock,
                "negative_stock_items": negative_stock,
                "items_with_issues": with_issues,
            },
            "last_updated": last_updated,
        }

    def read_history(self, start: datetime, end: datetime, limit: int = 30) -> List[Dict[str, Any]]:
        """Snapshot summaries with start <= timestamp <= end, newest first."""
        start_utc, end_utc = _as_utc(start), _as_utc(end)
        logger.info("[InventoryWriter] Fetching inventory history from %s to %s", start_utc, end_utc)
        try:
            history = []
            for path, data in self.store.find_by_doc_id(SNAPSHOTS_DOC, "summary"):
                # inventory/snapshots/<ts>/summary only, not item docs that happen to be named "summary"
                if path.count("/") != 3:
                    continue
                try:
                    ts = _as_utc(data.get("timestamp"))
                except (InventoryWriteError, ValueError):
                    logger.warning("[InventoryWriter] Skipping snapshot summary with bad timestamp: %s", path)
                    continue
                if start_utc <= ts <= end_utc:
                    history.append((ts, {**data, "id": path.split("/")[2]}))
            history.sort(key=lambda pair: pair[0], reverse=True)
            result = [entry for _, entry in history[: max(0, int(limit))]]
            logger.info("[InventoryWriter] Fetched %d history entries", len(result))
            return result
        except Exception as exc:
            logger.error("[InventoryWriter] Failed to fetch inventory history: %s", exc, exc_info=True)
            raise

    def get_items_by_status(self, status: str) -> List[Dict[str, Any]]:
        """Active current items with the given status."""
        items = [
            {**data, "id": doc_id}
            for doc_id, data in self.store.list_collection(CURRENT_ITEMS_COLLECTION)
            if data.get("item_status") == ITEM_ACTIVE and data.get("status") == status
        ]
        logger.info("[InventoryWriter] Found %d active items with status %s", len(items), status)
        return items

    def test_connection(self) -> Dict[str, Any]:
        logger.info("[InventoryWriter] Testing document store connection")
        try:
            self.store.set(CONNECTION_TEST_DOC, {"timestamp": datetime.now(timezone.utc), "test": True})
            can_read_inventory = self.store.exists(CURRENT_DOC)
            can_read_items = bool(self.store.list_collection(CURRENT_ITEMS_COLLECTION, limit=1))
            self.store.delete(CONNECTION_TEST_DOC)
        except Exception as exc:
            logger.error("[InventoryWriter] Store connection test failed: %s", exc, exc_info=True)
            return {"success": False, "message": "Store connection test failed", "error": str(exc)}
        return {
            "success": True,
            "message": "Store connection test successful",
            "details": {
                "can_write": True,
                "can_read_inventory": can_read_inventory,
                "can_read_items": can_read_items,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }
