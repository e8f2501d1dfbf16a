import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Set

import config
from services.async_utils import chunked
from services.db import DocumentStore

LOGGER = logging.getLogger(__name__)

CURRENT_ITEMS_COLLECTION = "inventory/current/items"

ITEM_ACTIVE = "active"
ITEM_ARCHIVED = "archived"


class InventoryReconciler:
    """
    Diffs a new item set against the current view.

    Current items missing from the new set are updated to archived (never
    deleted). Items already archived are left alone, so re-running with the
    same set issues no writes.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        max_batch_size: int = config.STORE_MAX_BATCH_OPERATIONS,
        safety_margin: int = config.STORE_BATCH_SAFETY_MARGIN,
    ):
        if safety_margin < 0 or max_batch_size - safety_margin < 1:
            raise ValueError("max_batch_size - safety_margin must be >= 1")
        self.store = store
        self.batch_limit = max_batch_size - safety_margin

    def find_items_to_archive(self, new_items: Iterable[Dict[str, Any]]) -> List[str]:
        new_ids = {item.get("item_id") for item in new_items}
        existing = self.store.list_collection(CURRENT_ITEMS_COLLECTION)
        to_archive = [
            doc_id
            for doc_id, data in existing
            if doc_id not in new_ids and data.get("item_status") != ITEM_ARCHIVED
        ]
        LOGGER.info(
            "[Reconciler] %d existing items, %d to archive, %d new/updated items",
            len(existing),
            len(to_archive),
            len(new_ids),
        )
        return to_archive

    def reconcile(self, new_items: List[Dict[str, Any]], as_of: datetime) -> Set[str]:
        """Archive current items absent from new_items. Returns the archived ids."""
        if as_of.tzinfo is None:
            as_of = as_of.replace(tzinfo=timezone.utc)
        try:
            to_archive = self.find_items_to_archive(new_items)
            if not to_archive:
                LOGGER.info("[Reconciler] No items need archiving")
                return set()

            archived_at = as_of.isoformat()
            batches = 0
            for group in chunked(to_archive, self.batch_limit):
                batch = self.store.batch()
                for doc_id in group:
                    batch.update(
                        f"{CURRENT_ITEMS_COLLECTION}/{doc_id}",
                        {"item_status": ITEM_ARCHIVED, "archived_at": archived_at},
                    )
                batch.commit()
                batches += 1
                LOGGER.info("[Reconciler] Archived batch %d (%d items)", batches, len(batch))

            LOGGER.info("[Reconciler] Archived %d items no longer in snapshot", len(to_archive))
            return set(to_archive)
        except Exception as exc:
            LOGGER.error("[Reconciler] Failed to archive items: %s", exc, exc_info=True)
            raise
