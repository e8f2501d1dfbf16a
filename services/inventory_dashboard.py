import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from services.inventory_processor import sort_items_for_display
from services.inventory_store import InventoryWriter

LOGGER = logging.getLogger(__name__)

HISTORY_WINDOW_DAYS = 7
HISTORY_LIMIT = 7


def get_dashboard_data(writer: InventoryWriter, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Current active inventory (exceptions first) plus the trailing 7-day trend.

    A failure reading history degrades to an empty trend; a failure reading
    the current view propagates.
    """
    now = now or datetime.now(timezone.utc)
    current = writer.read_current()
    current["items"] = sort_items_for_display(current.get("items") or [])

    try:
        recent_history = writer.read_history(now - timedelta(days=HISTORY_WINDOW_DAYS), now, HISTORY_LIMIT)
    except Exception as exc:
        LOGGER.error("[Dashboard] Failed to fetch recent history; serving current data only: %s", exc, exc_info=True)
        recent_history = []

    return {
        "current": current,
        "recent_history": recent_history,
        "last_updated": now.isoformat(),
    }
