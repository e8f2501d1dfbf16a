"""
Inventory snapshot run
======================

fetch (SOS API) -> process (business rules) -> write (document store)

Shared by the manual HTTP trigger and the daily scheduler thread.
"""

import asyncio
import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import config
from services.inventory_processor import process_items
from services.inventory_store import InventoryWriter
from services.sos_api import SosApiClient

LOGGER = logging.getLogger(__name__)


class EmptyFetchError(RuntimeError):
    """Raised when the SOS API returns no inventory items at all."""


async def execute_inventory_snapshot(client: SosApiClient, writer: InventoryWriter) -> Dict[str, Any]:
    try:
        LOGGER.info("[InventorySnapshot] Starting SOS API data fetch")
        raw_items = await client.fetch_all_items()
        if not raw_items:
            raise EmptyFetchError("No inventory items retrieved from SOS API")

        LOGGER.info("[InventorySnapshot] Starting business logic processing")
        processed = process_items(raw_items)

        LOGGER.info("[InventorySnapshot] Starting document store write")
        result = await asyncio.to_thread(writer.write_snapshot, processed)

        LOGGER.info("[InventorySnapshot] Snapshot completed: %d items processed", len(processed["items"]))
        return result
    except Exception as exc:
        LOGGER.error("[InventorySnapshot] Inventory snapshot execution failed: %s", exc, exc_info=True)
        raise


async def run_inventory_snapshot(client: SosApiClient, writer: InventoryWriter) -> Dict[str, Any]:
    """Execute a snapshot and attach its wall-clock duration in milliseconds."""
    started = time.perf_counter()
    result = await execute_inventory_snapshot(client, writer)
    duration_ms = int((time.perf_counter() - started) * 1000)
    LOGGER.info("[InventorySnapshot] Completed inventory snapshot in %dms", duration_ms)
    return {**result, "duration": duration_ms}


# ------------------------------------------------------------
# Daily scheduler
# ------------------------------------------------------------
_scheduler_thread: Optional[threading.Thread] = None
_scheduler_stop = threading.Event()


def next_run_at(now: datetime, hour: int, tz_name: str) -> datetime:
    """Next occurrence of hour:00 in tz_name strictly after now (tz-aware result)."""
    tz = ZoneInfo(tz_name)
    local_now = now.astimezone(tz)
    candidate = local_now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= local_now:
        candidate = (candidate + timedelta(days=1)).replace(hour=hour, minute=0, second=0, microsecond=0)
    return candidate


def _scheduler_loop(client: SosApiClient, writer: InventoryWriter, hour: int, tz_name: str) -> None:
    LOGGER.info("[InventoryScheduler] Daily snapshot scheduler started (%02d:00 %s)", hour, tz_name)
    while not _scheduler_stop.is_set():
        now = datetime.now(ZoneInfo(tz_name))
        run_at = next_run_at(now, hour, tz_name)
        wait_seconds = max(0.0, (run_at - now).total_seconds())
        LOGGER.info("[InventoryScheduler] Next snapshot at %s (in %.0fs)", run_at.isoformat(), wait_seconds)
        if _scheduler_stop.wait(wait_seconds):
            break
        try:
            result = asyncio.run(run_inventory_snapshot(client, writer))
            LOGGER.info(
                "[InventoryScheduler] Scheduled inventory snapshot completed: %s items processed",
                result.get("item_count"),
            )
        except Exception as exc:  # pragma: no cover - scheduler safety
            LOGGER.error("[InventoryScheduler] Scheduled inventory snapshot failed: %s", exc, exc_info=True)
    LOGGER.info("[InventoryScheduler] Daily snapshot scheduler stopped")


def start_daily_snapshot_scheduler(
    client: SosApiClient,
    writer: InventoryWriter,
    *,
    hour: int = config.SNAPSHOT_SCHEDULE_HOUR,
    tz_name: str = config.SNAPSHOT_SCHEDULE_TZ,
) -> None:
    """Start the background thread that runs one snapshot per day."""
    global _scheduler_thread

    if _scheduler_thread is not None and _scheduler_thread.is_alive():
        LOGGER.debug("[InventoryScheduler] Scheduler already running; skipping start")
        return
    if not 0 <= hour <= 23:
        raise ValueError("hour must be between 0 and 23")

    _scheduler_stop.clear()
    thread = threading.Thread(
        target=_scheduler_loop,
        name="InventorySnapshotScheduler",
        args=(client, writer, hour, tz_name),
        daemon=True,
    )
    thread.start()
    _scheduler_thread = thread
    LOGGER.info("[InventoryScheduler] Scheduler thread started")


def stop_daily_snapshot_scheduler(timeout: float = 2.0) -> None:
    """Signal the scheduler to stop and wait briefly for shutdown."""
    global _scheduler_thread
    _scheduler_stop.set()
    thread = _scheduler_thread
    if thread and thread.is_alive():
        thread.join(timeout=timeout)
    _scheduler_thread = None
