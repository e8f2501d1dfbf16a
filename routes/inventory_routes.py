"""Inventory snapshot, dashboard and connectivity routes."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from auth.access_policy import require_read_access, require_write_access
from services.inventory_dashboard import get_dashboard_data
from services.inventory_processor import INVENTORY_STATUSES
from services.inventory_snapshot import run_inventory_snapshot
from services.inventory_store import InventoryWriter
from services.sos_api import SosApiClient

router = APIRouter(prefix="/api/inventory")
logger = logging.getLogger(__name__)


def get_writer(request: Request) -> InventoryWriter:
    return request.app.state.inventory_writer


def get_sos_client(request: Request) -> SosApiClient:
    return request.app.state.sos_client


def _failure(message: str, exc: Exception, status_code: int = 500) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "error": str(exc)},
    )


@router.post("/snapshot/run", dependencies=[Depends(require_write_access)])
async def run_snapshot(
    client: SosApiClient = Depends(get_sos_client),
    writer: InventoryWriter = Depends(get_writer),
):
    """Run a full fetch -> process -> write snapshot synchronously."""
    logger.info("[InventoryRoutes] Manual inventory snapshot execution")
    try:
        result = await run_inventory_snapshot(client, writer)
    except Exception as exc:
        logger.error("[InventoryRoutes] Manual inventory snapshot failed: %s", exc)
        return _failure("Inventory snapshot failed", exc)
    return {
        "success": True,
        "message": "Inventory snapshot completed successfully",
        "data": {
            "timestamp": result.get("timestamp"),
            "itemCount": result.get("item_count"),
            "snapshotId": result.get("snapshot_id"),
            "duration": result.get("duration"),
        },
    }


@router.get("/dashboard", dependencies=[Depends(require_read_access)])
async def dashboard(writer: InventoryWriter = Depends(get_writer)):
    try:
        data = await asyncio.to_thread(get_dashboard_data, writer)
    except Exception as exc:
        logger.error("[InventoryRoutes] Dashboard data request failed: %s", exc, exc_info=True)
        return _failure("Failed to fetch dashboard data", exc)
    return {"success": True, "data": data}


@router.get("/items", dependencies=[Depends(require_read_access)])
async def items_by_status(
    status: str = Query(..., description="One of " + ", ".join(INVENTORY_STATUSES)),
    writer: InventoryWriter = Depends(get_writer),
):
    status = status.strip().upper()
    if status not in INVENTORY_STATUSES:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Unknown status", "error": f"status must be one of {list(INVENTORY_STATUSES)}"},
        )
    try:
        items = await asyncio.to_thread(writer.get_items_by_status, status)
    except Exception as exc:
        logger.error("[InventoryRoutes] Items by status request failed: %s", exc, exc_info=True)
        return _failure("Failed to fetch items", exc)
    return {"success": True, "data": {"status": status, "count": len(items), "items": items}}


@router.get("/history", dependencies=[Depends(require_read_access)])
async def history(
    days: int = Query(7, ge=1, le=365),
    limit: int = Query(30, ge=1, le=500),
    writer: InventoryWriter = Depends(get_writer),
):
    end = datetime.now(timezone.utc)
    try:
        entries = await asyncio.to_thread(writer.read_history, end - timedelta(days=days), end, limit)
    except Exception as exc:
        logger.error("[InventoryRoutes] History request failed: %s", exc, exc_info=True)
        return _failure("Failed to fetch inventory history", exc)
    return {"success": True, "data": entries}


@router.get("/test/sos", dependencies=[Depends(require_write_access)])
async def test_sos_connection(client: SosApiClient = Depends(get_sos_client)):
    result = await asyncio.to_thread(client.test_connection)
    if not result.get("success"):
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "SOS API connection test failed", "error": result.get("error")},
        )
    return {"success": True, "message": "SOS API connection test completed", "data": result}


@router.get("/test/store", dependencies=[Depends(require_write_access)])
async def test_store_connection(writer: InventoryWriter = Depends(get_writer)):
    result = await asyncio.to_thread(writer.test_connection)
    if not result.get("success"):
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Store connection test failed", "error": result.get("error")},
        )
    return {"success": True, "message": "Store connection test completed", "data": result}


def register_inventory_routes(app: FastAPI) -> None:
    app.include_router(router)
