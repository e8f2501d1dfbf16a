"""Production (process transaction) cost analysis routes."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any, Dict

from fastapi import APIRouter, Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator, model_validator

from auth.access_policy import require_read_access
from routes.inventory_routes import get_sos_client
from services.production_analyzer import (
    analyze_transaction_structure,
    extract_production_batches,
    generate_cost_data_recommendations,
)
from services.sos_api import SosApiClient

router = APIRouter(prefix="/api/production")
logger = logging.getLogger(__name__)

MAX_WINDOW_DAYS = 92


class ProductionAnalysisRequest(BaseModel):
    start_date: date
    end_date: date
    include_batches: bool = Field(default=True)

    @field_validator("end_date")
    @classmethod
    def end_not_in_future(cls, v: date) -> date:
        if v > date.today():
            raise ValueError("end_date cannot be in the future")
        return v

    @model_validator(mode="after")
    def check_window(self) -> "ProductionAnalysisRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        if (self.end_date - self.start_date).days > MAX_WINDOW_DAYS:
            raise ValueError(f"date window must be at most {MAX_WINDOW_DAYS} days")
        return self


def _analyze(client: SosApiClient, payload: ProductionAnalysisRequest) -> Dict[str, Any]:
    transactions = client.fetch_production_data(payload.start_date.isoformat(), payload.end_date.isoformat())
    analysis = analyze_transaction_structure(transactions)
    result: Dict[str, Any] = {
        "transaction_count": len(transactions),
        "analysis": analysis,
        "recommendations": generate_cost_data_recommendations(analysis) if transactions else None,
    }
    if payload.include_batches:
        result["production"] = extract_production_batches(transactions)
    return result


@router.post("/analysis", dependencies=[Depends(require_read_access)])
async def production_analysis(
    payload: ProductionAnalysisRequest,
    client: SosApiClient = Depends(get_sos_client),
):
    try:
        data = await asyncio.to_thread(_analyze, client, payload)
    except Exception as exc:
        logger.error("[ProductionRoutes] Production analysis failed: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Production analysis failed", "error": str(exc)},
        )
    return {"success": True, "data": data}


def register_production_routes(app: FastAPI) -> None:
    app.include_router(router)
