"""
Engine API
Instrument, timeframe and settings control.

Endpoints:
    GET /api/engine/stats       → Pipeline statistics
    PUT /api/engine/timeframe   → Switch timeframe (recomputes bars)
    PUT /api/engine/symbol      → Switch instrument (discards state)
    GET /api/engine/settings    → Analysis + pulse settings
    PUT /api/engine/settings    → Update analysis settings
    PUT /api/engine/pulse       → Update pulse settings
"""

from dataclasses import asdict
from typing import Any, Dict

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ValidationError

from core.engine import get_engine
from core.resampler import TIMEFRAME_SECONDS

router = APIRouter(prefix="/engine", tags=["Engine"])


class TimeframeRequest(BaseModel):
    timeframe: str

    class Config:
        json_schema_extra = {"example": {"timeframe": "5m"}}


class SymbolRequest(BaseModel):
    symbol: str

    class Config:
        json_schema_extra = {"example": {"symbol": "ETH"}}


@router.get("/stats")
async def get_stats():
    return get_engine().stats()


@router.get("/timeframes")
async def list_timeframes():
    return {"timeframes": list(TIMEFRAME_SECONDS)}


@router.put("/timeframe")
async def set_timeframe(request: TimeframeRequest):
    engine = get_engine()
    try:
        engine.set_timeframe(request.timeframe)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return {"timeframe": engine.timeframe, "closed_bars": len(engine.bars(0, include_forming=False))}


@router.put("/symbol")
async def set_symbol(request: SymbolRequest):
    symbol = request.symbol.strip()
    if not symbol:
        raise HTTPException(400, "Symbol must not be empty")
    engine = get_engine()
    engine.set_symbol(symbol)
    return {"symbol": engine.symbol, "alerts": len(engine.alerts.list())}


@router.get("/settings")
async def get_settings():
    engine = get_engine()
    return {
        "analysis": engine.settings.model_dump(mode="json"),
        "pulse": asdict(engine.pulse_settings),
    }


@router.put("/settings")
async def update_settings(changes: Dict[str, Any]):
    """Partial update; unknown keys are ignored, invalid values rejected"""
    try:
        settings = get_engine().update_settings(changes)
    except ValidationError as exc:
        raise HTTPException(400, f"Invalid settings: {exc}")
    return settings.model_dump(mode="json")


@router.put("/pulse")
async def update_pulse(changes: Dict[str, Any]):
    try:
        settings = get_engine().update_pulse_settings(changes)
    except (TypeError, ValueError) as exc:
        raise HTTPException(400, str(exc))
    return asdict(settings)
