"""
Metrics API
Read model of the analysis pipeline.

Endpoints:
    GET /api/metrics/latest      → Latest analysis (forming bar when newer)
    GET /api/metrics/series      → Closed-bar analyses, oldest first
    GET /api/metrics/pulse       → Pulse indicator series and events
    GET /api/metrics/direction   → Directional analysis of the latest book
    GET /api/metrics/channel     → Drain closed-bar results not yet consumed
"""

from fastapi import APIRouter, HTTPException, Query

from core.engine import get_engine

router = APIRouter(prefix="/metrics", tags=["Metrics"])


@router.get("/latest")
async def get_latest():
    latest = get_engine().latest()
    if latest is None:
        raise HTTPException(404, "No analysis yet")
    return latest.to_dict()


@router.get("/series")
async def get_series(limit: int = Query(default=500, ge=1, le=5000)):
    engine = get_engine()
    series = engine.series(limit)
    return {
        "symbol": engine.symbol,
        "timeframe": engine.timeframe,
        "count": len(series),
        "series": [s.to_dict() for s in series],
    }


@router.get("/pulse")
async def get_pulse(limit: int = Query(default=200, ge=1, le=5000)):
    engine = get_engine()
    pulse = engine.pulse()
    if pulse is None:
        return {"ready": False, "required_bars": engine.pulse_settings.min_bars, "bars": 0}
    data = pulse.to_dict(limit)
    data["required_bars"] = engine.pulse_settings.min_bars
    data["source"] = engine.pulse_settings.source
    return data


@router.get("/direction")
async def get_direction():
    latest = get_engine().latest()
    if latest is None or latest.direction is None:
        raise HTTPException(404, "No order book analysed yet")
    return latest.direction.to_dict()


@router.get("/channel")
async def drain_channel():
    items = get_engine().channel.drain()
    return {"count": len(items), "items": [s.to_dict() for s in items]}
