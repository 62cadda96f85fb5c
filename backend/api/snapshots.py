"""
Snapshots API
Ingestion endpoints.

Endpoints:
    POST /api/snapshots          → Ingest one snapshot
    POST /api/snapshots/batch    → Ingest a list of snapshots
    POST /api/snapshots/upload   → Ingest an NDJSON file
    GET  /api/snapshots/bars     → Aggregated bars (forming bar last)
"""

from typing import Any, Dict, List

from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from pydantic import BaseModel

from core.engine import get_engine
from core.models import DataSource, IngestionResult, to_snapshot
from services.replay import replay_lines

router = APIRouter(prefix="/snapshots", tags=["Snapshots"])


class SnapshotBatchRequest(BaseModel):
    """Raw records; each is validated individually"""
    snapshots: List[Dict[str, Any]]

    class Config:
        json_schema_extra = {
            "example": {
                "snapshots": [
                    {
                        "time": 1700000000,
                        "candle": {"o": 100, "h": 101, "l": 99.5, "c": 100.5, "v": 12},
                        "book": {"bids": [[100, 2], [99, 5]], "asks": [[101, 1], [102, 4]]},
                    }
                ]
            }
        }


@router.post("")
async def ingest_snapshot(record: Dict[str, Any]):
    """
    Ingest one snapshot.

    Returns the ingest status, any bars it closed and alerts it fired.
    """
    try:
        snapshot = to_snapshot(record, source=DataSource.API)
    except (ValueError, KeyError, TypeError) as exc:
        get_engine().record_error()
        raise HTTPException(400, f"Invalid snapshot: {exc}")

    outcome = get_engine().ingest(snapshot)
    return {
        "status": outcome.status,
        "closed": [s.to_dict() for s in outcome.closed],
        "fired": [e.to_dict() for e in outcome.fired],
    }


@router.post("/batch", response_model=IngestionResult)
async def ingest_batch(request: SnapshotBatchRequest):
    """Ingest many snapshots; invalid records are counted, not fatal"""
    engine = get_engine()
    snapshots, errors = [], 0
    for record in request.snapshots:
        try:
            snapshots.append(to_snapshot(record, source=DataSource.API))
        except (ValueError, KeyError, TypeError):
            errors += 1

    if errors:
        engine.record_error(errors)
    result = engine.ingest_batch(snapshots)
    result.errors = errors
    result.success = errors == 0
    return result


@router.post("/upload", response_model=IngestionResult)
async def upload_ndjson(file: UploadFile = File(...)):
    """Ingest an NDJSON file, one snapshot per line"""
    content = await file.read()
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(400, "File must be UTF-8 NDJSON")

    report = replay_lines(text.splitlines(), get_engine(), source=DataSource.UPLOAD)
    return IngestionResult(
        success=report.skipped == 0,
        count=report.ingested,
        errors=report.skipped,
        duplicates=report.duplicates,
        bars_closed=report.bars_closed,
        message=f"Ingested {report.ingested} snapshots from {file.filename}",
    )


@router.get("/bars")
async def get_bars(
    limit: int = Query(default=500, ge=1, le=5000),
    include_forming: bool = True,
):
    engine = get_engine()
    bars = engine.bars(limit, include_forming=include_forming)
    return {
        "symbol": engine.symbol,
        "timeframe": engine.timeframe,
        "count": len(bars),
        "bars": [b.to_dict() for b in bars],
    }
