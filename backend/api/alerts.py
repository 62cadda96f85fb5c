"""
Alerts API
Endpoints for managing alerts and streaming firings.

Endpoints:
    GET    /api/alerts/registry          → Alertable metrics by section
    POST   /api/alerts                   → Create or update (upsert) an alert
    GET    /api/alerts                   → List alerts of the active symbol
    GET    /api/alerts/history           → Alert log, newest first
    DELETE /api/alerts/history           → Clear the alert log
    GET    /api/alerts/stream            → SSE stream of firings
    GET    /api/alerts/stats             → Alert engine statistics
    POST   /api/alerts/reset             → Forget crossing / throttle memory
    GET    /api/alerts/{id}              → Get alert
    PATCH  /api/alerts/{id}              → Partial update
    DELETE /api/alerts/{id}              → Delete alert
    POST   /api/alerts/{id}/enable       → Enable
    POST   /api/alerts/{id}/disable      → Disable
    POST   /api/alerts/{id}/test         → Dry-run against the latest analysis
"""

import asyncio
import json
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from alerts import Condition, Frequency, Section, build_message, evaluate_alert
from core.engine import get_engine


router = APIRouter(prefix="/alerts", tags=["Alerts"])


# =============================================================================
# Request Models
# =============================================================================

class AlertRequest(BaseModel):
    """Request body for creating (or, with an existing id, updating) an alert"""
    id: Optional[str] = None
    symbol: Optional[str] = None
    section: Section
    metric_key: str
    condition: Condition
    threshold: Optional[float] = None
    target: Optional[str] = None
    compare_metric_key: Optional[str] = None
    frequency: Frequency = Frequency.ONE_TIME
    notify: bool = True
    sound: bool = True
    sound_type: str = "alarm"
    enabled: bool = True
    custom_message: str = ""
    plot_on_chart: bool = False
    plot_text: str = ""

    class Config:
        json_schema_extra = {
            "example": {
                "section": "orderflow",
                "metric_key": "bpr",
                "condition": "crosses_above",
                "threshold": 1.5,
                "frequency": "once_per_bar",
                "custom_message": "{symbol} buyers stepping in: {value}",
            }
        }


class AlertUpdateRequest(BaseModel):
    """Partial update; only fields that are set are applied"""
    section: Optional[Section] = None
    metric_key: Optional[str] = None
    condition: Optional[Condition] = None
    threshold: Optional[float] = None
    target: Optional[str] = None
    compare_metric_key: Optional[str] = None
    frequency: Optional[Frequency] = None
    notify: Optional[bool] = None
    sound: Optional[bool] = None
    sound_type: Optional[str] = None
    enabled: Optional[bool] = None
    custom_message: Optional[str] = None
    plot_on_chart: Optional[bool] = None
    plot_text: Optional[str] = None


def _upsert(data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        alert = get_engine().alerts.upsert(data)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return alert.to_dict()


# =============================================================================
# Registry
# =============================================================================

@router.get("/registry")
async def get_registry(section: Optional[Section] = None):
    """Metrics that alerts can watch, with their conditions and options"""
    registry = get_engine().alerts.registry
    if section is None:
        return registry.to_dict()
    return {section.value: {m.key: m.to_dict() for m in registry.list(section)}}


# =============================================================================
# Alert Management
# =============================================================================

@router.post("")
async def create_alert(request: AlertRequest):
    """
    Create an alert (or update one when `id` matches an existing alert).

    Numeric metrics: above, below, crosses_above, crosses_below (threshold)
    and the *_metric variants (compare_metric_key in the same section).
    Enum/string metrics: is, changes_to (target), changes.
    """
    data = request.model_dump(mode="json", exclude_none=True)
    return {"message": "Alert saved", "alert": _upsert(data)}


@router.get("")
async def list_alerts():
    alerts = get_engine().alerts.list()
    return {"count": len(alerts), "alerts": [a.to_dict() for a in alerts]}


# =============================================================================
# Alert History
# =============================================================================

@router.get("/history")
async def get_history(limit: int = Query(default=50, ge=1, le=200)):
    """Get recent firings, newest first"""
    log = get_engine().alerts.get_log(limit)
    return {"count": len(log), "alerts": [e.to_dict() for e in log]}


@router.delete("/history")
async def clear_history():
    get_engine().alerts.clear_log()
    return {"message": "Alert history cleared"}


# =============================================================================
# SSE Stream
# =============================================================================

@router.get("/stream")
async def stream_alerts():
    """
    Server-Sent Events stream of alert firings.

    Connect via EventSource in browser:
        const es = new EventSource('/api/alerts/stream');
        es.onmessage = (e) => console.log(JSON.parse(e.data));
    """
    alerts = get_engine().alerts

    async def event_generator():
        yield f"data: {json.dumps({'type': 'connected', 'message': 'Alert stream connected'})}\n\n"

        while True:
            try:
                event = await alerts.get_event(timeout=30.0)
            except asyncio.CancelledError:
                break
            if event:
                yield f"data: {json.dumps(event.to_dict(), default=str)}\n\n"
            else:
                yield ": keepalive\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/stats")
async def get_stats():
    return get_engine().alerts.stats()


@router.post("/reset")
async def reset_runtime():
    """Reset every alert's crossing and throttle memory"""
    get_engine().alerts.reset_runtime()
    return {"message": "Alert runtime reset"}


# =============================================================================
# Single Alert
# =============================================================================

@router.get("/{alert_id}")
async def get_alert(alert_id: str):
    alert = get_engine().alerts.get(alert_id)
    if not alert:
        raise HTTPException(404, f"Alert not found: {alert_id}")
    return alert.to_dict()


@router.patch("/{alert_id}")
async def update_alert(alert_id: str, request: AlertUpdateRequest):
    if not get_engine().alerts.get(alert_id):
        raise HTTPException(404, f"Alert not found: {alert_id}")
    data = request.model_dump(mode="json", exclude_unset=True)
    data["id"] = alert_id
    return {"message": "Alert updated", "alert": _upsert(data)}


@router.delete("/{alert_id}")
async def delete_alert(alert_id: str):
    if not get_engine().alerts.remove(alert_id):
        raise HTTPException(404, f"Alert not found: {alert_id}")
    return {"message": f"Alert {alert_id} deleted"}


@router.post("/{alert_id}/enable")
async def enable_alert(alert_id: str):
    if not get_engine().alerts.set_enabled(alert_id, True):
        raise HTTPException(404, f"Alert not found: {alert_id}")
    return {"message": f"Alert {alert_id} enabled"}


@router.post("/{alert_id}/disable")
async def disable_alert(alert_id: str):
    if not get_engine().alerts.set_enabled(alert_id, False):
        raise HTTPException(404, f"Alert not found: {alert_id}")
    return {"message": f"Alert {alert_id} disabled"}


@router.post("/{alert_id}/test")
async def test_alert(alert_id: str):
    """
    Dry-run one alert against the latest analysis.

    Nothing is persisted, logged or delivered.
    """
    engine = get_engine()
    alert = engine.alerts.get(alert_id)
    if not alert:
        raise HTTPException(404, f"Alert not found: {alert_id}")
    snapshot = engine.latest()
    if snapshot is None:
        raise HTTPException(400, "No analysis yet; ingest snapshots first")

    registry = engine.alerts.registry
    metric = registry.get(alert.section, alert.metric_key)
    value = metric.get_value(snapshot) if metric else None
    would_fire, updated = evaluate_alert(alert, snapshot, registry, time.time(), snapshot.bar_id)

    preview = None
    if metric is not None and value is not None:
        preview = build_message(alert, metric, value, snapshot, registry)[0]

    return {
        "alert_id": alert_id,
        "bar_id": snapshot.bar_id,
        "value": value,
        "would_fire": would_fire,
        "runtime_after": updated.runtime.to_dict(),
        "message": preview,
    }
