import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.alerts import router as alerts_router
from api.engine import router as engine_router
from api.metrics import router as metrics_router
from api.snapshots import router as snapshots_router
from core.engine import get_engine
from logging_config import setup_logging

logger = logging.getLogger(__name__)


async def alert_heartbeat():
    """Re-evaluate alerts when the feed goes quiet"""
    engine = get_engine()
    interval = max(engine.config.alert_heartbeat_sec, 1.0)
    while True:
        await asyncio.sleep(interval)
        fired = engine.heartbeat()
        if fired:
            logger.info("Heartbeat fired %d alerts", len(fired))


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    engine = get_engine()
    logger.info("Serving %s on %s", engine.symbol, engine.timeframe)
    task = asyncio.create_task(alert_heartbeat())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


app = FastAPI(
    title="Order Book Signals API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(snapshots_router, prefix="/api")
app.include_router(engine_router, prefix="/api")
app.include_router(metrics_router, prefix="/api")
app.include_router(alerts_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": "Order Book Signals API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    engine = get_engine()
    stats = engine.stats()
    latest = engine.latest()

    return {
        "status": "healthy",
        "engine": {
            "symbol": stats["symbol"],
            "timeframe": stats["timeframe"],
            "snapshots_ingested": stats["snapshots_ingested"],
            "bars_closed": stats["bars_closed"],
            "errors": stats["errors"],
            "uptime_seconds": stats["uptime_seconds"],
        },
        "latest_bar": latest.bar_id if latest else None,
        "alerts": {
            "count": stats["alerts"]["alerts_count"],
            "fired": stats["alerts"]["fired"],
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
