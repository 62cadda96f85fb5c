"""
API Routers
"""
from .snapshots import router as snapshots_router
from .engine import router as engine_router
from .metrics import router as metrics_router
from .alerts import router as alerts_router

__all__ = ["snapshots_router", "engine_router", "metrics_router", "alerts_router"]
