"""
Configuration
Analysis settings (user-tunable) and engine configuration (deployment).

AnalysisSettings round-trips through the config store as JSON.
EngineConfig reads OBS_* environment variables.
"""

import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class AlphaMode(str, Enum):
    """Which alpha score is surfaced as `alpha`"""
    MARKET_MAKER = "mm"
    SWING = "swing"
    HTF = "htf"


class LDMode(str, Enum):
    """
    Which levels feed BPR / LD.

    signal:  clustered levels within ±ld_range_pct of price
    context: every clustered level in the price range
    """
    SIGNAL = "signal"
    CONTEXT = "context"


class AnalysisSettings(BaseModel):
    cluster_pct: float = Field(default=0.0015, gt=0, le=0.05)
    max_levels: int = Field(default=500, ge=1)
    min_volume: float = Field(default=0.0, ge=0)
    price_range_pct: float = Field(default=10.0, gt=0, le=100)
    fair_value_range_pct: float = Field(default=15.0, gt=0, le=100)
    alpha_sensitivity_mm: float = Field(default=50.0, ge=0, le=100)
    alpha_sensitivity_swing: float = Field(default=50.0, ge=0, le=100)
    alpha_sensitivity_htf: float = Field(default=50.0, ge=0, le=100)
    alpha_mode: AlphaMode = AlphaMode.HTF
    ld_mode: LDMode = LDMode.SIGNAL
    ld_range_pct: float = 10.0

    @field_validator('ld_range_pct', mode='before')
    @classmethod
    def clamp_ld_range(cls, v):
        """Out-of-range values are clamped to 1..50 rather than rejected"""
        return max(1.0, min(50.0, float(v)))


class EngineConfig(BaseModel):
    symbol: str = "BTC"
    timeframe: str = "1m"
    max_raw_bars: int = Field(default=2000, ge=10)
    alert_log_cap: int = Field(default=200, ge=1)
    analytics_interval_sec: float = Field(default=2.0, ge=0)
    alert_heartbeat_sec: float = Field(default=10.0, ge=0)
    series_limit: int = Field(default=2000, ge=1)
    db_path: Optional[str] = "data/signals.db"

    @field_validator('symbol', mode='before')
    @classmethod
    def uppercase_symbol(cls, v):
        return v.upper() if isinstance(v, str) else v

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """
        Build config from environment.

        OBS_SYMBOL, OBS_TIMEFRAME, OBS_MAX_RAW_BARS, OBS_ALERT_LOG_CAP,
        OBS_ANALYTICS_INTERVAL, OBS_ALERT_HEARTBEAT, OBS_DB_PATH
        (empty OBS_DB_PATH = in-memory store)
        """
        values = {}
        env_map = {
            "OBS_SYMBOL": "symbol",
            "OBS_TIMEFRAME": "timeframe",
            "OBS_MAX_RAW_BARS": "max_raw_bars",
            "OBS_ALERT_LOG_CAP": "alert_log_cap",
            "OBS_ANALYTICS_INTERVAL": "analytics_interval_sec",
            "OBS_ALERT_HEARTBEAT": "alert_heartbeat_sec",
        }
        for env_key, field_name in env_map.items():
            raw = os.getenv(env_key)
            if raw is not None:
                values[field_name] = raw

        db_path = os.getenv("OBS_DB_PATH")
        if db_path is not None:
            values["db_path"] = db_path or None

        return cls(**values)
