"""
Analysis Engine
Owns the pipeline for the active instrument:

    snapshot → RawBarBuffer → SnapshotAggregator → closed bar
             → levels/metrics → certainty, pulse, direction
             → AnalysisSnapshot → BarChannel + AlertEngine

Single-threaded: ingest() runs every stage to completion before returning.
"""

import json
import math
import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import ValidationError

from alerts.engine import AlertEngine
from alerts.models import AlertFiredEvent
from analytics.certainty import score_entry
from analytics.direction import analyze_direction
from analytics.levels import cluster_book
from analytics.metrics import compute_metrics
from analytics.models import AnalysisSnapshot, MetricsResult, PulseResult, numeric_fields
from analytics.pulse import PulseSettings, compute_pulse
from db import ConfigStore, InMemoryStore, get_storage

from .buffer import BarChannel, RawBarBuffer
from .config import AnalysisSettings, EngineConfig
from .models import AggregatedBar, IngestionResult, Snapshot
from .resampler import SnapshotAggregator, timeframe_seconds

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings.v1"
PULSE_SETTINGS_KEY = "pulse.v1"
CANDLE_SOURCES = ("open", "high", "low", "close")


@dataclass
class IngestOutcome:
    """What one snapshot caused"""
    status: str
    closed: List[AnalysisSnapshot] = field(default_factory=list)
    provisional: Optional[AnalysisSnapshot] = None
    fired: List[AlertFiredEvent] = field(default_factory=list)


class AnalysisEngine:
    """
    Usage:
        engine = AnalysisEngine(EngineConfig(symbol="BTC", timeframe="5m"))
        outcome = engine.ingest(snapshot)
        for snap in engine.channel.drain():
            ...
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[ConfigStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or EngineConfig()
        self._store = store if store is not None else InMemoryStore()
        self._clock = clock

        self.symbol = self.config.symbol
        self.settings = self._load_settings()
        self.pulse_settings = self._load_pulse_settings()

        self._buffer = RawBarBuffer(maxlen=self.config.max_raw_bars)
        self._aggregator = SnapshotAggregator(self.config.timeframe)
        self._bars: Deque[AggregatedBar] = deque(maxlen=self.config.series_limit)
        self._series: Deque[AnalysisSnapshot] = deque(maxlen=self.config.series_limit)
        self._previous: Optional[MetricsResult] = None
        self._pulse: Optional[PulseResult] = None
        self._provisional: Optional[AnalysisSnapshot] = None
        self._last_provisional_at: Optional[float] = None
        self._last_alert_eval_at: Optional[float] = None

        self.channel: BarChannel[AnalysisSnapshot] = BarChannel(maxlen=self.config.series_limit)
        self.alerts = AlertEngine(
            store=self._store,
            symbol=self.symbol,
            log_cap=self.config.alert_log_cap,
            clock=clock,
        )

        self._stats = {
            "snapshots_ingested": 0,
            "duplicates": 0,
            "stale": 0,
            "late_inserts": 0,
            "bars_closed": 0,
            "gaps": 0,
            "recomputes": 0,
            "errors": 0,
            "start_time": time.time(),
        }

    @property
    def timeframe(self) -> str:
        return self._aggregator.timeframe

    # =========================================================================
    # Settings
    # =========================================================================

    def _read_json(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._store.get(key)
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed JSON under %s", key)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object value under %s", key)
            return None
        return data

    def _load_settings(self) -> AnalysisSettings:
        data = self._read_json(SETTINGS_KEY)
        if data is None:
            return AnalysisSettings()
        try:
            return AnalysisSettings.model_validate(data)
        except ValidationError as exc:
            logger.warning("Stored analysis settings invalid, using defaults: %s", exc)
            return AnalysisSettings()

    def _load_pulse_settings(self) -> PulseSettings:
        data = self._read_json(PULSE_SETTINGS_KEY)
        if data is None:
            return PulseSettings()
        known = set(asdict(PulseSettings()))
        try:
            settings = PulseSettings(**{k: v for k, v in data.items() if k in known})
            self._check_pulse_source(settings.source)
        except (TypeError, ValueError) as exc:
            logger.warning("Stored pulse settings invalid, using defaults: %s", exc)
            return PulseSettings()
        return settings

    @staticmethod
    def _check_pulse_source(source: str) -> None:
        if source not in CANDLE_SOURCES and source not in numeric_fields():
            raise ValueError(f"Unknown pulse source: {source}")

    def update_settings(self, changes: Dict[str, Any]) -> AnalysisSettings:
        """
        Merge, validate, persist and recompute.

        Raises pydantic.ValidationError on bad values; nothing changes then.
        """
        merged = {**self.settings.model_dump(mode="json"), **changes}
        self.settings = AnalysisSettings.model_validate(merged)
        self._store.set(SETTINGS_KEY, self.settings.model_dump_json())
        logger.info("Analysis settings updated: %s", sorted(changes))
        self._recompute()
        return self.settings

    def update_pulse_settings(self, changes: Dict[str, Any]) -> PulseSettings:
        """Raises ValueError/TypeError for unknown fields or sources"""
        current = asdict(self.pulse_settings)
        unknown = set(changes) - set(current)
        if unknown:
            raise ValueError(f"Unknown pulse settings: {', '.join(sorted(unknown))}")
        current.update(changes)
        settings = PulseSettings(**current)
        self._check_pulse_source(settings.source)
        self.pulse_settings = settings
        self._store.set(PULSE_SETTINGS_KEY, json.dumps(asdict(settings)))
        self._recompute()
        return settings

    # =========================================================================
    # Ingestion
    # =========================================================================

    def ingest(self, snapshot: Snapshot) -> IngestOutcome:
        """
        Feed one snapshot through the pipeline.

        Duplicates and snapshots older than the retained window are dropped.
        A late snapshot is inserted in order and the bars are recomputed.
        """
        status = self._buffer.add(snapshot)
        if status == RawBarBuffer.DUPLICATE:
            self._stats["duplicates"] += 1
            return IngestOutcome(status=status)
        if status == RawBarBuffer.STALE:
            self._stats["stale"] += 1
            logger.debug("Dropping stale snapshot at %s", snapshot.time)
            return IngestOutcome(status=status)

        self._stats["snapshots_ingested"] += 1
        outcome = IngestOutcome(status=status)

        if status == RawBarBuffer.INSERTED:
            self._stats["late_inserts"] += 1
            logger.info("Late snapshot at %s, recomputing bars", snapshot.time)
            self._recompute()
        else:
            completed = self._aggregator.process(snapshot)
            if completed is not None:
                outcome.closed = self._close_bars([completed])
                for snap in outcome.closed:
                    outcome.fired.extend(self._evaluate_alerts(snap))

        now = self._clock()
        if self._due(self._last_provisional_at, self.config.analytics_interval_sec, now):
            self._last_provisional_at = now
            outcome.provisional = self._analyze_forming()
            if outcome.provisional is not None:
                outcome.fired.extend(self._evaluate_alerts(outcome.provisional))

        return outcome

    def ingest_batch(self, snapshots: List[Snapshot]) -> IngestionResult:
        if not snapshots:
            return IngestionResult(success=True, count=0, message="No snapshots")

        count = duplicates = closed = 0
        for snapshot in snapshots:
            outcome = self.ingest(snapshot)
            if outcome.status in (RawBarBuffer.DUPLICATE, RawBarBuffer.STALE):
                duplicates += 1
                continue
            count += 1
            closed += len(outcome.closed)

        return IngestionResult(
            success=True,
            count=count,
            duplicates=duplicates,
            bars_closed=closed,
            message=f"Ingested {count} snapshots",
        )

    def record_error(self, count: int = 1) -> None:
        """Count snapshots rejected before reaching the engine"""
        self._stats["errors"] += count

    def heartbeat(self) -> List[AlertFiredEvent]:
        """
        Re-evaluate alerts against the latest analysis when nothing has
        triggered an evaluation for alert_heartbeat_sec.
        """
        now = self._clock()
        if not self._due(self._last_alert_eval_at, self.config.alert_heartbeat_sec, now):
            return []
        latest = self.latest()
        if latest is None:
            return []
        return self._evaluate_alerts(latest)

    @staticmethod
    def _due(last: Optional[float], interval: float, now: float) -> bool:
        return last is None or now - last >= interval

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _close_bars(self, bars: List[AggregatedBar]) -> List[AnalysisSnapshot]:
        self._bars.extend(bars)
        self._stats["bars_closed"] += len(bars)
        self._pulse = self._compute_pulse()

        closed = []
        for bar in bars:
            snap = self._analyze(bar, closed=True)
            self._series.append(snap)
            self.channel.push(snap)
            closed.append(snap)
        return closed

    def _analyze(self, bar: AggregatedBar, closed: bool) -> AnalysisSnapshot:
        price = bar.close
        metrics = compute_metrics(bar.time, price, bar.book, self.settings, previous=self._previous)
        if closed:
            if metrics is None:
                self._stats["gaps"] += 1
            # No delta may span a gap
            self._previous = metrics

        snap = AnalysisSnapshot(
            symbol=self.symbol,
            timeframe=self.timeframe,
            bar_id=bar.time,
            closed=closed,
            open=bar.open,
            high=bar.high,
            low=bar.low,
            close=bar.close,
            volume=bar.volume,
            metrics=metrics,
            certainty=score_entry(metrics) if metrics is not None else None,
        )

        if bar.book is not None and bar.book.is_usable and math.isfinite(price) and price > 0:
            bids, asks = cluster_book(bar.book, price, self.settings.cluster_pct)
            snap.direction = analyze_direction(bids, asks, price)
            below = [lvl.price for lvl in bids if lvl.price <= price]
            above = [lvl.price for lvl in asks if lvl.price >= price]
            if below:
                snap.nearest_support_pct = (price - max(below)) / price * 100
            if above:
                snap.nearest_resistance_pct = (min(above) - price) / price * 100

        if closed and self._pulse is not None and self._pulse.ready:
            self._attach_pulse(snap)
        return snap

    def _attach_pulse(self, snap: AnalysisSnapshot) -> None:
        pulse = self._pulse
        try:
            idx = pulse.times.index(snap.bar_id)
        except ValueError:
            return
        snap.pulse_value = pulse.pulse[idx]
        snap.bbr = pulse.bbr[idx]
        for event in reversed(pulse.events):
            if event.time == snap.bar_id:
                snap.pulse = event
                break
            if event.time < snap.bar_id:
                break

    def _pulse_source(self) -> tuple:
        """(times, values) for the pulse indicator; gap bars are skipped"""
        source = self.pulse_settings.source
        times, values = [], []
        if source in CANDLE_SOURCES:
            for bar in self._bars:
                times.append(bar.time)
                values.append(getattr(bar, source))
            return times, values

        by_time = {s.bar_id: s for s in self._series}
        for bar in self._bars:
            snap = by_time.get(bar.time)
            if snap is not None:
                metrics = snap.metrics
            else:
                # Closing in this pass; source fields do not depend on deltas
                metrics = compute_metrics(bar.time, bar.close, bar.book, self.settings)
            if metrics is None:
                continue
            times.append(bar.time)
            values.append(getattr(metrics, source))
        return times, values

    def _compute_pulse(self) -> PulseResult:
        times, values = self._pulse_source()
        return compute_pulse(times, values, self.pulse_settings)

    def _analyze_forming(self) -> Optional[AnalysisSnapshot]:
        forming = self._aggregator.forming
        if forming is None:
            self._provisional = None
            return None
        self._provisional = self._analyze(forming, closed=False)
        return self._provisional

    def _evaluate_alerts(self, snap: AnalysisSnapshot) -> List[AlertFiredEvent]:
        self._last_alert_eval_at = self._clock()
        return self.alerts.evaluate(snap, bar_id=snap.bar_id)

    def _recompute(self) -> None:
        """
        Rebuild every bar and analysis from the retained snapshots.

        Historical bars are not pushed to the channel and do not evaluate
        alerts; only new closes do.
        """
        self._stats["recomputes"] += 1
        self._bars.clear()
        self._series.clear()
        self._previous = None
        self._provisional = None

        bars = self._aggregator.rebuild(self._buffer.get())
        self._bars.extend(bars)
        self._pulse = self._compute_pulse()
        for bar in self._bars:
            self._series.append(self._analyze(bar, closed=True))

        logger.info("Recomputed %d %s bars for %s", len(self._bars), self.timeframe, self.symbol)

    # =========================================================================
    # Instrument / timeframe
    # =========================================================================

    def set_timeframe(self, timeframe: str) -> None:
        """Raises ValueError for an unknown timeframe"""
        timeframe_seconds(timeframe)
        self._aggregator.set_timeframe(timeframe)
        self.channel.clear()
        self._recompute()

    def set_symbol(self, symbol: str) -> None:
        """Discard every piece of state and load the new symbol's alerts"""
        self.symbol = symbol.upper()
        self._buffer.clear()
        self._aggregator.clear()
        self._bars.clear()
        self._series.clear()
        self.channel.clear()
        self._previous = None
        self._pulse = None
        self._provisional = None
        self._last_provisional_at = None
        self._last_alert_eval_at = None
        self.alerts.load(self.symbol)
        logger.info("Switched symbol to %s", self.symbol)

    def clear(self) -> None:
        self.set_symbol(self.symbol)

    # =========================================================================
    # Read model
    # =========================================================================

    def latest(self) -> Optional[AnalysisSnapshot]:
        """Forming-bar analysis when newer than the last close"""
        last_closed = self._series[-1] if self._series else None
        if self._provisional is not None and (
            last_closed is None or self._provisional.bar_id > last_closed.bar_id
        ):
            return self._provisional
        return last_closed

    def series(self, limit: int = 500) -> List[AnalysisSnapshot]:
        data = list(self._series)
        return data[-limit:] if limit else data

    def bars(self, limit: int = 500, include_forming: bool = True) -> List[AggregatedBar]:
        data = list(self._bars)
        if include_forming and self._aggregator.forming is not None:
            data.append(self._aggregator.forming)
        return data[-limit:] if limit else data

    def pulse(self) -> Optional[PulseResult]:
        return self._pulse

    def stats(self) -> Dict[str, Any]:
        uptime = time.time() - self._stats["start_time"]
        forming = self._aggregator.forming
        return {
            **self._stats,
            "uptime_seconds": round(uptime, 2),
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "closed_bars": len(self._bars),
            "forming_bar": forming.to_dict() if forming else None,
            "raw_buffer": self._buffer.stats(),
            "channel": self.channel.stats(),
            "pulse_ready": bool(self._pulse and self._pulse.ready),
            "alerts": self.alerts.stats(),
        }


# =============================================================================
# Singleton
# =============================================================================

_engine: Optional[AnalysisEngine] = None


def get_engine() -> AnalysisEngine:
    global _engine
    if _engine is None:
        config = EngineConfig.from_env()
        store = get_storage(config.db_path) if config.db_path else InMemoryStore()
        _engine = AnalysisEngine(config=config, store=store)
        logger.info("Engine ready: %s %s (store: %s)",
                    config.symbol, config.timeframe, type(store).__name__)
    return _engine


def reset_engine(engine: Optional[AnalysisEngine] = None) -> None:
    """Replace the singleton (tests, symbol-scoped restarts)"""
    global _engine
    _engine = engine
