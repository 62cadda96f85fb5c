import asyncio
import json
import logging
import math
import re
import time
import uuid
from collections import deque
from dataclasses import replace
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from analytics.models import AnalysisSnapshot
from db import ConfigStore, InMemoryStore

from .models import (
    Alert,
    AlertFiredEvent,
    AlertLogEntry,
    ChartMarker,
    Condition,
    Frequency,
    MetricType,
)
from .registry import MetricDescriptor, MetricRegistry, format_price, get_registry

logger = logging.getLogger(__name__)

ONCE_PER_MINUTE_SEC = 60.0
ALERTS_KEY = "alerts.v1.{symbol}"
LOG_KEY = "alerts.log.v1.{symbol}"

THRESHOLD_CONDITIONS = (
    Condition.ABOVE, Condition.BELOW, Condition.CROSSES_ABOVE, Condition.CROSSES_BELOW,
)
TARGET_CONDITIONS = (Condition.IS, Condition.CHANGES_TO)


def _missing(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def _as_number(value: Any) -> Optional[float]:
    """Finite float, or None (a persisted runtime may hold anything)"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


# =============================================================================
# Pure evaluation
# =============================================================================

def check_condition(alert: Alert, metric: MetricDescriptor, value: Any,
                    compare_value: Any = None) -> bool:
    """
    Evaluate the condition and advance alert.runtime (last_value, last_diff).

    Mutates the runtime of the alert it is given; evaluate_alert hands it a copy.
    """
    rt = alert.runtime
    cond = alert.condition
    last = rt.last_value
    triggered = False

    if metric.type == MetricType.NUMBER:
        try:
            v = float(value)
        except (TypeError, ValueError):
            rt.last_value = None
            return False
        if not math.isfinite(v):
            rt.last_value = None
            return False
        last = _as_number(last)

        if cond.compares_metric:
            try:
                rhs = float(compare_value)
            except (TypeError, ValueError):
                rhs = float("nan")
            if not math.isfinite(rhs):
                rt.last_value = v
                rt.last_diff = None
                return False

            diff = v - rhs
            last_diff = _as_number(rt.last_diff)
            if cond == Condition.ABOVE_METRIC:
                triggered = diff > 0
            elif cond == Condition.BELOW_METRIC:
                triggered = diff < 0
            elif cond == Condition.CROSSES_ABOVE_METRIC:
                triggered = last_diff is not None and last_diff <= 0 < diff
            elif cond == Condition.CROSSES_BELOW_METRIC:
                triggered = last_diff is not None and last_diff >= 0 > diff
            rt.last_diff = diff
        else:
            if alert.threshold is None or not math.isfinite(alert.threshold):
                rt.last_value = v
                return False
            t = alert.threshold
            if cond == Condition.ABOVE:
                triggered = v > t
            elif cond == Condition.BELOW:
                triggered = v < t
            elif cond == Condition.CROSSES_ABOVE:
                triggered = last is not None and last <= t < v
            elif cond == Condition.CROSSES_BELOW:
                triggered = last is not None and last >= t > v

        rt.last_value = v
        return triggered

    v = str(value)
    target = str(alert.target) if alert.target is not None else ""
    changed = last is not None and str(last) != v
    if cond == Condition.IS:
        triggered = bool(target) and v == target
    elif cond == Condition.CHANGES:
        triggered = changed
    elif cond == Condition.CHANGES_TO:
        triggered = changed and bool(target) and v == target

    rt.last_value = value
    return triggered


def evaluate_alert(
    alert: Alert,
    snapshot: AnalysisSnapshot,
    registry: MetricRegistry,
    now: float,
    bar_id: Optional[int] = None,
) -> Tuple[bool, Alert]:
    """
    One evaluation step.

    Returns (fired, updated_alert). The input alert is never modified; the
    caller persists the returned record. `fired` already accounts for the
    frequency throttle.
    """
    updated = replace(alert, runtime=replace(alert.runtime))

    if not updated.enabled or updated.symbol != snapshot.symbol.upper():
        return False, updated

    metric = registry.get(updated.section, updated.metric_key)
    if metric is None:
        return False, updated

    value = metric.get_value(snapshot)
    if _missing(value):
        return False, updated

    compare_value = None
    if updated.condition.compares_metric:
        compare = registry.get(updated.section, updated.compare_metric_key or "")
        compare_value = compare.get_value(snapshot) if compare else None
        if _missing(compare_value):
            check_condition(updated, metric, value, None)
            return False, updated

    if not check_condition(updated, metric, value, compare_value):
        return False, updated

    rt = updated.runtime
    if updated.frequency == Frequency.ONCE_PER_MINUTE:
        if rt.last_fired_ts is not None and now - rt.last_fired_ts < ONCE_PER_MINUTE_SEC:
            return False, updated
    elif updated.frequency == Frequency.ONCE_PER_BAR:
        if bar_id is None or rt.last_fired_bar_id == bar_id:
            return False, updated
        rt.last_fired_bar_id = bar_id
    else:
        updated.enabled = False

    rt.last_fired_ts = now
    rt.fire_count += 1
    return True, updated


# =============================================================================
# Messages
# =============================================================================

def format_condition(alert: Alert, registry: Optional[MetricRegistry] = None) -> str:
    cond = alert.condition
    if cond.compares_metric:
        compare = registry.get(alert.section, alert.compare_metric_key or "") if registry else None
        rhs = compare.label if compare else (alert.compare_metric_key or "metric")
        words = cond.value[: -len("_metric")].replace("_", " ")
        return f"{words} {rhs}"
    if cond in THRESHOLD_CONDITIONS:
        return f"{cond.value.replace('_', ' ')} {_format_number(alert.threshold)}"
    if cond == Condition.IS:
        return f"is {alert.target}"
    if cond == Condition.CHANGES:
        return "changed"
    return f"changes to {alert.target}"


def _format_number(value: Optional[float]) -> str:
    if value is None:
        return "?"
    return f"{value:g}"


_PLACEHOLDER = re.compile(r"\{([a-zA-Z_]+)\}")


def render_template(template: str, ctx: Dict[str, str]) -> str:
    """Replace {name} placeholders; unknown names are left as-is."""
    if not template or not template.strip():
        return ""

    def sub(match):
        key = match.group(1).lower()
        return str(ctx[key]) if key in ctx else match.group(0)

    return _PLACEHOLDER.sub(sub, template)


def build_message(
    alert: Alert,
    metric: MetricDescriptor,
    value: Any,
    snapshot: AnalysisSnapshot,
    registry: MetricRegistry,
) -> Tuple[str, str, Dict[str, Any], Any]:
    """
    Returns (log_message, context_line, context, compare_value).

    Base form: "[SYMBOL] <label> <condition> (<value>[ vs <compare>])"
    """
    formatted = metric.format(value)
    compare_value = None
    rhs = None
    if alert.condition.compares_metric:
        compare = registry.get(alert.section, alert.compare_metric_key or "")
        if compare is not None:
            compare_value = compare.get_value(snapshot)
            if not _missing(compare_value):
                rhs = compare.format(compare_value)

    condition_text = format_condition(alert, registry)
    suffix = f" vs {rhs}" if rhs else ""
    base = f"[{snapshot.symbol}] {metric.label} {condition_text} ({formatted}{suffix})"

    m = snapshot.metrics
    price = snapshot.price
    mid = m.mid if m else None
    vwmp = m.vwmp if m else None
    ifv = m.ifv if m else None

    def fp(v):
        return format_price(v) if v else "--"

    context_line = ""
    if price and (vwmp or ifv):
        context_line = f"P {fp(price)} | Mid {fp(mid)} | VWMP {fp(vwmp)} | IFV {fp(ifv)}"

    template_ctx = {
        "symbol": snapshot.symbol,
        "timeframe": snapshot.timeframe,
        "price": fp(price),
        "mid": fp(mid),
        "vwmp": fp(vwmp),
        "ifv": fp(ifv),
        "metric": metric.label,
        "condition": condition_text,
        "value": formatted,
        "compare": rhs or alert.compare_metric_key or alert.target
        or (_format_number(alert.threshold) if alert.threshold is not None else ""),
        "auto": base,
    }
    custom = render_template(alert.custom_message, template_ctx).strip()
    if custom:
        body = custom if "{auto}" in alert.custom_message else f"{custom}\n{base}"
    else:
        body = base

    context = {
        "price": price,
        "mid": mid,
        "vwmp": vwmp,
        "ifv": ifv,
        "value": value,
        "compare_value": compare_value,
        "bar_id": snapshot.bar_id,
        "timeframe": snapshot.timeframe,
    }
    return re.sub(r"\s*\n\s*", " • ", body), context_line, context, compare_value


# =============================================================================
# Engine
# =============================================================================

class AlertEngine:
    """
    Owns the alert list and log of the active symbol.

    Persistence goes through an injected ConfigStore; records are JSON
    under alerts.v1.<SYMBOL> and alerts.log.v1.<SYMBOL>.
    """

    def __init__(
        self,
        store: Optional[ConfigStore] = None,
        registry: Optional[MetricRegistry] = None,
        symbol: str = "BTC",
        log_cap: int = 200,
        clock: Callable[[], float] = time.time,
        queue_size: int = 1000,
    ):
        self._store = store if store is not None else InMemoryStore()
        self._registry = registry or get_registry()
        self._clock = clock
        self._log_cap = log_cap
        self._alerts: Dict[str, Alert] = {}
        self._log: Deque[AlertLogEntry] = deque(maxlen=log_cap)
        self._event_queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._callbacks: List[Callable[[AlertFiredEvent], None]] = []
        self._stats = {
            "evaluations": 0,
            "fired": 0,
            "dropped_events": 0,
            "start_time": time.time(),
        }
        self.symbol = symbol.upper()
        self.load(self.symbol)

    @property
    def registry(self) -> MetricRegistry:
        return self._registry

    # =========================================================================
    # Persistence
    # =========================================================================

    def _read_json_list(self, key: str) -> List[Dict[str, Any]]:
        raw = self._store.get(key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding malformed JSON under %s", key)
            return []
        if not isinstance(data, list):
            logger.warning("Discarding non-list value under %s", key)
            return []
        return data

    def load(self, symbol: str) -> None:
        """Switch to `symbol`, loading its alerts and log from the store."""
        self.symbol = symbol.upper()
        self._alerts.clear()
        self._log.clear()

        for item in self._read_json_list(ALERTS_KEY.format(symbol=self.symbol)):
            try:
                alert = Alert.from_dict(item)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping malformed alert for %s: %s", self.symbol, exc)
                continue
            self._alerts[alert.id] = alert

        entries = []
        for item in self._read_json_list(LOG_KEY.format(symbol=self.symbol)):
            try:
                entries.append(AlertLogEntry.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed log entry for %s: %s", self.symbol, exc)
        self._log.extend(entries[: self._log_cap])

        logger.info("Loaded %d alerts, %d log entries for %s",
                    len(self._alerts), len(self._log), self.symbol)

    def save(self) -> None:
        self._store.set(
            ALERTS_KEY.format(symbol=self.symbol),
            json.dumps([a.to_dict() for a in self._alerts.values()]),
        )

    def _save_log(self) -> None:
        self._store.set(
            LOG_KEY.format(symbol=self.symbol),
            json.dumps([e.to_dict() for e in self._log]),
        )

    # =========================================================================
    # CRUD
    # =========================================================================

    def upsert(self, data: Dict[str, Any]) -> Alert:
        """
        Create or update an alert.

        Missing fields get defaults (id, symbol, enabled, frequency,
        notify, sound, created_at). An existing id is merged field by field.
        Raises ValueError for unknown metrics or incomplete conditions.
        """
        data = {k: v for k, v in data.items() if v is not None or k in ("threshold", "target")}
        existing = self._alerts.get(data.get("id") or "")
        if existing is not None:
            merged = existing.to_dict()
            merged.update(data)
            base = merged
        else:
            base = {
                "id": data.get("id") or f"alert_{uuid.uuid4().hex[:8]}",
                "symbol": self.symbol,
                "enabled": True,
                "frequency": Frequency.ONE_TIME.value,
                "notify": True,
                "sound": True,
                "sound_type": "alarm",
                "created_at": self._clock(),
            }
            base.update(data)

        if "section" not in base or "metric_key" not in base or "condition" not in base:
            raise ValueError("section, metric_key and condition are required")

        try:
            alert = Alert.from_dict(base)
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Invalid alert: {exc}") from exc
        self._validate(alert)

        self._alerts[alert.id] = alert
        if alert.symbol == self.symbol:
            self.save()
        else:
            self._alerts.pop(alert.id)
            self._save_foreign(alert)
        return alert

    def _save_foreign(self, alert: Alert) -> None:
        key = ALERTS_KEY.format(symbol=alert.symbol)
        items = [i for i in self._read_json_list(key) if i.get("id") != alert.id]
        items.append(alert.to_dict())
        self._store.set(key, json.dumps(items))

    def _validate(self, alert: Alert) -> None:
        metric = self._registry.get(alert.section, alert.metric_key)
        if metric is None:
            raise ValueError(f"Unknown metric: {alert.section.value}.{alert.metric_key}")
        if alert.condition not in metric.conditions:
            raise ValueError(
                f"Condition {alert.condition.value} not valid for {metric.type.value} metric"
            )
        if alert.condition in THRESHOLD_CONDITIONS and alert.threshold is None:
            raise ValueError(f"Condition {alert.condition.value} needs a threshold")
        if alert.condition.compares_metric:
            if self._registry.get(alert.section, alert.compare_metric_key or "") is None:
                raise ValueError(
                    f"Unknown compare metric: {alert.section.value}.{alert.compare_metric_key}"
                )
        if alert.condition in TARGET_CONDITIONS and not alert.target:
            raise ValueError(f"Condition {alert.condition.value} needs a target")

    def remove(self, alert_id: str) -> bool:
        if alert_id in self._alerts:
            del self._alerts[alert_id]
            self.save()
            return True
        return False

    def get(self, alert_id: str) -> Optional[Alert]:
        return self._alerts.get(alert_id)

    def list(self) -> List[Alert]:
        return list(self._alerts.values())

    def set_enabled(self, alert_id: str, enabled: bool) -> bool:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return False
        alert.enabled = enabled
        self.save()
        return True

    def reset_runtime(self) -> None:
        """Forget crossing/throttle memory of every alert"""
        for alert in self._alerts.values():
            alert.runtime = type(alert.runtime)()
        self.save()

    # =========================================================================
    # Evaluation
    # =========================================================================

    def evaluate(self, snapshot: AnalysisSnapshot, bar_id: Optional[int] = None) -> List[AlertFiredEvent]:
        """
        Evaluate every alert against one snapshot.

        Each alert fires at most once per call; fired events are logged,
        queued for the SSE stream and handed to callbacks.
        """
        now = self._clock()
        self._stats["evaluations"] += 1
        fired: List[AlertFiredEvent] = []

        for alert_id, alert in list(self._alerts.items()):
            triggered, updated = evaluate_alert(alert, snapshot, self._registry, now, bar_id)
            self._alerts[alert_id] = updated
            if triggered:
                fired.append(self._fire(updated, snapshot, now))

        if fired:
            self.save()
            self._save_log()
        return fired

    def _fire(self, alert: Alert, snapshot: AnalysisSnapshot, now: float) -> AlertFiredEvent:
        metric = self._registry.get(alert.section, alert.metric_key)
        value = metric.get_value(snapshot)
        message, context_line, context, compare_value = build_message(
            alert, metric, value, snapshot, self._registry
        )

        entry = AlertLogEntry(
            id=f"evt_{uuid.uuid4().hex[:8]}",
            ts=now,
            alert_id=alert.id,
            symbol=alert.symbol,
            section=alert.section.value,
            metric_key=alert.metric_key,
            message=message,
            value=value,
            context=context,
            marker=ChartMarker.for_alert(alert, snapshot.bar_id),
        )
        self._log.appendleft(entry)

        event = AlertFiredEvent(
            alert=alert,
            metric_label=metric.label,
            value=value,
            compare_value=compare_value,
            message=message,
            context_line=context_line,
            log_entry=entry,
            snapshot=snapshot.to_dict(),
        )
        self._stats["fired"] += 1
        logger.info("Alert fired: %s", message)

        try:
            self._event_queue.put_nowait(event)
        except asyncio.QueueFull:
            self._stats["dropped_events"] += 1
            logger.warning("Alert event queue full, dropping %s", alert.id)

        for callback in self._callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception("Alert callback failed for %s", alert.id)

        return event

    # =========================================================================
    # Delivery / history
    # =========================================================================

    async def get_event(self, timeout: float = None) -> Optional[AlertFiredEvent]:
        try:
            if timeout:
                return await asyncio.wait_for(self._event_queue.get(), timeout)
            return await self._event_queue.get()
        except asyncio.TimeoutError:
            return None

    def on_alert(self, callback: Callable[[AlertFiredEvent], None]) -> None:
        self._callbacks.append(callback)

    def get_log(self, limit: int = 50) -> List[AlertLogEntry]:
        """Newest first"""
        return list(self._log)[:limit]

    def clear_log(self) -> None:
        self._log.clear()
        self._save_log()

    def stats(self) -> Dict[str, Any]:
        uptime = time.time() - self._stats["start_time"]
        return {
            **self._stats,
            "uptime_seconds": round(uptime, 2),
            "symbol": self.symbol,
            "alerts_count": len(self._alerts),
            "enabled_alerts": sum(1 for a in self._alerts.values() if a.enabled),
            "log_size": len(self._log),
            "queue_size": self._event_queue.qsize(),
        }
