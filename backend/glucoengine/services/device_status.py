"""
Normalizes device status uploads into a single IOB or COB reading.

Each vendor layout is handled by an independent strategy that returns a
DeviceReading or None. Strategies are tried in order and the first
reading wins. Missing, unknown or malformed fields never raise; the
strategy simply yields nothing.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Literal, Mapping, Optional, Sequence

from glucoengine.core.settings import EngineSettings, get_settings
from glucoengine.models.device_status import DeviceStatus
from glucoengine.models.kinetics import DeviceReading

logger = logging.getLogger(__name__)

Metric = Literal["iob", "cob"]
Strategy = Callable[[DeviceStatus, Metric], Optional[DeviceReading]]


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _mills(value: Any, fallback: int) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value) if math.isfinite(value) else fallback
    if isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return fallback
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(round(dt.timestamp() * 1000))
    return fallback


def _mapping(value: Any) -> Optional[Mapping[str, Any]]:
    return value if isinstance(value, Mapping) else None


def reported_fields(status: DeviceStatus, metric: Metric) -> Optional[DeviceReading]:
    """Flat reported_iob / reported_cob with the uploader's own source tag."""
    value = status.reported_iob if metric == "iob" else status.reported_cob
    value = _number(value)
    if value is None:
        return None
    return DeviceReading(
        value=value,
        source=status.source_tag or "Device",
        device=status.device_id or None,
        mills=status.timestamp_ms,
    )


def loop_payload(status: DeviceStatus, metric: Metric) -> Optional[DeviceReading]:
    loop = _mapping(status.loop)
    if loop is None:
        return None
    block = loop.get(metric)
    nested = _mapping(block)
    value = _number(nested.get(metric) if nested is not None else block)
    if value is None:
        return None
    return DeviceReading(
        value=value,
        source="Loop",
        device=status.device_id or None,
        mills=_mills(nested.get("timestamp") if nested is not None else None, status.timestamp_ms),
    )


def _openaps_iob(status: DeviceStatus, openaps: Mapping[str, Any]) -> Optional[DeviceReading]:
    data = openaps.get("iob")
    if isinstance(data, list):
        # post-AMA uploads carry a projection, first entry is now
        data = data[0] if data else None
    data = _mapping(data)
    if data is None:
        return None
    value = _number(data.get("iob"))
    if value is None:
        return None
    return DeviceReading(
        value=value,
        source="OpenAPS",
        device=status.device_id or None,
        mills=_mills(data.get("timestamp") or data.get("time"), status.timestamp_ms),
        basal_iob=_number(data.get("basaliob")),
        activity=_number(data.get("activity")),
    )


def _openaps_cob(status: DeviceStatus, openaps: Mapping[str, Any]) -> Optional[DeviceReading]:
    direct = _number(openaps.get("cob"))
    if direct is not None:
        return DeviceReading(value=direct, source="OpenAPS", device=status.device_id or None, mills=status.timestamp_ms)

    best: Optional[DeviceReading] = None
    for key in ("suggested", "enacted"):
        block = _mapping(openaps.get(key))
        if block is None:
            continue
        value = _number(block.get("COB"))
        if value is None:
            continue
        mills = _mills(block.get("timestamp"), status.timestamp_ms)
        if best is None or mills > best.mills:
            best = DeviceReading(value=value, source="OpenAPS", device=status.device_id or None, mills=mills)
    return best


def openaps_payload(status: DeviceStatus, metric: Metric) -> Optional[DeviceReading]:
    openaps = _mapping(status.openaps)
    if openaps is None:
        return None
    if metric == "iob":
        return _openaps_iob(status, openaps)
    return _openaps_cob(status, openaps)


def pump_payload(status: DeviceStatus, metric: Metric) -> Optional[DeviceReading]:
    if metric != "iob":
        return None
    pump = _mapping(status.pump)
    iob = _mapping(pump.get("iob")) if pump is not None else None
    if iob is None:
        return None
    value = _number(iob.get("iob"))
    if value is None:
        value = _number(iob.get("bolusiob"))
    if value is None:
        return None
    return DeviceReading(
        value=value,
        source="MM Connect" if status.connect is not None else "Pump",
        device=status.device_id or None,
        mills=_mills(iob.get("timestamp"), status.timestamp_ms),
    )


def first_success(strategies: Sequence[Strategy]) -> Strategy:
    def combined(status: DeviceStatus, metric: Metric) -> Optional[DeviceReading]:
        for strategy in strategies:
            reading = strategy(status, metric)
            if reading is not None:
                return reading
        return None

    return combined


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (reported_fields, loop_payload, openaps_payload, pump_payload)

from_device_status = first_success(DEFAULT_STRATEGIES)


def latest_reading(
    statuses: Iterable[DeviceStatus],
    at_time_ms: int,
    metric: Metric,
    settings: Optional[EngineSettings] = None,
    strategy: Strategy = from_device_status,
) -> Optional[DeviceReading]:
    """
    Newest reading not older than the staleness window, nor further in the
    future than the tolerance.
    """
    cfg = (settings or get_settings()).kinetics
    stale_ms = cfg.stale_minutes * 60_000
    future_ms = cfg.future_tolerance_minutes * 60_000

    for status in sorted(statuses, key=lambda s: s.timestamp_ms, reverse=True):
        reading = strategy(status, metric)
        if reading is None:
            continue
        age = at_time_ms - (reading.mills if reading.mills is not None else status.timestamp_ms)
        if age > stale_ms:
            logger.debug("Ignoring stale %s from %s (%.1f min old)", metric, reading.source, age / 60_000)
            continue
        if -age > future_ms:
            logger.debug("Ignoring future-dated %s from %s", metric, reading.source)
            continue
        return reading
    return None


__all__ = [
    "DEFAULT_STRATEGIES",
    "first_success",
    "from_device_status",
    "latest_reading",
    "loop_payload",
    "openaps_payload",
    "pump_payload",
    "reported_fields",
]
