from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from glucoengine.models.glucose import BgNow, Delta, GlucoseReading

logger = logging.getLogger(__name__)

FIVE_MINUTES_MS = 5 * 60 * 1000
BUCKET_COUNT = 4
INTERPOLATE_AFTER_MINS = 9
# sensor error codes live below this value
MIN_VALID_MGDL = 39
MMOL_FACTOR = 18.0


@dataclass
class Bucket:
    index: int
    from_mills: int
    to_mills: int
    readings: List[GlucoseReading] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.readings

    @property
    def mean(self) -> Optional[float]:
        if not self.readings:
            return None
        return sum(r.value_mgdl for r in self.readings) / len(self.readings)

    @property
    def last(self) -> Optional[GlucoseReading]:
        return max(self.readings, key=lambda r: r.timestamp_ms) if self.readings else None


def normalize_readings(readings: Iterable[GlucoseReading]) -> list[GlucoseReading]:
    """
    Valid readings sorted by time. On duplicate timestamps the reading that
    appears last in the input wins.
    """
    by_time: dict[int, GlucoseReading] = {}
    dropped = 0
    for reading in readings:
        if reading.value_mgdl < MIN_VALID_MGDL:
            dropped += 1
            continue
        by_time[reading.timestamp_ms] = reading
    if dropped:
        logger.debug("Dropped %d reading(s) below %d mg/dL", dropped, MIN_VALID_MGDL)
    return sorted(by_time.values(), key=lambda r: r.timestamp_ms)


def calc_buckets(readings: Iterable[GlucoseReading]) -> list[Bucket]:
    """5-minute buckets centred on the newest reading and stepping back."""
    ordered = normalize_readings(readings)
    if not ordered:
        return []
    anchor = ordered[-1].timestamp_ms
    half = FIVE_MINUTES_MS // 2
    buckets = [
        Bucket(index=i, from_mills=anchor - half - i * FIVE_MINUTES_MS, to_mills=anchor + half - i * FIVE_MINUTES_MS)
        for i in range(BUCKET_COUNT)
    ]
    for reading in reversed(ordered):
        for bucket in buckets:
            if bucket.from_mills <= reading.timestamp_ms <= bucket.to_mills:
                bucket.readings.append(reading)
                break
    return buckets


def _bg_now(bucket: Bucket) -> BgNow:
    last = bucket.last
    return BgNow(
        mean=bucket.mean,
        last=last.value_mgdl if last else None,
        mills=last.timestamp_ms if last else None,
        readings=sorted(bucket.readings, key=lambda r: r.timestamp_ms),
    )


def calc_bg_now(readings: Iterable[GlucoseReading]) -> BgNow:
    buckets = calc_buckets(readings)
    if not buckets:
        return BgNow()
    return _bg_now(buckets[0])


def _delta(recent: BgNow, previous: BgNow, units: str) -> Delta:
    absolute = recent.mean - previous.mean
    elapsed_mins = (recent.mills - previous.mills) / 60_000
    interpolated = elapsed_mins > INTERPOLATE_AFTER_MINS
    if interpolated:
        mean5_mins_ago = recent.mean - absolute / elapsed_mins * 5
    else:
        mean5_mins_ago = recent.mean - absolute

    mgdl = int(round(recent.mean - mean5_mins_ago))
    if units == "mmol":
        scaled = round((recent.mean - mean5_mins_ago) / MMOL_FACTOR, 1)
        display = f"{scaled:+.1f}"
    else:
        scaled = float(mgdl)
        display = f"{mgdl:+d}"

    return Delta(
        absolute=absolute,
        elapsed_mins=elapsed_mins,
        interpolated=interpolated,
        mean5_mins_ago=mean5_mins_ago,
        mgdl=mgdl,
        scaled=scaled,
        display=display,
    )


def calc_delta(readings: Iterable[GlucoseReading], units: str = "mg/dl") -> Optional[Delta]:
    """Change between the newest bucket and the closest earlier non-empty one."""
    return summarize(readings, units)[1]


def summarize(readings: Iterable[GlucoseReading], units: str = "mg/dl") -> tuple[BgNow, Optional[Delta]]:
    buckets = calc_buckets(readings)
    if not buckets:
        return BgNow(), None
    recent = _bg_now(buckets[0])
    previous = next((b for b in buckets[1:] if not b.is_empty), None)
    if previous is None:
        return recent, None
    return recent, _delta(recent, _bg_now(previous), units)


__all__ = ["Bucket", "calc_bg_now", "calc_buckets", "calc_delta", "normalize_readings", "summarize"]
