import pytest

from conftest import MINUTE_MS, mills
from glucoengine.models.glucose import GlucoseReading
from glucoengine.services.glucose_stats import calc_bg_now, calc_buckets, calc_delta, normalize_readings, summarize

NOW = mills("2024-05-10T08:00:00Z")


def _reading(minutes_ago: float, mgdl: float) -> GlucoseReading:
    return GlucoseReading(timestamp_ms=int(NOW - minutes_ago * MINUTE_MS), value_mgdl=mgdl)


def test_normalize_sorts_drops_errors_and_dedupes():
    readings = [_reading(0, 120), _reading(10, 110), _reading(5, 10), _reading(0, 125)]
    normalized = normalize_readings(readings)
    assert [r.value_mgdl for r in normalized] == [110, 125]


def test_buckets_group_readings_around_newest():
    buckets = calc_buckets([_reading(0, 100), _reading(1, 98), _reading(5, 95), _reading(16, 90)])
    assert len(buckets) == 4
    assert [len(b.readings) for b in buckets] == [2, 1, 0, 1]
    assert buckets[0].mean == pytest.approx(99)
    assert buckets[2].is_empty


def test_bg_now_uses_newest_bucket():
    bg_now = calc_bg_now([_reading(0, 100), _reading(1, 98), _reading(5, 95)])
    assert bg_now.mean == pytest.approx(99)
    assert bg_now.last == 100
    assert bg_now.mills == NOW
    assert len(bg_now.readings) == 2


def test_bg_now_without_readings():
    bg_now = calc_bg_now([])
    assert bg_now.mean is None
    assert bg_now.mills is None


def test_delta_five_minutes_apart():
    delta = calc_delta([_reading(5, 100), _reading(0, 105)])
    assert delta.mgdl == 5
    assert delta.display == "+5"
    assert delta.mean5_mins_ago == 100
    assert not delta.interpolated


def test_delta_interpolates_over_gap():
    delta = calc_delta([_reading(11, 100), _reading(0, 105)])
    assert delta.interpolated
    assert delta.elapsed_mins == pytest.approx(11)
    assert delta.mgdl == 2
    assert delta.display == "+2"


def test_falling_delta_display():
    delta = calc_delta([_reading(5, 120), _reading(0, 111)])
    assert delta.mgdl == -9
    assert delta.display == "-9"


def test_delta_in_mmol():
    delta = calc_delta([_reading(5, 180), _reading(0, 198)], units="mmol")
    assert delta.mgdl == 18
    assert delta.scaled == pytest.approx(1.0)
    assert delta.display == "+1.0"


def test_single_reading_has_no_delta():
    bg_now, delta = summarize([_reading(0, 140)])
    assert bg_now.mean == 140
    assert delta is None
