from datetime import datetime, timezone

import pytest

from conftest import MINUTE_MS, mills
from glucoengine.models.device_status import DeviceStatus
from glucoengine.models.treatment import TEMP_BASAL, Treatment
from glucoengine.services.iob import (
    calc_basal_contribution,
    calc_treatment_contribution,
    from_device_status,
    from_treatments,
    iob_total,
)

T0 = mills("2024-03-01T12:00:00Z")


def _bolus(units: float, at_ms: int = T0) -> Treatment:
    return Treatment(timestamp_ms=at_ms, event_type="Correction Bolus", insulin=units)


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def test_rapid_acting_curve_values(cob_profile):
    bolus = _bolus(1.0)
    assert calc_treatment_contribution(bolus, cob_profile, T0).iob_contrib == pytest.approx(1.0)
    assert calc_treatment_contribution(bolus, cob_profile, T0 + 60 * MINUTE_MS).iob_contrib == pytest.approx(0.711088, abs=1e-6)
    assert calc_treatment_contribution(bolus, cob_profile, T0 + 120 * MINUTE_MS).iob_contrib == pytest.approx(0.174626, abs=1e-6)
    assert calc_treatment_contribution(bolus, cob_profile, T0 + 180 * MINUTE_MS).iob_contrib == 0


def test_rapid_acting_activity_scales_with_sensitivity(cob_profile):
    result = calc_treatment_contribution(_bolus(1.0), cob_profile, T0 + 60 * MINUTE_MS)
    # sens 95 * (2 / 3h / 60 / 75) * 60
    assert result.activity_contrib == pytest.approx(95 * (2 / 3 / 60 / 75) * 60)


def test_longer_dia_stretches_curve(day_profile):
    # DIA 4h: 80 real minutes map onto 60 minutes of the 3h curve
    result = calc_treatment_contribution(_bolus(1.0), day_profile, T0 + 80 * MINUTE_MS)
    assert result.iob_contrib == pytest.approx(0.711088, abs=1e-6)


def test_earlier_peak_moves_insulin_faster(cob_profile):
    at = T0 + 55 * MINUTE_MS
    default_peak = calc_treatment_contribution(_bolus(1.0), cob_profile, at)
    early_peak = calc_treatment_contribution(_bolus(1.0), cob_profile, at, peak_minutes=55)
    assert early_peak.iob_contrib < default_peak.iob_contrib
    assert calc_treatment_contribution(_bolus(1.0), cob_profile, T0 + 180 * MINUTE_MS, peak_minutes=55).iob_contrib == 0


@pytest.mark.parametrize("curve", ["rapid-acting", "bilinear", "exponential", "fiasp", "novorapid", "linear"])
def test_curves_decay_monotonically(cob_profile, curve):
    values = [
        calc_treatment_contribution(_bolus(4.0), cob_profile, T0 + minute * MINUTE_MS, curve=curve).iob_contrib
        for minute in range(0, 181, 15)
    ]
    assert values[0] == pytest.approx(4.0)
    assert values[-1] == pytest.approx(0.0, abs=1e-6)
    assert values == sorted(values, reverse=True)


def test_treatment_total_is_rounded_with_display(cob_profile):
    result = iob_total([_bolus(2.0)], [], cob_profile, T0 + 60 * MINUTE_MS)
    assert result.value == 1.422
    assert result.source == "Care Portal"
    assert result.display_line == "IOB: 1.42U"
    assert result.mills == T0


def test_future_and_carb_only_treatments_ignored(cob_profile):
    carbs = Treatment(timestamp_ms=T0, event_type="Carb Correction", carbs=20)
    future = _bolus(3.0, T0 + 10 * MINUTE_MS)
    result = from_treatments([carbs, future], cob_profile, T0)
    assert result.value == 0
    assert result.contributing_treatments == []


def test_no_treatments_has_no_display(cob_profile):
    result = iob_total([], [], cob_profile, T0)
    assert result.value == 0
    assert result.display_line is None


def test_basal_iob_from_absolute_temp_basal(cob_profile):
    temp = Treatment(timestamp_ms=T0, event_type=TEMP_BASAL, duration_min=30, absolute_rate=3.0)
    contribution = calc_basal_contribution(temp, cob_profile, T0 + 60 * MINUTE_MS)
    # (3.0 - 1.0 U/h) for 30 minutes, two thirds of a 3h DIA left
    assert contribution.iob_contrib == pytest.approx(0.667)

    result = iob_total([temp], [], cob_profile, T0 + 60 * MINUTE_MS)
    assert result.value == 0
    assert result.basal_iob == pytest.approx(0.667)
    assert result.display_line is None


def test_temp_basal_below_schedule_adds_nothing(cob_profile):
    temp = Treatment(timestamp_ms=T0, event_type=TEMP_BASAL, duration_min=30, absolute_rate=0.5)
    assert calc_basal_contribution(temp, cob_profile, T0 + 60 * MINUTE_MS).iob_contrib == 0


def test_loop_device_status_wins_and_keeps_treatment_iob_separate(cob_profile):
    now = T0 + 60 * MINUTE_MS
    status = DeviceStatus(
        timestamp_ms=now - 2 * MINUTE_MS,
        device_id="loop://iPhone",
        loop={"iob": {"iob": 2.5, "timestamp": _iso(now - 3 * MINUTE_MS)}},
    )
    result = iob_total([_bolus(2.0)], [status], cob_profile, now)
    assert result.value == 2.5
    assert result.source == "Loop"
    assert result.device == "loop://iPhone"
    assert result.mills == now - 3 * MINUTE_MS
    assert result.treatment_value == 1.422
    assert result.display_line == "IOB: 2.50U"


def test_openaps_iob_array_uses_first_entry(cob_profile):
    now = T0
    status = DeviceStatus(
        timestamp_ms=now,
        device_id="openaps://pi1",
        openaps={"iob": [{"iob": 1.1, "basaliob": 0.3, "activity": 0.01, "time": _iso(now)}, {"iob": 0.9}]},
    )
    result = iob_total([], [status], cob_profile, now)
    assert result.value == 1.1
    assert result.source == "OpenAPS"
    assert result.basal_iob == 0.3
    assert result.activity == 0.01


def test_mm_connect_pump_iob(cob_profile):
    status = DeviceStatus(
        timestamp_ms=T0, device_id="connect://paradigm", pump={"iob": {"bolusiob": 0.8}}, connect={"sgvs": []}
    )
    result = iob_total([], [status], cob_profile, T0)
    assert result.value == 0.8
    assert result.source == "MM Connect"


def test_newest_fresh_status_wins(cob_profile):
    older = DeviceStatus(timestamp_ms=T0 - 20 * MINUTE_MS, device_id="a", reported_iob=1.0, source_tag="Loop")
    newer = DeviceStatus(timestamp_ms=T0 - 5 * MINUTE_MS, device_id="b", reported_iob=2.0, source_tag="OpenAPS")
    result = iob_total([], [older, newer], cob_profile, T0)
    assert result.value == 2.0
    assert result.device == "b"


def test_stale_and_future_statuses_are_ignored(cob_profile):
    stale = DeviceStatus(timestamp_ms=T0 - 35 * MINUTE_MS, device_id="a", reported_iob=5.0, source_tag="Loop")
    future = DeviceStatus(timestamp_ms=T0 + 10 * MINUTE_MS, device_id="b", reported_iob=5.0, source_tag="Loop")
    result = iob_total([_bolus(1.0, T0 - 60 * MINUTE_MS)], [stale, future], cob_profile, T0)
    assert result.source == "Care Portal"
    assert result.value == pytest.approx(0.711, abs=1e-3)


def test_negative_device_iob_is_clamped(cob_profile):
    status = DeviceStatus(timestamp_ms=T0, device_id="openaps://pi1", openaps={"iob": {"iob": -0.4}})
    result = iob_total([], [status], cob_profile, T0)
    assert result.value == 0
    assert result.source == "OpenAPS"


def test_without_profile_uses_default_dia(settings):
    result = iob_total([_bolus(1.0)], [], None, T0 + 60 * MINUTE_MS)
    assert result.value == pytest.approx(0.711, abs=1e-3)
    assert result.activity == pytest.approx(settings.profile.default_sens * (2 / 3 / 60 / 75) * 60)



def test_from_device_status_returns_result():
    status = DeviceStatus(
        timestamp_ms=T0, device_id="openaps://pi1", openaps={"iob": {"iob": -0.2, "basaliob": 0.1234, "activity": 0.02}}
    )
    result = from_device_status(status)
    assert result.value == 0
    assert result.source == "OpenAPS"
    assert result.device == "openaps://pi1"
    assert result.basal_iob == 0.123
    assert result.activity == 0.02
    assert from_device_status(DeviceStatus(timestamp_ms=T0, device_id="uploader")) is None


def test_non_finite_device_timestamp_does_not_break_total(cob_profile):
    status = DeviceStatus(timestamp_ms=T0, device_id="openaps://pi1", openaps={"iob": {"iob": 1.0, "timestamp": float("inf")}})
    result = iob_total([], [status], cob_profile, T0)
    assert result.value == 1.0
    assert result.mills == T0
