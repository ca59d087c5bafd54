import pytest

from glucoengine.services.math.curves import CarbCurves, InsulinCurves, InterpolatedCurves


def test_rapid_acting_reference_points():
    assert InsulinCurves.rapid_acting_iob(0, 3) == 1.0
    assert InsulinCurves.rapid_acting_iob(60, 3) == pytest.approx(0.711088)
    assert InsulinCurves.rapid_acting_iob(75, 3) == pytest.approx(0.55556)
    assert InsulinCurves.rapid_acting_iob(180, 3) == 0.0


def test_rapid_acting_is_continuous_at_peak():
    before = InsulinCurves.rapid_acting_iob(74.999, 3)
    after = InsulinCurves.rapid_acting_iob(75.0, 3)
    assert before == pytest.approx(after, abs=1e-3)


def test_rapid_acting_peak_moves_without_moving_end():
    assert InsulinCurves.rapid_acting_iob(55, 3, peak_min=55) == pytest.approx(0.55556)
    assert InsulinCurves.rapid_acting_iob(170, 3, peak_min=55) > 0
    assert InsulinCurves.rapid_acting_iob(180, 3, peak_min=55) == 0.0


def test_rapid_acting_activity_is_triangle():
    peak = InsulinCurves.rapid_acting_activity(75, 3)
    assert peak == pytest.approx(2 / 3 / 60)
    assert InsulinCurves.rapid_acting_activity(37.5, 3) == pytest.approx(peak / 2)
    assert InsulinCurves.rapid_acting_activity(180, 3) == 0.0


def test_bilinear_is_continuous_at_peak():
    assert InsulinCurves.bilinear_iob(75, 75, 180) == pytest.approx(105 / 180)
    assert InsulinCurves.bilinear_iob(74.999, 75, 180) == pytest.approx(105 / 180, abs=1e-4)


@pytest.mark.parametrize("model", ["exponential", "bilinear", "linear", "fiasp", "novorapid"])
def test_activity_integrates_to_absorbed_fraction(model):
    dia_hours = 5.0
    absorbed = sum(InsulinCurves.get_activity(t + 0.5, dia_hours, 75, model) for t in range(0, 300))
    assert absorbed == pytest.approx(1.0, abs=0.01)
    half = sum(InsulinCurves.get_activity(t + 0.5, dia_hours, 75, model) for t in range(0, 120))
    assert half == pytest.approx(1 - InsulinCurves.get_iob(120, dia_hours, 75, model), abs=0.01)


def test_walsh_alias_matches_exponential():
    assert InsulinCurves.get_iob(100, 5, 75, "walsh") == InsulinCurves.get_iob(100, 5, 75, "exponential")


def test_unknown_model_falls_back_to_linear():
    assert InsulinCurves.get_iob(90, 3, 75, "mystery") == pytest.approx(0.5)


def test_zero_duration_has_no_insulin():
    assert InsulinCurves.get_iob(10, 0, 75, "rapid-acting") == 0.0
    assert InsulinCurves.get_activity(10, 0, 75, "fiasp") == 0.0


def test_interpolated_tables_stretch_to_duration():
    assert InterpolatedCurves.get_iob("fiasp", 90, 180) == pytest.approx(InterpolatedCurves.get_iob("fiasp", 150))
    assert InterpolatedCurves.get_iob("unknown", 90) == 0.0


def test_carb_linear_remaining():
    assert CarbCurves.linear_remaining(8, 15, 30) == pytest.approx(7.5)
    assert CarbCurves.linear_remaining(8, 60, 30) == 8
    assert CarbCurves.linear_remaining(8, 0, 30) == 0.0


def test_carb_impact_rate():
    assert CarbCurves.impact_rate(95, 18, 30) == pytest.approx(95 / 18 * 30 / 60)
    assert CarbCurves.impact_rate(95, 0, 30) == 0.0
