from __future__ import annotations

import logging
from functools import partial
from typing import Callable, Optional, Sequence

from glucoengine.core.settings import EngineSettings, get_settings
from glucoengine.models.device_status import DeviceStatus
from glucoengine.models.kinetics import CARE_PORTAL, CarbContribution, DeviceReading, KineticsResult
from glucoengine.models.treatment import Treatment
from glucoengine.services import iob as iob_service
from glucoengine.services.device_status import from_device_status as _read_device_status
from glucoengine.services.device_status import latest_reading
from glucoengine.services.math.curves import CarbCurves
from glucoengine.services.profile_resolver import ProfileResolver

logger = logging.getLogger(__name__)

MINUTE_MS = 60_000


def _carbs_hr(profile: Optional[ProfileResolver], time_ms: int, profile_name: Optional[str], cfg: EngineSettings) -> float:
    if profile is None:
        return cfg.profile.default_carbs_hr
    return profile.get_carb_absorption_rate(time_ms, profile_name)


def _delay(profile: Optional[ProfileResolver], time_ms: int, profile_name: Optional[str], cfg: EngineSettings) -> float:
    if profile is None:
        return cfg.profile.default_carb_delay
    return profile.get_carb_delay(time_ms, profile_name)


def _carb_ratio(profile: Optional[ProfileResolver], time_ms: int, profile_name: Optional[str]) -> float:
    if profile is None or not profile.has_data():
        return 0.0
    return profile.get_carb_ratio(time_ms, profile_name)


def _insulin_activity(
    boluses: Sequence[Treatment],
    profile: Optional[ProfileResolver],
    profile_name: Optional[str],
    cfg: EngineSettings,
    time_ms: int,
) -> float:
    result = iob_service.from_treatments(boluses, profile, time_ms, profile_name=profile_name, settings=cfg)
    return result.activity or 0.0


def absorption_rate(treatment: Treatment, carbs_hr: float, settings: Optional[EngineSettings] = None) -> float:
    """
    Absorption rate in g/hour for one carb entry.

    An explicit absorption time wins. Otherwise the profile rate is sped up
    for fast-acting notes and slowed down for high-fat meals.
    """
    carbs = treatment.carbs or 0.0
    if treatment.absorption_time_override_min:
        return carbs / treatment.absorption_time_override_min * 60

    heuristics = (settings or get_settings()).carbs
    notes = (treatment.notes or "").lower()
    if notes and any(keyword in notes for keyword in heuristics.fast_keywords):
        return carbs_hr * heuristics.fast_multiplier

    high_fat = treatment.fat is not None and heuristics.high_fat_grams > 0 and treatment.fat >= heuristics.high_fat_grams
    if high_fat or (notes and any(keyword in notes for keyword in heuristics.high_fat_keywords)):
        return carbs_hr * heuristics.high_fat_multiplier
    return carbs_hr


def calc_treatment_contribution(
    treatment: Treatment,
    profile: Optional[ProfileResolver],
    at_time_ms: int,
    last_decayed_by_ms: Optional[int] = None,
    insulin_activity: Optional[Callable[[int], float]] = None,
    profile_name: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
) -> CarbContribution:
    """
    Carbs left from one entry at at_time_ms.

    Absorption starts after the profile delay, or once the previous entry
    (ending at last_decayed_by_ms) is absorbed, and runs linearly at the
    absorption rate. When insulin_activity is given, insulin acting over
    the absorption window pushes the end later.
    """
    carbs = treatment.carbs
    if not carbs or carbs <= 0 or treatment.timestamp_ms > at_time_ms:
        return CarbContribution()

    cfg = settings or get_settings()
    carb_time = treatment.timestamp_ms
    delay = _delay(profile, carb_time, profile_name, cfg)
    rate_hr = absorption_rate(treatment, _carbs_hr(profile, carb_time, profile_name, cfg), cfg)
    if rate_hr <= 0:
        logger.warning("Carb entry at %s has no absorption rate, ignoring", carb_time)
        return CarbContribution()
    carbs_min = rate_hr / 60

    minutes_left = (last_decayed_by_ms - carb_time) / MINUTE_MS if last_decayed_by_ms else 0.0
    if delay > minutes_left:
        initial_carbs = carbs
        decayed_by = carb_time + (delay + carbs / carbs_min) * MINUTE_MS
    else:
        initial_carbs = carbs + minutes_left * carbs_min
        decayed_by = carb_time + (minutes_left + carbs / carbs_min) * MINUTE_MS

    if insulin_activity is not None:
        start_activity = insulin_activity(last_decayed_by_ms) if last_decayed_by_ms else 0.0
        avg_activity = (start_activity + insulin_activity(int(decayed_by))) / 2
        sens = iob_service.profile_sensitivity(profile, carb_time, profile_name, cfg)
        if sens > 0:
            delayed_carbs = avg_activity * cfg.kinetics.liver_sens_ratio / sens * _carb_ratio(profile, carb_time, profile_name)
            delay_minutes = round(delayed_carbs / rate_hr * 60)
            if delay_minutes > 0:
                decayed_by += delay_minutes * MINUTE_MS

    is_decaying = (last_decayed_by_ms is not None and at_time_ms < last_decayed_by_ms) or (
        at_time_ms > carb_time + delay * MINUTE_MS
    )
    remaining = CarbCurves.linear_remaining(carbs, (decayed_by - at_time_ms) / MINUTE_MS, rate_hr)

    activity = 0.0
    if is_decaying and remaining > 0:
        sens = iob_service.profile_sensitivity(profile, at_time_ms, profile_name, cfg)
        activity = CarbCurves.impact_rate(sens, _carb_ratio(profile, at_time_ms, profile_name), rate_hr)

    return CarbContribution(
        carb_contrib=max(0.0, min(carbs, remaining)),
        activity_contrib=activity,
        decayed_by_ms=int(decayed_by),
        is_decaying=is_decaying,
        initial_carbs=initial_carbs,
    )


def _device_result(reading: DeviceReading) -> KineticsResult:
    return KineticsResult(
        value=max(reading.value, 0.0),
        source=reading.source,
        device=reading.device,
        mills=reading.mills,
    )


def from_device_status(status: DeviceStatus) -> Optional[KineticsResult]:
    reading = _read_device_status(status, "cob")
    return _device_result(reading) if reading is not None else None


def from_treatments(
    treatments: Sequence[Treatment],
    profile: Optional[ProfileResolver],
    at_time_ms: int,
    profile_name: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
) -> KineticsResult:
    """Carbs on board from carb entries, each queued behind the previous one."""
    cfg = settings or get_settings()
    carb_entries = sorted(
        (t for t in treatments if t.carbs and t.timestamp_ms <= at_time_ms),
        key=lambda t: t.timestamp_ms,
    )
    boluses = [t for t in treatments if t.insulin and t.timestamp_ms <= at_time_ms]

    insulin_activity = None
    if boluses:
        insulin_activity = partial(_insulin_activity, boluses, profile, profile_name, cfg)

    total = 0.0
    activity = 0.0
    last_decayed_by: Optional[int] = None
    contributing: list[Treatment] = []
    for treatment in carb_entries:
        contribution = calc_treatment_contribution(
            treatment, profile, at_time_ms,
            last_decayed_by_ms=last_decayed_by,
            insulin_activity=insulin_activity,
            profile_name=profile_name,
            settings=cfg,
        )
        last_decayed_by = contribution.decayed_by_ms
        if contribution.carb_contrib > 0:
            contributing.append(treatment)
        total += contribution.carb_contrib
        activity += contribution.activity_contrib

    return KineticsResult(
        value=max(total, 0.0),
        source=CARE_PORTAL,
        mills=contributing[-1].timestamp_ms if contributing else None,
        contributing_treatments=contributing,
        activity=activity,
    )


def cob_total(
    treatments: Sequence[Treatment],
    device_statuses: Sequence[DeviceStatus],
    profile: Optional[ProfileResolver],
    at_time_ms: int,
    profile_name: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
) -> KineticsResult:
    """
    Carbs on board at at_time_ms. The newest device status reporting COB
    within the staleness window wins; otherwise COB is computed from the
    carb entries. The two are never mixed.
    """
    cfg = settings or get_settings()
    reading = latest_reading(device_statuses or (), at_time_ms, "cob", settings=cfg)
    if reading is not None:
        logger.debug("COB from %s (%s): %.1f", reading.source, reading.device, reading.value)
        result = _device_result(reading)
    else:
        result = from_treatments(treatments or (), profile, at_time_ms, profile_name=profile_name, settings=cfg)

    if result.value > 0:
        result = result.model_copy(update={"display_line": f"COB: {round(result.value)}g"})
    return result


__all__ = ["absorption_rate", "calc_treatment_contribution", "cob_total", "from_device_status", "from_treatments"]
