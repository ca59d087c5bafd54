from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from glucoengine.core.settings import EngineSettings, get_settings
from glucoengine.models.device_status import DeviceStatus
from glucoengine.models.kinetics import CARE_PORTAL, DeviceReading, InsulinContribution, KineticsResult
from glucoengine.models.treatment import TEMP_BASAL, Treatment
from glucoengine.services.device_status import from_device_status as _read_device_status
from glucoengine.services.device_status import latest_reading
from glucoengine.services.math.curves import InsulinCurves
from glucoengine.services.profile_resolver import ProfileResolver

logger = logging.getLogger(__name__)


def _round3(value: float) -> float:
    return round(value, 3)


def profile_dia(profile: Optional[ProfileResolver], time_ms: int, profile_name: Optional[str], cfg: EngineSettings) -> float:
    if profile is None:
        return cfg.profile.default_dia
    return profile.get_dia(time_ms, profile_name)


def profile_sensitivity(profile: Optional[ProfileResolver], time_ms: int, profile_name: Optional[str], cfg: EngineSettings) -> float:
    if profile is None or not profile.has_data():
        return cfg.profile.default_sens
    return profile.get_sensitivity(time_ms, profile_name)


def calc_treatment_contribution(
    treatment: Treatment,
    profile: Optional[ProfileResolver],
    at_time_ms: int,
    curve: Optional[str] = None,
    peak_minutes: Optional[float] = None,
    profile_name: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
) -> InsulinContribution:
    """
    Insulin still on board from one bolus, and its current activity in
    mg/dL per minute.
    """
    insulin = treatment.insulin
    if not insulin or insulin <= 0 or treatment.timestamp_ms > at_time_ms:
        return InsulinContribution()

    cfg = settings or get_settings()
    dia = profile_dia(profile, at_time_ms, profile_name, cfg)
    sens = profile_sensitivity(profile, at_time_ms, profile_name, cfg)
    curve = curve or cfg.kinetics.default_curve
    peak = peak_minutes or cfg.kinetics.peak_minutes

    t_min = (at_time_ms - treatment.timestamp_ms) / 60_000
    return InsulinContribution(
        iob_contrib=insulin * InsulinCurves.get_iob(t_min, dia, peak, curve),
        activity_contrib=sens * insulin * InsulinCurves.get_activity(t_min, dia, peak, curve),
    )


def calc_basal_contribution(
    treatment: Treatment,
    profile: Optional[ProfileResolver],
    at_time_ms: int,
    profile_name: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
) -> InsulinContribution:
    """
    Extra insulin delivered by an absolute temp basal above the scheduled
    rate, decaying linearly over DIA from the temp basal start.
    """
    if (
        treatment.event_type != TEMP_BASAL
        or treatment.absolute_rate is None
        or not treatment.duration_min
        or at_time_ms <= treatment.timestamp_ms
    ):
        return InsulinContribution()

    cfg = settings or get_settings()
    dia_minutes = profile_dia(profile, at_time_ms, profile_name, cfg) * 60
    scheduled = 1.0
    if profile is not None and profile.has_data():
        scheduled = profile.get_value(at_time_ms, "basal", profile_name)

    delivered_minutes = (min(at_time_ms, treatment.end_ms) - treatment.timestamp_ms) / 60_000
    excess = (treatment.absolute_rate - scheduled) * delivered_minutes / 60
    if excess <= 0:
        return InsulinContribution()

    min_ago = (at_time_ms - treatment.timestamp_ms) / 60_000
    if min_ago >= dia_minutes:
        return InsulinContribution()
    return InsulinContribution(iob_contrib=_round3(excess * (1 - min_ago / dia_minutes)))


def _device_result(reading: DeviceReading) -> KineticsResult:
    return KineticsResult(
        value=max(_round3(reading.value), 0.0),
        source=reading.source,
        device=reading.device,
        mills=reading.mills,
        activity=reading.activity,
        basal_iob=_round3(reading.basal_iob) if reading.basal_iob is not None else None,
    )


def from_device_status(status: DeviceStatus) -> Optional[KineticsResult]:
    """IOB reported by one device status, or None when it carries no usable value."""
    reading = _read_device_status(status, "iob")
    return _device_result(reading) if reading is not None else None


def from_treatments(
    treatments: Iterable[Treatment],
    profile: Optional[ProfileResolver],
    at_time_ms: int,
    curve: Optional[str] = None,
    peak_minutes: Optional[float] = None,
    profile_name: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
) -> KineticsResult:
    cfg = settings or get_settings()
    total_iob = 0.0
    total_activity = 0.0
    total_basal_iob = 0.0
    contributing: list[Treatment] = []
    last_bolus: Optional[Treatment] = None

    for treatment in sorted(treatments, key=lambda t: t.timestamp_ms):
        if treatment.timestamp_ms > at_time_ms:
            continue
        contribution = calc_treatment_contribution(
            treatment, profile, at_time_ms, curve=curve, peak_minutes=peak_minutes,
            profile_name=profile_name, settings=cfg,
        )
        basal = calc_basal_contribution(treatment, profile, at_time_ms, profile_name=profile_name, settings=cfg)
        if contribution.iob_contrib > 0:
            last_bolus = treatment
        if contribution.iob_contrib > 0 or basal.iob_contrib > 0:
            contributing.append(treatment)
        total_iob += contribution.iob_contrib
        total_activity += contribution.activity_contrib + basal.activity_contrib
        total_basal_iob += basal.iob_contrib

    return KineticsResult(
        value=max(_round3(total_iob), 0.0),
        source=CARE_PORTAL,
        mills=last_bolus.timestamp_ms if last_bolus else None,
        contributing_treatments=contributing,
        activity=total_activity,
        basal_iob=_round3(total_basal_iob) if total_basal_iob > 0 else None,
    )


def _with_display(result: KineticsResult) -> KineticsResult:
    if result.value <= 0:
        return result
    return result.model_copy(update={"display_line": f"IOB: {result.value:.2f}U"})


def iob_total(
    treatments: Sequence[Treatment],
    device_statuses: Sequence[DeviceStatus],
    profile: Optional[ProfileResolver],
    at_time_ms: int,
    curve: Optional[str] = None,
    peak_minutes: Optional[float] = None,
    profile_name: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
) -> KineticsResult:
    """
    Insulin on board at at_time_ms. A fresh device status value wins
    outright; treatment-derived IOB is then only reported separately.
    """
    cfg = settings or get_settings()
    treatment_result = from_treatments(
        treatments or (), profile, at_time_ms, curve=curve, peak_minutes=peak_minutes,
        profile_name=profile_name, settings=cfg,
    )
    reading = latest_reading(device_statuses or (), at_time_ms, "iob", settings=cfg)
    if reading is None:
        return _with_display(treatment_result)

    basal_iob = reading.basal_iob
    if treatment_result.basal_iob is not None:
        basal_iob = (basal_iob or 0.0) + treatment_result.basal_iob
    logger.debug("IOB from %s (%s): %.3f", reading.source, reading.device, reading.value)
    result = _device_result(reading).model_copy(
        update={
            "basal_iob": _round3(basal_iob) if basal_iob is not None else None,
            "treatment_value": treatment_result.value if treatment_result.value > 0 else None,
        }
    )
    return _with_display(result)


__all__ = [
    "calc_basal_contribution",
    "calc_treatment_contribution",
    "from_device_status",
    "from_treatments",
    "iob_total",
]
