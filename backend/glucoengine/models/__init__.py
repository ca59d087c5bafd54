from .glucose import BgNow, Delta, GlucoseReading
from .treatment import Treatment
from .device_status import DeviceStatus
from .profile import BasalRate, ProfileSchedule, TimeValue
from .forecast import ForecastPoint, ForecastResult, ForecastSettings
from .kinetics import CarbContribution, DeviceReading, InsulinContribution, KineticsResult

__all__ = [
    "BasalRate",
    "BgNow",
    "CarbContribution",
    "Delta",
    "DeviceReading",
    "DeviceStatus",
    "ForecastPoint",
    "ForecastResult",
    "ForecastSettings",
    "GlucoseReading",
    "InsulinContribution",
    "KineticsResult",
    "ProfileSchedule",
    "TimeValue",
    "Treatment",
]
