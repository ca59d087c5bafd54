from __future__ import annotations

import logging
import threading
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence, Union
from zoneinfo import ZoneInfo

from glucoengine.core.settings import EngineSettings, get_settings
from glucoengine.models.profile import (
    SCALAR_PARAMETERS,
    SCHEDULE_PARAMETERS,
    BasalRate,
    ProfileParameter,
    ProfileSchedule,
)
from glucoengine.models.treatment import Treatment
from glucoengine.utils.timezone import (
    format_time,
    parse_time_of_day,
    resolve_timezone,
    seconds_from_midnight,
)

logger = logging.getLogger(__name__)

_MISSING = object()


class ConfigurationError(ValueError):
    """Profile data that cannot answer the lookup it was asked for."""


def normalize_units(units: Optional[str]) -> str:
    if units and "mmol" in units.lower():
        return "mmol"
    return "mg/dl"


@dataclass(frozen=True)
class CompiledSchedule:
    name: str
    # parameter -> (sorted offsets in seconds, values)
    breakpoints: Mapping[str, tuple[list[int], list[float]]]
    dia: Optional[float]
    carbs_hr: Optional[float]
    delay: Optional[float]
    units: str
    tz: ZoneInfo

    def lookup(self, parameter: str, time_ms: int) -> float:
        offsets, values = self.breakpoints.get(parameter, ([], []))
        if not offsets:
            raise ConfigurationError(f"Profile {self.name!r} has no breakpoints for {parameter!r}")
        idx = bisect_right(offsets, seconds_from_midnight(time_ms, self.tz)) - 1
        # before the first breakpoint: last one of the previous day still applies
        return values[idx] if idx >= 0 else values[-1]


class TreatmentIndex:
    """Override treatments sorted by start time, searched by bisection."""

    def __init__(self, treatments: Iterable[Treatment] = ()):
        self.treatments: tuple[Treatment, ...] = tuple(sorted(treatments, key=lambda t: t.timestamp_ms))
        self.starts: list[int] = [t.timestamp_ms for t in self.treatments]

    def __len__(self) -> int:
        return len(self.treatments)

    def latest_started(self, time_ms: int) -> int:
        return bisect_right(self.starts, time_ms) - 1

    def active_at(self, time_ms: int) -> Optional[Treatment]:
        idx = self.latest_started(time_ms)
        if idx < 0:
            return None
        candidate = self.treatments[idx]
        return candidate if candidate.is_active_at(time_ms) else None


@dataclass(frozen=True)
class ActiveProfileSet:
    generation: int = 0
    profiles: Mapping[str, CompiledSchedule] = field(default_factory=dict)
    default_name: Optional[str] = None
    temp_basals: TreatmentIndex = field(default_factory=TreatmentIndex)
    combo_boluses: TreatmentIndex = field(default_factory=TreatmentIndex)
    profile_switches: TreatmentIndex = field(default_factory=TreatmentIndex)
    # memoized lookups for this generation only
    cache: dict = field(default_factory=dict, compare=False, repr=False)


def compile_schedule(schedule: ProfileSchedule) -> CompiledSchedule:
    breakpoints: dict[str, tuple[list[int], list[float]]] = {}
    for parameter in SCHEDULE_PARAMETERS:
        entries = []
        for entry in getattr(schedule, parameter):
            if entry.time_as_seconds is not None:
                offset = entry.time_as_seconds
            else:
                try:
                    offset = parse_time_of_day(entry.time)
                except ValueError as exc:
                    raise ConfigurationError(f"Profile {schedule.name!r} {parameter}: {exc}") from exc
            entries.append((offset, entry.value))
        entries.sort(key=lambda pair: pair[0])
        breakpoints[parameter] = ([o for o, _ in entries], [v for _, v in entries])

    try:
        tz = resolve_timezone(schedule.timezone)
    except ValueError as exc:
        raise ConfigurationError(f"Profile {schedule.name!r}: {exc}") from exc

    return CompiledSchedule(
        name=schedule.name,
        breakpoints=breakpoints,
        dia=schedule.dia,
        carbs_hr=schedule.carbs_hr,
        delay=schedule.delay,
        units=normalize_units(schedule.units),
        tz=tz,
    )


def schedules_from_store(record: Mapping[str, Any]) -> tuple[list[ProfileSchedule], Optional[str]]:
    """
    Reads a profile record in the {"defaultProfile", "store": {name: {...}}}
    layout used by Nightscout-compatible uploaders.
    """
    store = record.get("store") or {}
    record_units = record.get("units")
    schedules = []
    for name, data in store.items():
        payload = {"units": record_units, **data, "name": name}
        schedules.append(ProfileSchedule.model_validate(payload))
    return schedules, record.get("defaultProfile")


class ProfileResolver:
    """
    Time-of-day lookup of therapy parameters with temp basal, combo bolus
    and profile switch overrides layered on top.

    State is a single immutable ActiveProfileSet. Writers build a new set
    and swap the reference under a lock; readers grab the reference once
    per call and never take the lock.
    """

    def __init__(self, settings: Optional[EngineSettings] = None):
        self._settings = settings or get_settings()
        self._lock = threading.Lock()
        self._snapshot = ActiveProfileSet()

    # --- writers ---

    def load_schedules(
        self,
        schedules: Iterable[Union[ProfileSchedule, Mapping[str, Any]]],
        default_profile: Optional[str] = None,
    ) -> None:
        compiled: dict[str, CompiledSchedule] = {}
        for raw in schedules:
            schedule = raw if isinstance(raw, ProfileSchedule) else ProfileSchedule.model_validate(raw)
            if schedule.name in compiled:
                logger.warning("Duplicate profile %r, keeping the last one", schedule.name)
            compiled[schedule.name] = compile_schedule(schedule)

        if default_profile is not None and default_profile not in compiled:
            raise ConfigurationError(f"Default profile {default_profile!r} not among loaded profiles")
        default_name = default_profile or next(iter(compiled), None)

        with self._lock:
            current = self._snapshot
            self._snapshot = ActiveProfileSet(
                generation=current.generation + 1,
                profiles=compiled,
                default_name=default_name,
                temp_basals=current.temp_basals,
                combo_boluses=current.combo_boluses,
                profile_switches=current.profile_switches,
            )
        logger.info("Loaded %d profile(s), default=%s", len(compiled), default_name)

    def load_profile_store(self, record: Mapping[str, Any]) -> None:
        schedules, default_profile = schedules_from_store(record)
        if default_profile is not None and default_profile not in {s.name for s in schedules}:
            logger.warning("defaultProfile %r missing from store, using first profile", default_profile)
            default_profile = None
        self.load_schedules(schedules, default_profile=default_profile)

    def update_treatments(
        self,
        temp_basals: Optional[Sequence[Treatment]] = None,
        combo_boluses: Optional[Sequence[Treatment]] = None,
        profile_switches: Optional[Sequence[Treatment]] = None,
    ) -> None:
        """Replaces every override set; an omitted set becomes empty."""
        temp_index = TreatmentIndex(temp_basals or ())
        combo_index = TreatmentIndex(combo_boluses or ())
        switch_index = TreatmentIndex(profile_switches or ())
        with self._lock:
            current = self._snapshot
            self._snapshot = ActiveProfileSet(
                generation=current.generation + 1,
                profiles=current.profiles,
                default_name=current.default_name,
                temp_basals=temp_index,
                combo_boluses=combo_index,
                profile_switches=switch_index,
            )
        logger.debug(
            "Overrides updated: %d temp basal(s), %d combo bolus(es), %d profile switch(es)",
            len(temp_index), len(combo_index), len(switch_index),
        )

    def clear(self) -> None:
        with self._lock:
            self._snapshot = ActiveProfileSet(generation=self._snapshot.generation + 1)

    # --- introspection ---

    @property
    def generation(self) -> int:
        return self._snapshot.generation

    def cache_size(self) -> int:
        return len(self._snapshot.cache)

    def has_data(self) -> bool:
        return bool(self._snapshot.profiles)

    def list_profiles(self) -> list[str]:
        return list(self._snapshot.profiles)

    # --- override lookups ---

    def get_temp_basal_treatment(self, time_ms: int) -> Optional[Treatment]:
        return self._snapshot.temp_basals.active_at(time_ms)

    def get_combo_bolus_treatment(self, time_ms: int) -> Optional[Treatment]:
        return self._snapshot.combo_boluses.active_at(time_ms)

    def get_active_profile_treatment(self, time_ms: int) -> Optional[Treatment]:
        return self._active_switch(self._snapshot, time_ms)

    # --- schedule lookups ---

    def get_value(self, time_ms: int, parameter: ProfileParameter, profile_name: Optional[str] = None) -> Optional[float]:
        """
        Value of a schedule or scalar parameter at time_ms.

        Returns None when no profile is loaded. Raises ConfigurationError
        for unknown parameters and for schedule parameters with no
        breakpoints.
        """
        if parameter not in SCHEDULE_PARAMETERS and parameter not in SCALAR_PARAMETERS:
            raise ConfigurationError(f"Unknown profile parameter {parameter!r}")
        snapshot = self._snapshot
        if not snapshot.profiles:
            return None
        return self._cached(snapshot, (time_ms, parameter, profile_name),
                            lambda: self._resolve(snapshot, time_ms, parameter, profile_name))

    def get_basal_rate(self, time_ms: int, profile_name: Optional[str] = None) -> BasalRate:
        snapshot = self._snapshot
        return self._cached(snapshot, (time_ms, "basal_rate", profile_name),
                            lambda: self._basal_rate(snapshot, time_ms, profile_name))

    def get_dia(self, time_ms: int, profile_name: Optional[str] = None) -> float:
        value = self.get_value(time_ms, "dia", profile_name)
        return value if value is not None else self._settings.profile.default_dia

    def get_carb_absorption_rate(self, time_ms: int, profile_name: Optional[str] = None) -> float:
        value = self.get_value(time_ms, "carbs_hr", profile_name)
        return value if value is not None else self._settings.profile.default_carbs_hr

    def get_carb_delay(self, time_ms: int, profile_name: Optional[str] = None) -> float:
        value = self.get_value(time_ms, "delay", profile_name)
        return value if value is not None else self._settings.profile.default_carb_delay

    def get_sensitivity(self, time_ms: int, profile_name: Optional[str] = None) -> float:
        return self._number(time_ms, "sens", profile_name)

    def get_carb_ratio(self, time_ms: int, profile_name: Optional[str] = None) -> float:
        return self._number(time_ms, "carbratio", profile_name)

    def get_low_bg_target(self, time_ms: int, profile_name: Optional[str] = None) -> float:
        return self._number(time_ms, "target_low", profile_name)

    def get_high_bg_target(self, time_ms: int, profile_name: Optional[str] = None) -> float:
        return self._number(time_ms, "target_high", profile_name)

    def get_units(self, time_ms: Optional[int] = None, profile_name: Optional[str] = None) -> str:
        profile = self._profile(self._snapshot, time_ms, profile_name)
        return profile.units if profile else "mg/dl"

    def get_timezone(self, time_ms: Optional[int] = None, profile_name: Optional[str] = None) -> str:
        profile = self._profile(self._snapshot, time_ms, profile_name)
        return str(profile.tz.key) if profile else self._settings.profile.default_timezone

    # --- internals ---

    def _number(self, time_ms: int, parameter: str, profile_name: Optional[str]) -> float:
        value = self.get_value(time_ms, parameter, profile_name)
        return float(value) if value is not None else 0.0

    def _cached(self, snapshot: ActiveProfileSet, key: tuple, compute):
        hit = snapshot.cache.get(key, _MISSING)
        if hit is not _MISSING:
            return hit
        value = compute()
        limit = self._settings.profile.cache_max_entries
        if limit and len(snapshot.cache) >= limit:
            snapshot.cache.clear()
        snapshot.cache[key] = value
        return value

    def _active_switch(self, snapshot: ActiveProfileSet, time_ms: int) -> Optional[Treatment]:
        switches = snapshot.profile_switches
        idx = switches.latest_started(time_ms)
        while idx >= 0:
            candidate = switches.treatments[idx]
            if not candidate.duration_min or candidate.is_active_at(time_ms):
                return candidate
            idx -= 1
        return None

    def _profile(
        self, snapshot: ActiveProfileSet, time_ms: Optional[int], profile_name: Optional[str]
    ) -> Optional[CompiledSchedule]:
        if not snapshot.profiles:
            return None
        if profile_name is not None:
            if profile_name not in snapshot.profiles:
                raise ConfigurationError(f"Unknown profile {profile_name!r}")
            return snapshot.profiles[profile_name]
        if time_ms is not None:
            switch = self._active_switch(snapshot, time_ms)
            if switch is not None and switch.profile:
                if switch.profile in snapshot.profiles:
                    return snapshot.profiles[switch.profile]
                logger.debug(
                    "Profile switch at %s names unknown profile %r, using default",
                    format_time(switch.timestamp_ms), switch.profile,
                )
        return snapshot.profiles[snapshot.default_name]

    def _resolve(
        self, snapshot: ActiveProfileSet, time_ms: int, parameter: str, profile_name: Optional[str]
    ) -> Optional[float]:
        profile = self._profile(snapshot, time_ms, profile_name)
        if parameter in SCALAR_PARAMETERS:
            value = getattr(profile, parameter)
            if value is not None:
                return value
            defaults = self._settings.profile
            return {
                "dia": defaults.default_dia,
                "carbs_hr": defaults.default_carbs_hr,
                "delay": defaults.default_carb_delay,
            }[parameter]
        return profile.lookup(parameter, time_ms)

    def _basal_rate(self, snapshot: ActiveProfileSet, time_ms: int, profile_name: Optional[str]) -> BasalRate:
        base = 0.0
        if snapshot.profiles:
            base = self._resolve(snapshot, time_ms, "basal", profile_name)

        temp = base
        temp_treatment = snapshot.temp_basals.active_at(time_ms)
        if temp_treatment is not None:
            if temp_treatment.absolute_rate is not None and (temp_treatment.duration_min or 0) > 0:
                temp = temp_treatment.absolute_rate
            elif temp_treatment.percent_rate is not None:
                temp = base * (100 + temp_treatment.percent_rate) / 100

        combo = 0.0
        combo_treatment = snapshot.combo_boluses.active_at(time_ms)
        if combo_treatment is not None and combo_treatment.relative_rate:
            combo = combo_treatment.relative_rate

        prefix = ""
        if temp_treatment is not None and combo_treatment is not None:
            prefix = "TC:"
        elif temp_treatment is not None:
            prefix = "T:"
        elif combo_treatment is not None:
            prefix = "C:"

        return BasalRate(
            base=base,
            temp=temp,
            combo=combo,
            total=temp + combo,
            treatment=temp_treatment,
            combo_treatment=combo_treatment,
            prefix=prefix,
        )


__all__ = [
    "ActiveProfileSet",
    "ConfigurationError",
    "ProfileResolver",
    "TreatmentIndex",
    "compile_schedule",
    "normalize_units",
    "schedules_from_store",
]
