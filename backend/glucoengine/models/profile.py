from typing import Any, List, Literal, Optional, Union, get_args
from pydantic import BaseModel, ConfigDict, Field, field_validator

from glucoengine.models.treatment import Treatment

ScheduleParameter = Literal["basal", "sens", "carbratio", "target_low", "target_high"]
ScalarParameter = Literal["dia", "carbs_hr", "delay"]

ProfileParameter = Union[ScheduleParameter, ScalarParameter]

SCHEDULE_PARAMETERS: tuple[str, ...] = get_args(ScheduleParameter)
SCALAR_PARAMETERS: tuple[str, ...] = get_args(ScalarParameter)


class TimeValue(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    time: str = Field("00:00", description="Local time of day, HH:MM or HH:MM:SS")
    value: float
    time_as_seconds: Optional[int] = Field(None, alias="timeAsSeconds", ge=0, lt=86400)


class ProfileSchedule(BaseModel):
    """
    A named therapy profile. Schedule parameters are lists of breakpoints;
    a bare number is accepted and treated as a single midnight breakpoint.
    Missing scalars fall back to the engine defaults.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str = "Default"
    basal: List[TimeValue] = Field(default_factory=list)
    sens: List[TimeValue] = Field(default_factory=list)
    carbratio: List[TimeValue] = Field(default_factory=list)
    target_low: List[TimeValue] = Field(default_factory=list)
    target_high: List[TimeValue] = Field(default_factory=list)
    dia: Optional[float] = Field(None, gt=0, description="Duration of insulin action in hours")
    carbs_hr: Optional[float] = Field(None, gt=0, description="Carb absorption rate in g/hour")
    delay: Optional[float] = Field(None, ge=0, description="Minutes before carbs start decaying")
    units: Optional[str] = None
    timezone: Optional[str] = None

    @field_validator("basal", "sens", "carbratio", "target_low", "target_high", mode="before")
    def _scalar_to_schedule(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return [{"time": "00:00", "value": v}]
        return v


class BasalRate(BaseModel):
    model_config = ConfigDict(frozen=True)

    base: float = 0.0
    temp: float = Field(0.0, description="Scheduled or temp-adjusted rate, U/h")
    combo: float = 0.0
    total: float = 0.0
    treatment: Optional[Treatment] = None
    combo_treatment: Optional[Treatment] = None
    prefix: str = ""
