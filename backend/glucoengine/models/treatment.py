from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

TEMP_BASAL = "Temp Basal"
COMBO_BOLUS = "Combo Bolus"
PROFILE_SWITCH = "Profile Switch"


class Treatment(BaseModel):
    """
    One care event. Bolus, carb entry, temp basal, combo bolus or
    profile switch depending on which optional fields are set.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    timestamp_ms: int = Field(..., alias="mills")
    event_type: str = Field("", alias="eventType")
    carbs: Optional[float] = Field(None, ge=0)
    insulin: Optional[float] = Field(None, ge=0)
    duration_min: Optional[float] = Field(None, alias="duration", ge=0)
    absolute_rate: Optional[float] = Field(None, alias="absolute", ge=0, description="U/h replacing the scheduled basal")
    percent_rate: Optional[float] = Field(None, alias="percent", description="Relative change, -100..n")
    relative_rate: Optional[float] = Field(None, alias="relative", description="U/h added by a combo bolus")
    absorption_time_override_min: Optional[float] = Field(None, alias="absorptionTime", gt=0)
    fat: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    profile: Optional[str] = None

    @property
    def duration_ms(self) -> int:
        return int(round((self.duration_min or 0) * 60_000))

    @property
    def end_ms(self) -> int:
        return self.timestamp_ms + self.duration_ms

    def is_active_at(self, time_ms: int) -> bool:
        return self.timestamp_ms <= time_ms < self.end_ms
