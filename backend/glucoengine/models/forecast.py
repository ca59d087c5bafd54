from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

ForecastLevel = Literal["warn", "urgent"]
ForecastEvent = Literal["high", "low"]


class ForecastSettings(BaseModel):
    """Alarm thresholds used to classify a forecast. Validated once per call."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    bg_target_top: float = Field(180.0, alias="bgTargetTop", gt=0)
    bg_target_bottom: float = Field(80.0, alias="bgTargetBottom", gt=0)
    alarm_high: bool = Field(True, alias="alarmHigh")
    alarm_low: bool = Field(True, alias="alarmLow")


class ForecastPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp_ms: int
    value_mgdl: int
    color: Optional[str] = None


class ForecastResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    predicted: List[ForecastPoint] = Field(default_factory=list)
    avg_loss: float = Field(0.0, ge=0)
    display_line: Optional[str] = None
    event_name: Optional[ForecastEvent] = None
    level: Optional[ForecastLevel] = None
