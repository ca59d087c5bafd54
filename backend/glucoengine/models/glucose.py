from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class GlucoseReading(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    timestamp_ms: int = Field(..., alias="mills", description="Epoch milliseconds of the reading")
    value_mgdl: float = Field(..., alias="mgdl", description="Sensor glucose in mg/dL")
    noise_level: Optional[int] = Field(None, alias="noise")


class BgNow(BaseModel):
    """Statistics of the most recent 5-minute bucket of readings."""

    model_config = ConfigDict(frozen=True)

    mean: Optional[float] = None
    last: Optional[float] = None
    mills: Optional[int] = None
    readings: List[GlucoseReading] = Field(default_factory=list)


class Delta(BaseModel):
    model_config = ConfigDict(frozen=True)

    absolute: float
    elapsed_mins: float
    interpolated: bool = False
    mean5_mins_ago: Optional[float] = Field(None, description="Mean glucose 5 minutes before the current bucket")
    mgdl: int
    scaled: float = Field(0.0, description="Delta in display units")
    display: str
